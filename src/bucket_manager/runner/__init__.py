"""Local and remote command runners"""
