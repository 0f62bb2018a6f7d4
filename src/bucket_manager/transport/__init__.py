"""SSH connection management and shell quoting"""
