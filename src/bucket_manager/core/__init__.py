"""Configuration, discovery and orchestration"""
