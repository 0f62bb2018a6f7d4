"""Manage compose stacks on the local machine and remote SSH hosts"""

__version__ = "0.1.0"
