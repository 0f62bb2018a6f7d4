"""POSIX shell quoting for remote command lines"""

import posixpath
from typing import Iterable, Optional


def quote_arg_for_shell(arg: str) -> str:
    """Quote an argument for safe use in a POSIX shell command

    Embedded single quotes are escaped as '\\''. A leading "~/" is left
    outside the quotes so the remote shell still performs tilde expansion.

    Args:
        arg: Raw argument

    Returns:
        Shell-safe argument string
    """
    if arg.startswith("~/"):
        return "~/'" + arg[2:].replace("'", "'\\''") + "'"
    return "'" + arg.replace("'", "'\\''") + "'"


def build_remote_command(command: str, args: Iterable[str], workdir: Optional[str] = None) -> str:
    """Build the command line sent to a remote shell

    Args:
        command: Executable name (not quoted)
        args: Arguments, each quoted individually
        workdir: Optional absolute directory to cd into first

    Returns:
        Command string such as "cd '/srv/app' && podman 'compose' 'up'"
    """
    parts = []
    if workdir:
        parts.extend(["cd", quote_arg_for_shell(workdir), "&&"])
    parts.append(command)
    parts.extend(quote_arg_for_shell(arg) for arg in args)
    return " ".join(parts)


def join_remote_path(root: str, relative: str) -> str:
    """Join a remote root and a stack path relative to it"""
    return posixpath.normpath(posixpath.join(root, relative))
