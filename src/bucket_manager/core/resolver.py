"""Stack identifier resolution"""

import logging
from typing import Iterable, List, Optional, Tuple

from bucket_manager.core.errors import (
    AmbiguousStackError,
    InvalidIdentifierError,
    StackNotFoundError,
)
from bucket_manager.core.stack import Stack

logger = logging.getLogger(__name__)


def parse_identifier(identifier: str) -> Tuple[Optional[str], str]:
    """Split "stack" or "server:stack" into (server, name)

    Args:
        identifier: User supplied stack identifier

    Returns:
        Tuple of (server name or None when not pinned, stack name)

    Raises:
        InvalidIdentifierError: Empty identifier, server or stack name
    """
    identifier = identifier.strip()
    if ":" in identifier:
        server, name = (part.strip() for part in identifier.split(":", 1))
        if not server or not name:
            raise InvalidIdentifierError(
                f"invalid identifier format: '{identifier}'. Use 'stack' or 'remote:stack'"
            )
        return server, name
    if not identifier:
        raise InvalidIdentifierError("stack identifier must not be empty")
    return None, identifier


def find_stack_by_identifier(stacks: Iterable[Stack], identifier: str) -> Stack:
    """Resolve an identifier against discovered stacks

    A pinned "server:name" must match exactly. A bare name resolves to its
    only match, or to the single local match when several hosts have it.

    Args:
        stacks: Candidate stacks in discovery order
        identifier: "stack" or "server:stack"

    Returns:
        The matching stack

    Raises:
        InvalidIdentifierError: Malformed identifier
        StackNotFoundError: Nothing matches
        AmbiguousStackError: Several stacks match a bare name
    """
    server, name = parse_identifier(identifier)

    if server is not None:
        for stack in stacks:
            if stack.name == name and stack.server_name == server:
                return stack
        raise StackNotFoundError(f"stack '{server}:{name}' not found")

    matches: List[Stack] = [stack for stack in stacks if stack.name == name]
    if not matches:
        raise StackNotFoundError(f"stack '{name}' not found")
    if len(matches) == 1:
        return matches[0]

    local_matches = [stack for stack in matches if not stack.is_remote]
    if len(local_matches) == 1:
        logger.debug(f"Stack name '{name}' matches {len(matches)} stacks, preferring the local one")
        return local_matches[0]

    raise AmbiguousStackError(name, [stack.identifier for stack in matches])
