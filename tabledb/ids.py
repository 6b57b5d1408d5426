"""
Record id allocation for tabledb.

Ids are random base36 tokens. The allocator guarantees a returned id is not
used by any record in any table of the snapshot it was given, nor by any id
already handed out and still awaiting commit.
"""

from __future__ import annotations

import logging
import secrets
import string
from typing import Callable, Container

from .errors import IdSpaceExhausted
from .snapshot import Snapshot

logger = logging.getLogger(__name__)

BASE36_ALPHABET = string.digits + string.ascii_lowercase


def base36(length: int = 10) -> str:
    """Random token over 0-9a-z."""
    return "".join(secrets.choice(BASE36_ALPHABET) for _ in range(length))


class IdAllocator:
    """Draws tokens until one is unused across the whole snapshot.

    Example:
        >>> allocator = IdAllocator()
        >>> record_id = allocator.next_id(snapshot)
    """

    def __init__(
        self,
        token_source: Callable[[int], str] = base36,
        token_length: int = 10,
        max_attempts: int = 32,
    ) -> None:
        self.token_source = token_source
        self.token_length = token_length
        self.max_attempts = max_attempts

    def next_id(self, snapshot: Snapshot, reserved: Container[str] = ()) -> str:
        """Return an id absent from every table of ``snapshot`` and from ``reserved``.

        Raises:
            IdSpaceExhausted: If max_attempts tokens in a row were taken
        """
        for attempt in range(1, self.max_attempts + 1):
            candidate = self.token_source(self.token_length)
            if candidate in reserved or snapshot.contains_id(candidate):
                logger.debug("Id collision, retrying", extra={"attempt": attempt})
                continue
            return candidate
        raise IdSpaceExhausted(self.max_attempts)
