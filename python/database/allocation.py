"""
Sequential user ID allocation

IDs have the form prefix + zero-padded number (USER0001, USER0002, ...).
The next number is derived from the highest suffix currently stored, so
there is no counter to keep in sync across processes. Two concurrent
callers can compute the same ID; the primary key rejects the second
insert and the registrar retries (see database.registration).
"""

import re
import logging
from typing import Optional, Protocol

logger = logging.getLogger(__name__)

MAX_WIDTH = 18


class SuffixStore(Protocol):
    """What the allocator needs from storage."""

    def max_suffix(self, prefix: str) -> int: ...


class CapacityExceededError(Exception):
    """Raised when the next number does not fit in the configured width."""

    def __init__(self, prefix: str, width: int, attempted: int):
        super().__init__(
            f"ID space exhausted for prefix {prefix!r}: "
            f"{attempted} does not fit in {width} digits"
        )
        self.prefix = prefix
        self.width = width
        self.attempted = attempted


def validate_format(prefix: str, width: int) -> None:
    """Raise ValueError unless prefix/width describe a usable ID format."""
    if not prefix or not re.fullmatch(r'[A-Za-z0-9]+', prefix):
        raise ValueError(f"ID prefix must be non-empty and alphanumeric: {prefix!r}")
    if not 1 <= width <= MAX_WIDTH:
        raise ValueError(f"ID width must be between 1 and {MAX_WIDTH}: {width}")


def capacity(width: int) -> int:
    """Largest number representable in width digits."""
    return 10 ** width - 1


def format_id(prefix: str, number: int, width: int) -> str:
    """
    Format an ID.

    Raises:
        CapacityExceededError: If number has more than width digits
    """
    if number < 1:
        raise ValueError(f"ID numbers start at 1: {number}")
    if number > capacity(width):
        raise CapacityExceededError(prefix, width, number)
    return f"{prefix}{str(number).zfill(width)}"


def parse_suffix(identifier: str, prefix: str) -> Optional[int]:
    """
    Numeric suffix of identifier, or None if it does not have the form
    prefix followed by digits only.
    """
    if not identifier or not identifier.startswith(prefix):
        return None
    rest = identifier[len(prefix):]
    if not rest.isascii() or not rest.isdigit():
        return None
    return int(rest)


def next_id(store: SuffixStore, prefix: str, width: int) -> str:
    """
    Compute the next unused ID for prefix.

    Raises:
        CapacityExceededError: If the ID space for width is exhausted
    """
    number = store.max_suffix(prefix) + 1
    return format_id(prefix, number, width)


class SequentialIdAllocator:
    """Allocator bound to one ID format. Holds no counter state."""

    def __init__(self, prefix: str = "USER", width: int = 4):
        validate_format(prefix, width)
        self.prefix = prefix
        self.width = width

    @property
    def capacity(self) -> int:
        return capacity(self.width)

    def allocate(self, store: SuffixStore) -> str:
        """Next ID according to the store's current contents."""
        user_id = next_id(store, self.prefix, self.width)
        logger.debug("Allocated candidate id %s", user_id)
        return user_id

    def __repr__(self) -> str:
        return f"<SequentialIdAllocator(prefix={self.prefix!r}, width={self.width})>"
