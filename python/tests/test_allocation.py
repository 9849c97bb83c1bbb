"""
Unit tests for sequential user ID allocation.

The allocator is exercised against an in-memory suffix store, so these
tests need no database.
"""

import pytest

from database.allocation import (
    SequentialIdAllocator,
    CapacityExceededError,
    capacity,
    format_id,
    next_id,
    parse_suffix,
    validate_format,
)


class FakeStore:
    """Suffix store over a plain list of IDs."""

    def __init__(self, ids=()):
        self.ids = list(ids)

    def max_suffix(self, prefix: str) -> int:
        suffixes = [parse_suffix(i, prefix) for i in self.ids]
        return max([s for s in suffixes if s is not None], default=0)


class TestFormatId:
    """Tests for ID formatting."""

    def test_zero_padded(self):
        assert format_id("USER", 1, 4) == "USER0001"
        assert format_id("USER", 42, 4) == "USER0042"

    def test_full_width(self):
        assert format_id("USER", 9999, 4) == "USER9999"

    def test_overflow_raises(self):
        """A number wider than the format fails rather than widening the ID."""
        with pytest.raises(CapacityExceededError) as exc_info:
            format_id("USER", 10000, 4)
        assert exc_info.value.prefix == "USER"
        assert exc_info.value.width == 4
        assert exc_info.value.attempted == 10000

    def test_numbers_start_at_one(self):
        with pytest.raises(ValueError):
            format_id("USER", 0, 4)

    def test_capacity(self):
        assert capacity(1) == 9
        assert capacity(4) == 9999


class TestParseSuffix:
    """Tests for suffix parsing."""

    def test_parses_digits(self):
        assert parse_suffix("USER0007", "USER") == 7

    def test_wrong_prefix(self):
        assert parse_suffix("ACCT0007", "USER") is None

    def test_non_digit_remainder(self):
        assert parse_suffix("USER00A7", "USER") is None
        assert parse_suffix("USER", "USER") is None

    def test_non_ascii_digits_rejected(self):
        """Arabic-Indic digits satisfy str.isdigit() but are not IDs."""
        assert parse_suffix("USER١٢", "USER") is None

    def test_prefix_is_case_sensitive(self):
        assert parse_suffix("user0003", "USER") is None

    def test_wider_suffix_still_parsed(self):
        assert parse_suffix("USER123456", "USER") == 123456


class TestValidateFormat:

    @pytest.mark.parametrize("prefix", ["", "US-ER", "US ER", "ÜSER"])
    def test_bad_prefix(self, prefix):
        with pytest.raises(ValueError):
            validate_format(prefix, 4)

    @pytest.mark.parametrize("width", [0, -1, 19])
    def test_bad_width(self, width):
        with pytest.raises(ValueError):
            validate_format("USER", width)

    def test_good_format(self):
        validate_format("C", 1)
        validate_format("USER", 18)


class TestNextId:
    """Tests for computing the next ID from store contents."""

    def test_empty_store(self):
        assert next_id(FakeStore(), "USER", 4) == "USER0001"

    def test_after_existing(self):
        store = FakeStore(["USER0001", "USER0002"])
        assert next_id(store, "USER", 4) == "USER0003"

    def test_gap_not_reused(self):
        """Numbers below the maximum are never handed out again."""
        store = FakeStore(["USER0001", "USER0005"])
        assert next_id(store, "USER", 4) == "USER0006"

    def test_malformed_ids_ignored(self):
        store = FakeStore(["USER0003", "USERX", "ADMIN0100"])
        assert next_id(store, "USER", 4) == "USER0004"

    def test_exhausted(self):
        store = FakeStore(["USER9999"])
        with pytest.raises(CapacityExceededError):
            next_id(store, "USER", 4)

    def test_deterministic(self):
        """Same store contents, same answer."""
        store = FakeStore(["USER0010"])
        assert next_id(store, "USER", 4) == next_id(store, "USER", 4)


class TestSequentialIdAllocator:

    def test_defaults(self):
        allocator = SequentialIdAllocator()
        assert allocator.prefix == "USER"
        assert allocator.width == 4
        assert allocator.capacity == 9999

    def test_allocate(self):
        allocator = SequentialIdAllocator("C", 2)
        assert allocator.allocate(FakeStore(["C07"])) == "C08"

    def test_rejects_bad_format(self):
        with pytest.raises(ValueError):
            SequentialIdAllocator("", 4)
