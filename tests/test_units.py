"""Tests for unit conversions and OS constants."""

from unittest.mock import patch

from process_census import sysconf
from process_census.units import pages_to_bytes, ticks_to_micros, wrap32

SYSCONF_NAMES = {"SC_CLK_TCK": 2, "SC_PAGE_SIZE": 30}


def test_ticks_to_micros():
    """Ticks convert at the clock rate, truncating."""
    assert ticks_to_micros(250, 100) == 2_500_000
    assert ticks_to_micros(50, 100) == 500_000
    assert ticks_to_micros(1, 3) == 333_333
    assert ticks_to_micros(0, 100) == 0


def test_pages_to_bytes():
    assert pages_to_bytes(300, 4096) == 1_228_800
    assert pages_to_bytes(0, 4096) == 0


def test_wrap32_keeps_low_bits():
    """Counters wrap like a 32-bit unsigned integer."""
    assert wrap32(2**32 + 42) == 42
    assert wrap32(2**32 - 1) == 2**32 - 1
    assert wrap32(2**32) == 0
    assert wrap32(12345) == 12345


class TestSysconf:
    """Tests for sysconf lookups and their fallbacks."""

    def test_unknown_name_returns_none(self):
        assert sysconf.sysconf_int("SC_NOT_A_REAL_NAME") is None

    def test_failure_falls_back_to_defaults(self):
        """sysconf errors give 100 Hz and 4096-byte pages."""
        with (
            patch.object(sysconf.os, "sysconf_names", SYSCONF_NAMES, create=True),
            patch.object(sysconf.os, "sysconf", side_effect=OSError("nope"), create=True),
        ):
            assert sysconf.clock_ticks_per_second() == 100
            assert sysconf.page_size() == 4096

    def test_non_positive_value_falls_back(self):
        with (
            patch.object(sysconf.os, "sysconf_names", SYSCONF_NAMES, create=True),
            patch.object(sysconf.os, "sysconf", return_value=-1, create=True),
        ):
            assert sysconf.clock_ticks_per_second() == sysconf.DEFAULT_CLOCK_TICKS

    def test_reported_values_are_used(self):
        reported = {"SC_CLK_TCK": 250, "SC_PAGE_SIZE": 16384}
        with (
            patch.object(sysconf.os, "sysconf_names", SYSCONF_NAMES, create=True),
            patch.object(sysconf.os, "sysconf", side_effect=reported.__getitem__, create=True),
        ):
            assert sysconf.clock_ticks_per_second() == 250
            assert sysconf.page_size() == 16384
