"""OS constants needed to convert /proc units.

Both values are read once per scanner. os.sysconf can be missing a name or
fail on unusual platforms; the documented fallbacks are used then.
"""

import os

DEFAULT_CLOCK_TICKS = 100
DEFAULT_PAGE_SIZE = 4096


def sysconf_int(name: str) -> int | None:
    """Read a positive integer sysconf value by name.

    Args:
        name: sysconf name (e.g., "SC_CLK_TCK")

    Returns:
        Value on success, None if the name is unknown or the value is not
        positive.
    """
    if name not in getattr(os, "sysconf_names", {}):
        return None
    try:
        value = os.sysconf(name)
    except (OSError, ValueError):
        return None
    return value if value > 0 else None


def clock_ticks_per_second() -> int:
    """Return the kernel clock rate (jiffies per second), 100 if unknown."""
    return sysconf_int("SC_CLK_TCK") or DEFAULT_CLOCK_TICKS


def page_size() -> int:
    """Return the memory page size in bytes, 4096 if unknown."""
    return sysconf_int("SC_PAGE_SIZE") or DEFAULT_PAGE_SIZE
