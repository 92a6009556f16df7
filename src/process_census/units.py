"""Unit conversions and counter wrapping."""

MICROS_PER_SECOND = 1_000_000
COUNTER32_MASK = 0xFFFFFFFF


def ticks_to_micros(ticks: int, clock_ticks: int) -> int:
    """Convert kernel clock ticks to microseconds.

    Args:
        ticks: CPU time in clock ticks (jiffies)
        clock_ticks: Ticks per second reported by the OS

    Returns:
        CPU time in whole microseconds (truncated)
    """
    return ticks * MICROS_PER_SECOND // clock_ticks


def pages_to_bytes(pages: int, page_size: int) -> int:
    """Convert a resident page count to bytes."""
    return pages * page_size


def wrap32(value: int) -> int:
    """Keep the low 32 bits of a counter.

    Emitted CPU-time counters wrap like a 32-bit unsigned integer; consumers
    computing rates rely on the wrap.
    """
    return value & COUNTER32_MASK
