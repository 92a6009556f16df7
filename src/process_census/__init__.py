"""Process state counts and per-name resource totals, one scan cycle at a time."""

__version__ = "0.1.0"
