"""Tests for process-census."""
