"""Tests for :mod:`leaps.security`."""
