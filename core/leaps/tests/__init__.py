"""Tests for the :mod:`leaps` package."""
