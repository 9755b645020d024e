"""Tests for :mod:`leaps.services`."""
