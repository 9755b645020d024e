"""Tests for :mod:`leaps.services.store`."""
