"""Test fixtures for the Zenfeed reader.

- core: feed items, read-state stores with scripted backends, clocks

API fixtures live in tests/api/conftest.py.
"""
