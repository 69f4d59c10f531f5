"""Core fixtures: feed items and read-state stores."""
