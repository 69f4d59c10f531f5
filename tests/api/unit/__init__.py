"""Unit tests for API components: dependency injection and error handling."""
