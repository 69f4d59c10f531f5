"""Pytest configuration and shared fixtures."""

# Load environment variables from .env file at test startup so settings
# picked up by the app match the developer's local configuration.
from dotenv import load_dotenv
load_dotenv()

pytest_plugins = [
    "tests.fixtures.core.feeds",
    "tests.fixtures.core.stores",
]
