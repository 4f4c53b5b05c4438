"""Discord bot for requesting media through the *arr family of services."""

__version__ = "1.0.0"
