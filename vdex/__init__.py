"""Models, configuration, SQLite storage, matching-log messages, API types and JWT helpers for an order-book exchange backend."""

__version__ = "0.1.0"

__all__ = ["api_types", "auth", "config", "matching_log", "models", "store"]