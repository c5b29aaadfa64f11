"""tokengate: short-lived access tokens, rotating renewal tokens, and a
client that refreshes them exactly once under concurrent expiry."""

__version__ = "0.1.0"
