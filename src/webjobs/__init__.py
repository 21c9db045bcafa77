"""webjobs - Continuous job supervisor."""

__version__ = "0.1.0"
