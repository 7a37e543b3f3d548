"""Exceptions raised by the chain engine."""


class ChainConfigError(ValueError):
    """Raised when a chain is built from an invalid configuration."""
