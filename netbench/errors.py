"""Exception hierarchy for netbench."""

from __future__ import annotations


class NetbenchError(Exception):
    """Base class for all netbench errors."""


class ConfigurationError(NetbenchError):
    """Raised when run options fail validation.

    ``errors`` maps each offending option name to a human-readable message.
    """

    def __init__(self, errors: dict[str, str]) -> None:
        self.errors = dict(errors)
        summary = "; ".join(f"{key}: {msg}" for key, msg in sorted(self.errors.items()))
        super().__init__(f"Invalid run options: {summary}")


class ResourceError(NetbenchError):
    """Raised before testing when a required file or directory is unusable."""
