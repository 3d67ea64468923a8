"""Shared exceptions for :mod:`hsbalance`.

Fatal conditions (a broken control session, a signing failure) propagate to
the caller. Conditions the collector can recover from are logged instead of
raised.
"""

from __future__ import annotations


class BalancerError(Exception):
    """Base error for balancing runs."""


class ConfigError(BalancerError):
    """Raised when configuration values are malformed or inconsistent."""


class ControlError(BalancerError):
    """Raised for control-port transport, authentication and command failures."""

    def __init__(self, message: str, *, status: int | None = None) -> None:
        super().__init__(message)
        self.status = status


class DescriptorError(BalancerError):
    """Raised when a descriptor cannot be parsed, built or rendered."""


class CollectionIncompleteError(BalancerError):
    """Raised when collection stops before every backend was resolved."""

    def __init__(self, unresolved: list[str], *, reason: str, collected: int = 0) -> None:
        self.unresolved = list(unresolved)
        self.reason = reason
        self.collected = collected
        super().__init__(
            f"some identities unresolved ({reason}): {', '.join(self.unresolved)}"
        )


class SigningError(BalancerError):
    """Raised when a descriptor batch cannot be signed."""

    def __init__(self, message: str, *, replica: int | None = None) -> None:
        super().__init__(message)
        self.replica = replica


class PublishError(BalancerError):
    """Raised when publishing stops at a failing descriptor."""

    def __init__(self, index: int, *, published: list[int], cause: BaseException | None = None) -> None:
        self.index = index
        self.published = list(published)
        self.cause = cause
        super().__init__(f"publishing descriptor {index} failed: {cause}")


class StoreError(BalancerError):
    """Raised when a descriptor copy cannot be written to disk."""
