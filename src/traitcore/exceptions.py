"""traitcore exception hierarchy."""

from __future__ import annotations


class TraitCoreError(Exception):
    """Base class for all traitcore errors."""


class ValidationError(TraitCoreError):
    """Out-of-range or malformed input. Raised before any state is touched."""


class NotFoundError(TraitCoreError):
    """Write against an unknown memory id."""


class PersistenceError(TraitCoreError):
    """The record store refused or failed a write."""


class NotReadyError(TraitCoreError):
    """Session used before ``initialize()`` succeeded."""
