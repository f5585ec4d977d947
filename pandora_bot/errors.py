"""Typed errors raised by the factoid storage layer."""
from __future__ import annotations

from typing import Optional


class PandoraError(Exception):
    """Base class for every error raised by pandora_bot."""


class ValidationError(PandoraError, ValueError):
    """Input rejected before touching storage (empty trigger, missing key)."""


class NotFoundError(PandoraError, LookupError):
    """The requested id or trigger does not exist."""


class AlreadyExistsError(PandoraError):
    """A create collided with an existing trigger."""

    def __init__(self, message: str, existing_id: Optional[int] = None) -> None:
        super().__init__(message)
        self.existing_id = existing_id


class ResponseExistsError(AlreadyExistsError):
    """The factoid already holds a response with the same text."""

    def __init__(self, trigger: str, response: str, existing_id: Optional[int] = None) -> None:
        super().__init__(f"{trigger!r} is already {response!r}", existing_id)
        self.trigger = trigger
        self.response = response


class ConflictError(PandoraError):
    """A rename would move a factoid onto a trigger owned by another factoid."""

    def __init__(self, trigger: str, owner_id: int) -> None:
        super().__init__(f"trigger {trigger!r} already belongs to factoid {owner_id}")
        self.trigger = trigger
        self.owner_id = owner_id


class SerializationError(PandoraError):
    """Stored bytes are corrupt or not a record of the expected kind."""


class StorageUnavailable(PandoraError):
    """The engine could not be opened or a transaction could not begin."""


class OutOfRangeError(PandoraError, IndexError):
    """An index-based response query asked past the available matches."""


class InterpolationError(PandoraError):
    """A response template could not be expanded."""


__all__ = [
    "AlreadyExistsError",
    "ConflictError",
    "InterpolationError",
    "NotFoundError",
    "OutOfRangeError",
    "PandoraError",
    "ResponseExistsError",
    "SerializationError",
    "StorageUnavailable",
    "ValidationError",
]
