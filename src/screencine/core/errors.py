# -*- coding: utf-8 -*-
"""Error taxonomy for capture orchestration and replay."""

from __future__ import annotations


class ScreencineError(Exception):
    """Base class for all application errors."""


class PermissionDeniedError(ScreencineError):
    """The user declined the capture permission prompt."""


class HandshakeTimeoutError(ScreencineError):
    """The instrumentation agent stayed unreachable after bounded retries."""


class EmptyArtifactError(ScreencineError):
    """The encoder produced zero bytes."""


class SaveFailureError(ScreencineError):
    """Writing the artifact to the persistence store failed."""


class UnsupportedCodecError(ScreencineError):
    """No codec profile, including the platform default, could be opened."""


class ReceiverMissingError(ScreencineError):
    """No handler is attached to the addressed execution context."""


class ContextExistsError(ScreencineError):
    """The platform reports that the secondary context already exists."""


class UnknownMessageError(ScreencineError):
    """A message tag is not part of the cross-context protocol."""


class InvalidTransitionError(ScreencineError):
    """A session operation was called from a state that does not allow it."""


class ArtifactFormatError(ScreencineError, ValueError):
    """Persisted metadata could not be interpreted."""
