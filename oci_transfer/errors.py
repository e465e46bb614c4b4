#!/usr/bin/env python

# pylint: disable=too-few-public-methods

"""Error taxonomy for artifact transfers."""

from typing import Optional


class TransferError(Exception):
    """Base class for all transfer errors."""


class ValidationError(TransferError):
    """Invalid user input; fatal, never retried."""


class ArtifactNotFound(ValidationError):
    """The local artifact does not exist."""


class ArtifactIsDirectory(ValidationError):
    """The local artifact is a directory."""


class ArtifactEmpty(ValidationError):
    """The local artifact has no content."""


class UndeterminedMediaType(TransferError):
    """
    The media type of a local artifact could not be detected, and no hint was given.

    Never defaulted; a wrong media type corrupts registry semantics.
    """


class AuthorizationError(TransferError):
    """Authorization failure."""


class InvalidAuthorization(AuthorizationError):
    """
    The registry rejected the request as unauthorized after credentials were negotiated.

    Distinguished from all other transport failures to drive authorization escalation.
    """


class TransportError(TransferError):
    """Any other failure reported by the registry transport."""


class NotFound(TransportError):
    """The requested content does not exist in the registry."""


class AlreadyExists(TransportError):
    """The content being pushed is already present in the registry."""


class DigestMismatch(TransferError):
    """Content does not hash to the expected digest value."""

    def __init__(
        self,
        message: str,
        *,
        expected: Optional[str] = None,
        actual: Optional[str] = None,
    ):
        super().__init__(f"{message}: {actual} != {expected}")
        self.expected = expected
        self.actual = actual


class PushError(TransferError):
    """A push could not be completed."""


class FetchError(TransferError):
    """A fetch could not be completed."""
