#!/usr/bin/env python

# pylint: disable=missing-class-docstring,too-few-public-methods

"""Typing classes."""

from enum import Enum
from typing import Any, NamedTuple, Optional

from .contenthash import ContentHash


class Compression(Enum):
    UNKNOWN = 0
    GZIP = 1


class AuthorizationOutcome(Enum):
    GRANTED = "granted"
    INVALID_AUTHORIZATION = "invalid_authorization"


class Credential(NamedTuple):
    username: str = ""
    password: str = ""

    def is_absent(self) -> bool:
        """A credential without a password is treated as no credential at all."""
        return not self.password


ABSENT_CREDENTIAL = Credential()


class Descriptor(NamedTuple):
    media_type: str
    digest: ContentHash
    size: int

    def with_media_type(self, media_type: str) -> "Descriptor":
        """Returns a copy of this descriptor with a narrowed media type."""
        return self._replace(media_type=media_type)


class DescriptorBuilderBuild(NamedTuple):
    descriptor: Descriptor
    file: Any


class ReferenceParseString(NamedTuple):
    digest: Optional[ContentHash]
    endpoint: Optional[str]
    repository: str
    tag: Optional[str]
