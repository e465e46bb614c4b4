#!/usr/bin/env python

"""Class that provides parsing and formatting of registry references."""

import os

from typing import Optional

from .contenthash import ContentHash
from .specs import Indices
from .typing import ReferenceParseString


class Reference:
    """
    Registry reference abstraction: [endpoint/]repository[:tag][@digest].
    """

    DEFAULT_ENDPOINT = os.environ.get("OCIT_DEFAULT_REGISTRY", Indices.DOCKERHUB)
    DEFAULT_NAMESPACE = "library"
    DEFAULT_TAG = "latest"

    def __init__(
        self,
        repository: str,
        *,
        digest: Optional[ContentHash] = None,
        endpoint: Optional[str] = None,
        tag: Optional[str] = None,
    ):
        """
        Args:
            repository: Path of the repository, optionally including namespaces.
        Keyword Args:
            digest: Optional digest value.
            endpoint: Optional endpoint address (<hostname>[:<port>]).
            tag: Optional tag name.
        """
        if not repository or not repository.strip("/"):
            raise ValueError(f"Invalid repository: {repository}")
        self.digest = digest
        self.endpoint = endpoint.strip("/") if endpoint else None
        self.repository = repository.strip("/")
        self.tag = tag

    def __eq__(self, other):
        return str(self) == str(other)

    def __hash__(self):
        return hash(str(self))

    def __repr__(self):
        return f"Reference({str(self)!r})"

    def __str__(self):
        """Does not resolve component parts."""
        result = self.repository
        if self.tag:
            result = f"{result}:{self.tag}"
        if self.digest:
            result = f"{result}@{self.digest}"
        if self.endpoint:
            result = f"{self.endpoint}/{result}"
        return result

    @staticmethod
    def _parse_string(string: str) -> ReferenceParseString:
        """
        Parses the endpoint, repository, tag, and digest from a given string.

        Args:
            string: The string to be parsed.

        Returns:
            dict:
                digest: The digest value.
                endpoint: The registry endpoint; address with optional port.
                repository: The repository path.
                tag: The tag name.
        """
        if not string:
            raise ValueError(f"Unable to parse string: {string}")

        digest = None
        if "@" in string:
            string, _digest = string.split("@", 1)
            digest = ContentHash.parse(_digest)

        endpoint = None
        segments = string.split("/")
        # Assumption: endpoint addresses contain a '.' or ':', or are 'localhost'; namespaces do not.
        if len(segments) > 1 and (
            any(x in segments[0] for x in [":", "."]) or segments[0] == "localhost"
        ):
            endpoint = segments.pop(0)

        tag = None
        if ":" in segments[-1]:
            segments[-1], tag = segments[-1].split(":", 1)
            if not tag or ":" in tag:
                raise ValueError(f"Unable to parse string: {string}")

        repository = "/".join(segments)
        if not repository.strip("/"):
            raise ValueError(f"Unable to parse string: {string}")

        return ReferenceParseString(
            digest=digest, endpoint=endpoint, repository=repository, tag=tag
        )

    @staticmethod
    def parse(reference: str) -> "Reference":
        """
        Initializes a Reference from a given reference string.

        Args:
            reference: String containing the reference to be parsed.

        Returns:
            The newly initialized object.
        """
        parsed = Reference._parse_string(reference)
        return Reference(
            parsed.repository,
            digest=parsed.digest,
            endpoint=parsed.endpoint,
            tag=parsed.tag,
        )

    def resolve_endpoint(self) -> str:
        """Resolves the registry endpoint, as named by the user."""
        return self.endpoint if self.endpoint else Reference.DEFAULT_ENDPOINT

    def resolve_api_endpoint(self) -> str:
        """Resolves the address that serves the distribution API for the endpoint."""
        endpoint = self.resolve_endpoint()
        if endpoint in Indices.DOCKERHUB_ALIASES:
            return Indices.DOCKERHUB_API
        return endpoint

    def resolve_repository(self) -> str:
        """Resolves the repository path, including the implicit Docker Hub namespace."""
        if (
            self.resolve_endpoint() in Indices.DOCKERHUB_ALIASES
            and "/" not in self.repository
        ):
            return f"{Reference.DEFAULT_NAMESPACE}/{self.repository}"
        return self.repository

    def resolve_tag(self) -> str:
        """Resolves the tag name."""
        return self.tag if self.tag else Reference.DEFAULT_TAG

    def resolve_identifier(self) -> str:
        """Resolves the manifest identifier; the digest takes precedence over the tag."""
        if self.digest:
            return str(self.digest)
        return self.resolve_tag()
