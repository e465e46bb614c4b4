#!/usr/bin/env python

"""Content addressable hash values."""

import hashlib
import re

from typing import Dict


class ContentHash(str):
    """An algorithm prefixed digest value (e.g. sha256:<hex>)."""

    CANONICAL = "sha256"

    # Algorithm -> hex digest length
    ALGORITHMS = {"sha256": 64, "sha512": 128}  # type: Dict[str, int]

    def __new__(cls, value: str, *, algorithm: str = None):
        if not algorithm:
            algorithm = ContentHash.CANONICAL
        if value and ":" in value:
            algorithm, value = value.split(":", 1)
        length = ContentHash.ALGORITHMS.get(algorithm)
        if not value or length is None:
            raise ValueError(f"{algorithm}:{value}" if value else value)
        if not re.fullmatch(f"[0-9a-fA-F]{{{length}}}", value):
            raise ValueError(f"{algorithm}:{value}")
        obj = super().__new__(cls, f"{algorithm}:{value.lower()}")
        obj.algorithm = algorithm
        obj.value = value.lower()
        return obj

    @staticmethod
    def parse(digest: str) -> "ContentHash":
        """
        Initializes a ContentHash from a given textual digest value.

        Args:
            digest: A digest value in form <algorithm>:<digest value>.

        Returns:
            The newly initialized object.
        """
        if not digest or ":" not in digest:
            raise ValueError(digest)
        return ContentHash(digest)

    @staticmethod
    def calculate(data: bytes, *, algorithm: str = None) -> "ContentHash":
        """
        Calculates the digest value for given data.

        Args:
            data: The data for which to calculate the digest value.
            algorithm: The hash algorithm to use; defaults to the canonical algorithm.

        Returns:
            The ContentHash containing the corresponding digest value.
        """
        hasher = ContentHash.new_hasher(algorithm)
        hasher.update(data)
        return ContentHash.from_hasher(hasher)

    @staticmethod
    def from_hasher(hasher) -> "ContentHash":
        """
        Initializes a ContentHash from an in-progress hash accumulator.

        Args:
            hasher: A hashlib hash object.

        Returns:
            The ContentHash for the data accumulated so far.
        """
        return ContentHash(hasher.hexdigest(), algorithm=hasher.name)

    @staticmethod
    def new_hasher(algorithm: str = None):
        """Creates a hash accumulator for a given algorithm."""
        if not algorithm:
            algorithm = ContentHash.CANONICAL
        if algorithm not in ContentHash.ALGORITHMS:
            raise ValueError(f"Unsupported digest algorithm: {algorithm}")
        return hashlib.new(algorithm)

    @staticmethod
    def is_content_hash(value: str) -> bool:
        """Tests if a given string is a parsable digest value."""
        try:
            ContentHash.parse(value)
        except ValueError:
            return False
        return True
