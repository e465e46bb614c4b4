#!/usr/bin/env python

"""Incremental hashing of streamed content."""

from typing import AsyncIterator, Optional

from .contenthash import ContentHash
from .errors import DigestMismatch
from .utils import async_wrap, be_kind_rewind, CHUNK_SIZE


class DigestVerifier:
    """
    Accumulates a digest value over data as it is streamed.
    """

    def __init__(self, *, algorithm: str = None):
        """
        Args:
            algorithm: The hash algorithm to use; defaults to the canonical algorithm.
        """
        self.hasher = ContentHash.new_hasher(algorithm)
        self.size = 0

    @staticmethod
    def for_digest(digest: ContentHash) -> "DigestVerifier":
        """Initializes a verifier using the algorithm of a given digest value."""
        return DigestVerifier(algorithm=digest.algorithm)

    def update(self, chunk: bytes):
        """Feeds a chunk of data into the accumulator."""
        self.hasher.update(chunk)
        self.size += len(chunk)

    async def tee(self, chunks: AsyncIterator[bytes]) -> AsyncIterator[bytes]:
        """Yields the given chunks unmodified, hashing each one on the way through."""
        async for chunk in chunks:
            self.update(chunk)
            yield chunk

    async def digest_file(self, file, *, file_is_async: bool = True) -> ContentHash:
        """
        Hashes a file to completion, discarding the data, and rewinds it.

        Args:
            file: The file to be hashed.
            file_is_async: If True, all file IO operations will be awaited.

        Returns:
            The digest value of the file content.
        """
        async for _ in HashingGenerator(file, file_is_async=file_is_async, verifier=self):
            pass
        return self.get_digest()

    def get_digest(self) -> ContentHash:
        """Retrieves the digest value of the data accumulated so far."""
        return ContentHash.from_hasher(self.hasher)

    def get_size(self) -> int:
        """Retrieves the size (length) of the data accumulated so far."""
        return self.size

    def verify(self, expected: ContentHash, msg: str = "Content digest mismatch"):
        """
        Compares the accumulated digest value against an expected value.

        Args:
            expected: The expected digest value.
            msg: Message describing the context of the comparison.
        """
        actual = self.get_digest()
        if actual != expected:
            raise DigestMismatch(msg, expected=expected, actual=actual)


class HashingGenerator:
    """
    Generator that hashes the data it retrieves.
    """

    def __init__(
        self,
        file,
        *,
        file_is_async: bool = True,
        verifier: Optional[DigestVerifier] = None,
    ):
        """
        Args:
            file: The file from which to retrieve the file chunks.
            file_is_async: If True, all file IO operations will be awaited.
            verifier: The verifier into which the chunks are fed.
        """
        self.file = file
        self.file_is_async = file_is_async
        self.verifier = verifier if verifier else DigestVerifier()

    async def __aiter__(self):
        coroutine = self.file.read if self.file_is_async else async_wrap(self.file.read)
        while True:
            chunk = await coroutine(CHUNK_SIZE)
            if not chunk:
                break
            self.verifier.update(chunk)
            yield chunk

        await be_kind_rewind(self.file, file_is_async=self.file_is_async)

    def get_digest(self) -> ContentHash:
        """Retrieves the digest value of the read data."""
        return self.verifier.get_digest()

    def get_size(self) -> int:
        """Retrieves the size (length) of the read data."""
        return self.verifier.get_size()
