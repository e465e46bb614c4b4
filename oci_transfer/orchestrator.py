#!/usr/bin/env python

"""Push and fetch workflows."""

import logging

from enum import Enum
from typing import Awaitable, Callable, List, Optional, TypeVar

from .authorizer import AdaptiveAuthorizer
from .contenthash import ContentHash
from .digestverifier import DigestVerifier, HashingGenerator
from .errors import (
    AlreadyExists,
    DigestMismatch,
    FetchError,
    InvalidAuthorization,
    NotFound,
    PushError,
    TransferError,
)
from .reference import Reference
from .registryclient import RegistryClient
from .specs import DockerAuthentication, OCIMediaTypes
from .typing import Descriptor
from .utils import copy_stream

LOGGER = logging.getLogger(__name__)

T = TypeVar("T")

# Bounded by construction; the second attempt is the manifest media type guess
MAX_FETCH_ATTEMPTS = 2


class TransferState(Enum):
    """Authorization escalation states of a single transfer."""

    RESOLVING = "resolving"
    FORCED_AUTH = "forced_auth"
    SCOPED_RETRY = "scoped_retry"
    DONE = "done"
    FAILED = "failed"


# State -> state entered when the registry rejects the authorization
ESCALATIONS = {
    TransferState.RESOLVING: TransferState.FORCED_AUTH,
    TransferState.FORCED_AUTH: TransferState.SCOPED_RETRY,
    TransferState.SCOPED_RETRY: TransferState.FAILED,
}


def get_scope(reference: Reference, *, plugin: bool = False) -> str:
    """
    Computes the authorization scope that covers pushing to and pulling from a repository.

    Args:
        reference: The reference naming the repository.
        plugin: If True, the repository is plugin-namespaced.

    Returns:
        The scope string.
    """
    if plugin:
        pattern = DockerAuthentication.SCOPE_REPOSITORY_PLUGIN_ALL_PATTERN
    else:
        pattern = DockerAuthentication.SCOPE_REPOSITORY_ALL_PATTERN
    return pattern.format(reference.resolve_repository())


class TransferOrchestrator:
    """
    Drives a single push or fetch against a registry, escalating authorization as required.
    """

    def __init__(
        self,
        client: RegistryClient,
        authorizer: AdaptiveAuthorizer,
        *,
        plugin: bool = False,
    ):
        """
        Args:
            client: Resolver capability for the registry.
            authorizer: The authorizer consulted by the client; shared for the duration of the transfer.
            plugin: If True, escalated scopes name a plugin-namespaced repository.
        """
        self.client = client
        self.authorizer = authorizer
        self.plugin = plugin

        self.scope = None  # type: Optional[str]
        self.state = TransferState.RESOLVING
        self.transitions = []  # type: List[TransferState]

    def _enter(self, state: TransferState):
        self.state = state
        self.transitions.append(state)

    def _fail(self):
        if self.state != TransferState.FAILED:
            self._enter(TransferState.FAILED)

    async def _authorized(
        self,
        reference: Reference,
        operation: Callable[[Optional[str]], Awaitable[T]],
        *,
        state: TransferState = TransferState.RESOLVING,
    ) -> T:
        """
        Invokes an operation, retrying with escalated authorization while it is rejected.

        Args:
            reference: The reference being transferred.
            operation: Coroutine function accepting the scope to attach to its requests.
            state: The initial escalation state.

        Returns:
            The result of the operation.
        """
        self._enter(state)
        while True:
            try:
                result = await operation(self.scope)
            except InvalidAuthorization as exception:
                self._enter(ESCALATIONS[self.state])
                if self.state == TransferState.FAILED:
                    raise
                if self.state == TransferState.FORCED_AUTH:
                    self.authorizer.force_auth()
                elif self.state == TransferState.SCOPED_RETRY:
                    self.scope = get_scope(reference, plugin=self.plugin)
                LOGGER.debug(
                    "Authorization rejected (%s); retrying as %s",
                    exception,
                    self.state.value,
                )
                continue
            self._enter(TransferState.DONE)
            return result

    async def push(
        self,
        reference: Reference,
        descriptor: Descriptor,
        file,
        *,
        file_is_async: bool = True,
    ):
        """
        Pushes content to the repository of a given reference.

        Pushing content that already exists is not an error; nothing is transferred.

        Args:
            reference: The reference to which to push.
            descriptor: The descriptor of the content.
            file: The file containing the content, positioned at the start.
            file_is_async: If True, all file IO operations will be awaited.
        """

        async def open_writer(scope: Optional[str]):
            return await self.client.pusher(reference, scope=scope).push(descriptor)

        # Push endpoints require authorization even for public repositories.
        self.authorizer.force_auth()
        try:
            writer = await self._authorized(
                reference, open_writer, state=TransferState.FORCED_AUTH
            )
        except AlreadyExists:
            LOGGER.info("Content already exists: %s", descriptor.digest)
            return
        except TransferError as exception:
            self._fail()
            raise PushError(f"push {reference}: {exception}") from exception

        try:
            async for chunk in HashingGenerator(file, file_is_async=file_is_async):
                await writer.write(chunk)
            await writer.commit(descriptor.size, descriptor.digest)
        except TransferError as exception:
            self._fail()
            raise PushError(f"commit {descriptor.digest}: {exception}") from exception
        LOGGER.info("Pushed %s to %s", descriptor.digest, reference)

    async def fetch(
        self,
        reference: Reference,
        file,
        *,
        digest: ContentHash = None,
        file_is_async: bool = True,
        media_type: str = None,
    ) -> Descriptor:
        """
        Fetches content from the repository of a given reference, and verifies it.

        The content is streamed to the file as it is received; verification happens
        once the stream is complete, so unverified bytes may already have been written.

        Args:
            reference: The reference from which to fetch.
            file: The file to which to write the content.
        Keyword Args:
            digest: Explicit digest of the content to fetch, instead of the referenced manifest.
            file_is_async: If True, all file IO operations will be awaited.
            media_type: Explicit media type of the content to fetch.

        Returns:
            The descriptor of the fetched content.
        """

        async def resolve(scope: Optional[str]) -> Descriptor:
            return await self.client.resolve(reference, scope=scope)

        try:
            descriptor = await self._authorized(reference, resolve)
        except TransferError as exception:
            self._fail()
            raise FetchError(f"resolve {reference}: {exception}") from exception

        if digest:
            descriptor = descriptor._replace(digest=digest, media_type=media_type or "")
        elif media_type:
            descriptor = descriptor.with_media_type(media_type)

        fetcher = self.client.fetcher(reference, scope=self.scope)
        for attempt in range(1, MAX_FETCH_ATTEMPTS + 1):
            verifier = DigestVerifier.for_digest(descriptor.digest)
            try:
                async with fetcher.fetch(descriptor) as chunks:
                    await copy_stream(
                        verifier.tee(chunks), file, file_is_async=file_is_async
                    )
            except NotFound as exception:
                if media_type or attempt == MAX_FETCH_ATTEMPTS:
                    self._fail()
                    raise FetchError(
                        f"fetch {descriptor.digest}: {exception}"
                    ) from exception
                LOGGER.debug(
                    "Not found as %r; retrying as a manifest", descriptor.media_type
                )
                descriptor = descriptor.with_media_type(
                    OCIMediaTypes.IMAGE_MANIFEST_V1
                )
                continue
            except TransferError as exception:
                self._fail()
                raise FetchError(f"fetch {descriptor.digest}: {exception}") from exception
            break

        try:
            verifier.verify(descriptor.digest, f"fetch {descriptor.digest}")
        except DigestMismatch:
            self._fail()
            raise
        LOGGER.info("Fetched %s from %s", descriptor.digest, reference)
        return descriptor
