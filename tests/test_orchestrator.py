#!/usr/bin/env python

# pylint: disable=redefined-outer-name,too-few-public-methods

"""TransferOrchestrator tests."""

import io

from contextlib import asynccontextmanager
from pathlib import Path
from typing import Dict, List, Optional

import pytest

from oci_transfer import (
    AdaptiveAuthorizer,
    AlreadyExists,
    ContentHash,
    Descriptor,
    DigestMismatch,
    DockerConfigCredentialStore,
    FetchError,
    InvalidAuthorization,
    NotFound,
    OCIMediaTypes,
    PushError,
    Reference,
    TransferOrchestrator,
    TransferState,
    TransportError,
    get_scope,
)
from oci_transfer.typing import AuthorizationOutcome

pytestmark = [pytest.mark.asyncio]

DATA = b"layer content"


class FakeWriter:
    """Writer that records what was written and committed."""

    def __init__(self, *, commit_error: Exception = None):
        self.chunks = []  # type: List[bytes]
        self.commit_error = commit_error
        self.committed = None

    async def write(self, chunk: bytes):
        self.chunks.append(chunk)

    async def commit(self, size: int, digest: ContentHash):
        if self.commit_error:
            raise self.commit_error
        self.committed = (size, digest)


class FakeClient:
    """
    Resolver capability whose operations fail with queued errors before succeeding.

    Each error queue is consumed one entry per call.
    """

    def __init__(
        self,
        *,
        authorizer: AdaptiveAuthorizer,
        content: Dict[str, bytes] = None,
        descriptor: Descriptor = None,
        fetch_errors: List[Exception] = None,
        push_errors: List[Exception] = None,
        resolve_errors: List[Exception] = None,
        writer: FakeWriter = None,
    ):
        self.authorizer = authorizer
        self.content = content or {}
        self.descriptor = descriptor
        self.fetch_errors = fetch_errors or []
        self.push_errors = push_errors or []
        self.resolve_errors = resolve_errors or []
        self.writer = writer or FakeWriter()

        self.fetches = []  # type: List[Descriptor]
        self.push_scopes = []  # type: List[Optional[str]]
        self.resolve_scopes = []  # type: List[Optional[str]]

    def _raise(self, errors: List[Exception]):
        if errors:
            error = errors.pop(0)
            if isinstance(error, InvalidAuthorization):
                self.authorizer.record_outcome(
                    AuthorizationOutcome.INVALID_AUTHORIZATION
                )
            raise error

    async def resolve(self, reference: Reference, *, scope: str = None) -> Descriptor:
        # pylint: disable=unused-argument
        self.resolve_scopes.append(scope)
        self._raise(self.resolve_errors)
        return self.descriptor

    def fetcher(self, reference: Reference, *, scope: str = None) -> "FakeClient":
        # pylint: disable=unused-argument
        return self

    @asynccontextmanager
    async def fetch(self, descriptor: Descriptor):
        self.fetches.append(descriptor)
        self._raise(self.fetch_errors)

        async def chunks():
            yield self.content[descriptor.media_type]

        yield chunks()

    def pusher(self, reference: Reference, *, scope: str = None) -> "FakeClient":
        # pylint: disable=unused-argument
        self.push_scopes.append(scope)
        return self

    async def push(self, descriptor: Descriptor) -> FakeWriter:
        # pylint: disable=unused-argument
        self._raise(self.push_errors)
        return self.writer


@pytest.fixture
def authorizer(tmp_path: Path) -> AdaptiveAuthorizer:
    """Provides an authorizer without stored credentials."""
    return AdaptiveAuthorizer(
        credential_store=DockerConfigCredentialStore(tmp_path.joinpath("config.json"))
    )


@pytest.fixture
def reference() -> Reference:
    """Provides a reference to a registry repository."""
    return Reference.parse("registry.example.com/ns/app:1.0")


@pytest.fixture
def descriptor() -> Descriptor:
    """Provides the descriptor of the test content."""
    return Descriptor(
        media_type=OCIMediaTypes.IMAGE_LAYER_GZIP_V1,
        digest=ContentHash.calculate(DATA),
        size=len(DATA),
    )


def rejected() -> InvalidAuthorization:
    """Returns an authorization rejection."""
    return InvalidAuthorization("401 authorization rejected")


@pytest.mark.parametrize(
    "plugin,expected",
    [
        (False, "repository:ns/app:pull,push"),
        (True, "repository(plugin):ns/app:pull,push"),
    ],
)
def test_get_scope(reference: Reference, plugin: bool, expected: str):
    """Test that the scope names the resolved repository, plugin-namespaced on request."""
    assert get_scope(reference, plugin=plugin) == expected
    assert (
        get_scope(Reference.parse("busybox"), plugin=plugin)
        == expected.replace("ns/app", "library/busybox")
    )


async def test_push(
    authorizer: AdaptiveAuthorizer, descriptor: Descriptor, reference: Reference
):
    """Test that content is streamed to the writer and committed."""
    client = FakeClient(authorizer=authorizer)
    orchestrator = TransferOrchestrator(client, authorizer)

    await orchestrator.push(reference, descriptor, io.BytesIO(DATA), file_is_async=False)
    assert b"".join(client.writer.chunks) == DATA
    assert client.writer.committed == (descriptor.size, descriptor.digest)
    assert client.push_scopes == [None]
    assert orchestrator.transitions == [TransferState.FORCED_AUTH, TransferState.DONE]


async def test_push_forces_auth(
    authorizer: AdaptiveAuthorizer, descriptor: Descriptor, reference: Reference
):
    """Test that pushes start with authorization forced."""
    client = FakeClient(authorizer=authorizer)
    await TransferOrchestrator(client, authorizer).push(
        reference, descriptor, io.BytesIO(DATA), file_is_async=False
    )
    assert authorizer.last_outcome == AuthorizationOutcome.INVALID_AUTHORIZATION


async def test_push_already_exists(
    authorizer: AdaptiveAuthorizer, descriptor: Descriptor, reference: Reference
):
    """Test that existing content is not an error, and nothing is transferred."""
    client = FakeClient(
        authorizer=authorizer, push_errors=[AlreadyExists("already exists")]
    )
    await TransferOrchestrator(client, authorizer).push(
        reference, descriptor, io.BytesIO(DATA), file_is_async=False
    )
    assert not client.writer.chunks
    assert client.writer.committed is None


@pytest.mark.parametrize("plugin", [False, True])
async def test_push_scoped_retry(
    authorizer: AdaptiveAuthorizer,
    descriptor: Descriptor,
    plugin: bool,
    reference: Reference,
):
    """Test that a rejected push is retried exactly once, with an explicit scope."""
    client = FakeClient(authorizer=authorizer, push_errors=[rejected()])
    orchestrator = TransferOrchestrator(client, authorizer, plugin=plugin)

    await orchestrator.push(reference, descriptor, io.BytesIO(DATA), file_is_async=False)
    assert client.push_scopes == [None, get_scope(reference, plugin=plugin)]
    assert client.writer.committed
    assert orchestrator.transitions == [
        TransferState.FORCED_AUTH,
        TransferState.SCOPED_RETRY,
        TransferState.DONE,
    ]


async def test_push_rejected(
    authorizer: AdaptiveAuthorizer, descriptor: Descriptor, reference: Reference
):
    """Test that there is no third push attempt."""
    client = FakeClient(
        authorizer=authorizer, push_errors=[rejected(), rejected(), rejected()]
    )
    orchestrator = TransferOrchestrator(client, authorizer)

    with pytest.raises(PushError) as exc_info:
        await orchestrator.push(
            reference, descriptor, io.BytesIO(DATA), file_is_async=False
        )
    assert isinstance(exc_info.value.__cause__, InvalidAuthorization)
    assert str(exc_info.value).startswith("push ")
    assert len(client.push_scopes) == 2
    assert orchestrator.state == TransferState.FAILED
    assert orchestrator.transitions.count(TransferState.FAILED) == 1


async def test_push_commit_error(
    authorizer: AdaptiveAuthorizer, descriptor: Descriptor, reference: Reference
):
    """Test that commit failures are reported in the context of the commit."""
    writer = FakeWriter(commit_error=TransportError("PUT: 400 Bad Request"))
    client = FakeClient(authorizer=authorizer, writer=writer)

    with pytest.raises(PushError) as exc_info:
        await TransferOrchestrator(client, authorizer).push(
            reference, descriptor, io.BytesIO(DATA), file_is_async=False
        )
    assert str(exc_info.value).startswith(f"commit {descriptor.digest}")


async def test_fetch(
    authorizer: AdaptiveAuthorizer, descriptor: Descriptor, reference: Reference
):
    """Test that resolved content is streamed to the file and verified."""
    client = FakeClient(
        authorizer=authorizer,
        content={descriptor.media_type: DATA},
        descriptor=descriptor,
    )
    orchestrator = TransferOrchestrator(client, authorizer)
    bytesio = io.BytesIO()

    result = await orchestrator.fetch(reference, bytesio, file_is_async=False)
    assert result == descriptor
    assert bytesio.getvalue() == DATA
    assert orchestrator.transitions == [TransferState.RESOLVING, TransferState.DONE]


async def test_fetch_resolve_escalation(
    authorizer: AdaptiveAuthorizer, descriptor: Descriptor, reference: Reference
):
    """Test that resolution escalates through forced and scoped authorization."""
    client = FakeClient(
        authorizer=authorizer,
        content={descriptor.media_type: DATA},
        descriptor=descriptor,
        resolve_errors=[rejected(), rejected()],
    )
    orchestrator = TransferOrchestrator(client, authorizer)

    await orchestrator.fetch(reference, io.BytesIO(), file_is_async=False)
    scope = get_scope(reference)
    assert client.resolve_scopes == [None, None, scope]
    assert orchestrator.transitions == [
        TransferState.RESOLVING,
        TransferState.FORCED_AUTH,
        TransferState.SCOPED_RETRY,
        TransferState.DONE,
    ]


async def test_fetch_resolve_rejected(
    authorizer: AdaptiveAuthorizer, descriptor: Descriptor, reference: Reference
):
    """Test that resolution is attempted exactly three times."""
    client = FakeClient(
        authorizer=authorizer,
        descriptor=descriptor,
        resolve_errors=[rejected() for _ in range(4)],
    )
    orchestrator = TransferOrchestrator(client, authorizer)

    with pytest.raises(FetchError) as exc_info:
        await orchestrator.fetch(reference, io.BytesIO(), file_is_async=False)
    assert str(exc_info.value).startswith(f"resolve {reference}")
    assert len(client.resolve_scopes) == 3
    assert orchestrator.state == TransferState.FAILED


async def test_fetch_digest(
    authorizer: AdaptiveAuthorizer, descriptor: Descriptor, reference: Reference
):
    """Test that an explicit digest overrides the resolved descriptor."""
    digest = ContentHash.calculate(DATA)
    client = FakeClient(
        authorizer=authorizer,
        content={"": DATA},
        descriptor=descriptor._replace(digest=ContentHash("b" * 64)),
    )
    bytesio = io.BytesIO()

    result = await TransferOrchestrator(client, authorizer).fetch(
        reference, bytesio, digest=digest, file_is_async=False
    )
    assert result.digest == digest
    assert result.media_type == ""
    assert client.fetches[0].digest == digest
    assert bytesio.getvalue() == DATA


async def test_fetch_media_type(
    authorizer: AdaptiveAuthorizer, descriptor: Descriptor, reference: Reference
):
    """Test that an explicit media type narrows the resolved descriptor."""
    media_type = OCIMediaTypes.IMAGE_INDEX_V1
    client = FakeClient(
        authorizer=authorizer, content={media_type: DATA}, descriptor=descriptor
    )

    result = await TransferOrchestrator(client, authorizer).fetch(
        reference, io.BytesIO(), file_is_async=False, media_type=media_type
    )
    assert result.media_type == media_type
    assert result.digest == descriptor.digest


async def test_fetch_manifest_fallback(
    authorizer: AdaptiveAuthorizer, descriptor: Descriptor, reference: Reference
):
    """Test that content that is not found is retried once as a manifest."""
    digest = ContentHash.calculate(DATA)
    client = FakeClient(
        authorizer=authorizer,
        content={OCIMediaTypes.IMAGE_MANIFEST_V1: DATA},
        descriptor=descriptor,
        fetch_errors=[NotFound("not found")],
    )
    bytesio = io.BytesIO()

    result = await TransferOrchestrator(client, authorizer).fetch(
        reference, bytesio, digest=digest, file_is_async=False
    )
    assert [fetch.media_type for fetch in client.fetches] == [
        "",
        OCIMediaTypes.IMAGE_MANIFEST_V1,
    ]
    assert result.media_type == OCIMediaTypes.IMAGE_MANIFEST_V1
    assert bytesio.getvalue() == DATA


async def test_fetch_not_found(
    authorizer: AdaptiveAuthorizer, descriptor: Descriptor, reference: Reference
):
    """Test that content that is not found as a manifest either is fatal."""
    client = FakeClient(
        authorizer=authorizer,
        descriptor=descriptor,
        fetch_errors=[NotFound("not found"), NotFound("not found")],
    )
    orchestrator = TransferOrchestrator(client, authorizer)

    with pytest.raises(FetchError) as exc_info:
        await orchestrator.fetch(reference, io.BytesIO(), file_is_async=False)
    assert isinstance(exc_info.value.__cause__, NotFound)
    assert len(client.fetches) == 2
    assert orchestrator.state == TransferState.FAILED


async def test_fetch_not_found_media_type(
    authorizer: AdaptiveAuthorizer, descriptor: Descriptor, reference: Reference
):
    """Test that there is no fallback when the media type was given explicitly."""
    client = FakeClient(
        authorizer=authorizer,
        descriptor=descriptor,
        fetch_errors=[NotFound("not found")],
    )

    with pytest.raises(FetchError):
        await TransferOrchestrator(client, authorizer).fetch(
            reference,
            io.BytesIO(),
            file_is_async=False,
            media_type=OCIMediaTypes.IMAGE_INDEX_V1,
        )
    assert len(client.fetches) == 1


async def test_fetch_digest_mismatch(
    authorizer: AdaptiveAuthorizer, descriptor: Descriptor, reference: Reference
):
    """Test that content that does not hash to the expected digest is rejected after streaming."""
    expected = ContentHash("a" * 64)
    client = FakeClient(
        authorizer=authorizer,
        content={"": b"unexpected"},
        descriptor=descriptor,
    )
    orchestrator = TransferOrchestrator(client, authorizer)
    bytesio = io.BytesIO()

    with pytest.raises(DigestMismatch) as exc_info:
        await orchestrator.fetch(
            reference, bytesio, digest=expected, file_is_async=False
        )
    assert exc_info.value.expected == expected
    assert exc_info.value.actual == ContentHash.calculate(b"unexpected")
    assert bytesio.getvalue() == b"unexpected"
    assert orchestrator.state == TransferState.FAILED
