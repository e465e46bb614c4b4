#!/usr/bin/env python

# pylint: disable=too-many-arguments

"""AIOHTTP based OCI distribution transport."""

import abc
import json
import logging
import os

from contextlib import asynccontextmanager
from http import HTTPStatus
from ssl import create_default_context, SSLContext
from typing import AsyncIterator, Dict, Optional, Tuple, Union
from urllib.parse import urljoin, urlparse

import www_authenticate

from aiohttp import (
    AsyncResolver,
    BasicAuth,
    ClientError,
    ClientResponse,
    ClientSession,
    Fingerprint,
    TCPConnector,
    hdrs,
)
from aiohttp.typedefs import LooseHeaders

from .authorizer import AdaptiveAuthorizer
from .contenthash import ContentHash
from .digestverifier import DigestVerifier
from .errors import (
    AlreadyExists,
    DigestMismatch,
    InvalidAuthorization,
    NotFound,
    TransportError,
    ValidationError,
)
from .reference import Reference
from .specs import (
    DockerAuthentication,
    MANIFEST_MEDIA_TYPES,
    MediaTypes,
    OAUTH2_CLIENT_ID,
)
from .typing import AuthorizationOutcome, Descriptor
from .utils import CHUNK_SIZE, must_be_equal

LOGGER = logging.getLogger(__name__)


class RegistryClient:
    # pylint: disable=too-many-instance-attributes
    """
    Resolver capability for an OCI distribution registry.

    Turns references into descriptors, and hands out fetchers and pushers that
    read and write content for a reference. Authorization challenges are answered
    with credentials supplied by an AdaptiveAuthorizer.
    """

    DEBUG = os.environ.get("OCIT_DEBUG", "")
    DEFAULT_MEDIA_TYPES_MANIFEST = ",".join(MANIFEST_MEDIA_TYPES)
    DEFAULT_PROTOCOL = os.environ.get("OCIT_DEFAULT_PROTOCOL", "https")

    def __init__(
        self,
        *,
        authorizer: AdaptiveAuthorizer,
        client_session: ClientSession = None,
        client_session_kwargs: Dict = None,
        no_proxy: str = None,
        protocol: str = None,
        proxies: Dict[str, str] = None,
        proxy_auth: BasicAuth = None,
        resolver_kwargs: Dict = None,
        ssl: Union[None, bool, Fingerprint, SSLContext] = None,
        tcp_connector_kwargs: Dict = None,
    ):
        """
        Args:
            authorizer: Supplies credentials when the registry issues a challenge.
            client_session: The underlying client session to use when making connections.
            client_session_kwargs: Arguments to be passed to the client session.
            no_proxy: A comma separated list of domains to exclude from proxying.
            protocol: Protocol to use when connecting to endpoints (http or https).
            proxies: Mapping of protocols to proxy urls, optionally including credentials.
            proxy_auth: The credentials to use when proxying.
            resolver_kwargs: Arguments to be passed to the resolver.
            ssl: SSL context.
            tcp_connector_kwargs: Arguments to be passed to the TCP connector.
        """
        if not proxies:
            proxies = {}
        http_proxy = os.environ.get("HTTP_PROXY", os.environ.get("http_proxy"))
        if http_proxy and "http" not in proxies:
            proxies["http"] = http_proxy
        https_proxy = os.environ.get("HTTPS_PROXY", os.environ.get("https_proxy"))
        if https_proxy and "https" not in proxies:
            proxies["https"] = https_proxy
        if not no_proxy:
            no_proxy = os.environ.get("NO_PROXY", os.environ.get("no_proxy"))
        if ssl is None:
            cacerts = os.environ.get("OCIT_CACERTS", None)
            if cacerts:
                if RegistryClient.DEBUG:
                    LOGGER.debug("Using cacerts: %s", cacerts)
                ssl = create_default_context(cafile=str(cacerts))
            else:
                ssl = True

        self.authorizer = authorizer
        self.client_session = client_session
        self.client_session_kwargs = client_session_kwargs or {}
        self.protocol = protocol or RegistryClient.DEFAULT_PROTOCOL
        self.proxies = proxies
        self.proxy_auth = proxy_auth
        self.proxy_no = no_proxy.split(",") if no_proxy else []
        self.resolver_kwargs = resolver_kwargs or {}
        self.ssl = ssl
        self.tcp_connector_kwargs = tcp_connector_kwargs or {}
        # (endpoint, scope) -> Authorization header value
        self.authorizations = {}  # type: Dict[Tuple[str, str], str]

    async def __aenter__(self) -> "RegistryClient":
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.close()

    async def close(self):
        """Gracefully closes this instance."""
        if self.client_session:
            await self.client_session.close()
        self.client_session = None

    async def _get_client_session(self) -> ClientSession:
        """
        Initializes and / or retrieves an AIOHTTP client session.

        Returns:
            The AIOHTTP client session.
        """
        if not self.client_session:
            if "resolver" not in self.tcp_connector_kwargs:
                self.tcp_connector_kwargs["resolver"] = AsyncResolver(
                    **self.resolver_kwargs
                )
            if "ssl" not in self.tcp_connector_kwargs:
                self.tcp_connector_kwargs["ssl"] = self.ssl
            if "connector" not in self.client_session_kwargs:
                self.client_session_kwargs["connector"] = TCPConnector(
                    **self.tcp_connector_kwargs
                )
            self.client_session = ClientSession(**self.client_session_kwargs)

        return self.client_session

    def _get_proxy(self, *, endpoint: str) -> Optional[str]:
        """
        Retrieves the proxy configuration for a given endpoint.

        Args:
            endpoint: The endpoint for which to retrieve the proxy configuration.
        """
        result = None
        if endpoint not in self.proxy_no and self.protocol in self.proxies:
            result = self.proxies[self.protocol]
        return result

    def _get_url(self, reference: Reference, path: str) -> str:
        return (
            f"{self.protocol}://{reference.resolve_api_endpoint()}/v2/"
            f"{reference.resolve_repository()}/{path}"
        )

    @staticmethod
    def _raise_for_status(client_response: ClientResponse, what: str):
        """
        Maps unsuccessful responses onto the transport error taxonomy.

        Args:
            client_response: The response to be checked.
            what: Description of the request, for error messages.
        """
        if client_response.status == HTTPStatus.NOT_FOUND:
            raise NotFound(f"{what}: not found")
        if client_response.status >= HTTPStatus.BAD_REQUEST:
            raise TransportError(
                f"{what}: {client_response.status} {client_response.reason}"
            )

    async def _send(
        self, method: str, url: str, *, headers: LooseHeaders, **kwargs
    ) -> ClientResponse:
        client_session = await self._get_client_session()
        endpoint = urlparse(url).netloc
        try:
            return await client_session.request(
                method,
                url,
                headers=headers,
                proxy=self._get_proxy(endpoint=endpoint),
                proxy_auth=self.proxy_auth,
                ssl=self.ssl,
                **kwargs,
            )
        except ClientError as exception:
            raise TransportError(f"{method} {url}: {exception}") from exception

    @staticmethod
    async def _iter_chunks(
        client_response: ClientResponse, what: str
    ) -> AsyncIterator[bytes]:
        try:
            async for chunk in client_response.content.iter_chunked(CHUNK_SIZE):
                yield chunk
        except ClientError as exception:
            raise TransportError(f"{what}: {exception}") from exception

    @staticmethod
    def _get_digest(
        client_response: ClientResponse, what: str
    ) -> Optional[ContentHash]:
        """Retrieves the digest value reported by the registry, if any."""
        digest = client_response.headers.get("Docker-Content-Digest", None)
        if not digest:
            return None
        try:
            return ContentHash.parse(digest)
        except ValueError as exception:
            raise TransportError(f"{what}: malformed digest: {digest}") from exception

    def _reject(self, what: str, status: int = HTTPStatus.UNAUTHORIZED):
        self.authorizer.record_outcome(AuthorizationOutcome.INVALID_AUTHORIZATION)
        raise InvalidAuthorization(f"{what}: {int(status)} authorization rejected")

    async def _get_auth_token(
        self, *, bearer, endpoint: str, scope: Optional[str], what: str
    ) -> str:
        """
        Retrieves a bearer token from the authorization endpoint named in a challenge.

        Args:
            bearer: The parsed bearer challenge parameters.
            endpoint: Registry endpoint that issued the challenge.
            scope: The scope of the auth token.
            what: Description of the challenged request, for error messages.

        Returns:
            The corresponding bearer token.
        """
        # https://github.com/docker/distribution/blob/master/docs/spec/auth/token.md
        credential = await self.authorizer.get_credentials(endpoint)
        headers = {}
        if not credential.is_absent():
            headers[hdrs.AUTHORIZATION] = BasicAuth(
                credential.username, credential.password
            ).encode()
        params = {"client_id": OAUTH2_CLIENT_ID}
        if "service" in bearer:
            params["service"] = bearer["service"]
        if scope:
            params["scope"] = scope

        async with await self._send(
            hdrs.METH_GET, bearer["realm"], headers=headers, params=params
        ) as client_response:
            if client_response.status in [HTTPStatus.UNAUTHORIZED, HTTPStatus.FORBIDDEN]:
                self._reject(what, client_response.status)
            RegistryClient._raise_for_status(client_response, f"token {bearer['realm']}")
            try:
                payload = await client_response.json(content_type=None)
            except ValueError as exception:
                raise TransportError(
                    f"token {bearer['realm']}: malformed response"
                ) from exception
        token = payload.get("token", payload.get("access_token"))
        if not token:
            raise TransportError(f"token {bearer['realm']}: no token issued")
        return token

    async def _get_authorization(
        self, *, challenge: str, endpoint: str, scope: Optional[str], what: str
    ) -> str:
        """
        Answers an authorization challenge.

        Args:
            challenge: The "Www-Authenticate" response header.
            endpoint: Registry endpoint that issued the challenge.
            scope: Explicit scope; overrides the scope named in the challenge.
            what: Description of the challenged request, for error messages.

        Returns:
            The "Authorization" request header value.
        """
        auth_params = www_authenticate.parse(challenge)
        if "bearer" in auth_params:
            bearer = auth_params["bearer"]
            if not scope:
                scope = bearer.get("scope", None)
            token = await self._get_auth_token(
                bearer=bearer, endpoint=endpoint, scope=scope, what=what
            )
            return f"Bearer {token}"

        if "basic" in auth_params:
            credential = await self.authorizer.get_credentials(endpoint)
            if credential.is_absent():
                self._reject(what)
            return BasicAuth(credential.username, credential.password).encode()

        raise TransportError(f"{what}: unsupported challenge: {challenge}")

    async def _request(
        self,
        method: str,
        reference: Reference,
        url: str,
        *,
        default_scope: str,
        headers: LooseHeaders = None,
        scope: str = None,
        **kwargs,
    ) -> ClientResponse:
        """
        Sends a request, answering at most one authorization challenge.

        Args:
            method: The HTTP method.
            reference: The reference being operated on.
            url: The request url.
            default_scope: Scope under which the resulting authorization is cached.
            headers: Optional supplemental request headers.
            scope: Explicit scope; overrides the scope named in a challenge.

        Returns:
            The underlying client response; the caller is responsible for releasing it.
        """
        endpoint = reference.resolve_api_endpoint()
        what = f"{method} {url}"
        headers = dict(headers) if headers else {}
        if hdrs.USER_AGENT not in headers:
            # Note: This cannot be imported above, as it causes a circular import!
            from . import __version__  # pylint: disable=import-outside-toplevel

            headers[hdrs.USER_AGENT] = f"oci-transfer/{__version__}"

        key = (endpoint, scope or default_scope)
        if key in self.authorizations:
            headers[hdrs.AUTHORIZATION] = self.authorizations[key]

        if RegistryClient.DEBUG:
            LOGGER.debug("%s", what)
        client_response = await self._send(method, url, headers=headers, **kwargs)
        if client_response.status == HTTPStatus.FORBIDDEN:
            client_response.release()
            self._reject(what, client_response.status)
        if client_response.status != HTTPStatus.UNAUTHORIZED:
            return client_response

        challenge = client_response.headers.get(hdrs.WWW_AUTHENTICATE)
        client_response.release()
        self.authorizations.pop(key, None)
        if not challenge:
            self._reject(what)

        authorization = await self._get_authorization(
            challenge=challenge, endpoint=endpoint, scope=scope, what=what
        )
        headers[hdrs.AUTHORIZATION] = authorization
        if RegistryClient.DEBUG:
            LOGGER.debug("%s (authorized)", what)
        client_response = await self._send(method, url, headers=headers, **kwargs)
        if client_response.status in [HTTPStatus.UNAUTHORIZED, HTTPStatus.FORBIDDEN]:
            client_response.release()
            self._reject(what, client_response.status)

        self.authorizations[key] = authorization
        self.authorizer.record_outcome(AuthorizationOutcome.GRANTED)
        return client_response

    async def resolve(self, reference: Reference, *, scope: str = None) -> Descriptor:
        """
        Resolves a reference to the descriptor of the manifest it names.

        Args:
            reference: The reference to be resolved.
        Keyword Args:
            scope: Explicit authorization scope.

        Returns:
            The descriptor of the referenced manifest.
        """
        url = self._get_url(reference, f"manifests/{reference.resolve_identifier()}")
        default_scope = DockerAuthentication.SCOPE_REPOSITORY_PULL_PATTERN.format(
            reference.resolve_repository()
        )
        headers = {hdrs.ACCEPT: RegistryClient.DEFAULT_MEDIA_TYPES_MANIFEST}
        for method in [hdrs.METH_HEAD, hdrs.METH_GET]:
            client_response = await self._request(
                method,
                reference,
                url,
                default_scope=default_scope,
                headers=headers,
                scope=scope,
            )
            async with client_response:
                RegistryClient._raise_for_status(client_response, f"{method} {url}")
                media_type = (
                    client_response.headers.get(hdrs.CONTENT_TYPE, "")
                    .split(";")[0]
                    .strip()
                )
                digest = RegistryClient._get_digest(client_response, f"{method} {url}")
                digest = digest if digest else reference.digest
                size = client_response.headers.get(hdrs.CONTENT_LENGTH, None)
                if method == hdrs.METH_GET:
                    data = await client_response.read()
                    digest = digest if digest else ContentHash.calculate(data)
                    size = len(data)
            if digest and size is not None:
                break

        descriptor = Descriptor(media_type=media_type, digest=digest, size=int(size))
        LOGGER.debug("Resolved %s: %s", reference, descriptor)
        return descriptor

    def fetcher(self, reference: Reference, *, scope: str = None) -> "RegistryFetcher":
        """Retrieves a fetcher for content within the repository of a given reference."""
        return RegistryFetcher(self, reference, scope=scope)

    def pusher(self, reference: Reference, *, scope: str = None) -> "RegistryPusher":
        """Retrieves a pusher for content within the repository of a given reference."""
        return RegistryPusher(self, reference, scope=scope)


class RegistryFetcher:
    """
    Opens read streams for descriptors within a repository.
    """

    def __init__(self, client: RegistryClient, reference: Reference, *, scope: str = None):
        self.client = client
        self.reference = reference
        self.scope = scope

    @asynccontextmanager
    async def fetch(self, descriptor: Descriptor) -> AsyncIterator[AsyncIterator[bytes]]:
        """
        Opens a read stream for a given descriptor.

        Manifests are read from the manifests endpoint, everything else from the blobs endpoint.

        Args:
            descriptor: The descriptor of the content to be read.

        Returns:
            An asynchronous iterator of content chunks.
        """
        if descriptor.media_type in MANIFEST_MEDIA_TYPES:
            path = f"manifests/{descriptor.digest}"
            accept = descriptor.media_type
        else:
            path = f"blobs/{descriptor.digest}"
            accept = descriptor.media_type or "*/*"
        url = self.client._get_url(self.reference, path)
        client_response = await self.client._request(
            hdrs.METH_GET,
            self.reference,
            url,
            allow_redirects=True,
            default_scope=DockerAuthentication.SCOPE_REPOSITORY_PULL_PATTERN.format(
                self.reference.resolve_repository()
            ),
            headers={hdrs.ACCEPT: accept},
            scope=self.scope,
        )
        try:
            RegistryClient._raise_for_status(client_response, f"GET {url}")
            yield RegistryClient._iter_chunks(client_response, f"GET {url}")
        finally:
            client_response.release()


class RegistryPusher:
    """
    Opens write streams for descriptors within a repository.
    """

    def __init__(self, client: RegistryClient, reference: Reference, *, scope: str = None):
        self.client = client
        self.reference = reference
        self.scope = scope
        self.default_scope = DockerAuthentication.SCOPE_REPOSITORY_ALL_PATTERN.format(
            reference.resolve_repository()
        )

    async def request(self, method: str, url: str, **kwargs) -> ClientResponse:
        """Sends a request within the push scope of the repository."""
        return await self.client._request(
            method,
            self.reference,
            url,
            default_scope=self.default_scope,
            scope=self.scope,
            **kwargs,
        )

    def _get_manifest_identifier(self, descriptor: Descriptor) -> str:
        if self.reference.tag:
            return self.reference.tag
        if self.reference.digest:
            return str(descriptor.digest)
        return self.reference.resolve_tag()

    async def push(self, descriptor: Descriptor) -> "RegistryWriter":
        """
        Opens a write stream for a given descriptor.

        Args:
            descriptor: The descriptor of the content to be written.

        Returns:
            The writer to which the content is to be written, and then committed.
        """
        if descriptor.media_type in MANIFEST_MEDIA_TYPES:
            identifier = self._get_manifest_identifier(descriptor)
            url = self.client._get_url(self.reference, f"manifests/{identifier}")
            async with await self.request(
                hdrs.METH_HEAD, url, headers={hdrs.ACCEPT: descriptor.media_type}
            ) as client_response:
                existing = client_response.headers.get("Docker-Content-Digest", None)
                if client_response.status == HTTPStatus.OK and existing == descriptor.digest:
                    raise AlreadyExists(f"{descriptor.digest}: already exists")
            return RegistryManifestWriter(self, url, descriptor)

        url = self.client._get_url(self.reference, f"blobs/{descriptor.digest}")
        async with await self.request(hdrs.METH_HEAD, url) as client_response:
            if client_response.status == HTTPStatus.OK:
                raise AlreadyExists(f"{descriptor.digest}: already exists")

        url = self.client._get_url(self.reference, "blobs/uploads/")
        async with await self.request(
            hdrs.METH_POST, url
        ) as client_response:
            RegistryClient._raise_for_status(client_response, f"POST {url}")
            location = client_response.headers.get(hdrs.LOCATION, None)
            if not location:
                raise TransportError(f"POST {url}: no upload location issued")
            location = urljoin(url, location)
        return RegistryBlobWriter(self, location, descriptor)


class RegistryWriter(abc.ABC):
    """
    Write stream for a single descriptor; content is written, then committed.
    """

    def __init__(self, pusher: RegistryPusher, location: str, descriptor: Descriptor):
        self.pusher = pusher
        self.location = location
        self.descriptor = descriptor
        self.verifier = DigestVerifier.for_digest(descriptor.digest)

    @abc.abstractmethod
    async def write(self, chunk: bytes):
        """Writes a chunk of content."""

    @abc.abstractmethod
    async def commit(self, size: int, digest: ContentHash):
        """
        Completes the write, verifying that the written content has the given size and digest.

        Args:
            size: The expected size of the written content.
            digest: The expected digest of the written content.
        """

    def _verify(self, size: int, digest: ContentHash):
        must_be_equal(
            size,
            self.verifier.get_size(),
            f"{self.location}: written size is inconsistent",
            error_type=TransportError,
        )
        self.verifier.verify(digest, f"{self.location}: written digest is inconsistent")

    def _verify_remote(self, client_response: ClientResponse, digest: ContentHash):
        remote = RegistryClient._get_digest(client_response, f"PUT {self.location}")
        if remote and remote != digest:
            raise DigestMismatch(
                "Remote and local digests are inconsistent",
                expected=digest,
                actual=remote,
            )


class RegistryBlobWriter(RegistryWriter):
    """
    Blob write stream; each chunk is uploaded as it is written.
    """

    async def write(self, chunk: bytes):
        offset = self.verifier.get_size()
        headers = {
            hdrs.CONTENT_TYPE: MediaTypes.APPLICATION_OCTET_STREAM,
            hdrs.CONTENT_RANGE: f"{offset}-{offset + len(chunk) - 1}",
        }
        async with await self.pusher.request(
            hdrs.METH_PATCH, self.location, data=chunk, headers=headers
        ) as client_response:
            RegistryClient._raise_for_status(client_response, f"PATCH {self.location}")
            self.location = urljoin(
                self.location,
                client_response.headers.get(hdrs.LOCATION, self.location),
            )
        self.verifier.update(chunk)

    async def commit(self, size: int, digest: ContentHash):
        self._verify(size, digest)
        async with await self.pusher.request(
            hdrs.METH_PUT,
            self.location,
            headers={hdrs.CONTENT_TYPE: MediaTypes.APPLICATION_OCTET_STREAM},
            params={"digest": str(digest)},
        ) as client_response:
            RegistryClient._raise_for_status(client_response, f"PUT {self.location}")
            self._verify_remote(client_response, digest)


class RegistryManifestWriter(RegistryWriter):
    """
    Manifest write stream; the document is buffered and uploaded on commit.
    """

    def __init__(self, pusher: RegistryPusher, location: str, descriptor: Descriptor):
        super().__init__(pusher, location, descriptor)
        self.buffer = bytearray()

    async def write(self, chunk: bytes):
        if len(self.buffer) + len(chunk) > self.descriptor.size:
            raise TransportError(
                f"{self.location}: more than {self.descriptor.size} bytes written"
            )
        self.buffer.extend(chunk)
        self.verifier.update(chunk)

    async def commit(self, size: int, digest: ContentHash):
        self._verify(size, digest)
        try:
            document = json.loads(bytes(self.buffer))
        except ValueError as exception:
            raise ValidationError(
                f"{self.descriptor.digest}: manifest is not a JSON document"
            ) from exception
        if not isinstance(document, dict):
            raise ValidationError(
                f"{self.descriptor.digest}: manifest is not a JSON object"
            )

        async with await self.pusher.request(
            hdrs.METH_PUT,
            self.location,
            data=bytes(self.buffer),
            headers={hdrs.CONTENT_TYPE: self.descriptor.media_type},
        ) as client_response:
            RegistryClient._raise_for_status(client_response, f"PUT {self.location}")
            self._verify_remote(client_response, digest)
