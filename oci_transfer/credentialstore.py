#!/usr/bin/env python

"""Lookup of registry credentials from a docker credentials store."""

import base64
import binascii
import json
import logging
import os

from pathlib import Path
from typing import Dict, Optional
from urllib.parse import urlparse

import aiofiles

from .specs import Indices
from .typing import Credential

LOGGER = logging.getLogger(__name__)


def resolve_host(host: str) -> str:
    """
    Resolves a registry host to the canonical form under which its credentials are stored.

    Args:
        host: Registry host address (<hostname>[:<port>]), or a legacy URL.

    Returns:
        The canonical host address.
    """
    # Note: urlparse stores 'netloc' in 'path' if no protocol is specified.
    if "://" not in host:
        host = f"proto://{host}"
    host = urlparse(host).netloc.lower()
    if host in Indices.DOCKERHUB_ALIASES:
        return Indices.DOCKERHUB_CREDENTIALS
    return host


class DockerConfigCredentialStore:
    """
    Read-only credentials store backed by a docker config.json file.
    """

    DEFAULT_CREDENTIALS_STORE = Path.home().joinpath(".docker/config.json")

    def __init__(self, credentials_store: Path = None):
        """
        Args:
            credentials_store: Path to the docker registry credentials store.
        """
        if not credentials_store:
            credentials_store = Path(
                os.environ.get(
                    "OCIT_CREDENTIALS_STORE",
                    DockerConfigCredentialStore.DEFAULT_CREDENTIALS_STORE,
                )
            )
        self.credentials_store = credentials_store
        # Canonical host -> credential
        self.credentials = None  # type: Optional[Dict[str, Credential]]

    @staticmethod
    def _decode_auth(auth: Dict) -> Optional[Credential]:
        """Decodes a single "auths" entry."""
        if auth.get("auth"):
            if not isinstance(auth["auth"], str):
                return None
            try:
                decoded = base64.b64decode(auth["auth"]).decode("utf-8")
            except (binascii.Error, UnicodeDecodeError):
                return None
            username, _, password = decoded.partition(":")
            return Credential(username=username, password=password)
        username = auth.get("username", "")
        password = auth.get("password", "")
        if not isinstance(username, str) or not isinstance(password, str):
            return None
        if username or password:
            return Credential(username=username, password=password)
        return None

    async def _load_credentials(self):
        """Retrieves the registry credentials from the docker registry credentials store."""
        self.credentials = {}
        if not self.credentials_store or not self.credentials_store.is_file():
            return

        LOGGER.debug("Loading credentials from store: %s", self.credentials_store)
        async with aiofiles.open(self.credentials_store, mode="rb") as file:
            try:
                config = json.loads(await file.read())
            except ValueError as exception:
                LOGGER.warning(
                    "Ignoring malformed credentials store %s: %s",
                    self.credentials_store,
                    exception,
                )
                return
        auths = config.get("auths", {}) if isinstance(config, dict) else None
        if not isinstance(auths, dict):
            LOGGER.warning(
                "Ignoring malformed credentials store %s: unexpected structure",
                self.credentials_store,
            )
            return
        for host, auth in auths.items():
            if not isinstance(auth, dict):
                LOGGER.warning("Ignoring malformed credentials for: %s", host)
                continue
            credential = DockerConfigCredentialStore._decode_auth(auth)
            if credential and not credential.is_absent():
                self.credentials[resolve_host(host)] = credential

    async def get_credentials(self, host: str) -> Optional[Credential]:
        """
        Retrieves the registry credentials for a given host.

        Args:
            host: Registry host for which to retrieve the credentials.

        Returns:
            The corresponding credential, or None.
        """
        if self.credentials is None:
            await self._load_credentials()
        return self.credentials.get(resolve_host(host))
