#!/usr/bin/env python

"""Adaptive credential negotiation."""

import logging

from typing import Optional

from .credentialstore import DockerConfigCredentialStore, resolve_host
from .prompter import NullPrompter, Prompter
from .typing import ABSENT_CREDENTIAL, AuthorizationOutcome, Credential

LOGGER = logging.getLogger(__name__)


class AdaptiveAuthorizer:
    """
    Supplies credentials to the registry transport whenever it is challenged.

    Requests are first attempted anonymously; the operator is prompted only after
    the registry has explicitly rejected a request, and at most once per process.
    Instances are used sequentially by a single transfer and are not thread safe.
    """

    def __init__(
        self,
        *,
        credential_store: DockerConfigCredentialStore = None,
        prompter: Prompter = None,
    ):
        """
        Args:
            credential_store: Store from which persisted credentials are retrieved.
            prompter: Capability used to interactively acquire credentials.
        """
        self.credential_store = (
            credential_store if credential_store else DockerConfigCredentialStore()
        )
        self.prompter = prompter if prompter else NullPrompter()

        self.credential = None  # type: Optional[Credential]
        self.last_outcome = None  # type: Optional[AuthorizationOutcome]

    def force_auth(self):
        """Behave as if the previous request was rejected, so that the next challenge prompts."""
        self.last_outcome = AuthorizationOutcome.INVALID_AUTHORIZATION

    def record_outcome(self, outcome: AuthorizationOutcome):
        """Records the authorization outcome of the most recent request."""
        self.last_outcome = outcome

    def needs_prompt(self) -> bool:
        """Tests if the operator should be prompted in response to the next challenge."""
        return (
            self.last_outcome == AuthorizationOutcome.INVALID_AUTHORIZATION
            and self.prompter.is_attached()
        )

    async def get_credentials(self, host: str) -> Credential:
        """
        Retrieves the credentials to use for a given host.

        Args:
            host: Registry host that issued the challenge.

        Returns:
            The credential to use; an absent credential requests anonymous access.
        """
        if self.credential is not None:
            return self.credential

        stored = await self.credential_store.get_credentials(resolve_host(host))
        if stored and not stored.is_absent():
            LOGGER.debug("Using stored credentials for: %s", host)
            self.credential = stored
            return self.credential

        if not self.needs_prompt():
            return ABSENT_CREDENTIAL

        self.last_outcome = None
        self.credential = self.prompter.prompt(host)
        return self.credential
