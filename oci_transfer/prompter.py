#!/usr/bin/env python

"""Interactive credential prompting."""

import abc
import getpass
import sys

from .typing import Credential


class Prompter(abc.ABC):
    """
    Capability to interactively acquire credentials.
    """

    @abc.abstractmethod
    def is_attached(self) -> bool:
        """Tests if an operator is available to answer a prompt."""

    @abc.abstractmethod
    def prompt(self, host: str) -> Credential:
        """
        Prompts for the credentials of a given host.

        Args:
            host: Registry host for which credentials are requested.

        Returns:
            The entered credential.
        """


class TerminalPrompter(Prompter):
    """
    Prompts on the controlling terminal: username from stdin, password without echo.
    """

    def __init__(self, *, stdin=None, stderr=None):
        self.stdin = stdin if stdin else sys.stdin
        self.stderr = stderr if stderr else sys.stderr

    def is_attached(self) -> bool:
        return self.stdin.isatty()

    def prompt(self, host: str) -> Credential:
        self.stderr.write("Username: ")
        self.stderr.flush()
        username = self.stdin.readline().rstrip("\r\n")
        # Note: getpass reads from the terminal device, not stdin.
        password = getpass.getpass(prompt="Password: ", stream=self.stderr)
        return Credential(username=username, password=password)


class NullPrompter(Prompter):
    """Never attached; used when interaction is not possible."""

    def is_attached(self) -> bool:
        return False

    def prompt(self, host: str) -> Credential:
        raise RuntimeError(f"Cannot prompt for credentials: {host}")
