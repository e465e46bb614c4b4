#!/usr/bin/env python

"""Publishes and retrieves content addressed artifacts to and from OCI registries."""

from .authorizer import AdaptiveAuthorizer
from .contenthash import ContentHash
from .credentialstore import DockerConfigCredentialStore
from .descriptorbuilder import build, open_descriptor
from .digestverifier import DigestVerifier, HashingGenerator
from .errors import (
    AlreadyExists,
    ArtifactEmpty,
    ArtifactIsDirectory,
    ArtifactNotFound,
    AuthorizationError,
    DigestMismatch,
    FetchError,
    InvalidAuthorization,
    NotFound,
    PushError,
    TransferError,
    TransportError,
    UndeterminedMediaType,
    ValidationError,
)
from .formatsniffer import classify
from .orchestrator import get_scope, TransferOrchestrator, TransferState
from .prompter import Prompter, TerminalPrompter
from .reference import Reference
from .registryclient import RegistryClient
from .specs import DockerAuthentication, DockerMediaTypes, MediaTypes, OCIMediaTypes
from .typing import AuthorizationOutcome, Compression, Credential, Descriptor

__version__ = "0.1.0"
