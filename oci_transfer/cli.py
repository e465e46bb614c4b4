#!/usr/bin/env python

"""Command line interface: push a local file to, or fetch content from, a registry."""

import asyncio
import logging
import os
import re
import sys
import traceback

from pathlib import Path
from typing import NamedTuple, Optional

import typer

from .authorizer import AdaptiveAuthorizer
from .contenthash import ContentHash
from .descriptorbuilder import open_descriptor
from .errors import ArtifactNotFound, TransferError
from .orchestrator import TransferOrchestrator
from .prompter import Prompter, TerminalPrompter
from .reference import Reference
from .registryclient import RegistryClient

LOGGER = logging.getLogger(__name__)

MEDIA_TYPE_PATTERN = re.compile(r"^[A-Za-z0-9][\w.+-]*/[\w.+-]+$")

app = typer.Typer(
    name="oci-transfer",
    help="Push a local file to, or fetch content from, an OCI registry.",
    add_completion=False,
)


class CliTarget(NamedTuple):
    # pylint: disable=missing-class-docstring
    digest: Optional[ContentHash]
    media_type: Optional[str]
    path: Optional[Path]


def parse_target(target: Optional[str], media_type: Optional[str]) -> CliTarget:
    """
    Classifies the optional positional arguments.

    Args:
        target: A local file to push, a digest to fetch, or a media type to fetch the manifest as.
        media_type: An explicit media type.

    Returns:
        dict:
            digest: The digest to fetch, if any.
            media_type: The explicit media type, if any.
            path: The local file to push, if any.
    """
    if not target:
        return CliTarget(digest=None, media_type=media_type, path=None)
    if os.path.exists(target):
        return CliTarget(digest=None, media_type=media_type, path=Path(target))
    if ContentHash.is_content_hash(target):
        return CliTarget(
            digest=ContentHash.parse(target), media_type=media_type, path=None
        )
    if not media_type and MEDIA_TYPE_PATTERN.match(target):
        return CliTarget(digest=None, media_type=target, path=None)
    raise ArtifactNotFound(f"No such file: {target}")


async def run(
    reference: Reference,
    target: CliTarget,
    *,
    allow_http: bool = False,
    plugin: bool = False,
    prompter: Prompter = None,
    stdout=None,
):
    """
    Performs a single push or fetch.

    Args:
        reference: The registry reference.
        target: The classified positional arguments.
        allow_http: If True, the registry is contacted over plain HTTP.
        plugin: If True, the repository is plugin-namespaced.
        prompter: Capability used to interactively acquire credentials.
        stdout: Binary file to which fetched content is written.
    """
    authorizer = AdaptiveAuthorizer(
        prompter=prompter if prompter else TerminalPrompter()
    )
    async with RegistryClient(
        authorizer=authorizer, protocol="http" if allow_http else None
    ) as client:
        orchestrator = TransferOrchestrator(client, authorizer, plugin=plugin)
        if target.path:
            async with open_descriptor(target.path, target.media_type) as build:
                typer.echo(f"Type: {build.descriptor.media_type}")
                typer.echo(f"Size: {build.descriptor.size}")
                typer.echo(f"Digest: {build.descriptor.digest}")
                await orchestrator.push(reference, build.descriptor, build.file)
        else:
            if stdout is None:
                stdout = sys.stdout.buffer
            await orchestrator.fetch(
                reference,
                stdout,
                digest=target.digest,
                file_is_async=False,
                media_type=target.media_type,
            )
            stdout.flush()


def report(exception: BaseException):
    """Writes an error to stderr, prefixed by the call site that raised it."""
    frames = traceback.extract_tb(exception.__traceback__)
    if frames:
        typer.echo(
            f"{Path(frames[-1].filename).name}:{frames[-1].lineno} {exception}",
            err=True,
        )
    else:
        typer.echo(str(exception), err=True)


@app.command()
def transfer(
    reference: str = typer.Argument(..., help="Registry reference."),
    target: Optional[str] = typer.Argument(
        None, help="Local file to push, or digest to fetch."
    ),
    media_type: Optional[str] = typer.Argument(None, help="Explicit media type."),
    allow_http: bool = typer.Option(
        False, "--allow-http", help="Connect to the registry over plain HTTP."
    ),
    debug: bool = typer.Option(False, "--debug", help="Show diagnostic output."),
    plugin: bool = typer.Option(
        False, "--plugin", help="The repository is plugin-namespaced."
    ),
):
    """Push a local file to REFERENCE, or write the content REFERENCE names to stdout."""
    logging.basicConfig(
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
        level=logging.DEBUG if debug else logging.WARNING,
        stream=sys.stderr,
    )
    if debug:
        RegistryClient.DEBUG = "1"

    try:
        coroutine = run(
            Reference.parse(reference),
            parse_target(target, media_type),
            allow_http=allow_http,
            plugin=plugin,
        )
        asyncio.run(coroutine)
    except (OSError, TransferError, ValueError) as exception:
        LOGGER.debug("Transfer failed", exc_info=True)
        report(exception)
        raise typer.Exit(code=1)


def main():
    """Console script entry point."""
    app()
