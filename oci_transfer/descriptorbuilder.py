#!/usr/bin/env python

"""Derives content descriptors from local artifacts."""

import logging
import os

from contextlib import asynccontextmanager
from pathlib import Path
from typing import AsyncIterator, Union

import aiofiles

from .digestverifier import DigestVerifier
from .errors import (
    ArtifactEmpty,
    ArtifactIsDirectory,
    ArtifactNotFound,
    UndeterminedMediaType,
)
from .formatsniffer import classify, sniff_media_type, HEADER_SIZE
from .specs import OCIMediaTypes
from .typing import Compression, Descriptor, DescriptorBuilderBuild
from .utils import be_kind_rewind

LOGGER = logging.getLogger(__name__)

# Upper bound on the JSON window decoded when sniffing a declared media type
MEDIA_TYPE_WINDOW = int(os.environ.get("OCIT_MEDIA_TYPE_WINDOW", 4194304))


async def detect_media_type(file) -> str:
    """
    Detects the media type of an (asynchronous) file, leaving it positioned at the start.

    Args:
        file: The file to be inspected.

    Returns:
        The detected media type.
    """
    header = await file.read(HEADER_SIZE)
    if classify(header) == Compression.GZIP:
        media_type = OCIMediaTypes.IMAGE_LAYER_GZIP_V1
    else:
        media_type = sniff_media_type(
            header + await file.read(MEDIA_TYPE_WINDOW - len(header))
        )
    await be_kind_rewind(file)

    if not media_type:
        raise UndeterminedMediaType(f"Could not determine media type: {file.name}")
    return media_type


async def build(
    path: Union[Path, str], media_type: str = None
) -> DescriptorBuilderBuild:
    """
    Builds a descriptor for a local file.

    The caller owns the returned file, rewound to the start, and is responsible
    for closing it. On failure the file is closed before the error propagates.

    Args:
        path: Path of the local artifact.
        media_type: Optional media type; used verbatim when given.

    Returns:
        dict:
            descriptor: The descriptor of the file content.
            file: The open (asynchronous) file.
    """
    path = Path(path)
    if not path.exists():
        raise ArtifactNotFound(f"No such file: {path}")
    if path.is_dir():
        # TODO: Detect OCI image layouts once directory pushes are supported.
        raise ArtifactIsDirectory(f"Directories are not supported: {path}")
    size = path.stat().st_size
    if size == 0:
        raise ArtifactEmpty(f"Empty file: {path}")

    file = await aiofiles.open(path, mode="rb")
    try:
        if not media_type:
            media_type = await detect_media_type(file)

        verifier = DigestVerifier()
        digest = await verifier.digest_file(file)
        LOGGER.debug("Built descriptor for %s: %s (%d bytes)", path, digest, size)
        descriptor = Descriptor(
            media_type=media_type, digest=digest, size=verifier.get_size()
        )
    except BaseException:
        await file.close()
        raise

    return DescriptorBuilderBuild(descriptor=descriptor, file=file)


@asynccontextmanager
async def open_descriptor(
    path: Union[Path, str], media_type: str = None
) -> AsyncIterator[DescriptorBuilderBuild]:
    """Context managed variant of build(); the file is closed on every exit path."""
    result = await build(path, media_type)
    try:
        yield result
    finally:
        await result.file.close()
