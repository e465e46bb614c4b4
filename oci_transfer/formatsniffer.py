#!/usr/bin/env python

"""Classification of file content by its leading bytes."""

import json

from typing import Optional

from .typing import Compression

# Compression -> magic prefix
MAGIC = {Compression.GZIP: b"\x1f\x8b\x08"}

# Number of leading bytes inspected for compression magic
HEADER_SIZE = 10


def classify(header: bytes) -> Compression:
    """
    Classifies a byte prefix.

    Args:
        header: The leading bytes of the content; too short a prefix is never an error.

    Returns:
        The detected compression, or Compression.UNKNOWN.
    """
    for compression, magic in MAGIC.items():
        if len(header) < len(magic):
            continue
        if header[: len(magic)] == magic:
            return compression
    return Compression.UNKNOWN


def sniff_media_type(data: bytes) -> Optional[str]:
    """
    Retrieves the declared "mediaType" from the leading JSON document in the given data.

    Args:
        data: The content to be decoded.

    Returns:
        The declared media type, or None if the data is not JSON or declares none.
    """
    try:
        document, _ = json.JSONDecoder().raw_decode(data.decode("utf-8").lstrip())
    except ValueError:
        return None
    if not isinstance(document, dict):
        return None
    media_type = document.get("mediaType")
    if not isinstance(media_type, str) or not media_type:
        return None
    return media_type
