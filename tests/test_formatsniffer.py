#!/usr/bin/env python

"""Format sniffer tests."""

import pytest

from oci_transfer import Compression
from oci_transfer.formatsniffer import classify, sniff_media_type


@pytest.mark.parametrize(
    "header,expected",
    [
        (b"\x1f\x8b\x08\x00\x00\x00\x00\x00\x00\x03", Compression.GZIP),
        (b"\x1f\x8b\x08", Compression.GZIP),
        (b"\x1f\x8b", Compression.UNKNOWN),
        (b"", Compression.UNKNOWN),
        (b'{"mediaType"', Compression.UNKNOWN),
        (b"BZh91AY&SY", Compression.UNKNOWN),
    ],
)
def test_classify(header: bytes, expected: Compression):
    """Test that short or unrecognized prefixes are never an error."""
    assert classify(header) == expected


@pytest.mark.parametrize(
    "data,expected",
    [
        (b'{"mediaType": "application/vnd.x+json"}', "application/vnd.x+json"),
        (b'  \n{"schemaVersion": 2, "mediaType": "a/b"}', "a/b"),
        (b'{"mediaType": "a/b"} trailing', "a/b"),
        (b'{"schemaVersion": 2}', None),
        (b'{"mediaType": ""}', None),
        (b'{"mediaType": 1}', None),
        (b'["mediaType"]', None),
        (b'{"mediaType": "a/b"', None),
        (b"not json", None),
        (b"\xff\xfe", None),
    ],
)
def test_sniff_media_type(data: bytes, expected: str):
    """Test that only a declared, non-empty media type is returned."""
    assert sniff_media_type(data) == expected
