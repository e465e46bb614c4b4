#!/usr/bin/env python

"""Utility classes."""

import os

from functools import wraps, partial
from typing import AsyncIterator

import asyncio

CHUNK_SIZE = int(os.environ.get("OCIT_CHUNK_SIZE", 2097152))


def async_wrap(func):
    """Decorates a given function for execution via an executor."""

    @wraps(func)
    async def run_in_executor(*args, loop=None, executor=None, **kwargs):
        if loop is None:
            loop = asyncio.get_running_loop()
        partial_func = partial(func, *args, **kwargs)
        return await loop.run_in_executor(executor, partial_func)

    return run_in_executor


async def be_kind_rewind(file, *, file_is_async: bool = True):
    """
    Reset the file position (offset) to the absolute beginning.
    Args:
        file: The file for which to reset the offset.
        file_is_async: If True, all file IO operations will be awaited.
    """
    if file_is_async:
        coroutine = file.seek(0)
    else:
        coroutine = async_wrap(file.seek)(0)
    await coroutine


async def copy_stream(chunks: AsyncIterator[bytes], file, *, file_is_async: bool = True) -> int:
    """
    Copies chunks to a given file.

    Args:
        chunks: The asynchronous iterator from which to read the chunks.
        file: The file to which to write the chunks.
        file_is_async: If True, all file IO operations will be awaited.

    Returns:
        The byte size of the copied data.
    """
    size = 0
    coroutine = file.write if file_is_async else async_wrap(file.write)
    async for chunk in chunks:
        await coroutine(chunk)
        size += len(chunk)
    return size


def must_be_equal(
    expected,
    actual,
    msg: str = "Actual value does not match expected value",
    *,
    error_type=RuntimeError,
):
    """
    Compares two values and raises an exception if they are not equal.

    Args:
        expected: The expected value.
        actual: The actual value.
        msg: Message describing the context of the comparison.
        error_type: The type of exception to be raised if not equal.
    """
    if actual != expected:
        raise error_type(f"{msg}: {actual} != {expected}")
