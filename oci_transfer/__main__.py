#!/usr/bin/env python

"""Allows execution via "python -m oci_transfer"."""

from .cli import main

main()
