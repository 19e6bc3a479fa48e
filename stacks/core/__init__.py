#!/usr/bin/env python

"""
    Core module for Stacks: store client, catalog, circulation & occupancy

    :copyright: (c) 2025 by AUTHORS
    :license: see LICENSE for more details
"""

from stacks.core.api import StacksAPI

__all__ = ["StacksAPI"]
