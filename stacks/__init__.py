#!/usr/bin/env python

"""
    Stacks, a lending and attendance backend for school libraries

    :copyright: (c) 2025 by AUTHORS
    :license: see LICENSE for more details
"""

__version__ = '0.1.0'
