#!/usr/bin/env python

"""
    Bookloop, the borrow lifecycle and fine engine for libraries

    :copyright: (c) 2025 by AUTHORS
    :license: see LICENSE for more details.
"""

__version__ = "0.1.0"
