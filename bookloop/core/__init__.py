#!/usr/bin/env python

"""
    Core module for Bookloop: persistence, fines, availability
    and the borrow lifecycle engine.

    :copyright: (c) 2025 by AUTHORS
    :license: see LICENSE for more details
"""

from bookloop.core.fines import FineQuote, calculate_fine
from bookloop.core.lifecycle import BorrowLifecycle
from bookloop.core.queries import LifecycleQueries

__all__ = ["BorrowLifecycle", "LifecycleQueries", "FineQuote", "calculate_fine"]
