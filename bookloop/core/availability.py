"""
    Book Availability Tracker for Bookloop.

    Every transition here is idempotent: asking for the state a book is
    already in does nothing, and `release` only ever frees a book that
    is `Reserved`. The tracker never commits; the lifecycle engine owns
    the transaction the change is part of.

    :copyright: (c) 2025 by AUTHORS
    :license: see LICENSE for more details
"""

import logging
from bookloop.core.enums import BookStatus
from bookloop.core.exceptions import BookNotFoundError, ValidationError
from bookloop.core.models import Book
from bookloop.core.transitions import BookEffect

logger = logging.getLogger(__name__)


class AvailabilityTracker:

    def __init__(self, db):
        self.db = db

    def get(self, book) -> Book:
        if isinstance(book, Book):
            return book
        if found := Book.exists(self.db, book):
            return found
        raise BookNotFoundError(f"Book {book} not found.", book_id=book)

    def _move(self, book, status, allowed_from=None) -> Book:
        book = self.get(book)
        if book.status == status:
            return book
        if allowed_from is not None and book.status not in allowed_from:
            logger.debug(f"book {book.id}: {book.status.value} -> {status.value} skipped")
            return book
        logger.info(f"book {book.id}: {book.status.value} -> {status.value}")
        book.status = status
        return book

    def reserve(self, book) -> Book:
        return self._move(book, BookStatus.RESERVED, allowed_from={BookStatus.AVAILABLE})

    def release(self, book) -> Book:
        return self._move(book, BookStatus.AVAILABLE, allowed_from={BookStatus.RESERVED})

    def mark_borrowed(self, book) -> Book:
        return self._move(book, BookStatus.BORROWED)

    def mark_available(self, book) -> Book:
        return self._move(book, BookStatus.AVAILABLE)

    def override(self, book, status) -> Book:
        """Administrative status change, e.g. flagging a copy Lost or Damaged."""
        try:
            status = BookStatus(status)
        except ValueError:
            raise ValidationError(f"Unknown book status '{status}'.", status=status)
        return self._move(book, status)

    def apply(self, book, effect: BookEffect) -> Book:
        return {
            BookEffect.RESERVE: self.reserve,
            BookEffect.RELEASE: self.release,
            BookEffect.MARK_BORROWED: self.mark_borrowed,
            BookEffect.MARK_AVAILABLE: self.mark_available,
        }[effect](book)
