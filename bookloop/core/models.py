#!/usr/bin/env python

"""
    Models for Bookloop,
    including the books, borrow records and fine history tables.

    :copyright: (c) 2025 by AUTHORS
    :license: see LICENSE for more details
"""

from sqlalchemy import (
    Column, String, Boolean, Integer, DateTime, Text, ForeignKey,
    Enum as SQLAlchemyEnum
)
from sqlalchemy.orm import relationship
from bookloop.core.db import Base
from bookloop.core.enums import BookStatus, BorrowStatus, RequestType
from bookloop.core.utils import utcnow


def _enum_column(enum_cls, name, **kwargs):
    # persist the enum values ("reissue-requested"), not the member names
    return Column(
        SQLAlchemyEnum(
            enum_cls,
            name=name,
            native_enum=False,
            length=32,
            values_callable=lambda members: [m.value for m in members],
        ),
        **kwargs
    )


class Book(Base):
    __tablename__ = 'books'

    id = Column(Integer, primary_key=True)
    title = Column(String(255), nullable=False)
    status = _enum_column(BookStatus, 'book_status', default=BookStatus.AVAILABLE, nullable=False)
    created_at = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)

    borrows = relationship('BorrowRecord', back_populates='book')

    @classmethod
    def exists(cls, db, book_id):
        return db.get(cls, book_id)


class BorrowRecord(Base):
    __tablename__ = 'borrow_records'

    id = Column(Integer, primary_key=True)
    book_id = Column(Integer, ForeignKey('books.id'), nullable=False, index=True)
    user_id = Column(String(64), nullable=False, index=True)
    request_type = _enum_column(RequestType, 'request_type', default=RequestType.BORROW, nullable=False)
    parent_request_id = Column(Integer, ForeignKey('borrow_records.id'), nullable=True)
    status = _enum_column(BorrowStatus, 'borrow_status', default=BorrowStatus.REQUESTED, nullable=False, index=True)

    created_at = Column(DateTime, default=utcnow, nullable=False)
    issue_date = Column(DateTime)
    due_date = Column(DateTime)
    return_date = Column(DateTime)
    actual_return_date = Column(DateTime)
    rejected_date = Column(DateTime)
    last_reissue_date = Column(DateTime)

    reissue_count = Column(Integer, default=0, nullable=False)
    is_reissue_locked = Column(Boolean, default=False, nullable=False)

    fine = Column(Integer, default=0, nullable=False)
    fine_paid = Column(Boolean, default=False, nullable=False)

    admin_notes = Column(Text)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)
    version = Column(Integer, nullable=False)

    __mapper_args__ = {'version_id_col': version}

    book = relationship('Book', back_populates='borrows')
    fine_history = relationship(
        'FineHistory',
        back_populates='borrow',
        order_by='FineHistory.id',
        cascade='all, delete-orphan',
    )

    @classmethod
    def for_book_and_user(cls, db, book_id, user_id):
        return db.query(cls).filter(
            cls.book_id == book_id,
            cls.user_id == user_id
        ).order_by(cls.id).all()

    def __repr__(self):
        return f"<BorrowRecord id={self.id} book={self.book_id} user={self.user_id} status={self.status}>"


class FineHistory(Base):
    """Append-only audit row written whenever a borrow's fine increases."""
    __tablename__ = 'fine_history'

    id = Column(Integer, primary_key=True)
    borrow_id = Column(Integer, ForeignKey('borrow_records.id', ondelete='CASCADE'), nullable=False, index=True)
    weeks = Column(Integer, nullable=False)
    amount = Column(Integer, nullable=False)
    calculated_at = Column(DateTime, nullable=False)

    borrow = relationship('BorrowRecord', back_populates='fine_history')
