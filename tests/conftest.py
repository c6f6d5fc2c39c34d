import os

os.environ["TESTING"] = "true"

import datetime
import pytest
from sqlalchemy.orm import sessionmaker

from bookloop.core.db import Base, make_engine
from bookloop.core.lifecycle import BorrowLifecycle
from bookloop.core.models import Book

T0 = datetime.datetime(2024, 1, 1, 9, 0, 0)


def days(n):
    return datetime.timedelta(days=n)


@pytest.fixture
def db_session():
    from bookloop.core import models  # noqa: F401

    engine = make_engine("sqlite:///:memory:", echo=False)
    Base.metadata.create_all(engine)
    SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()
        Base.metadata.drop_all(engine)
        engine.dispose()


@pytest.fixture
def lifecycle(db_session):
    return BorrowLifecycle(db_session)


@pytest.fixture
def make_book(lifecycle):
    def _make(title="Dune"):
        return lifecycle.add_book(title).id
    return _make


@pytest.fixture
def issued(lifecycle, make_book):
    """A borrow issued at T0, due T0 + 30 days."""
    book_id = make_book()
    borrow_id = lifecycle.create_borrow_request(book_id, "alice", now=T0).id
    lifecycle.set_status(borrow_id, "issued", now=T0)
    return borrow_id


def book_status(lifecycle, book_id):
    return lifecycle.get_book(book_id).status
