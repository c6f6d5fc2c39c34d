#!/usr/bin/env python

"""
    API routes for Bookloop,
    a thin HTTP binding over the borrow lifecycle engine.

    Authentication is handled upstream; callers pass the `user_id`
    they have already authenticated.

    :copyright: (c) 2025 by AUTHORS
    :license: see LICENSE for more details
"""

from typing import List, Optional
from fastapi import APIRouter, Body, Depends, HTTPException, status

from bookloop.core.db import SessionLocal
from bookloop.core.exceptions import (
    BookloopError,
    ValidationError,
    ConflictError,
    TemporalPolicyError,
    NotFoundError,
    InternalError,
)
from bookloop.core.lifecycle import BorrowLifecycle
from bookloop.core.queries import LifecycleQueries
from bookloop.routes.schemas import (
    BookCreate,
    BookStatusUpdate,
    BorrowRequest,
    StatusUpdate,
    SweepRequest,
)
from bookloop.schemas import AdminDashboard, BookOut, BorrowSnapshot, BorrowView, SweepReport


router = APIRouter()

ERROR_STATUS = (
    (ValidationError, status.HTTP_400_BAD_REQUEST),
    (NotFoundError, status.HTTP_404_NOT_FOUND),
    (ConflictError, status.HTTP_409_CONFLICT),
    (TemporalPolicyError, status.HTTP_423_LOCKED),
    (InternalError, status.HTTP_500_INTERNAL_SERVER_ERROR),
)


def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def get_lifecycle(db=Depends(get_db)) -> BorrowLifecycle:
    return BorrowLifecycle(db)


def get_queries(db=Depends(get_db)) -> LifecycleQueries:
    return LifecycleQueries(db)


def http_error(e: BookloopError) -> HTTPException:
    for error_cls, code in ERROR_STATUS:
        if isinstance(e, error_cls):
            return HTTPException(status_code=code, detail=e.to_dict())
    return HTTPException(status_code=500, detail=e.to_dict())


def _borrow(record) -> BorrowSnapshot:
    return BorrowSnapshot.model_validate(record)


@router.get('/', status_code=status.HTTP_200_OK)
async def home():
    return {"name": "bookloop", "status": "ok"}


@router.post('/books', response_model=BookOut, status_code=status.HTTP_201_CREATED)
def create_book(payload: BookCreate, engine: BorrowLifecycle = Depends(get_lifecycle)):
    try:
        return BookOut.model_validate(engine.add_book(payload.title))
    except BookloopError as e:
        raise http_error(e)


@router.patch('/books/{book_id}/status', response_model=BookOut)
def override_book_status(book_id: int, payload: BookStatusUpdate,
                         engine: BorrowLifecycle = Depends(get_lifecycle)):
    try:
        return BookOut.model_validate(engine.override_book_status(book_id, payload.status))
    except BookloopError as e:
        raise http_error(e)


@router.post('/borrows', response_model=BorrowSnapshot, status_code=status.HTTP_201_CREATED)
def create_borrow_request(payload: BorrowRequest, engine: BorrowLifecycle = Depends(get_lifecycle)):
    try:
        return _borrow(engine.create_borrow_request(payload.book_id, payload.user_id))
    except BookloopError as e:
        raise http_error(e)


@router.get('/borrows/{borrow_id}', response_model=BorrowSnapshot)
def get_borrow(borrow_id: int, engine: BorrowLifecycle = Depends(get_lifecycle)):
    """Returns the record with its fine recomputed as of now."""
    try:
        return _borrow(engine.refresh(borrow_id))
    except BookloopError as e:
        raise http_error(e)


@router.patch('/borrows/{borrow_id}/status', response_model=BorrowSnapshot)
def set_borrow_status(borrow_id: int, payload: StatusUpdate,
                      engine: BorrowLifecycle = Depends(get_lifecycle)):
    try:
        return _borrow(engine.set_status(borrow_id, payload.status, admin_notes=payload.admin_notes))
    except BookloopError as e:
        raise http_error(e)


@router.post('/borrows/{borrow_id}/reissue', response_model=BorrowSnapshot)
def request_reissue(borrow_id: int, engine: BorrowLifecycle = Depends(get_lifecycle)):
    try:
        return _borrow(engine.request_reissue(borrow_id))
    except BookloopError as e:
        raise http_error(e)


@router.post('/borrows/{borrow_id}/return', response_model=BorrowSnapshot)
def request_return(borrow_id: int, engine: BorrowLifecycle = Depends(get_lifecycle)):
    try:
        return _borrow(engine.request_return(borrow_id))
    except BookloopError as e:
        raise http_error(e)


@router.post('/borrows/{borrow_id}/cancel', response_model=BorrowSnapshot)
def cancel_request(borrow_id: int, engine: BorrowLifecycle = Depends(get_lifecycle)):
    try:
        return _borrow(engine.cancel_request(borrow_id))
    except BookloopError as e:
        raise http_error(e)


@router.post('/borrows/{borrow_id}/pay', response_model=BorrowSnapshot)
def pay_fine(borrow_id: int, engine: BorrowLifecycle = Depends(get_lifecycle)):
    try:
        return _borrow(engine.pay_fine(borrow_id))
    except BookloopError as e:
        raise http_error(e)


@router.delete('/borrows/{borrow_id}')
def delete_borrow(borrow_id: int, engine: BorrowLifecycle = Depends(get_lifecycle)):
    try:
        engine.delete_request(borrow_id)
    except BookloopError as e:
        raise http_error(e)
    return {"detail": "Borrow request deleted"}


@router.get('/users/{user_id}/borrows', response_model=List[BorrowView])
def student_borrows(user_id: str, queries: LifecycleQueries = Depends(get_queries)):
    return queries.student_view(user_id)


@router.get('/admin/borrows', response_model=AdminDashboard)
def admin_borrows(offset: Optional[int] = None, limit: Optional[int] = None,
                  queries: LifecycleQueries = Depends(get_queries)):
    return queries.admin_dashboard(offset=offset, limit=limit)


@router.post('/sweeps/overdue', response_model=SweepReport)
def sweep_overdue(payload: Optional[SweepRequest] = Body(None),
                  engine: BorrowLifecycle = Depends(get_lifecycle)):
    return engine.recompute_overdue(payload.as_of if payload else None)


@router.post('/sweeps/reissue-locks', response_model=SweepReport)
def sweep_reissue_locks(payload: Optional[SweepRequest] = Body(None),
                        engine: BorrowLifecycle = Depends(get_lifecycle)):
    return engine.unlock_expired_reissues(payload.as_of if payload else None)
