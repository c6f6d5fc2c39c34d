from datetime import datetime
from typing import Optional
from pydantic import BaseModel, Field
from bookloop.core.enums import BookStatus

class BookCreate(BaseModel):
    title: str = Field(..., min_length=1, max_length=255)

class BookStatusUpdate(BaseModel):
    status: BookStatus

class BorrowRequest(BaseModel):
    book_id: int
    user_id: str

class StatusUpdate(BaseModel):
    status: str
    admin_notes: Optional[str] = None

class SweepRequest(BaseModel):
    as_of: Optional[datetime] = None
