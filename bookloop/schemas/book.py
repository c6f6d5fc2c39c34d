#!/usr/bin/env python
"""
    Book Schema for Bookloop.

    :copyright: (c) 2025 by AUTHORS
    :license: see LICENSE for more details
"""

from datetime import datetime
from typing import Optional
from pydantic import BaseModel, ConfigDict
from bookloop.core.enums import BookStatus

class BookOut(BaseModel):
    model_config = ConfigDict(
        from_attributes=True,
        json_schema_extra={
            "example": {
                "id": 1,
                "title": "A Tale of Two Cities",
                "status": "Available",
                "created_at": "2024-01-01T09:00:00",
            }
        },
    )

    id: int
    title: str
    status: BookStatus = BookStatus.AVAILABLE
    created_at: Optional[datetime] = None
