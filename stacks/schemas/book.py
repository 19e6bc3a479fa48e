#!/usr/bin/env python
"""
    Book Schema for Stacks,
    catalog entries and their physical copies.

    :copyright: (c) 2025 by AUTHORS
    :license: see LICENSE for more details
"""

from pydantic import BaseModel
from typing import List, Optional
from stacks.core.models import Category, CopyStatus

class Copy(BaseModel):
    id: int
    book_id: int
    status: CopyStatus

    class Config:
        from_attributes = True

class Book(BaseModel):
    id: int
    title: str
    author: str
    isbn: str
    category: Category
    copies: List[Copy] = []

    class Config:
        from_attributes = True
        json_schema_extra = {
            "example": {
                "id": 1,
                "title": "Noli Me Tangere",
                "author": "Jose Rizal",
                "isbn": "9789710810736",
                "category": "Literature",
                "copies": [{"id": 1, "book_id": 1, "status": "Available"}]
            }
        }

class CopyDetail(Copy):
    title: Optional[str] = None
