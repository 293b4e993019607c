"""Shared response shapes."""
from __future__ import annotations

import math

from pydantic import BaseModel, Field


class Pagination(BaseModel):
    page: int = Field(..., description="Current page, 1-based")
    limit: int = Field(..., description="Page size")
    total: int = Field(..., description="Total matching rows")
    total_pages: int = Field(..., description="Number of pages")

    @classmethod
    def build(cls, page: int, limit: int, total: int) -> "Pagination":
        return cls(
            page=page,
            limit=limit,
            total=total,
            total_pages=math.ceil(total / limit) if limit else 0,
        )


class Message(BaseModel):
    message: str
