# app/schemas/auth/activity_schemas.py

from pydantic import BaseModel, ConfigDict
from typing import Literal, Optional
from datetime import datetime
from fastapi import Query

from app.utils.response import PageData


class UserActivityFilters(BaseModel):
    user_id: Optional[int] = Query(None)
    username: Optional[str] = Query(None)
    # matches inside the rendered message, e.g. a quotation number
    search: Optional[str] = Query(None)

    page: int = Query(1, ge=1)
    page_size: int = Query(20, ge=1, le=100)

    sort_by: Literal["created_at", "username"] = Query("created_at")
    sort_order: Literal["asc", "desc"] = Query("desc")


class UserActivityOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    user_id: Optional[int]
    username_snapshot: str
    message: str
    created_at: datetime


class UserActivityListData(PageData[UserActivityOut]):
    pass
