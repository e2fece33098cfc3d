"""
Pydantic schemas for the marketdesk API.
"""

from __future__ import annotations

from typing import Literal, Optional

from pydantic import BaseModel, Field


class SignInRequest(BaseModel):
    email: str = Field(..., max_length=320)
    password: str


class SessionResponse(BaseModel):
    user_id: str
    email: Optional[str] = None
    role: Optional[str] = None
    is_admin: bool = False
    access_token: Optional[str] = None


class StatusResponse(BaseModel):
    status: Literal["ok"]


class CollectionResponse(BaseModel):
    collection: str
    status: str
    items: list[dict]
    error: Optional[str] = None


class ItemResponse(BaseModel):
    item: dict


class MarketDataCreate(BaseModel):
    category: Optional[str] = None
    value: Optional[float] = None
    images: list[str] = Field(default_factory=list)
    date: Optional[str] = None
    item: Optional[str] = None
    city: Optional[str] = None
    price: Optional[float] = None


class MarketDataUpdate(BaseModel):
    category: Optional[str] = None
    value: Optional[float] = None
    images: Optional[list[str]] = None
    date: Optional[str] = None
    item: Optional[str] = None
    city: Optional[str] = None
    price: Optional[float] = None


class PostCreate(BaseModel):
    title: str = Field(..., max_length=512)
    body: str = ""
    category: str = ""
    images: list[str] = Field(default_factory=list)
    post_type: Literal["blog", "insight"] = "blog"


class InsightPayload(BaseModel):
    title: str = ""
    content: str = ""
    author: str = ""
    category: Optional[str] = "general"
    is_featured: bool = False
    images: list[str] = Field(default_factory=list)


class MarketDataFileCreate(BaseModel):
    title: str = ""
    google_sheets_url: str = ""
    data_type: Literal["clean", "raw"] = "clean"


class DashboardResponse(BaseModel):
    featured_insight: Optional[dict] = None
    latest_insights: list[dict]
    market_data: dict
    last_updated: float


class AdminStatsResponse(BaseModel):
    insights: int
    market_data: int
    users: int


class UploadResponse(BaseModel):
    paths: list[str]
    urls: list[str]


class SignUrlResponse(BaseModel):
    url: str
