"""Insert-time validation for the storage layer.

The models below mirror the columns a caller is allowed to set. ``crud``
validates every insert through them so the HTTP layer, the automation
scripts and the seed script all share one set of rules.
"""

from __future__ import annotations

import datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field, field_validator

EMAIL_PATTERN = r"^[^@\s]+@[^@\s]+\.[^@\s]+$"

REPORT_STATUSES = ("pending", "completed", "failed")


class UserCreate(BaseModel):
    email: str = Field(pattern=EMAIL_PATTERN)
    name: str = Field(min_length=2)
    google_id: str = Field(min_length=1)
    access_token: Optional[str] = None
    refresh_token: Optional[str] = None
    profile_image: Optional[str] = None


class WebsiteCreate(BaseModel):
    user_id: int
    name: str = Field(min_length=2)
    domain: str = Field(min_length=3)
    ga_property_id: str = Field(min_length=1)


class MetricCreate(BaseModel):
    website_id: int
    date: datetime.datetime
    visitors: int
    conversions: int
    bounce_rate: str
    page_speed: str
    visitors_change: str
    conversions_change: str
    bounce_rate_change: str
    page_speed_change: str
    active_users: int = 0
    new_users: int = 0
    event_count: int = 0
    avg_engagement_time: str = "0s"
    views_count: int = 0
    user_stickiness: str = "0.0%"
    sessions_by_channel: Dict[str, int] = Field(default_factory=dict)
    sessions_by_source: Dict[str, int] = Field(default_factory=dict)
    views_by_page: Dict[str, int] = Field(default_factory=dict)
    users_by_country: Dict[str, int] = Field(default_factory=dict)


class InsightCreate(BaseModel):
    website_id: int
    title: str = Field(min_length=3)
    description: str = Field(min_length=10)
    category: str = Field(min_length=1)
    impact: str = Field(min_length=1)
    icon: str = "insights"
    recommendations: List[str] = Field(default_factory=list)
    detected_at: Optional[datetime.datetime] = None


class ReportCreate(BaseModel):
    user_id: int
    website_id: int
    query: str = Field(min_length=5)
    response: Optional[Dict[str, Any]] = None
    status: str = "pending"

    @field_validator("status")
    @classmethod
    def _known_status(cls, value: str) -> str:
        if value not in REPORT_STATUSES:
            raise ValueError(f"status must be one of {', '.join(REPORT_STATUSES)}")
        return value


class ImplementationStep(BaseModel):
    stepNumber: int
    title: str
    description: str = ""
    priority: str = "Medium"
    effort: str = "Medium"
    estimatedTime: str = ""
    dependencies: List[int] = Field(default_factory=list)
    resources: List[str] = Field(default_factory=list)


class ImplementationPlanCreate(BaseModel):
    website_id: int
    title: str = Field(min_length=3)
    summary: str = ""
    insight_ids: List[int] = Field(min_length=1)
    steps: List[ImplementationStep] = Field(default_factory=list)
