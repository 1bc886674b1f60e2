"""Request bodies accepted by the HTTP API (camelCase, as the dashboard sends them)."""

from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field


class CallbackRequest(BaseModel):
    code: Optional[str] = None


class WebsiteRequest(BaseModel):
    name: str
    domain: str
    gaPropertyId: str


class SummaryRequest(BaseModel):
    insights: List[Dict[str, Any]] = Field(default_factory=list)
    metrics: Optional[Dict[str, Any]] = None


class ReportRequest(BaseModel):
    query: Optional[str] = None


class ImplementationPlanRequest(BaseModel):
    insightIds: List[int] = Field(default_factory=list)
