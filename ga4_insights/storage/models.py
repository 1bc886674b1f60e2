import datetime
from typing import Any, Dict

from sqlalchemy import Column, Integer, String, Text, DateTime, ForeignKey, JSON

from .db import Base


def utcnow() -> datetime.datetime:
    """Naive UTC timestamp (SQLite stores datetimes without a zone)."""
    return datetime.datetime.now(datetime.timezone.utc).replace(tzinfo=None)


def _iso(value: datetime.datetime | None) -> str | None:
    return value.isoformat() if value else None


class TimestampMixin:
    created_at = Column(DateTime, default=utcnow, nullable=False)
    updated_at = Column(DateTime, default=utcnow, nullable=False)


class User(TimestampMixin, Base):
    """A Google account that signed in through OAuth.

    Attributes
    ----------
    google_id
        Stable Google account id returned by the userinfo endpoint.
    access_token / refresh_token
        OAuth tokens. Only the refresh token is needed to call GA4 later on.
    """

    __tablename__ = "users"

    id = Column(Integer, primary_key=True, index=True)
    email = Column(String(255), unique=True, nullable=False)
    name = Column(String(255), nullable=False)
    google_id = Column(String(255), unique=True, nullable=False)
    access_token = Column(Text)
    refresh_token = Column(Text)
    profile_image = Column(Text)

    def to_dict(self) -> Dict[str, Any]:
        # Tokens never leave the backend.
        return {
            "id": self.id,
            "email": self.email,
            "name": self.name,
            "profileImage": self.profile_image,
        }


class Website(TimestampMixin, Base):
    """A website owned by a user and bound to one GA4 property."""

    __tablename__ = "websites"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id"), index=True, nullable=False)
    name = Column(String(255), nullable=False)
    domain = Column(String(255), nullable=False)
    ga_property_id = Column(String(64), nullable=False)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "userId": self.user_id,
            "name": self.name,
            "domain": self.domain,
            "gaPropertyId": self.ga_property_id,
            "createdAt": _iso(self.created_at),
            "updatedAt": _iso(self.updated_at),
        }


class Metric(TimestampMixin, Base):
    """One GA4 sync snapshot.

    Rates and changes are stored pre-formatted (``"42.80%"``, ``"+12.3%"``)
    because that is how the dashboard and the prompts consume them.
    """

    __tablename__ = "metrics"

    id = Column(Integer, primary_key=True, index=True)
    website_id = Column(Integer, ForeignKey("websites.id"), index=True, nullable=False)
    date = Column(DateTime, nullable=False)

    # Core metrics
    visitors = Column(Integer, nullable=False)
    conversions = Column(Integer, nullable=False)
    bounce_rate = Column(String(16), nullable=False)
    page_speed = Column(String(16), nullable=False)
    visitors_change = Column(String(16), nullable=False)
    conversions_change = Column(String(16), nullable=False)
    bounce_rate_change = Column(String(16), nullable=False)
    page_speed_change = Column(String(16), nullable=False)

    # Extended metrics
    active_users = Column(Integer, default=0)
    new_users = Column(Integer, default=0)
    event_count = Column(Integer, default=0)
    avg_engagement_time = Column(String(16), default="0s")
    views_count = Column(Integer, default=0)
    user_stickiness = Column(String(16), default="0.0%")  # DAU/MAU
    sessions_by_channel = Column(JSON, default=dict, nullable=False)
    sessions_by_source = Column(JSON, default=dict, nullable=False)
    views_by_page = Column(JSON, default=dict, nullable=False)
    users_by_country = Column(JSON, default=dict, nullable=False)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "websiteId": self.website_id,
            "date": _iso(self.date),
            "visitors": self.visitors,
            "conversions": self.conversions,
            "bounceRate": self.bounce_rate,
            "pageSpeed": self.page_speed,
            "visitorsChange": self.visitors_change,
            "conversionsChange": self.conversions_change,
            "bounceRateChange": self.bounce_rate_change,
            "pageSpeedChange": self.page_speed_change,
            "activeUsers": self.active_users,
            "newUsers": self.new_users,
            "eventCount": self.event_count,
            "avgEngagementTime": self.avg_engagement_time,
            "viewsCount": self.views_count,
            "userStickiness": self.user_stickiness,
            "sessionsByChannel": self.sessions_by_channel or {},
            "sessionsBySource": self.sessions_by_source or {},
            "viewsByPage": self.views_by_page or {},
            "usersByCountry": self.users_by_country or {},
            "createdAt": _iso(self.created_at),
            "updatedAt": _iso(self.updated_at),
        }


class Insight(TimestampMixin, Base):
    """LLM-generated finding for a website."""

    __tablename__ = "insights"

    id = Column(Integer, primary_key=True, index=True)
    website_id = Column(Integer, ForeignKey("websites.id"), index=True, nullable=False)
    title = Column(String(255), nullable=False)
    description = Column(Text, nullable=False)
    category = Column(String(64), nullable=False)  # Traffic, Conversion, Performance, Content, ...
    impact = Column(String(16), nullable=False)  # High, Medium, Low
    icon = Column(String(64), nullable=False)  # Material icon name
    recommendations = Column(JSON, default=list, nullable=False)
    detected_at = Column(DateTime, default=utcnow, nullable=False)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "websiteId": self.website_id,
            "title": self.title,
            "description": self.description,
            "category": self.category,
            "impact": self.impact,
            "icon": self.icon,
            "recommendations": list(self.recommendations or []),
            "detectedAt": _iso(self.detected_at),
            "createdAt": _iso(self.created_at),
            "updatedAt": _iso(self.updated_at),
        }


class Report(TimestampMixin, Base):
    """Natural-language report, filled in asynchronously."""

    __tablename__ = "reports"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id"), index=True, nullable=False)
    website_id = Column(Integer, ForeignKey("websites.id"), index=True, nullable=False)
    query = Column(Text, nullable=False)
    response = Column(JSON)
    status = Column(String(16), nullable=False)  # pending, completed, failed

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "userId": self.user_id,
            "websiteId": self.website_id,
            "query": self.query,
            "response": self.response,
            "status": self.status,
            "createdAt": _iso(self.created_at),
            "updatedAt": _iso(self.updated_at),
        }


class ImplementationPlan(TimestampMixin, Base):
    """Ordered action plan generated from a set of insights."""

    __tablename__ = "implementation_plans"

    id = Column(Integer, primary_key=True, index=True)
    website_id = Column(Integer, ForeignKey("websites.id"), index=True, nullable=False)
    title = Column(String(255), nullable=False)
    summary = Column(Text, nullable=False)
    insight_ids = Column(JSON, default=list, nullable=False)
    steps = Column(JSON, default=list, nullable=False)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "websiteId": self.website_id,
            "title": self.title,
            "summary": self.summary,
            "insightIds": list(self.insight_ids or []),
            "steps": list(self.steps or []),
            "createdAt": _iso(self.created_at),
            "updatedAt": _iso(self.updated_at),
        }
