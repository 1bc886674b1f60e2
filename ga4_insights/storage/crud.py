from typing import Any, Dict, List, Optional

from sqlalchemy.orm import Session

from .db import SessionLocal, init_db
from .models import (
    ImplementationPlan,
    Insight,
    Metric,
    Report,
    User,
    Website,
    utcnow,
)
from .schemas import (
    ImplementationPlanCreate,
    InsightCreate,
    MetricCreate,
    ReportCreate,
    UserCreate,
    WebsiteCreate,
)

# Ensure tables exist on first import.
init_db()

ALL_CATEGORIES = "All Categories"
ALL_IMPACTS = "All Impacts"


def _insert(row: Any) -> Any:
    db: Session = SessionLocal()
    try:
        db.add(row)
        db.commit()
        db.refresh(row)
        return row
    finally:
        db.close()


def _update(model: Any, row_id: int, data: Dict[str, Any]) -> Optional[Any]:
    db: Session = SessionLocal()
    try:
        row = db.get(model, row_id)
        if row is None:
            return None
        for key, value in data.items():
            setattr(row, key, value)
        row.updated_at = utcnow()
        db.commit()
        db.refresh(row)
        return row
    finally:
        db.close()


def _get(model: Any, row_id: int) -> Optional[Any]:
    db: Session = SessionLocal()
    try:
        return db.get(model, row_id)
    finally:
        db.close()


# ---------------------------------------------------------------------------
# Users
# ---------------------------------------------------------------------------

def get_user_by_email(email: str) -> Optional[User]:
    db: Session = SessionLocal()
    try:
        return db.query(User).filter(User.email == email).first()
    finally:
        db.close()


def get_user_by_id(user_id: int) -> Optional[User]:
    return _get(User, user_id)


def get_user_by_google_id(google_id: str) -> Optional[User]:
    db: Session = SessionLocal()
    try:
        return db.query(User).filter(User.google_id == google_id).first()
    finally:
        db.close()


def insert_user(data: Dict[str, Any]) -> User:
    validated = UserCreate(**data)
    return _insert(User(**validated.model_dump()))


def update_user(user_id: int, data: Dict[str, Any]) -> Optional[User]:
    return _update(User, user_id, data)


# ---------------------------------------------------------------------------
# Websites
# ---------------------------------------------------------------------------

def get_websites_by_user_id(user_id: int) -> List[Website]:
    db: Session = SessionLocal()
    try:
        return (
            db.query(Website)
            .filter(Website.user_id == user_id)
            .order_by(Website.name.asc())
            .all()
        )
    finally:
        db.close()


def get_all_websites() -> List[Website]:
    db: Session = SessionLocal()
    try:
        return db.query(Website).order_by(Website.id.asc()).all()
    finally:
        db.close()


def get_website_by_id(website_id: int) -> Optional[Website]:
    return _get(Website, website_id)


def insert_website(data: Dict[str, Any]) -> Website:
    validated = WebsiteCreate(**data)
    return _insert(Website(**validated.model_dump()))


def delete_website(website_id: int) -> Optional[Website]:
    """Delete a website together with every row that references it.

    Returns the deleted website, or ``None`` when it did not exist.
    """
    db: Session = SessionLocal()
    try:
        website = db.get(Website, website_id)
        if website is None:
            return None
        for model in (Metric, Insight, Report, ImplementationPlan):
            db.query(model).filter(model.website_id == website_id).delete(synchronize_session=False)
        db.delete(website)
        db.commit()
        return website
    finally:
        db.close()


# ---------------------------------------------------------------------------
# Metrics
# ---------------------------------------------------------------------------

def get_latest_metrics_by_website_id(website_id: int) -> Optional[Metric]:
    db: Session = SessionLocal()
    try:
        return (
            db.query(Metric)
            .filter(Metric.website_id == website_id)
            .order_by(Metric.date.desc(), Metric.id.desc())
            .first()
        )
    finally:
        db.close()


def insert_metrics(data: Dict[str, Any]) -> Metric:
    validated = MetricCreate(**data)
    return _insert(Metric(**validated.model_dump()))


# ---------------------------------------------------------------------------
# Insights
# ---------------------------------------------------------------------------

def get_insights_by_website_id(
    website_id: int,
    category: Optional[str] = None,
    impact: Optional[str] = None,
    limit: Optional[int] = None,
    offset: Optional[int] = None,
) -> List[Insight]:
    """Return insights newest first, optionally filtered by category / impact.

    The dashboard's "All Categories" / "All Impacts" choices mean no filter.
    """
    db: Session = SessionLocal()
    try:
        query = db.query(Insight).filter(Insight.website_id == website_id)
        if category and category != ALL_CATEGORIES:
            query = query.filter(Insight.category == category)
        if impact and impact != ALL_IMPACTS:
            query = query.filter(Insight.impact == impact)
        return (
            query.order_by(Insight.detected_at.desc(), Insight.id.desc())
            .offset(offset if offset is not None else 0)
            .limit(limit if limit is not None else 100)
            .all()
        )
    finally:
        db.close()


def get_insight_by_id(insight_id: int) -> Optional[Insight]:
    return _get(Insight, insight_id)


def insert_insight(data: Dict[str, Any]) -> Insight:
    validated = InsightCreate(**data).model_dump()
    if validated["detected_at"] is None:
        validated["detected_at"] = utcnow()
    return _insert(Insight(**validated))


# ---------------------------------------------------------------------------
# Reports
# ---------------------------------------------------------------------------

def get_reports_by_user_id(user_id: int) -> List[Report]:
    db: Session = SessionLocal()
    try:
        return (
            db.query(Report)
            .filter(Report.user_id == user_id)
            .order_by(Report.created_at.desc(), Report.id.desc())
            .all()
        )
    finally:
        db.close()


def get_report_by_id(report_id: int) -> Optional[Report]:
    return _get(Report, report_id)


def insert_report(data: Dict[str, Any]) -> Report:
    validated = ReportCreate(**data)
    return _insert(Report(**validated.model_dump()))


def update_report(report_id: int, data: Dict[str, Any]) -> Optional[Report]:
    return _update(Report, report_id, data)


# ---------------------------------------------------------------------------
# Implementation plans
# ---------------------------------------------------------------------------

def get_implementation_plans_by_website_id(website_id: int) -> List[ImplementationPlan]:
    db: Session = SessionLocal()
    try:
        return (
            db.query(ImplementationPlan)
            .filter(ImplementationPlan.website_id == website_id)
            .order_by(ImplementationPlan.created_at.desc(), ImplementationPlan.id.desc())
            .all()
        )
    finally:
        db.close()


def get_implementation_plan_by_id(plan_id: int) -> Optional[ImplementationPlan]:
    return _get(ImplementationPlan, plan_id)


def insert_implementation_plan(data: Dict[str, Any]) -> ImplementationPlan:
    validated = ImplementationPlanCreate(**data)
    return _insert(ImplementationPlan(**validated.model_dump()))


def delete_implementation_plan(plan_id: int) -> bool:
    db: Session = SessionLocal()
    try:
        plan = db.get(ImplementationPlan, plan_id)
        if plan is None:
            return False
        db.delete(plan)
        db.commit()
        return True
    finally:
        db.close()
