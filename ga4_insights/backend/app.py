from __future__ import annotations

"""FastAPI backend for the GA4 Insights Copilot.

Run with:
    uvicorn ga4_insights.backend.app:app --reload --port 8000

Env vars required:
    OPENAI_API_KEY, GOOGLE_CLIENT_ID, GOOGLE_CLIENT_SECRET
"""

from typing import Any, Dict, List, Optional

from fastapi import APIRouter, BackgroundTasks, Depends, FastAPI, HTTPException, Query, Request
from fastapi.responses import JSONResponse, RedirectResponse
from loguru import logger
from pydantic import ValidationError
from starlette.middleware.sessions import SessionMiddleware

from ga4_insights import config
from ga4_insights.auth import oauth
from ga4_insights.backend.schemas import (
    CallbackRequest,
    ImplementationPlanRequest,
    ReportRequest,
    SummaryRequest,
    WebsiteRequest,
)
from ga4_insights.ga4 import normalize
from ga4_insights.ga4 import service as ga4_service
from ga4_insights.llm import openai_service
from ga4_insights.storage import crud
from ga4_insights.storage.models import User, Website
from ga4_insights.utils.error_handler import ApiError, AuthenticationError, LLMResponseError
from ga4_insights.utils.feature_flags import is_feature_enabled

# App setup
# -----------------------------------------------------------------------------

app = FastAPI(title="GA4 Insights Copilot", version="0.1.0")
app.add_middleware(
    SessionMiddleware,
    secret_key=config.SESSION_SECRET,
    max_age=config.SESSION_MAX_AGE,
    https_only=config.COOKIE_SECURE,
)

api = APIRouter(prefix="/api")


@app.exception_handler(AuthenticationError)
async def _auth_error(request: Request, exc: AuthenticationError):
    return JSONResponse(status_code=401, content={"detail": str(exc)})


@app.exception_handler(ApiError)
async def _api_error(request: Request, exc: ApiError):
    return JSONResponse(status_code=500, content={"detail": str(exc)})


@app.exception_handler(LLMResponseError)
async def _llm_error(request: Request, exc: LLMResponseError):
    return JSONResponse(status_code=500, content={"detail": f"Failed to generate a response: {exc}"})


@app.exception_handler(ValidationError)
async def _validation_error(request: Request, exc: ValidationError):
    errors = exc.errors()
    message = errors[0].get("msg") if errors else str(exc)
    return JSONResponse(status_code=400, content={"detail": f"Invalid data: {message}"})


@app.exception_handler(ValueError)
async def _value_error(request: Request, exc: ValueError):
    logger.error(f"{request.method} {request.url.path} failed: {exc}")
    return JSONResponse(status_code=500, content={"detail": str(exc)})


# ---------------------------------------------------------------------------
# Dependencies & helpers
# ---------------------------------------------------------------------------


def current_user_id(request: Request) -> int:
    user_id = request.session.get("user_id")
    if not user_id:
        raise HTTPException(status_code=401, detail="Unauthorized")
    return int(user_id)


def current_user(user_id: int = Depends(current_user_id)) -> User:
    user = crud.get_user_by_id(user_id)
    if user is None:
        raise HTTPException(status_code=401, detail="Unauthorized")
    return user


def owned_website(website_id: int, user_id: int) -> Website:
    website = crud.get_website_by_id(website_id)
    if website is None:
        raise HTTPException(status_code=404, detail="Website not found")
    if website.user_id != user_id:
        raise HTTPException(status_code=403, detail="Not authorized to access this website")
    return website


def require_refresh_token(user: Optional[User]) -> str:
    if user is None or not user.refresh_token:
        raise HTTPException(status_code=400, detail="User authentication data is missing")
    return user.refresh_token


def ga4_client(refresh_token: str) -> ga4_service.GA4Client:
    return ga4_service.GA4Client(ga4_service.authenticate(refresh_token))


def parse_days(raw: Optional[str]) -> int:
    """Sync window in days, clamped to ``1..MAX_SYNC_DAYS``."""
    try:
        days = int(raw) if raw is not None else config.DEFAULT_SYNC_DAYS
    except ValueError:
        return config.DEFAULT_SYNC_DAYS
    return max(1, min(config.MAX_SYNC_DAYS, days))


def _ga4_context(website: Website, refresh_token: str) -> Dict[str, Any]:
    """Best-effort live GA4 data for prompts; an empty context on failure."""
    context: Dict[str, Any] = {"historical": None, "ga_metrics": None}
    try:
        client = ga4_client(refresh_token)
    except ApiError as e:
        logger.warning(f"Continuing without live GA4 data for website {website.id}: {e}")
        return context

    if is_feature_enabled("use_historical_data"):
        try:
            context["historical"] = client.fetch_historical_data(
                website.ga_property_id, days=config.HISTORICAL_DAYS
            )
        except ApiError as e:
            logger.warning(f"Continuing without GA4 history for website {website.id}: {e}")
    try:
        context["ga_metrics"] = client.fetch_key_metrics(website.ga_property_id)
    except ApiError as e:
        logger.warning(f"Continuing without GA4 breakdowns for website {website.id}: {e}")
    return context


def _login(request: Request, code: Optional[str]) -> User:
    if not code:
        raise HTTPException(status_code=400, detail="Authorization code is required")
    user = oauth.login_with_code(code)
    request.session["user_id"] = user.id
    logger.info(f"User {user.id} signed in")
    return user


# ---------------------------------------------------------------------------
# Auth
# ---------------------------------------------------------------------------


@api.get("/auth/url")
def auth_url():
    return {"url": oauth.get_auth_url()}


@api.get("/auth/callback")
def auth_callback(request: Request, code: Optional[str] = None):
    _login(request, code)
    return RedirectResponse(url=config.DASHBOARD_URL, status_code=302)


@app.get("/auth")
def google_redirect(request: Request, code: Optional[str] = None):
    _login(request, code)
    return RedirectResponse(url=config.DASHBOARD_URL, status_code=302)


@api.post("/auth/callback")
def auth_callback_post(request: Request, body: Optional[CallbackRequest] = None, code: Optional[str] = None):
    user = _login(request, code or (body.code if body else None))
    return {"success": True, "user": user.to_dict()}


@api.get("/auth/user")
def auth_user(user: User = Depends(current_user)):
    return user.to_dict()


@api.post("/auth/logout")
def auth_logout(request: Request):
    request.session.clear()
    return {"success": True}


# ---------------------------------------------------------------------------
# Websites & properties
# ---------------------------------------------------------------------------


@api.get("/websites")
def list_websites(user_id: int = Depends(current_user_id)):
    return [website.to_dict() for website in crud.get_websites_by_user_id(user_id)]


@api.post("/websites", status_code=201)
def create_website(body: WebsiteRequest, user_id: int = Depends(current_user_id)):
    try:
        website = crud.insert_website({
            "user_id": user_id,
            "name": body.name,
            "domain": body.domain,
            "ga_property_id": body.gaPropertyId,
        })
    except ValidationError as e:
        raise HTTPException(status_code=400, detail=f"Invalid website data: {e.errors()[0].get('msg')}")
    logger.info(f"Website {website.id} ({website.domain}) added by user {user_id}")
    return website.to_dict()


@api.delete("/websites/{website_id}")
def remove_website(website_id: int, user_id: int = Depends(current_user_id)):
    owned_website(website_id, user_id)
    deleted = crud.delete_website(website_id)
    if deleted is None:
        raise HTTPException(status_code=404, detail="Website not found")
    return {
        "message": "Website deleted successfully",
        "websiteId": website_id,
        "deleted": deleted.to_dict(),
    }


@api.get("/ga4-properties")
def list_ga4_properties(user: User = Depends(current_user)):
    refresh_token = require_refresh_token(user)
    return ga4_client(refresh_token).fetch_available_properties()


# ---------------------------------------------------------------------------
# Metrics
# ---------------------------------------------------------------------------


@api.get("/websites/{website_id}/metrics")
def latest_metrics(website_id: int, user_id: int = Depends(current_user_id)):
    owned_website(website_id, user_id)
    metrics = crud.get_latest_metrics_by_website_id(website_id)
    return metrics.to_dict() if metrics else None


@api.post("/websites/{website_id}/metrics/sync")
def sync_metrics(
    website_id: int,
    days: Optional[str] = Query(default=None),
    user: User = Depends(current_user),
):
    website = owned_website(website_id, user.id)
    refresh_token = require_refresh_token(user)
    window = parse_days(days)

    data = ga4_client(refresh_token).fetch_key_metrics(website.ga_property_id, days=window)
    stored = crud.insert_metrics(normalize.format_metrics_for_storage(data, website.id))
    logger.info(f"Synced {window} days of GA4 metrics for website {website.id}")
    return stored.to_dict()


# ---------------------------------------------------------------------------
# Insights
# ---------------------------------------------------------------------------


@api.get("/websites/{website_id}/insights")
def list_insights(
    website_id: int,
    category: Optional[str] = None,
    impact: Optional[str] = None,
    limit: int = 10,
    offset: int = 0,
    user_id: int = Depends(current_user_id),
):
    owned_website(website_id, user_id)
    insights = crud.get_insights_by_website_id(
        website_id, category=category, impact=impact, limit=limit, offset=offset
    )
    return [insight.to_dict() for insight in insights]


@api.post("/websites/{website_id}/insights/generate")
def generate_insights(website_id: int, user: User = Depends(current_user)):
    website = owned_website(website_id, user.id)
    metrics = crud.get_latest_metrics_by_website_id(website_id)
    if metrics is None:
        raise HTTPException(status_code=404, detail="No metrics found for this website")
    refresh_token = require_refresh_token(user)

    context = _ga4_context(website, refresh_token)
    generated = openai_service.generate_insights(
        metrics.to_dict(),
        context["historical"],
        website.domain,
        ga_metrics=context["ga_metrics"],
    )
    stored = [crud.insert_insight({**item, "website_id": website.id}) for item in generated]
    logger.info(f"Stored {len(stored)} insights for website {website.id}")
    return [insight.to_dict() for insight in stored]


@api.post("/websites/{website_id}/insights/summary")
def summarise_insights(website_id: int, body: SummaryRequest, user_id: int = Depends(current_user_id)):
    website = owned_website(website_id, user_id)
    if not body.insights:
        raise HTTPException(status_code=400, detail="No insights selected")
    return openai_service.generate_insights_summary(body.insights, body.metrics, website.domain)


# ---------------------------------------------------------------------------
# Reports
# ---------------------------------------------------------------------------


def run_report(report_id: int, website_id: int, refresh_token: str) -> None:
    """Background job: fill in a pending report or mark it failed."""
    report = crud.get_report_by_id(report_id)
    website = crud.get_website_by_id(website_id)
    metrics = crud.get_latest_metrics_by_website_id(website_id)
    if report is None or website is None or metrics is None:
        logger.error(f"Report {report_id} lost its website or metrics before generation")
        crud.update_report(report_id, {"status": "failed"})
        return

    try:
        context = _ga4_context(website, refresh_token)
        response = openai_service.generate_custom_report(
            report.query,
            metrics.to_dict(),
            website.domain,
            historical=context["historical"],
            ga_metrics=context["ga_metrics"],
        )
    except (LLMResponseError, ValueError) as e:
        logger.error(f"Report {report_id} failed: {e}")
        crud.update_report(report_id, {"status": "failed", "response": {"error": str(e)}})
        return
    except Exception as e:
        logger.exception(f"Report {report_id} failed unexpectedly")
        crud.update_report(report_id, {"status": "failed", "response": {"error": str(e)}})
        return

    crud.update_report(report_id, {"status": "completed", "response": response})
    logger.info(f"Report {report_id} completed")


@api.post("/websites/{website_id}/reports", status_code=202)
def create_report(
    website_id: int,
    body: ReportRequest,
    background_tasks: BackgroundTasks,
    user: User = Depends(current_user),
):
    website = owned_website(website_id, user.id)
    query = (body.query or "").strip()
    if not query:
        raise HTTPException(status_code=400, detail="Query is required")

    try:
        report = crud.insert_report({
            "user_id": user.id,
            "website_id": website.id,
            "query": query,
            "status": "pending",
        })
    except ValidationError as e:
        raise HTTPException(status_code=400, detail=f"Invalid report query: {e.errors()[0].get('msg')}")

    if crud.get_latest_metrics_by_website_id(website.id) is None:
        crud.update_report(report.id, {"status": "failed"})
        raise HTTPException(status_code=404, detail="No metrics found for this website")
    if not user.refresh_token:
        crud.update_report(report.id, {"status": "failed"})
        raise HTTPException(status_code=400, detail="User authentication data is missing")

    background_tasks.add_task(run_report, report.id, website.id, user.refresh_token)
    return {"id": report.id, "status": "pending", "message": "Report generation started"}


@api.get("/reports/{report_id}")
def get_report(report_id: int, user_id: int = Depends(current_user_id)):
    report = crud.get_report_by_id(report_id)
    if report is None:
        raise HTTPException(status_code=404, detail="Report not found")
    if report.user_id != user_id:
        raise HTTPException(status_code=403, detail="Not authorized to access this report")
    return report.to_dict()


@api.get("/reports")
def list_reports(user_id: int = Depends(current_user_id)):
    return [report.to_dict() for report in crud.get_reports_by_user_id(user_id)]


# ---------------------------------------------------------------------------
# Implementation plans
# ---------------------------------------------------------------------------


def owned_plan(plan_id: int, user_id: int):
    plan = crud.get_implementation_plan_by_id(plan_id)
    if plan is None:
        raise HTTPException(status_code=404, detail="Implementation plan not found")
    owned_website(plan.website_id, user_id)
    return plan


@api.get("/websites/{website_id}/implementation-plans")
def list_plans(website_id: int, user_id: int = Depends(current_user_id)):
    owned_website(website_id, user_id)
    return [plan.to_dict() for plan in crud.get_implementation_plans_by_website_id(website_id)]


@api.get("/implementation-plans/{plan_id}")
def get_plan(plan_id: int, user_id: int = Depends(current_user_id)):
    return owned_plan(plan_id, user_id).to_dict()


@api.post("/websites/{website_id}/implementation-plans", status_code=201)
def create_plan(website_id: int, body: ImplementationPlanRequest, user_id: int = Depends(current_user_id)):
    website = owned_website(website_id, user_id)
    if not body.insightIds:
        raise HTTPException(status_code=400, detail="No insights selected")

    insights: List[Any] = []
    for insight_id in body.insightIds:
        insight = crud.get_insight_by_id(insight_id)
        if insight is not None and insight.website_id == website.id:
            insights.append(insight)
    if not insights:
        raise HTTPException(status_code=404, detail="No valid insights found")

    plan = openai_service.generate_implementation_plan(
        [insight.to_dict() for insight in insights], website.domain
    )
    stored = crud.insert_implementation_plan({
        "website_id": website.id,
        "title": plan["title"],
        "summary": plan["summary"],
        "insight_ids": [insight.id for insight in insights],
        "steps": plan["steps"],
    })
    logger.info(f"Implementation plan {stored.id} created for website {website.id}")
    return stored.to_dict()


@api.delete("/implementation-plans/{plan_id}")
def delete_plan(plan_id: int, user_id: int = Depends(current_user_id)):
    owned_plan(plan_id, user_id)
    crud.delete_implementation_plan(plan_id)
    return {"message": "Implementation plan deleted successfully", "planId": plan_id}


# ---------------------------------------------------------------------------
# Health
# ---------------------------------------------------------------------------


@api.get("/health")
def health():
    return {"status": "ok"}


app.include_router(api)
