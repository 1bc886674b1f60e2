import pytest
from fastapi.testclient import TestClient

from ga4_insights.backend import app as app_module
from ga4_insights.backend.app import app, current_user_id
from ga4_insights.llm import openai_service
from ga4_insights.storage import crud
from ga4_insights.utils.error_handler import ApiError, AuthenticationError

GA4_DATA = {
    "visitors": 500,
    "conversions": 20,
    "bounceRate": "40.00%",
    "visitorsChange": "+10.0%",
    "conversionsChange": "-5.0%",
    "bounceRateChange": "0.0%",
    "activeUsers": 480,
    "newUsers": 300,
    "eventCount": 4000,
    "avgEngagementTime": "1m 5s",
    "viewsCount": 1500,
    "userStickiness": "9.5%",
    "sessionsByChannel": {"direct": 200},
    "sessionsBySource": {"google": 250},
    "viewsByPage": {"Home": 900},
    "usersByCountry": {"US": 400},
}


class FakeGA4Client:
    def __init__(self, fail_history=False):
        self.fail_history = fail_history
        self.days = []

    def fetch_key_metrics(self, property_id, days=30):
        self.days.append(days)
        return dict(GA4_DATA)

    def fetch_historical_data(self, property_id, days=60):
        if self.fail_history:
            raise ApiError("history unavailable")
        return {"dailyTrends": [], "landingPages": [], "trafficSources": [], "periodCovered": f"{days} days"}

    def fetch_available_properties(self):
        return [{"accountName": "Acme", "propertyName": "Acme Web", "propertyId": "111", "domain": "acme.com"}]


@pytest.fixture
def ga4(monkeypatch):
    fake = FakeGA4Client()
    monkeypatch.setattr(app_module, "ga4_client", lambda refresh_token: fake)
    return fake


@pytest.fixture
def client(user):
    app.dependency_overrides[current_user_id] = lambda: user.id
    yield TestClient(app)
    app.dependency_overrides.clear()


@pytest.fixture
def other_user():
    return crud.insert_user({"email": "other@example.com", "name": "Other Person", "google_id": "google-other"})


def _generated_insight(title="Mobile Conversion Drop"):
    return {
        "title": title,
        "description": "Mobile converts at half the desktop rate.",
        "category": "Conversion",
        "impact": "High",
        "icon": "devices",
        "recommendations": ["Simplify checkout"],
    }


# ---------------------------------------------------------------------------
# Auth
# ---------------------------------------------------------------------------


def test_requires_session():
    anon = TestClient(app)
    resp = anon.get("/api/websites")
    assert resp.status_code == 401
    assert resp.json() == {"detail": "Unauthorized"}


def test_health():
    assert TestClient(app).get("/api/health").json() == {"status": "ok"}


def test_auth_url(monkeypatch):
    monkeypatch.setattr(app_module.oauth, "get_auth_url", lambda: "https://accounts.google.com/o/oauth2/auth?x=1")
    assert TestClient(app).get("/api/auth/url").json() == {"url": "https://accounts.google.com/o/oauth2/auth?x=1"}


def test_login_sets_session_and_logout_clears_it(monkeypatch, user):
    monkeypatch.setattr(app_module.oauth, "login_with_code", lambda code: user)
    browser = TestClient(app)

    resp = browser.post("/api/auth/callback", json={"code": "abc"})
    assert resp.status_code == 200
    assert resp.json() == {"success": True, "user": user.to_dict()}

    assert browser.get("/api/auth/user").json()["email"] == "owner@example.com"

    browser.post("/api/auth/logout")
    assert browser.get("/api/auth/user").status_code == 401


def test_google_redirect_goes_to_dashboard(monkeypatch, user):
    monkeypatch.setattr(app_module.oauth, "login_with_code", lambda code: user)
    resp = TestClient(app).get("/auth", params={"code": "abc"}, follow_redirects=False)
    assert resp.status_code == 302
    assert resp.headers["location"] == "http://localhost:8501"


def test_callback_errors(monkeypatch):
    browser = TestClient(app)
    assert browser.get("/api/auth/callback", follow_redirects=False).status_code == 400

    def _fail(code):
        raise AuthenticationError("Authentication failed: invalid_grant")

    monkeypatch.setattr(app_module.oauth, "login_with_code", _fail)
    resp = browser.post("/api/auth/callback", json={"code": "bad"})
    assert resp.status_code == 401
    assert "invalid_grant" in resp.json()["detail"]


# ---------------------------------------------------------------------------
# Websites
# ---------------------------------------------------------------------------


def test_website_crud(client, user):
    resp = client.post("/api/websites", json={"name": "My Shop", "domain": "shop.io", "gaPropertyId": "987"})
    assert resp.status_code == 201
    created = resp.json()
    assert created["gaPropertyId"] == "987"
    assert created["userId"] == user.id

    assert [w["id"] for w in client.get("/api/websites").json()] == [created["id"]]

    resp = client.delete(f"/api/websites/{created['id']}")
    assert resp.status_code == 200
    assert resp.json()["websiteId"] == created["id"]
    assert resp.json()["deleted"]["name"] == "My Shop"
    assert client.get("/api/websites").json() == []


def test_create_website_validation(client):
    resp = client.post("/api/websites", json={"name": "A", "domain": "shop.io", "gaPropertyId": "1"})
    assert resp.status_code == 400
    assert client.post("/api/websites", json={"name": "Missing fields"}).status_code == 422


def test_ownership_checks(client, other_user):
    foreign = crud.insert_website({
        "user_id": other_user.id, "name": "Foreign", "domain": "foreign.io", "ga_property_id": "5",
    })
    resp = client.get(f"/api/websites/{foreign.id}/metrics")
    assert resp.status_code == 403
    assert resp.json()["detail"] == "Not authorized to access this website"

    assert client.get("/api/websites/9999/metrics").status_code == 404
    assert client.get("/api/websites/abc/metrics").status_code == 422


def test_ga4_properties(client, ga4):
    assert client.get("/api/ga4-properties").json()[0]["domain"] == "acme.com"


def test_ga4_properties_needs_refresh_token(client, user, ga4):
    crud.update_user(user.id, {"refresh_token": None})
    resp = client.get("/api/ga4-properties")
    assert resp.status_code == 400
    assert resp.json()["detail"] == "User authentication data is missing"


# ---------------------------------------------------------------------------
# Metrics
# ---------------------------------------------------------------------------


def test_metrics_empty_then_synced(client, website, ga4):
    assert client.get(f"/api/websites/{website.id}/metrics").json() is None

    resp = client.post(f"/api/websites/{website.id}/metrics/sync", params={"days": 7})
    assert resp.status_code == 200
    synced = resp.json()
    assert synced["visitors"] == 500
    assert synced["pageSpeed"] == "0s"
    assert synced["sessionsBySource"] == {"google": 250}
    assert ga4.days == [7]

    assert client.get(f"/api/websites/{website.id}/metrics").json()["id"] == synced["id"]


@pytest.mark.parametrize("raw, expected", [("500", 90), ("0", 1), ("abc", 30), (None, 30)])
def test_sync_days_are_clamped(client, website, ga4, raw, expected):
    params = {"days": raw} if raw is not None else {}
    assert client.post(f"/api/websites/{website.id}/metrics/sync", params=params).status_code == 200
    assert ga4.days == [expected]


def test_sync_surfaces_ga4_errors(client, website, monkeypatch):
    class Broken(FakeGA4Client):
        def fetch_key_metrics(self, property_id, days=30):
            raise ApiError("Failed to fetch metrics from Google Analytics: denied")

    monkeypatch.setattr(app_module, "ga4_client", lambda refresh_token: Broken())
    resp = client.post(f"/api/websites/{website.id}/metrics/sync")
    assert resp.status_code == 500
    assert "denied" in resp.json()["detail"]


# ---------------------------------------------------------------------------
# Insights
# ---------------------------------------------------------------------------


def test_generate_insights_requires_metrics(client, website, ga4):
    resp = client.post(f"/api/websites/{website.id}/insights/generate")
    assert resp.status_code == 404
    assert resp.json()["detail"] == "No metrics found for this website"


def test_generate_and_list_insights(client, website, stored_metrics, monkeypatch):
    monkeypatch.setattr(app_module, "ga4_client", lambda refresh_token: FakeGA4Client(fail_history=True))
    seen = {}

    def fake_generate(metrics, historical, domain, ga_metrics=None):
        seen.update(metrics=metrics, historical=historical, domain=domain, ga_metrics=ga_metrics)
        return [_generated_insight(), _generated_insight("Organic Search Growth")]

    monkeypatch.setattr(openai_service, "generate_insights", fake_generate)

    resp = client.post(f"/api/websites/{website.id}/insights/generate")
    assert resp.status_code == 200
    assert [i["title"] for i in resp.json()] == ["Mobile Conversion Drop", "Organic Search Growth"]
    assert seen["domain"] == "shop.example.com"
    assert seen["metrics"]["visitors"] == 24582
    # History failed, the rest of the call went through without it.
    assert seen["historical"] is None
    assert seen["ga_metrics"]["visitors"] == 500

    listed = client.get(f"/api/websites/{website.id}/insights", params={"impact": "High", "limit": 1}).json()
    assert len(listed) == 1
    assert client.get(
        f"/api/websites/{website.id}/insights", params={"category": "Traffic"}
    ).json() == []


def test_summary(client, website, monkeypatch):
    monkeypatch.setattr(
        openai_service, "generate_insights_summary",
        lambda insights, metrics, domain: {"summary": f"{len(insights)} insights for {domain}"},
    )
    url = f"/api/websites/{website.id}/insights/summary"

    resp = client.post(url, json={"insights": [_generated_insight()], "metrics": {"visitors": 1}})
    assert resp.json() == {"summary": "1 insights for shop.example.com"}

    resp = client.post(url, json={"insights": []})
    assert resp.status_code == 400
    assert resp.json()["detail"] == "No insights selected"


# ---------------------------------------------------------------------------
# Reports
# ---------------------------------------------------------------------------


def test_report_is_generated_in_background(client, user, website, stored_metrics, ga4, monkeypatch):
    monkeypatch.setattr(
        openai_service, "generate_custom_report",
        lambda query, metrics, domain, historical=None, ga_metrics=None: {
            "title": "Answer", "summary": query, "findings": [], "causes": [],
            "recommendations": [], "nextSteps": [],
        },
    )

    resp = client.post(f"/api/websites/{website.id}/reports", json={"query": "Why did mobile drop?"})
    assert resp.status_code == 202
    body = resp.json()
    assert body["status"] == "pending"

    report = client.get(f"/api/reports/{body['id']}").json()
    assert report["status"] == "completed"
    assert report["response"]["summary"] == "Why did mobile drop?"
    assert [r["id"] for r in client.get("/api/reports").json()] == [body["id"]]


def test_report_failure_is_recorded(client, website, stored_metrics, ga4, monkeypatch):
    def _boom(*args, **kwargs):
        from ga4_insights.utils.error_handler import LLMResponseError

        raise LLMResponseError("Invalid JSON in OpenAI response")

    monkeypatch.setattr(openai_service, "generate_custom_report", _boom)

    body = client.post(f"/api/websites/{website.id}/reports", json={"query": "What happened in May?"}).json()
    report = client.get(f"/api/reports/{body['id']}").json()
    assert report["status"] == "failed"
    assert "Invalid JSON" in report["response"]["error"]


def test_report_validation_and_missing_prerequisites(client, user, website):
    url = f"/api/websites/{website.id}/reports"
    assert client.post(url, json={}).json()["detail"] == "Query is required"

    resp = client.post(url, json={"query": "Where do users come from?"})
    assert resp.status_code == 404
    reports = crud.get_reports_by_user_id(user.id)
    assert [r.status for r in reports] == ["failed"]


def test_report_of_other_user_is_forbidden(client, other_user, website):
    report = crud.insert_report({"user_id": other_user.id, "website_id": website.id, "query": "Is this mine?"})
    assert client.get(f"/api/reports/{report.id}").status_code == 403
    assert client.get("/api/reports/9999").status_code == 404


# ---------------------------------------------------------------------------
# Implementation plans
# ---------------------------------------------------------------------------


def test_implementation_plan_flow(client, website, monkeypatch):
    insight = crud.insert_insight({**_generated_insight(), "website_id": website.id})
    monkeypatch.setattr(
        openai_service, "generate_implementation_plan",
        lambda insights, domain: {
            "title": "Checkout plan",
            "summary": f"{len(insights)} insight(s)",
            "steps": [{"stepNumber": 1, "title": "Audit", "description": "", "priority": "High",
                       "effort": "Low", "estimatedTime": "1 day", "dependencies": [], "resources": []}],
        },
    )

    resp = client.post(
        f"/api/websites/{website.id}/implementation-plans", json={"insightIds": [insight.id, 9999]}
    )
    assert resp.status_code == 201
    plan = resp.json()
    assert plan["insightIds"] == [insight.id]
    assert plan["summary"] == "1 insight(s)"

    assert [p["id"] for p in client.get(f"/api/websites/{website.id}/implementation-plans").json()] == [plan["id"]]
    assert client.get(f"/api/implementation-plans/{plan['id']}").json()["title"] == "Checkout plan"

    assert client.delete(f"/api/implementation-plans/{plan['id']}").status_code == 200
    assert client.get(f"/api/implementation-plans/{plan['id']}").status_code == 404


def test_implementation_plan_input_errors(client, website):
    url = f"/api/websites/{website.id}/implementation-plans"
    resp = client.post(url, json={"insightIds": []})
    assert resp.status_code == 400
    assert resp.json()["detail"] == "No insights selected"

    resp = client.post(url, json={"insightIds": [12345]})
    assert resp.status_code == 404
    assert resp.json()["detail"] == "No valid insights found"


# ---------------------------------------------------------------------------
# Error responses
# ---------------------------------------------------------------------------


def test_missing_openai_key_is_a_json_error(client, website, stored_metrics, ga4, monkeypatch):
    monkeypatch.delenv("OPENAI_API_KEY", raising=False)

    resp = client.post(f"/api/websites/{website.id}/insights/generate")

    assert resp.status_code == 500
    assert resp.headers["content-type"].startswith("application/json")
    assert "OPENAI_API_KEY" in resp.json()["detail"]


def test_stray_value_error_is_a_json_error(client, website, monkeypatch):
    def _fail(insights, metrics, domain):
        raise ValueError("summary backend misconfigured")

    monkeypatch.setattr(openai_service, "generate_insights_summary", _fail)
    browser = TestClient(app, raise_server_exceptions=False)

    resp = browser.post(f"/api/websites/{website.id}/insights/summary", json={"insights": [_generated_insight()]})

    assert resp.status_code == 500
    assert resp.json() == {"detail": "summary backend misconfigured"}


def test_invalid_generated_plan_is_rejected_as_json(client, website, monkeypatch):
    insight = crud.insert_insight({**_generated_insight(), "website_id": website.id})
    monkeypatch.setattr(
        openai_service, "generate_implementation_plan",
        lambda insights, domain: {"title": "ab", "summary": "", "steps": []},
    )

    resp = client.post(f"/api/websites/{website.id}/implementation-plans", json={"insightIds": [insight.id]})

    assert resp.status_code == 400
    assert resp.json()["detail"].startswith("Invalid data:")
    assert crud.get_implementation_plans_by_website_id(website.id) == []


def test_unexpected_report_error_marks_report_failed(client, website, stored_metrics, ga4, monkeypatch):
    def _boom(*args, **kwargs):
        raise RuntimeError("database went away")

    monkeypatch.setattr(openai_service, "generate_custom_report", _boom)

    body = client.post(f"/api/websites/{website.id}/reports", json={"query": "What happened in May?"}).json()
    report = client.get(f"/api/reports/{body['id']}").json()
    assert report["status"] == "failed"
    assert report["response"] == {"error": "database went away"}
