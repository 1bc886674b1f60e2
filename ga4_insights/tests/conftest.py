import os
import sys
import tempfile
from pathlib import Path
from types import SimpleNamespace

import pytest

PROJECT_ROOT = Path(__file__).resolve().parents[2]
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

# Point the storage layer at a throwaway SQLite file *before* it is imported.
_TMP_DIR = tempfile.mkdtemp(prefix="ga4_insights_tests_")
os.environ["GA4_INSIGHTS_DB"] = f"sqlite:///{Path(_TMP_DIR) / 'test.db'}"
os.environ.setdefault("OPENAI_API_KEY", "sk-test")
os.environ.setdefault("GOOGLE_CLIENT_ID", "test-client-id")
os.environ.setdefault("GOOGLE_CLIENT_SECRET", "test-client-secret")

from ga4_insights.storage.db import drop_db, init_db  # noqa: E402


@pytest.fixture(autouse=True)
def fresh_db():
    """Every test starts from empty tables."""
    drop_db()
    init_db()
    yield


@pytest.fixture
def no_sleep(monkeypatch):
    """Make the retry decorator return immediately."""
    monkeypatch.setattr("ga4_insights.utils.error_handler.time.sleep", lambda _s: None)


def make_row(dimensions, metrics):
    return SimpleNamespace(
        dimension_values=[SimpleNamespace(value=d) for d in dimensions],
        metric_values=[SimpleNamespace(value=str(m)) for m in metrics],
    )


def make_response(rows):
    """A stand-in for ``RunReportResponse``: ``rows`` is ``[(dims, metrics), ...]``."""
    return SimpleNamespace(rows=[make_row(d, m) for d, m in rows])


@pytest.fixture
def ga4_response():
    return make_response


@pytest.fixture
def user():
    from ga4_insights.storage import crud

    return crud.insert_user({
        "email": "owner@example.com",
        "name": "Site Owner",
        "google_id": "google-owner",
        "access_token": "access",
        "refresh_token": "refresh",
    })


@pytest.fixture
def website(user):
    from ga4_insights.storage import crud

    return crud.insert_website({
        "user_id": user.id,
        "name": "Example Shop",
        "domain": "shop.example.com",
        "ga_property_id": "123456789",
    })


@pytest.fixture
def stored_metrics(website):
    import datetime

    from ga4_insights.storage import crud

    return crud.insert_metrics({
        "website_id": website.id,
        "date": datetime.datetime(2024, 5, 1, 12, 0),
        "visitors": 24582,
        "conversions": 1284,
        "bounce_rate": "42.80%",
        "page_speed": "0s",
        "visitors_change": "+12.3%",
        "conversions_change": "+8.7%",
        "bounce_rate_change": "-3.2%",
        "page_speed_change": "0%",
        "sessions_by_channel": {"organic search": 1200, "direct": 800},
    })
