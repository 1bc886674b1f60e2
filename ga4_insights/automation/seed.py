from __future__ import annotations

"""Load demo data so the dashboard has something to show.

Usage: python -m ga4_insights.automation.seed [--reset]
"""
import argparse
import datetime
import sys
from typing import List, Optional

from ga4_insights.storage import crud
from ga4_insights.storage.db import drop_db, init_db
from ga4_insights.storage.models import User
from ga4_insights.utils.logging import get_logger, log_function_call

logger = get_logger(__name__)

DEMO_USER = {
    "email": "demo@example.com",
    "name": "Demo User",
    "google_id": "demo_google_id",
    "access_token": "demo_access_token",
    "refresh_token": "demo_refresh_token",
}

DEMO_WEBSITE = {
    "name": "Example Website",
    "domain": "example.com",
    "ga_property_id": "123456789",
}

DEMO_METRICS = {
    "visitors": 24582,
    "conversions": 1284,
    "bounce_rate": "42.8%",
    "page_speed": "2.4s",
    "visitors_change": "+12.3%",
    "conversions_change": "+8.7%",
    "bounce_rate_change": "-3.2%",
    "page_speed_change": "+5.1%",
    "active_users": 21340,
    "new_users": 15872,
    "event_count": 312450,
    "avg_engagement_time": "1m 52s",
    "views_count": 88213,
    "user_stickiness": "11.3%",
    "sessions_by_channel": {"organic search": 14210, "direct": 6120, "referral": 2310, "organic social": 1942},
    "sessions_by_source": {"google": 13850, "(direct)": 6120, "facebook.com": 1210, "bing": 360},
    "views_by_page": {"Home": 31020, "Pricing": 12044, "Blog": 9875, "Contact": 3012},
    "users_by_country": {"US": 11200, "GB": 3420, "DE": 2105, "FR": 1630},
}

DEMO_INSIGHTS = [
    {
        "title": "Mobile Conversion Drop",
        "description": "Mobile users convert at less than half the desktop rate while making up 58% of visitors.",
        "category": "Conversion",
        "impact": "High",
        "icon": "devices",
        "recommendations": [
            "Shorten the mobile checkout form to the essential fields",
            "Add wallet payment options for mobile browsers",
        ],
    },
    {
        "title": "Organic Search Growth",
        "description": "Organic search sessions grew steadily and now drive more than half of all traffic.",
        "category": "Traffic",
        "impact": "Medium",
        "icon": "trending_up",
        "recommendations": [
            "Expand the best performing blog topics into a content cluster",
            "Refresh meta descriptions on the top ten landing pages",
        ],
    },
    {
        "title": "Slow Pricing Page",
        "description": "The pricing page has the highest exit rate among key pages and loads noticeably slower.",
        "category": "Performance",
        "impact": "Medium",
        "icon": "speed",
        "recommendations": [
            "Compress hero images on the pricing page",
            "Defer third-party scripts until after first paint",
        ],
    },
]


@log_function_call()
def seed() -> Optional[User]:
    """Insert the demo records; returns the demo user, or ``None`` when skipped."""
    if crud.get_user_by_email(DEMO_USER["email"]) is not None:
        logger.info("Demo data already present; nothing to do.")
        return None

    user = crud.insert_user(DEMO_USER)
    website = crud.insert_website({**DEMO_WEBSITE, "user_id": user.id})
    crud.insert_metrics({
        **DEMO_METRICS,
        "website_id": website.id,
        "date": datetime.datetime.now(datetime.timezone.utc).replace(tzinfo=None),
    })
    for insight in DEMO_INSIGHTS:
        crud.insert_insight({**insight, "website_id": website.id})

    logger.info(f"Seeded demo user {user.email} with website {website.domain}")
    return user


def main(argv: Optional[List[str]] = None) -> int:
    parser = argparse.ArgumentParser(description="Seed the database with demo data")
    parser.add_argument("--reset", action="store_true", help="Drop and recreate all tables first")
    args = parser.parse_args(argv)

    if args.reset:
        logger.warning("Dropping all tables")
        drop_db()
        init_db()
    seed()
    return 0


if __name__ == "__main__":
    sys.exit(main())
