from __future__ import annotations

"""Pull fresh GA4 metrics for every stored website.

Meant to run from cron:

    python -m ga4_insights.automation.sync_metrics --days 30 --with-insights

Each website is synced with its owner's refresh token. Failures are logged and
counted; the exit status is 1 when at least one website failed.
"""
import argparse
import sys
from typing import List, Optional

from ga4_insights import config
from ga4_insights.ga4 import normalize
from ga4_insights.ga4.service import GA4Client, authenticate
from ga4_insights.llm import openai_service
from ga4_insights.storage import crud
from ga4_insights.storage.models import Website
from ga4_insights.utils.error_handler import ApiError, LLMResponseError
from ga4_insights.utils.feature_flags import is_feature_enabled
from ga4_insights.utils.logging import get_logger

logger = get_logger(__name__)


def sync_website(website: Website, days: int, with_insights: bool = False) -> None:
    """Fetch and store metrics for one website; raises on failure."""
    owner = crud.get_user_by_id(website.user_id)
    client = GA4Client(authenticate(owner.refresh_token if owner else None))

    data = client.fetch_key_metrics(website.ga_property_id, days=days)
    stored = crud.insert_metrics(normalize.format_metrics_for_storage(data, website.id))
    logger.info(f"Stored metrics {stored.id} for {website.domain} ({stored.visitors} visitors)")

    if not with_insights:
        return

    historical = None
    if is_feature_enabled("use_historical_data"):
        try:
            historical = client.fetch_historical_data(website.ga_property_id, days=config.HISTORICAL_DAYS)
        except ApiError as e:
            logger.warning(f"No historical data for {website.domain}: {e}")

    insights = openai_service.generate_insights(stored.to_dict(), historical, website.domain, ga_metrics=data)
    for item in insights:
        crud.insert_insight({**item, "website_id": website.id})
    logger.info(f"Stored {len(insights)} insights for {website.domain}")


def _select_websites(website_id: Optional[int]) -> List[Website]:
    if website_id is None:
        return crud.get_all_websites()
    website = crud.get_website_by_id(website_id)
    return [website] if website else []


def main(argv: Optional[List[str]] = None) -> int:
    parser = argparse.ArgumentParser(description="Sync GA4 metrics for stored websites")
    parser.add_argument("--days", type=int, default=config.DEFAULT_SYNC_DAYS)
    parser.add_argument("--website-id", type=int, help="Only sync this website")
    parser.add_argument("--with-insights", action="store_true", help="Generate insights after syncing")
    args = parser.parse_args(argv)

    days = max(1, min(config.MAX_SYNC_DAYS, args.days))
    websites = _select_websites(args.website_id)
    if not websites:
        logger.error("No websites to sync.")
        return 1

    failures = 0
    for website in websites:
        try:
            sync_website(website, days, with_insights=args.with_insights)
        except (ApiError, LLMResponseError, ValueError) as e:
            failures += 1
            logger.error(f"Sync failed for website {website.id} ({website.domain}): {e}")

    logger.info(f"Synced {len(websites) - failures}/{len(websites)} websites")
    return 1 if failures else 0


if __name__ == "__main__":
    sys.exit(main())
