"""
GA4 Data / Admin API access.

Pulls the reports the dashboard and the prompts need:
- key metrics for the current and previous period (split in two batches
  because the Data API accepts at most 10 metrics per request)
- breakdowns by channel, source, page title and country
- daily history, landing pages and traffic sources for LLM context
- the list of GA4 properties the signed-in user can access

Raw responses are handed to ``ga4_insights.ga4.normalize`` which does the
field mapping.
"""

from __future__ import annotations

import re
from typing import Any, Dict, List, Optional

from google.analytics.admin_v1beta import AnalyticsAdminServiceClient
from google.analytics.admin_v1beta.types import ListPropertiesRequest
from google.analytics.data_v1beta import BetaAnalyticsDataClient
from google.analytics.data_v1beta.types import (
    DateRange,
    Dimension,
    Metric,
    OrderBy,
    RunReportRequest,
)
from google.api_core.exceptions import DeadlineExceeded, GoogleAPIError, ServiceUnavailable
from google.auth.exceptions import GoogleAuthError
from google.oauth2.credentials import Credentials

from ga4_insights import config
from ga4_insights.ga4 import normalize
from ga4_insights.utils.error_handler import ApiError, AuthenticationError, handle_exceptions, retry
from ga4_insights.utils.feature_flags import is_feature_enabled
from ga4_insights.utils.logging import get_logger

logger = get_logger(__name__)

SCOPES = [
    "openid",
    "https://www.googleapis.com/auth/userinfo.email",
    "https://www.googleapis.com/auth/userinfo.profile",
    "https://www.googleapis.com/auth/analytics.readonly",
]

# Keep in sync with the IDX_* constants in normalize.py
PRIMARY_METRICS = [
    "totalUsers",
    "conversions",
    "engagementRate",
    "userEngagementDuration",
    "sessionsPerUser",
    "engagedSessions",
    "screenPageViewsPerSession",
    "eventCount",
    "sessions",
    "activeUsers",
]
SECONDARY_METRICS = [
    "eventCountPerUser",
    "newUsers",
    "averageSessionDuration",
]
TOTALS_METRICS = ["screenPageViews", "eventCount", "dauPerMau"]
SPLIT_DIMENSIONS = ["platform", "deviceCategory"]

HISTORY_CORE_METRICS = ["totalUsers", "bounceRate", "averageSessionDuration"]
HISTORY_ENHANCED_METRICS = [
    "sessionsPerUser",
    "engagedSessions",
    "screenPageViewsPerSession",
    "eventCount",
    "userEngagementDuration",
    "newUsers",
]

GA4_ERRORS = (GoogleAPIError, GoogleAuthError)


def authenticate(refresh_token: Optional[str]) -> Credentials:
    """Build user credentials from a stored OAuth refresh token."""
    if not refresh_token:
        raise AuthenticationError("User authentication data is missing")
    return Credentials(
        token=None,
        refresh_token=refresh_token,
        client_id=config.GOOGLE_CLIENT_ID,
        client_secret=config.GOOGLE_CLIENT_SECRET,
        token_uri=config.GOOGLE_TOKEN_URI,
        scopes=SCOPES,
    )


def _report_request(
    property_id: str,
    metrics: List[str],
    *,
    start_date: str,
    end_date: str = "today",
    dimensions: Optional[List[str]] = None,
    limit: Optional[int] = None,
    order_by_metric: Optional[str] = None,
) -> RunReportRequest:
    kwargs: Dict[str, Any] = {
        "property": f"properties/{property_id}",
        "date_ranges": [DateRange(start_date=start_date, end_date=end_date)],
        "metrics": [Metric(name=name) for name in metrics],
        "dimensions": [Dimension(name=name) for name in dimensions or []],
    }
    if limit:
        kwargs["limit"] = limit
    if order_by_metric:
        kwargs["order_bys"] = [
            OrderBy(metric=OrderBy.MetricOrderBy(metric_name=order_by_metric), desc=True)
        ]
    return RunReportRequest(**kwargs)


def clean_domain(uri: str) -> str:
    """Strip the scheme and a trailing slash from a data stream URI."""
    return re.sub(r"/$", "", re.sub(r"^https?://", "", uri or ""))


class GA4Client:
    """Thin wrapper around the GA4 Data and Admin API clients for one user."""

    def __init__(
        self,
        credentials: Optional[Credentials] = None,
        data_client: Any = None,
        admin_client: Any = None,
    ):
        self.credentials = credentials
        self._data_client = data_client
        self._admin_client = admin_client

    @property
    def data_client(self) -> Any:
        if self._data_client is None:
            self._data_client = BetaAnalyticsDataClient(credentials=self.credentials)
        return self._data_client

    @property
    def admin_client(self) -> Any:
        if self._admin_client is None:
            self._admin_client = AnalyticsAdminServiceClient(credentials=self.credentials)
        return self._admin_client

    # ------------------------------------------------------------------
    # Report helpers
    # ------------------------------------------------------------------

    @retry(max_attempts=3, delay=1.0, backoff=2.0, exceptions=(ServiceUnavailable, DeadlineExceeded))
    def _run_report(self, request: RunReportRequest) -> Any:
        return self.data_client.run_report(request)

    def _required_report(self, label: str, request: RunReportRequest) -> Any:
        try:
            return self._run_report(request)
        except GA4_ERRORS as e:
            logger.error(f"GA4 {label} report failed: {e}")
            raise ApiError(f"Failed to fetch metrics from Google Analytics: {e}") from e

    def _optional_report(self, label: str, request: RunReportRequest) -> Any:
        try:
            return self._run_report(request)
        except GA4_ERRORS as e:
            logger.warning(f"Could not fetch GA4 {label} report, continuing without it: {e}")
            return None

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def fetch_key_metrics(self, property_id: str, days: int = 30) -> Dict[str, Any]:
        """Return the ``GA4MetricsData`` dict for the last ``days`` days."""
        if not is_feature_enabled("use_ga4_api"):
            raise ApiError("GA4 API access is disabled (ENABLE_USE_GA4_API=false)")

        current_start = f"{days}daysAgo"
        previous_start = f"{days * 2}daysAgo"
        previous_end = f"{days + 1}daysAgo"
        logger.info(f"Fetching GA4 key metrics for property {property_id} ({days} days)")

        current = self._required_report(
            "current period",
            _report_request(property_id, PRIMARY_METRICS, start_date=current_start, dimensions=SPLIT_DIMENSIONS),
        )
        previous = self._required_report(
            "previous period",
            _report_request(
                property_id,
                PRIMARY_METRICS,
                start_date=previous_start,
                end_date=previous_end,
                dimensions=SPLIT_DIMENSIONS,
            ),
        )

        secondary = None
        if is_feature_enabled("use_secondary_metrics"):
            secondary = self._optional_report(
                "secondary metrics",
                _report_request(property_id, SECONDARY_METRICS, start_date=current_start, dimensions=SPLIT_DIMENSIONS),
            )

        channel = source = pages = country = totals = None
        if is_feature_enabled("use_breakdown_reports"):
            channel = self._optional_report(
                "channel",
                _report_request(
                    property_id, ["sessions"], start_date=current_start, dimensions=["sessionDefaultChannelGroup"]
                ),
            )
            source = self._optional_report(
                "source",
                _report_request(
                    property_id, ["sessions"], start_date=current_start, dimensions=["sessionSource"], limit=10
                ),
            )
            pages = self._optional_report(
                "page views",
                _report_request(
                    property_id, ["screenPageViews"], start_date=current_start, dimensions=["pageTitle"], limit=15
                ),
            )
            country = self._optional_report(
                "country",
                _report_request(
                    property_id, ["totalUsers"], start_date=current_start, dimensions=["country"], limit=10
                ),
            )
            # No dimensions, so the totals are not double counted.
            totals = self._optional_report(
                "totals",
                _report_request(property_id, TOTALS_METRICS, start_date=current_start),
            )

        data = normalize.summarise_key_metrics(
            current,
            previous,
            current_secondary=secondary,
            totals=totals,
            channel=channel,
            source=source,
            pages=pages,
            country=country,
        )
        logger.info(
            f"GA4 metrics for {property_id}: {data['visitors']} users, "
            f"bounce rate {data['bounceRate']}, engagement {data['avgEngagementTime']}"
        )
        return data

    def fetch_historical_data(self, property_id: str, days: int = 60) -> Dict[str, Any]:
        """Daily trends, landing pages and traffic sources for LLM context."""
        start = f"{days}daysAgo"
        logger.info(f"Fetching {days} days of GA4 history for property {property_id}")

        core = self._required_report(
            "daily core",
            _report_request(property_id, HISTORY_CORE_METRICS, start_date=start, dimensions=["date"]),
        )
        enhanced = self._required_report(
            "daily enhanced",
            _report_request(property_id, HISTORY_ENHANCED_METRICS, start_date=start, dimensions=["date"]),
        )
        landing = self._required_report(
            "landing page",
            _report_request(
                property_id,
                ["totalUsers", "bounceRate", "averageSessionDuration"],
                start_date=start,
                dimensions=["landingPage"],
                limit=10,
                order_by_metric="totalUsers",
            ),
        )
        sources = self._required_report(
            "traffic source",
            _report_request(
                property_id,
                ["totalUsers", "bounceRate"],
                start_date=start,
                dimensions=["sessionSource"],
                limit=10,
                order_by_metric="totalUsers",
            ),
        )

        return {
            "dailyTrends": normalize.merge_daily_trends(core, enhanced),
            "landingPages": normalize.format_landing_pages(landing),
            "trafficSources": normalize.format_traffic_sources(sources),
            "periodCovered": f"{days} days",
        }

    def fetch_available_properties(self) -> List[Dict[str, str]]:
        """List the GA4 properties (with their web domain) the user can read."""
        properties: List[Dict[str, str]] = []
        try:
            accounts = list(self.admin_client.list_accounts())
        except GA4_ERRORS as e:
            logger.error(f"Error fetching GA4 accounts: {e}")
            raise ApiError(f"Failed to fetch properties from Google Analytics: {e}") from e

        for account in accounts:
            try:
                account_properties = list(
                    self.admin_client.list_properties(
                        request=ListPropertiesRequest(filter=f"parent:{account.name}")
                    )
                )
            except GA4_ERRORS as e:
                logger.error(f"Error fetching properties for {account.name}: {e}")
                raise ApiError(f"Failed to fetch properties from Google Analytics: {e}") from e

            for prop in account_properties:
                properties.append({
                    "accountName": account.display_name or "Unknown Account",
                    "propertyName": prop.display_name or "Unnamed Property",
                    "propertyId": (prop.name or "").split("/")[-1],
                    "domain": self._property_domain(prop.name),
                })

        logger.info(f"Found {len(properties)} GA4 properties across {len(accounts)} accounts")
        return properties

    @handle_exceptions(GA4_ERRORS, default_value="")
    def _property_domain(self, property_name: str) -> str:
        """Domain of the first web data stream; empty when streams cannot be read."""
        if not property_name:
            return ""
        for stream in self.admin_client.list_data_streams(parent=property_name):
            web = getattr(stream, "web_stream_data", None)
            if web is not None and web.default_uri:
                return clean_domain(web.default_uri)
        return ""
