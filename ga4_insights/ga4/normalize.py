"""Turn raw GA4 Data API responses into the fixed-shape records we store.

Everything here is pure: the functions take ``RunReportResponse`` objects (or
anything exposing ``rows[].dimension_values[].value`` and
``rows[].metric_values[].value``) and return plain dicts, which keeps the
mapping testable without a Google client.

Metric positions follow the order of the metric lists declared in
``ga4_insights.ga4.service``; if you reorder those lists, update the index
constants below.
"""

from __future__ import annotations

import datetime
import math
from typing import Any, Callable, Dict, List, Optional

# Primary batch positions (see service.PRIMARY_METRICS)
IDX_TOTAL_USERS = 0
IDX_CONVERSIONS = 1
IDX_ENGAGEMENT_RATE = 2
IDX_ENGAGEMENT_DURATION = 3
IDX_ENGAGED_SESSIONS = 5
IDX_EVENT_COUNT = 7
IDX_SESSIONS = 8
IDX_ACTIVE_USERS = 9

# Secondary batch positions (see service.SECONDARY_METRICS)
IDX_SECONDARY_NEW_USERS = 1

# Totals report positions (see service.TOTALS_METRICS)
IDX_TOTAL_VIEWS = 0
IDX_TOTAL_EVENTS = 1
IDX_DAU_PER_MAU = 2

COUNTRY_CODES = {
    "United States": "US",
    "United Kingdom": "GB",
}


# ---------------------------------------------------------------------------
# Low-level accessors
# ---------------------------------------------------------------------------

def _rows(response: Any) -> List[Any]:
    if response is None:
        return []
    return list(getattr(response, "rows", None) or [])


def _to_float(raw: Any, default: float = 0.0) -> float:
    if raw is None or raw == "":
        return default
    try:
        value = float(raw)
    except (TypeError, ValueError):
        return default
    return default if math.isnan(value) else value


def metric_value(row: Any, index: int, default: float = 0.0) -> float:
    """Return metric ``index`` of ``row`` as float, or ``default`` if absent."""
    values = getattr(row, "metric_values", None) or []
    if index >= len(values):
        return default
    return _to_float(getattr(values[index], "value", None), default)


def dimension_value(row: Any, index: int, default: str = "unknown") -> str:
    values = getattr(row, "dimension_values", None) or []
    if index >= len(values):
        return default
    return getattr(values[index], "value", None) or default


def sum_metric(response: Any, index: int) -> float:
    return sum(metric_value(row, index) for row in _rows(response))


# ---------------------------------------------------------------------------
# Formatting helpers
# ---------------------------------------------------------------------------

def calculate_change(current: float, previous: float) -> str:
    """Percentage change as a signed string, ``"0%"`` when there is no base."""
    if not previous:
        return "0%"
    change = (current - previous) / previous * 100
    return f"{'+' if change > 0 else ''}{change:.1f}%"


def bounce_rate_from_engagement(engagement_rate: float) -> float:
    """GA4 has no bounce rate in the primary batch; it is 1 - engagementRate."""
    return max(0.0, min(1.0, 1 - engagement_rate))


def format_bounce_rate(bounce_rate: float) -> str:
    return f"{min(100.0, max(0.0, bounce_rate * 100)):.2f}%"


def format_engagement_time(seconds: float) -> str:
    seconds = max(0.0, seconds)
    return f"{int(seconds // 60)}m {int(seconds % 60)}s"


def format_stickiness(dau_per_mau: float) -> Optional[str]:
    if dau_per_mau <= 0:
        return None
    return f"{dau_per_mau * 100:.1f}%"


def format_rate(value: float) -> str:
    return f"{value:.1f}%"


def format_seconds(value: float) -> str:
    return f"{value:.1f}s"


def country_code(country: str) -> str:
    """Rough country → ISO code mapping used for the dashboard map."""
    if country in COUNTRY_CODES:
        return COUNTRY_CODES[country]
    return country[:2].upper()


# ---------------------------------------------------------------------------
# Breakdowns
# ---------------------------------------------------------------------------

def breakdown(
    response: Any,
    dim_index: int = 0,
    metric_index: int = 0,
    *,
    lowercase: bool = False,
    key_func: Optional[Callable[[str], str]] = None,
) -> Dict[str, int]:
    """Map dimension value → rounded metric value, summing repeated keys."""
    result: Dict[str, float] = {}
    for row in _rows(response):
        key = dimension_value(row, dim_index)
        if lowercase:
            key = key.lower()
        if key_func is not None:
            key = key_func(key)
        result[key] = result.get(key, 0.0) + metric_value(row, metric_index)
    return {key: int(round(value)) for key, value in result.items()}


# ---------------------------------------------------------------------------
# Key metrics
# ---------------------------------------------------------------------------

def _engagement_rate(response: Any) -> float:
    sessions = sum_metric(response, IDX_SESSIONS)
    if sessions > 0:
        return sum_metric(response, IDX_ENGAGED_SESSIONS) / sessions
    rows = _rows(response)
    return metric_value(rows[0], IDX_ENGAGEMENT_RATE) if rows else 0.0


def summarise_key_metrics(
    current: Any,
    previous: Any,
    current_secondary: Any = None,
    totals: Any = None,
    channel: Any = None,
    source: Any = None,
    pages: Any = None,
    country: Any = None,
) -> Dict[str, Any]:
    """Build the ``GA4MetricsData`` dict from the individual report responses.

    ``current`` / ``previous`` are the primary batch split by platform and
    device category. Every other response is optional and may be ``None`` when
    the corresponding request was skipped or failed.
    """
    current_visitors = sum_metric(current, IDX_TOTAL_USERS)
    previous_visitors = sum_metric(previous, IDX_TOTAL_USERS)
    current_conversions = sum_metric(current, IDX_CONVERSIONS)
    previous_conversions = sum_metric(previous, IDX_CONVERSIONS)

    current_bounce = bounce_rate_from_engagement(_engagement_rate(current))
    previous_bounce = bounce_rate_from_engagement(_engagement_rate(previous))

    active_users = sum_metric(current, IDX_ACTIVE_USERS)
    engagement_duration = sum_metric(current, IDX_ENGAGEMENT_DURATION)
    avg_engagement = engagement_duration / active_users if active_users else 0.0

    new_users = sum_metric(current_secondary, IDX_SECONDARY_NEW_USERS)

    views_count = 0
    accurate_events = 0
    dau_per_mau = 0.0
    totals_rows = _rows(totals)
    if totals_rows:
        views_count = int(round(metric_value(totals_rows[0], IDX_TOTAL_VIEWS)))
        accurate_events = int(round(metric_value(totals_rows[0], IDX_TOTAL_EVENTS)))
        dau_per_mau = metric_value(totals_rows[0], IDX_DAU_PER_MAU)
    event_count = accurate_events if accurate_events > 0 else int(round(sum_metric(current, IDX_EVENT_COUNT)))

    return {
        "visitors": int(round(current_visitors)),
        "conversions": int(round(current_conversions)),
        "bounceRate": format_bounce_rate(current_bounce),
        "visitorsChange": calculate_change(current_visitors, previous_visitors),
        "conversionsChange": calculate_change(current_conversions, previous_conversions),
        "bounceRateChange": calculate_change(current_bounce, previous_bounce),
        "activeUsers": int(round(active_users)),
        "newUsers": int(round(new_users)),
        "eventCount": event_count,
        "avgEngagementTime": format_engagement_time(avg_engagement),
        "viewsCount": views_count,
        "userStickiness": format_stickiness(dau_per_mau),
        "sessionsByChannel": breakdown(channel, lowercase=True),
        "sessionsBySource": breakdown(source, lowercase=True),
        "viewsByPage": breakdown(pages),
        "usersByCountry": breakdown(country, key_func=country_code),
        "platformBreakdown": breakdown(current, dim_index=0, metric_index=IDX_TOTAL_USERS),
        "deviceBreakdown": breakdown(current, dim_index=1, metric_index=IDX_TOTAL_USERS),
    }


# ---------------------------------------------------------------------------
# Historical data
# ---------------------------------------------------------------------------

ENHANCED_FIELDS = (
    "sessionsPerUser",
    "engagedSessions",
    "pageViewsPerSession",
    "eventCount",
    "engagementDuration",
    "newUsers",
)


def merge_daily_trends(core: Any, enhanced: Any) -> List[Dict[str, Any]]:
    """Join the two daily reports on ``date`` and sort ascending.

    Core rows carry totalUsers, bounceRate, averageSessionDuration; enhanced
    rows carry the fields in ``ENHANCED_FIELDS`` (same order). Dates only
    present in the enhanced report are ignored.
    """
    by_date: Dict[str, Dict[str, Any]] = {}
    for row in _rows(core):
        date = dimension_value(row, 0, default="")
        if not date:
            continue
        entry: Dict[str, Any] = {
            "date": date,
            "visitors": metric_value(row, 0),
            "bounceRate": format_rate(metric_value(row, 1)),
            "avgSessionDuration": format_seconds(metric_value(row, 2)),
        }
        entry.update({field: 0 for field in ENHANCED_FIELDS})
        by_date[date] = entry

    for row in _rows(enhanced):
        date = dimension_value(row, 0, default="")
        if date in by_date:
            for index, field in enumerate(ENHANCED_FIELDS):
                by_date[date][field] = metric_value(row, index)

    return [by_date[date] for date in sorted(by_date, key=_parse_ga4_date)]


def _parse_ga4_date(value: str) -> datetime.date:
    try:
        return datetime.datetime.strptime(value, "%Y%m%d").date()
    except ValueError:
        pass
    try:
        return datetime.date.fromisoformat(value)
    except ValueError:
        return datetime.date.min


def format_landing_pages(response: Any) -> List[Dict[str, Any]]:
    return [
        {
            "page": dimension_value(row, 0),
            "visitors": metric_value(row, 0),
            "bounceRate": format_rate(metric_value(row, 1)),
            "avgSessionDuration": format_seconds(metric_value(row, 2)),
        }
        for row in _rows(response)
    ]


def format_traffic_sources(response: Any) -> List[Dict[str, Any]]:
    return [
        {
            "source": dimension_value(row, 0),
            "visitors": metric_value(row, 0),
            "bounceRate": format_rate(metric_value(row, 1)),
        }
        for row in _rows(response)
    ]


# ---------------------------------------------------------------------------
# Storage mapping
# ---------------------------------------------------------------------------

def _int(value: Any) -> int:
    return int(round(_to_float(value)))


def _mapping(value: Any) -> Dict[str, int]:
    return {str(k): _int(v) for k, v in (value or {}).items()}


def format_metrics_for_storage(data: Dict[str, Any], website_id: int) -> Dict[str, Any]:
    """Map a ``GA4MetricsData`` dict onto the columns of the metrics table.

    Missing values are backfilled with the column defaults. Page speed is not
    part of the GA4 Data API, so it is stored as a neutral ``"0s"``.
    """
    return {
        "website_id": website_id,
        "date": datetime.datetime.now(datetime.timezone.utc).replace(tzinfo=None),
        "visitors": _int(data.get("visitors")),
        "conversions": _int(data.get("conversions")),
        "bounce_rate": data.get("bounceRate") or "0.00%",
        "page_speed": "0s",
        "visitors_change": data.get("visitorsChange") or "0%",
        "conversions_change": data.get("conversionsChange") or "0%",
        "bounce_rate_change": data.get("bounceRateChange") or "0%",
        "page_speed_change": "0%",
        "active_users": _int(data.get("activeUsers")),
        "new_users": _int(data.get("newUsers")),
        "event_count": _int(data.get("eventCount")),
        "avg_engagement_time": data.get("avgEngagementTime") or "0s",
        "views_count": _int(data.get("viewsCount")),
        "user_stickiness": data.get("userStickiness") or "0.0%",
        "sessions_by_channel": _mapping(data.get("sessionsByChannel")),
        "sessions_by_source": _mapping(data.get("sessionsBySource")),
        "views_by_page": _mapping(data.get("viewsByPage")),
        "users_by_country": _mapping(data.get("usersByCountry")),
    }

