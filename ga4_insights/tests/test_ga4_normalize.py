import pytest

from ga4_insights.ga4 import normalize


def test_calculate_change_signs_and_zero_base():
    assert normalize.calculate_change(120, 100) == "+20.0%"
    assert normalize.calculate_change(96, 100) == "-4.0%"
    assert normalize.calculate_change(100, 100) == "0.0%"
    assert normalize.calculate_change(50, 0) == "0%"


def test_bounce_rate_is_clamped_inverse_of_engagement():
    assert normalize.bounce_rate_from_engagement(0.55) == pytest.approx(0.45)
    assert normalize.bounce_rate_from_engagement(1.4) == 0.0
    assert normalize.bounce_rate_from_engagement(-0.2) == 1.0
    assert normalize.format_bounce_rate(0.45) == "45.00%"


def test_formatting_helpers():
    assert normalize.format_engagement_time(125.9) == "2m 5s"
    assert normalize.format_engagement_time(-3) == "0m 0s"
    assert normalize.format_stickiness(0.113) == "11.3%"
    assert normalize.format_stickiness(0) is None
    assert normalize.country_code("United States") == "US"
    assert normalize.country_code("United Kingdom") == "GB"
    assert normalize.country_code("germany") == "GE"


def test_metric_value_defaults(ga4_response):
    row = ga4_response([(["web"], ["12", "", "nan"])]).rows[0]
    assert normalize.metric_value(row, 0) == 12.0
    assert normalize.metric_value(row, 1) == 0.0
    assert normalize.metric_value(row, 2, default=-1.0) == -1.0
    assert normalize.metric_value(row, 9) == 0.0
    assert normalize.dimension_value(row, 3) == "unknown"


def test_breakdown_sums_repeated_keys(ga4_response):
    response = ga4_response([
        (["Organic Search"], [10.4]),
        (["organic search"], [5.2]),
        (["Direct"], [3]),
    ])
    assert normalize.breakdown(response, lowercase=True) == {"organic search": 16, "direct": 3}
    assert normalize.breakdown(None) == {}


def _primary(visitors, conversions, duration, engaged, events, sessions, active):
    return [visitors, conversions, 0.5, duration, 1.0, engaged, 2.0, events, sessions, active]


def test_summarise_key_metrics_aggregates_platform_device_rows(ga4_response):
    current = ga4_response([
        (["web", "desktop"], _primary(100, 10, 3000, 60, 500, 100, 90)),
        (["web", "mobile"], _primary(50, 5, 1500, 20, 200, 50, 60)),
    ])
    previous = ga4_response([
        (["web", "desktop"], _primary(100, 10, 0, 50, 0, 100, 0)),
    ])
    secondary = ga4_response([
        (["web", "desktop"], [3.1, 40, 80]),
        (["web", "mobile"], [2.2, 25, 60]),
    ])
    country = ga4_response([(["United States"], [70]), (["France"], [20])])

    data = normalize.summarise_key_metrics(current, previous, current_secondary=secondary, country=country)

    assert data["visitors"] == 150
    assert data["conversions"] == 15
    assert data["visitorsChange"] == "+50.0%"
    assert data["conversionsChange"] == "+50.0%"
    # 80 engaged of 150 sessions
    assert data["bounceRate"] == "46.67%"
    assert data["bounceRateChange"] == "-6.7%"
    assert data["activeUsers"] == 150
    assert data["avgEngagementTime"] == "0m 30s"
    assert data["newUsers"] == 65
    assert data["eventCount"] == 700
    assert data["viewsCount"] == 0
    assert data["userStickiness"] is None
    assert data["deviceBreakdown"] == {"desktop": 100, "mobile": 50}
    assert data["platformBreakdown"] == {"web": 150}
    assert data["usersByCountry"] == {"US": 70, "FR": 20}
    assert data["sessionsByChannel"] == {}


def test_summarise_key_metrics_prefers_totals_report(ga4_response):
    current = ga4_response([(["web", "desktop"], _primary(10, 1, 60, 5, 40, 10, 10))])
    totals = ga4_response([([], [900, 1234, 0.2])])

    data = normalize.summarise_key_metrics(current, None, totals=totals)

    assert data["eventCount"] == 1234
    assert data["viewsCount"] == 900
    assert data["userStickiness"] == "20.0%"
    assert data["visitorsChange"] == "0%"


def test_summarise_key_metrics_empty_reports():
    data = normalize.summarise_key_metrics(None, None)
    assert data["visitors"] == 0
    assert data["bounceRate"] == "100.00%"
    assert data["avgEngagementTime"] == "0m 0s"


def test_merge_daily_trends_joins_and_sorts(ga4_response):
    core = ga4_response([
        (["20240102"], [20, 45.5, 61.25]),
        (["20240101"], [10, 50, 30]),
    ])
    enhanced = ga4_response([
        (["20240101"], [1.1, 6, 2.5, 80, 300, 4]),
        (["20231231"], [1, 1, 1, 1, 1, 1]),
    ])

    days = normalize.merge_daily_trends(core, enhanced)

    assert [d["date"] for d in days] == ["20240101", "20240102"]
    assert days[0]["newUsers"] == 4
    assert days[0]["engagedSessions"] == 6
    assert days[1]["newUsers"] == 0
    assert days[1]["bounceRate"] == "45.5%"
    assert days[1]["avgSessionDuration"] == "61.2s"


def test_landing_pages_and_sources(ga4_response):
    pages = normalize.format_landing_pages(ga4_response([(["/pricing"], [300, 40.25, 75])]))
    sources = normalize.format_traffic_sources(ga4_response([(["google"], [500, 35])]))

    assert pages == [{"page": "/pricing", "visitors": 300.0, "bounceRate": "40.2%", "avgSessionDuration": "75.0s"}]
    assert sources == [{"source": "google", "visitors": 500.0, "bounceRate": "35.0%"}]


def test_format_metrics_for_storage_backfills_defaults():
    row = normalize.format_metrics_for_storage({"visitors": 10.6, "sessionsBySource": {"google": 3.4}}, 7)

    assert row["website_id"] == 7
    assert row["visitors"] == 11
    assert row["conversions"] == 0
    assert row["bounce_rate"] == "0.00%"
    assert row["page_speed"] == "0s"
    assert row["page_speed_change"] == "0%"
    assert row["visitors_change"] == "0%"
    assert row["avg_engagement_time"] == "0s"
    assert row["user_stickiness"] == "0.0%"
    assert row["sessions_by_source"] == {"google": 3}
    assert row["users_by_country"] == {}
