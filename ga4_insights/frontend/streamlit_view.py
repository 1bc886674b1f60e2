from __future__ import annotations

"""Streamlit dashboard for the GA4 Insights Copilot.

Run with:
    streamlit run ga4_insights/frontend/streamlit_view.py

Everything goes through the FastAPI backend at ``BACKEND_URL``.
``GOOGLE_REDIRECT_URI`` defaults to this app's URL so Google hands the
authorization code back here; the code is then posted to the backend, whose
session cookie lives in a ``requests.Session`` kept in ``st.session_state``.
"""

import datetime
import time
from typing import Any, Dict, List, Optional

import pandas as pd
import plotly.express as px
import requests
import streamlit as st

from ga4_insights.config import BACKEND_URL

CATEGORIES = ["All Categories", "Traffic", "Conversion", "Performance", "Content", "User Experience"]
IMPACTS = ["All Impacts", "High", "Medium", "Low"]
IMPACT_COLOURS = {"High": "🔴", "Medium": "🟠", "Low": "🟢"}

REPORT_POLL_SECONDS = 2
REPORT_POLL_ATTEMPTS = 30


# ---------------------------------------------------------------------------
# Pure helpers
# ---------------------------------------------------------------------------

def insight_filters_to_params(
    category: Optional[str],
    impact: Optional[str],
    limit: int = 10,
    offset: int = 0,
) -> Dict[str, Any]:
    """Query parameters for ``GET /websites/{id}/insights``.

    The "All ..." choices are the same as no filter and are left out.
    """
    params: Dict[str, Any] = {"limit": limit, "offset": offset}
    if category and category != CATEGORIES[0]:
        params["category"] = category
    if impact and impact != IMPACTS[0]:
        params["impact"] = impact
    return params


def relative_time(iso_timestamp: Optional[str], now: Optional[datetime.datetime] = None) -> str:
    """Human friendly age of an ISO timestamp ("just now", "5 minutes ago", ...)."""
    if not iso_timestamp:
        return "never"
    try:
        then = datetime.datetime.fromisoformat(iso_timestamp)
    except ValueError:
        return iso_timestamp
    if then.tzinfo is not None:
        then = then.astimezone(datetime.timezone.utc).replace(tzinfo=None)
    now = now or datetime.datetime.now(datetime.timezone.utc).replace(tzinfo=None)

    seconds = int((now - then).total_seconds())
    if seconds < 60:
        return "just now"
    for unit, size in (("day", 86400), ("hour", 3600), ("minute", 60)):
        if seconds >= size:
            count = seconds // size
            return f"{count} {unit}{'s' if count != 1 else ''} ago"
    return "just now"


def plan_to_markdown(plan: Dict[str, Any]) -> str:
    """Render an implementation plan as a markdown document for download."""
    lines = [f"# {plan.get('title') or 'Implementation plan'}", ""]
    if plan.get("summary"):
        lines += [plan["summary"], ""]

    for step in plan.get("steps") or []:
        lines.append(f"## Step {step.get('stepNumber')}: {step.get('title')}")
        lines.append("")
        lines.append(
            f"**Priority:** {step.get('priority', '-')} | "
            f"**Effort:** {step.get('effort', '-')} | "
            f"**Estimated time:** {step.get('estimatedTime') or '-'}"
        )
        lines.append("")
        if step.get("description"):
            lines += [step["description"], ""]
        if step.get("dependencies"):
            deps = ", ".join(f"Step {d}" for d in step["dependencies"])
            lines += [f"**Depends on:** {deps}", ""]
        if step.get("resources"):
            lines.append("**Resources:**")
            lines += [f"- {resource}" for resource in step["resources"]]
            lines.append("")
    return "\n".join(lines).rstrip() + "\n"


def _breakdown_frame(mapping: Optional[Dict[str, int]], label: str, limit: int = 10) -> pd.DataFrame:
    rows = sorted((mapping or {}).items(), key=lambda kv: kv[1], reverse=True)[:limit]
    return pd.DataFrame(rows, columns=[label, "Value"])


# ---------------------------------------------------------------------------
# Backend access
# ---------------------------------------------------------------------------

def _http() -> requests.Session:
    if "http" not in st.session_state:
        st.session_state.http = requests.Session()
    return st.session_state.http


def _api(method: str, path: str, **kwargs) -> Any:
    """Call the backend; shows the error and returns ``None`` on failure."""
    try:
        resp = _http().request(method, f"{BACKEND_URL}/api{path}", timeout=120, **kwargs)
    except requests.RequestException as e:
        st.error(f"Backend unreachable: {e}")
        return None
    if resp.status_code >= 400:
        try:
            detail = resp.json().get("detail", resp.text)
        except ValueError:
            detail = resp.text
        st.error(f"{resp.status_code}: {detail}")
        return None
    return resp.json() if resp.content else None


def _login_from_query_params() -> None:
    code = st.query_params.get("code")
    if code and "user" not in st.session_state:
        result = _api("POST", "/auth/callback", json={"code": code})
        if result:
            st.session_state.user = result["user"]
        st.query_params.clear()


# ---------------------------------------------------------------------------
# Sections
# ---------------------------------------------------------------------------

def render_login() -> None:
    st.title("GA4 Insights Copilot")
    st.markdown("Connect your Google Analytics 4 property to get AI-generated insights.")
    data = _api("GET", "/auth/url")
    if data:
        st.link_button("Sign in with Google", data["url"])


def render_sidebar() -> Optional[Dict[str, Any]]:
    """Website picker plus add/delete; returns the selected website."""
    user = st.session_state.user
    st.sidebar.header(user.get("name") or user.get("email"))
    if st.sidebar.button("Log out"):
        _api("POST", "/auth/logout")
        st.session_state.clear()
        st.rerun()

    websites = _api("GET", "/websites") or []
    selected = None
    if websites:
        names = [f"{w['name']} ({w['domain']})" for w in websites]
        index = st.sidebar.selectbox("Website", range(len(websites)), format_func=lambda i: names[i])
        selected = websites[index]
        if st.sidebar.button("Delete website"):
            if _api("DELETE", f"/websites/{selected['id']}"):
                st.rerun()

    with st.sidebar.expander("Add website", expanded=not websites):
        properties = _api("GET", "/ga4-properties") or []
        if properties:
            prop_index = st.selectbox(
                "GA4 property",
                range(len(properties)),
                format_func=lambda i: f"{properties[i]['propertyName']} · {properties[i]['accountName']}",
            )
            prop = properties[prop_index]
        else:
            prop = {"propertyName": "", "domain": "", "propertyId": ""}
        name = st.text_input("Name", value=prop["propertyName"])
        domain = st.text_input("Domain", value=prop["domain"])
        property_id = st.text_input("GA4 property ID", value=prop["propertyId"])
        if st.button("Add"):
            if _api("POST", "/websites", json={"name": name, "domain": domain, "gaPropertyId": property_id}):
                st.rerun()
    return selected


def render_metrics(website: Dict[str, Any]) -> Optional[Dict[str, Any]]:
    st.subheader("Overview")
    days = st.slider("Sync window (days)", min_value=1, max_value=90, value=30)
    if st.button("Sync from Google Analytics"):
        with st.spinner("Fetching GA4 metrics…"):
            _api("POST", f"/websites/{website['id']}/metrics/sync", params={"days": days})

    metrics = _api("GET", f"/websites/{website['id']}/metrics")
    if not metrics:
        st.info("No metrics yet. Sync from Google Analytics to get started.")
        return None

    st.caption(f"Last synced {relative_time(metrics.get('date'))}")
    cols = st.columns(4)
    cols[0].metric("Visitors", f"{metrics['visitors']:,}", metrics["visitorsChange"])
    cols[1].metric("Conversions", f"{metrics['conversions']:,}", metrics["conversionsChange"])
    cols[2].metric("Bounce rate", metrics["bounceRate"], metrics["bounceRateChange"], delta_color="inverse")
    cols[3].metric("Avg. engagement", metrics["avgEngagementTime"])

    cols = st.columns(4)
    cols[0].metric("Active users", f"{metrics['activeUsers']:,}")
    cols[1].metric("New users", f"{metrics['newUsers']:,}")
    cols[2].metric("Page views", f"{metrics['viewsCount']:,}")
    cols[3].metric("Stickiness (DAU/MAU)", metrics["userStickiness"])

    left, right = st.columns(2)
    channel = _breakdown_frame(metrics.get("sessionsByChannel"), "Channel")
    if not channel.empty:
        left.plotly_chart(px.pie(channel, names="Channel", values="Value", title="Sessions by channel"),
                          use_container_width=True)
    source = _breakdown_frame(metrics.get("sessionsBySource"), "Source")
    if not source.empty:
        right.plotly_chart(px.bar(source, x="Source", y="Value", title="Sessions by source"),
                           use_container_width=True)

    left, right = st.columns(2)
    country = _breakdown_frame(metrics.get("usersByCountry"), "Country")
    if not country.empty:
        left.plotly_chart(px.bar(country, x="Country", y="Value", title="Users by country"),
                          use_container_width=True)
    pages = _breakdown_frame(metrics.get("viewsByPage"), "Page")
    if not pages.empty:
        fig = px.bar(pages, x="Value", y="Page", orientation="h", title="Views by page")
        fig.update_layout(yaxis={"autorange": "reversed"})
        right.plotly_chart(fig, use_container_width=True)
    return metrics


def render_insights(website: Dict[str, Any], metrics: Optional[Dict[str, Any]]) -> None:
    st.subheader("Insights")
    col_cat, col_imp, col_btn = st.columns([2, 2, 1])
    category = col_cat.selectbox("Category", CATEGORIES)
    impact = col_imp.selectbox("Impact", IMPACTS)
    if col_btn.button("Generate insights", disabled=metrics is None):
        with st.spinner("Asking the model for insights…"):
            _api("POST", f"/websites/{website['id']}/insights/generate")

    insights = _api(
        "GET",
        f"/websites/{website['id']}/insights",
        params=insight_filters_to_params(category, impact, limit=20),
    ) or []
    if not insights:
        st.info("No insights yet.")
        return

    selected: List[Dict[str, Any]] = []
    for insight in insights:
        icon = IMPACT_COLOURS.get(insight["impact"], "")
        with st.expander(f"{icon} {insight['title']} · {insight['category']}"):
            st.write(insight["description"])
            for rec in insight["recommendations"]:
                st.markdown(f"- {rec}")
            st.caption(f"Detected {relative_time(insight.get('detectedAt'))}")
            if st.checkbox("Select", key=f"insight_{insight['id']}"):
                selected.append(insight)

    col_sum, col_plan = st.columns(2)
    if col_sum.button("Summarise selected", disabled=not selected):
        with st.spinner("Writing summary…"):
            result = _api(
                "POST",
                f"/websites/{website['id']}/insights/summary",
                json={"insights": selected, "metrics": metrics},
            )
        if result:
            st.success(result["summary"])
    if col_plan.button("Create implementation plan", disabled=not selected):
        with st.spinner("Planning…"):
            _api(
                "POST",
                f"/websites/{website['id']}/implementation-plans",
                json={"insightIds": [i["id"] for i in selected]},
            )


def render_reports(website: Dict[str, Any]) -> None:
    st.subheader("Ask a question")
    query = st.text_area("What would you like to know about your traffic?")
    if st.button("Generate report") and query:
        created = _api("POST", f"/websites/{website['id']}/reports", json={"query": query})
        if created:
            with st.spinner("Generating report…"):
                for _ in range(REPORT_POLL_ATTEMPTS):
                    report = _api("GET", f"/reports/{created['id']}")
                    if not report or report["status"] != "pending":
                        break
                    time.sleep(REPORT_POLL_SECONDS)

    for report in (_api("GET", "/reports") or [])[:10]:
        if report["websiteId"] != website["id"]:
            continue
        with st.expander(f"{report['query']} · {report['status']} · {relative_time(report['createdAt'])}"):
            response = report.get("response") or {}
            if report["status"] != "completed":
                st.write(response.get("error") or "Still working on it…")
                continue
            st.markdown(f"### {response.get('title')}")
            st.write(response.get("summary"))
            for heading, key in (
                ("Key findings", "findings"),
                ("Probable causes", "causes"),
                ("Recommendations", "recommendations"),
                ("Next steps", "nextSteps"),
            ):
                if response.get(key):
                    st.markdown(f"**{heading}**")
                    for item in response[key]:
                        st.markdown(f"- {item}")


def render_plans(website: Dict[str, Any]) -> None:
    st.subheader("Implementation plans")
    plans = _api("GET", f"/websites/{website['id']}/implementation-plans") or []
    if not plans:
        st.info("Select insights above to create a plan.")
        return
    for plan in plans:
        with st.expander(f"{plan['title']} · {len(plan['steps'])} steps"):
            st.markdown(plan_to_markdown(plan))
            col_dl, col_del = st.columns(2)
            col_dl.download_button(
                "Download markdown",
                plan_to_markdown(plan),
                file_name=f"implementation_plan_{plan['id']}.md",
                key=f"dl_{plan['id']}",
            )
            if col_del.button("Delete", key=f"del_plan_{plan['id']}"):
                _api("DELETE", f"/implementation-plans/{plan['id']}")
                st.rerun()


def main() -> None:
    st.set_page_config(page_title="GA4 Insights Copilot", layout="wide")
    _login_from_query_params()

    if "user" not in st.session_state:
        user = _api("GET", "/auth/user") if "http" in st.session_state else None
        if not user:
            render_login()
            return
        st.session_state.user = user

    website = render_sidebar()
    if website is None:
        st.info("Add a website in the sidebar to get started.")
        return

    st.title(website["name"])
    metrics = render_metrics(website)
    render_insights(website, metrics)
    render_reports(website)
    render_plans(website)


if __name__ == "__main__":
    main()
