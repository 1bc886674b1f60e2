from __future__ import annotations

"""Prompt construction helpers for the GA4 Insights Copilot.

All LLM-facing messages should be assembled via this module so we maintain
one single source of truth for system and user prompts.

Templates live in ``ga4_insights/prompts/`` and use Jinja2 for simple variable
substitution.  Anything more complex than loops / conditionals (trend maths,
sorting of breakdowns) is implemented in Python and passed into the template
context as plain data.
"""

from pathlib import Path
from typing import Any, Dict, List, Optional

import jinja2

# ---------------------------------------------------------------------------
# Paths & Jinja environment
# ---------------------------------------------------------------------------

BASE_DIR = Path(__file__).resolve().parent.parent  # ga4_insights/
PROMPTS_DIR = BASE_DIR / "prompts"

PROMPT_KINDS = ("insights", "report", "summary", "implementation_plan")

# Lazy-initialised Jinja environment so we only pay the cost once.
_ENV: jinja2.Environment | None = None


def _get_env() -> jinja2.Environment:
    global _ENV
    if _ENV is None:
        _ENV = jinja2.Environment(
            loader=jinja2.FileSystemLoader(str(PROMPTS_DIR)),
            autoescape=False,  # we do not render HTML
            trim_blocks=True,
            lstrip_blocks=True,
        )

        def _number(val, digits: int = 0):
            """Return *val* with thousands separators."""
            try:
                return f"{float(val):,.{digits}f}"
            except (TypeError, ValueError, jinja2.UndefinedError):
                return val

        _ENV.filters["number"] = _number
        _ENV.filters["top"] = top_items
    return _ENV


# ---------------------------------------------------------------------------
# Context helpers
# ---------------------------------------------------------------------------

def top_items(mapping: Optional[Dict[str, Any]], limit: int = 10) -> List[tuple]:
    """Largest-first ``(key, value)`` pairs of a breakdown map."""
    items = sorted((mapping or {}).items(), key=lambda kv: kv[1], reverse=True)
    return items[:limit]


def _average(days: List[Dict[str, Any]], field: str) -> float:
    return sum(float(day.get(field) or 0) for day in days) / len(days)


def historical_trends(daily_trends: Optional[List[Dict[str, Any]]]) -> Optional[List[Dict[str, Any]]]:
    """Compare first-half and second-half daily averages.

    Returns ``None`` when there are fewer than two days of data. Equal averages count as
    decreasing. Conversions are only reported when the daily rows carry them.
    """
    if not daily_trends or len(daily_trends) < 2:
        return None

    midpoint = len(daily_trends) // 2
    first_half, second_half = daily_trends[:midpoint], daily_trends[midpoint:]

    fields = [("visitors", "Visitor"), ("newUsers", "New user")]
    if any("conversions" in day for day in daily_trends):
        fields.append(("conversions", "Conversion"))

    trends = []
    for field, label in fields:
        before = _average(first_half, field)
        after = _average(second_half, field)
        direction = "increasing" if after > before else "decreasing"
        trends.append({"label": label, "direction": direction, "before": before, "after": after})
    return trends


# ---------------------------------------------------------------------------
# Public API – build the messages list
# ---------------------------------------------------------------------------

def build_messages(kind: str, **context: Any) -> List[Dict[str, str]]:
    """Return a list of OpenAI ChatCompletion-style messages.

    Parameters
    ----------
    kind
        One of ``PROMPT_KINDS``; selects ``<kind>.jinja`` as the user prompt.
    context
        Template variables. ``domain`` is required by every template; the
        others depend on the prompt (``metrics``, ``historical``,
        ``ga_metrics``, ``query``, ``insights``). Missing optional values
        should be passed as ``None``.
    """
    if kind not in PROMPT_KINDS:
        raise ValueError(f"Unknown prompt kind: {kind}")

    env = _get_env()
    tmpl_kwargs = {
        "metrics": None,
        "historical": None,
        "ga_metrics": None,
        "query": None,
        "insights": [],
        **context,
    }
    historical = tmpl_kwargs["historical"] or {}
    tmpl_kwargs["trends"] = historical_trends(historical.get("dailyTrends"))

    system_prompt = env.get_template("system_prompt.jinja").render(**tmpl_kwargs)
    user_prompt = env.get_template(f"{kind}.jinja").render(**tmpl_kwargs)

    return [
        {"role": "system", "content": system_prompt},
        {"role": "user", "content": user_prompt},
    ]
