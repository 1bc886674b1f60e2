from __future__ import annotations

"""OpenAI calls behind the insights, report, summary and plan features.

Every function builds its messages through ``prompt_builder``, asks the model
for a JSON object and validates the payload before it reaches the storage
layer. A ``client`` may be injected (tests, scripts); otherwise one is built
from the environment.
"""

import json
import re
from typing import Any, Dict, List, Optional

import openai
from pydantic import BaseModel, Field, ValidationError, field_validator

from ga4_insights import config
from ga4_insights.llm.prompt_builder import build_messages
from ga4_insights.utils.error_handler import LLMResponseError, retry
from ga4_insights.utils.logging import get_logger
from ga4_insights.utils.openai_client import get_openai_client

logger = get_logger(__name__)

IMPACT_LEVELS = ("High", "Medium", "Low")

# ---------------------------------------------------------------------------
# Response models
# ---------------------------------------------------------------------------


class GeneratedInsight(BaseModel):
    title: str = Field(min_length=3)
    description: str = Field(min_length=10)
    category: str = Field(min_length=1)
    impact: str
    icon: str = "insights"
    recommendations: List[str] = Field(default_factory=list)

    @field_validator("impact")
    @classmethod
    def _normalise_impact(cls, value: str) -> str:
        value = (value or "").strip().capitalize()
        if value not in IMPACT_LEVELS:
            raise ValueError(f"impact must be one of {', '.join(IMPACT_LEVELS)}")
        return value

    @field_validator("icon", mode="before")
    @classmethod
    def _default_icon(cls, value: Any) -> str:
        return value or "insights"

    @field_validator("recommendations", mode="before")
    @classmethod
    def _listify(cls, value: Any) -> Any:
        if value is None:
            return []
        if isinstance(value, str):
            return [value]
        return value


class ReportResponse(BaseModel):
    title: str = "Analytics report"
    summary: str = ""
    findings: List[str] = Field(default_factory=list)
    causes: List[str] = Field(default_factory=list)
    recommendations: List[str] = Field(default_factory=list)
    nextSteps: List[str] = Field(default_factory=list)

    @field_validator("findings", "causes", "recommendations", "nextSteps", mode="before")
    @classmethod
    def _listify(cls, value: Any) -> Any:
        if value is None:
            return []
        if isinstance(value, str):
            return [value]
        return value


# ---------------------------------------------------------------------------
# Transport
# ---------------------------------------------------------------------------


@retry(max_attempts=3, delay=1.0, backoff=2.0, exceptions=(openai.APIConnectionError, openai.RateLimitError))
def _create_completion(client: Any, messages: List[Dict[str, str]], temperature: float) -> Any:
    return client.chat.completions.create(
        model=config.OPENAI_COMPLETION_MODEL,
        messages=messages,
        temperature=temperature,
        response_format={"type": "json_object"},
    )


def _complete_json(
    kind: str,
    temperature: float,
    client: Any = None,
    **context: Any,
) -> Any:
    """Render the ``kind`` prompt, call the model and return parsed JSON."""
    messages = build_messages(kind, **context)
    if client is None:
        try:
            client = get_openai_client()
        except ValueError as e:
            raise LLMResponseError(str(e)) from e

    logger.info(f"Calling OpenAI | kind={kind} | model={config.OPENAI_COMPLETION_MODEL}")
    try:
        response = _create_completion(client, messages, temperature)
    except openai.OpenAIError as e:
        logger.error(f"OpenAI {kind} completion failed: {e}")
        raise LLMResponseError(f"OpenAI request failed: {e}") from e

    content = response.choices[0].message.content if response.choices else None
    if not content:
        raise LLMResponseError(f"Empty response from OpenAI for {kind}")
    try:
        return json.loads(content)
    except json.JSONDecodeError as e:
        logger.error(f"OpenAI returned invalid JSON for {kind}: {content[:200]}")
        raise LLMResponseError(f"Invalid JSON in OpenAI response: {e}") from e


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------


def generate_insights(
    metrics: Optional[Dict[str, Any]],
    historical: Optional[Dict[str, Any]],
    domain: str,
    ga_metrics: Optional[Dict[str, Any]] = None,
    client: Any = None,
) -> List[Dict[str, Any]]:
    """Return the validated insights the model produced for ``domain``."""
    payload = _complete_json(
        "insights",
        config.INSIGHTS_TEMPERATURE,
        client=client,
        domain=domain,
        metrics=metrics,
        historical=historical,
        ga_metrics=ga_metrics,
    )

    if isinstance(payload, dict):
        items = payload.get("insights")
    else:
        items = payload
    if not isinstance(items, list):
        raise LLMResponseError("OpenAI response has no insights list")

    insights = []
    for item in items:
        try:
            insights.append(GeneratedInsight.model_validate(item).model_dump())
        except ValidationError as e:
            logger.warning(f"Dropping malformed insight from OpenAI: {e.errors()[0].get('msg')}")
    logger.info(f"Generated {len(insights)} insights for {domain}")
    return insights


def generate_custom_report(
    query: str,
    metrics: Optional[Dict[str, Any]],
    domain: str,
    historical: Optional[Dict[str, Any]] = None,
    ga_metrics: Optional[Dict[str, Any]] = None,
    client: Any = None,
) -> Dict[str, Any]:
    payload = _complete_json(
        "report",
        config.REPORT_TEMPERATURE,
        client=client,
        domain=domain,
        query=query,
        metrics=metrics,
        historical=historical,
        ga_metrics=ga_metrics,
    )
    if not isinstance(payload, dict):
        raise LLMResponseError("OpenAI report response is not a JSON object")
    try:
        return ReportResponse.model_validate(payload).model_dump()
    except ValidationError as e:
        raise LLMResponseError(f"Malformed report from OpenAI: {e}") from e


def generate_insights_summary(
    insights: List[Dict[str, Any]],
    metrics: Optional[Dict[str, Any]],
    domain: str,
    client: Any = None,
) -> Dict[str, str]:
    payload = _complete_json(
        "summary",
        config.SUMMARY_TEMPERATURE,
        client=client,
        domain=domain,
        insights=insights,
        metrics=metrics,
    )
    summary = payload.get("summary") if isinstance(payload, dict) else None
    if not isinstance(summary, str) or not summary.strip():
        raise LLMResponseError("OpenAI response has no summary")
    return {"summary": summary.strip()}


def _step_refs(value: Any) -> List[int]:
    """Coerce ``[1, "2", "Step 3"]`` style dependencies into step numbers."""
    if value is None:
        return []
    if not isinstance(value, list):
        value = [value]
    refs = []
    for item in value:
        if isinstance(item, bool):
            continue
        if isinstance(item, (int, float)):
            refs.append(int(item))
            continue
        match = re.search(r"\d+", str(item))
        if match:
            refs.append(int(match.group()))
    return refs


def generate_implementation_plan(
    insights: List[Dict[str, Any]],
    domain: str,
    client: Any = None,
) -> Dict[str, Any]:
    """Return ``{title, summary, steps}`` with steps numbered 1..n."""
    payload = _complete_json(
        "implementation_plan",
        config.PLAN_TEMPERATURE,
        client=client,
        domain=domain,
        insights=insights,
    )
    if not isinstance(payload, dict) or not isinstance(payload.get("steps"), list):
        raise LLMResponseError("OpenAI plan response has no steps list")

    # The model's own numbering (or the list position) -> the renumbered step.
    renumbered: Dict[int, int] = {}
    kept = []
    for position, raw in enumerate(payload["steps"], start=1):
        if not isinstance(raw, dict) or not raw.get("title"):
            logger.warning("Dropping plan step without a title")
            continue
        refs = _step_refs(raw.get("stepNumber"))
        original = refs[0] if refs else position
        renumbered.setdefault(original, len(kept) + 1)
        kept.append(raw)

    steps = []
    for raw in kept:
        number = len(steps) + 1
        dependencies = []
        for ref in _step_refs(raw.get("dependencies")):
            target = renumbered.get(ref)
            if target is not None and target != number and target not in dependencies:
                dependencies.append(target)
        resources = raw.get("resources") or []
        if isinstance(resources, str):
            resources = [resources]
        steps.append({
            "stepNumber": number,
            "title": str(raw["title"]),
            "description": str(raw.get("description") or ""),
            "priority": str(raw.get("priority") or "Medium"),
            "effort": str(raw.get("effort") or "Medium"),
            "estimatedTime": str(raw.get("estimatedTime") or ""),
            "dependencies": dependencies,
            "resources": [str(r) for r in resources],
        })
    if not steps:
        raise LLMResponseError("OpenAI plan response has no usable steps")

    return {
        "title": str(payload.get("title") or f"Implementation plan for {domain}"),
        "summary": str(payload.get("summary") or ""),
        "steps": steps,
    }
