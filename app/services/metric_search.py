from __future__ import annotations

import time

from loguru import logger

from app.config import settings
from app.errors import UpstreamCallError
from app.llm_client import ResearchClient, client as research_client, get_model
from app.models.aggregation import Country, MetricDefinition, MetricSearchResult
from app.services import logger as log_service
from app.services.prompt_store import render_prompt
from app.services.response_parser import parse_metric_response


def build_metric_prompt(country: Country, metric: MetricDefinition, year: int) -> str:
    unit_line = render_prompt("aggregation.unit_line", unit=metric.unit) if metric.unit else ""
    return render_prompt(
        "aggregation.metric_search_prompt",
        country_name=country.name,
        metric_name=metric.name,
        year=year,
        unit_line=unit_line,
    )


async def search_for_metric(
    country: Country,
    metric: MetricDefinition,
    year: int,
    *,
    client: ResearchClient | None = None,
    model: str | None = None,
) -> MetricSearchResult:
    """Resolve one metric value for a country and year via a web-research call.

    Raises UpstreamCallError when the call itself fails. A reply without a
    usable value is not an error; it comes back as ``found=False``.
    """
    active_client = client or research_client()
    active_model = model or get_model()
    provider = getattr(active_client, "provider", "unknown")
    prompt = build_metric_prompt(country, metric, year)

    logger.debug(f"[Aggregation] Calling research model for {metric.code}...")
    t0 = time.monotonic()
    try:
        reply = await active_client.research(
            prompt,
            model=active_model,
            max_tokens=settings.research_max_tokens,
            max_searches=settings.research_max_web_searches,
        )
    except Exception as exc:
        log_service.log_research_call(
            provider,
            active_model,
            metric.code,
            duration_ms=int((time.monotonic() - t0) * 1000),
            error=str(exc) or type(exc).__name__,
        )
        if isinstance(exc, UpstreamCallError):
            raise
        raise UpstreamCallError(f"Research API: {exc}") from exc

    log_service.log_research_call(
        provider,
        active_model,
        metric.code,
        input_tokens=reply.usage.input_tokens,
        output_tokens=reply.usage.output_tokens,
        duration_ms=int((time.monotonic() - t0) * 1000),
        stop_reason=reply.stop_reason,
    )

    preview = " ".join(reply.text[:100].split())
    logger.debug(f'[Aggregation] {metric.code} response: "{preview}..."')

    return parse_metric_response(reply.text)
