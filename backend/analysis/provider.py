"""
AI Provider Client

Posts an analysis context to the configured provider endpoint and returns
its structured JSON output ({summary, suggestions[], alerts[],
opportunities[]}). Prompting and retrieval happen on the provider side.
"""

import httpx
from tenacity import retry, retry_if_exception_type, stop_after_attempt, wait_exponential

from core.config import get_settings
from db.models import Analysis, Store

settings = get_settings()


class ProviderError(Exception):
    """The provider answered, but not with a usable analysis."""


def build_context(analysis: Analysis, store: Store) -> dict:
    return {
        "analysis_id": str(analysis.analysis_id),
        "analysis_type": analysis.analysis_type,
        "period_start": analysis.period_start.isoformat(),
        "period_end": analysis.period_end.isoformat(),
        "store": {
            "store_id": str(store.store_id),
            "name": store.name,
            "platform": store.platform,
        },
    }


@retry(
    stop=stop_after_attempt(3),
    wait=wait_exponential(min=1, max=10),
    retry=retry_if_exception_type(httpx.TransportError),
    reraise=True,
)
async def generate_analysis(context: dict) -> dict:
    """Request an analysis from the provider."""
    headers = {"Content-Type": "application/json"}
    if settings.ai_provider_api_key:
        headers["Authorization"] = f"Bearer {settings.ai_provider_api_key}"

    async with httpx.AsyncClient(timeout=settings.ai_provider_timeout_seconds) as client:
        response = await client.post(settings.ai_provider_url, headers=headers, json=context)
        response.raise_for_status()
        try:
            data = response.json()
        except ValueError as exc:
            raise ProviderError(f"Provider response is not valid JSON: {exc}") from exc

    if not isinstance(data, dict):
        raise ProviderError("Provider response is not a JSON object")
    suggestions = data.get("suggestions") or []
    if not isinstance(suggestions, list):
        raise ProviderError("Provider 'suggestions' must be a list")

    return {
        "summary": data.get("summary"),
        "suggestions": suggestions,
        "alerts": data.get("alerts") or [],
        "opportunities": data.get("opportunities") or [],
    }
