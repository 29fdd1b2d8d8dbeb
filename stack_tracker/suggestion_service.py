"""AI assistance for the tool form (suggestions, invoice reading) and the stack audit.

The service talks to the Gemini ``generateContent`` REST endpoint.  Its answers
are treated as untrusted suggestions: numbers are handed to the normalization
engine like any user-typed value and categories are snapped to the known list.
"""
from __future__ import annotations

import json
import logging
from typing import Iterable, Optional

import requests

from .config import AppConfig
from .dates import parse_iso_date
from .models import TOOL_CATEGORIES, InvoiceDetails, ToolSuggestion, TrackedTool
from .normalization import coerce_amount

logger = logging.getLogger(__name__)

AUDIT_UNAVAILABLE = "Stack audit is currently unavailable (no API key configured)."
AUDIT_FAILED = "The stack audit could not be completed."

_SUGGESTION_SCHEMA = {
    "type": "object",
    "properties": {
        "category": {"type": "string"},
        "description": {"type": "string"},
        "estimatedMonthlyCost": {"type": "number"},
        "url": {"type": "string"},
    },
    "required": ["category", "description", "estimatedMonthlyCost", "url"],
}

_INVOICE_SCHEMA = {
    "type": "object",
    "properties": {
        "name": {"type": "string"},
        "category": {"type": "string"},
        "monthlyCost": {"type": "number"},
        "renewalDate": {"type": "string", "description": "Date formatted as YYYY-MM-DD"},
        "description": {"type": "string"},
    },
    "required": ["name", "category", "monthlyCost", "renewalDate"],
}


class SuggestionService:
    """Thin client around the Gemini API."""

    def __init__(self, config: AppConfig) -> None:
        self._config = config

    @property
    def enabled(self) -> bool:
        return bool(self._config.gemini_api_key)

    # ------------------------------------------------------------------
    # Tool suggestions
    # ------------------------------------------------------------------
    def suggest_tool_details(self, tool_name: str) -> Optional[ToolSuggestion]:
        """Ask the model for category, description, URL and a monthly price.

        Returns ``None`` when the service is not configured, the request fails
        or the answer is not the expected JSON object.
        """

        if not self.enabled or not tool_name.strip():
            return None

        prompt = (
            f"Categorise the software tool named {tool_name.strip()} and describe it briefly. "
            f"The category MUST be one of: {', '.join(TOOL_CATEGORIES)}. "
            f"Estimate the monthly cost in {self._config.base_currency}."
        )
        text = self._generate(
            prompt,
            generation_config={
                "responseMimeType": "application/json",
                "responseSchema": _SUGGESTION_SCHEMA,
            },
        )
        if text is None:
            return None
        return parse_suggestion(text)

    # ------------------------------------------------------------------
    # Invoice analysis
    # ------------------------------------------------------------------
    def analyze_invoice(self, data: str, mime_type: str) -> Optional[InvoiceDetails]:
        """Read tool name, category, monthly cost and renewal date off an invoice.

        ``data`` is the base64 encoded file, optionally as a ``data:`` URL.
        """

        if not self.enabled:
            return None
        encoded = data.split(",", 1)[1] if data.startswith("data:") else data
        if not encoded.strip():
            return None

        prompt = (
            "Analyse this invoice and extract the details for our SaaS tracking tool. "
            f"The category MUST be one of: {', '.join(TOOL_CATEGORIES)}. "
            "Return the result as JSON."
        )
        text = self._generate(
            prompt,
            generation_config={
                "responseMimeType": "application/json",
                "responseSchema": _INVOICE_SCHEMA,
            },
            inline_data={"mimeType": mime_type, "data": encoded.strip()},
        )
        if text is None:
            return None
        return parse_invoice(text)

    # ------------------------------------------------------------------
    # Stack audit
    # ------------------------------------------------------------------
    def audit_stack(self, tools: Iterable[TrackedTool]) -> str:
        if not self.enabled:
            return AUDIT_UNAVAILABLE

        tool_list = "\n".join(
            f"- {tool.name} ({tool.category}): {tool.monthly_cost} {self._config.base_currency}/month"
            for tool in tools
        )
        prompt = (
            "You are an experienced IT buyer and SaaS optimiser. Review the following list of "
            "company software for overlaps, savings potential and redundancies (for example two "
            "video-conferencing tools). Give short, concrete recommendations.\n\n"
            f"{tool_list}\n\n"
            "Structure the answer with:\n"
            "### Redundancies & warnings\n"
            "### Optimisation opportunities\n"
            "### Estimated savings"
        )
        text = self._generate(prompt)
        return text if text else AUDIT_FAILED

    # ------------------------------------------------------------------
    # Transport
    # ------------------------------------------------------------------
    def _generate(
        self,
        prompt: str,
        generation_config: Optional[dict[str, object]] = None,
        inline_data: Optional[dict[str, str]] = None,
    ) -> Optional[str]:
        url = f"{self._config.gemini_endpoint}/models/{self._config.gemini_model}:generateContent"
        parts: list[dict[str, object]] = [{"text": prompt}]
        if inline_data:
            parts.insert(0, {"inlineData": inline_data})
        body: dict[str, object] = {"contents": [{"parts": parts}]}
        if generation_config:
            body["generationConfig"] = generation_config

        try:
            response = requests.post(
                url,
                params={"key": self._config.gemini_api_key},
                json=body,
                timeout=60,
            )
            response.raise_for_status()
            payload = response.json()
        except (requests.RequestException, ValueError) as exc:
            logger.warning("Gemini request failed: %s", exc)
            return None
        return extract_text(payload)


def extract_text(payload: object) -> Optional[str]:
    """Concatenate the text parts of the first candidate in a Gemini answer."""

    if not isinstance(payload, dict):
        return None
    candidates = payload.get("candidates")
    if not isinstance(candidates, list) or not candidates or not isinstance(candidates[0], dict):
        return None
    # Blocked candidates come back with ``"content": null``.
    content = candidates[0].get("content") or {}
    if not isinstance(content, dict):
        return None
    parts = content.get("parts")
    if not isinstance(parts, list):
        return None
    texts = [str(part.get("text") or "") for part in parts if isinstance(part, dict)]
    joined = "".join(texts).strip()
    return joined or None


def parse_suggestion(text: str) -> Optional[ToolSuggestion]:
    try:
        data = json.loads(text.strip())
    except ValueError:
        logger.warning("Discarding non-JSON tool suggestion")
        return None
    if not isinstance(data, dict):
        return None

    category = str(data.get("category") or "")
    if category not in TOOL_CATEGORIES:
        category = TOOL_CATEGORIES[0]
    return ToolSuggestion(
        category=category,
        description=str(data.get("description") or ""),
        estimated_monthly_cost=coerce_amount(data.get("estimatedMonthlyCost")),
        url=str(data.get("url") or ""),
    )


def parse_invoice(text: str) -> Optional[InvoiceDetails]:
    try:
        data = json.loads(text.strip())
    except ValueError:
        logger.warning("Discarding non-JSON invoice analysis")
        return None
    if not isinstance(data, dict):
        return None

    category = str(data.get("category") or "")
    renewal = parse_iso_date(data.get("renewalDate"))
    return InvoiceDetails(
        name=str(data.get("name") or "").strip(),
        category=category if category in TOOL_CATEGORIES else None,
        monthly_cost=coerce_amount(data.get("monthlyCost")),
        renewal_date=renewal.isoformat() if renewal else "",
        description=str(data.get("description") or ""),
    )
