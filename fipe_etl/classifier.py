"""LLM-based market segment classification for newly discovered models."""
from __future__ import annotations

import logging
import re
from typing import Optional, Protocol

import httpx

from fipe_etl.config import CrawlerConfig

LOGGER = logging.getLogger(__name__)

ANTHROPIC_URL = "https://api.anthropic.com/v1/messages"
ANTHROPIC_VERSION = "2023-06-01"

SEGMENTS = (
    "hatch",
    "sedan",
    "suv",
    "pickup",
    "minivan",
    "wagon",
    "coupe",
    "convertible",
    "van",
)


class Classifier(Protocol):
    def classify(self, brand_name: str, model_name: str) -> Optional[str]:
        """Return a segment from ``SEGMENTS`` or None when undecided."""
        ...


class SegmentClassifier:
    """Assign a body-style segment to a FIPE model label using Claude."""

    PROMPT = (
        "You classify Brazilian car models from the FIPE price table into a market segment.\n"
        "Brand: {brand}\n"
        "FIPE model label: {model}\n\n"
        "Answer with exactly one word from this list: {segments}.\n"
        "If the label is not enough to decide, answer: unknown"
    )

    def __init__(
        self,
        api_key: str,
        model: str,
        *,
        http: Optional[httpx.Client] = None,
        timeout: float = 30.0,
    ) -> None:
        self.api_key = api_key
        self.model = model
        self._http = http or httpx.Client(timeout=timeout)

    @classmethod
    def from_config(cls, config: CrawlerConfig) -> Optional[SegmentClassifier]:
        """Build a classifier, or return None when no API key is configured."""
        if not config.anthropic_api_key:
            return None
        return cls(config.anthropic_api_key, config.classifier_model, timeout=config.request_timeout)

    def close(self) -> None:
        self._http.close()

    def classify(self, brand_name: str, model_name: str) -> Optional[str]:
        try:
            answer = self._ask(brand_name, model_name)
        except (httpx.HTTPError, KeyError, IndexError, TypeError, ValueError) as exc:
            LOGGER.warning("Segment classification failed for %s %s: %s", brand_name, model_name, exc)
            return None
        return parse_segment(answer)

    def _ask(self, brand_name: str, model_name: str) -> str:
        headers = {
            "x-api-key": self.api_key,
            "anthropic-version": ANTHROPIC_VERSION,
            "Content-Type": "application/json",
        }
        payload = {
            "model": self.model,
            "max_tokens": 10,
            "temperature": 0,
            "messages": [
                {
                    "role": "user",
                    "content": self.PROMPT.format(
                        brand=brand_name, model=model_name, segments=", ".join(SEGMENTS)
                    ),
                }
            ],
        }
        response = self._http.post(ANTHROPIC_URL, headers=headers, json=payload)
        response.raise_for_status()
        data = response.json()
        return data["content"][0]["text"]


def parse_segment(answer: str) -> Optional[str]:
    """Extract a known segment from a free-text model answer."""
    words = re.findall(r"[a-z]+", answer.lower())
    if not words:
        return None
    word = words[0]
    return word if word in SEGMENTS else None
