# core/analysis_service.py
"""
Client for the chapter analysis model. Sends a chapter's text together with
the cumulative character state so far and returns the partial state delta
the chapter introduces.

Licensed under the Apache License, Version 2.0 (the "License");
you may not use this file except in compliance with the License.
You may obtain a copy of the License at

    http://www.apache.org/licenses/LICENSE-2.0

Unless required by applicable law or agreed to in writing, software
distributed under the License is distributed on an "AS IS" BASIS,
WITHOUT WARRANTIES OR CONDITIONS OF ANY KIND, either express or implied.
See the License for the specific language governing permissions and
limitations under the License.

Copyright 2025 Dennis Lewis
"""

# Standard library imports
import functools
import json
import re
from typing import Any

import httpx

# Third-party imports
import structlog
import tiktoken

# Local imports
from config import settings
from prompt_renderer import render_prompt

logger = structlog.get_logger(__name__)

FALLBACK_CHARS_PER_TOKEN = 4.0

ANALYSIS_PROMPT_TEMPLATE = "analysis/chapter_delta.j2"


class AnalysisError(Exception):
    """The analysis call failed or returned something that is not a JSON object."""


@functools.lru_cache(maxsize=4)
def _get_tokenizer(encoding_name: str) -> tiktoken.Encoding | None:
    try:
        return tiktoken.get_encoding(encoding_name)
    except Exception as e:
        logger.error(
            f"Tokenizer '{encoding_name}' unavailable; falling back to character-based truncation: {e}"
        )
        return None


def truncate_text_by_tokens(
    text: str, max_tokens: int, truncation_marker: str = "\n... (truncated)"
) -> str:
    """Truncate ``text`` to at most ``max_tokens`` tokens, adding a marker when cut."""
    if not text:
        return ""

    encoder = _get_tokenizer(settings.TIKTOKEN_DEFAULT_ENCODING)
    if encoder is None:
        max_chars = int(max_tokens * FALLBACK_CHARS_PER_TOKEN)
        if len(text) > max_chars:
            return text[: max(max_chars - len(truncation_marker), 0)] + truncation_marker
        return text

    tokens = encoder.encode(text, allowed_special="all")
    if len(tokens) <= max_tokens:
        return text
    marker_len = len(encoder.encode(truncation_marker, allowed_special="all"))
    keep = max(max_tokens - marker_len, 1)
    return encoder.decode(tokens[:keep]) + truncation_marker


def extract_json_object(text: str) -> dict[str, Any]:
    """Return the first JSON object found in a model reply."""
    if not isinstance(text, str) or not text.strip():
        raise AnalysisError("Empty analysis response")

    cleaned = re.sub(
        r"<\s*think\s*>.*?<\s*/\s*think\s*>", "", text, flags=re.DOTALL | re.IGNORECASE
    )
    fenced = re.search(r"```(?:json)?\s*(.*?)\s*```", cleaned, flags=re.DOTALL)
    if fenced:
        cleaned = fenced.group(1)

    start = cleaned.find("{")
    end = cleaned.rfind("}")
    if start == -1 or end <= start:
        raise AnalysisError("No JSON object in analysis response")
    try:
        parsed = json.loads(cleaned[start : end + 1])
    except json.JSONDecodeError as e:
        raise AnalysisError(f"Invalid JSON in analysis response: {e}") from e
    if not isinstance(parsed, dict):
        raise AnalysisError("Analysis response is not a JSON object")
    return parsed


class AnalysisService:
    """Calls an OpenAI-compatible chat completions endpoint to analyze chapters.

    Each call is a single attempt. Retrying is left to callers.
    """

    def __init__(
        self,
        api_base: str = settings.ANALYSIS_API_BASE,
        api_key: str = settings.ANALYSIS_API_KEY,
        model: str = settings.ANALYSIS_MODEL,
        timeout: float = settings.HTTPX_TIMEOUT,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self.api_base = api_base.rstrip("/")
        self.api_key = api_key
        self.model = model
        self._client = client or httpx.AsyncClient(timeout=timeout)
        self.request_count = 0

    async def aclose(self) -> None:
        """Close the underlying HTTP client."""
        await self._client.aclose()

    def build_prompt(self, chapter_text: str, prior_state: dict[str, Any] | None) -> str:
        return render_prompt(
            ANALYSIS_PROMPT_TEMPLATE,
            {
                "prior_state": prior_state or {},
                "chapter_text": truncate_text_by_tokens(
                    chapter_text, settings.ANALYSIS_MAX_CHAPTER_TOKENS
                ),
            },
        )

    async def analyze(
        self, chapter_text: str, prior_state: dict[str, Any] | None
    ) -> dict[str, Any]:
        """Return the state delta introduced by ``chapter_text``."""
        if not chapter_text or not chapter_text.strip():
            raise AnalysisError("Chapter text is empty")

        payload = {
            "model": self.model,
            "messages": [
                {"role": "user", "content": self.build_prompt(chapter_text, prior_state)}
            ],
            "temperature": settings.ANALYSIS_TEMPERATURE,
            "stream": False,
        }
        headers = {
            "Authorization": f"Bearer {self.api_key}",
            "Content-Type": "application/json",
        }

        self.request_count += 1
        try:
            response = await self._client.post(
                f"{self.api_base}/chat/completions", json=payload, headers=headers
            )
            response.raise_for_status()
            data = response.json()
        except httpx.HTTPStatusError as e_status:
            raise AnalysisError(
                f"HTTP status {e_status.response.status_code}: {e_status.response.text[:200]}"
            ) from e_status
        except httpx.RequestError as e_req:
            raise AnalysisError(f"Request error: {e_req}") from e_req
        except json.JSONDecodeError as e_json:
            raise AnalysisError(f"Failed to decode JSON response: {e_json}") from e_json

        raw_text = ""
        if isinstance(data, dict) and data.get("choices"):
            message = data["choices"][0].get("message") or {}
            raw_text = message.get("content") or ""
        else:
            logger.error(
                f"Analysis ('{self.model}') invalid response structure - missing choices/content: {str(data)[:200]}"
            )
        delta = extract_json_object(raw_text)
        logger.debug(
            "Chapter analysis complete", model=self.model, delta_keys=sorted(delta)
        )
        return delta
