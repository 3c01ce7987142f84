"""Structured text-completion client and lenient JSON parsing."""
from __future__ import annotations

import logging
import re
from typing import Any, Dict, Optional, Protocol, Type, TypeVar

import openai
from pydantic import BaseModel, ValidationError

from app.core.config import settings
from app.core.errors import CompletionError, MalformedOutputError
from app.observability.metrics import log_metric

logger = logging.getLogger(__name__)

T = TypeVar("T", bound=BaseModel)

_FENCE_RE = re.compile(r"```(?:json|JSON)?\s*")


class CompletionClient(Protocol):
    def complete(self, prompt: str, *, temperature: Optional[float] = None, json_mode: bool = False) -> str:
        ...


class OpenAICompletionClient:
    """Chat-completions backed client; works with any OpenAI-compatible endpoint."""

    def __init__(
        self,
        api_key: str,
        *,
        model: str,
        base_url: Optional[str] = None,
        timeout: float = 60.0,
    ) -> None:
        self._client = openai.OpenAI(api_key=api_key, base_url=base_url, timeout=timeout)
        self.model = model

    def complete(self, prompt: str, *, temperature: Optional[float] = None, json_mode: bool = False) -> str:
        kwargs: Dict[str, Any] = {"temperature": temperature} if temperature is not None else {}
        if json_mode:
            kwargs["response_format"] = {"type": "json_object"}
        try:
            completion = self._client.chat.completions.create(
                model=self.model,
                messages=[{"role": "user", "content": prompt}],
                **kwargs,
            )
        except openai.OpenAIError as exc:
            raise CompletionError(f"completion request failed: {exc}") from exc
        if not completion.choices:
            raise CompletionError("completion returned no choices")
        return completion.choices[0].message.content or ""


class UnavailableCompletionClient:
    """Stand-in used when no API key is configured; every call fails fast."""

    def complete(self, prompt: str, *, temperature: Optional[float] = None, json_mode: bool = False) -> str:
        raise CompletionError("OPENAI_API_KEY missing; language model unavailable")


def build_completion_client() -> CompletionClient:
    if not settings.openai_api_key:
        logger.warning("OPENAI_API_KEY missing; language features will use fallbacks.")
        return UnavailableCompletionClient()
    return OpenAICompletionClient(
        settings.openai_api_key,
        model=settings.llm_model,
        base_url=settings.openai_base_url,
        timeout=settings.llm_timeout_seconds,
    )


def strip_code_fences(text: str | None) -> str:
    """Remove Markdown fences and any chatter around the outermost JSON object."""
    cleaned = _FENCE_RE.sub("", text or "").replace("```", "").strip()
    if cleaned and not cleaned.startswith(("{", "[")):
        start = cleaned.find("{")
        end = cleaned.rfind("}")
        if start != -1 and end > start:
            cleaned = cleaned[start : end + 1]
    return cleaned


def parse_structured(text: str | None, schema: Type[T]) -> T:
    """Parse completion text into ``schema`` or raise MalformedOutputError naming the field."""
    payload = strip_code_fences(text)
    if not payload:
        raise MalformedOutputError("completion text was empty")
    try:
        return schema.model_validate_json(payload)
    except ValidationError as exc:
        first = exc.errors()[0] if exc.errors() else {}
        field = ".".join(str(part) for part in first.get("loc", ())) or "<root>"
        raise MalformedOutputError(
            f"{schema.__name__} rejected at {field}: {first.get('msg', 'invalid')}",
            field=field,
        ) from exc


def complete_structured(
    client: CompletionClient,
    prompt: str,
    schema: Type[T],
    *,
    purpose: str,
    temperature: Optional[float] = None,
) -> T:
    """Run a completion and parse it, logging which stage failed."""
    try:
        raw = client.complete(prompt, temperature=temperature, json_mode=True)
    except CompletionError:
        log_metric("llm.completion_error", 1, {"purpose": purpose})
        raise
    try:
        return parse_structured(raw, schema)
    except MalformedOutputError as exc:
        logger.warning("Malformed %s output (field=%s): %s", purpose, exc.field, exc)
        log_metric("llm.malformed_output", 1, {"purpose": purpose, "field": exc.field})
        raise
