"""
LLM Service — communication with the generative summarizer model.

Calls any OpenAI-compatible chat-completions endpoint. Only the optional
generative summary path uses it; every caller must be able to live
without it.
"""
from __future__ import annotations

import asyncio
import json
import logging
from typing import Optional, Type, TypeVar

from pydantic import BaseModel

from app.config import settings

logger = logging.getLogger(__name__)

T = TypeVar("T", bound=BaseModel)

RETRY_BASE_DELAY = 1.0  # seconds, doubles on each retry

TRANSIENT_MARKERS = (
    "503", "502", "429", "service unavailable", "overloaded",
    "connection", "timeout", "timed out", "temporarily",
)


class LLMService:
    """
    Unified interface for generative inference.

    Usage:
        service = LLMService()
        text = await service.generate("Summarize...", system_prompt="...")
        draft = await service.generate_structured("...", ResponseModel)
    """

    def __init__(
        self,
        base_url: Optional[str] = None,
        api_key: Optional[str] = None,
        model_id: Optional[str] = None,
        max_retries: Optional[int] = None,
    ):
        self.base_url = base_url if base_url is not None else settings.summarizer_base_url
        self.api_key = api_key if api_key is not None else settings.summarizer_api_key
        self.model_id = model_id or settings.summarizer_model_id
        self.max_retries = max_retries or settings.llm_max_retries
        self._client = None

    async def _get_client(self):
        """Lazy-initialize the API client."""
        if self._client is None:
            try:
                from openai import AsyncOpenAI
            except ImportError:
                raise RuntimeError(
                    "openai package required for the generative summarizer. "
                    "Install with: pip install openai"
                )
            self._client = AsyncOpenAI(
                api_key=self.api_key or "not-needed",
                base_url=self.base_url or None,
            )
        return self._client

    async def generate(
        self,
        prompt: str,
        system_prompt: Optional[str] = None,
        max_tokens: int = 0,
        temperature: float = 0.3,
    ) -> str:
        """
        Generate text, retrying transient errors with exponential backoff.

        Args:
            prompt: The user prompt
            system_prompt: Optional system prompt for context setting
            max_tokens: Max tokens to generate (0 = use default from config)
            temperature: Sampling temperature
        """
        client = await self._get_client()
        max_tokens = max_tokens or settings.summarizer_max_tokens

        messages = []
        if system_prompt:
            messages.append({"role": "system", "content": system_prompt})
        messages.append({"role": "user", "content": prompt})

        last_error: Optional[Exception] = None
        for attempt in range(self.max_retries):
            try:
                response = await client.chat.completions.create(
                    model=self.model_id,
                    messages=messages,
                    max_tokens=max_tokens,
                    temperature=temperature,
                )
                return response.choices[0].message.content or ""
            except Exception as e:
                last_error = e
                error_str = str(e).lower()
                is_transient = any(marker in error_str for marker in TRANSIENT_MARKERS)
                if is_transient and attempt < self.max_retries - 1:
                    delay = RETRY_BASE_DELAY * (2 ** attempt)
                    logger.warning(
                        f"LLM transient error (attempt {attempt + 1}/{self.max_retries}): "
                        f"{e}. Retrying in {delay:.0f}s..."
                    )
                    await asyncio.sleep(delay)
                    continue
                logger.error(f"LLM API error (attempt {attempt + 1}/{self.max_retries}): {e}")
                break

        raise last_error

    async def generate_structured(
        self,
        prompt: str,
        response_model: Type[T],
        system_prompt: Optional[str] = None,
        max_tokens: int = 0,
        temperature: float = 0.2,
    ) -> T:
        """
        Generate a response parsed into ``response_model``.

        Appends the JSON schema to the prompt, strips code fences and repairs
        truncated JSON once before giving up.

        Raises:
            ValueError: the model output could not be parsed or validated
        """
        schema = response_model.model_json_schema()
        structured_prompt = (
            f"{prompt}\n\n"
            f"Respond ONLY with valid JSON matching this schema:\n"
            f"```json\n{json.dumps(schema, indent=2)}\n```\n"
            f"Do not include any text outside the JSON."
        )

        raw = await self.generate(structured_prompt, system_prompt, max_tokens, temperature)
        json_str = self._extract_json(raw)

        last_error: Optional[Exception] = None
        for candidate in (json_str, self._repair_truncated_json(json_str)):
            if candidate is None:
                continue
            try:
                return response_model.model_validate(json.loads(candidate))
            except Exception as e:
                last_error = e

        raise ValueError(
            f"LLM returned invalid JSON for {response_model.__name__}: {last_error}. "
            f"Raw: {raw[:300]}"
        )

    @staticmethod
    def _extract_json(text: str) -> str:
        """Extract JSON from a response that might include markdown code blocks."""
        for fence in ("```json", "```"):
            if fence in text:
                start = text.index(fence) + len(fence)
                end = text.find("```", start)
                return text[start:].strip() if end == -1 else text[start:end].strip()

        start = next((i for i, c in enumerate(text) if c in "{["), None)
        if start is None:
            return text.strip()
        depth = 0
        for j in range(start, len(text)):
            if text[j] in "{[":
                depth += 1
            elif text[j] in "}]":
                depth -= 1
            if depth == 0:
                return text[start : j + 1]
        return text[start:].strip()

    @staticmethod
    def _repair_truncated_json(text: str) -> Optional[str]:
        """
        Close an unterminated string and any unclosed brackets/braces.
        Returns None for empty input.
        """
        if not text or not text.strip():
            return None

        s = text.rstrip()
        stack: list[str] = []
        in_string = False
        i = 0
        while i < len(s):
            c = s[i]
            if c == "\\" and in_string:
                i += 2
                continue
            if c == '"':
                in_string = not in_string
            elif not in_string:
                if c in "{[":
                    stack.append("}" if c == "{" else "]")
                elif c in "}]" and stack:
                    stack.pop()
            i += 1

        if in_string:
            s += '"'
        s = s.rstrip()
        if s.endswith(","):
            s = s[:-1]
        return s + "".join(reversed(stack))
