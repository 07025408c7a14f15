"""
Text and structured-output generation clients.

Steps receive these as explicit collaborators; nothing here is a
module-level singleton, so tests can hand a step a fake instead.
"""

from typing import Any, Dict, List, Optional, Protocol, Type, TypeVar, runtime_checkable
import json
import logging

import httpx
from openai import AsyncOpenAI, OpenAIError
from pydantic import BaseModel, ValidationError

from flowstate.tools.errors import GenerationError, StructuredOutputError


logger = logging.getLogger(__name__)

ModelT = TypeVar("ModelT", bound=BaseModel)


@runtime_checkable
class TextGenerator(Protocol):
    async def generate(self, prompt: str) -> str:
        ...


@runtime_checkable
class StructuredGenerator(Protocol):
    async def generate_structured(self, prompt: str, schema: Type[ModelT]) -> ModelT:
        ...


def validate_structured_output(raw: str, schema: Type[ModelT]) -> ModelT:
    """
    Parse and validate a model's JSON output against a pydantic model.

    Raises:
        StructuredOutputError: If the output is not JSON or fails validation
    """
    try:
        return schema.model_validate_json(raw)
    except ValidationError as e:
        raise StructuredOutputError(
            f"Output does not match {schema.__name__}: {e.error_count()} validation error(s)",
            raw=raw,
        ) from e


class OpenAIChatClient:
    """
    Chat-completions client for text and JSON-schema structured output.

    Usage:
        async with OpenAIChatClient(api_key="...", model="gpt-4o") as llm:
            text = await llm.generate("Rewrite this tweet ...")
            rating = await llm.generate_structured(prompt, Rating)
    """

    def __init__(
        self,
        api_key: Optional[str],
        model: str = "gpt-4o",
        base_url: Optional[str] = None,
        timeout: float = 60.0,
        max_retries: int = 2,
        http_client: Optional[httpx.AsyncClient] = None,
    ):
        self.model = model
        self._configured = bool(api_key)
        self.client = AsyncOpenAI(
            api_key=api_key or "not-configured",
            base_url=base_url,
            timeout=timeout,
            max_retries=max_retries,
            http_client=http_client,
        )

    async def _complete(self, messages: List[Dict[str, str]], **params: Any) -> str:
        if not self._configured:
            raise GenerationError("OPENAI_API_KEY is not configured")

        try:
            response = await self.client.chat.completions.create(
                model=self.model,
                messages=messages,
                **params,
            )
        except OpenAIError as e:
            logger.error(f"OpenAI request failed: {e}")
            raise GenerationError(f"OpenAI request failed: {e}") from e

        if not response.choices or response.choices[0].message.content is None:
            raise GenerationError("OpenAI returned no content")
        return response.choices[0].message.content

    async def generate(self, prompt: str) -> str:
        """Generate text for a single user prompt."""
        return await self._complete([{"role": "user", "content": prompt}])

    async def generate_structured(self, prompt: str, schema: Type[ModelT]) -> ModelT:
        """Generate output constrained to, and validated against, a pydantic model."""
        content = await self._complete(
            [{"role": "user", "content": prompt}],
            response_format={
                "type": "json_schema",
                "json_schema": {
                    "name": schema.__name__,
                    "schema": schema.model_json_schema(),
                },
            },
        )
        return validate_structured_output(content, schema)

    async def aclose(self) -> None:
        await self.client.close()

    async def __aenter__(self) -> "OpenAIChatClient":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.aclose()


class GeminiTextClient:
    """Text generation through the Gemini ``generateContent`` REST endpoint."""

    def __init__(
        self,
        api_key: Optional[str],
        model: str = "gemini-2.0-flash",
        base_url: str = "https://generativelanguage.googleapis.com/v1beta",
        timeout: float = 60.0,
        http_client: Optional[httpx.AsyncClient] = None,
    ):
        self.api_key = api_key
        self.model = model
        self.client = http_client or httpx.AsyncClient(base_url=base_url, timeout=timeout)

    async def generate(self, prompt: str) -> str:
        if not self.api_key:
            raise GenerationError("GOOGLE_API_KEY is not configured")

        payload = {"contents": [{"role": "user", "parts": [{"text": prompt}]}]}
        try:
            response = await self.client.post(
                f"/models/{self.model}:generateContent",
                params={"key": self.api_key},
                json=payload,
            )
            response.raise_for_status()
            data = response.json()
        except httpx.HTTPError as e:
            logger.error(f"Gemini request failed: {e}")
            raise GenerationError(f"Gemini request failed: {e}") from e
        except json.JSONDecodeError as e:
            raise GenerationError("Gemini returned invalid JSON") from e

        candidates = data.get("candidates") or []
        if not candidates:
            raise GenerationError("Gemini returned no candidates")

        parts = candidates[0].get("content", {}).get("parts", [])
        text = "".join(part.get("text", "") for part in parts)
        if not text:
            raise GenerationError("Gemini returned no text")
        return text

    async def aclose(self) -> None:
        await self.client.aclose()
