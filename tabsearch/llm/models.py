from __future__ import annotations

"""Language model adapters used for summarization and semantic scoring."""

import asyncio
import logging
from dataclasses import dataclass
from typing import Any

import httpx

from tabsearch.llm.parsing import LLMError
from tabsearch.search.context import CancellationToken
from tabsearch.search.errors import SearchCancelled

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SessionHandle:
    """Opaque handle for a model session bound to one system prompt."""
    provider: str
    model: str
    system_prompt: str


class LanguageModel:
    """Base class for language model adapters.

    ``create_session`` and ``prompt`` return ``None`` when the model is
    unavailable or the call fails; only cancellation is raised.
    """
    provider: str
    model: str

    async def create_session(self, system_prompt: str) -> SessionHandle | None:
        """Return a session handle, or ``None`` when the model is unavailable."""
        try:
            available = await self._check_available()
        except LLMError as exc:
            logger.warning(
                "llm_availability_check_failed",
                extra={"provider": self.provider, "detail": str(exc)},
            )
            return None
        if not available:
            logger.info("llm_unavailable", extra={"provider": self.provider})
            return None
        return SessionHandle(provider=self.provider, model=self.model, system_prompt=system_prompt)

    async def prompt(
        self,
        session: SessionHandle | None,
        text: str,
        schema: dict[str, Any] | None = None,
        token: CancellationToken | None = None,
    ) -> str | None:
        """Send ``text`` within ``session`` and return the raw completion."""
        if session is None:
            return None
        try:
            if token is not None:
                return await token.guard(self._complete(session, text, schema))
            return await self._complete(session, text, schema)
        except SearchCancelled:
            logger.debug("llm_prompt_cancelled", extra={"provider": self.provider})
            raise
        except LLMError as exc:
            logger.error(
                "llm_prompt_failed",
                extra={
                    "provider": self.provider,
                    "model": self.model,
                    "prompt_length": len(text),
                    "has_schema": schema is not None,
                    "detail": str(exc),
                },
            )
            return None

    async def close_session(self, session: SessionHandle) -> None:
        """Release a session; HTTP-backed sessions hold no server state."""
        return None

    async def _check_available(self) -> bool:
        return False

    async def _complete(
        self, session: SessionHandle, text: str, schema: dict[str, Any] | None
    ) -> str:
        raise LLMError("No language model configured")


@dataclass(frozen=True)
class NullLanguageModel(LanguageModel):
    """Adapter used when semantic scoring is disabled."""
    provider: str = "none"
    model: str = ""


@dataclass(frozen=True)
class OllamaLanguageModel(LanguageModel):
    """Language model backed by the Ollama chat API."""
    base_url: str
    model: str
    temperature: float
    max_tokens: int
    timeout: float
    provider: str = "ollama"
    transport: httpx.AsyncBaseTransport | None = None

    async def _check_available(self) -> bool:
        """Check that the server is reachable and the model is pulled."""
        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self.transport) as client:
                response = await client.get(f"{self.base_url}/api/tags")
                response.raise_for_status()
                data = response.json()
        except (httpx.HTTPError, ValueError) as exc:
            raise LLMError(str(exc)) from exc
        names = {str(item.get("name", "")) for item in data.get("models") or []}
        return self.model in names or f"{self.model}:latest" in names

    async def _complete(
        self, session: SessionHandle, text: str, schema: dict[str, Any] | None
    ) -> str:
        payload: dict[str, Any] = {
            "model": self.model,
            "messages": [
                {"role": "system", "content": session.system_prompt},
                {"role": "user", "content": text},
            ],
            "stream": False,
            "options": {
                "temperature": self.temperature,
                "num_predict": self.max_tokens,
            },
        }
        if schema is not None:
            payload["format"] = schema
        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self.transport) as client:
                response = await client.post(f"{self.base_url}/api/chat", json=payload)
                response.raise_for_status()
                data = response.json()
        except (httpx.HTTPError, ValueError) as exc:
            raise LLMError(str(exc)) from exc
        message = data.get("message") or {}
        content = message.get("content")
        if not isinstance(content, str):
            raise LLMError("Invalid LLM response")
        return content


@dataclass(frozen=True)
class OpenAILanguageModel(LanguageModel):
    """Language model backed by OpenAI-compatible chat completions."""
    api_key: str
    base_url: str
    model: str
    temperature: float
    max_tokens: int
    timeout: float
    provider: str = "openai"
    transport: httpx.AsyncBaseTransport | None = None

    async def _check_available(self) -> bool:
        return bool(self.api_key and self.model)

    async def _complete(
        self, session: SessionHandle, text: str, schema: dict[str, Any] | None
    ) -> str:
        payload: dict[str, Any] = {
            "model": self.model,
            "messages": [
                {"role": "system", "content": session.system_prompt},
                {"role": "user", "content": text},
            ],
            "temperature": self.temperature,
            "max_tokens": self.max_tokens,
        }
        if schema is not None:
            payload["response_format"] = {
                "type": "json_schema",
                "json_schema": {"name": "response", "schema": schema},
            }
        headers = {"Authorization": f"Bearer {self.api_key}"}
        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self.transport) as client:
                response = await client.post(
                    f"{self.base_url}/chat/completions",
                    json=payload,
                    headers=headers,
                )
                response.raise_for_status()
                data = response.json()
        except (httpx.HTTPError, ValueError) as exc:
            raise LLMError(str(exc)) from exc

        choices = data.get("choices") or []
        if not choices:
            raise LLMError("Invalid OpenAI response")
        message = choices[0].get("message") or {}
        content = message.get("content")
        if not isinstance(content, str):
            raise LLMError("Invalid OpenAI response content")
        return content


@dataclass(frozen=True)
class GeminiLanguageModel(LanguageModel):
    """Language model backed by Gemini generative models."""
    api_key: str
    model: str
    temperature: float
    max_tokens: int
    timeout: float
    provider: str = "gemini"

    async def _check_available(self) -> bool:
        if not self.api_key or not self.model:
            return False
        try:
            import google.generativeai  # noqa: F401
        except ImportError as exc:
            raise LLMError("google-generativeai is required for the Gemini provider") from exc
        return True

    async def _complete(
        self, session: SessionHandle, text: str, schema: dict[str, Any] | None
    ) -> str:
        try:
            import google.generativeai as genai
        except ImportError as exc:
            raise LLMError("google-generativeai is required for the Gemini provider") from exc

        def _run() -> str:
            genai.configure(api_key=self.api_key)
            model = genai.GenerativeModel(self.model, system_instruction=session.system_prompt)
            config: dict[str, Any] = {
                "temperature": self.temperature,
                "max_output_tokens": self.max_tokens,
            }
            if schema is not None:
                config["response_mime_type"] = "application/json"
            response = model.generate_content(text, generation_config=config)
            return getattr(response, "text", "") or ""

        try:
            return await asyncio.wait_for(asyncio.to_thread(_run), timeout=self.timeout)
        except asyncio.TimeoutError as exc:
            raise LLMError("Gemini request timed out") from exc
        except Exception as exc:
            raise LLMError(str(exc)) from exc


def build_language_model(
    provider: str,
    *,
    api_key_openai: str | None,
    api_key_gemini: str | None,
    openai_base_url: str,
    openai_model: str | None,
    gemini_model: str | None,
    ollama_base_url: str,
    ollama_model: str,
    temperature: float,
    max_tokens: int,
    timeout: float,
) -> LanguageModel:
    """Factory for language model adapters based on provider."""
    normalized = provider.strip().lower()
    if normalized in {"", "none", "off", "disabled"}:
        return NullLanguageModel()
    if normalized == "openai":
        return OpenAILanguageModel(
            api_key=api_key_openai or "",
            base_url=openai_base_url.rstrip("/"),
            model=openai_model or "",
            temperature=temperature,
            max_tokens=max_tokens,
            timeout=timeout,
        )
    if normalized in {"gemini", "google"}:
        return GeminiLanguageModel(
            api_key=api_key_gemini or "",
            model=gemini_model or "",
            temperature=temperature,
            max_tokens=max_tokens,
            timeout=timeout,
        )
    return OllamaLanguageModel(
        base_url=ollama_base_url.rstrip("/"),
        model=ollama_model,
        temperature=temperature,
        max_tokens=max_tokens,
        timeout=timeout,
    )
