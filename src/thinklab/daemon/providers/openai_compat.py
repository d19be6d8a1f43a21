"""OpenAI-compatible capability provider over httpx."""

from __future__ import annotations

import json
import os
from typing import Any

import httpx

from ..errors import ProviderFailure
from ..pricing import ActionKind
from ..utils.config_loader import ProviderSettings
from ..utils.logging_config import StructuredLogger

logger = StructuredLogger(__name__)

_DATA_ANALYST_SYSTEM = "You are a data analysis expert. Analyze the data and provide insights in JSON format."
_SEO_SYSTEM = "You are an SEO expert. Analyze content and provide optimization recommendations in JSON format."


def _error_detail(response: httpx.Response) -> str:
    try:
        err_json = response.json()
    except ValueError:
        err_json = {"error": response.text}
    detail = None
    if isinstance(err_json, dict):
        detail = err_json.get("error") or err_json.get("message") or err_json.get("detail")
    if isinstance(detail, dict):
        detail = detail.get("message") or str(detail)
    if not detail:
        detail = response.text
    return str(detail).replace("\n", " ")[:240]


class OpenAIProvider:
    """Maps each action kind onto chat completions or image generation."""

    def __init__(
        self,
        settings: ProviderSettings,
        *,
        api_key: str | None = None,
        client: httpx.AsyncClient | None = None,
    ):
        self._explicit_key = api_key
        self._client = client
        self._owns_client = client is None
        self.configure(settings)

    def configure(self, settings: ProviderSettings) -> None:
        """Apply new settings; the pooled client is kept."""
        self.settings = settings
        self.api_key = self._explicit_key if self._explicit_key is not None else (os.getenv(settings.api_key_env) or "")
        if not self.api_key:
            logger.warning("Provider API key not configured; AI actions will fail", env=settings.api_key_env)

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None or self._client.is_closed:
            self._client = httpx.AsyncClient(
                timeout=self.settings.timeout_seconds,
                limits=httpx.Limits(max_connections=100, max_keepalive_connections=50),
            )
            self._owns_client = True
        return self._client

    async def aclose(self) -> None:
        if self._owns_client and self._client is not None and not self._client.is_closed:
            await self._client.aclose()

    async def _post(self, path: str, body: dict[str, Any], action_kind: ActionKind) -> dict[str, Any]:
        url = f"{self.settings.base_url.rstrip('/')}/{path.lstrip('/')}"
        headers = {"Authorization": f"Bearer {self.api_key}"}
        try:
            response = await self._get_client().post(
                url, json=body, headers=headers, timeout=self.settings.timeout_seconds
            )
        except httpx.HTTPError as exc:
            logger.warning("Provider transport error", action_kind=str(action_kind), error=str(exc))
            raise ProviderFailure(f"Provider transport error: {exc}", action_kind=str(action_kind)) from exc

        if response.status_code != 200:
            detail = _error_detail(response)
            logger.warning(
                "Upstream request failed",
                action_kind=str(action_kind),
                status_code=response.status_code,
                detail=detail,
            )
            raise ProviderFailure(
                f"Upstream {path} failed with HTTP {response.status_code}: {detail}",
                action_kind=str(action_kind),
                status=response.status_code,
            )

        try:
            data = response.json()
        except ValueError as exc:
            raise ProviderFailure("Provider returned a non-JSON body", action_kind=str(action_kind)) from exc
        if not isinstance(data, dict):
            raise ProviderFailure("Provider returned an unexpected body", action_kind=str(action_kind))
        return data

    async def _chat(
        self,
        action_kind: ActionKind,
        messages: list[dict[str, str]],
        *,
        max_tokens: int | None = None,
        json_mode: bool = False,
    ) -> str:
        body: dict[str, Any] = {"model": self.settings.text_model, "messages": messages}
        if max_tokens is not None:
            body["max_tokens"] = max_tokens
        if json_mode:
            body["response_format"] = {"type": "json_object"}

        data = await self._post("chat/completions", body, action_kind)
        try:
            content = data["choices"][0]["message"]["content"]
        except (KeyError, IndexError, TypeError) as exc:
            raise ProviderFailure("Malformed chat completion response", action_kind=str(action_kind)) from exc
        return content or ""

    async def _chat_json(self, action_kind: ActionKind, system: str, prompt: str) -> dict[str, Any]:
        content = await self._chat(
            action_kind,
            [{"role": "system", "content": system}, {"role": "user", "content": prompt}],
            json_mode=True,
        )
        try:
            parsed = json.loads(content or "{}")
        except ValueError as exc:
            raise ProviderFailure("Provider returned malformed JSON content", action_kind=str(action_kind)) from exc
        if not isinstance(parsed, dict):
            raise ProviderFailure("Provider returned non-object JSON content", action_kind=str(action_kind))
        return parsed

    async def invoke(self, action_kind: ActionKind, payload: dict[str, Any]) -> dict[str, Any]:
        if action_kind == ActionKind.TEXT_GENERATION:
            content = await self._chat(
                action_kind,
                [{"role": "user", "content": payload["prompt"]}],
                max_tokens=payload.get("max_tokens", self.settings.max_tokens),
            )
            return {"content": content}

        if action_kind == ActionKind.IMAGE_GENERATION:
            data = await self._post(
                "images/generations",
                {
                    "model": self.settings.image_model,
                    "prompt": payload["prompt"],
                    "n": 1,
                    "size": self.settings.image_size,
                    "quality": "standard",
                },
                action_kind,
            )
            try:
                url = data["data"][0]["url"]
            except (KeyError, IndexError, TypeError) as exc:
                raise ProviderFailure("Malformed image generation response", action_kind=str(action_kind)) from exc
            if not url:
                raise ProviderFailure("Image generation returned no URL", action_kind=str(action_kind))
            return {"image_url": url}

        if action_kind == ActionKind.CODE_GENERATION:
            prompt = (
                f"Generate {payload['language']} code for the following requirement: {payload['prompt']}. "
                "Return only the code without explanations."
            )
            code = await self._chat(action_kind, [{"role": "user", "content": prompt}], max_tokens=2000)
            return {"code": code}

        if action_kind == ActionKind.TEXT_SUMMARIZATION:
            prompt = (
                "Please summarize the following text concisely while maintaining key points:\n\n"
                f"{payload['text']}"
            )
            summary = await self._chat(action_kind, [{"role": "user", "content": prompt}], max_tokens=500)
            return {"summary": summary}

        if action_kind == ActionKind.DATA_ANALYSIS:
            prompt = (
                f"Analyze the following data using {payload['analysis_type']} analysis. "
                "Provide insights, patterns, and recommendations. "
                'Respond with JSON in this format: { "insights": [...], "patterns": [...], "recommendations": [...] }\n\n'
                f"Data: {json.dumps(payload['data'], ensure_ascii=True, default=str)}"
            )
            return {"analysis": await self._chat_json(action_kind, _DATA_ANALYST_SYSTEM, prompt)}

        if action_kind == ActionKind.SEO_OPTIMIZATION:
            prompt = (
                f"Optimize the following content for SEO with these target keywords: {', '.join(payload['keywords'])}. "
                "Provide recommendations for title, meta description, headings, and content improvements. "
                'Respond with JSON in this format: { "title": "...", "metaDescription": "...", '
                '"headings": [...], "recommendations": [...] }\n\n'
                f"Content: {payload['content']}"
            )
            return {"optimization": await self._chat_json(action_kind, _SEO_SYSTEM, prompt)}

        raise ProviderFailure(f"No provider mapping for {action_kind}", action_kind=str(action_kind))
