"""
Chat Completions compatible provider adapter (SiliconFlow, Zhipu, OpenAI...).

Wire contract
─────────────
POST {base_url}/chat/completions
  Authorization: Bearer <api_key>
  {"model", "messages": [system, user], "temperature", "max_tokens",
   "stream": false, "response_format"?, "tools"?}
→ {"choices": [{"message": {"content": "..."}}]}

Error bodies are provider defined: either ``{"code", "message"}`` at the top
level or nested under ``"error"``. Both shapes are parsed.
"""

from __future__ import annotations

import json
import logging
from typing import Any, Optional

import httpx

from config.settings import ProviderSettings
from insight.cancellation import CancellationToken, ensure_token
from insight.errors import ErrorKind, ProviderError, classify, provider_error
from insight.models import GenericRequest, GenericResponse, SourceRef

logger = logging.getLogger(__name__)

COMPLETIONS_SUFFIX = "/chat/completions"
DEFAULT_TIMEOUT = httpx.Timeout(300.0, connect=15.0)


def normalize_base_url(base_url: str) -> str:
    """Strip trailing slashes and ensure the completions suffix appears once.

    Examples:
        >>> normalize_base_url("https://open.bigmodel.cn/api/paas/v4/")
        'https://open.bigmodel.cn/api/paas/v4/chat/completions'
        >>> normalize_base_url("https://api.siliconflow.cn/v1/chat/completions/")
        'https://api.siliconflow.cn/v1/chat/completions'
    """
    url = base_url.strip().rstrip("/")
    while url.endswith(COMPLETIONS_SUFFIX + COMPLETIONS_SUFFIX):
        url = url[: -len(COMPLETIONS_SUFFIX)]
    if not url.endswith(COMPLETIONS_SUFFIX):
        url += COMPLETIONS_SUFFIX
    return url


def parse_error_body(body: str) -> tuple[Optional[str], Optional[str]]:
    """Return ``(code, message)`` from a provider error body, if present."""
    try:
        data = json.loads(body)
    except (json.JSONDecodeError, ValueError):
        return None, None
    if not isinstance(data, dict):
        return None, None

    nested = data.get("error")
    if isinstance(nested, dict):
        code = nested.get("code") or nested.get("type")
        message = nested.get("message")
    else:
        code = data.get("code")
        message = data.get("message") or (nested if isinstance(nested, str) else None)
    return (str(code) if code is not None else None), message


class CompatProvider:
    """Adapter for Chat Completions style HTTP back ends."""

    def __init__(
        self,
        settings: ProviderSettings,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self.settings = settings
        self.url = normalize_base_url(settings.base_url)
        self._transport = transport

    # ── Request building ────────────────────────────────────────────────

    def _user_content(self, request: GenericRequest) -> Any:
        if not request.attachments:
            return request.prompt
        parts: list[dict[str, Any]] = [{"type": "text", "text": request.prompt}]
        for att in request.attachments:
            parts.append({
                "type": "file",
                "file": {
                    "filename": att.filename,
                    "file_data": f"data:{att.mime_type};base64,{att.b64}",
                },
            })
        return parts

    def build_body(self, request: GenericRequest, model: str) -> dict[str, Any]:
        messages = []
        if request.system_instruction:
            messages.append({"role": "system", "content": request.system_instruction})
        messages.append({"role": "user", "content": self._user_content(request)})

        body: dict[str, Any] = {
            "model": model,
            "messages": messages,
            "temperature": request.temperature,
            "max_tokens": max(request.max_tokens, 4096),
            "stream": False,
        }
        if request.json_mode:
            body["response_format"] = {"type": "json_object"}
        if request.enable_search and self.settings.profile.supports_search_tool:
            body["tools"] = [{
                "type": "web_search",
                "web_search": {"enable": True, "search_result": True},
            }]
        return body

    # ── Error handling ──────────────────────────────────────────────────

    def _billing_message(self, model: str, code: Optional[str], detail: str) -> str:
        alternatives = [m for m in self.settings.profile.free_models if m != model]
        hint = (
            f" Switch to a free model such as {', '.join(alternatives)} in Settings."
            if alternatives else " Switch to a free model in Settings."
        )
        return (
            f"Model '{model}' requires a paid account balance "
            f"({self.settings.provider.value} error {code or 402}: {detail}). "
            f"Top up your balance or choose another model.{hint}"
        )

    def translate_status(self, status: int, body: str, model: str) -> ProviderError:
        """Build a human-readable, classified error from a non-2xx response."""
        code, message = parse_error_body(body)
        detail = message or body.strip()[:500] or f"HTTP {status}"
        kind = classify(status, code, detail)

        if kind is ErrorKind.BILLING:
            text = self._billing_message(model, code, detail)
        elif kind is ErrorKind.AUTH:
            text = f"API Error ({status}): authentication failed. Check the API key in Settings. {detail}"
        else:
            text = f"API Error ({status}){f' [{code}]' if code else ''}: {detail}"
        return provider_error(kind, text, status_code=status, code=code)

    # ── Call ────────────────────────────────────────────────────────────

    async def _post(self, body: dict[str, Any]) -> httpx.Response:
        headers = {
            "Authorization": f"Bearer {self.settings.api_key}",
            "Content-Type": "application/json",
        }
        async with httpx.AsyncClient(timeout=DEFAULT_TIMEOUT, transport=self._transport) as client:
            return await client.post(self.url, headers=headers, json=body)

    async def call(
        self,
        request: GenericRequest,
        model_override: Optional[str] = None,
        token: Optional[CancellationToken] = None,
    ) -> GenericResponse:
        token = ensure_token(token)
        model = model_override or self.settings.model
        body = self.build_body(request, model)

        logger.info(
            "%s request model=%s json=%s tools=%s",
            self.settings.provider.value, model, request.json_mode, "tools" in body,
        )
        try:
            response = await token.run(self._post(body))
        except httpx.TransportError as exc:
            raise provider_error(
                ErrorKind.TRANSIENT, f"Network error calling {self.url}: {exc}"
            ) from exc

        if not response.is_success:
            raise self.translate_status(response.status_code, response.text, model)

        try:
            data = response.json()
            text = data["choices"][0]["message"]["content"] or ""
        except (ValueError, KeyError, IndexError, TypeError) as exc:
            raise ProviderError(
                f"Malformed response from {self.settings.provider.value}: {response.text[:200]}",
                status_code=response.status_code,
            ) from exc

        sources: list[SourceRef] = []
        if "tools" in body:
            for item in data.get("web_search") or []:
                link = item.get("link") or item.get("url")
                if link:
                    sources.append(SourceRef(uri=link, title=item.get("title") or link))

        return GenericResponse(text=text.strip(), sources=sources)
