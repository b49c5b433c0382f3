"""
Native provider adapter: Anthropic Messages API with server-side web search.

Flow
────
1. build the message content (text prompt, optional base64 PDF documents)
2. attach the ``web_search`` server tool only when search is enabled
3. call ``messages.create`` through the caller's cancellation token
4. concatenate the text blocks and collect sources from
   ``web_search_tool_result`` blocks and inline citations

Retries are disabled in the SDK client; :mod:`insight.retry` owns them.
"""

from __future__ import annotations

import logging
from typing import Any, Optional

import anthropic

from config.settings import ProviderSettings
from insight.cancellation import CancellationToken, ensure_token
from insight.errors import ErrorKind, ProviderError, classify, provider_error
from insight.models import GenericRequest, GenericResponse, SourceRef

logger = logging.getLogger(__name__)

WEB_SEARCH_TOOL = {"type": "web_search_20250305", "name": "web_search", "max_uses": 5}

JSON_DIRECTIVE = (
    "\n\nRespond with a single valid JSON object only. "
    "No markdown fences, no commentary before or after it."
)


def _error_details(exc: anthropic.APIStatusError) -> tuple[Optional[str], str]:
    """Return ``(error type, message)`` from an Anthropic error body."""
    body = getattr(exc, "body", None)
    if isinstance(body, dict):
        err = body.get("error") if isinstance(body.get("error"), dict) else body
        return err.get("type"), err.get("message") or str(exc)
    return None, getattr(exc, "message", "") or str(exc)


def translate_error(exc: Exception, model: str) -> ProviderError:
    """Classify an SDK exception into a typed ``ProviderError``."""
    if isinstance(exc, anthropic.APIStatusError):
        code, message = _error_details(exc)
        kind = classify(exc.status_code, code, message)
        return provider_error(
            kind,
            f"Anthropic API error ({exc.status_code}) for model {model}: {message}",
            status_code=exc.status_code,
            code=code,
        )
    if isinstance(exc, anthropic.APIConnectionError):
        return provider_error(ErrorKind.TRANSIENT, f"Connection error talking to Anthropic: {exc}")
    return provider_error(classify(message=str(exc)), str(exc))


def collect_sources(content: list[Any]) -> list[SourceRef]:
    """Pull grounding sources out of response content blocks, in order."""
    sources: list[SourceRef] = []
    seen: set[str] = set()

    def add(url: str, title: str) -> None:
        if url and url not in seen:
            seen.add(url)
            sources.append(SourceRef(uri=url, title=title or url))

    for block in content or []:
        block_type = getattr(block, "type", None)
        if block_type == "web_search_tool_result":
            results = getattr(block, "content", None)
            # On tool failure ``content`` is an error object, not a list.
            if isinstance(results, list):
                for item in results:
                    if getattr(item, "type", None) == "web_search_result":
                        add(getattr(item, "url", "") or "", getattr(item, "title", "") or "")
        elif block_type == "text":
            for citation in getattr(block, "citations", None) or []:
                if getattr(citation, "type", None) == "web_search_result_location":
                    add(getattr(citation, "url", "") or "", getattr(citation, "title", "") or "")
    return sources


class AnthropicProvider:
    """Adapter for the native, search-grounded provider.

    The SDK client is lazy-initialised so the adapter can be built (and
    mocked) without a live API key.
    """

    def __init__(self, settings: ProviderSettings, client: object = None) -> None:
        self.settings = settings
        self._client = client

    @property
    def client(self) -> object:
        """Lazy-initialise and return the async Anthropic SDK client."""
        if self._client is None:
            self._client = anthropic.AsyncAnthropic(
                api_key=self.settings.api_key,
                max_retries=0,
            )
        return self._client

    def build_params(self, request: GenericRequest, model: str) -> dict[str, Any]:
        """Translate a generic request into ``messages.create`` kwargs."""
        content: list[dict[str, Any]] = [
            {
                "type": "document",
                "source": {"type": "base64", "media_type": att.mime_type, "data": att.b64},
            }
            for att in request.attachments
        ]
        content.append({"type": "text", "text": request.prompt})

        system = request.system_instruction
        if request.json_mode:
            system = (system or "") + JSON_DIRECTIVE

        params: dict[str, Any] = {
            "model": model,
            "max_tokens": request.max_tokens,
            "temperature": request.temperature,
            "messages": [{"role": "user", "content": content}],
        }
        if system:
            params["system"] = system.strip()
        if request.enable_search:
            params["tools"] = [WEB_SEARCH_TOOL]
        return params

    async def call(
        self,
        request: GenericRequest,
        model_override: Optional[str] = None,
        token: Optional[CancellationToken] = None,
    ) -> GenericResponse:
        token = ensure_token(token)
        model = model_override or self.settings.model
        params = self.build_params(request, model)

        logger.info(
            "Anthropic request model=%s search=%s json=%s",
            model, request.enable_search, request.json_mode,
        )
        try:
            response = await token.run(self.client.messages.create(**params))
        except (anthropic.APIStatusError, anthropic.APIConnectionError) as exc:
            raise translate_error(exc, model) from exc

        content = getattr(response, "content", None) or []
        text = "".join(
            getattr(block, "text", "") or ""
            for block in content
            if getattr(block, "type", None) == "text"
        )
        sources = collect_sources(content) if request.enable_search else []
        logger.info("Anthropic response model=%s chars=%d sources=%d", model, len(text), len(sources))
        return GenericResponse(text=text.strip(), sources=sources)
