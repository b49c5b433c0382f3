"""Provider dispatch: settings snapshot, model fallback and retry.

``Dispatcher.dispatch`` is the single entry point the analysis operations
use. It reads the settings once, picks the adapter for the configured
provider, and

* for OpenAI-compatible providers, calls the configured model through the
  retry policy, with no fallback: a wrong custom model should fail loudly;
* for the native provider, walks a fallback chain of model variants,
  moving on only when a model is quota-limited or overloaded.
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Iterable
from typing import Optional, Protocol

from config.settings import ProviderSettings, get_settings
from insight.anthropic_provider import AnthropicProvider
from insight.cancellation import CancellationToken, ensure_token
from insight.compat_provider import CompatProvider
from insight.errors import ConfigurationError, error_kind
from insight.models import FileAttachment, GenericRequest, GenericResponse
from insight.retry import DEFAULT_BASE_DELAY, DEFAULT_MAX_RETRIES, run_with_retry

logger = logging.getLogger(__name__)

#: Known-good native models tried after the configured one.
FALLBACK_MODELS: tuple[str, ...] = ("claude-sonnet-4-5", "claude-haiku-4-5")


class ProviderAdapter(Protocol):
    async def call(
        self,
        request: GenericRequest,
        model_override: Optional[str] = None,
        token: Optional[CancellationToken] = None,
    ) -> GenericResponse: ...


def build_adapter(settings: ProviderSettings) -> ProviderAdapter:
    """Return the adapter for ``settings.provider``."""
    if settings.provider.is_native:
        return AnthropicProvider(settings)
    return CompatProvider(settings)


def fallback_chain(model: str, defaults: Iterable[str] = FALLBACK_MODELS) -> list[str]:
    """Configured model first, then the defaults; order kept, duplicates dropped."""
    chain: list[str] = []
    for candidate in (model, *defaults):
        if candidate and candidate not in chain:
            chain.append(candidate)
    return chain


class Dispatcher:
    """Routes generic requests to the configured provider."""

    def __init__(
        self,
        settings: Optional[ProviderSettings] = None,
        adapter_factory: Callable[[ProviderSettings], ProviderAdapter] = build_adapter,
        max_retries: int = DEFAULT_MAX_RETRIES,
        base_delay: float = DEFAULT_BASE_DELAY,
        fallback_models: Iterable[str] = FALLBACK_MODELS,
    ) -> None:
        """Initialise the dispatcher.

        Args:
            settings: Fixed settings to use. When omitted, the process-wide
                snapshot from :func:`config.settings.get_settings` is read at
                the start of every dispatch.
            adapter_factory: Builds an adapter from a settings snapshot.
            max_retries: Retries per model for transient failures.
            base_delay: First backoff wait in seconds.
            fallback_models: Native models tried after the configured one.
        """
        self._settings = settings
        self.adapter_factory = adapter_factory
        self.max_retries = max_retries
        self.base_delay = base_delay
        self.fallback_models = tuple(fallback_models)

    @property
    def settings(self) -> ProviderSettings:
        return self._settings if self._settings is not None else get_settings()

    def pinned(self) -> Dispatcher:
        """Return a dispatcher fixed to the current settings snapshot.

        Used by operations that fan out into several dispatches, so a
        settings change mid-operation cannot split them across providers.
        """
        return Dispatcher(
            settings=self.settings,
            adapter_factory=self.adapter_factory,
            max_retries=self.max_retries,
            base_delay=self.base_delay,
            fallback_models=self.fallback_models,
        )

    async def dispatch(
        self,
        prompt: str,
        system_instruction: str = "",
        json_mode: bool = False,
        token: Optional[CancellationToken] = None,
        allow_search: bool = True,
        *,
        temperature: float = 0.3,
        max_tokens: int = 4096,
        attachments: Iterable[FileAttachment] = (),
    ) -> GenericResponse:
        """Send one request to the configured provider.

        Raises:
            ConfigurationError: If the settings snapshot has no API key.
            AbortedError: If *token* is signaled at any suspension point.
            ProviderError: The classified provider failure.
        """
        token = ensure_token(token)
        settings = self.settings
        settings.validate()
        token.raise_if_cancelled()

        request = GenericRequest(
            prompt=prompt,
            system_instruction=system_instruction,
            json_mode=json_mode,
            enable_search=settings.enable_search and allow_search,
            temperature=temperature,
            max_tokens=max_tokens,
            attachments=list(attachments),
        )
        adapter = self.adapter_factory(settings)

        if not settings.provider.is_native:
            return await self._call(adapter, request, settings.model, token)

        last_error: Optional[Exception] = None
        for model in fallback_chain(settings.model, self.fallback_models):
            token.raise_if_cancelled()
            try:
                return await self._call(adapter, request, model, token)
            except Exception as exc:
                if not error_kind(exc).triggers_fallback:
                    raise
                logger.warning("Model %s unavailable (%s); trying next fallback", model, exc)
                last_error = exc

        if last_error is None:
            raise ConfigurationError("No model configured. Please set one in Settings.")
        raise last_error

    async def _call(
        self,
        adapter: ProviderAdapter,
        request: GenericRequest,
        model: str,
        token: CancellationToken,
    ) -> GenericResponse:
        return await run_with_retry(
            lambda: adapter.call(request, model_override=model, token=token),
            token,
            max_retries=self.max_retries,
            base_delay=self.base_delay,
        )
