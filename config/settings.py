"""Provider settings — loaded from environment variables, replaced by the UI.

Usage:
    from config.settings import get_settings, update_settings
    settings = get_settings()
    settings.validate()   # raises ConfigurationError if the API key is missing

Every top-level operation captures ``get_settings()`` once on entry, so a
later ``update_settings()`` only affects calls that start afterwards.
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Optional

from dotenv import load_dotenv

from insight.errors import ConfigurationError


class Provider(str, Enum):
    """LLM back ends the assistant can talk to."""

    ANTHROPIC = "anthropic"        # Native: Messages API + server-side web_search
    SILICONFLOW = "siliconflow"    # Chat Completions compatible
    ZHIPU = "zhipu"                # Chat Completions compatible, inline web_search tool
    OPENAI = "openai"              # Any other Chat Completions endpoint

    @property
    def is_native(self) -> bool:
        return self is Provider.ANTHROPIC


@dataclass(frozen=True)
class ProviderProfile:
    """Static catalog entry for a provider."""

    name: str
    default_base_url: str
    default_model: str
    #: Accepts an inline ``web_search`` tool in the Chat Completions body.
    supports_search_tool: bool = False
    #: Suggested when the configured model needs a paid balance.
    free_models: tuple[str, ...] = ()


PROVIDERS: dict[Provider, ProviderProfile] = {
    Provider.ANTHROPIC: ProviderProfile(
        name="Anthropic Claude (Official)",
        default_base_url="",
        default_model="claude-sonnet-4-5",
    ),
    Provider.SILICONFLOW: ProviderProfile(
        name="SiliconFlow",
        default_base_url="https://api.siliconflow.cn/v1/chat/completions",
        default_model="Pro/zai-org/GLM-4.7",
        free_models=("Qwen/Qwen2.5-7B-Instruct", "THUDM/glm-4-9b-chat"),
    ),
    Provider.ZHIPU: ProviderProfile(
        name="Zhipu AI (GLM)",
        default_base_url="https://open.bigmodel.cn/api/paas/v4/",
        default_model="glm-4-flash",
        supports_search_tool=True,
        free_models=("glm-4-flash", "glm-4-flash-250414"),
    ),
    Provider.OPENAI: ProviderProfile(
        name="OpenAI Compatible (Custom)",
        default_base_url="https://api.openai.com/v1",
        default_model="gpt-4o",
    ),
}


def _env_provider() -> Provider:
    raw = os.environ.get("INSIGHT_PROVIDER", Provider.ANTHROPIC.value).strip().lower()
    try:
        return Provider(raw)
    except ValueError:
        raise ConfigurationError(
            f"Unknown INSIGHT_PROVIDER {raw!r}. "
            f"Expected one of: {', '.join(p.value for p in Provider)}."
        ) from None


def _fallback_api_key(provider: Provider) -> str:
    """Provider-specific key variable, consulted only for the native SDK."""
    if provider.is_native:
        return os.environ.get("ANTHROPIC_API_KEY", "")
    return ""


@dataclass(frozen=True)
class ProviderSettings:
    """Immutable snapshot of the provider configuration.

    Fields left empty in the environment fall back to the provider's
    catalog defaults (see :data:`PROVIDERS`).
    """

    provider: Provider = field(default_factory=_env_provider)
    api_key: str = field(
        default_factory=lambda: os.environ.get("INSIGHT_API_KEY", "")
    )
    base_url: str = field(
        default_factory=lambda: os.environ.get("INSIGHT_BASE_URL", "")
    )
    model: str = field(
        default_factory=lambda: os.environ.get("INSIGHT_MODEL", "")
    )
    enable_search: bool = field(
        default_factory=lambda: os.environ.get("INSIGHT_ENABLE_SEARCH", "1") == "1"
    )

    def __post_init__(self) -> None:
        provider = Provider(self.provider)
        profile = PROVIDERS[provider]
        object.__setattr__(self, "provider", provider)
        if not self.api_key:
            object.__setattr__(self, "api_key", _fallback_api_key(provider))
        if not self.base_url:
            object.__setattr__(self, "base_url", profile.default_base_url)
        if not self.model:
            object.__setattr__(self, "model", profile.default_model)

    @property
    def profile(self) -> ProviderProfile:
        return PROVIDERS[self.provider]

    def validate(self) -> None:
        """Raise ``ConfigurationError`` if the snapshot cannot be dispatched."""
        if not self.api_key:
            raise ConfigurationError(
                "API Key is missing. Please configure it in Settings "
                "(or set INSIGHT_API_KEY)."
            )
        if not self.provider.is_native and not self.base_url:
            raise ConfigurationError(
                f"Base URL is missing for provider {self.provider.value!r}. "
                "Please configure it in Settings (or set INSIGHT_BASE_URL)."
            )

    def with_changes(self, **changes) -> ProviderSettings:
        """Return a copy with *changes* applied.

        Switching ``provider`` without an explicit ``base_url``/``model``
        picks up the new provider's catalog defaults. A key is never carried
        over to a different provider.
        """
        if "provider" in changes:
            if Provider(changes["provider"]) is not self.provider:
                changes.setdefault("api_key", "")
            changes.setdefault("base_url", "")
            changes.setdefault("model", "")
        return replace(self, **changes)


# ── Process-wide snapshot ──────────────────────────────────────────────────

_current: Optional[ProviderSettings] = None


def get_settings() -> ProviderSettings:
    """Return the current settings snapshot, loading ``.env`` on first use."""
    global _current
    if _current is None:
        load_dotenv()
        _current = ProviderSettings()
    return _current


def update_settings(settings: ProviderSettings) -> ProviderSettings:
    """Replace the process-wide snapshot. In-flight calls keep their copy."""
    global _current
    _current = settings
    return settings


def reset_settings() -> None:
    """Forget the current snapshot so the next read reloads from the env."""
    global _current
    _current = None
