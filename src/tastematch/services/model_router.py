"""Routing helpers for selecting the conversational model provider.

The router only picks a provider configuration; the responder decides how to
instantiate a client from it. That keeps the policy unit-testable without
importing any SDK.
"""

from __future__ import annotations

import os
import socket
from dataclasses import dataclass
from typing import Dict, Iterable, Optional, Set
from urllib.parse import urlparse


@dataclass(frozen=True)
class ProviderSelection:
    """Returned details about the provider that should handle a task."""

    name: str
    model: str
    api_key_env: Optional[str]
    base_url_env: Optional[str] = None
    default_base_url: Optional[str] = None
    requires_api_key: bool = True


class ModelRouter:
    """Simple policy-based router over OpenAI-compatible providers."""

    PROVIDER_CONFIG: Dict[str, Dict[str, Optional[str] | bool]] = {
        "gemini": {
            "api_key_env": "GEMINI_API_KEY",
            "base_url_env": "GEMINI_BASE_URL",
            "model_env": "GEMINI_MODEL",
            "default_model": "gemini-2.5-flash",
            "default_base_url": "https://generativelanguage.googleapis.com/v1beta/openai/",
        },
        "openai": {
            "api_key_env": "OPENAI_API_KEY",
            "base_url_env": "OPENAI_BASE_URL",
            "model_env": "OPENAI_MODEL",
            "default_model": "gpt-4o-mini",
            "default_base_url": "https://api.openai.com/v1",
        },
        "xai": {
            "api_key_env": "XAI_API_KEY",
            "base_url_env": "XAI_BASE_URL",
            "model_env": "XAI_MODEL",
            "default_model": "grok-2-latest",
            "default_base_url": "https://api.x.ai/v1",
        },
        "local": {
            "api_key_env": "LOCAL_API_KEY",
            "base_url_env": "LOCAL_BASE_URL",
            "model_env": "LOCAL_MODEL",
            "default_model": "llama3.1",
            "default_base_url": "http://127.0.0.1:11434/v1",
            "requires_api_key": False,
        },
    }

    ROUTING_POLICY: Dict[str, tuple[str, ...]] = {
        # Quiz hosting and date planning chat.
        "conversation": ("gemini", "openai", "xai", "local"),
        # Post-decision planning calls remote tools; prefer the stronger tool-callers.
        "planning": ("openai", "gemini", "xai", "local"),
    }

    def __init__(
        self,
        env: Optional[Dict[str, str]] = None,
        allowed_providers: Optional[Iterable[str]] = None,
    ) -> None:
        self._env = env if env is not None else os.environ
        self._allowed: Optional[Set[str]] = set(allowed_providers) if allowed_providers else None
        preferred = (self._env.get("TASTEMATCH_MODEL_PROVIDER") or "").strip().lower()
        force_flag = (self._env.get("TASTEMATCH_FORCE_MODEL_PROVIDER") or "").strip().lower() in ("1", "true", "yes")
        self._forced_provider = preferred if (preferred and force_flag) else None
        self._preferred_provider = preferred if preferred else None

    # ------------------------------------------------------------------
    # Provider resolution helpers
    # ------------------------------------------------------------------
    def _provider_available(self, provider: str) -> bool:
        cfg = self.PROVIDER_CONFIG.get(provider)
        if not cfg:
            return False
        if self._allowed is not None and provider not in self._allowed:
            return False
        if bool(cfg.get("requires_api_key", True)):
            api_key_env = cfg.get("api_key_env")
            return bool(api_key_env and self._env.get(api_key_env))

        # Keyless providers are opt-in and must be reachable.
        enforced = self._forced_provider == provider
        enabled_flag = (self._env.get("TASTEMATCH_ENABLE_LOCAL_PROVIDER") or "").strip() == "1"
        if not (enforced or enabled_flag):
            return False
        base_url_env = cfg.get("base_url_env") or ""
        base_url = self._env.get(base_url_env) or cfg.get("default_base_url") or ""
        parsed = urlparse(str(base_url))
        host = parsed.hostname
        if not host:
            return False
        port = parsed.port or (443 if parsed.scheme == "https" else 80)
        try:
            with socket.create_connection((host, port), timeout=1.5):
                return True
        except OSError:
            return False

    def resolve_provider(self, provider: str) -> ProviderSelection:
        """Selection for a named provider regardless of availability.

        Raises
        ------
        KeyError
            If the provider is unknown.
        """

        cfg = self.PROVIDER_CONFIG[provider]
        model_env = cfg.get("model_env") or ""
        model = self._env.get(str(model_env)) or cfg.get("default_model") or ""
        return ProviderSelection(
            name=provider,
            model=str(model),
            api_key_env=cfg.get("api_key_env"),  # type: ignore[arg-type]
            base_url_env=cfg.get("base_url_env"),  # type: ignore[arg-type]
            default_base_url=cfg.get("default_base_url"),  # type: ignore[arg-type]
            requires_api_key=bool(cfg.get("requires_api_key", True)),
        )

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------
    def select_provider(self, purpose: str) -> ProviderSelection:
        """Return the provider selected for the supplied purpose.

        Raises
        ------
        RuntimeError
            If no providers configured for the requested purpose are
            currently available.
        """

        priority = list(self.ROUTING_POLICY.get(purpose, self.ROUTING_POLICY["conversation"]))
        if self._preferred_provider and self._preferred_provider in self.PROVIDER_CONFIG:
            priority = [self._preferred_provider] + [p for p in priority if p != self._preferred_provider]
        if self._forced_provider and self._provider_available(self._forced_provider):
            return self.resolve_provider(self._forced_provider)
        for provider in priority:
            if self._provider_available(provider):
                return self.resolve_provider(provider)
        raise RuntimeError("No active model provider available for this task.")

    def maybe_select_provider(self, purpose: str) -> Optional[ProviderSelection]:
        """Like :meth:`select_provider` but returns ``None`` on failure."""

        try:
            return self.select_provider(purpose)
        except RuntimeError:
            return None
