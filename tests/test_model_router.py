"""Unit tests for `ModelRouter` provider selection and metadata."""

from __future__ import annotations

import os
from typing import Dict

import pytest
from unittest.mock import patch

from src.tastematch.services.model_router import ModelRouter, ProviderSelection


@pytest.fixture(autouse=True)
def clean_env():
    """Ensure each test starts with a clean slate of credentials."""

    original_env = dict(os.environ)
    for key in [
        "OPENAI_API_KEY",
        "GEMINI_API_KEY",
        "XAI_API_KEY",
        "LOCAL_API_KEY",
        "LOCAL_BASE_URL",
        "LOCAL_MODEL",
        "TASTEMATCH_ENABLE_LOCAL_PROVIDER",
        "TASTEMATCH_MODEL_PROVIDER",
        "TASTEMATCH_FORCE_MODEL_PROVIDER",
    ]:
        os.environ.pop(key, None)
    try:
        yield
    finally:
        os.environ.clear()
        os.environ.update(original_env)


def _with_env(values: Dict[str, str]) -> ModelRouter:
    """Helper to instantiate a router with a patched environment."""

    env = dict(os.environ)
    env.update(values)
    return ModelRouter(env=env)


def test_router_prefers_gemini_for_conversation():
    router = _with_env({"GEMINI_API_KEY": "gemini", "OPENAI_API_KEY": "openai"})
    selection = router.select_provider("conversation")
    assert isinstance(selection, ProviderSelection)
    assert selection.name == "gemini"
    assert selection.model == "gemini-2.5-flash"
    assert selection.api_key_env == "GEMINI_API_KEY"


def test_router_prefers_openai_for_planning():
    router = _with_env({"GEMINI_API_KEY": "gemini", "OPENAI_API_KEY": "openai"})
    selection = router.select_provider("planning")
    assert selection.name == "openai"
    assert selection.model == "gpt-4o-mini"


def test_router_falls_back_when_preferred_missing():
    assert _with_env({"OPENAI_API_KEY": "openai"}).select_provider("conversation").name == "openai"
    assert _with_env({"XAI_API_KEY": "xai"}).select_provider("planning").name == "xai"


def test_unknown_purpose_uses_conversation_policy():
    router = _with_env({"GEMINI_API_KEY": "gemini", "OPENAI_API_KEY": "openai"})
    assert router.select_provider("something_else").name == "gemini"


def test_router_requires_at_least_one_provider():
    router = ModelRouter(env={})
    with pytest.raises(RuntimeError, match="No active model provider available"):
        router.select_provider("conversation")
    assert router.maybe_select_provider("conversation") is None


def test_preferred_provider_moves_to_front():
    router = _with_env({"GEMINI_API_KEY": "g", "OPENAI_API_KEY": "o", "TASTEMATCH_MODEL_PROVIDER": "openai"})
    assert router.select_provider("conversation").name == "openai"


def test_model_override_from_env():
    router = _with_env({"GEMINI_API_KEY": "g", "GEMINI_MODEL": "gemini-2.5-pro"})
    assert router.select_provider("conversation").model == "gemini-2.5-pro"


def test_allowed_providers_filter():
    router = ModelRouter(env={"GEMINI_API_KEY": "g", "OPENAI_API_KEY": "o"}, allowed_providers=["openai"])
    assert router.select_provider("conversation").name == "openai"


def test_local_provider_is_opt_in():
    router = _with_env({})
    with patch("socket.create_connection") as mocked:
        assert router.maybe_select_provider("conversation") is None
        mocked.assert_not_called()


def test_local_provider_when_enabled_and_reachable():
    router = _with_env({"TASTEMATCH_ENABLE_LOCAL_PROVIDER": "1"})
    with patch("socket.create_connection") as mocked:
        mocked.return_value.__enter__.return_value = object()
        selection = router.select_provider("conversation")
    assert selection.name == "local"
    assert selection.requires_api_key is False
    assert selection.default_base_url == "http://127.0.0.1:11434/v1"


def test_local_provider_unreachable():
    router = _with_env({"TASTEMATCH_ENABLE_LOCAL_PROVIDER": "1"})
    with patch("socket.create_connection", side_effect=OSError("refused")):
        assert router.maybe_select_provider("conversation") is None


def test_forced_provider_wins_when_available():
    router = _with_env(
        {
            "GEMINI_API_KEY": "g",
            "XAI_API_KEY": "x",
            "TASTEMATCH_MODEL_PROVIDER": "xai",
            "TASTEMATCH_FORCE_MODEL_PROVIDER": "true",
        }
    )
    assert router.select_provider("planning").name == "xai"


def test_resolve_unknown_provider():
    with pytest.raises(KeyError):
        ModelRouter(env={}).resolve_provider("nope")
