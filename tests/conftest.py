"""Shared fixtures: settings built in-process and a stub gateway, no network."""
from unittest.mock import AsyncMock, MagicMock

import pytest
from fastapi.testclient import TestClient

from app.config import AppSettings
from app.main import create_app

ENV_VARS = [
    "AZURE_OPENAI_ENDPOINT", "AZURE_DEPLOYMENT_NAME", "AZURE_OPENAI_KEY", "AZURE_OPENAI_API_VERSION",
    "AZURE_SEARCH_ENDPOINT", "AZURE_SEARCH_INDEX", "AZURE_SEARCH_KEY",
    "AZURE_EMBEDDING_ENDPOINT", "AZURE_EMBEDDING_DEPLOYMENT", "AZURE_EMBEDDING_KEY",
    "AZURE_EMBEDDING_API_VERSION", "USE_AAD", "LOG_PAYLOADS", "CORS_ORIGINS", "PORT",
    "DEFAULT_SYSTEM_PROMPT", "DEFAULT_DATA_SYSTEM_PROMPT",
]

SETTINGS_KWARGS = {
    "azure_openai_endpoint": "https://contoso-openai.openai.azure.com",
    "azure_deployment_name": "gpt-4o",
    "azure_openai_key": "openai-key",
    "azure_search_endpoint": "https://contoso-search.search.windows.net",
    "azure_search_index": "docs-index",
    "azure_search_key": "search-key",
    "azure_embedding_deployment": "text-embedding-ada-002",
}


def completion(content="Hello!", context=None, usage=None):
    """Raw chat completion body as Azure OpenAI returns it."""
    message = {"role": "assistant", "content": content}
    if context is not None:
        message["context"] = context
    return {
        "id": "chatcmpl-1",
        "object": "chat.completion",
        "choices": [{"index": 0, "finish_reason": "stop", "message": message}],
        "usage": usage or {"prompt_tokens": 12, "completion_tokens": 5, "total_tokens": 17},
    }


def embedding(vector):
    return {"object": "list", "data": [{"object": "embedding", "index": 0, "embedding": vector}]}


@pytest.fixture(autouse=True)
def _clean_env(monkeypatch):
    for name in ENV_VARS:
        monkeypatch.delenv(name, raising=False)


@pytest.fixture()
def make_settings():
    def _make(**overrides):
        return AppSettings(_env_file=None, **{**SETTINGS_KWARGS, **overrides})
    return _make


@pytest.fixture()
def settings(make_settings):
    return make_settings()


@pytest.fixture()
def gateway():
    stub = MagicMock()
    stub.complete_chat = AsyncMock(return_value=completion())
    stub.complete_chat_with_data = AsyncMock(return_value=completion(context={"citations": []}))
    stub.embed = AsyncMock(return_value=embedding([0.1, 0.2, 0.3]))
    stub.close = AsyncMock()
    return stub


@pytest.fixture()
def client(settings, gateway):
    return TestClient(create_app(settings=settings, gateway=gateway))
