"""
Gateway to the Azure OpenAI chat and embedding deployments
"""
import asyncio
import copy
import json
import logging
from typing import Any, Dict, List, Optional, Protocol

import httpx

from azure.identity import DefaultAzureCredential, get_bearer_token_provider
from openai import APIConnectionError, APIStatusError, AsyncAzureOpenAI, RateLimitError

from app.config import AppSettings

logger = logging.getLogger(__name__)

COGNITIVE_SERVICES_SCOPE = "https://cognitiveservices.azure.com/.default"
REDACTED = "***"


class UpstreamServiceError(Exception):
    """Raised when Azure OpenAI answers with an error or cannot be reached."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.message = message
        self.status_code = status_code


class OpenAIGateway(Protocol):
    """One coroutine per upstream capability; each returns the raw response body."""

    async def complete_chat(self, messages: List[Dict[str, str]]) -> Dict[str, Any]:
        ...

    async def complete_chat_with_data(
        self, messages: List[Dict[str, str]], data_source: Dict[str, Any]
    ) -> Dict[str, Any]:
        ...

    async def embed(self, text: str) -> Dict[str, Any]:
        ...

    async def close(self) -> None:
        ...


def redact_payload(payload: Dict[str, Any]) -> Dict[str, Any]:
    """Copy of an outbound payload with data source keys masked for logging."""
    redacted = copy.deepcopy(payload)
    for source in redacted.get("data_sources", []):
        auth = source.get("parameters", {}).get("authentication", {})
        if "key" in auth:
            auth["key"] = REDACTED
    return redacted


def _upstream_message(error: APIStatusError) -> str:
    body = error.body
    if isinstance(body, dict) and body.get("message"):
        return str(body["message"])
    return error.message


class AzureOpenAIGateway:
    """
    OpenAIGateway backed by the Azure OpenAI Python SDK.

    Chat and embeddings may live on different resources, so each gets its own
    client. API keys are sent in the `api-key` header; with USE_AAD the clients
    fetch Entra ID tokens through DefaultAzureCredential instead.
    """

    def __init__(self, settings: AppSettings, http_client: Optional[httpx.AsyncClient] = None):
        self.settings = settings
        self.http_client = http_client
        self.chat_deployment = settings.openai.deployment
        self.embedding_deployment = settings.embedding.deployment
        self.max_retries = settings.max_retries
        self.retry_base_delay = settings.retry_base_delay

        token_provider = None
        if settings.use_aad:
            self.credential = DefaultAzureCredential()
            token_provider = get_bearer_token_provider(self.credential, COGNITIVE_SERVICES_SCOPE)

        self.chat_client = self._build_client(
            settings.openai.endpoint,
            settings.openai.api_key,
            settings.openai.api_version,
            token_provider,
        )
        self.embedding_client = self._build_client(
            settings.embedding.endpoint,
            settings.embedding.api_key,
            settings.embedding.api_version,
            token_provider,
        )

    def _build_client(self, endpoint: str, api_key: str, api_version: str, token_provider) -> AsyncAzureOpenAI:
        # Retries are handled by _retry_openai_call so the SDK's own are disabled
        kwargs: Dict[str, Any] = {
            "azure_endpoint": endpoint,
            "api_version": api_version,
            "timeout": self.settings.request_timeout,
            "max_retries": 0,
        }
        if self.http_client is not None:
            kwargs["http_client"] = self.http_client
        if api_key:
            kwargs["api_key"] = api_key
        else:
            kwargs["azure_ad_token_provider"] = token_provider
        return AsyncAzureOpenAI(**kwargs)

    async def _retry_openai_call(self, func):
        """Retry OpenAI API calls with exponential backoff for rate limits."""
        for attempt in range(self.max_retries):
            try:
                return await func()
            except RateLimitError as e:
                if attempt == self.max_retries - 1:
                    logger.error(f"Rate limit exceeded after {self.max_retries} attempts: {e}")
                    raise UpstreamServiceError(_upstream_message(e), e.status_code) from e

                delay = self.retry_base_delay * (2 ** attempt)
                logger.warning(f"Rate limit hit (attempt {attempt + 1}/{self.max_retries}), retrying in {delay}s: {e}")
                await asyncio.sleep(delay)
            except APIStatusError as e:
                logger.error(f"Azure OpenAI returned {e.status_code}: {e.message}")
                raise UpstreamServiceError(_upstream_message(e), e.status_code) from e
            except APIConnectionError as e:
                logger.error(f"Azure OpenAI unreachable: {e}")
                raise UpstreamServiceError(str(e)) from e

    def _log_request(self, operation: str, payload: Dict[str, Any]):
        logger.info(f"Calling {operation} on deployment '{self.chat_deployment}'")
        if self.settings.log_payloads:
            logger.debug("Request body: %s", json.dumps(redact_payload(payload), ensure_ascii=False, indent=2))

    async def complete_chat(self, messages: List[Dict[str, str]]) -> Dict[str, Any]:
        payload = {
            "messages": messages,
            "temperature": self.settings.temperature,
            "max_tokens": self.settings.max_tokens,
        }
        self._log_request("chat/completions", payload)
        completion = await self._retry_openai_call(
            lambda: self.chat_client.chat.completions.create(model=self.chat_deployment, **payload)
        )
        return completion.model_dump()

    async def complete_chat_with_data(
        self, messages: List[Dict[str, str]], data_source: Dict[str, Any]
    ) -> Dict[str, Any]:
        payload = {
            "messages": messages,
            "temperature": self.settings.temperature,
            "max_tokens": self.settings.max_tokens,
            "data_sources": [data_source],
        }
        self._log_request("chat/completions with data", payload)
        completion = await self._retry_openai_call(
            lambda: self.chat_client.chat.completions.create(
                model=self.chat_deployment,
                messages=messages,
                temperature=self.settings.temperature,
                max_tokens=self.settings.max_tokens,
                # data_sources is an Azure extension the SDK does not type
                extra_body={"data_sources": [data_source]},
            )
        )
        return completion.model_dump()

    async def embed(self, text: str) -> Dict[str, Any]:
        logger.info(f"Calling embeddings on deployment '{self.embedding_deployment}'")
        response = await self._retry_openai_call(
            lambda: self.embedding_client.embeddings.create(model=self.embedding_deployment, input=text)
        )
        return response.model_dump()

    async def close(self) -> None:
        """Release the connection pools of both SDK clients."""
        await self.chat_client.close()
        await self.embedding_client.close()
