"""
Chat Service relaying conversations to Azure OpenAI, optionally grounded on Azure AI Search
"""
import json
import logging
import uuid
from typing import Any, Dict, List, Optional

from app.config import AppSettings
from app.models.chat_models import (
    BaseChatRequest,
    BaseChatResponse,
    ChatMessage,
    ChatRequest,
    ChatResponse,
    QueryType,
    Usage,
)
from app.services.openai_gateway import OpenAIGateway, UpstreamServiceError

logger = logging.getLogger(__name__)

# Fixed retrieval knobs for the azure_search data source
STRICTNESS = 3
TOP_N_DOCUMENTS = 5


def build_messages(system_prompt: str, history: List[ChatMessage]) -> List[Dict[str, str]]:
    """Prepend the system prompt to the conversation, keeping its order."""
    messages = [{"role": "system", "content": system_prompt}]
    messages.extend({"role": m.role, "content": m.content} for m in history)
    return messages


def build_data_source(settings: AppSettings, query_type: QueryType, role_information: str) -> Dict[str, Any]:
    """
    Build the azure_search data source descriptor for chat completions with data.

    The model host queries the index itself, vectorizing the query through the
    embedding deployment named in embedding_dependency.
    """
    search = settings.search
    if search.api_key:
        authentication = {"type": "api_key", "key": search.api_key}
    else:
        authentication = {"type": "system_assigned_managed_identity"}

    return {
        "type": "azure_search",
        "parameters": {
            "endpoint": search.url,
            "index_name": search.index_name,
            "authentication": authentication,
            "embedding_dependency": {
                "type": "deployment_name",
                "deployment_name": settings.embedding.deployment,
            },
            "query_type": query_type,
            "in_scope": True,
            "role_information": role_information,
            "strictness": STRICTNESS,
            "top_n_documents": TOP_N_DOCUMENTS,
        },
    }


def _first_message(data: Dict[str, Any]) -> Dict[str, Any]:
    choices = data.get("choices") or []
    if not choices or not choices[0].get("message"):
        raise UpstreamServiceError(f"Malformed completion response: {json.dumps(data, default=str)[:500]}")
    return choices[0]["message"]


def _usage(data: Dict[str, Any]) -> Optional[Usage]:
    usage = data.get("usage")
    return Usage(**usage) if usage else None


class ChatService:
    """
    Service that forwards chat conversations to the configured Azure OpenAI deployment.
    """

    def __init__(self, settings: AppSettings, gateway: OpenAIGateway):
        self.settings = settings
        self.gateway = gateway

    def emit(self, event: str, payload: dict):
        logger.info(json.dumps({"event": event, **payload}, ensure_ascii=False))

    async def chat_with_data(self, request: ChatRequest) -> ChatResponse:
        """Chat grounded on the search index; returns the answer with its citations."""
        system_prompt = request.system_prompt or self.settings.default_data_system_prompt
        messages = build_messages(system_prompt, request.messages)
        data_source = build_data_source(self.settings, request.query_type, system_prompt)

        data = await self.gateway.complete_chat_with_data(messages, data_source)

        message = _first_message(data)
        citations = (message.get("context") or {}).get("citations") or []
        usage = _usage(data)
        logger.info(f"Grounded completion returned {len(citations)} citations")

        self.emit("chat_with_data", {
            "turn_id": str(uuid.uuid4()),
            "deployment": self.settings.openai.deployment,
            "index_name": self.settings.search.index_name,
            "query_type": request.query_type,
            "citations": len(citations),
            "usage": usage.model_dump() if usage else {},
        })

        return ChatResponse(message=message.get("content"), citations=citations, usage=usage)

    async def chat(self, request: BaseChatRequest) -> BaseChatResponse:
        """Plain chat without retrieval."""
        system_prompt = request.system_prompt or self.settings.default_system_prompt
        messages = build_messages(system_prompt, request.messages)

        data = await self.gateway.complete_chat(messages)

        message = _first_message(data)
        usage = _usage(data)

        self.emit("chat", {
            "turn_id": str(uuid.uuid4()),
            "deployment": self.settings.openai.deployment,
            "usage": usage.model_dump() if usage else {},
        })

        return BaseChatResponse(message=message.get("content"), usage=usage)
