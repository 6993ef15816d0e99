"""
Request and response models for the relay API
"""
from typing import Any, Dict, List, Literal, Optional
from pydantic import BaseModel, Field

QueryType = Literal[
    "simple",
    "semantic",
    "vector",
    "vector_simple_hybrid",
    "vector_semantic_hybrid",
]

DEFAULT_QUERY_TYPE: QueryType = "vector_simple_hybrid"


class ChatMessage(BaseModel):
    """
    Base chat message model representing a single message in the conversation

    Compatible with Azure OpenAI's message format, where:
    - role: can be 'system', 'user', or 'assistant'
    - content: contains the actual message text
    """
    role: Literal["system", "user", "assistant"]
    content: str


class BaseChatRequest(BaseModel):
    """Chat request forwarded to the model without retrieval"""
    messages: List[ChatMessage] = Field(..., min_length=1, description="List of chat messages")
    system_prompt: Optional[str] = Field(None, alias="systemPrompt")

    model_config = {"populate_by_name": True}


class ChatRequest(BaseChatRequest):
    """Chat request grounded on the Azure AI Search index"""
    query_type: QueryType = Field(DEFAULT_QUERY_TYPE, alias="queryType")


class EmbeddingRequest(BaseModel):
    text: str = Field(..., min_length=1)


class Usage(BaseModel):
    """Token usage reported by Azure OpenAI; detail breakdowns are passed through as-is"""
    model_config = {"extra": "allow"}

    prompt_tokens: int = 0
    completion_tokens: int = 0
    total_tokens: int = 0


class BaseChatResponse(BaseModel):
    success: bool = True
    message: Optional[str] = None
    usage: Optional[Usage] = None


class ChatResponse(BaseChatResponse):
    citations: List[Dict[str, Any]] = Field(default_factory=list)


class EmbeddingResponse(BaseModel):
    success: bool = True
    embedding: List[float]
    dimensions: int


class ErrorResponse(BaseModel):
    success: bool = False
    error: str
    details: str = ""


class ServiceConfig(BaseModel):
    search_index: str = Field(..., alias="searchIndex")
    embedding_model: str = Field(..., alias="embeddingModel")
    chat_model: str = Field(..., alias="chatModel")

    model_config = {"populate_by_name": True}


class StatusResponse(BaseModel):
    status: str = "ok"
    message: str
    config: ServiceConfig
