"""
Embedding Service using the Azure OpenAI embedding deployment
"""
import logging

from app.models.chat_models import EmbeddingRequest, EmbeddingResponse
from app.services.openai_gateway import OpenAIGateway, UpstreamServiceError

logger = logging.getLogger(__name__)


class EmbeddingService:
    def __init__(self, gateway: OpenAIGateway):
        self.gateway = gateway

    async def embed(self, request: EmbeddingRequest) -> EmbeddingResponse:
        data = await self.gateway.embed(request.text)

        items = data.get("data") or []
        vector = items[0].get("embedding") if items else None
        if not vector:
            raise UpstreamServiceError("Embedding response did not contain a vector")

        logger.info(f"Embedding generated with {len(vector)} dimensions")
        return EmbeddingResponse(embedding=vector, dimensions=len(vector))
