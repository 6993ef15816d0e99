"""
FastAPI relay for Azure OpenAI chat, chat on your data (Azure AI Search) and embeddings
"""
import logging
from contextlib import asynccontextmanager
from typing import Optional

import uvicorn
from dotenv import load_dotenv
from fastapi import Depends, FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import ValidationError
from starlette.exceptions import HTTPException as StarletteHTTPException

from opentelemetry.instrumentation.fastapi import FastAPIInstrumentor
from azure.monitor.opentelemetry import configure_azure_monitor

from app.config import AppSettings, get_settings
from app.models.chat_models import (
    BaseChatRequest,
    BaseChatResponse,
    ChatRequest,
    ChatResponse,
    EmbeddingRequest,
    EmbeddingResponse,
    ErrorResponse,
    ServiceConfig,
    StatusResponse,
)
from app.services.chat_service import ChatService
from app.services.embedding_service import EmbeddingService
from app.services.openai_gateway import AzureOpenAIGateway, OpenAIGateway, UpstreamServiceError

logger = logging.getLogger("app.telemetry")

NOT_FOUND_BODY = {"error": "not found"}

ERROR_RESPONSES = {400: {"model": ErrorResponse}, 500: {"model": ErrorResponse}}

VALIDATION_MESSAGES = {
    "messages": "An array of messages is required",
    "text": "A text value is required",
}


def configure_logging(settings: AppSettings):
    """Console logging, plus Azure Monitor export when a connection string is configured."""
    root_logger = logging.getLogger()
    for h in root_logger.handlers[:]:
        root_logger.removeHandler(h)

    logging.basicConfig(
        level=logging.DEBUG if settings.log_payloads else logging.INFO,
        format="%(asctime)s - %(levelname)s - %(name)s - %(message)s",
        handlers=[logging.StreamHandler()]
    )

    if settings.applicationinsights_connection_string:
        configure_azure_monitor(
            connection_string=settings.applicationinsights_connection_string,
            logger_name="app"
        )
    else:
        logging.warning(
            "APPLICATIONINSIGHTS_CONNECTION_STRING is not set. Logs/traces will NOT be sent to Azure Monitor."
        )


def get_app_settings(request: Request) -> AppSettings:
    return request.app.state.settings


def get_chat_service(request: Request) -> ChatService:
    return ChatService(request.app.state.settings, request.app.state.gateway)


def get_embedding_service(request: Request) -> EmbeddingService:
    return EmbeddingService(request.app.state.gateway)


def _error_response(route: str, e: Exception) -> JSONResponse:
    if isinstance(e, UpstreamServiceError):
        logger.error(f"Upstream error in {route} (status {e.status_code or 'n/a'}): {e.message}")
        details = e.message
    else:
        logger.exception(f"Error in {route}: {e}")
        details = str(e)
    body = ErrorResponse(error="Error processing the request", details=details)
    return JSONResponse(status_code=500, content=body.model_dump())


async def validation_exception_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Report malformed bodies as 400 with a message naming the offending field."""
    errors = exc.errors()
    first = errors[0] if errors else {}
    loc = first.get("loc", ())
    field = loc[1] if len(loc) > 1 else None
    error = VALIDATION_MESSAGES.get(field, "Invalid request body")
    logger.info(f"Rejected request to {request.url.path}: {error}")
    body = ErrorResponse(error=error, details=str(first.get("msg", "")))
    return JSONResponse(status_code=400, content=body.model_dump())


@asynccontextmanager
async def lifespan(app: FastAPI):
    yield
    await app.state.gateway.close()


async def http_exception_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    # Unknown paths and unsupported methods on known paths both read as "not found"
    if exc.status_code in (404, 405):
        return JSONResponse(status_code=404, content=NOT_FOUND_BODY)
    return JSONResponse(status_code=exc.status_code, content={"error": exc.detail})


def create_app(settings: Optional[AppSettings] = None, gateway: Optional[OpenAIGateway] = None) -> FastAPI:
    """
    Build the FastAPI application.

    Settings are loaded from the environment when not given, so a missing
    required variable fails here rather than on the first request.
    """
    if settings is None:
        settings = get_settings()
    if gateway is None:
        gateway = AzureOpenAIGateway(settings)

    app = FastAPI(
        title="Azure OpenAI relay with Azure AI Search",
        description="Forwards chat requests to Azure OpenAI, optionally grounded on an Azure AI Search index.",
        version="1.0.0",
        lifespan=lifespan,
    )
    app.state.settings = settings
    app.state.gateway = gateway

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.allowed_origins,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.add_exception_handler(RequestValidationError, validation_exception_handler)
    app.add_exception_handler(StarletteHTTPException, http_exception_handler)

    FastAPIInstrumentor.instrument_app(app)

    @app.get("/", response_model=StatusResponse)
    async def get_status(settings: AppSettings = Depends(get_app_settings)):
        """
        Echo the deployments and index this relay forwards to
        """
        return StatusResponse(
            message="Azure OpenAI API backend with custom data",
            config=ServiceConfig(
                search_index=settings.search.index_name,
                embedding_model=settings.embedding.deployment,
                chat_model=settings.openai.deployment,
            ),
        )

    @app.post("/api/chat", response_model=ChatResponse, responses=ERROR_RESPONSES)
    async def chat_with_data(
        chat_request: ChatRequest,
        chat_service: ChatService = Depends(get_chat_service),
    ):
        """
        Process a chat completion grounded on the Azure AI Search index

        This endpoint:
        1. Prepends the system prompt to the client's conversation
        2. Attaches the azure_search data source (index + embedding deployment)
        3. Returns the answer with the citations the model grounded it on
        """
        try:
            return await chat_service.chat_with_data(chat_request)
        except Exception as e:
            return _error_response("/api/chat", e)

    @app.post("/api/chat/base", response_model=BaseChatResponse, responses=ERROR_RESPONSES)
    async def chat_base(
        chat_request: BaseChatRequest,
        chat_service: ChatService = Depends(get_chat_service),
    ):
        """
        Process a chat completion against the base model, without retrieval
        """
        try:
            return await chat_service.chat(chat_request)
        except Exception as e:
            return _error_response("/api/chat/base", e)

    @app.post("/api/embeddings", response_model=EmbeddingResponse, responses=ERROR_RESPONSES)
    async def embeddings(
        embedding_request: EmbeddingRequest,
        embedding_service: EmbeddingService = Depends(get_embedding_service),
    ):
        try:
            return await embedding_service.embed(embedding_request)
        except Exception as e:
            return _error_response("/api/embeddings", e)

    @app.get("/api/health")
    async def health_check():
        """
        Health check endpoint
        """
        return {"status": "ok"}

    return app


def production_app() -> FastAPI:
    """
    App factory for servers: configures logging and telemetry, then builds the app.

    Use it as `uvicorn app.main:production_app --factory` or under Gunicorn with
    uvicorn workers; create_app alone leaves logging to the caller.
    """
    settings = get_settings()
    configure_logging(settings)
    logger.info(f"Chat model: {settings.openai.deployment}")
    logger.info(f"Embedding model: {settings.embedding.deployment}")
    logger.info(f"Search index: {settings.search.index_name}")
    return create_app(settings)


def run():
    """Console entry point: validate configuration, then serve with uvicorn."""
    load_dotenv()
    try:
        settings = get_settings()
    except ValidationError as e:
        logging.basicConfig(level=logging.INFO)
        missing = ", ".join(
            str(err["loc"][0]) if err.get("loc") else err["msg"] for err in e.errors()
        )
        logger.error(f"Invalid configuration, refusing to start: {missing}")
        raise SystemExit(1)

    uvicorn.run("app.main:production_app", factory=True, host="0.0.0.0", port=settings.port)


if __name__ == "__main__":
    run()
