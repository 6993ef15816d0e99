"""
Config settings for the Azure OpenAI relay
"""
from functools import lru_cache
from typing import List, Optional
from pydantic import BaseModel, Field, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict
import logging

logger = logging.getLogger(__name__)

DEFAULT_SYSTEM_PROMPT = "You are a helpful assistant."
DEFAULT_DATA_SYSTEM_PROMPT = (
    "You are a helpful assistant that answers based on the data provided."
)


class OpenAISettings(BaseModel):
    """Azure OpenAI chat deployment settings"""
    endpoint: str
    deployment: str
    api_key: str = ""
    api_version: str


class EmbeddingSettings(BaseModel):
    """Azure OpenAI embedding deployment settings"""
    endpoint: str
    deployment: str
    api_key: str = ""
    api_version: str


class SearchSettings(BaseModel):
    """Azure AI Search settings"""
    url: str
    index_name: str
    api_key: str = ""


class AppSettings(BaseSettings):
    """Application settings with environment variable loading capabilities"""

    # Azure OpenAI Settings
    azure_openai_endpoint: str = Field(..., min_length=1, validation_alias="AZURE_OPENAI_ENDPOINT")
    azure_deployment_name: str = Field(..., min_length=1, validation_alias="AZURE_DEPLOYMENT_NAME")
    azure_openai_key: str = Field("", validation_alias="AZURE_OPENAI_KEY")
    azure_openai_api_version: str = Field("2024-02-15-preview", validation_alias="AZURE_OPENAI_API_VERSION")

    # Azure AI Search Settings
    azure_search_endpoint: str = Field(..., min_length=1, validation_alias="AZURE_SEARCH_ENDPOINT")
    azure_search_index: str = Field(..., min_length=1, validation_alias="AZURE_SEARCH_INDEX")
    azure_search_key: str = Field("", validation_alias="AZURE_SEARCH_KEY")

    # Embedding Settings (endpoint and key fall back to the chat resource)
    azure_embedding_endpoint: str = Field("", validation_alias="AZURE_EMBEDDING_ENDPOINT")
    azure_embedding_deployment: str = Field(..., min_length=1, validation_alias="AZURE_EMBEDDING_DEPLOYMENT")
    azure_embedding_key: str = Field("", validation_alias="AZURE_EMBEDDING_KEY")
    azure_embedding_api_version: str = Field("2023-05-15", validation_alias="AZURE_EMBEDDING_API_VERSION")

    # Use Microsoft Entra ID (DefaultAzureCredential) instead of API keys
    use_aad: bool = Field(False, validation_alias="USE_AAD")

    # Request tuning
    temperature: float = Field(0.7, validation_alias="TEMPERATURE")
    max_tokens: int = Field(1000, validation_alias="MAX_TOKENS")
    request_timeout: float = Field(60.0, validation_alias="REQUEST_TIMEOUT")
    max_retries: int = Field(3, ge=1, validation_alias="MAX_RETRIES")
    retry_base_delay: float = Field(1.5, ge=0, validation_alias="RETRY_BASE_DELAY")

    # Prompts
    default_system_prompt: str = Field(DEFAULT_SYSTEM_PROMPT, validation_alias="DEFAULT_SYSTEM_PROMPT")
    default_data_system_prompt: str = Field(DEFAULT_DATA_SYSTEM_PROMPT, validation_alias="DEFAULT_DATA_SYSTEM_PROMPT")

    # Diagnostics
    log_payloads: bool = Field(False, validation_alias="LOG_PAYLOADS")
    applicationinsights_connection_string: Optional[str] = Field(
        None, validation_alias="APPLICATIONINSIGHTS_CONNECTION_STRING"
    )

    # Other
    cors_origins: str = Field("*", validation_alias="CORS_ORIGINS")
    port: int = Field(3000, validation_alias="PORT")

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
        populate_by_name=True,
        str_strip_whitespace=True,
        frozen=True,
    )

    @field_validator("azure_openai_endpoint", "azure_embedding_endpoint", "azure_search_endpoint")
    @classmethod
    def _normalize_endpoint(cls, value: str) -> str:
        # The v1 base URL is accepted; deployment routes hang off the resource root
        value = value.strip().rstrip("/")
        if value.endswith("/openai/v1"):
            value = value[: -len("/openai/v1")]
        return value

    @model_validator(mode="after")
    def _require_keys(self) -> "AppSettings":
        if self.use_aad:
            return self
        missing = []
        if not self.azure_openai_key:
            missing.append("AZURE_OPENAI_KEY")
        if not self.azure_search_key:
            missing.append("AZURE_SEARCH_KEY")
        if missing:
            raise ValueError(f"Missing API keys (set them or USE_AAD=true): {', '.join(missing)}")
        return self

    @property
    def openai(self) -> OpenAISettings:
        """Return chat deployment settings in the format used by the gateway"""
        return OpenAISettings(
            endpoint=self.azure_openai_endpoint,
            deployment=self.azure_deployment_name,
            api_key=self.azure_openai_key,
            api_version=self.azure_openai_api_version,
        )

    @property
    def embedding(self) -> EmbeddingSettings:
        """Embedding deployment settings, defaulting to the chat resource"""
        return EmbeddingSettings(
            endpoint=self.azure_embedding_endpoint or self.azure_openai_endpoint,
            deployment=self.azure_embedding_deployment,
            api_key=self.azure_embedding_key or self.azure_openai_key,
            api_version=self.azure_embedding_api_version,
        )

    @property
    def search(self) -> SearchSettings:
        """Search index the chat deployment grounds on"""
        return SearchSettings(
            url=self.azure_search_endpoint,
            index_name=self.azure_search_index,
            api_key=self.azure_search_key,
        )

    @property
    def allowed_origins(self) -> List[str]:
        return [origin.strip() for origin in self.cors_origins.split(",") if origin.strip()]


@lru_cache
def get_settings() -> AppSettings:
    """Load settings once; raises pydantic.ValidationError if required values are absent."""
    return AppSettings()
