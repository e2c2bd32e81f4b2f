"""Configuration management using pydantic-settings."""

import warnings
from enum import Enum
from typing import List, Optional

from pydantic import AliasChoices, Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from blog_assistant.utils.errors import ConfigurationError


def _settings_config(env_prefix: str = "") -> SettingsConfigDict:
    """Shared model config for every settings group."""
    return SettingsConfigDict(
        env_prefix=env_prefix,
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
        populate_by_name=True,
    )


class Environment(str, Enum):
    """Application environment."""

    DEVELOPMENT = "development"
    STAGING = "staging"
    PRODUCTION = "production"


class EmbeddingProvider(str, Enum):
    """Supported embedding providers."""

    HUGGINGFACE = "huggingface"
    COHERE = "cohere"
    OPENAI = "openai"


class VectorBackend(str, Enum):
    """Supported vector stores."""

    SUPABASE = "supabase"
    QDRANT = "qdrant"


class StreamFormat(str, Enum):
    """Wire format of the chat response body."""

    TEXT = "text"
    SSE = "sse"


_DEFAULT_EMBEDDING_MODELS = {
    EmbeddingProvider.HUGGINGFACE: "sentence-transformers/all-MiniLM-L6-v2",
    EmbeddingProvider.COHERE: "embed-english-light-v3.0",
    EmbeddingProvider.OPENAI: "text-embedding-3-small",
}


class SanitySettings(BaseSettings):
    """Sanity content lake (blog source) configuration."""

    model_config = _settings_config("SANITY_")

    project_id: Optional[str] = Field(
        default=None,
        description="Sanity project id",
        validation_alias=AliasChoices("SANITY_PROJECT_ID", "NEXT_PUBLIC_SANITY_PROJECT_ID"),
    )
    dataset: str = Field(
        default="production",
        description="Sanity dataset",
        validation_alias=AliasChoices("SANITY_DATASET", "NEXT_PUBLIC_SANITY_DATASET"),
    )
    api_version: str = Field(default="2024-12-24", description="Sanity query API version")
    token: Optional[str] = Field(
        default=None, description="Optional read token (needed for private datasets)"
    )
    use_cdn: bool = Field(default=False, description="Query the API CDN instead of the live API")
    timeout: float = Field(default=15.0, description="Request timeout in seconds")

    @property
    def is_configured(self) -> bool:
        """Check if a project id is available."""
        return bool(self.project_id)


class EmbeddingSettings(BaseSettings):
    """Embedding provider configuration."""

    model_config = _settings_config("EMBEDDING_")

    provider: EmbeddingProvider = Field(
        default=EmbeddingProvider.HUGGINGFACE,
        description="Embedding provider (huggingface, cohere, openai)",
    )
    model_name: Optional[str] = Field(
        default=None, description="Model name override (provider default when empty)"
    )
    dimension: Optional[int] = Field(
        default=None, description="Expected vector dimension (validated when set)"
    )
    timeout: float = Field(default=30.0, description="Request timeout in seconds")

    # HuggingFace Inference
    huggingface_token: Optional[str] = Field(
        default=None, description="HuggingFace API token (optional)", alias="HUGGINGFACE_TOKEN"
    )
    huggingface_url: Optional[str] = Field(
        default=None, description="Feature-extraction endpoint override"
    )

    # Cohere
    cohere_api_key: Optional[str] = Field(
        default=None, description="Cohere API key", alias="COHERE_API_KEY"
    )
    cohere_base_url: str = Field(
        default="https://api.cohere.com", description="Cohere API base URL"
    )

    # OpenAI
    openai_api_key: Optional[str] = Field(
        default=None, description="OpenAI API key", alias="OPENAI_API_KEY"
    )
    openai_base_url: Optional[str] = Field(
        default=None, description="Optional OpenAI-compatible base URL", alias="OPENAI_BASE_URL"
    )

    @field_validator("provider", mode="before")
    @classmethod
    def parse_provider(cls, v):
        """Parse provider from string."""
        if isinstance(v, str):
            return EmbeddingProvider(v.strip().lower())
        return v

    @property
    def resolved_model_name(self) -> str:
        """Model name for the selected provider."""
        return self.model_name or _DEFAULT_EMBEDDING_MODELS[self.provider]

    @property
    def resolved_huggingface_url(self) -> str:
        """Feature-extraction URL for the selected HuggingFace model."""
        if self.huggingface_url:
            return self.huggingface_url
        return (
            "https://router.huggingface.co/hf-inference/models/"
            f"{self.resolved_model_name}/pipeline/feature-extraction"
        )

    @property
    def missing_credentials(self) -> List[str]:
        """Environment variables required by the provider that are not set."""
        if self.provider == EmbeddingProvider.COHERE and not self.cohere_api_key:
            return ["COHERE_API_KEY"]
        if self.provider == EmbeddingProvider.OPENAI and not self.openai_api_key:
            return ["OPENAI_API_KEY"]
        return []

    @property
    def is_configured(self) -> bool:
        """Check if the selected provider has its credentials."""
        return not self.missing_credentials


class SupabaseSettings(BaseSettings):
    """Supabase (PostgREST + pgvector) configuration."""

    model_config = _settings_config("SUPABASE_")

    url: Optional[str] = Field(
        default=None,
        description="Supabase project URL",
        validation_alias=AliasChoices("SUPABASE_URL", "NEXT_PUBLIC_SUPABASE_URL"),
    )
    anon_key: Optional[str] = Field(
        default=None,
        description="Anonymous key (read access for chat)",
        validation_alias=AliasChoices("SUPABASE_ANON_KEY", "NEXT_PUBLIC_SUPABASE_ANON_KEY"),
    )
    service_role_key: Optional[str] = Field(
        default=None, description="Service role key (write access for indexing)"
    )
    table: str = Field(default="blog_embeddings", description="Chunk table name")
    match_function: str = Field(
        default="match_blog_embeddings", description="Similarity search RPC name"
    )
    timeout: float = Field(default=15.0, description="Request timeout in seconds")


class QdrantSettings(BaseSettings):
    """Qdrant vector database configuration."""

    model_config = _settings_config("QDRANT_")

    url: Optional[str] = Field(default=None, description="Qdrant connection URL")
    api_key: Optional[str] = Field(default=None, description="Qdrant API key (for Qdrant Cloud)")
    collection: str = Field(default="blog_embeddings", description="Collection name")
    timeout: int = Field(default=30, description="Request timeout in seconds")


class RetrievalSettings(BaseSettings):
    """Vector search configuration."""

    model_config = _settings_config("RETRIEVAL_")

    backend: VectorBackend = Field(
        default=VectorBackend.SUPABASE,
        description="Vector store backend (supabase, qdrant)",
        alias="VECTOR_STORE_BACKEND",
    )
    match_threshold: float = Field(
        default=0.3, ge=0.0, le=1.0, description="Minimum similarity for a match"
    )
    match_count: int = Field(default=5, ge=1, description="Maximum number of matches")

    @field_validator("backend", mode="before")
    @classmethod
    def parse_backend(cls, v):
        """Parse backend from string."""
        if isinstance(v, str):
            return VectorBackend(v.strip().lower())
        return v


class GroqSettings(BaseSettings):
    """Completion model configuration (Groq through LiteLLM)."""

    model_config = _settings_config("GROQ_")

    api_key: Optional[str] = Field(default=None, description="Groq API key")
    model: str = Field(
        default="groq/llama-3.3-70b-versatile", description="Model name (LiteLLM format)"
    )
    temperature: float = Field(default=0.7, ge=0.0, le=2.0, description="Sampling temperature")
    max_tokens: int = Field(default=1024, ge=1, description="Maximum output tokens")
    top_p: float = Field(default=1.0, gt=0.0, le=1.0, description="Nucleus sampling parameter")
    timeout: float = Field(default=60.0, description="Request timeout in seconds")

    @property
    def has_groq(self) -> bool:
        """Check if Groq is configured."""
        return bool(self.api_key)


class ChunkingSettings(BaseSettings):
    """Chunking configuration."""

    model_config = _settings_config("CHUNK_")

    max_length: int = Field(default=500, ge=1, description="Maximum chunk length in characters")
    min_length: int = Field(
        default=50, ge=0, description="Chunks at or below this trimmed length are dropped"
    )


class IndexingSettings(BaseSettings):
    """Offline indexing job configuration."""

    model_config = _settings_config("INDEXING_")

    request_delay: float = Field(
        default=1.0, ge=0.0, description="Pause between consecutive embedding calls (seconds)"
    )
    rate_limit_delay: float = Field(
        default=60.0, ge=0.0, description="Pause after a rate-limited embedding call (seconds)"
    )
    min_content_length: int = Field(
        default=100, ge=0, description="Documents with shorter plain text are skipped"
    )
    replace_existing: bool = Field(
        default=True, description="Delete a document's existing rows before rewriting them"
    )


class PromptSettings(BaseSettings):
    """System prompt / persona configuration."""

    model_config = _settings_config("PROMPT_")

    persona_file: Optional[str] = Field(
        default=None,
        description="Path to a persona JSON document (built-in default when empty)",
    )
    blog_base_url: str = Field(
        default="", description="Origin prepended to blog links", alias="BLOG_BASE_URL"
    )
    blog_path_prefix: str = Field(
        default="/blogs", description="Path prefix of blog post pages", alias="BLOG_PATH_PREFIX"
    )


class ChatSettings(BaseSettings):
    """Chat endpoint configuration."""

    model_config = _settings_config("CHAT_")

    max_history_messages: int = Field(
        default=20, ge=1, description="Most recent messages forwarded to the model"
    )
    stream_format: StreamFormat = Field(
        default=StreamFormat.TEXT, description="Response body format (text, sse)"
    )
    include_catalog: bool = Field(
        default=True, description="Include the full blog catalog in the system prompt"
    )

    @field_validator("stream_format", mode="before")
    @classmethod
    def parse_stream_format(cls, v):
        """Parse stream format from string."""
        if isinstance(v, str):
            return StreamFormat(v.strip().lower())
        return v


class ServerSettings(BaseSettings):
    """Server configuration."""

    model_config = _settings_config()

    host: str = Field(default="0.0.0.0", description="Server host", alias="HOST")
    port: int = Field(default=8000, description="HTTP server port", alias="PORT")
    reload: bool = Field(
        default=False, description="Enable auto-reload (development only)", alias="RELOAD"
    )


class CorsSettings(BaseSettings):
    """CORS configuration."""

    model_config = _settings_config("CORS_")

    # Store as strings to avoid JSON parsing issues
    origins_str: str = Field(
        default="http://localhost:3000",
        alias="CORS_ORIGINS",
        description="Allowed CORS origins (comma-separated string)",
    )
    allow_credentials: bool = Field(default=True, description="Allow credentials in CORS")
    allow_methods_str: str = Field(
        default="GET,POST,OPTIONS",
        alias="CORS_ALLOW_METHODS",
        description="Allowed HTTP methods (comma-separated string)",
    )
    allow_headers_str: str = Field(
        default="*",
        alias="CORS_ALLOW_HEADERS",
        description="Allowed HTTP headers (comma-separated string)",
    )
    max_age: int = Field(default=3600, description="CORS preflight cache max age in seconds")

    @property
    def origins(self) -> List[str]:
        """Get CORS origins as a list."""
        return [origin.strip() for origin in self.origins_str.split(",") if origin.strip()]

    @property
    def allow_methods(self) -> List[str]:
        """Get allowed HTTP methods as a list."""
        return [
            method.strip() for method in self.allow_methods_str.split(",") if method.strip()
        ]

    @property
    def allow_headers(self) -> List[str]:
        """Get allowed HTTP headers as a list."""
        return [
            header.strip() for header in self.allow_headers_str.split(",") if header.strip()
        ]


class Settings(BaseSettings):
    """Application settings."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Application settings
    app_name: str = Field(
        default="blog-assistant", description="Application name", alias="APP_NAME"
    )
    environment: Environment = Field(
        default=Environment.DEVELOPMENT,
        description="Application environment",
        alias="ENVIRONMENT",
    )
    debug: bool = Field(default=False, description="Enable debug mode", alias="DEBUG")
    log_level: str = Field(default="INFO", description="Logging level", alias="LOG_LEVEL")

    # Sub-settings
    sanity: SanitySettings = Field(default_factory=SanitySettings)
    embedding: EmbeddingSettings = Field(default_factory=EmbeddingSettings)
    supabase: SupabaseSettings = Field(default_factory=SupabaseSettings)
    qdrant: QdrantSettings = Field(default_factory=QdrantSettings)
    retrieval: RetrievalSettings = Field(default_factory=RetrievalSettings)
    groq: GroqSettings = Field(default_factory=GroqSettings)
    chunking: ChunkingSettings = Field(default_factory=ChunkingSettings)
    indexing: IndexingSettings = Field(default_factory=IndexingSettings)
    prompt: PromptSettings = Field(default_factory=PromptSettings)
    chat: ChatSettings = Field(default_factory=ChatSettings)
    server: ServerSettings = Field(default_factory=ServerSettings)
    cors: CorsSettings = Field(default_factory=CorsSettings)

    @field_validator("environment", mode="before")
    @classmethod
    def parse_environment(cls, v):
        """Parse environment from string."""
        if isinstance(v, str):
            try:
                return Environment(v.lower())
            except ValueError:
                return Environment.DEVELOPMENT
        return v

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        """Validate log level."""
        valid_levels = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]
        if v.upper() not in valid_levels:
            raise ValueError(f"Log level must be one of {valid_levels}")
        return v.upper()

    @property
    def is_production(self) -> bool:
        """Check if running in production environment."""
        return self.environment == Environment.PRODUCTION

    def _missing_vector_store_credentials(self, write_access: bool) -> List[str]:
        if self.retrieval.backend == VectorBackend.QDRANT:
            return [] if self.qdrant.url else ["QDRANT_URL"]

        missing: List[str] = []
        if not self.supabase.url:
            missing.append("SUPABASE_URL")
        if write_access:
            if not self.supabase.service_role_key:
                missing.append("SUPABASE_SERVICE_ROLE_KEY")
        elif not (self.supabase.anon_key or self.supabase.service_role_key):
            missing.append("SUPABASE_ANON_KEY")
        return missing

    def require_chat_credentials(self) -> None:
        """Raise ConfigurationError when the chat path cannot reach its upstreams."""
        missing = list(self.embedding.missing_credentials)
        missing.extend(self._missing_vector_store_credentials(write_access=False))
        if not self.groq.has_groq:
            missing.append("GROQ_API_KEY")
        if missing:
            raise ConfigurationError(
                f"Missing required configuration: {', '.join(missing)}", missing=missing
            )

    def require_indexing_credentials(self) -> None:
        """Raise ConfigurationError when the indexing job cannot run."""
        missing: List[str] = []
        if not self.sanity.is_configured:
            missing.append("SANITY_PROJECT_ID")
        missing.extend(self._missing_vector_store_credentials(write_access=True))
        missing.extend(self.embedding.missing_credentials)
        if missing:
            raise ConfigurationError(
                f"Missing required configuration: {', '.join(missing)}", missing=missing
            )

    def validate_configuration(self) -> None:
        """Warn about configuration that will make the chat endpoint fail."""
        if not self.groq.has_groq:
            warnings.warn(
                "GROQ_API_KEY is not set. Chat requests will fail until it is configured.",
                UserWarning,
            )
        if not self.embedding.is_configured:
            warnings.warn(
                f"Embedding provider '{self.embedding.provider.value}' is missing "
                f"{', '.join(self.embedding.missing_credentials)}.",
                UserWarning,
            )
        if self.chunking.min_length >= self.chunking.max_length:
            warnings.warn(
                "CHUNK_MIN_LENGTH is not below CHUNK_MAX_LENGTH; every chunk will be dropped.",
                UserWarning,
            )

    def validate_production_settings(self) -> None:
        """Validate that production settings are secure."""
        if self.is_production:
            if self.debug:
                raise ValueError("DEBUG must be False in production")

            if "*" in self.cors.origins:
                raise ValueError("CORS_ORIGINS must list explicit origins in production")

            if (
                self.retrieval.backend == VectorBackend.SUPABASE
                and not self.supabase.anon_key
                and self.supabase.service_role_key
            ):
                warnings.warn(
                    "Chat will query Supabase with the service role key; "
                    "set SUPABASE_ANON_KEY for read-only access.",
                    UserWarning,
                )


# Global settings instance
_settings: Optional[Settings] = None


def get_settings() -> Settings:
    """Get the global settings instance."""
    global _settings
    if _settings is None:
        _settings = Settings()
        _settings.validate_configuration()
        try:
            _settings.validate_production_settings()
        except ValueError as e:
            import logging

            logging.error(f"Configuration validation failed: {e}")
            if _settings.is_production:
                raise  # Fail fast in production
    return _settings
