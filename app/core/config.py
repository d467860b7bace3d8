"""Application configuration settings.

This module defines the application-wide settings using Pydantic's BaseSettings.
It allows for loading configurations from environment variables and .env files,
providing type validation and default values.
"""

from pydantic import Field
from pydantic import field_validator
from pydantic_settings import BaseSettings

# Default list of CORS allowed origins
DEFAULT_CORS_ORIGINS = [
    "http://localhost:5000",
    "http://localhost:3000",
    "http://localhost:8000",
    "https://localhost:3000",
    "https://localhost:8000",
    "http://0.0.0.0:5000",
]


class Settings(BaseSettings):
    """Manages application settings, loading them from environment variables or an .env file.

    Attributes:
        openai_api_key: Bearer token for the chat-completion API.
        openai_organization: Optional organization id, sent as the OpenAI-Organization header.
        openai_base_url: Root URL of the chat-completion API.
        model_id: Identifier for the language model to be used.
        max_tokens: Default output token budget when a section template has none.
        temperature: Sampling temperature for section generation.
        analysis_temperature: Sampling temperature for the structured RFP analysis.
        enable_ai_generation: Feature flag; when False every generation/analysis call fails fast.
        progress_expected_chunks: Assumed number of stream chunks used by the progress heuristic.
        min_document_chars: Minimum stripped length of a document accepted for analysis.
        max_prompt_chars: Maximum characters kept from an extracted document before truncation.
        api_key: General API key for securing internal API endpoints.
        cors_allowed_origins: List of allowed origins for CORS.
        LLM_CONNECT_TIMEOUT: LLM client connect timeout in seconds.
        LLM_READ_TIMEOUT: LLM client read timeout in seconds.
    """

    openai_api_key: str | None = Field(default=None)
    openai_organization: str | None = Field(default=None)
    openai_base_url: str = Field(default="https://api.openai.com/v1")
    model_id: str = Field(default="gpt-4")
    max_tokens: int = Field(default=2000, gt=0)
    temperature: float = Field(default=0.7, ge=0.0, le=2.0)
    analysis_temperature: float = Field(default=0.3, ge=0.0, le=2.0)
    enable_ai_generation: bool = Field(default=True)

    progress_expected_chunks: int = Field(default=50, gt=0)
    min_document_chars: int = Field(default=50, ge=1)
    max_prompt_chars: int = Field(default=400_000)

    api_key: str | None = Field(default=None)

    cors_allowed_origins: list[str] = Field(
        default_factory=lambda: list(DEFAULT_CORS_ORIGINS),  # Use a copy of the default list
    )

    LLM_CONNECT_TIMEOUT: float = Field(default=10.0, description="LLM client connect timeout in seconds.")
    LLM_READ_TIMEOUT: float = Field(default=180.0, description="LLM client read timeout in seconds.")

    model_config = {
        "env_file": ".env",
        "protected_namespaces": ("settings_",),
        "env_prefix": "",  # No prefix for environment variables
        "extra": "ignore",  # Ignore extra fields
    }

    @property
    def chat_completions_url(self) -> str:
        return self.openai_base_url.rstrip("/") + "/chat/completions"

    @field_validator("cors_allowed_origins", mode="before")  # type: ignore
    @classmethod
    def assemble_cors_origins(cls, v: str | list[str] | None) -> list[str]:
        """Assembles the list of CORS allowed origins.

        If 'v' is a string, it splits it by commas. If 'v' is already a list,
        it's used directly. Otherwise, returns the default list of origins.

        Args:
            v: The value from the environment or direct assignment.

        Returns:
            A list of strings representing allowed CORS origins.
        """
        if isinstance(v, str) and v:
            return [origin.strip() for origin in v.split(",")]
        elif isinstance(v, list):
            return v
        # Return the default if env var is empty or not a string/list
        return list(DEFAULT_CORS_ORIGINS)


settings = Settings()
