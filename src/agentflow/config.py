"""Configuration management for AgentFlow."""

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
        env_parse_none_str="",
    )

    # Database Configuration
    database_url: str = Field(
        default="sqlite:///agentflow.sqlite", description="SQLAlchemy URL of the keyed store"
    )

    # Anthropic Configuration
    anthropic_api_key: str | None = Field(default=None, description="Anthropic API Key")
    anthropic_model: str = Field(default="claude-sonnet-4-5-20250929", description="Claude model")
    anthropic_max_tokens: int = Field(default=4096, description="Max tokens per request")

    # Planning Configuration
    planner_temperature: float = Field(default=0.3, description="Temperature for plan drafting")
    planner_memory_limit: int = Field(
        default=10, description="How many memories are passed to plan drafting"
    )
    planner_memory_min_importance: float = Field(
        default=0.5, description="Importance floor for memories passed to plan drafting"
    )
    planner_knowledge_top_k: int = Field(
        default=3, description="Knowledge base excerpts fetched per knowledge base"
    )
    llm_tool_temperature: float = Field(
        default=0.7, description="Default temperature for the built-in llm tool"
    )

    # Memory Configuration
    step_memory_importance: float = Field(
        default=0.6, description="Importance of the episodic memory written per completed step"
    )
    completion_memory_importance: float = Field(
        default=0.8, description="Importance of the long-term memory written per completed plan"
    )
    memory_tie_band: float = Field(
        default=0.1,
        description="Importance difference under which retrieval falls back to recency",
    )
    memory_consolidation_window_minutes: int = Field(
        default=60, description="Gap between short-term memories that starts a new group"
    )
    memory_consolidation_min_importance: float = Field(
        default=0.7, description="Importance floor for consolidation eligibility"
    )

    # Rules Configuration
    default_rule_priority: int = Field(default=50, description="Priority of rules created without one")

    # Logging Configuration
    log_level: str = Field(default="INFO", description="Logging level")
    log_format: str = Field(default="json", description="Log format: json or console")

    @field_validator("log_format")
    @classmethod
    def validate_log_format(cls, v: str) -> str:
        """Only json and console renderers exist."""
        v = v.lower()
        if v not in ("json", "console"):
            raise ValueError("log_format must be 'json' or 'console'")
        return v

    @field_validator("memory_tie_band")
    @classmethod
    def validate_tie_band(cls, v: float) -> float:
        if v < 0:
            raise ValueError("memory_tie_band must not be negative")
        return v


# Global settings instance
_settings: Settings | None = None


def get_settings() -> Settings:
    """Get or create settings instance."""
    global _settings
    if _settings is None:
        _settings = Settings()
    return _settings


def reset_settings() -> None:
    """Drop the cached settings so the next get_settings() re-reads the environment."""
    global _settings
    _settings = None
