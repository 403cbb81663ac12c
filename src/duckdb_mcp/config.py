"""Configuration for duckdb-mcp."""

from pathlib import Path
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field
from pydantic_settings import BaseSettings, SettingsConfigDict

DEFAULT_DATABASE_PATH = "./database/data.duckdb"
DEFAULT_MODEL_ID = "eu.anthropic.claude-3-7-sonnet-20250219-v1:0"


def _get_env_files() -> list[Path]:
    """Get list of .env files to load (current directory only)."""
    cwd_env = Path(".env")
    return [cwd_env] if cwd_env.exists() else []


class BedrockConfig(BaseModel):
    """Explicit configuration for the Bedrock model backend.

    Passed to the component that streams completions; nothing in the
    model path reads process-wide state.
    """

    model_config = ConfigDict(frozen=True, protected_namespaces=())

    model_identifier: str = Field(
        default=DEFAULT_MODEL_ID,
        description="Bedrock model ID or inference profile ARN",
    )
    endpoint: str | None = Field(
        default=None,
        description="Override for the bedrock-runtime endpoint URL",
    )
    region: str = Field(default="eu-north-1", description="AWS region for bedrock-runtime")
    max_tokens: int = Field(default=1000, ge=1, description="Maximum tokens per completion")
    anthropic_version: str = Field(
        default="bedrock-2023-05-31",
        description="Anthropic messages API version tag sent with every request",
    )


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=_get_env_files(),
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # ==========================================================================
    # Database
    # ==========================================================================

    database_path: str = Field(
        default=DEFAULT_DATABASE_PATH,
        description="DuckDB database file (':memory:' for an ephemeral database)",
    )
    default_row_limit: int = Field(
        default=100,
        ge=1,
        description="Row cap used by the agent when calling execute-sql",
    )

    # ==========================================================================
    # MCP server
    # ==========================================================================

    mcp_transport: Literal["stdio", "http"] = Field(
        default="stdio",
        description="MCP transport: 'stdio' for local, 'http' for remote",
    )
    mcp_host: str = Field(default="127.0.0.1", description="Host to bind MCP HTTP server")
    mcp_port: int = Field(default=8000, description="Port for MCP HTTP server")
    mcp_path: str = Field(default="/mcp", description="Path for MCP HTTP endpoint")

    # ==========================================================================
    # Agent
    # ==========================================================================

    agent_server_command: str = Field(
        default="duckdb-mcp",
        description="Command the agent spawns to reach the MCP server over stdio",
    )
    agent_server_args: list[str] = Field(
        default_factory=lambda: ["serve"],
        description="Arguments for agent_server_command",
    )

    # ==========================================================================
    # Bedrock
    # ==========================================================================

    aws_region: str = Field(default="eu-north-1", description="AWS region for Bedrock")
    bedrock_endpoint_url: str = Field(
        default="",
        description="Custom bedrock-runtime endpoint (VPC endpoint, local proxy)",
    )
    bedrock_model_id: str = Field(default=DEFAULT_MODEL_ID, description="Bedrock model ID")
    bedrock_max_tokens: int = Field(default=1000, ge=1, description="Max tokens for SQL generation")
    bedrock_anthropic_version: str = Field(
        default="bedrock-2023-05-31",
        description="anthropic_version tag for Bedrock requests",
    )

    def bedrock_config(self) -> BedrockConfig:
        """Build the explicit model backend configuration from these settings."""
        return BedrockConfig(
            model_identifier=self.bedrock_model_id,
            endpoint=self.bedrock_endpoint_url or None,
            region=self.aws_region,
            max_tokens=self.bedrock_max_tokens,
            anthropic_version=self.bedrock_anthropic_version,
        )


_settings: Settings | None = None


def get_settings() -> Settings:
    """Get cached settings instance."""
    global _settings
    if _settings is None:
        _settings = Settings()
    return _settings


def reset_settings() -> None:
    """Reset cached settings (useful for testing)."""
    global _settings
    _settings = None
