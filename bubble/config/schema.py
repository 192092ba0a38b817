"""Configuration schema using Pydantic."""

from pydantic import BaseModel, Field
from pydantic_settings import BaseSettings


class AgentDefaults(BaseModel):
    """Default orchestrator configuration."""
    model: str = "gemini-2.5-flash"  # Model used when a turn does not pick one
    thinking_mode: str = "fast"  # fast | think | deep | instant
    baseline_model: str = "gemini-2.5-flash"  # Native fallback for every degraded path
    deep_model: str = "gemini-3-pro-preview"  # Used by "deep" intensity unless the user prefers another
    instant_model: str = "meta-llama/llama-3.3-70b-instruct:free"  # Relay model for "instant" mode
    image_model: str | None = None
    max_loops: int = 6
    think_budget: int = 2048
    deep_think_budget: int = 8192
    max_quota_retries: int = 3
    request_timeout: float = 120.0


class AgentsConfig(BaseModel):
    """Agent configuration."""
    defaults: AgentDefaults = Field(default_factory=AgentDefaults)


class ProviderConfig(BaseModel):
    """Native provider configuration."""
    api_key: str = ""
    api_base: str | None = None


class RelayConfig(BaseModel):
    """OpenRouter-compatible relay configuration."""
    api_key: str = ""
    api_base: str = "https://openrouter.ai/api/v1"
    referer: str = "https://bubble.ai"  # Sent as HTTP-Referer
    title: str = "Bubble AI"  # Sent as X-Title


class ProvidersConfig(BaseModel):
    """Configuration for LLM providers."""
    gemini: ProviderConfig = Field(default_factory=ProviderConfig)
    openrouter: RelayConfig = Field(default_factory=RelayConfig)


class MemoryConfig(BaseModel):
    """Which memory categories are injected into the system instruction."""
    categories: list[str] = Field(default_factory=lambda: [
        "inner_personal", "outer_personal", "personal",
        "interests", "preferences", "custom",
        "codebase", "aesthetic", "project",
    ])


class Config(BaseSettings):
    """Root configuration for bubble."""
    agents: AgentsConfig = Field(default_factory=AgentsConfig)
    providers: ProvidersConfig = Field(default_factory=ProvidersConfig)
    memory: MemoryConfig = Field(default_factory=MemoryConfig)
    user_id: str = "local"

    def get_native_api_key(self) -> str | None:
        """Get the native provider API key."""
        return self.providers.gemini.api_key or None

    def get_relay_api_key(self) -> str | None:
        """Get the relay API key, if one is configured."""
        return self.providers.openrouter.api_key or None

    def get_model(self) -> str:
        """Get the default model, falling back to the baseline."""
        defaults = self.agents.defaults
        return (defaults.model or "").strip() or defaults.baseline_model

    class Config:
        env_prefix = "BUBBLE_"
        env_nested_delimiter = "__"
