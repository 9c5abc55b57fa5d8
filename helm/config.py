"""Settings via pydantic-settings with HELM_ env prefix.

Anthropic credentials use validation_alias to read the same unprefixed
env vars (ANTHROPIC_API_KEY, ANTHROPIC_AUTH_TOKEN) the official SDKs use.
"""

from pydantic import Field, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

DEFAULT_SYSTEM_PROMPT = (
    "You are an autonomous agent with full control of a Linux desktop host. "
    "You can see the screen through screenshots and act with the mouse, the "
    "keyboard, the shell, a file editor and a browser.\n\n"
    "## Strategy\n"
    "1. Analyse the request.\n"
    "2. Plan the steps needed.\n"
    "3. Execute each step with the tools and check its result.\n"
    "4. If a step fails, try a different approach.\n"
    "5. Confirm completion with a short summary.\n\n"
    "## Rules\n"
    "- Always act with the tools instead of describing how to do something.\n"
    "- For GUI work take a screenshot before clicking to confirm positions.\n"
    "- Warn before running destructive commands.\n"
    "- Be concise."
)


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_prefix="HELM_", env_file=".env")

    log_level: str = "info"

    # Credentials: unprefixed aliases match the Anthropic SDK env vars.
    # Dual auth: auth_token (Bearer) takes precedence over api_key (x-api-key)
    anthropic_api_key: str = Field("", validation_alias="ANTHROPIC_API_KEY")
    anthropic_auth_token: str = Field("", validation_alias="ANTHROPIC_AUTH_TOKEN")

    # LLM
    model: str = "claude-sonnet-4-5-20250514"
    max_tokens: int = 8192
    system_prompt: str = DEFAULT_SYSTEM_PROMPT

    # Direct API settings
    api_base_url: str = "https://api.anthropic.com"
    api_timeout_connect: int = 10  # seconds
    api_timeout_read: int = 120  # seconds

    # Agentic loop
    max_iterations: int = 25  # Model calls per process() call
    history_max_messages: int = 30  # ~10 exchanges incl. tool-result satellites
    max_conversations: int = 100
    tool_result_max_bytes: int = 50_000
    max_images_in_context: int = 3

    # Built-in tools
    workspace_dir: str = "/tmp/helm-workspace"
    bash_timeout_max: int = 300  # seconds

    # Server
    host: str = "0.0.0.0"
    port: int = 8000

    @model_validator(mode="after")
    def _validate_limits(self) -> "Settings":
        if self.max_iterations < 1:
            raise ValueError("max_iterations must be >= 1")
        if self.history_max_messages < 3:
            raise ValueError(
                "history_max_messages must be >= 3 "
                "(one user message plus one tool_use/tool_result pair)"
            )
        if self.tool_result_max_bytes < 256:
            raise ValueError("tool_result_max_bytes must be >= 256")
        return self
