"""Runtime configuration for the NIVEK conversational core."""

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Environment-driven runtime settings."""

    model_config = SettingsConfigDict(env_prefix="NIVEK_", env_file=".env", extra="ignore")

    app_name: str = "nivek-brain"
    log_level: str = "INFO"

    backend_url: str = Field(
        default="ws://localhost:8000/ws",
        description="WebSocket endpoint of the inference backend.",
    )
    backend_reconnect_seconds: float = 2.0

    robot_enabled: bool = False
    robot_host: str = "localhost"
    robot_port: int = 8001
    robot_sync_with_chat: bool = True
    robot_reconnect_seconds: float = 5.0

    fallback_think_seconds: float = Field(
        default=1.5,
        description="Delay before a locally synthesized reply when the backend is unreachable.",
    )

    llm_provider: str = "claude"
    llm_model: str = "claude-sonnet-4-20250514"
    llm_api_key: str = ""
    tts_enabled: bool = True

    audio_output_enabled: bool = True
    speech_language: str = "en-US"

    conversation_store_path: str = "data/conversations.json"
    max_conversations: int = 50


settings = Settings()
