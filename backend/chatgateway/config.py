from pydantic import SecretStr, field_validator
from pydantic_settings import BaseSettings

from chatgateway.models.schemas import ProviderKind

SUMMARY_MESSAGE_COUNT_MIN = 100
SUMMARY_MESSAGE_COUNT_MAX = 3000


class Settings(BaseSettings):
    # Completion provider
    ai_provider: ProviderKind = ProviderKind.OPENAI
    ai_api_key: SecretStr = SecretStr("")
    ai_base_url: str = ""
    ai_model: str = ""
    ai_enabled: bool = False

    # Generation can legitimately run long, so the read timeout is generous
    completion_timeout_seconds: float = 120.0
    completion_connect_timeout_seconds: float = 10.0

    # Market data (DexScreener)
    market_data_base_url: str = "https://api.dexscreener.com/latest/dex"
    market_data_timeout_seconds: float = 10.0

    # Summaries
    summary_message_count: int = SUMMARY_MESSAGE_COUNT_MIN
    summary_system_prompt: str = ""
    summary_user_prompt: str = ""

    # Context budgeting
    context_usage_ratio: float = 0.8
    context_window_overrides: dict[str, int] = {}

    log_level: str = "INFO"

    model_config = {"env_file": ".env", "env_file_encoding": "utf-8"}

    @field_validator("summary_message_count")
    @classmethod
    def clamp_message_count(cls, v: int) -> int:
        return min(max(v, SUMMARY_MESSAGE_COUNT_MIN), SUMMARY_MESSAGE_COUNT_MAX)


settings = Settings()
