import re
from datetime import datetime
from enum import Enum
from urllib.parse import quote

from pydantic import BaseModel, SecretStr, model_validator


# --- Providers ---

class ProviderKind(str, Enum):
    OPENAI = "openai"
    ANTHROPIC = "anthropic"
    CUSTOM = "custom"

    @property
    def display_name(self) -> str:
        return _PROVIDER_DISPLAY_NAMES[self]

    @property
    def default_endpoint(self) -> str:
        return _PROVIDER_ENDPOINTS[self]

    @property
    def default_model(self) -> str:
        return _PROVIDER_MODELS[self]


_PROVIDER_DISPLAY_NAMES = {
    ProviderKind.OPENAI: "OpenAI",
    ProviderKind.ANTHROPIC: "Claude",
    ProviderKind.CUSTOM: "Custom",
}

_PROVIDER_ENDPOINTS = {
    ProviderKind.OPENAI: "https://api.openai.com/v1",
    ProviderKind.ANTHROPIC: "https://api.anthropic.com/v1",
    ProviderKind.CUSTOM: "",
}

_PROVIDER_MODELS = {
    ProviderKind.OPENAI: "gpt-4o-mini",
    ProviderKind.ANTHROPIC: "claude-sonnet-4-5-20250929",
    ProviderKind.CUSTOM: "",
}


class ProviderConfig(BaseModel):
    """Connection settings for one completion provider.

    Empty ``base_url`` / ``model`` fall back to the provider's defaults.
    The API key is a ``SecretStr`` so it stays out of reprs, logs and
    ``model_dump_json`` output.
    """

    provider: ProviderKind = ProviderKind.OPENAI
    api_key: SecretStr = SecretStr("")
    base_url: str = ""
    model: str = ""
    enabled: bool = False

    model_config = {"frozen": True}

    @model_validator(mode="before")
    @classmethod
    def apply_provider_defaults(cls, data):
        if not isinstance(data, dict):
            return data
        data = dict(data)
        provider = ProviderKind(data.get("provider") or ProviderKind.OPENAI)
        if not (data.get("base_url") or "").strip():
            data["base_url"] = provider.default_endpoint
        if not (data.get("model") or "").strip():
            data["model"] = provider.default_model
        return data

    @property
    def is_valid(self) -> bool:
        return bool(
            self.api_key.get_secret_value()
            and self.base_url.strip()
            and self.model.strip()
        )

    def endpoint_url(self) -> str:
        """Completion endpoint: ``{base}/v1/chat/completions`` or ``{base}/v1/messages``."""
        url = self.base_url.strip().removesuffix("/")
        if "/v1" not in url:
            url += "/v1"

        suffix = "/messages" if self.provider == ProviderKind.ANTHROPIC else "/chat/completions"
        if not url.endswith(suffix):
            url += suffix
        return url

    def models_url(self) -> str | None:
        """Model listing endpoint. Anthropic-compatible providers have none."""
        return build_models_url(self.base_url, self.provider)


def build_models_url(base_url: str, provider: ProviderKind) -> str | None:
    if provider == ProviderKind.ANTHROPIC:
        return None

    url = base_url.strip().removesuffix("/")
    url = url.removesuffix("/chat/completions")
    if "/v1" not in url:
        url += "/v1"
    return url + "/models"


class ModelInfo(BaseModel):
    id: str
    display_name: str


# --- Chat ---

class Role(str, Enum):
    SYSTEM = "system"
    USER = "user"
    ASSISTANT = "assistant"


class ChatMessage(BaseModel):
    role: Role
    content: str

    model_config = {"frozen": True}


class HistoryMessage(BaseModel):
    """One message handed over by the chat-history source."""

    message_id: int
    author: str
    timestamp: datetime
    text: str


# --- Budget ---

class BudgetDecision(BaseModel):
    allowed_count: int
    truncated: bool
    reason: str | None = None

    model_config = {"frozen": True}


# --- Token info ---

_BASE58_RE = re.compile(r"^[1-9A-HJ-NP-Za-km-z]{32,44}$")


def detect_chain_type(address: str) -> str | None:
    """Guess the address family: ``"evm"``, ``"solana"`` or None."""
    trimmed = address.strip()

    # 0x + 40 hex chars
    if trimmed.startswith("0x") and len(trimmed) == 42:
        return "evm"

    if _BASE58_RE.match(trimmed):
        return "solana"

    return None


def is_valid_token_address(address: str) -> bool:
    return detect_chain_type(address) is not None


_EXPLORERS = {
    "ethereum": "https://etherscan.io/token/",
    "eth": "https://etherscan.io/token/",
    "bsc": "https://bscscan.com/token/",
    "binance": "https://bscscan.com/token/",
    "solana": "https://solscan.io/token/",
    "arbitrum": "https://arbiscan.io/token/",
    "base": "https://basescan.org/token/",
    "polygon": "https://polygonscan.com/token/",
    "avalanche": "https://snowtrace.io/token/",
    "avax": "https://snowtrace.io/token/",
    "optimism": "https://optimistic.etherscan.io/token/",
    "fantom": "https://ftmscan.com/token/",
    "ftm": "https://ftmscan.com/token/",
    "cronos": "https://cronoscan.com/token/",
}


class TokenInfo(BaseModel):
    address: str
    name: str
    symbol: str
    chain_id: str = "unknown"
    price_usd: str | None = None
    price_change_24h: float | None = None
    volume_24h: float | None = None
    market_cap: float | None = None
    fdv: float | None = None
    image_url: str | None = None
    dex_id: str | None = None
    pair_address: str | None = None

    model_config = {"frozen": True}

    @property
    def explorer_url(self) -> str | None:
        if not is_valid_token_address(self.address):
            return None
        encoded = quote(self.address)
        prefix = _EXPLORERS.get(self.chain_id.lower())
        if prefix is None:
            return f"https://dexscreener.com/{quote(self.chain_id)}/{encoded}"
        return prefix + encoded

    @property
    def dexscreener_url(self) -> str:
        target = self.pair_address or self.address
        return f"https://dexscreener.com/{quote(self.chain_id)}/{quote(target)}"
