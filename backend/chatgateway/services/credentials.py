"""Provider config persistence.

The API key lives in a ``SecretStore``; everything else is stored as JSON in
a plain preferences mapping. The key is never written to preferences.
"""

import logging
from collections.abc import MutableMapping
from typing import Protocol

from pydantic import SecretStr, ValidationError

from chatgateway.models.schemas import ProviderConfig

logger = logging.getLogger(__name__)

API_KEY_SECRET = "ai_api_key"
CONFIG_PREFERENCE = "ai_configuration"


class SecretStore(Protocol):
    def get(self, key: str) -> str | None: ...

    def set(self, key: str, value: str) -> None: ...

    def delete(self, key: str) -> None: ...


class InMemorySecretStore:
    """Process-local secret store. Setting an empty value deletes the key."""

    def __init__(self):
        self._values: dict[str, str] = {}

    def get(self, key: str) -> str | None:
        return self._values.get(key)

    def set(self, key: str, value: str) -> None:
        if not value:
            self.delete(key)
            return
        self._values[key] = value

    def delete(self, key: str) -> None:
        self._values.pop(key, None)


class ProviderConfigStore:
    def __init__(self, secrets: SecretStore, preferences: MutableMapping[str, str]):
        self._secrets = secrets
        self._preferences = preferences

    def save(self, config: ProviderConfig) -> None:
        self._secrets.set(API_KEY_SECRET, config.api_key.get_secret_value())
        self._preferences[CONFIG_PREFERENCE] = config.model_dump_json(exclude={"api_key"})
        logger.info("Saved %s provider config", config.provider.value)

    def load(self) -> ProviderConfig:
        """Stored config with its key, or defaults when nothing usable is stored."""
        api_key = SecretStr(self._secrets.get(API_KEY_SECRET) or "")
        raw = self._preferences.get(CONFIG_PREFERENCE)
        if raw is None:
            return ProviderConfig(api_key=api_key)

        try:
            stored = ProviderConfig.model_validate_json(raw)
        except ValidationError:
            logger.warning("Stored provider config is unreadable, using defaults")
            return ProviderConfig(api_key=api_key)

        return stored.model_copy(update={"api_key": api_key})
