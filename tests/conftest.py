"""Shared fixtures for the chatgateway test suite."""

import asyncio
import json
from collections.abc import AsyncIterator, Callable

import httpx
import pytest

from chatgateway.config import Settings
from chatgateway.models.schemas import ProviderConfig, ProviderKind

EVM_ADDRESS = "0x6982508145454Ce325dDbE47a25d4ec3d2311933"
SOLANA_ADDRESS = "So11111111111111111111111111111111111111112"


class RecordingStream(httpx.AsyncByteStream):
    """Response body double that records how often it is closed.

    ``hold`` keeps the stream open after the chunks until the event is set,
    ``error`` is raised after the chunks instead of ending normally.
    """

    def __init__(
        self,
        chunks: list[bytes],
        hold: asyncio.Event | None = None,
        error: Exception | None = None,
    ):
        self.chunks = chunks
        self.hold = hold
        self.error = error
        self.close_count = 0

    async def __aiter__(self) -> AsyncIterator[bytes]:
        for chunk in self.chunks:
            yield chunk
        if self.hold is not None:
            await self.hold.wait()
        if self.error is not None:
            raise self.error

    async def aclose(self) -> None:
        self.close_count += 1


def sse(*payloads: dict | str) -> list[bytes]:
    """One ``data:`` line per payload, each in its own chunk."""
    lines = []
    for payload in payloads:
        data = payload if isinstance(payload, str) else json.dumps(payload)
        lines.append(f"data: {data}\n".encode())
    return lines


def openai_delta(text: str) -> dict:
    return {"choices": [{"delta": {"content": text}}]}


def mock_client(handler: Callable) -> httpx.AsyncClient:
    return httpx.AsyncClient(transport=httpx.MockTransport(handler))


@pytest.fixture
def openai_config() -> ProviderConfig:
    return ProviderConfig(provider=ProviderKind.OPENAI, api_key="sk-test", enabled=True)


@pytest.fixture
def anthropic_config() -> ProviderConfig:
    return ProviderConfig(provider=ProviderKind.ANTHROPIC, api_key="sk-ant-test", enabled=True)


@pytest.fixture
def settings() -> Settings:
    return Settings(_env_file=None, summary_system_prompt="", summary_user_prompt="")


def dexscreener_payload(address: str, **pair_overrides) -> dict:
    pair = {
        "chainId": "ethereum",
        "dexId": "uniswap",
        "pairAddress": "0xa43fe16908251ee70ef74718545e4fe6c5ccec9f",
        "baseToken": {"address": address, "name": "Pepe", "symbol": "PEPE"},
        "priceUsd": "0.00001234",
        "priceChange": {"h24": -3.5},
        "volume": {"h24": "1500000.5"},
        "marketCap": 5_000_000_000,
        "fdv": 5_200_000_000,
        "info": {"imageUrl": "https://cdn.example.com/pepe.png"},
    }
    pair.update(pair_overrides)
    return {"schemaVersion": "1.0.0", "pairs": [pair]}
