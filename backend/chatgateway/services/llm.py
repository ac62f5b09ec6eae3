"""Provider-agnostic chat-completion client.

Streams completions from OpenAI- or Anthropic-compatible endpoints and
normalises both wire formats into one event sequence: zero or more
``ContentDelta`` events, then exactly one ``Completed`` or ``Failed``.
"""

import asyncio
import json as json_mod
import logging
from collections.abc import AsyncIterator, Awaitable, Callable, Iterable
from contextlib import asynccontextmanager
from enum import Enum

import httpx

from chatgateway.models.events import (
    Completed,
    ContentDelta,
    ErrorKind,
    Failed,
    GatewayError,
    StreamEvent,
)
from chatgateway.models.schemas import (
    ChatMessage,
    ModelInfo,
    ProviderConfig,
    ProviderKind,
    build_models_url,
)
from chatgateway.services.wire_formats import WireFormat, parse_error_message, wire_format_for

logger = logging.getLogger(__name__)

DATA_PREFIX = "data:"
DONE_MARKER = "[DONE]"

DEFAULT_TIMEOUT = httpx.Timeout(120.0, connect=10.0)
MODELS_TIMEOUT = 30.0

Emit = Callable[[StreamEvent], None]


# ---------------------------------------------------------------------------
# Stream decoding
# ---------------------------------------------------------------------------

class DecoderState(str, Enum):
    AWAITING_HEADERS = "awaiting_headers"
    STREAMING = "streaming"
    TERMINATED = "terminated"


class StreamDecoder:
    """Turns raw response bytes into stream events.

    Driven by three calls: ``start`` once the status line is known, ``feed``
    for every chunk of body bytes, and ``finish`` when the transport is done.
    Chunks may split lines anywhere; only complete lines are decoded. Once
    ``finish`` has produced the terminal event every further call is a no-op.
    """

    def __init__(self, wire_format: WireFormat):
        self._wire_format = wire_format
        self._buffer = bytearray()
        self._error_body = bytearray()
        self._bytes_received = 0
        self.status_code: int | None = None
        self.state = DecoderState.AWAITING_HEADERS

    @property
    def _status_ok(self) -> bool:
        return self.status_code is None or 200 <= self.status_code < 300

    def start(self, status_code: int) -> None:
        if self.state == DecoderState.AWAITING_HEADERS:
            self.status_code = status_code
            self.state = DecoderState.STREAMING

    def feed(self, chunk: bytes) -> list[StreamEvent]:
        if self.state == DecoderState.TERMINATED or not chunk:
            return []
        self.state = DecoderState.STREAMING
        self._bytes_received += len(chunk)

        # Error bodies are kept whole for the envelope lookup in finish()
        if not self._status_ok:
            self._error_body.extend(chunk)
            return []

        self._buffer.extend(chunk)
        events: list[StreamEvent] = []
        while (newline := self._buffer.find(b"\n")) >= 0:
            line = bytes(self._buffer[:newline])
            del self._buffer[: newline + 1]
            event = self._decode_line(line)
            if event is not None:
                events.append(event)
        return events

    def finish(self, error: BaseException | None = None) -> list[StreamEvent]:
        if self.state == DecoderState.TERMINATED:
            return []

        events: list[StreamEvent] = []
        if error is None and self._status_ok and self._buffer:
            event = self._decode_line(bytes(self._buffer))
            if event is not None:
                events.append(event)

        self.state = DecoderState.TERMINATED
        self._buffer.clear()
        events.extend(self._terminal_events(error))
        return events

    def _terminal_events(self, error: BaseException | None) -> list[StreamEvent]:
        if error is not None:
            return [Failed(ErrorKind.network_error(error))]

        if self._bytes_received == 0:
            return [Failed(ErrorKind.invalid_response())]

        if not self._status_ok:
            try:
                body = json_mod.loads(bytes(self._error_body))
            except ValueError:
                body = None
            message = parse_error_message(body) or f"HTTP {self.status_code}"
            logger.error("Completion stream returned %s: %s", self.status_code, message)
            return [Failed(ErrorKind.api_error(message))]

        return [ContentDelta(""), Completed()]

    def _decode_line(self, raw: bytes) -> ContentDelta | None:
        try:
            line = raw.decode("utf-8").strip()
        except UnicodeDecodeError:
            logger.debug("Skipping undecodable stream line (%d bytes)", len(raw))
            return None

        if not line.startswith(DATA_PREFIX):
            return None
        data_str = line[len(DATA_PREFIX):].strip()
        if not data_str or data_str == DONE_MARKER:
            return None

        try:
            payload = json_mod.loads(data_str)
        except json_mod.JSONDecodeError:
            logger.debug("Failed to parse stream line: %s", data_str[:100])
            return None
        if not isinstance(payload, dict):
            return None

        text = self._wire_format.extract_delta(payload)
        return ContentDelta(text) if text is not None else None


# ---------------------------------------------------------------------------
# Event delivery
# ---------------------------------------------------------------------------

_CANCELLED = object()


class CompletionStream:
    """Async iterator over the events of one completion request.

    The request runs in a background task started on first use. ``cancel``
    may be called at any time: nothing is delivered after it returns, and
    the task is cancelled so the HTTP response is released. ``aclose``
    additionally waits for that release.

    A stream belongs to the event loop it is first used on: iterate and
    close it there. A ``CompletionClient`` built without a shared
    ``http_client`` holds no loop state, so other threads or loops can call
    ``stream`` on it to get streams of their own.
    """

    def __init__(self, producer: Callable[[Emit], Awaitable[None]]):
        self._producer = producer
        self._queue: asyncio.Queue = asyncio.Queue()
        self._task: asyncio.Task | None = None
        self._cancelled = False
        self._terminal_sent = False
        self._done = False

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    def start(self) -> None:
        if self._task is None and not self._cancelled:
            self._task = asyncio.create_task(self._run())

    async def _run(self) -> None:
        try:
            await self._producer(self._emit)
        except asyncio.CancelledError:
            raise
        except Exception:
            logger.exception("Completion request failed unexpectedly")
            self._emit(Failed(ErrorKind.invalid_response()))

    def _emit(self, event: StreamEvent) -> None:
        if self._cancelled or self._terminal_sent:
            return
        if event.is_terminal:
            self._terminal_sent = True
        self._queue.put_nowait(event)

    def cancel(self) -> None:
        if self._cancelled:
            return
        self._cancelled = True
        if self._task is not None and not self._task.done():
            self._task.cancel()
        self._queue.put_nowait(_CANCELLED)

    async def aclose(self) -> None:
        self.cancel()
        if self._task is not None:
            await asyncio.wait([self._task])

    def __aiter__(self) -> "CompletionStream":
        return self

    async def __anext__(self) -> StreamEvent:
        self.start()
        if self._done or self._cancelled:
            raise StopAsyncIteration

        item = await self._queue.get()
        if item is _CANCELLED or self._cancelled:
            self._done = True
            raise StopAsyncIteration

        if item.is_terminal:
            self._done = True
        return item

    async def __aenter__(self) -> "CompletionStream":
        self.start()
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.aclose()

    async def read_text(self) -> str:
        """Consume the stream and return the concatenated text.

        Raises GatewayError if the stream ends with ``Failed``.
        """
        parts: list[str] = []
        async for event in self:
            if isinstance(event, ContentDelta):
                parts.append(event.text)
            elif isinstance(event, Failed):
                raise GatewayError(event.error)
        return "".join(parts)


# ---------------------------------------------------------------------------
# Client
# ---------------------------------------------------------------------------

@asynccontextmanager
async def _open_client(
    http_client: httpx.AsyncClient | None, timeout: httpx.Timeout | float
) -> AsyncIterator[httpx.AsyncClient]:
    """Yield the shared client, or a private one that is closed afterwards."""
    if http_client is not None:
        yield http_client
        return

    client = httpx.AsyncClient(timeout=timeout)
    try:
        yield client
    finally:
        await client.aclose()


class CompletionClient:
    """Issues chat-completion requests for one provider config."""

    def __init__(
        self,
        config: ProviderConfig,
        http_client: httpx.AsyncClient | None = None,
        timeout: httpx.Timeout | float | None = None,
    ):
        self._config = config
        self._wire_format = wire_format_for(config.provider)
        self._http_client = http_client
        self._timeout = timeout if timeout is not None else DEFAULT_TIMEOUT

    @property
    def config(self) -> ProviderConfig:
        return self._config

    def stream(self, messages: Iterable[ChatMessage], stream: bool = True) -> CompletionStream:
        """Start a completion and return its event stream.

        Configuration is checked here rather than at construction: an invalid
        or disabled config yields a single ``Failed(invalid_configuration)``.
        """
        messages = list(messages)
        if not (self._config.is_valid and self._config.enabled):
            return CompletionStream(self._reject)

        if stream:
            return CompletionStream(lambda emit: self._run_streaming(messages, emit))
        return CompletionStream(lambda emit: self._run_single(messages, emit))

    async def complete(self, messages: Iterable[ChatMessage]) -> str:
        """Non-streaming completion. Raises GatewayError on failure."""
        async with self.stream(messages, stream=False) as events:
            return await events.read_text()

    async def _reject(self, emit: Emit) -> None:
        logger.warning(
            "Completion rejected: %s provider is not configured or disabled",
            self._config.provider.value,
        )
        emit(Failed(ErrorKind.invalid_configuration()))

    def _request_parts(self, messages: list[ChatMessage], stream: bool) -> tuple[str, dict, dict]:
        url = self._config.endpoint_url()
        body = self._wire_format.build_request(self._config, messages, stream)
        headers = self._wire_format.auth_headers(self._config)
        return url, body, headers

    async def _run_streaming(self, messages: list[ChatMessage], emit: Emit) -> None:
        url, body, headers = self._request_parts(messages, stream=True)
        decoder = StreamDecoder(self._wire_format)
        error: BaseException | None = None

        logger.debug(
            "Streaming %d messages to %s (%s)",
            len(messages), self._config.model, self._config.provider.value,
        )
        try:
            async with _open_client(self._http_client, self._timeout) as client:
                async with client.stream(
                    "POST", url, json=body, headers=headers, timeout=self._timeout
                ) as response:
                    decoder.start(response.status_code)
                    async for chunk in response.aiter_bytes():
                        for event in decoder.feed(chunk):
                            emit(event)
        except httpx.InvalidURL:
            logger.error("Invalid completion endpoint for %s provider", self._config.provider.value)
            emit(Failed(ErrorKind.invalid_configuration()))
            return
        except httpx.HTTPError as exc:
            logger.warning("Completion stream failed: %s", type(exc).__name__)
            error = exc

        # The response is closed by now on every path, including errors
        for event in decoder.finish(error):
            emit(event)

    async def _run_single(self, messages: list[ChatMessage], emit: Emit) -> None:
        url, body, headers = self._request_parts(messages, stream=False)
        try:
            async with _open_client(self._http_client, self._timeout) as client:
                response = await client.post(url, json=body, headers=headers, timeout=self._timeout)
        except httpx.InvalidURL:
            logger.error("Invalid completion endpoint for %s provider", self._config.provider.value)
            emit(Failed(ErrorKind.invalid_configuration()))
            return
        except httpx.HTTPError as exc:
            logger.warning("Completion request failed: %s", type(exc).__name__)
            emit(Failed(ErrorKind.network_error(exc)))
            return

        for event in _parse_single_response(response, self._wire_format):
            emit(event)


def _parse_single_response(response: httpx.Response, wire_format: WireFormat) -> list[StreamEvent]:
    if not response.content:
        return [Failed(ErrorKind.invalid_response())]

    try:
        body = response.json()
    except ValueError:
        if not response.is_success:
            return [Failed(ErrorKind.api_error(f"HTTP {response.status_code}"))]
        logger.error("Completion response is not JSON")
        return [Failed(ErrorKind.decoding_error())]

    content = wire_format.extract_full_content(body) if isinstance(body, dict) else None
    if content is not None and response.is_success:
        return [ContentDelta(content), Completed()]

    message = parse_error_message(body)
    if message is not None:
        logger.error("Provider returned %s: %s", response.status_code, message)
        return [Failed(ErrorKind.api_error(message))]
    if not response.is_success:
        return [Failed(ErrorKind.api_error(f"HTTP {response.status_code}"))]

    logger.error("Unexpected completion response shape")
    return [Failed(ErrorKind.decoding_error())]


# ---------------------------------------------------------------------------
# Model discovery
# ---------------------------------------------------------------------------

async def fetch_models(
    endpoint: str,
    credential: str,
    provider: ProviderKind,
    http_client: httpx.AsyncClient | None = None,
    timeout: float = MODELS_TIMEOUT,
) -> list[ModelInfo]:
    """List the models an OpenAI-compatible endpoint offers, sorted by id.

    Providers without a listing endpoint return an empty list.
    Raises GatewayError on failure.
    """
    url = build_models_url(endpoint, provider)
    if url is None:
        return []
    if not endpoint.strip():
        raise GatewayError(ErrorKind.invalid_configuration())

    headers = {"Authorization": f"Bearer {credential}"}
    try:
        async with _open_client(http_client, timeout) as client:
            resp = await client.get(url, headers=headers, timeout=timeout)
    except httpx.InvalidURL as exc:
        raise GatewayError(ErrorKind.invalid_configuration()) from exc
    except httpx.HTTPError as exc:
        raise GatewayError(ErrorKind.network_error(exc)) from exc

    if not resp.content:
        raise GatewayError(ErrorKind.invalid_response())

    try:
        data = resp.json()
    except ValueError:
        data = None

    if not resp.is_success:
        message = parse_error_message(data) or f"HTTP {resp.status_code}"
        logger.error("Model listing returned %s: %s", resp.status_code, message)
        raise GatewayError(ErrorKind.api_error(message))

    items = data.get("data") if isinstance(data, dict) else None
    if not isinstance(items, list):
        raise GatewayError(ErrorKind.decoding_error())

    models: list[ModelInfo] = []
    for item in items:
        if not isinstance(item, dict) or not isinstance(item.get("id"), str):
            continue
        owned_by = item.get("owned_by") or ""
        display_name = f"{item['id']} ({owned_by})" if owned_by else item["id"]
        models.append(ModelInfo(id=item["id"], display_name=display_name))

    models.sort(key=lambda m: m.id)
    logger.info("Fetched %d models from %s provider", len(models), provider.value)
    return models
