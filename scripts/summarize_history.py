"""Stream a summary of a chat history exported as JSON.

The file holds a list of objects with ``message_id``, ``author``,
``timestamp`` (ISO 8601) and ``text``, oldest first. Provider settings come
from the environment / .env (AI_PROVIDER, AI_API_KEY, AI_MODEL, AI_ENABLED).

Usage (from project root):
    python scripts/summarize_history.py history.json
"""

import asyncio
import logging
import sys
from pathlib import Path

backend_dir = Path(__file__).resolve().parent.parent / "backend"
sys.path.insert(0, str(backend_dir))

from pydantic import TypeAdapter  # noqa: E402

from chatgateway.config import settings  # noqa: E402
from chatgateway.container import Gateway  # noqa: E402
from chatgateway.logging_config import configure_logging  # noqa: E402
from chatgateway.models.events import ContentDelta, Failed  # noqa: E402
from chatgateway.models.schemas import HistoryMessage  # noqa: E402
from chatgateway.services.summary import extract_token_addresses, summarize  # noqa: E402

logger = logging.getLogger(__name__)


class FileHistorySource:
    def __init__(self, path: Path):
        self._path = path

    async def recent_messages(self, conversation_id: str, limit: int) -> list[HistoryMessage]:
        adapter = TypeAdapter(list[HistoryMessage])
        messages = adapter.validate_json(self._path.read_bytes())
        return messages[-limit:]


async def main(path: Path):
    async with Gateway(settings) as gateway:
        client = gateway.completion_client()
        events = await summarize(FileHistorySource(path), path.stem, client, settings)
        if events is None:
            logger.info("History file is empty: %s", path)
            return

        parts: list[str] = []
        async with events:
            async for event in events:
                if isinstance(event, ContentDelta):
                    parts.append(event.text)
                    print(event.text, end="", flush=True)
                elif isinstance(event, Failed):
                    logger.error("Summary failed: %s", event.error.user_message())
                    return
        print()

        addresses = extract_token_addresses("".join(parts))
        if not addresses:
            return
        tokens = await gateway.token_cache.fetch_many(addresses)
        for info in tokens.values():
            print(f"{info.symbol}: {info.dexscreener_url}")


if __name__ == "__main__":
    if len(sys.argv) != 2:
        print(__doc__)
        sys.exit(1)
    configure_logging(settings.log_level)
    asyncio.run(main(Path(sys.argv[1])))
