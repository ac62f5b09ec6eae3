"""Resolve token addresses through the DexScreener cache and print what was found.

Usage (from project root):
    python scripts/lookup_tokens.py ADDRESS [ADDRESS ...]
"""

import asyncio
import logging
import sys
from pathlib import Path

backend_dir = Path(__file__).resolve().parent.parent / "backend"
sys.path.insert(0, str(backend_dir))

from chatgateway.config import settings  # noqa: E402
from chatgateway.logging_config import configure_logging  # noqa: E402
from chatgateway.models.schemas import detect_chain_type  # noqa: E402
from chatgateway.services.token_info import TokenInfoCache  # noqa: E402

logger = logging.getLogger(__name__)


async def main(addresses: list[str]):
    cache = TokenInfoCache(
        base_url=settings.market_data_base_url,
        timeout=settings.market_data_timeout_seconds,
    )
    try:
        for address in addresses:
            if detect_chain_type(address) is None:
                logger.warning("Not a recognised token address: %s", address)

        found = await cache.fetch_many(addresses)
    finally:
        await cache.aclose()

    logger.info("Resolved %d/%d tokens (%d network fetches)", len(found), len(addresses), cache.network_fetches)
    for info in found.values():
        price = f"${info.price_usd}" if info.price_usd else "n/a"
        print(f"{info.symbol:<10} {info.name:<30} {info.chain_id:<10} {price}")
        if info.explorer_url:
            print(f"           {info.explorer_url}")


if __name__ == "__main__":
    if len(sys.argv) < 2:
        print(__doc__)
        sys.exit(1)
    configure_logging(settings.log_level)
    asyncio.run(main(sys.argv[1:]))
