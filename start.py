#!/usr/bin/env python3
"""
Start script - serves the API with uvicorn, or runs a single sync cycle.

Usage:
    python start.py                  # serve on $PORT (or APP_PORT)
    python start.py --port 9000
    python start.py --once           # discovery + one price pass, then exit
"""
import argparse
import asyncio
import os
import sys
from typing import Any, Dict


def parse_args() -> argparse.Namespace:
    from core.config import settings

    p = argparse.ArgumentParser(description="Multi-exchange price sync service.")
    p.add_argument("--host", default=settings.app_host, help=f"Bind host (default: {settings.app_host})")
    p.add_argument(
        "--port",
        type=int,
        default=int(os.getenv("PORT", settings.app_port)),
        help="Bind port (default: $PORT, then APP_PORT)",
    )
    p.add_argument("--once", action="store_true", help="Run one discovery and price pass, print a summary, exit")
    return p.parse_args()


async def run_once(service) -> Dict[str, Any]:
    """Initialize the service, run one discovery and one price pass, shut down."""
    await service.initialize()
    try:
        discovered = await service.scheduler.run_symbol_discovery()
        refreshed = await service.scheduler.run_price_refresh()
    finally:
        await service.shutdown()
    return {"symbols": discovered, "prices": refreshed}


def main() -> int:
    args = parse_args()

    from core.config import settings, validate_configuration

    try:
        validate_configuration(settings)
    except ValueError as e:
        print(f"Configuration error: {e}", file=sys.stderr)
        return 1

    if args.once:
        from services.market_data import MarketDataService

        summary = asyncio.run(run_once(MarketDataService.from_settings(settings)))
        for market, count in summary["symbols"].items():
            print(f"{market:<10} {count} symbols")
        print("prices     " + ", ".join(f"{k}={v}" for k, v in summary["prices"].items()))
        return 0

    import uvicorn

    uvicorn.run(
        "app.main:app",
        host=args.host,
        port=args.port,
        log_level=settings.log_level.lower()
    )
    return 0


if __name__ == "__main__":
    sys.exit(main())
