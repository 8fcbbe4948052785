"""
FastAPI Application - Multi-Exchange Price Sync API

Thin HTTP layer over MarketDataService. The lifespan wires the service,
creates tables, opens adapter sessions and starts the sync engine; routes
only translate HTTP to service calls.

Supported Exchanges:
    - Binance (spot + USD-M perpetual)
    - OKX (spot + USDT swaps)
    - Bybit (spot + linear perpetual)

Usage:
    uvicorn app.main:app --host 0.0.0.0 --port 8000

Docs:
    - Swagger: http://localhost:8000/docs
    - ReDoc: http://localhost:8000/redoc
"""

from contextlib import asynccontextmanager
from typing import List, Optional

from fastapi import FastAPI, HTTPException, Query, Request
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel

from core.config import settings, validate_configuration
from core.exceptions import StoreError
from core.logging import logger
from core.schemas import MarketType, PricePage, SymbolEntity
from core.symbol_normalizer import normalize
from services.market_data import SORT_KEYS, MarketDataService


class FetchFlagUpdate(BaseModel):
    enabled: bool


def get_service(request: Request) -> MarketDataService:
    return request.app.state.service


# ============================================
# Application Factory
# ============================================

def create_app(service: Optional[MarketDataService] = None, start_sync: bool = True) -> FastAPI:
    """
    Build the FastAPI app.

    Args:
        service: Pre-wired service (tests); built from settings otherwise
        start_sync: Start the sync engine during startup
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        logger.info("=== Application Starting ===")
        try:
            if service is None:
                validate_configuration()
                app.state.service = MarketDataService.from_settings(settings)
            else:
                app.state.service = service
            await app.state.service.initialize()
            if start_sync:
                await app.state.service.start_sync()
            logger.info("=== Started Successfully ===")
        except Exception as e:
            logger.error(f"Startup failed: {e}")
            raise

        yield

        logger.info("=== Shutting Down ===")
        try:
            await app.state.service.shutdown()
            logger.info("=== Shutdown Complete ===")
        except Exception as e:
            logger.error(f"Shutdown error: {e}")

    app = FastAPI(
        title="Multi-Exchange Price Sync API",
        description=(
            "Canonical symbols and latest prices/funding rates synchronized from "
            "Binance, OKX and Bybit.\n\n"
            "- `GET /symbols/{market_type}` - Known symbols (filter by search/base/quote)\n"
            "- `GET /prices/{market_type}` - Paginated, sortable price records\n"
            "- `PUT /symbols/{market_type}/{symbol}/fetch` - Enable/disable price polling\n"
            "- `POST /sync/start`, `POST /sync/stop`, `GET /sync/status` - Sync engine control\n"
            "- `GET /health` - Exchange reachability"
        ),
        version="1.0.0",
        lifespan=lifespan,
        docs_url="/docs",
        redoc_url="/redoc",
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins_list,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # ============================================
    # System Endpoints
    # ============================================

    @app.get("/", tags=["System"])
    async def root(request: Request):
        """API information and managed exchanges."""
        return {
            "name": "Multi-Exchange Price Sync API",
            "version": "1.0.0",
            "status": "operational",
            "docs": "/docs",
            "exchanges": get_service(request).manager.list_exchanges(),
        }

    @app.get("/health", tags=["System"])
    async def health_check(request: Request):
        """Health check - tests connectivity to all exchanges."""
        service = get_service(request)
        health = await service.manager.health_check_all()
        return {
            "status": "healthy" if all(health.values()) else "degraded",
            "sync_running": service.scheduler.is_running,
            "exchanges": health,
        }

    # ============================================
    # Market Data Endpoints
    # ============================================

    @app.get("/symbols/{market_type}", response_model=List[SymbolEntity], tags=["Market Data"])
    async def get_symbols(
        request: Request,
        market_type: MarketType,
        search: Optional[str] = Query(None, description="Substring of the canonical symbol"),
        base_asset: Optional[str] = Query(None),
        quote_asset: Optional[str] = Query(None),
    ):
        try:
            return await get_service(request).get_symbols(market_type, search, base_asset, quote_asset)
        except StoreError as e:
            logger.error(f"GET /symbols/{market_type.value} failed: {e}")
            raise HTTPException(status_code=503, detail="Symbol store unavailable")

    @app.get("/prices/{market_type}", response_model=PricePage, tags=["Market Data"])
    async def get_prices(
        request: Request,
        market_type: MarketType,
        page: int = Query(1, ge=1),
        page_size: int = Query(50, ge=1, le=500),
        sort_by: str = Query("symbol", description=f"One of: {', '.join(SORT_KEYS)}"),
        descending: bool = Query(False),
        search: Optional[str] = Query(None),
    ):
        try:
            return await get_service(request).get_prices(
                market_type,
                page=page,
                page_size=page_size,
                sort_by=sort_by,
                descending=descending,
                search=search,
            )
        except ValueError as e:
            raise HTTPException(status_code=400, detail=str(e))
        except StoreError as e:
            logger.error(f"GET /prices/{market_type.value} failed: {e}")
            raise HTTPException(status_code=503, detail="Price store unavailable")

    @app.put("/symbols/{market_type}/{symbol}/fetch", tags=["Admin"])
    async def set_fetch_enabled(request: Request, market_type: MarketType, symbol: str, body: FetchFlagUpdate):
        try:
            await get_service(request).set_fetch_enabled(symbol, market_type, body.enabled)
        except KeyError as e:
            raise HTTPException(status_code=404, detail=str(e).strip("'\""))
        except StoreError as e:
            logger.error(f"PUT fetch flag for {symbol} failed: {e}")
            raise HTTPException(status_code=503, detail="Symbol store unavailable")
        return {"symbol": normalize(symbol), "market_type": market_type.value, "fetch_enabled": body.enabled}

    # ============================================
    # Sync Control Endpoints
    # ============================================

    @app.post("/sync/start", tags=["Sync"])
    async def start_sync(request: Request):
        started = await get_service(request).start_sync()
        return {"started": started, "running": True}

    @app.post("/sync/stop", tags=["Sync"])
    async def stop_sync(request: Request):
        stopped = await get_service(request).stop_sync()
        return {"stopped": stopped, "running": False}

    @app.get("/sync/status", tags=["Sync"])
    async def sync_status(request: Request):
        return get_service(request).status()

    return app


app = create_app()
