"""
FastAPI Application Package

HTTP entry point of the price sync service. Routes delegate to
services.market_data.MarketDataService; no business logic lives here.
"""
