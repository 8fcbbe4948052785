"""
Services Package

Long-running orchestration on top of the core:
- sync_scheduler.py: symbol discovery, price refresh and cleanup passes
- market_data.py: facade used by the API layer
"""
