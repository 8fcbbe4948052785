"""
Test Suite

Structure:
- tests/conftest.py: Fake exchanges, controllable clocks and sleeps, store fixture
- tests/unit/: Tests for individual components (queues, normalizer, store, scheduler, adapters)
- tests/test_end_to_end.py: Full sync cycle and HTTP API over fake exchanges

Uses pytest with pytest-asyncio for testing async functionality. No test
touches the network.
"""
