"""Pytest configuration and fixtures."""

import logging

import pytest


@pytest.fixture
def event_loop_policy():
    """Use the default event loop policy for all async tests."""
    import asyncio

    return asyncio.DefaultEventLoopPolicy()


@pytest.fixture(autouse=True)
def exchange_debug_logging(caplog):
    """Capture the engine's debug-level tick summaries in every test."""
    caplog.set_level(logging.DEBUG, logger="app.exchange")
    return caplog
