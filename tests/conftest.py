"""
Shared pytest fixtures for modelspine tests.

This module provides:
- Settings cache cleanup for test isolation
- A fresh orchestrator per test with its own EngineSettings
- A call recorder for asserting lifecycle ordering

Usage:
    async def test_something(engine, calls):
        engine.define("a", {"load": calls.loader("a")})
        await engine.load("a")
        assert calls.log == ["load:a"]
"""

import asyncio
import os
import sys
from pathlib import Path

import pytest

# Ensure modelspine package is importable
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from modelspine.core.settings import EngineSettings, clear_settings_cache
from modelspine.models import ModelOrchestrator


@pytest.fixture(autouse=True)
def clean_settings(monkeypatch):
    """Isolate tests from the cached settings and MODELSPINE_* variables."""
    for key in list(os.environ):
        if key.startswith("MODELSPINE_"):
            monkeypatch.delenv(key)
    clear_settings_cache()
    yield
    clear_settings_cache()


@pytest.fixture
def settings():
    return EngineSettings(_env_file=None)


@pytest.fixture
def engine(settings):
    return ModelOrchestrator(settings)


class CallRecorder:
    """Builds model callables that append ``"<op>:<model>"`` to ``log``."""

    def __init__(self):
        self.log: list[str] = []

    def loader(self, name, data=None, delay=0.0):
        async def load(target):
            self.log.append(f"load:{name}")
            if delay:
                await asyncio.sleep(delay)
            return data if data is not None else {name: True}

        return load

    def operation(self, op, name, result=True, delay=0.0):
        async def run(target):
            self.log.append(f"{op}:{name}")
            if delay:
                await asyncio.sleep(delay)
            return result

        return run

    def failing(self, op, name, error=None):
        async def run(target):
            self.log.append(f"{op}:{name}")
            raise error or RuntimeError(f"{op} {name} failed")

        return run


@pytest.fixture
def calls():
    return CallRecorder()
