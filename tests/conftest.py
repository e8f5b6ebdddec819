"""Shared fixtures for the capture, location and alert tests."""

from __future__ import annotations

import pytest

from backend.app.capture.artifacts import ArtifactRegistry
from backend.app.capture.stream_manager import MediaStreamManager

from fakes import GatedPlatform


@pytest.fixture
def anyio_backend():
    return "asyncio"


@pytest.fixture
def platform() -> GatedPlatform:
    return GatedPlatform()


@pytest.fixture
def streams(platform: GatedPlatform) -> MediaStreamManager:
    return MediaStreamManager(platform)


@pytest.fixture
def artifacts() -> ArtifactRegistry:
    return ArtifactRegistry()
