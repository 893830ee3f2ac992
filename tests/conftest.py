"""Shared fixtures: in-memory gateway, run config, clean settings."""

import os
from collections.abc import Generator
from datetime import UTC, datetime
from pathlib import Path

import pytest

from cosmos_extract.config.settings import RunConfig, get_settings
from fakes import ALICE, BOB, FakeGateway, seed_two_months

_ENV_PREFIXES: tuple[str, ...] = ("GATEWAY_", "REPORT_", "COSMOS_EXTRACT_")


@pytest.fixture(autouse=True)
def clean_settings(monkeypatch: pytest.MonkeyPatch) -> Generator[None, None, None]:
    for name in list(os.environ):
        if name.startswith(_ENV_PREFIXES):
            monkeypatch.delenv(name, raising=False)
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


@pytest.fixture()
def gateway() -> FakeGateway:
    return FakeGateway()


@pytest.fixture()
def seeded_gateway(gateway: FakeGateway) -> FakeGateway:
    return seed_two_months(gateway)


@pytest.fixture()
def run_config(tmp_path: Path) -> RunConfig:
    return RunConfig(
        accounts=[ALICE, BOB],
        start_time=datetime(2023, 1, 15, tzinfo=UTC),
        end_time=datetime(2023, 2, 10, tzinfo=UTC),
        output_path=tmp_path / "out.csv",
    )
