"""Pytest fixtures for QuipPix tests."""

import logging
from collections.abc import Callable, Generator
from pathlib import Path

import httpx
import pytest
import structlog

from quippix.client.jobs import JobClient
from quippix.core.models import GenerationParams, GenerationRequest
from quippix.state import InMemoryKeyValueStore, PersistentQueueStore, RecoverySlot


@pytest.fixture(autouse=True)
def reset_logging_state() -> Generator[None, None, None]:
    """Reset logging state before and after each test."""
    import quippix.cli as cli_module

    original_config_path = cli_module._config_path
    original_log_level = cli_module._log_level
    original_log_file = cli_module._log_file
    original_log_format = cli_module._log_format

    cli_module._config_path = None
    cli_module._log_level = "WARNING"
    cli_module._log_file = None
    cli_module._log_format = "console"

    structlog.reset_defaults()

    root_logger = logging.getLogger()
    original_handlers = root_logger.handlers[:]
    for handler in original_handlers:
        root_logger.removeHandler(handler)

    yield

    cli_module._config_path = original_config_path
    cli_module._log_level = original_log_level
    cli_module._log_file = original_log_file
    cli_module._log_format = original_log_format

    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)
    for handler in original_handlers:
        root_logger.addHandler(handler)


class FakeClock:
    """Monotonic clock advanced only by the fake sleep."""

    def __init__(self) -> None:
        self.now = 0.0
        self.sleeps: list[float] = []

    def __call__(self) -> float:
        return self.now

    async def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.now += seconds


@pytest.fixture
def fake_clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def image_file(tmp_path: Path) -> Path:
    """A small placeholder image on disk."""
    path = tmp_path / "selfie.jpg"
    path.write_bytes(b"\xff\xd8\xff\xe0fake-jpeg")
    return path


@pytest.fixture
def params() -> GenerationParams:
    return GenerationParams.model_validate({"styleId": "pixel-art", "sliders": {"intensity": 70}})


@pytest.fixture
def request_for(params: GenerationParams) -> Callable[[Path], GenerationRequest]:
    def _make(path: Path) -> GenerationRequest:
        return GenerationRequest(image_ref=str(path), params=params)

    return _make


@pytest.fixture
def kv_store() -> InMemoryKeyValueStore:
    return InMemoryKeyValueStore()


@pytest.fixture
def queue_store(kv_store: InMemoryKeyValueStore) -> PersistentQueueStore:
    return PersistentQueueStore(kv_store)


@pytest.fixture
def recovery_slot(kv_store: InMemoryKeyValueStore) -> RecoverySlot:
    return RecoverySlot(kv_store)


ClientFactory = Callable[[Callable[[httpx.Request], httpx.Response]], JobClient]


@pytest.fixture
def make_client(fake_clock: FakeClock) -> ClientFactory:
    """Build a JobClient backed by httpx.MockTransport and the fake clock."""

    def _make(handler: Callable[[httpx.Request], httpx.Response]) -> JobClient:
        return JobClient(
            base_url="https://api.test",
            tier="free",
            transport=httpx.MockTransport(handler),
            sleep=fake_clock.sleep,
            clock=fake_clock,
        )

    return _make
