"""Shared pytest fixtures for imagekv tests."""

import shutil
import tempfile
from pathlib import Path
from typing import Any, Callable, Generator

import pytest
from fastapi.testclient import TestClient

from imagekv.api.main import create_app
from imagekv.core.config import ImageKVConfig
from imagekv.core.inference import InferenceRunner
from imagekv.core.pipeline import GenerationPipeline
from imagekv.core.storage import MemoryKeyValueStore

STUB_IMAGE = bytes([1, 2, 3])


class StubRunner(InferenceRunner):
    """Inference runner that returns a canned result and records its calls.

    ``result`` may be a callable, in which case it is called on every run so
    single-use results (generators, file objects) are fresh each time.
    """

    name = "Stub"

    def __init__(self, result: Any = STUB_IMAGE) -> None:
        self.result = result
        self.calls: list[tuple[str, dict]] = []
        self.closed = False

    async def run(self, model: str, params: dict[str, Any]) -> Any:
        self.calls.append((model, params))
        if isinstance(self.result, BaseException):
            raise self.result
        if callable(self.result):
            return self.result()
        return self.result

    async def aclose(self) -> None:
        self.closed = True


class RecordingStore(MemoryKeyValueStore):
    """In-memory store that records every ``put``."""

    name = "Recording"

    def __init__(self, clock: Callable[[], float] | None = None) -> None:
        if clock is None:
            super().__init__()
        else:
            super().__init__(clock=clock)
        self.puts: list[tuple[str, str, int | None]] = []

    async def put(self, key: str, value: str, expiration_seconds: int | None = None) -> None:
        self.puts.append((key, value, expiration_seconds))
        await super().put(key, value, expiration_seconds)


@pytest.fixture
def temp_dir() -> Generator[Path, None, None]:
    """Create a temporary directory for test files.

    Yields:
        Path to temporary directory

    Cleanup:
        Directory is removed after test completes
    """
    temp_path = Path(tempfile.mkdtemp())
    try:
        yield temp_path
    finally:
        shutil.rmtree(temp_path, ignore_errors=True)


@pytest.fixture
def test_config(temp_dir: Path) -> ImageKVConfig:
    """Create a test configuration that ignores any local ``.env`` file.

    Args:
        temp_dir: Temporary directory from fixture

    Returns:
        ImageKVConfig instance for testing
    """
    return ImageKVConfig(
        _env_file=None,
        inference_backend="placeholder",
        store_backend="memory",
        store_path=temp_dir / "images.json",
        allowed_origins=["https://app.example.com"],
    )


@pytest.fixture
def stub_runner() -> StubRunner:
    """Runner returning the bytes ``[1, 2, 3]``."""
    return StubRunner()


@pytest.fixture
def recording_store() -> RecordingStore:
    """Empty in-memory store that records writes."""
    return RecordingStore()


@pytest.fixture
def test_client(
    test_config: ImageKVConfig,
    stub_runner: StubRunner,
    recording_store: RecordingStore,
) -> TestClient:
    """TestClient for an app wired to the stub runner and recording store.

    ``raise_server_exceptions`` is off so responses produced by the
    catch-all error handling are returned to the test instead of raised.
    """
    app = create_app(test_config, runner=stub_runner, store=recording_store)
    return TestClient(app, raise_server_exceptions=False)


@pytest.fixture
def make_pipeline(test_config: ImageKVConfig):
    """Factory for a pipeline wired to a fresh stub runner and recording store.

    Returns:
        Callable ``(result=STUB_IMAGE, store=None, config=None)`` returning
        ``(pipeline, runner, store)``.
    """

    def _make(result: Any = STUB_IMAGE, store: RecordingStore | None = None, config=None):
        runner = StubRunner(result)
        store = store if store is not None else RecordingStore()
        pipeline = GenerationPipeline(config or test_config, runner=runner, store=store)
        return pipeline, runner, store

    return _make
