"""Pytest configuration and fixtures for DesignSync tests."""

import shutil
import tempfile
import threading
from pathlib import Path
from typing import Generator

import pytest

from designsync.config import SyncSettings
from designsync.storage import ProjectManager, SourceIndex


def current_from_prompt(prompt: str) -> str:
    """The file content embedded in a rewrite prompt."""
    body = prompt.split("<<<FILE\n", 1)[1]
    return body.rsplit("\nFILE>>>", 1)[0]


def path_from_prompt(prompt: str) -> str:
    for line in prompt.splitlines():
        if line.startswith("FILE: "):
            return line[len("FILE: "):]
    return ""


class ScriptedOracle:
    """Content oracle returning queued replies in order.

    A reply may be a string, an exception instance (raised) or a callable
    taking the prompt.  The last reply repeats once the queue runs dry.
    """

    def __init__(self, *replies):
        self.replies = list(replies) or [""]
        self.prompts = []
        self.calls = []
        self._lock = threading.Lock()

    def generate(self, prompt: str, max_retries: int = 2, retry_delay_ms: int = 800) -> str:
        with self._lock:
            self.prompts.append(prompt)
            self.calls.append({"max_retries": max_retries, "retry_delay_ms": retry_delay_ms})
            reply = self.replies.pop(0) if len(self.replies) > 1 else self.replies[0]
        if isinstance(reply, Exception):
            raise reply
        if callable(reply):
            return reply(prompt)
        return reply


class EchoOracle(ScriptedOracle):
    """Always hands back the file unchanged."""

    def __init__(self):
        super().__init__(current_from_prompt)


@pytest.fixture(autouse=True)
def _mock_local_llm(monkeypatch):
    """Replace LocalLLM in the CLI so no test ever reaches a real provider."""

    class _MockLocalLLM(ScriptedOracle):
        def __init__(self, **kwargs):
            super().__init__(lambda prompt: current_from_prompt(prompt) + "// synced\n"
                             if "<<<FILE" in prompt else "not json")
            self.provider_name = kwargs.get("provider", "mock")
            self.model = kwargs.get("model", "mock-model")

    monkeypatch.setattr("designsync.cli.LocalLLM", _MockLocalLLM)


@pytest.fixture
def temp_dir() -> Generator[Path, None, None]:
    """Create a temporary directory for tests."""
    tmp = Path(tempfile.mkdtemp())
    yield tmp
    shutil.rmtree(tmp, ignore_errors=True)


@pytest.fixture
def sample_workspace_path() -> Path:
    """Pristine sample workspace (never write into it)."""
    return Path(__file__).parent / "fixtures" / "sample_workspace"


@pytest.fixture
def workspace(temp_dir: Path, sample_workspace_path: Path) -> Path:
    """A writable copy of the sample workspace."""
    target = temp_dir / "workspace"
    shutil.copytree(sample_workspace_path, target)
    return target


@pytest.fixture
def temp_project_manager(temp_dir: Path, monkeypatch) -> ProjectManager:
    """Create a ProjectManager with temporary storage."""
    memory_dir = temp_dir / "memory"
    state_file = temp_dir / "state.json"

    # storage imports these names at module load
    monkeypatch.setattr("designsync.config.BASE_DIR", temp_dir)
    monkeypatch.setattr("designsync.config.MEMORY_DIR", memory_dir)
    monkeypatch.setattr("designsync.config.STATE_FILE", state_file)
    monkeypatch.setattr("designsync.storage.MEMORY_DIR", memory_dir)
    monkeypatch.setattr("designsync.storage.STATE_FILE", state_file)
    monkeypatch.setattr("designsync.config_manager.CONFIG_FILE", temp_dir / "config.toml")

    return ProjectManager()


@pytest.fixture
def empty_index(temp_dir: Path) -> Generator[SourceIndex, None, None]:
    index = SourceIndex(temp_dir / "empty_project")
    yield index
    index.close()


@pytest.fixture
def indexed_workspace(temp_dir: Path, workspace: Path) -> Generator[SourceIndex, None, None]:
    """A SourceIndex built from the writable workspace copy."""
    index = SourceIndex(temp_dir / "indexed_project")
    index.index_project(workspace)
    yield index
    index.close()


@pytest.fixture
def fast_settings() -> SyncSettings:
    return SyncSettings(oracle_retry_delay_ms=0)


@pytest.fixture
def sample_python_code() -> str:
    """Sample Python code for testing parser."""
    return '''"""Sample module for testing."""

import os, json
from app.models import User
from .utils import slug
from . import helpers
from ..core import base


def hello(name: str) -> str:
    """Say hello."""
    return f"Hello, {name}!"


class Calculator:
    """Simple calculator."""

    def add(self, a: int, b: int) -> int:
        return a + b


async def fetch(url):
    return url
'''
