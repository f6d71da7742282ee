"""
Pytest Configuration and Fixtures

Author: auxmerge contributors | 2026-10-19
"""

import asyncio
import json
import tempfile
from pathlib import Path
from typing import Generator, List, Optional

import pytest

from auxmerge_core.config import AuxConfig, AuxSettings, SettingsManager
from auxmerge_core.llm_backends import ConnectionProfile
from auxmerge_core.monitoring import MetricsCollector
from auxmerge_core.notices import NoticeBoard
from auxmerge_core.transcript import Transcript


@pytest.fixture
def temp_dir() -> Generator[Path, None, None]:
    """Create a temporary directory for tests."""
    with tempfile.TemporaryDirectory() as tmpdir:
        yield Path(tmpdir)


@pytest.fixture
def aux_config() -> AuxConfig:
    """Enabled configuration with one Ollama profile selected."""
    return AuxConfig(
        aux=AuxSettings(enabled=True, connection_profile_id="local"),
        profiles=[ConnectionProfile(id="local", name="Local Mistral", api="ollama", model="mistral")],
    )


@pytest.fixture
def settings_manager(aux_config: AuxConfig) -> SettingsManager:
    """In-memory settings manager (no save path)."""
    return SettingsManager(aux_config)


@pytest.fixture
def transcript() -> Transcript:
    """A short chat: user turn followed by an assistant reply."""
    t = Transcript("chat_001", character_id="char_1", character_name="Aria", user_name="Sam")
    t.add_message("user", "Where are we?", name="Sam")
    t.add_message("assistant", "The forest is quiet.\n\nA path leads north.\n\nNight is falling.", name="Aria")
    return t


@pytest.fixture
def notices() -> NoticeBoard:
    return NoticeBoard()


@pytest.fixture
def metrics() -> MetricsCollector:
    return MetricsCollector()


class FakeGenerator:
    """
    Scripted secondary generator.

    Returns queued responses in order (the last one repeats). When `block` is
    set, each call waits on `release` before answering.
    """

    def __init__(self, responses: Optional[List[Optional[str]]] = None, error: Optional[Exception] = None):
        self.responses = list(responses or [None])
        self.error = error
        self.calls: List[str] = []
        self.block = False
        self.started = asyncio.Event()
        self.release = asyncio.Event()

    async def generate(self, primary_text: str) -> Optional[str]:
        self.calls.append(primary_text)
        self.started.set()
        if self.block:
            await self.release.wait()
        if self.error is not None:
            raise self.error
        if len(self.responses) > 1:
            return self.responses.pop(0)
        return self.responses[0]


@pytest.fixture
def fake_generator_factory():
    """Build FakeGenerator instances inside the running test loop."""
    return FakeGenerator


@pytest.fixture
def lore_dir(temp_dir: Path) -> Path:
    """Lore library directory with two books."""
    library = temp_dir / "lore"
    library.mkdir()

    (library / "world.json").write_text(json.dumps({
        "entries": {
            "0": {
                "key": ["forest", "auxmodel"],
                "keysecondary": [],
                "content": "{{char}} knows every tree in the forest.",
                "comment": "Forest",
                "disable": False,
            },
            "1": {
                "key": ["castle"],
                "keysecondary": ["AuxModel-status"],
                "content": "The castle gates close at dusk.",
                "comment": "Castle",
                "disable": True,
            },
            "2": {
                "key": ["river"],
                "keysecondary": [],
                "content": "The river runs east.",
                "comment": "River",
                "disable": False,
            },
            "3": {
                "key": ["auxmodel"],
                "keysecondary": [],
                "content": "",
                "comment": "Empty",
                "disable": False,
            },
        }
    }), encoding="utf-8")

    (library / "assets.json").write_text(json.dumps({
        "entries": {
            "7": {
                "key": ["auxmodel"],
                "content": "Available images for {{user}}: smile.png, frown.png",
                "comment": "Assets",
            },
        }
    }), encoding="utf-8")

    return library
