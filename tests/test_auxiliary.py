"""
Tests for the Auxiliary Service and LLM Backends

Author: auxmerge contributors | 2026-10-19
"""

import pytest
from types import SimpleNamespace
from unittest.mock import AsyncMock, Mock, patch

from auxmerge_core.auxiliary import AuxiliaryService, ConfigurationError, HistoryItem
from auxmerge_core.controller import AugmentationOutcome, ReconciliationController
from auxmerge_core.llm_backends import ConnectionProfile, OllamaLLM, create_backend
from auxmerge_core.notices import NoticeBoard


TEMPLATE = (
    "W:{{worldInfo}}|L:{{lastMessage}}|F:{{assetFormat}}|E:{{assetExample}}"
    "|C:{{assetCount}}|H:{{auxHistory}}"
)


@pytest.fixture
def backend():
    llm = Mock()
    llm.complete.return_value = "[APPEND]hp: 90[/APPEND]"
    return llm


@pytest.fixture
def service(settings_manager, transcript, backend):
    return AuxiliaryService(settings_manager, transcript, backend_factory=Mock(return_value=backend))


class TestHistory:
    """Tests for auxiliary history collection."""

    def _add_turn(self, transcript, text, raw=None, primary=None):
        msg = transcript.add_message("assistant", text)
        if raw:
            msg.augmentation.commit(primary or text, raw, None)
        return msg

    def test_no_history(self, service):
        assert service.collect_history() == []
        assert service.format_history([]) == "(No previous outputs)"

    def test_collects_recent_non_user_outputs(self, service, transcript):
        """Test the last message is skipped and at most history_turns are kept, oldest first."""
        transcript.get_message(1).augmentation.commit("old primary", "[APPEND]0[/APPEND]", None)
        transcript.add_message("user", "next")
        self._add_turn(transcript, "rendered two", raw="[APPEND]2[/APPEND]", primary="primary two")
        transcript.add_message("user", "again")
        self._add_turn(transcript, "plain three")
        self._add_turn(transcript, "current", raw="[APPEND]current[/APPEND]")

        history = service.collect_history()

        assert history == [
            HistoryItem("old primary", "[APPEND]0[/APPEND]"),
            HistoryItem("primary two", "[APPEND]2[/APPEND]"),
        ]

    def test_history_turn_limit(self, service, settings_manager, transcript):
        transcript.get_message(1).augmentation.commit("p1", "r1", None)
        self._add_turn(transcript, "p2", raw="r2")
        self._add_turn(transcript, "current")
        settings_manager.set_history_turns(1)

        assert service.collect_history() == [HistoryItem("p2", "r2")]

        settings_manager.set_history_turns(0)
        assert service.collect_history() == []

    def test_format_history(self, service):
        long_text = "x" * 300

        formatted = service.format_history([HistoryItem("short", "r1"), HistoryItem(long_text, "r2")])

        blocks = formatted.split("\n\n")
        assert blocks[0] == "[Turn 1]\nMain: short...\nAux Output: r1"
        assert blocks[1] == f"[Turn 2]\nMain: {'x' * 200}...\nAux Output: r2"


class TestBuildPrompt:
    """Tests for prompt assembly."""

    @pytest.mark.asyncio
    async def test_placeholders(self, settings_manager, transcript):
        settings_manager.set_prompt_template(TEMPLATE)
        transcript.lore_books = ["world"]
        retriever = Mock()
        retriever.retrieve = AsyncMock(return_value=["lore one", "lore two"])
        service = AuxiliaryService(settings_manager, transcript, lore_retriever=retriever)

        messages = await service.build_prompt("Hello")

        assert messages == [{
            "role": "user",
            "content": (
                "W:lore one\n\nlore two|L:Hello|F:%%img:filename.ext%%|E:%%img:smile.png%%"
                "|C:3|H:(No previous outputs)"
            ),
        }]
        retriever.retrieve.assert_awaited_once_with(
            ["world"], keyword="auxmodel", macros={"char": "Aria", "user": "Sam"}
        )

    @pytest.mark.asyncio
    async def test_character_asset_format(self, settings_manager, transcript):
        settings_manager.set_prompt_template("{{assetFormat}} {{assetExample}}")
        settings_manager.set_character_use_asset_formats("char_1", True)
        settings_manager.set_character_asset_format_id("char_1", "curly")
        service = AuxiliaryService(settings_manager, transcript)

        messages = await service.build_prompt("x")

        assert messages[0]["content"] == "{{img::filename.ext}} {{img::smile.png}}"

    @pytest.mark.asyncio
    async def test_retrieval_failure_degrades(self, settings_manager, transcript):
        settings_manager.set_prompt_template("[{{worldInfo}}]")
        retriever = Mock()
        retriever.retrieve = AsyncMock(side_effect=RuntimeError("disk gone"))
        service = AuxiliaryService(settings_manager, transcript, lore_retriever=retriever)

        messages = await service.build_prompt("x")

        assert messages[0]["content"] == "[]"


class TestGenerate:
    """Tests for generate and send_request."""

    @pytest.mark.asyncio
    async def test_generate(self, service, backend):
        result = await service.generate("primary")

        assert result == "[APPEND]hp: 90[/APPEND]"
        args, kwargs = backend.complete.call_args
        assert args[0][0]["role"] == "user"
        assert kwargs["max_tokens"] == 4096

    @pytest.mark.asyncio
    async def test_disabled(self, service, settings_manager):
        settings_manager.set_enabled(False)

        with pytest.raises(ConfigurationError):
            await service.generate("primary")

    @pytest.mark.asyncio
    async def test_no_profile(self, service, settings_manager):
        settings_manager.set_connection_profile(None)

        with pytest.raises(ConfigurationError):
            await service.generate("primary")

    @pytest.mark.asyncio
    async def test_profile_without_api(self, service, settings_manager):
        settings_manager.config.profiles.append(ConnectionProfile(id="bare"))
        settings_manager.set_connection_profile("bare")

        with pytest.raises(ConfigurationError, match="no API configured"):
            await service.generate("primary")

    @pytest.mark.asyncio
    async def test_backend_error_propagates(self, service, backend):
        backend.complete.side_effect = ConnectionError("refused")

        with pytest.raises(ConnectionError):
            await service.generate("primary")

    @pytest.mark.asyncio
    @pytest.mark.parametrize("response, expected", [
        ("text", "text"),
        ({"content": "from content"}, "from content"),
        (SimpleNamespace(content=None, message="from message"), "from message"),
        (None, None),
        ("", None),
    ])
    async def test_response_normalization(self, service, backend, response, expected):
        backend.complete.return_value = response

        assert await service.send_request([{"role": "user", "content": "x"}]) == expected

    def test_status(self, service, settings_manager):
        assert service.get_status() == {"text": "Local Mistral", "active": True, "profile_name": "Local Mistral"}

        settings_manager.set_connection_profile(None)
        assert service.get_status() == {"text": "No profile", "active": False}

        settings_manager.set_enabled(False)
        assert service.get_status() == {"text": "Disabled", "active": False}

    @pytest.mark.asyncio
    async def test_drives_controller(self, service, settings_manager, transcript):
        """Test the service plugged into the controller end to end."""
        notices = NoticeBoard()
        controller = ReconciliationController(transcript, service, settings_manager, notices=notices)

        outcome = await controller.on_message_received(1)

        assert outcome == AugmentationOutcome.MERGED
        assert transcript.get_message(1).content.endswith("\n\nhp: 90")

    @pytest.mark.asyncio
    async def test_controller_checks_backend_before_marking(self, service, settings_manager, transcript):
        """Test a profile without api never reaches the service and keeps the message unprocessed."""
        settings_manager.config.profiles[0].api = ""
        notices = NoticeBoard()
        controller = ReconciliationController(transcript, service, settings_manager, notices=notices)

        outcome = await controller.on_message_received(1)

        assert outcome == AugmentationOutcome.NOT_CONFIGURED
        assert not transcript.get_message(1).augmentation.processed
        assert notices.last().message == "Selected profile has no API configured"


class TestBackends:
    """Tests for backend construction and the Ollama client."""

    def test_create_ollama(self):
        llm = create_backend(ConnectionProfile(id="x", api="Ollama", model="llama3"))

        assert isinstance(llm, OllamaLLM)
        assert llm.model_name == "llama3"

    def test_unknown_backend(self):
        with pytest.raises(ValueError):
            create_backend(ConnectionProfile(id="x", api="smoke-signals"))

    def test_claude_requires_key(self, monkeypatch):
        monkeypatch.delenv("ANTHROPIC_API_KEY", raising=False)

        with pytest.raises(ValueError):
            create_backend(ConnectionProfile(id="x", api="claude"))

    def test_ollama_complete(self):
        response = Mock()
        response.json.return_value = {"message": {"role": "assistant", "content": "[APPEND]a[/APPEND]"}}

        with patch("auxmerge_core.llm_backends.requests.post", return_value=response) as post:
            text = OllamaLLM("mistral", base_url="http://ollama:11434/").complete(
                [{"role": "user", "content": "hi"}], max_tokens=64
            )

        assert text == "[APPEND]a[/APPEND]"
        url = post.call_args[0][0]
        payload = post.call_args[1]["json"]
        assert url == "http://ollama:11434/api/chat"
        assert payload["options"] == {"num_predict": 64}
        assert payload["stream"] is False

    def test_ollama_is_available(self):
        response = Mock(status_code=200)
        response.json.return_value = {"models": [{"name": "mistral:latest"}]}

        with patch("auxmerge_core.llm_backends.requests.get", return_value=response):
            assert OllamaLLM("mistral").is_available()
            assert not OllamaLLM("llama3").is_available()

    def test_profile_round_trip(self):
        profile = ConnectionProfile(id="p", name="P", api="openai", model="gpt-4o", api_key_env="OPENAI_API_KEY")

        assert ConnectionProfile.from_dict(profile.to_dict()) == profile
        assert ConnectionProfile(id="only-id").display_name == "only-id"
