"""
Auxiliary Service - Prompt assembly and generator calls
======================================================

The auxiliary service turns a primary message into a secondary model request:

    primary text + lore context + recent auxiliary history
        -> prompt (template placeholders resolved)
        -> connection profile backend
        -> raw secondary output (marker text)

Author: auxmerge contributors | 2026-10-19
"""

import asyncio
import functools
import logging
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional

from .config import SettingsManager
from .constants import AssetFormatOption, get_asset_format_option
from .llm_backends import BaseLLM, ConnectionProfile, create_backend
from .lore import LoreRetriever
from .transcript import Transcript

logger = logging.getLogger(__name__)

NO_HISTORY_TEXT = "(No previous outputs)"
HISTORY_PREVIEW_CHARS = 200
RESPONSE_PREVIEW_CHARS = 200


class ConfigurationError(Exception):
    """The auxiliary generator cannot run with the current settings."""
    pass


@dataclass
class HistoryItem:
    """One earlier turn: the primary text and the raw auxiliary output it received."""
    main_message: str
    aux_response: str


class AuxiliaryService:
    """
    Builds prompts for the auxiliary model and calls it.

    Backends are synchronous and run in the default executor; generate()
    propagates backend errors to the caller.
    """

    def __init__(
        self,
        settings_manager: SettingsManager,
        transcript: Transcript,
        lore_retriever: Optional[LoreRetriever] = None,
        backend_factory: Callable[[ConnectionProfile], BaseLLM] = create_backend,
    ):
        self.settings_manager = settings_manager
        self.transcript = transcript
        self.lore_retriever = lore_retriever
        self.backend_factory = backend_factory

    @property
    def settings(self):
        return self.settings_manager.settings

    def selected_asset_format(self) -> AssetFormatOption:
        format_id = self.settings_manager.get_effective_asset_format_id(self.transcript.character_id)
        return get_asset_format_option(format_id)

    def selected_profile(self) -> Optional[ConnectionProfile]:
        return self.settings_manager.get_selected_profile()

    def macros(self) -> Dict[str, str]:
        return {
            "char": self.transcript.character_name,
            "user": self.transcript.user_name,
        }

    async def retrieve_context(self) -> List[str]:
        """Lore entries for the bound books. Failures degrade to an empty list."""
        if self.lore_retriever is None or not self.settings.lore_keyword:
            return []
        try:
            return await self.lore_retriever.retrieve(
                self.transcript.lore_books,
                keyword=self.settings.lore_keyword,
                macros=self.macros(),
            )
        except Exception as e:
            logger.error(f"Error getting lore context: {e}")
            return []

    # =========================================================================
    # Auxiliary history
    # =========================================================================

    def collect_history(self) -> List[HistoryItem]:
        """
        Most recent auxiliary outputs, oldest first.

        The last message is excluded since it is the one being augmented.
        """
        messages = self.transcript.messages
        limit = self.settings.history_turns
        history: List[HistoryItem] = []

        for msg in reversed(messages[:-1]):
            if len(history) >= limit:
                break
            state = msg.augmentation
            if not msg.is_user and state.raw_secondary_output:
                history.insert(0, HistoryItem(
                    main_message=state.primary_original or msg.content,
                    aux_response=state.raw_secondary_output,
                ))

        return history

    @staticmethod
    def format_history(history: List[HistoryItem]) -> str:
        if not history:
            return NO_HISTORY_TEXT

        return "\n\n".join(
            f"[Turn {i}]\nMain: {item.main_message[:HISTORY_PREVIEW_CHARS]}...\nAux Output: {item.aux_response}"
            for i, item in enumerate(history, start=1)
        )

    # =========================================================================
    # Request
    # =========================================================================

    async def build_prompt(self, primary_text: str) -> List[Dict[str, str]]:
        """Resolve the prompt template into a single user message."""
        world_info = "\n\n".join(await self.retrieve_context())
        asset_format = self.selected_asset_format()
        asset_count = self.settings.asset_count or 3
        history = self.format_history(self.collect_history())

        replacements = {
            "{{worldInfo}}": world_info,
            "{{lastMessage}}": primary_text,
            "{{assetFormat}}": f"{asset_format.start}filename.ext{asset_format.end}",
            "{{assetExample}}": asset_format.example,
            "{{assetCount}}": str(asset_count),
            "{{auxHistory}}": history,
        }

        prompt = self.settings.prompt_template
        for placeholder, value in replacements.items():
            prompt = prompt.replace(placeholder, value)

        return [{"role": "user", "content": prompt}]

    @staticmethod
    def _normalize_response(response: Any) -> Optional[str]:
        if not response:
            return None
        if isinstance(response, str):
            return response
        for attr in ("content", "message"):
            value = response.get(attr) if isinstance(response, dict) else getattr(response, attr, None)
            if value:
                return value
        return None

    async def send_request(self, messages: List[Dict[str, str]]) -> Optional[str]:
        profile = self.selected_profile()
        if profile is None:
            raise ConfigurationError(f"Profile not found: {self.settings.connection_profile_id}")
        if not profile.api:
            raise ConfigurationError("Selected profile has no API configured")

        max_tokens = self.settings.max_tokens or profile.max_tokens or None
        backend = self.backend_factory(profile)

        loop = asyncio.get_running_loop()
        response = await loop.run_in_executor(
            None, functools.partial(backend.complete, messages, max_tokens=max_tokens)
        )
        return self._normalize_response(response)

    async def generate(self, primary_text: str) -> Optional[str]:
        """
        Run the auxiliary model against a primary message.

        Raises:
            ConfigurationError: Disabled, or no usable connection profile
        """
        if not self.settings.enabled:
            raise ConfigurationError("Auxiliary model disabled")
        if not self.settings.connection_profile_id:
            raise ConfigurationError("No connection profile selected")

        logger.info("Starting auxiliary generation...")
        messages = await self.build_prompt(primary_text)
        try:
            response = await self.send_request(messages)
        except Exception as e:
            logger.error(f"Auxiliary generation error: {e}")
            raise

        preview = response[:RESPONSE_PREVIEW_CHARS] if response else None
        logger.info(f"Auxiliary response received: {preview!r}")
        return response

    def get_status(self) -> Dict[str, Any]:
        if not self.settings.enabled:
            return {"text": "Disabled", "active": False}

        profile = self.selected_profile()
        if profile is None:
            return {"text": "No profile", "active": False}

        return {"text": profile.display_name, "active": True, "profile_name": profile.name}
