"""
auxmerge Configuration
======================

Loads settings from auxmerge.yaml with environment variable overrides, resolves
per-character overrides, and exposes a SettingsManager that persists every change.

Author: auxmerge contributors | 2026-10-19
"""

import os
import yaml
import logging
from pathlib import Path
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional

from .constants import (
    ASSET_FORMAT_OPTIONS,
    DEFAULT_ASSET_FORMAT_ID,
    DEFAULT_LORE_KEYWORD,
    DEFAULT_PROMPT_TEMPLATE,
)
from .llm_backends import ConnectionProfile

logger = logging.getLogger(__name__)

CONFIG_FILENAME = "auxmerge.yaml"


# =============================================================================
# Configuration Data Classes
# =============================================================================

@dataclass
class FormatSpec:
    """A start/end delimiter pair for status blocks or custom asset commands."""
    start: str
    end: str
    name: str = ""

    def to_dict(self) -> Dict[str, str]:
        return {"start": self.start, "end": self.end, "name": self.name}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "FormatSpec":
        return cls(start=data["start"], end=data["end"], name=data.get("name", ""))


def _default_status_formats() -> List[FormatSpec]:
    return [FormatSpec(start="[Status]", end="[/Status]", name="Status block")]


@dataclass
class CharacterSettings:
    """Per-character overrides, used only when the matching toggle is on."""
    use_character_status_formats: bool = False
    status_formats: List[FormatSpec] = field(default_factory=list)
    use_character_asset_formats: bool = False
    asset_formats: List[FormatSpec] = field(default_factory=list)
    asset_format_id: str = DEFAULT_ASSET_FORMAT_ID
    selected_lore_entries: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "use_character_status_formats": self.use_character_status_formats,
            "status_formats": [f.to_dict() for f in self.status_formats],
            "use_character_asset_formats": self.use_character_asset_formats,
            "asset_formats": [f.to_dict() for f in self.asset_formats],
            "asset_format_id": self.asset_format_id,
            "selected_lore_entries": list(self.selected_lore_entries),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "CharacterSettings":
        return cls(
            use_character_status_formats=data.get("use_character_status_formats", False),
            status_formats=[FormatSpec.from_dict(f) for f in data.get("status_formats", [])],
            use_character_asset_formats=data.get("use_character_asset_formats", False),
            asset_formats=[FormatSpec.from_dict(f) for f in data.get("asset_formats", [])],
            asset_format_id=data.get("asset_format_id", DEFAULT_ASSET_FORMAT_ID),
            selected_lore_entries=list(data.get("selected_lore_entries", [])),
        )


@dataclass
class AuxSettings:
    """Global auxiliary generator settings."""
    enabled: bool = False
    connection_profile_id: Optional[str] = None
    prompt_template: str = DEFAULT_PROMPT_TEMPLATE
    asset_format_id: str = DEFAULT_ASSET_FORMAT_ID
    status_formats: List[FormatSpec] = field(default_factory=_default_status_formats)
    asset_formats: List[FormatSpec] = field(default_factory=list)
    max_tokens: int = 4096
    asset_count: int = 3
    lore_keyword: str = DEFAULT_LORE_KEYWORD
    history_turns: int = 2
    character_settings: Dict[str, CharacterSettings] = field(default_factory=dict)


@dataclass
class LoggingConfig:
    """Logging configuration."""
    level: str = "INFO"
    log_dir: str = ".auxmerge/logs"
    audit_log: str = "audit.jsonl"
    mask_secrets: bool = True


@dataclass
class AuxConfig:
    """Root configuration container."""
    aux: AuxSettings = field(default_factory=AuxSettings)
    profiles: List[ConnectionProfile] = field(default_factory=list)
    logging: LoggingConfig = field(default_factory=LoggingConfig)
    edit_suppression_ms: int = 100
    storage_root: str = "."
    version: str = "0.1.0"

    def get_profile(self, profile_id: Optional[str]) -> Optional[ConnectionProfile]:
        if not profile_id:
            return None
        for profile in self.profiles:
            if profile.id == profile_id:
                return profile
        return None


# =============================================================================
# Layered Resolution
# =============================================================================

def _character_override(settings: AuxSettings, character_id: Optional[str]) -> Optional[CharacterSettings]:
    if character_id is None:
        return None
    return settings.character_settings.get(str(character_id))


def effective_status_formats(settings: AuxSettings, character_id: Optional[str]) -> List[FormatSpec]:
    """Character status formats when that character's override is on, else the global list."""
    override = _character_override(settings, character_id)
    if override is not None and override.use_character_status_formats:
        return override.status_formats
    return settings.status_formats


def effective_asset_formats(settings: AuxSettings, character_id: Optional[str]) -> List[FormatSpec]:
    """Character asset formats when that character's override is on, else the global list."""
    override = _character_override(settings, character_id)
    if override is not None and override.use_character_asset_formats:
        return override.asset_formats
    return settings.asset_formats


def effective_asset_format_id(settings: AuxSettings, character_id: Optional[str]) -> str:
    """Asset command syntax id; the character's choice counts only with asset overrides on."""
    override = _character_override(settings, character_id)
    if override is not None and override.use_character_asset_formats and override.asset_format_id:
        return override.asset_format_id
    return settings.asset_format_id


def selected_lore_entries(settings: AuxSettings, character_id: Optional[str]) -> List[str]:
    """Lore entry keys ("book::uid") selected for a character; no character means none."""
    override = _character_override(settings, character_id)
    if override is None:
        return []
    return override.selected_lore_entries


def lore_entry_key(book_name: str, uid: str) -> str:
    return f"{book_name}::{uid}"


# =============================================================================
# Configuration Loader
# =============================================================================

def find_config_file(start_path: Optional[Path] = None) -> Optional[Path]:
    """
    Find auxmerge.yaml by searching upward from start_path.

    Search order:
    1. start_path / auxmerge.yaml
    2. start_path / .auxmerge / auxmerge.yaml
    3. Parent directories (recursive)
    4. ~/.config/auxmerge/auxmerge.yaml

    Returns:
        Path to config file or None if not found
    """
    if start_path is None:
        start_path = Path.cwd()

    current = Path(start_path).resolve()
    for _ in range(10):  # Max 10 levels up
        for candidate in (current / CONFIG_FILENAME, current / ".auxmerge" / CONFIG_FILENAME):
            if candidate.exists():
                return candidate

        parent = current.parent
        if parent == current:
            break
        current = parent

    user_config = Path.home() / ".config" / "auxmerge" / CONFIG_FILENAME
    if user_config.exists():
        return user_config

    return None


def load_config(config_path: Optional[Path] = None) -> AuxConfig:
    """
    Load configuration from YAML file with environment variable overrides.

    Environment variables override config file values:
    - AUXMERGE_ENABLED -> aux.enabled
    - AUXMERGE_PROFILE -> aux.connection_profile_id
    - AUXMERGE_MAX_TOKENS -> aux.max_tokens
    - AUXMERGE_LORE_KEYWORD -> aux.lore_keyword
    - AUXMERGE_HISTORY_TURNS -> aux.history_turns
    - AUXMERGE_LOG_LEVEL -> logging.level

    Args:
        config_path: Path to config file (auto-detected if None)
    """
    config = AuxConfig()

    if config_path is None:
        config_path = find_config_file()

    if config_path and Path(config_path).exists():
        logger.info(f"Loading config from: {config_path}")
        try:
            with open(config_path, "r", encoding="utf-8") as f:
                data = yaml.safe_load(f) or {}
            config = _parse_config_dict(data)
        except (OSError, yaml.YAMLError, KeyError, TypeError, ValueError) as e:
            logger.warning(f"Failed to load config: {e}, using defaults")
    else:
        logger.info("No config file found, using defaults")

    config = _apply_env_overrides(config)
    _validate_config(config)

    return config


def _parse_config_dict(data: Dict[str, Any]) -> AuxConfig:
    """Parse configuration dictionary into AuxConfig."""
    config = AuxConfig()

    if "aux" in data:
        aux = data["aux"] or {}
        defaults = config.aux
        status_formats = aux.get("status_formats")
        config.aux = AuxSettings(
            enabled=aux.get("enabled", defaults.enabled),
            connection_profile_id=aux.get("connection_profile_id"),
            prompt_template=aux.get("prompt_template", defaults.prompt_template),
            asset_format_id=aux.get("asset_format_id", defaults.asset_format_id),
            status_formats=(
                [FormatSpec.from_dict(f) for f in status_formats]
                if status_formats is not None else defaults.status_formats
            ),
            asset_formats=[FormatSpec.from_dict(f) for f in aux.get("asset_formats", [])],
            max_tokens=aux.get("max_tokens", defaults.max_tokens),
            asset_count=aux.get("asset_count", defaults.asset_count),
            lore_keyword=aux.get("lore_keyword", defaults.lore_keyword),
            history_turns=aux.get("history_turns", defaults.history_turns),
            character_settings={
                str(cid): CharacterSettings.from_dict(cs or {})
                for cid, cs in (aux.get("character_settings") or {}).items()
            },
        )

    if "profiles" in data:
        config.profiles = [ConnectionProfile.from_dict(p) for p in data["profiles"] or []]

    if "logging" in data:
        log = data["logging"] or {}
        config.logging = LoggingConfig(
            level=log.get("level", config.logging.level),
            log_dir=log.get("log_dir", config.logging.log_dir),
            audit_log=log.get("audit_log", config.logging.audit_log),
            mask_secrets=log.get("mask_secrets", config.logging.mask_secrets),
        )

    config.edit_suppression_ms = data.get("edit_suppression_ms", config.edit_suppression_ms)
    config.storage_root = data.get("storage_root", config.storage_root)
    config.version = data.get("version", config.version)

    return config


def _apply_env_overrides(config: AuxConfig) -> AuxConfig:
    """Apply environment variable overrides to config."""

    if os.environ.get("AUXMERGE_ENABLED"):
        config.aux.enabled = os.environ["AUXMERGE_ENABLED"].lower() in ("true", "1", "yes")

    if os.environ.get("AUXMERGE_PROFILE"):
        config.aux.connection_profile_id = os.environ["AUXMERGE_PROFILE"]

    if os.environ.get("AUXMERGE_MAX_TOKENS"):
        config.aux.max_tokens = int(os.environ["AUXMERGE_MAX_TOKENS"])

    if os.environ.get("AUXMERGE_LORE_KEYWORD"):
        config.aux.lore_keyword = os.environ["AUXMERGE_LORE_KEYWORD"]

    if os.environ.get("AUXMERGE_HISTORY_TURNS"):
        config.aux.history_turns = int(os.environ["AUXMERGE_HISTORY_TURNS"])

    if os.environ.get("AUXMERGE_LOG_LEVEL"):
        config.logging.level = os.environ["AUXMERGE_LOG_LEVEL"].upper()

    return config


def _validate_config(config: AuxConfig) -> None:
    """Validate configuration, log warnings and repair bad values."""
    valid_formats = {opt.id for opt in ASSET_FORMAT_OPTIONS}
    if config.aux.asset_format_id not in valid_formats:
        logger.warning(
            f"Unknown asset format '{config.aux.asset_format_id}', defaulting to '{DEFAULT_ASSET_FORMAT_ID}'"
        )
        config.aux.asset_format_id = DEFAULT_ASSET_FORMAT_ID

    if config.aux.history_turns < 0:
        logger.warning(f"Negative history_turns ({config.aux.history_turns}), using 0")
        config.aux.history_turns = 0

    profile_id = config.aux.connection_profile_id
    if profile_id and config.get_profile(profile_id) is None:
        logger.warning(f"Connection profile '{profile_id}' not found, clearing selection")
        config.aux.connection_profile_id = None


def config_to_dict(config: AuxConfig) -> Dict[str, Any]:
    aux = config.aux
    return {
        "version": config.version,
        "storage_root": config.storage_root,
        "edit_suppression_ms": config.edit_suppression_ms,
        "aux": {
            "enabled": aux.enabled,
            "connection_profile_id": aux.connection_profile_id,
            "prompt_template": aux.prompt_template,
            "asset_format_id": aux.asset_format_id,
            "status_formats": [f.to_dict() for f in aux.status_formats],
            "asset_formats": [f.to_dict() for f in aux.asset_formats],
            "max_tokens": aux.max_tokens,
            "asset_count": aux.asset_count,
            "lore_keyword": aux.lore_keyword,
            "history_turns": aux.history_turns,
            "character_settings": {cid: cs.to_dict() for cid, cs in aux.character_settings.items()},
        },
        "profiles": [p.to_dict() for p in config.profiles],
        "logging": {
            "level": config.logging.level,
            "log_dir": config.logging.log_dir,
            "audit_log": config.logging.audit_log,
            "mask_secrets": config.logging.mask_secrets,
        },
    }


def save_config(config: AuxConfig, path: Path) -> None:
    """
    Save configuration to YAML file.

    Profiles only reference API keys through environment variable names, so no
    secret is ever written.
    """
    data = config_to_dict(config)

    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    with open(path, "w", encoding="utf-8") as f:
        yaml.safe_dump(data, f, default_flow_style=False, sort_keys=False, allow_unicode=True)

    logger.info(f"Configuration saved to: {path}")


# =============================================================================
# Settings Manager
# =============================================================================

class SettingsManager:
    """
    Mutates AuxSettings and persists after every change.

    The save hook defaults to writing the whole configuration back to
    config_path; without a path, changes stay in memory.
    """

    def __init__(
        self,
        config: AuxConfig,
        config_path: Optional[Path] = None,
        on_save: Optional[Callable[[AuxConfig], None]] = None,
    ):
        self.config = config
        self.config_path = Path(config_path) if config_path else None
        self._on_save = on_save

    @property
    def settings(self) -> AuxSettings:
        return self.config.aux

    def save(self) -> None:
        if self._on_save is not None:
            self._on_save(self.config)
        elif self.config_path is not None:
            save_config(self.config, self.config_path)

    # -- global settings ------------------------------------------------------

    def set_enabled(self, enabled: bool) -> None:
        self.settings.enabled = enabled
        self.save()

    def set_connection_profile(self, profile_id: Optional[str]) -> None:
        self.settings.connection_profile_id = profile_id
        self.save()

    def get_selected_profile(self) -> Optional[ConnectionProfile]:
        return self.config.get_profile(self.settings.connection_profile_id)

    def is_configured(self) -> bool:
        """True when the selected profile exists and names a backend."""
        profile = self.get_selected_profile()
        return profile is not None and bool(profile.api)

    def set_prompt_template(self, template: str) -> None:
        self.settings.prompt_template = template
        self.save()

    def reset_prompt_template(self) -> None:
        self.settings.prompt_template = DEFAULT_PROMPT_TEMPLATE
        self.save()

    def set_asset_format_id(self, format_id: str) -> None:
        self.settings.asset_format_id = format_id
        self.save()

    def set_max_tokens(self, max_tokens: int) -> None:
        self.settings.max_tokens = max_tokens
        self.save()

    def set_asset_count(self, asset_count: int) -> None:
        self.settings.asset_count = asset_count
        self.save()

    def add_status_format(self, start: str, end: str, name: str = "") -> None:
        self.settings.status_formats.append(FormatSpec(start, end, name))
        self.save()

    def remove_status_format(self, index: int) -> None:
        if 0 <= index < len(self.settings.status_formats):
            del self.settings.status_formats[index]
            self.save()

    def add_asset_format(self, start: str, end: str, name: str = "") -> None:
        self.settings.asset_formats.append(FormatSpec(start, end, name))
        self.save()

    def remove_asset_format(self, index: int) -> None:
        if 0 <= index < len(self.settings.asset_formats):
            del self.settings.asset_formats[index]
            self.save()

    def set_lore_keyword(self, keyword: str) -> None:
        self.settings.lore_keyword = keyword
        self.save()

    def set_history_turns(self, turns: int) -> None:
        self.settings.history_turns = max(0, turns)
        self.save()

    # -- per-character overrides ---------------------------------------------

    def get_character_settings(self, character_id: str) -> Optional[CharacterSettings]:
        return self.settings.character_settings.get(str(character_id))

    def ensure_character_settings(self, character_id: str) -> CharacterSettings:
        key = str(character_id)
        if key not in self.settings.character_settings:
            self.settings.character_settings[key] = CharacterSettings()
        return self.settings.character_settings[key]

    def set_character_use_status_formats(self, character_id: str, use_character: bool) -> None:
        self.ensure_character_settings(character_id).use_character_status_formats = use_character
        self.save()

    def set_character_use_asset_formats(self, character_id: str, use_character: bool) -> None:
        self.ensure_character_settings(character_id).use_character_asset_formats = use_character
        self.save()

    def add_character_status_format(self, character_id: str, start: str, end: str, name: str = "") -> None:
        self.ensure_character_settings(character_id).status_formats.append(FormatSpec(start, end, name))
        self.save()

    def remove_character_status_format(self, character_id: str, index: int) -> None:
        char_settings = self.get_character_settings(character_id)
        if char_settings and 0 <= index < len(char_settings.status_formats):
            del char_settings.status_formats[index]
            self.save()

    def add_character_asset_format(self, character_id: str, start: str, end: str, name: str = "") -> None:
        self.ensure_character_settings(character_id).asset_formats.append(FormatSpec(start, end, name))
        self.save()

    def remove_character_asset_format(self, character_id: str, index: int) -> None:
        char_settings = self.get_character_settings(character_id)
        if char_settings and 0 <= index < len(char_settings.asset_formats):
            del char_settings.asset_formats[index]
            self.save()

    def set_character_asset_format_id(self, character_id: str, format_id: str) -> None:
        self.ensure_character_settings(character_id).asset_format_id = format_id
        self.save()

    def get_effective_status_formats(self, character_id: Optional[str]) -> List[FormatSpec]:
        return effective_status_formats(self.settings, character_id)

    def get_effective_asset_formats(self, character_id: Optional[str]) -> List[FormatSpec]:
        return effective_asset_formats(self.settings, character_id)

    def get_effective_asset_format_id(self, character_id: Optional[str]) -> str:
        return effective_asset_format_id(self.settings, character_id)

    # -- lore entry selection ------------------------------------------------

    def get_selected_lore_entries(self, character_id: Optional[str]) -> List[str]:
        return selected_lore_entries(self.settings, character_id)

    def set_selected_lore_entries(self, character_id: Optional[str], entries: List[str]) -> None:
        if character_id is None:
            return
        self.ensure_character_settings(character_id).selected_lore_entries = list(entries)
        self.save()

    def add_selected_lore_entry(self, character_id: Optional[str], book_name: str, uid: str) -> None:
        if character_id is None:
            return
        selected = self.ensure_character_settings(character_id).selected_lore_entries
        key = lore_entry_key(book_name, uid)
        if key not in selected:
            selected.append(key)
            self.save()

    def remove_selected_lore_entry(self, character_id: Optional[str], book_name: str, uid: str) -> None:
        if character_id is None:
            return
        char_settings = self.get_character_settings(character_id)
        key = lore_entry_key(book_name, uid)
        if char_settings and key in char_settings.selected_lore_entries:
            char_settings.selected_lore_entries.remove(key)
            self.save()

    def is_lore_entry_selected(self, character_id: Optional[str], book_name: str, uid: str) -> bool:
        return lore_entry_key(book_name, uid) in self.get_selected_lore_entries(character_id)

    def clear_selected_lore_entries(self, character_id: Optional[str]) -> None:
        if character_id is None:
            return
        char_settings = self.get_character_settings(character_id)
        if char_settings:
            char_settings.selected_lore_entries = []
            self.save()


# =============================================================================
# Global Config Instance
# =============================================================================

_global_config: Optional[AuxConfig] = None


def get_config() -> AuxConfig:
    """Get the global configuration instance (lazy-loaded)."""
    global _global_config
    if _global_config is None:
        _global_config = load_config()
    return _global_config


def reload_config(config_path: Optional[Path] = None) -> AuxConfig:
    """Reload configuration from file."""
    global _global_config
    _global_config = load_config(config_path)
    return _global_config
