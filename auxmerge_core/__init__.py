"""
auxmerge Core - Auxiliary model augmentation of chat transcripts

Author: auxmerge contributors | 2026-10-19
"""

__version__ = "0.1.0"

from .markers import (
    BlockKind,
    InsertBlock,
    SecondaryInstructionSet,
    MarkerScanner,
    parse_markers,
)
from .merger import merge, process, split_into_paragraphs
from .config import (
    AuxConfig,
    AuxSettings,
    CharacterSettings,
    FormatSpec,
    LoggingConfig,
    SettingsManager,
    load_config,
    save_config,
    get_config,
    effective_status_formats,
    effective_asset_formats,
    effective_asset_format_id,
    selected_lore_entries,
)
from .llm_backends import ConnectionProfile, BaseLLM, OllamaLLM, ClaudeLLM, OpenAILLM, create_backend
from .transcript import AugmentationState, Message, Transcript, TranscriptEvent
from .lore import LoreEntry, LoreBook, LoreLibrary, KeywordLoreRetriever
from .auxiliary import AuxiliaryService, ConfigurationError
from .notices import Notice, NoticeBoard, NoticeLevel
from .monitoring import MetricsCollector, get_metrics
from .logging_utils import AuditLog, configure_logging, mask_secrets
from .controller import (
    AugmentationOutcome,
    EditSuppressionWindow,
    GenerationGate,
    ReconciliationController,
)

__all__ = [
    "BlockKind",
    "InsertBlock",
    "SecondaryInstructionSet",
    "MarkerScanner",
    "parse_markers",
    "merge",
    "process",
    "split_into_paragraphs",
    "AuxConfig",
    "AuxSettings",
    "CharacterSettings",
    "FormatSpec",
    "LoggingConfig",
    "SettingsManager",
    "load_config",
    "save_config",
    "get_config",
    "effective_status_formats",
    "effective_asset_formats",
    "effective_asset_format_id",
    "selected_lore_entries",
    "ConnectionProfile",
    "BaseLLM",
    "OllamaLLM",
    "ClaudeLLM",
    "OpenAILLM",
    "create_backend",
    "AugmentationState",
    "Message",
    "Transcript",
    "TranscriptEvent",
    "LoreEntry",
    "LoreBook",
    "LoreLibrary",
    "KeywordLoreRetriever",
    "AuxiliaryService",
    "ConfigurationError",
    "Notice",
    "NoticeBoard",
    "NoticeLevel",
    "MetricsCollector",
    "get_metrics",
    "AuditLog",
    "configure_logging",
    "mask_secrets",
    "AugmentationOutcome",
    "EditSuppressionWindow",
    "GenerationGate",
    "ReconciliationController",
]
