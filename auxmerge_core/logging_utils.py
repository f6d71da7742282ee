"""
Logging Utilities for auxmerge

Author: auxmerge contributors | 2026-10-19
"""

import json
import logging
import re
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Optional

from .config import LoggingConfig


# Patterns for secret masking (environment variables, tokens, keys).
# Variable names are matched upper case only so narrative text ("pass: ...") survives.
SECRET_PATTERNS = [
    (re.compile(r"\b([A-Z0-9_]*(?:API_KEY|TOKEN|SECRET|PASSWORD|PASS|AUTH))\s*[=:]\s*['\"]?([^'\"\s]+)"), r"\1=***"),
    (re.compile(r"(Bearer)\s+([a-zA-Z0-9_\-\.]+)", re.I), r"\1 ***"),
    (re.compile(r"sk-(ant-)?[a-zA-Z0-9_\-]{8,}"), "sk-***"),
]


def mask_secrets(text: str) -> str:
    """
    Mask secrets in text before logging.

    Args:
        text: Raw text that may contain secrets

    Returns:
        Text with secrets replaced by ***
    """
    masked = text
    for pattern, replacement in SECRET_PATTERNS:
        masked = pattern.sub(replacement, masked)
    return masked


def _mask_values(value: Any) -> Any:
    """Apply mask_secrets to every string inside a JSON-ready structure."""
    if isinstance(value, str):
        return mask_secrets(value)
    if isinstance(value, dict):
        return {k: _mask_values(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [_mask_values(v) for v in value]
    return value


def configure_logging(config: LoggingConfig, package: str = "auxmerge_core") -> logging.Logger:
    """
    Attach a console handler to the package logger at the configured level.

    Calling it again only updates the level.
    """
    pkg_logger = logging.getLogger(package)
    pkg_logger.setLevel(getattr(logging, config.level.upper(), logging.INFO))

    if not any(getattr(h, "_auxmerge", False) for h in pkg_logger.handlers):
        handler = logging.StreamHandler()
        handler.setFormatter(logging.Formatter("%(asctime)s - %(levelname)s - %(name)s - %(message)s"))
        handler._auxmerge = True
        pkg_logger.addHandler(handler)

    return pkg_logger


class AuditLog:
    """
    Structured JSONL record of generation, merge and reconcile events.

    Raw auxiliary outputs are kept verbatim (apart from secret masking) so a
    merge can be replayed when debugging.
    """

    def __init__(self, log_dir: Path, filename: str = "audit.jsonl", mask_secrets_enabled: bool = True):
        self.log_dir = Path(log_dir)
        self.log_dir.mkdir(parents=True, exist_ok=True)
        self.path = self.log_dir / filename
        self.mask_secrets_enabled = mask_secrets_enabled

    @classmethod
    def from_config(cls, config: LoggingConfig, storage_root: Optional[str] = None) -> "AuditLog":
        log_dir = Path(config.log_dir)
        if storage_root and not log_dir.is_absolute():
            log_dir = Path(storage_root) / log_dir
        return cls(log_dir, config.audit_log, config.mask_secrets)

    def log_event(self, event_type: str, data: Dict[str, Any]) -> None:
        """Append one event line. Masking applies to string values, never to the encoded line."""
        if self.mask_secrets_enabled:
            data = _mask_values(data)
        event = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "type": event_type,
            "data": data,
        }
        line = json.dumps(event, ensure_ascii=False)

        with self.path.open("a", encoding="utf-8") as f:
            f.write(line + "\n")

    def read_events(self, event_type: Optional[str] = None) -> list:
        if not self.path.exists():
            return []
        events = []
        with self.path.open("r", encoding="utf-8") as f:
            for line in f:
                line = line.strip()
                if not line:
                    continue
                event = json.loads(line)
                if event_type is None or event["type"] == event_type:
                    events.append(event)
        return events
