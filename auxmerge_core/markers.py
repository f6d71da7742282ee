"""
Position Marker Parser
======================

Decodes the auxiliary generator's raw output into placement instructions.

Grammar (tags are case-insensitive, bodies are matched non-greedily and may
span lines; every kind may occur any number of times):

    [PREPEND]<text>[/PREPEND]
    [APPEND]<text>[/APPEND]
    [INSERT:<N>]<text>[/INSERT]      N = paragraph index, ASCII digits

The scan is a hand-written tokenizer rather than a regular expression, one pass
per block kind. Text outside recognized blocks is ignored, unless no block was
found at all, in which case the whole response becomes a single PREPEND block.

Author: auxmerge contributors | 2026-10-19
"""

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Iterator, List, Optional, Tuple

from .monitoring import MetricsCollector, get_metrics

logger = logging.getLogger(__name__)


class BlockKind(str, Enum):
    """Kinds of position marker blocks."""
    PREPEND = "prepend"
    APPEND = "append"
    INSERT = "insert"


# Lower-case literals; matching lower-cases the candidate slice of the input.
_OPEN_TAGS = {
    BlockKind.PREPEND: "[prepend]",
    BlockKind.APPEND: "[append]",
}
_CLOSE_TAGS = {
    BlockKind.PREPEND: "[/prepend]",
    BlockKind.APPEND: "[/append]",
    BlockKind.INSERT: "[/insert]",
}
_INSERT_PREFIX = "[insert:"
_DIGITS = "0123456789"


# =============================================================================
# Data Model
# =============================================================================

@dataclass
class InsertBlock:
    """Content to splice in after the Nth paragraph (0 = before the first)."""
    position: int
    content: str

    def to_dict(self) -> Dict[str, Any]:
        return {"position": self.position, "content": self.content}


@dataclass
class SecondaryInstructionSet:
    """
    Placement instructions parsed from one auxiliary response.

    Attributes:
        prepend: Blocks placed before the primary text, in encounter order
        append: Blocks placed after the primary text, in encounter order
        inserts: Paragraph inserts, sorted by position descending (stable)
    """
    prepend: List[str] = field(default_factory=list)
    append: List[str] = field(default_factory=list)
    inserts: List[InsertBlock] = field(default_factory=list)

    def has_content(self) -> bool:
        """True if any of the three sequences is non-empty."""
        return bool(self.prepend or self.append or self.inserts)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "prepend": list(self.prepend),
            "append": list(self.append),
            "inserts": [b.to_dict() for b in self.inserts],
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "SecondaryInstructionSet":
        """Rebuild from persisted data, re-applying the trimming and ordering rules."""
        prepend = [s.strip() for s in data.get("prepend", []) if s and s.strip()]
        append = [s.strip() for s in data.get("append", []) if s and s.strip()]
        inserts = []
        for item in data.get("inserts", []):
            content = (item.get("content") or "").strip()
            position = int(item.get("position", 0))
            if content and position >= 0:
                inserts.append(InsertBlock(position=position, content=content))
        inserts.sort(key=lambda b: b.position, reverse=True)
        return cls(prepend=prepend, append=append, inserts=inserts)


@dataclass
class MarkerBlock:
    """A single block located by the scanner (body not yet trimmed)."""
    kind: BlockKind
    body: str
    start: int
    end: int
    position: Optional[int] = None


# =============================================================================
# Scanner
# =============================================================================

class MarkerScanner:
    """
    Left-to-right scanner over one response.

    Each call to scan() walks the whole input for a single block kind, so the
    kinds are located independently of each other. For a given opening tag the
    nearest following closing tag ends the block; scanning resumes after it.
    """

    def __init__(self, text: str):
        self.text = text

    def _matches_at(self, pos: int, literal: str) -> bool:
        return self.text[pos:pos + len(literal)].lower() == literal

    def _find(self, literal: str, pos: int) -> int:
        """Index of the next case-insensitive occurrence of literal, or -1."""
        text = self.text
        while True:
            idx = text.find("[", pos)
            if idx == -1:
                return -1
            if self._matches_at(idx, literal):
                return idx
            pos = idx + 1

    def _read_insert_tag(self, idx: int) -> Optional[Tuple[int, int]]:
        """
        Read `[INSERT:<digits>]` starting at idx.

        Returns:
            (position, offset just past the tag), or None if malformed
        """
        text = self.text
        digits_start = idx + len(_INSERT_PREFIX)
        j = digits_start
        while j < len(text) and text[j] in _DIGITS:
            j += 1
        if j == digits_start or j >= len(text) or text[j] != "]":
            return None
        return int(text[digits_start:j]), j + 1

    def scan(self, kind: BlockKind) -> Iterator[MarkerBlock]:
        """Yield every block of the given kind in encounter order."""
        close_tag = _CLOSE_TAGS[kind]
        pos = 0

        while True:
            position = None
            if kind is BlockKind.INSERT:
                start = self._find(_INSERT_PREFIX, pos)
                if start == -1:
                    return
                tag = self._read_insert_tag(start)
                if tag is None:
                    pos = start + 1
                    continue
                position, body_start = tag
            else:
                open_tag = _OPEN_TAGS[kind]
                start = self._find(open_tag, pos)
                if start == -1:
                    return
                body_start = start + len(open_tag)

            body_end = self._find(close_tag, body_start)
            if body_end == -1:
                # no later opening tag can be closed either
                return

            end = body_end + len(close_tag)
            yield MarkerBlock(
                kind=kind,
                body=self.text[body_start:body_end],
                start=start,
                end=end,
                position=position,
            )
            pos = end


# =============================================================================
# Parser
# =============================================================================

def unescape_newlines(text: str) -> str:
    """Turn literal backslash-n sequences into real newlines."""
    return text.replace("\\n", "\n")


def parse_markers(
    raw_text: Optional[str],
    metrics: Optional[MetricsCollector] = None,
) -> Optional[SecondaryInstructionSet]:
    """
    Parse an auxiliary response into a SecondaryInstructionSet.

    Args:
        raw_text: Raw generator output
        metrics: Sink for block counts (global collector if not provided)

    Returns:
        The instruction set (possibly with every sequence empty), or None
        when raw_text itself is None or empty
    """
    if not raw_text:
        return None

    normalized = unescape_newlines(raw_text)
    scanner = MarkerScanner(normalized)
    result = SecondaryInstructionSet()
    recognized = 0

    for kind in BlockKind:
        for block in scanner.scan(kind):
            recognized += 1
            content = block.body.strip()
            if not content:
                continue
            if kind is BlockKind.PREPEND:
                result.prepend.append(content)
            elif kind is BlockKind.APPEND:
                result.append.append(content)
            else:
                result.inserts.append(InsertBlock(position=block.position, content=content))

    used_fallback = False
    if recognized == 0:
        trimmed = normalized.strip()
        if trimmed:
            result.prepend.append(trimmed)
            used_fallback = True
            logger.info("No position markers found, treating entire response as PREPEND")

    result.inserts.sort(key=lambda b: b.position, reverse=True)

    _report_counts(result, recognized, used_fallback, metrics)
    return result


def _report_counts(
    result: SecondaryInstructionSet,
    recognized: int,
    used_fallback: bool,
    metrics: Optional[MetricsCollector],
) -> None:
    sink = metrics or get_metrics()
    counts = {
        BlockKind.PREPEND: len(result.prepend),
        BlockKind.APPEND: len(result.append),
        BlockKind.INSERT: len(result.inserts),
    }
    for kind, count in counts.items():
        if count:
            sink.increment("markers.blocks", count, labels={"kind": kind.value})
    if used_fallback:
        sink.increment("markers.fallback")

    logger.debug(
        f"Parsed auxiliary response: prepend={counts[BlockKind.PREPEND]} "
        f"append={counts[BlockKind.APPEND]} insert={counts[BlockKind.INSERT]} "
        f"recognized={recognized} fallback={used_fallback}"
    )
