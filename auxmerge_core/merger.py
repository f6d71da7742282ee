"""
Merge Engine
============

Combines primary text with a SecondaryInstructionSet. Everything here is pure:
same inputs, same output, no I/O.

Author: auxmerge contributors | 2026-10-19
"""

import logging
import re
from typing import List, Optional, Tuple

from .markers import SecondaryInstructionSet, parse_markers

logger = logging.getLogger(__name__)

PARAGRAPH_SEPARATOR = "\n\n"
LINE_SEPARATOR = "\n"
BLOCK_SEPARATOR = "\n\n"

_PARAGRAPH_BREAK = re.compile(r"\n\n+")


def split_into_paragraphs(text: str) -> Tuple[List[str], str]:
    """
    Split text into paragraphs.

    Blank-line separated paragraphs are preferred; text without any blank line
    is split into single lines instead.

    Returns:
        (paragraphs, separator used to join them back)
    """
    paragraphs = _PARAGRAPH_BREAK.split(text)
    if len(paragraphs) > 1:
        return paragraphs, PARAGRAPH_SEPARATOR
    return text.split(LINE_SEPARATOR), LINE_SEPARATOR


def join_paragraphs(paragraphs: List[str], separator: str = PARAGRAPH_SEPARATOR) -> str:
    return separator.join(paragraphs)


def merge(primary_text: str, instructions: Optional[SecondaryInstructionSet]) -> str:
    """
    Render primary text with secondary content spliced in.

    Inserts are applied in their stored order (position descending), so each
    target index refers to the original paragraph numbering. Positions past the
    end are clamped to the paragraph count. Several inserts at one position end
    up in reverse declaration order.

    Args:
        primary_text: Primary message text
        instructions: Parsed instructions (None returns primary_text unchanged)

    Returns:
        Rendered text
    """
    if instructions is None:
        return primary_text

    paragraphs, separator = split_into_paragraphs(primary_text)

    for insert in instructions.inserts:
        idx = min(max(insert.position, 0), len(paragraphs))
        paragraphs.insert(idx, insert.content)

    result = join_paragraphs(paragraphs, separator)

    if instructions.prepend:
        result = BLOCK_SEPARATOR.join(instructions.prepend) + BLOCK_SEPARATOR + result

    if instructions.append:
        result = result + BLOCK_SEPARATOR + BLOCK_SEPARATOR.join(instructions.append)

    return result


def process(primary_text: str, raw_secondary: Optional[str]) -> str:
    """Parse a raw auxiliary response and merge it; no usable content leaves the text as is."""
    instructions = parse_markers(raw_secondary)
    if instructions is None:
        logger.info("No auxiliary response to merge")
        return primary_text

    if not instructions.has_content():
        logger.info("Parsed auxiliary response is empty")
        return primary_text

    return merge(primary_text, instructions)
