"""
Tests for the Merge Engine

Author: auxmerge contributors | 2026-10-19
"""

import pytest

from auxmerge_core.markers import InsertBlock, SecondaryInstructionSet, parse_markers
from auxmerge_core.merger import (
    LINE_SEPARATOR,
    PARAGRAPH_SEPARATOR,
    join_paragraphs,
    merge,
    process,
    split_into_paragraphs,
)


PRIMARY = "p1\n\np2\n\np3"


class TestSplitIntoParagraphs:
    """Tests for paragraph segmentation."""

    def test_blank_line_paragraphs(self):
        paragraphs, sep = split_into_paragraphs("a\n\nb\n\n\n\nc")

        assert paragraphs == ["a", "b", "c"]
        assert sep == PARAGRAPH_SEPARATOR

    def test_single_line_fallback(self):
        """Test text without blank lines is split into lines."""
        paragraphs, sep = split_into_paragraphs("a\nb\nc")

        assert paragraphs == ["a", "b", "c"]
        assert sep == LINE_SEPARATOR

    def test_single_paragraph(self):
        paragraphs, sep = split_into_paragraphs("only one")

        assert paragraphs == ["only one"]
        assert sep == LINE_SEPARATOR

    def test_join(self):
        assert join_paragraphs(["a", "b"]) == "a\n\nb"
        assert join_paragraphs(["a", "b"], LINE_SEPARATOR) == "a\nb"


class TestMerge:
    """Tests for merge()."""

    def test_none_instructions_returns_primary(self):
        assert merge(PRIMARY, None) is PRIMARY

    def test_plain_response_round_trip(self):
        """Test an unmarked response is prefixed with a blank line."""
        instructions = parse_markers("plain text")

        assert instructions.prepend == ["plain text"]
        assert merge(PRIMARY, instructions) == "plain text\n\n" + PRIMARY

    def test_blank_line_runs_collapse(self):
        """Test runs of blank lines come back as a single blank line."""
        text = "first\n\n\n\nsecond\nstill second"

        assert merge(text, SecondaryInstructionSet()) == text.replace("\n\n\n\n", "\n\n")

    def test_empty_set_on_normalized_text_is_identity(self):
        assert merge(PRIMARY, SecondaryInstructionSet()) == PRIMARY

    def test_prepend_and_append(self):
        instructions = SecondaryInstructionSet(prepend=["A", "B"], append=["Y", "Z"])

        result = merge(PRIMARY, instructions)

        assert result == "A\n\nB\n\np1\n\np2\n\np3\n\nY\n\nZ"

    def test_insert_positions(self):
        """Test position N places content after the Nth paragraph."""
        instructions = SecondaryInstructionSet(inserts=[InsertBlock(2, "X"), InsertBlock(0, "W")])

        result = merge(PRIMARY, instructions)

        assert result == "W\n\np1\n\np2\n\nX\n\np3"

    def test_same_slot_inserts_reverse_declaration_order(self):
        """Test two inserts at position 1 declared A then B give [p1, B, A, p2, p3]."""
        instructions = parse_markers("[INSERT:1]A[/INSERT][INSERT:1]B[/INSERT]")

        result = merge(PRIMARY, instructions)

        assert result.split("\n\n") == ["p1", "B", "A", "p2", "p3"]

    def test_descending_order_keeps_original_numbering(self):
        """Test each insert targets the original paragraph numbering."""
        instructions = parse_markers("[INSERT:1]after-p1[/INSERT][INSERT:2]after-p2[/INSERT]")

        result = merge(PRIMARY, instructions)

        assert result.split("\n\n") == ["p1", "after-p1", "p2", "after-p2", "p3"]

    def test_clamping_before_append(self):
        """Test an out-of-range insert lands last, before appended content."""
        instructions = SecondaryInstructionSet(append=["tail"], inserts=[InsertBlock(99, "late")])

        result = merge("one\n\ntwo", instructions)

        assert result == "one\n\ntwo\n\nlate\n\ntail"

    def test_line_separator_used_for_inserts(self):
        """Test single-newline text is rejoined with single newlines."""
        instructions = SecondaryInstructionSet(inserts=[InsertBlock(1, "mid")], append=["end"])

        result = merge("a\nb", instructions)

        assert result == "a\nmid\nb\n\nend"

    def test_deterministic(self):
        """Test re-merging identical inputs gives identical output."""
        instructions = parse_markers("[PREPEND]s[/PREPEND][INSERT:1]i[/INSERT][APPEND]e[/APPEND]")

        assert merge(PRIMARY, instructions) == merge(PRIMARY, instructions)

    def test_merge_does_not_mutate_instructions(self):
        instructions = SecondaryInstructionSet(inserts=[InsertBlock(1, "x")])

        merge(PRIMARY, instructions)

        assert instructions.inserts == [InsertBlock(1, "x")]


class TestProcess:
    """Tests for the parse + merge convenience."""

    def test_process_with_markers(self):
        result = process(PRIMARY, "[APPEND]note[/APPEND]")

        assert result == PRIMARY + "\n\nnote"

    def test_process_no_response(self):
        assert process(PRIMARY, None) == PRIMARY
        assert process(PRIMARY, "") == PRIMARY

    def test_process_only_empty_blocks(self):
        assert process(PRIMARY, "[PREPEND]  [/PREPEND]") == PRIMARY

    def test_process_fallback_prepend(self):
        assert process("body", "status line") == "status line\n\nbody"
