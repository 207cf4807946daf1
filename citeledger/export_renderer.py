"""Export Renderer Module - Applies a composed diff to the original manuscript.

Tracked output uses CriticMarkup so any Markdown editor that understands it
can accept or reject each change:

    {~~(2)~>(1)~~}   substitution
    {--(3)--}        deletion (orphaned marker or removed reference)

Clean output is the accepted text with orphaned markers removed.
"""

import re
from typing import Dict, List, Optional, Tuple
from loguru import logger

from .chain_composer import ComposedDiff
from .reference_ledger import ReferenceEntry, ReferenceLedger


MODE_TRACKED = "tracked"
MODE_CLEAN = "clean"

BULLET_PREFIX = re.compile(r'^([-*]\s+)')
BRACKET_NUMBER_PREFIX = re.compile(r'^\[\d+\]\s')


def substitution(old: str, new: str) -> str:
    return f"{{~~{old}~>{new}~~}}"


def deletion(old: str) -> str:
    return f"{{--{old}--}}"


def render_reference_line(entry: ReferenceEntry, numbered: bool) -> str:
    """The reference list line for an entry in its current position."""
    if numbered:
        if BRACKET_NUMBER_PREFIX.match(entry.original_text):
            return f"[{entry.number}] {entry.display_text}"
        return f"{entry.number}. {entry.display_text}"
    bullet = BULLET_PREFIX.match(entry.original_text)
    return f"{bullet.group(1) if bullet else ''}{entry.display_text}"


class ExportRenderer:
    """Renders tracked or clean exports."""

    def render(
        self,
        original_text: str,
        diff: ComposedDiff,
        ledger: ReferenceLedger,
        numbered: bool,
        reference_section: Optional[Tuple[int, int]] = None,
        mode: str = MODE_TRACKED,
    ) -> str:
        """
        Args:
            original_text: Manuscript as ingested
            diff: Composed diff for the document
            ledger: Current reference ledger
            numbered: Whether the reference list is numbered
            reference_section: (header line, end line) of the References section
            mode: "tracked" or "clean"

        Returns:
            The exported manuscript text
        """
        if mode not in (MODE_TRACKED, MODE_CLEAN):
            raise ValueError(f"Unknown export mode '{mode}'")

        lines = original_text.split('\n')
        edits = self._collect_edits(lines, diff, reference_section, mode)

        output = list(lines)
        for line_index, line_edits in edits.items():
            output[line_index] = self._apply_edits(lines[line_index], line_edits, mode)

        if reference_section:
            header, end = reference_section
            rebuilt = self._rebuild_references(lines[header + 1:end], diff, ledger, numbered, mode)
            output = output[:header + 1] + rebuilt + output[end:]

        logger.info(f"Rendered {mode} export: {diff.summary()}")
        return '\n'.join(output)

    # =========================================================================
    # Body
    # =========================================================================

    def _collect_edits(
        self,
        lines: List[str],
        diff: ComposedDiff,
        reference_section: Optional[Tuple[int, int]],
        mode: str,
    ) -> Dict[int, List[Tuple[int, int, str]]]:
        """Map line index -> [(start, end, replacement)] without overlaps."""
        edits: Dict[int, List[Tuple[int, int, str]]] = {}

        def free(line_index: int, start: int, end: int) -> bool:
            return all(end <= s or e <= start for s, e, _ in edits.get(line_index, []))

        def add(line_index: int, start: int, end: int, replacement: str):
            edits.setdefault(line_index, []).append((start, end, replacement))

        def change_text(old: str, new: str) -> str:
            return substitution(old, new) if mode == MODE_TRACKED else new

        def orphan_text(old: str) -> str:
            return deletion(old) if mode == MODE_TRACKED else ""

        value_changes = []
        value_orphans = []

        for entry in diff.changed:
            if not entry.has_position:
                value_changes.append(entry)
                continue
            line = lines[entry.paragraph_index]
            if line[entry.start:entry.end] != entry.original_text:
                logger.warning(f"Marker text mismatch at line {entry.paragraph_index}; falling back to search")
                value_changes.append(entry)
                continue
            add(entry.paragraph_index, entry.start, entry.end, change_text(entry.original_text, entry.current_text))

        for orphan in diff.orphaned:
            if not orphan.has_position:
                value_orphans.append(orphan)
                continue
            add(orphan.paragraph_index, orphan.start, orphan.end, orphan_text(orphan.original_text))

        body = [
            i for i in range(len(lines))
            if not (reference_section and reference_section[0] <= i < reference_section[1])
        ]
        for entry in value_changes:
            self._search_and_add(lines, body, entry.original_text, change_text(entry.original_text, entry.current_text), free, add)
        for orphan in value_orphans:
            self._search_and_add(lines, body, orphan.original_text, orphan_text(orphan.original_text), free, add)
        return edits

    @staticmethod
    def _search_and_add(lines, body, needle, replacement, free, add):
        found = False
        for line_index in body:
            for match in re.finditer(re.escape(needle), lines[line_index]):
                if free(line_index, match.start(), match.end()):
                    add(line_index, match.start(), match.end(), replacement)
                    found = True
        if not found:
            logger.warning(f"Could not locate {needle!r} in the original text")

    @staticmethod
    def _apply_edits(line: str, edits: List[Tuple[int, int, str]], mode: str) -> str:
        for start, end, replacement in sorted(edits, key=lambda e: e[0], reverse=True):
            if mode == MODE_CLEAN and replacement == "":
                # Drop the space before a removed marker when punctuation or a space follows
                following = line[end:end + 1]
                if start > 0 and line[start - 1] == ' ' and (not following or following in ' .,;:!?)'):
                    start -= 1
            line = line[:start] + replacement + line[end:]
        return line

    # =========================================================================
    # References section
    # =========================================================================

    def _rebuild_references(
        self,
        section_lines: List[str],
        diff: ComposedDiff,
        ledger: ReferenceLedger,
        numbered: bool,
        mode: str,
    ) -> List[str]:
        entry_lines = [line.strip() for line in section_lines if line.strip()]
        leading = 0
        while leading < len(section_lines) and not section_lines[leading].strip():
            leading += 1
        trailing = 0
        while trailing < len(section_lines) - leading and not section_lines[len(section_lines) - 1 - trailing].strip():
            trailing += 1
        inner = section_lines[leading:len(section_lines) - trailing]
        spaced = any(not line.strip() for line in inner)

        rendered: List[str] = []
        for entry in ledger:
            line = render_reference_line(entry, numbered)
            if mode == MODE_TRACKED and entry.original_text and line != entry.original_text:
                line = substitution(entry.original_text, line)
            rendered.append(line)

        if mode == MODE_TRACKED:
            for removed in sorted(diff.deleted_references, key=lambda r: self._original_rank(entry_lines, r.original_text)):
                rank = self._original_rank(entry_lines, removed.original_text)
                rendered.insert(min(rank, len(rendered)), deletion(removed.original_text))

        body: List[str] = []
        for index, line in enumerate(rendered):
            if spaced and index:
                body.append("")
            body.append(line)
        return [""] * leading + body + [""] * trailing

    @staticmethod
    def _original_rank(entry_lines: List[str], text: str) -> int:
        try:
            return entry_lines.index(text)
        except ValueError:
            return len(entry_lines)


__all__ = [
    'ExportRenderer',
    'render_reference_line',
    'substitution',
    'deletion',
    'MODE_TRACKED',
    'MODE_CLEAN',
]
