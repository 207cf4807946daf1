"""Marker Parser Module - Finds in-text citation markers in manuscript text.

Numeric markers are bracketed ``[1-3]``, parenthesized ``(2, 4)`` or
superscript runs ``¹²``. Author-year markers cover ``(Smith, 2020)``,
``(Smith et al., 2020)``, ``(Smith & Jones, 2020)``, narrative
``Smith (2020)`` and the bare ``Smith, 2020`` form. Each line of the
manuscript is treated as one paragraph; offsets are relative to that line.
"""

import re
import uuid
from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, Iterable, List, Optional, Tuple
from loguru import logger

from .config import config


SUPERSCRIPT_DIGITS = "⁰¹²³⁴⁵⁶⁷⁸⁹"
_TO_SUPERSCRIPT = str.maketrans("0123456789", SUPERSCRIPT_DIGITS)
_FROM_SUPERSCRIPT = str.maketrans(SUPERSCRIPT_DIGITS + "⁻", "0123456789-")

RANGE_TOKEN_PATTERN = re.compile(r'^(\d+)\s*[-–—]\s*(\d+)$')
YEAR_TOKEN_PATTERN = re.compile(r'\b(\d{4})\b')


class MarkerKind(str, Enum):
    """Kinds of in-text citation markers."""
    NUMERIC_BRACKET = "numeric-bracket"
    NUMERIC_PAREN = "numeric-paren"
    NUMERIC_SUPERSCRIPT = "numeric-superscript"
    AUTHOR_YEAR = "author-year"

    @property
    def is_numeric(self) -> bool:
        return self is not MarkerKind.AUTHOR_YEAR


@dataclass
class CitationMarker:
    """One in-text citation occurrence.

    ``paragraph_index``/``start``/``end`` locate the marker in the original
    document and never change. ``raw_text`` holds the current text and is
    rewritten as edits apply; ``original_text`` keeps the ingest-time text.
    """
    raw_text: str
    kind: MarkerKind
    paragraph_index: int
    start: int
    end: int
    numbers: List[int] = field(default_factory=list)
    id: str = field(default_factory=lambda: uuid.uuid4().hex)
    original_text: str = ""
    group_id: Optional[str] = None
    orphaned: bool = False

    def __post_init__(self):
        if not self.original_text:
            self.original_text = self.raw_text

    @property
    def is_numeric(self) -> bool:
        return self.kind.is_numeric

    @property
    def position(self) -> Tuple[int, int]:
        """Document order key (paragraph, start offset)."""
        return (self.paragraph_index, self.start)

    def to_dict(self) -> Dict:
        return {
            'id': self.id,
            'raw_text': self.raw_text,
            'original_text': self.original_text,
            'kind': self.kind.value,
            'paragraph_index': self.paragraph_index,
            'start': self.start,
            'end': self.end,
            'numbers': list(self.numbers),
            'group_id': self.group_id,
            'orphaned': self.orphaned,
        }

    @classmethod
    def from_dict(cls, data: Dict) -> 'CitationMarker':
        return cls(
            id=data['id'],
            raw_text=data['raw_text'],
            original_text=data.get('original_text', ''),
            kind=MarkerKind(data['kind']),
            paragraph_index=data['paragraph_index'],
            start=data['start'],
            end=data['end'],
            numbers=list(data.get('numbers', [])),
            group_id=data.get('group_id'),
            orphaned=data.get('orphaned', False),
        )


# =============================================================================
# Number helpers
# =============================================================================

def to_superscript(text: str) -> str:
    """Convert ASCII digits to superscript digits (12 -> ¹²)."""
    return text.translate(_TO_SUPERSCRIPT)


def from_superscript(text: str) -> str:
    """Convert superscript digits back to ASCII digits (¹² -> 12)."""
    return text.translate(_FROM_SUPERSCRIPT)


def is_plausible_year(value: int, year_min: Optional[int] = None, year_max: Optional[int] = None) -> bool:
    """Return True for 4-digit values that read as publication years."""
    year_min = config.YEAR_MIN if year_min is None else year_min
    year_max = config.YEAR_MAX if year_max is None else year_max
    return 1000 <= value <= 9999 and year_min <= value <= year_max


def extract_numbers(text: str) -> List[int]:
    """
    Extract the sorted reference numbers cited by a numeric marker.

    Handles brackets, parentheses and superscripts, comma lists and
    hyphen/en-dash/em-dash ranges: "[3–5,7]" -> [3, 4, 5, 7].
    """
    inner = from_superscript(text).strip().strip('[]()').strip()
    numbers = set()
    for part in inner.split(','):
        token = part.strip()
        if not token:
            continue
        range_match = RANGE_TOKEN_PATTERN.match(token)
        if range_match:
            start, end = int(range_match.group(1)), int(range_match.group(2))
            if start > end:
                logger.debug(f"Reversed range '{token}' in {text!r}")
                start, end = end, start
            numbers.update(range(start, end + 1))
        elif token.isdigit():
            numbers.add(int(token))
    return sorted(numbers)


def format_numbers(numbers: Iterable[int]) -> str:
    """
    Format reference numbers compactly.

    Runs of three or more collapse to a dash ("3-5"); pairs stay
    comma-separated ("3,4"); singles stay as-is.
    """
    ordered = sorted(set(numbers))
    if not ordered:
        return ""

    parts: List[str] = []
    run_start = run_end = ordered[0]
    for num in ordered[1:] + [None]:
        if num is not None and num == run_end + 1:
            run_end = num
            continue
        if run_start == run_end:
            parts.append(str(run_start))
        elif run_end == run_start + 1:
            parts.append(f"{run_start},{run_end}")
        else:
            parts.append(f"{run_start}-{run_end}")
        if num is not None:
            run_start = run_end = num
    return ','.join(parts)


def format_marker(numbers: Iterable[int], kind: MarkerKind) -> str:
    """Render numbers as marker text of the given numeric kind."""
    body = format_numbers(numbers)
    if kind is MarkerKind.NUMERIC_BRACKET:
        return f"[{body}]"
    if kind is MarkerKind.NUMERIC_PAREN:
        return f"({body})"
    if kind is MarkerKind.NUMERIC_SUPERSCRIPT:
        return to_superscript(body)
    raise ValueError(f"Cannot format numbers as {kind.value} marker")


def detect_numeric_kind(text: str) -> Optional[MarkerKind]:
    """Guess the numeric kind of a marker from its enclosure."""
    stripped = text.strip()
    if stripped.startswith('['):
        return MarkerKind.NUMERIC_BRACKET
    if stripped.startswith('('):
        return MarkerKind.NUMERIC_PAREN
    if stripped and stripped[0] in SUPERSCRIPT_DIGITS:
        return MarkerKind.NUMERIC_SUPERSCRIPT
    return None


def normalize_marker(text: str) -> str:
    """Re-render a numeric marker in canonical form ("[1, 2, 3]" -> "[1-3]")."""
    kind = detect_numeric_kind(text)
    numbers = extract_numbers(text)
    if kind is None or not numbers:
        return text
    return format_marker(numbers, kind)


# =============================================================================
# Parser
# =============================================================================

class MarkerParser:
    """Extracts citation markers from manuscript text."""

    # Numeric styles: [1], [1,2], [1-3], (1), (1, 3-5), ¹²
    BRACKET_PATTERN = r'\[\s*(\d+(?:\s*[-–—,]\s*\d+)*)\s*\]'
    PAREN_PATTERN = r'\(\s*(\d+(?:\s*[-–—,]\s*\d+)*)\s*\)'
    SUPERSCRIPT_PATTERN = r'[⁰¹²³⁴⁵⁶⁷⁸⁹]+(?:[,⁻\-–][⁰¹²³⁴⁵⁶⁷⁸⁹]+)*'

    # Author-year building blocks
    NAME = r"[A-Z][^\W\d_]*(?:[-'’][A-Z]?[^\W\d_]+)*"
    AUTHORS = rf"{NAME}(?:\s+et\s+al\.?|\s*(?:&|and)\s*{NAME})?"
    YEAR = r"\d{4}[a-z]?"
    LOCATOR = r"(?:,\s*pp?\.\s*\d+(?:\s*[-–]\s*\d+)?)?"
    GROUP = rf"{AUTHORS},?\s+{YEAR}{LOCATOR}"

    # (Smith, 2020) / (Smith et al., 2020; Jones & Lee, 2019)
    PAREN_AUTHOR_YEAR_PATTERN = rf"\(\s*({GROUP}(?:\s*;\s*{GROUP})*)\s*\)"
    # Smith (2020) / Smith et al. (2020)
    NARRATIVE_PATTERN = rf"\b{AUTHORS}\s+\({YEAR}{LOCATOR}\)"
    # Smith, 2020 / Smith et al., 2020
    BARE_AUTHOR_YEAR_PATTERN = rf"\b{AUTHORS},\s+{YEAR}\b"

    def __init__(self, year_min: Optional[int] = None, year_max: Optional[int] = None):
        self.year_min = config.YEAR_MIN if year_min is None else year_min
        self.year_max = config.YEAR_MAX if year_max is None else year_max

    def parse(self, text: str) -> List[CitationMarker]:
        """Parse every paragraph (line) of the text into ordered markers."""
        markers: List[CitationMarker] = []
        for index, line in enumerate(text.split('\n')):
            markers.extend(self.parse_paragraph(line, index))
        logger.info(f"Parsed {len(markers)} citation markers")
        return markers

    def parse_paragraph(self, line: str, paragraph_index: int) -> List[CitationMarker]:
        """Parse one paragraph; overlapping matches resolve by family priority."""
        candidates: List[CitationMarker] = []
        candidates.extend(self._find_brackets(line, paragraph_index))
        candidates.extend(self._find_parens(line, paragraph_index))
        candidates.extend(self._find_superscripts(line, paragraph_index))
        candidates.extend(self._find_paren_author_year(line, paragraph_index))
        candidates.extend(self._find_narrative(line, paragraph_index))
        candidates.extend(self._find_bare_author_year(line, paragraph_index))

        accepted: List[CitationMarker] = []
        seen = set()
        for candidate in candidates:
            key = (candidate.start, candidate.end, candidate.kind)
            if key in seen:
                continue
            if any(candidate.start < other.end and other.start < candidate.end for other in accepted):
                logger.debug(f"Ambiguous marker {candidate.raw_text!r} overlaps an earlier match; skipped")
                continue
            seen.add(key)
            accepted.append(candidate)

        accepted.sort(key=lambda m: m.start)
        return accepted

    def _has_year(self, text: str) -> bool:
        return any(
            is_plausible_year(int(y), self.year_min, self.year_max)
            for y in YEAR_TOKEN_PATTERN.findall(text)
        )

    def _group_year_ok(self, text: str) -> bool:
        match = re.search(r'(\d{4})[a-z]?', text)
        return bool(match) and is_plausible_year(int(match.group(1)), self.year_min, self.year_max)

    def _find_brackets(self, line: str, paragraph_index: int) -> List[CitationMarker]:
        found = []
        for match in re.finditer(self.BRACKET_PATTERN, line):
            found.append(CitationMarker(
                raw_text=match.group(0),
                kind=MarkerKind.NUMERIC_BRACKET,
                paragraph_index=paragraph_index,
                start=match.start(),
                end=match.end(),
                numbers=extract_numbers(match.group(0)),
            ))
        return found

    def _find_parens(self, line: str, paragraph_index: int) -> List[CitationMarker]:
        found = []
        for match in re.finditer(self.PAREN_PATTERN, line):
            start = match.start()
            # Volume/issue such as "28(1)"
            if start > 0 and line[start - 1].isdigit():
                continue
            if self._has_year(match.group(1)):
                continue
            found.append(CitationMarker(
                raw_text=match.group(0),
                kind=MarkerKind.NUMERIC_PAREN,
                paragraph_index=paragraph_index,
                start=start,
                end=match.end(),
                numbers=extract_numbers(match.group(0)),
            ))
        return found

    def _find_superscripts(self, line: str, paragraph_index: int) -> List[CitationMarker]:
        found = []
        for match in re.finditer(self.SUPERSCRIPT_PATTERN, line):
            found.append(CitationMarker(
                raw_text=match.group(0),
                kind=MarkerKind.NUMERIC_SUPERSCRIPT,
                paragraph_index=paragraph_index,
                start=match.start(),
                end=match.end(),
                numbers=extract_numbers(match.group(0)),
            ))
        return found

    def _find_paren_author_year(self, line: str, paragraph_index: int) -> List[CitationMarker]:
        found = []
        for match in re.finditer(self.PAREN_AUTHOR_YEAR_PATTERN, line):
            inner_start = match.start(1)
            groups = [
                g for g in re.finditer(self.GROUP, match.group(1))
                if self._group_year_ok(g.group(0))
            ]
            if not groups:
                continue
            if len(groups) == 1:
                found.append(CitationMarker(
                    raw_text=match.group(0),
                    kind=MarkerKind.AUTHOR_YEAR,
                    paragraph_index=paragraph_index,
                    start=match.start(),
                    end=match.end(),
                ))
                continue

            group_id = uuid.uuid4().hex
            for group in groups:
                found.append(CitationMarker(
                    raw_text=group.group(0),
                    kind=MarkerKind.AUTHOR_YEAR,
                    paragraph_index=paragraph_index,
                    start=inner_start + group.start(),
                    end=inner_start + group.end(),
                    group_id=group_id,
                ))
        return found

    def _find_narrative(self, line: str, paragraph_index: int) -> List[CitationMarker]:
        return [
            CitationMarker(
                raw_text=match.group(0),
                kind=MarkerKind.AUTHOR_YEAR,
                paragraph_index=paragraph_index,
                start=match.start(),
                end=match.end(),
            )
            for match in re.finditer(self.NARRATIVE_PATTERN, line)
            if self._group_year_ok(match.group(0))
        ]

    def _find_bare_author_year(self, line: str, paragraph_index: int) -> List[CitationMarker]:
        return [
            CitationMarker(
                raw_text=match.group(0),
                kind=MarkerKind.AUTHOR_YEAR,
                paragraph_index=paragraph_index,
                start=match.start(),
                end=match.end(),
            )
            for match in re.finditer(self.BARE_AUTHOR_YEAR_PATTERN, line)
            if self._group_year_ok(match.group(0))
        ]

    @staticmethod
    def author_year_parts(text: str) -> Tuple[Optional[str], Optional[str]]:
        """Return (first surname, year) from an author-year marker."""
        year_match = re.search(r'(\d{4})[a-z]?', text)
        name_match = re.search(MarkerParser.NAME, text)
        return (
            name_match.group(0) if name_match else None,
            year_match.group(1) if year_match else None,
        )


__all__ = [
    'MarkerKind',
    'CitationMarker',
    'MarkerParser',
    'extract_numbers',
    'format_numbers',
    'format_marker',
    'normalize_marker',
    'detect_numeric_kind',
    'to_superscript',
    'from_superscript',
    'is_plausible_year',
    'SUPERSCRIPT_DIGITS',
]
