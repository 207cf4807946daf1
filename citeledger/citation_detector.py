"""Citation Detector Module - Rule-based detection of markers and references.

Finds the References section of a Markdown manuscript, parses its entries
(numbered for numeric styles, one per line for author-year styles) and
runs the marker parser over the body text.
"""

import re
from typing import List, Optional, Tuple
from loguru import logger

from .collaborators import DetectionResult
from .marker_parser import CitationMarker, MarkerKind, MarkerParser, is_plausible_year
from .reference_ledger import ReferenceEntry, make_position_key


class ReferenceListParser:
    """Parses the References section into ReferenceEntry objects."""

    REFERENCE_HEADER_PATTERNS = [
        r'^#{1,4}\s*References\s*$',
        r'^#{1,4}\s*Sources\s*$',
        r'^#{1,4}\s*Citations\s*$',
        r'^#{1,4}\s*Works\s+[Cc]ited\s*$',
        r'^#{1,4}\s*Bibliography\s*$',
        r'^\*\*References:?\*\*\s*$',
        r'^\*\*Works\s+[Cc]ited:?\*\*\s*$',
    ]

    # "1. Smith J. Title..." / "[1] Smith J. Title..."
    NUMBERED_REF_PATTERN = r'^(?:(\d+)\.|\[(\d+)\])\s+(.+)$'
    # "- Smith, J. (2020). Title..."
    BULLET_REF_PATTERN = r'^[-*]\s+(.+)$'

    DOI_PATTERN = r'(?:doi:\s*|https?://(?:dx\.)?doi\.org/)(10\.\d{4,9}/[^\s<>]+?)(?=[.,;]?(?:\s|$|>))'
    URL_PATTERN = r'<?(https?://[^\s<>]+?)>?(?=[.,;]?(?:\s|$))'
    # APA/Harvard: "Smith, J., & Jones, K. (2020). Title. Journal, 12(3), 45-67."
    AUTHOR_YEAR_REF_PATTERN = r'^(?P<authors>.+?)\s*\(?(?P<year>\d{4})[a-z]?\)?\.\s*(?P<rest>.+)$'
    APA_AUTHOR_PATTERN = r"([A-Z][^\W\d_]*(?:[-'’][A-Z]?[^\W\d_]+)*),\s*((?:[A-Z]\.\s*-?)+)"
    VOLUME_PATTERN = r'(\d+)\s*\((\d+)\)\s*[:,]\s*([\w-]+(?:[-–]\w+)?)'

    def find_section(self, lines: List[str]) -> Optional[Tuple[int, int]]:
        """Return (header line, end line) of the last References section."""
        found = None
        for i, line in enumerate(lines):
            if any(re.match(p, line.strip(), re.IGNORECASE) for p in self.REFERENCE_HEADER_PATTERNS):
                end = len(lines)
                for j in range(i + 1, len(lines)):
                    if re.match(r'^#{1,4}\s+\S', lines[j].strip()):
                        end = j
                        break
                found = (i, end)
        if found:
            logger.info(f"Found reference section at lines {found[0]}-{found[1]}")
        else:
            logger.warning("No reference section found")
        return found

    def parse(self, lines: List[str], section: Tuple[int, int]) -> List[ReferenceEntry]:
        """Parse every entry line in the section."""
        numbered: List[Tuple[int, ReferenceEntry]] = []
        plain: List[ReferenceEntry] = []
        for line_index in range(section[0] + 1, section[1]):
            line = lines[line_index].strip()
            if not line:
                continue
            match = re.match(self.NUMBERED_REF_PATTERN, line)
            if match:
                number = int(match.group(1) or match.group(2))
                entry = self.parse_entry(match.group(3), original_text=line)
                numbered.append((number, entry))
                continue
            bullet = re.match(self.BULLET_REF_PATTERN, line)
            body = bullet.group(1) if bullet else line
            plain.append(self.parse_entry(body, original_text=line))

        if numbered:
            entries = [entry for _, entry in sorted(numbered, key=lambda pair: pair[0])]
            if plain:
                logger.warning(f"Ignoring {len(plain)} unnumbered lines in a numbered reference list")
        else:
            entries = plain

        for index, entry in enumerate(entries):
            entry.position_key = make_position_key(index + 1)
            entry.original_index = index
        logger.info(f"Parsed {len(entries)} references")
        return entries

    def parse_entry(self, text: str, original_text: str = "") -> ReferenceEntry:
        """Pull bibliographic fields out of one reference line."""
        entry = ReferenceEntry(position_key="", display_text=text, original_text=original_text or text)

        doi = re.search(self.DOI_PATTERN, text, re.IGNORECASE)
        if doi:
            entry.doi = doi.group(1)
        url = re.search(self.URL_PATTERN, text)
        if url and not (doi and 'doi.org' in url.group(1)):
            entry.url = url.group(1)

        apa = re.match(self.AUTHOR_YEAR_REF_PATTERN, text)
        apa_authors = re.findall(self.APA_AUTHOR_PATTERN, apa.group('authors')) if apa else []
        if apa and apa_authors and is_plausible_year(int(apa.group('year'))):
            entry.authors = [f"{surname}, {initials.strip()}" for surname, initials in apa_authors]
            entry.year = apa.group('year')
            segments = [s.strip() for s in re.split(r'\.\s+', apa.group('rest')) if s.strip()]
            if segments:
                entry.title = segments[0].rstrip('.')
            if len(segments) > 1:
                entry.journal = segments[1].split(',')[0].strip()
        else:
            # Vancouver/AMA: "Smith J, Jones K. Title. Journal. 2020;12(3):45-67."
            segments = [s.strip() for s in re.split(r'\.\s+', text) if s.strip()]
            if segments:
                authors = [a.strip() for a in segments[0].split(',') if a.strip()]
                entry.authors = [a for a in authors if a.lower() not in ('et al', 'et al.')]
            if len(segments) > 1:
                entry.title = segments[1].rstrip('.')
            if len(segments) > 2:
                entry.journal = segments[2].rstrip('.')
            for year in re.findall(r'\b(\d{4})\b', text):
                if is_plausible_year(int(year)):
                    entry.year = year
                    break

        volume = re.search(self.VOLUME_PATTERN, text)
        if volume:
            entry.volume, entry.issue, entry.pages = volume.group(1), volume.group(2), volume.group(3)
        return entry


class RuleBasedCitationDetector:
    """Detects citations without any external service."""

    def __init__(self, parser: Optional[MarkerParser] = None, reference_parser: Optional[ReferenceListParser] = None):
        self.parser = parser or MarkerParser()
        self.reference_parser = reference_parser or ReferenceListParser()

    def detect_citations(self, text: str) -> DetectionResult:
        lines = text.split('\n')
        section = self.reference_parser.find_section(lines)

        markers: List[CitationMarker] = []
        for index, line in enumerate(lines):
            if section and section[0] <= index < section[1]:
                continue
            markers.extend(self.parser.parse_paragraph(line, index))

        references = self.reference_parser.parse(lines, section) if section else []
        result = DetectionResult(
            markers=markers,
            references=references,
            detected_style=self.guess_style(markers),
            reference_section=section,
        )
        logger.info(
            f"Detected {len(markers)} markers and {len(references)} references "
            f"(style: {result.detected_style or 'unknown'})"
        )
        return result

    @staticmethod
    def guess_style(markers: List[CitationMarker]) -> str:
        """Name the most likely style from the marker kinds present."""
        if not markers:
            return ""
        counts = {}
        for marker in markers:
            counts[marker.kind] = counts.get(marker.kind, 0) + 1
        kind = max(counts, key=counts.get)
        return {
            MarkerKind.NUMERIC_BRACKET: "IEEE",
            MarkerKind.NUMERIC_PAREN: "Vancouver",
            MarkerKind.NUMERIC_SUPERSCRIPT: "Chicago",
            MarkerKind.AUTHOR_YEAR: "APA",
        }[kind]


__all__ = ['ReferenceListParser', 'RuleBasedCitationDetector']
