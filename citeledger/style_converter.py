"""Style Converter Module - Citation style catalogue and rule-based conversion.

The catalogue (data/citation_styles.yaml) says how each style cites in the
text: numerically, author-year, or with footnote superscripts. Reference
lines are re-rendered from the parsed bibliographic fields; entries whose
fields could not be parsed keep their display text.
"""

import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, Dict, List, Optional

import yaml
from loguru import logger

from .collaborators import StyleConversionResult
from .config import config
from .errors import InvalidOperationError
from .marker_parser import CitationMarker, MarkerKind, format_marker, format_numbers
from .reference_ledger import ReferenceEntry


CONVENTION_NUMERIC = "numeric"
CONVENTION_AUTHOR_YEAR = "author-year"
CONVENTION_FOOTNOTE = "footnote"

ENCLOSURE_KINDS = {
    'bracket': MarkerKind.NUMERIC_BRACKET,
    'paren': MarkerKind.NUMERIC_PAREN,
    'superscript': MarkerKind.NUMERIC_SUPERSCRIPT,
}

NARRATIVE_PATTERN = re.compile(r'^(?P<names>.+?)\s+\(\d{4}[a-z]?[^)]*\)$')


@dataclass
class StyleDefinition:
    """One entry of the style catalogue."""
    name: str
    convention: str
    description: str = ""
    enclosure: Optional[str] = None
    in_text: str = "{authors}, {year}"
    author_joiner: str = "&"
    max_authors: int = 3
    aliases: List[str] = field(default_factory=list)

    @property
    def is_numeric(self) -> bool:
        return self.convention in (CONVENTION_NUMERIC, CONVENTION_FOOTNOTE)

    @property
    def marker_kind(self) -> MarkerKind:
        if not self.is_numeric:
            return MarkerKind.AUTHOR_YEAR
        return ENCLOSURE_KINDS.get(self.enclosure or 'paren', MarkerKind.NUMERIC_PAREN)


class StyleCatalogue:
    """Style definitions loaded from YAML, looked up by name or alias."""

    def __init__(self, styles_path: Optional[str] = None):
        self.styles_path = Path(styles_path or config.STYLES_PATH)
        self.styles: Dict[str, StyleDefinition] = {}
        self._aliases: Dict[str, str] = {}
        self._load()

    def _load(self):
        try:
            with open(self.styles_path, 'r', encoding='utf-8') as f:
                data = yaml.safe_load(f) or {}
        except (OSError, yaml.YAMLError) as e:
            logger.error(f"Failed to load style catalogue {self.styles_path}: {e}")
            raise

        for name, spec in (data.get('styles') or {}).items():
            style = StyleDefinition(name=name, **spec)
            self.styles[name.lower()] = style
            for alias in style.aliases:
                self._aliases[alias.lower()] = name.lower()
        logger.debug(f"Loaded {len(self.styles)} citation styles from {self.styles_path}")

    def get(self, name: str) -> StyleDefinition:
        key = name.lower().strip()
        key = self._aliases.get(key, key)
        if key not in self.styles:
            available = ', '.join(self.names())
            raise InvalidOperationError(f"Unknown citation style: '{name}'. Available styles: {available}")
        return self.styles[key]

    def names(self) -> List[str]:
        return [s.name for s in self.styles.values()]

    def __contains__(self, name: str) -> bool:
        key = name.lower().strip()
        return self._aliases.get(key, key) in self.styles


_catalogue: Optional[StyleCatalogue] = None


def get_catalogue() -> StyleCatalogue:
    """Shared catalogue loaded from config.STYLES_PATH."""
    global _catalogue
    if _catalogue is None:
        _catalogue = StyleCatalogue()
    return _catalogue


# =============================================================================
# Author helpers
# =============================================================================

def split_name(author: str):
    """'Smith, J. A.' / 'Smith JA' -> ('Smith', 'JA')."""
    parts = author.replace(',', ' ').replace('.', ' ').split()
    if not parts:
        return "", ""
    # "JA" is already a run of initials; "John" contributes "J"
    return parts[0], ''.join(p if p.isupper() else p[0] for p in parts[1:])


def in_text_authors(authors: List[str], joiner: str = "&") -> str:
    """Smith / Smith & Jones / Smith et al."""
    surnames = [split_name(a)[0] for a in authors if a.strip()]
    if not surnames:
        return "Anon."
    if len(surnames) == 1:
        return surnames[0]
    if len(surnames) == 2:
        return f"{surnames[0]} {joiner} {surnames[1]}"
    return f"{surnames[0]} et al."


def _authors_vancouver(authors: List[str], max_authors: int) -> str:
    """Smith JA, Jones B, et al"""
    names = [f"{last} {initials}".strip() for last, initials in map(split_name, authors)]
    if len(names) <= max_authors:
        return ', '.join(names)
    return ', '.join(names[:max_authors]) + ', et al'


def _authors_apa(authors: List[str], max_authors: int) -> str:
    """Smith, J. A., Jones, B., & Brown, C."""
    names = []
    for last, initials in map(split_name, authors):
        dotted = ' '.join(f"{i}." for i in initials)
        names.append(f"{last}, {dotted}" if dotted else last)
    if len(names) == 1:
        return names[0]
    if len(names) == 2:
        return f"{names[0]}, & {names[1]}"
    if len(names) <= max_authors:
        return ', '.join(names[:-1]) + ', & ' + names[-1]
    return ', '.join(names[:max_authors - 1]) + ', ... ' + names[-1]


def _authors_given_first(authors: List[str], max_authors: int, final: str = "and") -> str:
    """J. A. Smith, B. Jones, and C. Brown"""
    names = []
    for last, initials in map(split_name, authors):
        dotted = ' '.join(f"{i}." for i in initials)
        names.append(f"{dotted} {last}".strip())
    if len(names) > max_authors:
        return f"{names[0]} et al."
    if len(names) == 1:
        return names[0]
    if len(names) == 2:
        return f"{names[0]} {final} {names[1]}"
    return ', '.join(names[:-1]) + f", {final} " + names[-1]


def _authors_mla(authors: List[str], max_authors: int) -> str:
    """Smith, J., and B. Jones / Smith, J., et al."""
    first_last, first_initials = split_name(authors[0])
    first = f"{first_last}, {' '.join(i + '.' for i in first_initials)}".strip().rstrip(',')
    if len(authors) == 1:
        return first
    if len(authors) == 2 and max_authors >= 2:
        return f"{first}, and {_authors_given_first(authors[1:], 1)}"
    return f"{first}, et al."


# =============================================================================
# Reference formatters
# =============================================================================

def _source(entry: ReferenceEntry, volume_fmt: str, issue_fmt: str, pages_fmt: str) -> List[str]:
    parts = []
    if entry.volume:
        parts.append(volume_fmt.format(entry.volume))
    if entry.issue:
        parts.append(issue_fmt.format(entry.issue))
    if entry.pages:
        parts.append(pages_fmt.format(entry.pages))
    return parts


def format_vancouver(entry: ReferenceEntry, style: StyleDefinition) -> str:
    """Smith J, Jones K. Title. Journal. 2020;12(3):45-67. doi:10.x/y"""
    parts = []
    if entry.authors:
        parts.append(f"{_authors_vancouver(entry.authors, style.max_authors)}.")
    parts.append(f"{entry.title}.")
    if entry.journal:
        parts.append(f"{entry.journal}.")
    source = entry.year or ""
    if entry.volume:
        source += f";{entry.volume}"
        if entry.issue:
            source += f"({entry.issue})"
    if entry.pages:
        source += f":{entry.pages}"
    if source:
        parts.append(f"{source}.")
    if entry.doi:
        parts.append(f"doi:{entry.doi}")
    return ' '.join(parts)


def format_apa(entry: ReferenceEntry, style: StyleDefinition) -> str:
    """Smith, J., & Jones, K. (2020). Title. Journal, 12(3), 45-67. https://doi.org/10.x/y"""
    year = f"({entry.year})" if entry.year else "(n.d.)"
    authors = _authors_apa(entry.authors, style.max_authors) if entry.authors else ""
    parts = [f"{authors} {year}.".strip(), f"{entry.title}."]
    if entry.journal:
        vol_issue = entry.volume or ""
        if entry.issue:
            vol_issue += f"({entry.issue})"
        tail = ', '.join(p for p in (entry.journal, vol_issue, entry.pages) if p)
        parts.append(f"{tail}.")
    if entry.doi:
        parts.append(f"https://doi.org/{entry.doi}")
    return ' '.join(parts)


def format_harvard(entry: ReferenceEntry, style: StyleDefinition) -> str:
    """Smith, J. and Jones, K. (2020) Title. Journal, 12(3), pp. 45-67."""
    names = []
    for last, initials in map(split_name, entry.authors):
        dotted = ''.join(f"{i}." for i in initials)
        names.append(f"{last}, {dotted}" if dotted else last)
    if len(names) > style.max_authors:
        authors = f"{names[0]} et al."
    elif len(names) > 1:
        authors = ', '.join(names[:-1]) + ' and ' + names[-1]
    else:
        authors = names[0] if names else ""
    year = f"({entry.year})" if entry.year else "(n.d.)"
    parts = [f"{authors} {year}".strip(), f"{entry.title}."]
    if entry.journal:
        tail = [entry.journal]
        if entry.volume:
            tail.append(entry.volume + (f"({entry.issue})" if entry.issue else ""))
        if entry.pages:
            tail.append(f"pp. {entry.pages}")
        parts.append(f"{', '.join(tail)}.")
    if entry.doi:
        parts.append(f"doi:{entry.doi}")
    return ' '.join(parts)


def format_mla(entry: ReferenceEntry, style: StyleDefinition) -> str:
    """Smith, J., and K. Jones. "Title." Journal, vol. 12, no. 3, 2020, pp. 45-67."""
    parts = []
    if entry.authors:
        parts.append(_authors_mla(entry.authors, style.max_authors).rstrip('.') + '.')
    parts.append(f"\"{entry.title}.\"")
    tail = [entry.journal] if entry.journal else []
    if entry.volume:
        tail.append(f"vol. {entry.volume}")
    if entry.issue:
        tail.append(f"no. {entry.issue}")
    if entry.year:
        tail.append(entry.year)
    if entry.pages:
        tail.append(f"pp. {entry.pages}")
    if tail:
        parts.append(f"{', '.join(tail)}.")
    return ' '.join(parts)


def format_chicago(entry: ReferenceEntry, style: StyleDefinition) -> str:
    """Smith, J., and K. Jones. "Title." Journal 12, no. 3 (2020): 45-67."""
    parts = []
    if entry.authors:
        parts.append(_authors_mla(entry.authors, style.max_authors).rstrip('.') + '.')
    parts.append(f"\"{entry.title}.\"")
    source = entry.journal or ""
    if entry.volume:
        source += f" {entry.volume}"
    if entry.issue:
        source += f", no. {entry.issue}"
    if entry.year:
        source += f" ({entry.year})"
    if entry.pages:
        source += f": {entry.pages}"
    if source.strip():
        parts.append(f"{source.strip()}.")
    if entry.doi:
        parts.append(f"https://doi.org/{entry.doi}.")
    return ' '.join(parts)


def format_ieee(entry: ReferenceEntry, style: StyleDefinition) -> str:
    """J. Smith and K. Jones, "Title," Journal, vol. 12, no. 3, pp. 45-67, 2020."""
    head = f"{_authors_given_first(entry.authors, style.max_authors)}, " if entry.authors else ""
    tail = [entry.journal] if entry.journal else []
    tail += _source(entry, "vol. {}", "no. {}", "pp. {}")
    if entry.year:
        tail.append(entry.year)
    if entry.doi:
        tail.append(f"doi: {entry.doi}")
    if not tail:
        return f"{head}\"{entry.title}.\""
    return f"{head}\"{entry.title},\" {', '.join(tail)}."


REFERENCE_FORMATTERS: Dict[str, Callable[[ReferenceEntry, StyleDefinition], str]] = {
    'vancouver': format_vancouver,
    'ama': format_vancouver,
    'apa': format_apa,
    'harvard': format_harvard,
    'mla': format_mla,
    'chicago': format_chicago,
    'ieee': format_ieee,
}


def format_reference(entry: ReferenceEntry, style: StyleDefinition) -> str:
    """Render a reference line in the style; unparsed entries keep their text."""
    if not entry.title:
        logger.debug(f"Reference {entry.id} has no parsed title; keeping display text")
        return entry.display_text
    formatter = REFERENCE_FORMATTERS.get(style.name.lower(), format_vancouver)
    return formatter(entry, style)


def format_in_text(entries: List[ReferenceEntry], style: StyleDefinition, enclose: bool = True) -> str:
    """Author-year in-text citation for one or more references."""
    parts = []
    for entry in entries:
        authors = in_text_authors(entry.authors, style.author_joiner)
        parts.append(style.in_text.format(authors=authors, year=entry.year or "n.d."))
    body = '; '.join(parts)
    return f"({body})" if enclose else body


# =============================================================================
# Converter
# =============================================================================

class RuleBasedStyleConverter:
    """Converts references and markers between styles without an LLM."""

    def __init__(self, catalogue: Optional[StyleCatalogue] = None):
        self.catalogue = catalogue or get_catalogue()

    def convert_style(
        self,
        references: List[ReferenceEntry],
        markers: List[CitationMarker],
        target_style: str,
    ) -> StyleConversionResult:
        """
        Args:
            references: Entries in their target order (position keys final)
            markers: Markers with numbers already matching that order
            target_style: Style name or alias

        Returns:
            StyleConversionResult keyed by entry and marker id
        """
        style = self.catalogue.get(target_style)
        result = StyleConversionResult(target_style=style.name)

        for entry in references:
            result.converted_references[entry.id] = format_reference(entry, style)

        for marker in markers:
            if marker.orphaned:
                continue
            cited = sorted(
                (e for e in references if marker.id in e.citation_ids),
                key=lambda e: e.number,
            )
            text = self._convert_marker(marker, cited, style)
            if text is None:
                logger.debug(f"Marker {marker.raw_text!r} has no linked reference; left as-is")
                continue
            result.converted_markers[marker.id] = text
            result.marker_kinds[marker.id] = style.marker_kind

        logger.info(
            f"Converted {len(result.converted_references)} references and "
            f"{len(result.converted_markers)} markers to {style.name}"
        )
        return result

    def _convert_marker(
        self,
        marker: CitationMarker,
        cited: List[ReferenceEntry],
        style: StyleDefinition,
    ) -> Optional[str]:
        if style.is_numeric:
            numbers = marker.numbers if marker.is_numeric else [e.number for e in cited]
            if not numbers:
                return None
            if marker.group_id:
                return format_numbers(numbers)
            text = format_marker(numbers, style.marker_kind)
            narrative = NARRATIVE_PATTERN.match(marker.raw_text) if not marker.is_numeric else None
            if narrative:
                return f"{narrative.group('names')} {text}"
            return text

        if not cited:
            return None
        return format_in_text(cited, style, enclose=not marker.group_id)


__all__ = [
    'StyleDefinition',
    'StyleCatalogue',
    'get_catalogue',
    'RuleBasedStyleConverter',
    'format_reference',
    'format_in_text',
    'in_text_authors',
    'split_name',
    'CONVENTION_NUMERIC',
    'CONVENTION_AUTHOR_YEAR',
    'CONVENTION_FOOTNOTE',
]
