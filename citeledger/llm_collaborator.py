"""LLM Collaborator Module - Ollama-backed citation detection and style prose.

Marker positions always come from the rule-based parser, since offsets must
match the original text exactly. The model is asked for the parts rules do
poorly: splitting reference lines into fields during detection, and
writing reference lines in the target style during conversion.

Any transport or parsing failure raises ExternalCollaboratorError so the
calling operation aborts without writing change records.
"""

import json
import re
from typing import Any, Dict, List, Optional

import requests
from loguru import logger

from .citation_detector import RuleBasedCitationDetector
from .collaborators import DetectionResult, StyleConversionResult
from .config import config
from .errors import ExternalCollaboratorError
from .marker_parser import CitationMarker
from .reference_ledger import ReferenceEntry
from .style_converter import RuleBasedStyleConverter, StyleCatalogue


class OllamaCitationCollaborator:
    """
    Citation detector and style converter backed by a local Ollama model.
    """

    DETECTION_PROMPT = """You are a bibliographic reference parser. Split each reference below into fields and return JSON.

Return ONLY valid JSON in this exact format:
{{
  "detected_style": "APA" or "Vancouver" or "IEEE" or "Chicago" or "MLA" or "Harvard" or "AMA",
  "references": [
    {{
      "index": 0,
      "authors": ["Smith J", "Jones K"],
      "year": "2020",
      "title": "Article title",
      "journal": "Journal name",
      "volume": "12",
      "issue": "3",
      "pages": "45-67",
      "doi": "10.1000/xyz"
    }}
  ]
}}

Use null for fields that cannot be determined. Do not include any explanation, just the JSON.

---
REFERENCES:
{references}
"""

    CONVERSION_PROMPT = """You are a citation style expert. Rewrite every reference below in {style} style.

Return ONLY valid JSON mapping each reference id to its rewritten text:
{{
  "references": {{
    "<id>": "Rewritten reference text"
  }}
}}

Do not number the references. Do not include any explanation, just the JSON.

---
REFERENCES (JSON):
{references}
"""

    def __init__(
        self,
        model: Optional[str] = None,
        ollama_url: Optional[str] = None,
        timeout: Optional[float] = None,
        catalogue: Optional[StyleCatalogue] = None,
    ):
        self.model = model or config.OLLAMA_MODEL
        base_url = (ollama_url or config.OLLAMA_URL).rstrip('/')
        self.generate_url = f"{base_url}/api/generate"
        self.timeout = timeout or config.LLM_TIMEOUT
        self.detector = RuleBasedCitationDetector()
        self.converter = RuleBasedStyleConverter(catalogue)

    # =========================================================================
    # CitationDetector
    # =========================================================================

    def detect_citations(self, text: str) -> DetectionResult:
        result = self.detector.detect_citations(text)
        if not result.references:
            return result

        listing = '\n'.join(f"[{i}] {entry.original_text}" for i, entry in enumerate(result.references))
        data = self._call_json(self.DETECTION_PROMPT.format(references=listing))

        parsed = data.get('references')
        if not isinstance(parsed, list):
            raise ExternalCollaboratorError("LLM detection response has no reference list", collaborator="ollama")

        for item in parsed:
            if not isinstance(item, dict):
                continue
            index = item.get('index')
            if not isinstance(index, int) or not 0 <= index < len(result.references):
                logger.warning(f"Ignoring LLM reference with bad index: {index!r}")
                continue
            self._merge_fields(result.references[index], item)

        style = data.get('detected_style')
        if isinstance(style, str) and style in self.converter.catalogue:
            result.detected_style = self.converter.catalogue.get(style).name
        logger.info(f"LLM parsed {len(parsed)} references (style: {result.detected_style})")
        return result

    @staticmethod
    def _merge_fields(entry: ReferenceEntry, item: Dict[str, Any]):
        authors = item.get('authors')
        if isinstance(authors, list) and authors:
            entry.authors = [str(a).strip() for a in authors if str(a).strip()]
        for name in ('year', 'title', 'journal', 'volume', 'issue', 'pages', 'doi'):
            value = item.get(name)
            if value not in (None, ""):
                setattr(entry, name, str(value).strip())

    # =========================================================================
    # StyleConverter
    # =========================================================================

    def convert_style(
        self,
        references: List[ReferenceEntry],
        markers: List[CitationMarker],
        target_style: str,
    ) -> StyleConversionResult:
        result = self.converter.convert_style(references, markers, target_style)
        if not references:
            return result

        payload = [
            {'id': e.id, 'text': e.display_text, 'authors': e.authors, 'year': e.year, 'title': e.title,
             'journal': e.journal, 'volume': e.volume, 'issue': e.issue, 'pages': e.pages, 'doi': e.doi}
            for e in references
        ]
        data = self._call_json(self.CONVERSION_PROMPT.format(
            style=result.target_style,
            references=json.dumps(payload, ensure_ascii=False, indent=2),
        ))

        rewritten = data.get('references')
        if not isinstance(rewritten, dict):
            raise ExternalCollaboratorError("LLM conversion response has no reference map", collaborator="ollama")

        missing = 0
        for entry in references:
            text = rewritten.get(entry.id)
            if isinstance(text, str) and text.strip():
                result.converted_references[entry.id] = text.strip()
            else:
                missing += 1
        if missing:
            logger.warning(f"LLM skipped {missing} references; kept rule-based rendering for them")
        return result

    # =========================================================================
    # Transport
    # =========================================================================

    def _call_json(self, prompt: str) -> Dict[str, Any]:
        """Call Ollama and return the JSON object in its response."""
        response = self._call_ollama(prompt)
        json_match = re.search(r'\{.*\}', response, re.DOTALL)
        if not json_match:
            logger.warning(f"No JSON found in LLM response: {response[:200]}")
            raise ExternalCollaboratorError("LLM response contained no JSON", collaborator="ollama")
        try:
            data = json.loads(json_match.group())
        except json.JSONDecodeError as e:
            raise ExternalCollaboratorError("LLM response was not valid JSON", cause=e, collaborator="ollama")
        if not isinstance(data, dict):
            raise ExternalCollaboratorError("LLM response JSON was not an object", collaborator="ollama")
        return data

    def _call_ollama(self, prompt: str) -> str:
        """Call Ollama API for LLM inference."""
        try:
            response = requests.post(
                self.generate_url,
                json={
                    "model": self.model,
                    "prompt": prompt,
                    "stream": False,
                    "format": "json",
                    "options": {
                        "temperature": 0.1,
                    }
                },
                timeout=self.timeout
            )
            response.raise_for_status()
            return response.json().get('response', '')

        except requests.exceptions.ConnectionError as e:
            logger.warning("Ollama not available")
            raise ExternalCollaboratorError("Ollama is not reachable", cause=e, collaborator="ollama")
        except requests.exceptions.Timeout as e:
            logger.warning("Ollama request timed out")
            raise ExternalCollaboratorError("Ollama request timed out", cause=e, collaborator="ollama")
        except (requests.exceptions.RequestException, ValueError) as e:
            logger.error(f"Ollama API error: {e}")
            raise ExternalCollaboratorError(f"Ollama API error: {e}", cause=e, collaborator="ollama")


__all__ = ['OllamaCitationCollaborator']
