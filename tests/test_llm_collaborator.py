"""
Tests for the Ollama-backed citation collaborator.

All HTTP traffic is mocked.
"""

import json
from unittest.mock import Mock, patch

import pytest
import requests

from citeledger.llm_collaborator import OllamaCitationCollaborator
from citeledger.engine import CitationEngine
from citeledger.errors import ExternalCollaboratorError
from citeledger.marker_parser import CitationMarker, MarkerKind
from citeledger.reference_ledger import ReferenceEntry


DOCUMENT = """Shown before [1].

## References

1. Smith J, Jones K. Some title. Some journal. 2019;4(1):1-9.
"""


def ollama_response(payload):
    response = Mock()
    response.raise_for_status = Mock()
    response.json.return_value = {'response': json.dumps(payload)}
    return response


class TestOllamaDetection:
    """LLM-assisted reference parsing."""

    def setup_method(self):
        """Set up test fixtures."""
        self.collaborator = OllamaCitationCollaborator(model="test-model", ollama_url="http://ollama:11434/")

    def test_generate_url(self):
        assert self.collaborator.generate_url == "http://ollama:11434/api/generate"

    @patch('citeledger.llm_collaborator.requests.post')
    def test_fields_merged_by_index(self, mock_post):
        mock_post.return_value = ollama_response({
            'detected_style': 'IEEE',
            'references': [{
                'index': 0,
                'authors': ['Smith J', 'Jones K'],
                'year': 2019,
                'title': 'Parsed title',
                'journal': None,
            }],
        })

        result = self.collaborator.detect_citations(DOCUMENT)

        entry = result.references[0]
        assert entry.title == "Parsed title"
        assert entry.year == "2019"
        assert entry.authors == ["Smith J", "Jones K"]
        assert entry.journal == "Some journal"
        assert result.detected_style == "IEEE"
        assert [m.raw_text for m in result.markers] == ["[1]"]

        sent = mock_post.call_args.kwargs['json']
        assert sent['model'] == "test-model"
        assert sent['format'] == "json"

    @patch('citeledger.llm_collaborator.requests.post')
    def test_bad_index_ignored(self, mock_post):
        mock_post.return_value = ollama_response({'references': [{'index': 7, 'title': 'Nope'}]})

        result = self.collaborator.detect_citations(DOCUMENT)
        assert result.references[0].title == "Some title"

    @patch('citeledger.llm_collaborator.requests.post')
    def test_no_references_skips_call(self, mock_post):
        result = self.collaborator.detect_citations("No citations here.")

        assert result.references == []
        mock_post.assert_not_called()

    @patch('citeledger.llm_collaborator.requests.post')
    def test_connection_error(self, mock_post):
        mock_post.side_effect = requests.exceptions.ConnectionError("refused")

        with pytest.raises(ExternalCollaboratorError) as exc_info:
            self.collaborator.detect_citations(DOCUMENT)

        assert exc_info.value.collaborator == "ollama"
        assert exc_info.value.retryable

    @patch('citeledger.llm_collaborator.requests.post')
    def test_non_json_response(self, mock_post):
        response = Mock()
        response.json.return_value = {'response': 'I cannot help with that.'}
        mock_post.return_value = response

        with pytest.raises(ExternalCollaboratorError):
            self.collaborator.detect_citations(DOCUMENT)


class TestOllamaConversion:
    """LLM-assisted reference rewriting."""

    def setup_method(self):
        """Set up test fixtures."""
        self.collaborator = OllamaCitationCollaborator(model="test-model")
        self.entry = ReferenceEntry(position_key="0001", display_text="Smith J. A study. 2020.",
                                    authors=["Smith, J."], year="2020", title="A study")
        self.other = ReferenceEntry(position_key="0002", display_text="Jones K. Another. 2019.",
                                    authors=["Jones, K."], year="2019", title="Another")
        self.marker = CitationMarker(raw_text="(1)", kind=MarkerKind.NUMERIC_PAREN,
                                     paragraph_index=0, start=0, end=3, numbers=[1])
        self.entry.citation_ids.add(self.marker.id)

    @patch('citeledger.llm_collaborator.requests.post')
    def test_rewritten_references_override(self, mock_post):
        mock_post.return_value = ollama_response({'references': {self.entry.id: "Smith, J. (2020). A study."}})

        result = self.collaborator.convert_style([self.entry, self.other], [self.marker], "APA")

        assert result.converted_references[self.entry.id] == "Smith, J. (2020). A study."
        # Skipped entries keep the rule-based rendering
        assert result.converted_references[self.other.id].startswith("Jones, K. (2019).")
        assert result.converted_markers[self.marker.id] == "(Smith, 2020)"

    @patch('citeledger.llm_collaborator.requests.post')
    def test_missing_reference_map(self, mock_post):
        mock_post.return_value = ollama_response({'something': 'else'})

        with pytest.raises(ExternalCollaboratorError):
            self.collaborator.convert_style([self.entry], [self.marker], "APA")

    @patch('citeledger.llm_collaborator.requests.post')
    def test_timeout_aborts_engine_conversion(self, mock_post):
        engine = CitationEngine(converter=self.collaborator)
        doc = engine.ingest(DOCUMENT, document_id="llm")
        before = engine.changes("llm", include_revoked=True)
        mock_post.side_effect = requests.exceptions.Timeout("slow")

        with pytest.raises(ExternalCollaboratorError):
            engine.convert_style("llm", "Vancouver")

        assert engine.changes("llm", include_revoked=True) == before
        assert doc.style == "IEEE"
        assert [m.raw_text for m in doc.ordered_markers()] == ["[1]"]
