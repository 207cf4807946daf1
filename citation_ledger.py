#!/usr/bin/env python3
"""
CitationLedger - Renumber, reorder and restyle citations with tracked changes.

Usage:
    python citation_ledger.py "path/to/document.md" [options]

Options:
    --delete N         Delete reference N (repeatable; numbers after ingest)
    --move N:POS       Move reference N to position POS (repeatable)
    --sort KEY         Sort references: alphabetical, year or appearance
    --resequence       Renumber references by first appearance
    --convert STYLE    Convert to another citation style
    --accept           Write the accepted text instead of tracked changes
    --output, -o       Output file path (default: filename_tracked.md)
    --dry-run, -n      Preview changes without writing output
    --use-llm          Use the local Ollama model for detection and conversion
    --verbose, -v      Enable detailed logging
"""

import sys
import argparse
from pathlib import Path
from typing import List, Optional, Tuple

from rich.console import Console
from rich.table import Table
from rich.panel import Panel
from loguru import logger

from citeledger.config import config
from citeledger.logging_setup import setup_logging
from citeledger.change_log_store import ChangeLogStore
from citeledger.collaborators import LocalDocumentStore
from citeledger.engine import CitationEngine, CitationDocument
from citeledger.errors import CitationLedgerError, InvalidOperationError
from citeledger.export_renderer import MODE_CLEAN, MODE_TRACKED
from citeledger.llm_collaborator import OllamaCitationCollaborator
from citeledger.style_converter import get_catalogue

console = Console(force_terminal=True)


def parse_move(value: str) -> Tuple[int, int]:
    """Parse 'N:POS' into (N, POS)."""
    try:
        number, position = value.split(':')
        return int(number), int(position)
    except ValueError:
        raise argparse.ArgumentTypeError(f"Expected N:POS, got '{value}'")


class CitationLedgerApp:
    """Command-line pipeline: ingest, apply operations, preview, export."""

    def __init__(
        self,
        input_path: str,
        output_path: Optional[str] = None,
        verbose: bool = False,
        dry_run: bool = False,
        create_backup: bool = True,
        accept: bool = False,
        use_llm: bool = False,
        db_path: Optional[str] = None,
    ):
        self.input_path = input_path
        self.output_path = output_path
        self.dry_run = dry_run
        self.accept = accept

        setup_logging(
            log_level=config.LOG_LEVEL,
            enable_file_logging=config.ENABLE_FILE_LOGGING,
            rotation_size_mb=config.LOG_ROTATION_SIZE_MB,
            retention_count=config.LOG_RETENTION_COUNT,
            verbose=verbose,
        )

        self.document_store = LocalDocumentStore(create_backups=create_backup)
        collaborator = OllamaCitationCollaborator() if use_llm else None
        self.engine = CitationEngine(
            detector=collaborator,
            converter=collaborator,
            store=ChangeLogStore(db_path) if db_path else None,
        )

    def run(
        self,
        deletes: List[int],
        moves: List[Tuple[int, int]],
        sort_by: Optional[str],
        resequence: bool,
        convert_to: Optional[str],
    ) -> bool:
        """Run the pipeline."""
        console.print(Panel.fit(
            "[bold blue]CitationLedger[/bold blue]\n"
            "Renumber and restyle citations with tracked changes",
            border_style="blue"
        ))

        try:
            doc = self._step_ingest()
            self._step_apply(doc, deletes, moves, sort_by, resequence, convert_to)
            self._step_preview(doc)
            if self.dry_run:
                console.print("\n[bold yellow]DRY RUN - No files written[/bold yellow]")
                return True
            self._step_export(doc)
            return True

        except CitationLedgerError as e:
            console.print(f"[red]Error: {e.message}[/red]")
            logger.exception("Processing failed")
            return False

    def _step_ingest(self) -> CitationDocument:
        data = self.document_store.read_bytes(self.input_path)
        doc = self.engine.ingest(data, document_id=Path(self.input_path).stem, source_path=self.input_path)
        console.print(f"[green][OK][/green] Loaded: {Path(self.input_path).name} ({len(data):,} bytes)")
        console.print(
            f"[green][OK][/green] {len(doc.markers)} citations, {len(doc.ledger)} references "
            f"(style: {doc.style})"
        )
        resequenced = sum(1 for r in doc.log.active if r.marker_id)
        if resequenced:
            console.print(f"[yellow][!][/yellow] Resequenced {resequenced} citations by first appearance")
        return doc

    def _step_apply(
        self,
        doc: CitationDocument,
        deletes: List[int],
        moves: List[Tuple[int, int]],
        sort_by: Optional[str],
        resequence: bool,
        convert_to: Optional[str],
    ):
        doc_id = doc.document_id

        # Resolve numbers before anything shifts them
        delete_ids = [self._entry_id(doc, n) for n in deletes]
        for entry_id in delete_ids:
            self.engine.delete_reference(doc_id, entry_id)
            console.print(f"[green][OK][/green] Deleted reference {entry_id[:8]}")

        for number, position in moves:
            self.engine.move_reference(doc_id, self._entry_id(doc, number), position)
            console.print(f"[green][OK][/green] Moved reference {number} to position {position}")

        if sort_by:
            self.engine.sort_references(doc_id, sort_by)
            console.print(f"[green][OK][/green] Sorted references by {sort_by}")

        if resequence:
            self.engine.resequence(doc_id)
            console.print("[green][OK][/green] Resequenced references by appearance")

        if convert_to:
            self.engine.convert_style(doc_id, convert_to)
            console.print(f"[green][OK][/green] Converted to {convert_to}")

    def _entry_id(self, doc: CitationDocument, number: int) -> str:
        entry = self.engine.get_document(doc.document_id).ledger.by_number(number)
        if entry is None:
            raise InvalidOperationError(f"No reference numbered {number}")
        return entry.id

    def _step_preview(self, doc: CitationDocument):
        diff = self.engine.preview(doc.document_id)

        table = Table(title="Citation Changes")
        table.add_column("Original", style="cyan")
        table.add_column("Current", style="green")
        table.add_column("Kind")
        for entry in diff.changed:
            kind = entry.kind + (" (partial)" if entry.partial_deletion else "")
            table.add_row(entry.original_text, entry.current_text, kind)
        for orphan in diff.orphaned:
            table.add_row(orphan.original_text, "[red]orphaned[/red]", "delete")
        console.print(table)

        summary = Table(show_header=False)
        summary.add_column("Metric", style="cyan")
        summary.add_column("Value", justify="right", style="green")
        for key, value in diff.summary().items():
            summary.add_row(key.replace('_', ' ').capitalize(), str(value))
        console.print(summary)

    def _step_export(self, doc: CitationDocument):
        mode = MODE_CLEAN if self.accept else MODE_TRACKED
        output_path = self.document_store.output_path(
            self.input_path,
            "_accepted" if self.accept else config.OUTPUT_SUFFIX,
            self.output_path,
        )
        self.engine.export(doc.document_id, mode=mode, output_path=output_path, document_store=self.document_store)
        console.print(f"\n[green][OK][/green] Output written to: {output_path}")


def main():
    """Main entry point."""
    parser = argparse.ArgumentParser(
        description="Renumber, reorder and restyle citations with tracked changes"
    )

    parser.add_argument("input_file", nargs='?', help="Path to input markdown file")
    parser.add_argument("--output", "-o", help="Output file path")
    parser.add_argument("--verbose", "-v", action="store_true", help="Verbose logging")
    parser.add_argument("--dry-run", "-n", action="store_true", help="Preview only")
    parser.add_argument("--no-backup", action="store_true", help="Skip backup of an existing output file")
    parser.add_argument("--accept", action="store_true", help="Write accepted text instead of tracked changes")
    parser.add_argument("--use-llm", action="store_true", help="Use the local Ollama model")
    parser.add_argument("--db", help="SQLite file for the change log")

    parser.add_argument("--delete", type=int, action="append", default=[], metavar="N",
                        help="Delete reference N (repeatable)")
    parser.add_argument("--move", type=parse_move, action="append", default=[], metavar="N:POS",
                        help="Move reference N to position POS (repeatable)")
    parser.add_argument("--sort", choices=["alphabetical", "year", "appearance"], help="Sort references")
    parser.add_argument("--resequence", action="store_true", help="Renumber by first appearance")
    parser.add_argument("--convert", metavar="STYLE", help="Convert to a citation style")
    parser.add_argument("--list-styles", action="store_true", help="List available citation styles")

    args = parser.parse_args()

    if args.list_styles:
        catalogue = get_catalogue()
        table = Table(title="Citation Styles")
        table.add_column("Style", style="cyan")
        table.add_column("In-text")
        table.add_column("Description")
        for name in catalogue.names():
            style = catalogue.get(name)
            table.add_row(style.name, style.convention, style.description)
        console.print(table)
        sys.exit(0)

    if not args.input_file:
        parser.print_help()
        sys.exit(1)

    if not Path(args.input_file).exists():
        console.print(f"[red]Error: File not found: {args.input_file}[/red]")
        sys.exit(1)

    app = CitationLedgerApp(
        input_path=args.input_file,
        output_path=args.output,
        verbose=args.verbose,
        dry_run=args.dry_run,
        create_backup=not args.no_backup,
        accept=args.accept,
        use_llm=args.use_llm,
        db_path=args.db,
    )

    success = app.run(
        deletes=args.delete,
        moves=args.move,
        sort_by=args.sort,
        resequence=args.resequence,
        convert_to=args.convert,
    )
    sys.exit(0 if success else 1)


if __name__ == "__main__":
    main()
