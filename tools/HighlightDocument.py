#!/usr/bin/env python3
"""
Highlight unlinked terms of a saved wiki article.

Reads an HTML file, verifies capitalized words and phrases against the
MediaWiki API of the configured language, and writes a copy of the file in
which every confirmed term is wrapped in <mark class="linkscout-term">.

Configuration comes from LINKSCOUT_* environment variables (see
LinkingSettings.from_env); the verification cache is kept between runs in
the cache directory, one file per language.

Usage:
    uv run python3 tools/HighlightDocument.py <input.html> [output.html] [--list]

Examples:
    # Decorate an article, writing article.linked.html
    uv run python3 tools/HighlightDocument.py article.html

    # Only list the terms that would be decorated
    uv run python3 tools/HighlightDocument.py article.html --list

    # German Wikipedia, each term once
    LINKSCOUT_LANGUAGE=de LINKSCOUT_HIGHLIGHT_EACH_TERM_ONCE=true \\
        uv run python3 tools/HighlightDocument.py artikel.html
"""

import logging
import os
import sys
from pathlib import Path
from typing import List, Optional

import anyio
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from com_blockether_linkscout.document import HTMLDocument
from com_blockether_linkscout.linking import (
    LinkingCore,
    LinkingError,
    LinkingReport,
    LinkingSession,
    LinkingSettings,
    ScoredTerm,
)
from com_blockether_linkscout.registry import MediaWikiTitleRegistry, WikidataRelatedEntities

console = Console()


class HighlightDocument:
    """Runs the linking pipeline over one HTML file."""

    def __init__(
        self,
        input_path: Path,
        output_path: Optional[Path] = None,
        list_only: bool = False,
        cache_dir: Path = Path(".linkscout-cache"),
        settings: Optional[LinkingSettings] = None,
        log_level: int = logging.INFO,
    ):
        self.input_path = input_path
        self.output_path = output_path or input_path.with_name(f"{input_path.stem}.linked{input_path.suffix}")
        self.list_only = list_only
        self.cache_dir = cache_dir
        self.settings = settings or LinkingSettings.from_env()
        self.log_level = log_level

    def setup_logging(self) -> None:
        logging.basicConfig(
            level=self.log_level,
            format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
            handlers=[logging.StreamHandler(sys.stderr)],
        )
        # httpx logs every request at info level
        logging.getLogger("httpx").setLevel(logging.WARNING)

    async def run(self) -> Optional[LinkingReport]:
        self.setup_logging()
        console.print(
            Panel.fit(
                f"[bold cyan]Unlinked term discovery[/bold cyan]\n"
                f"Input: {self.input_path.name}  Language: {self.settings.language}",
                title="linkscout",
            )
        )

        document = HTMLDocument.from_html(
            self.input_path.read_text(encoding="utf-8"),
            decoration_class=self.settings.decoration_class,
        )
        session = LinkingSession.with_persisted_cache(self.cache_dir, settings=self.settings)

        async with MediaWikiTitleRegistry(
            language=self.settings.language, timeout=self.settings.request_timeout_seconds
        ) as registry:
            related = WikidataRelatedEntities(registry) if self.settings.scoring_enabled else None
            try:
                core = LinkingCore(registry, settings=self.settings, related_entity_source=related)
                with console.status("Fetching article context..."):
                    context = await core.prepare_context(document, session)

                if self.list_only:
                    with console.status("Verifying candidates..."):
                        terms = await core.discover(document, context, session)
                    self.print_terms(terms)
                    return None

                with console.status("Verifying and decorating terms..."):
                    report = await core.run(document, context, session)
            finally:
                if related is not None:
                    await related.aclose()
                path = session.save_cache(self.cache_dir)
                console.print(f"[dim]Cache saved to {path}[/dim]")

        self.print_report(report)
        if report.total_decorations:
            self.output_path.write_text(document.to_html(), encoding="utf-8")
            console.print(f"[green]✓ Wrote {self.output_path}[/green]")
        else:
            console.print("[yellow]No terms decorated; nothing written.[/yellow]")
        return report

    def print_terms(self, terms: List[ScoredTerm]) -> None:
        table = Table(title=f"Unlinked terms ({len(terms)})")
        table.add_column("Term", style="cyan")
        table.add_column("Article")
        table.add_column("Occurrences", justify="right")
        table.add_column("Score", justify="right", style="green")
        for term in terms:
            table.add_row(term.surface_form, term.canonical_title, str(term.occurrence_count), f"{term.score:.2f}")
        console.print(table)

    def print_report(self, report: LinkingReport) -> None:
        table = Table(title="Linking Report")
        table.add_column("Metric", style="cyan")
        table.add_column("Value", justify="right")
        table.add_row("Regions", str(report.total_regions))
        table.add_row("Candidates", str(report.total_candidates))
        table.add_row("Excluded", str(report.excluded_candidates))
        table.add_row("Unique keys", str(report.unique_keys))
        table.add_row("Cache hits", str(report.cache_hits))
        table.add_row("Verified by registry", str(report.verified_keys))
        table.add_row("Failed batches", str(report.failed_batches))
        table.add_row("Approved terms", str(report.total_terms))
        table.add_row("Annotated regions", str(report.annotated_regions))
        table.add_row("Decorations", str(report.total_decorations))
        console.print(table)
        if report.terms:
            self.print_terms(report.terms)

    @classmethod
    async def from_cli(cls, args: Optional[List[str]] = None) -> None:
        """
        Create and run from command line arguments.

        Args:
            args: Command line arguments. If None, uses sys.argv
        """
        args = args if args is not None else sys.argv[1:]
        list_only = "--list" in args
        positional = [arg for arg in args if not arg.startswith("--")]

        if not positional:
            console.print("[red]Usage: python HighlightDocument.py <input.html> [output.html] [--list][/red]")
            sys.exit(1)

        input_path = Path(positional[0])
        if not input_path.exists():
            console.print(f"[red]Error: File '{input_path}' not found.[/red]")
            sys.exit(1)

        tool = cls(
            input_path=input_path,
            output_path=Path(positional[1]) if len(positional) > 1 else None,
            list_only=list_only,
            cache_dir=Path(os.getenv("LINKSCOUT_CACHE_DIR", ".linkscout-cache")),
        )
        try:
            await tool.run()
        except LinkingError as e:
            console.print(f"\n[red]Error: {e}[/red]")
            sys.exit(2)


async def main() -> None:
    """Main entry point for command line execution."""
    await HighlightDocument.from_cli()


if __name__ == "__main__":
    anyio.run(main)
