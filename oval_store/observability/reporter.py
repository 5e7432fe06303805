"""
Render lookup results, refresh metrics and integrity checks as Markdown.

Report sections:
- Lookup: one row per (definition, affected package), plus CVEs
- Refresh: summary and per-table row counts
- Integrity: pass/fail per quality check

Design decisions:
- Markdown output for readability in terminals and GitHub
- Uses tabulate library for table formatting (GitHub-flavored)
"""
from typing import List

from tabulate import tabulate

from models.dataset import Definition
from .metrics import RefreshMetrics
from .quality_checks import QualityCheckResult


class QueryReporter:
    """
    Generates Markdown reports for the lookup CLI.
    """

    def lookup_report(self, title: str, definitions: List[Definition]) -> str:
        """
        Render definitions returned by a lookup.

        Args:
            title: Heading describing the lookup
            definitions: Hydrated definitions

        Returns:
            Markdown-formatted report as string
        """
        lines = [f"# {title}", f"**Definitions:** {len(definitions)}", ""]
        if not definitions:
            lines.append("No matching definitions.")
            return "\n".join(lines)

        rows = []
        for d in definitions:
            cves = ", ".join(c.cve_id for c in d.advisory.cves)
            packs = d.affected_packs or [None]
            for p in packs:
                rows.append([
                    d.definition_id,
                    d.advisory.severity or "",
                    cves,
                    p.name if p else "",
                    p.version if p else "",
                    "yes" if p and p.not_fixed_yet else "",
                ])
        lines.append(tabulate(
            rows,
            headers=["Definition", "Severity", "CVEs", "Package", "Version", "Not Fixed"],
            tablefmt="github",
        ))
        lines.append("")

        lines.append("## Titles")
        for d in definitions:
            lines.append(f"- **{d.definition_id}**: {d.title or ''}")
            for ref in d.references:
                lines.append(f"  - {ref.source or 'ref'} {ref.ref_id or ''} {ref.ref_url or ''}".rstrip())
        return "\n".join(lines)

    def refresh_report(self, metrics: RefreshMetrics) -> str:
        lines = [f"# Refresh {metrics.family} {metrics.os_version}", f"**Source:** {metrics.file_name}"]
        if metrics.duration_seconds is not None:
            lines.append(f"**Duration:** {metrics.duration_seconds:.1f} seconds")
        lines.append("")

        summary = [
            ["Skipped", metrics.skipped],
            ["Replaced", metrics.replaced],
            ["Definitions Inserted", metrics.definitions_inserted],
        ]
        lines.append(tabulate(summary, headers=["Metric", "Value"], tablefmt="github"))
        lines.append("")

        tables = sorted(set(metrics.rows_deleted) | set(metrics.rows_inserted))
        if tables:
            lines.append("## Rows")
            counts = [[t, metrics.rows_deleted.get(t, 0), metrics.rows_inserted.get(t, 0)] for t in tables]
            lines.append(tabulate(counts, headers=["Table", "Deleted", "Inserted"], tablefmt="github"))
            lines.append("")
        return "\n".join(lines)

    def quality_report(self, quality_results: List[QualityCheckResult]) -> str:
        lines = ["## Data Quality Checks"]
        quality_data = []
        for qr in quality_results:
            status = "✓" if qr.passed else "✗"
            quality_data.append([status, qr.check_name, qr.message])
        lines.append(tabulate(quality_data, headers=["Status", "Check", "Details"], tablefmt="github"))
        lines.append("")
        return "\n".join(lines)
