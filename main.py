#!/usr/bin/env python3
"""
Card Sanitizer — Entry Point
============================

Runs the intake pipeline on card payloads and prints a report.

Usage:
    python main.py                      # Sample payload (hostile on purpose)
    python main.py card.json            # Single-card report
    python main.py a.json b.json ...    # Collection analysis
    python main.py cards.json           # A JSON array file is analyzed as a collection
    CARD_MAX_SECTIONS=5 python main.py  # Override any ceiling via environment
"""

from __future__ import annotations

import sys
from pathlib import Path

from card_sanitizer.batch import BatchCollectionAnalyzer
from card_sanitizer.config import get_settings
from card_sanitizer.exceptions import CardPipelineError
from card_sanitizer.models import Severity
from card_sanitizer.observability import setup_logging
from card_sanitizer.pipeline import CardPipeline

# ─── Load .env if available (optional dependency) ────────────────────
try:
    from dotenv import load_dotenv

    load_dotenv()
except ImportError:
    pass


# ─── The Sample Payload, Hostile on Purpose ─────────────────────────

SAMPLE_PAYLOAD = """\
{
  "cardTitle": "Acme Corp <script>alert('pwned')</script>",
  "subtitle": "Key account   overview",
  "sections": [
    {
      "title": "Contacts",
      "type": "info",
      "fields": [
        {"label": "Website", "value": "acme-corp.com", "link": "javascript:alert(1)"},
        {"label": "Owner", "value": "Jane Doe", "email": "  Jane.Doe@Acme-Corp.com "},
        {"label": "Revenue", "value": 1250000}
      ]
    },
    {
      "title": "History",
      "type": "timeline",
      "items": [
        {"title": "Signed <b>MSA</b>", "description": "onerror=alert(1)"},
        {"title": "Renewal", "value": "2025-01-15"}
      ]
    }
  ],
  "actions": [
    {"label": "Visit", "type": "website", "url": "https://acme-corp.com/?q=<x>"},
    {"label": "Email", "type": "mail", "email": {"contact": {"name": "Jane", "email": "jane@acme-corp.com", "role": "Owner"}}},
    {"label": "Exfiltrate", "type": "website", "url": "data:text/html;base64,PHNjcmlwdD4="}
  ],
  "meta": {"id": "leaked", "__proto__": {"admin": true}, "source": "crm"}
}"""


# ─── ANSI Color Constants ───────────────────────────────────────────

_RED = "\033[91m"
_YELLOW = "\033[93m"
_GREEN = "\033[92m"
_CYAN = "\033[96m"
_DIM = "\033[2m"
_BOLD = "\033[1m"
_RESET = "\033[0m"
_WIDTH = 72


# ─── Pretty Printer Helpers ─────────────────────────────────────────


def _print_card_details(card) -> None:
    """Print the sanitized card tree."""
    print(f"  Title:       {_BOLD}{card.title}{_RESET}")
    if card.subtitle:
        print(f"  Subtitle:    {card.subtitle}")
    for section in card.sections:
        print(f"  Section:     {section.title} {_DIM}[{section.type.value}, {section.id}]{_RESET}")
        for field in section.fields or []:
            extra = field.link or field.email or ""
            print(f"    {field.label or field.title}: {field.value} {_DIM}{extra}{_RESET}")
        for item in section.items or []:
            print(f"    • {item.title}")
    for action in card.actions or []:
        target = action.url or (action.email.contact.email if action.email and action.email.contact else "")
        print(f"  Action:      {action.label} {_DIM}[{action.kind.value}] {target or '(no target)'}{_RESET}")
    if card.metadata:
        print(f"  Metadata:    {_DIM}{card.metadata}{_RESET}")


def _print_findings_group(findings, color: str, label: str) -> None:
    """Print a categorized group of findings (errors or warnings)."""
    if not findings:
        return
    print(f"\n  {color}{_BOLD}{label} ({len(findings)}){_RESET}")
    for f in findings:
        print(f"    {color}[{f.code}]{_RESET} {_DIM}{f.field}{_RESET}")
        print(f"    {f.message}")
        for k, v in f.details.items():
            print(f"      {_DIM}{k}: {v}{_RESET}")
        print()


# ─── Pretty Printers ────────────────────────────────────────────────


def print_report(report) -> int:
    """Pretty-print a single-card report with ANSI color codes.

    Returns:
        0 if the card was accepted, 1 if rejected.
    """
    print(f"\n{'=' * _WIDTH}")
    print(f"{_BOLD}{_CYAN}  CARD INTAKE REPORT{_RESET}")
    print(f"{'=' * _WIDTH}")
    print(f"  Card ID:     {report.card_id or 'UNKNOWN'}")
    print(f"  Audit Hash:  {_DIM}{report.original_hash[:16]}...{_RESET}")
    if report.repaired:
        print(f"  Repaired:    {_YELLOW}yes{_RESET}")
    print(f"{'─' * _WIDTH}")

    if report.card:
        _print_card_details(report.card)

    print(f"{'─' * _WIDTH}")

    errors = [f for f in report.findings if f.severity == Severity.ERROR]
    warnings = [f for f in report.findings if f.severity == Severity.WARNING]

    _print_findings_group(errors, _RED, "ERRORS")
    _print_findings_group(warnings, _YELLOW, "WARNINGS")

    print(f"{'=' * _WIDTH}")
    if report.is_valid:
        print(f"  {_GREEN}{_BOLD}CARD ACCEPTED{_RESET}")
    else:
        print(f"  {_RED}{_BOLD}CARD REJECTED  --  {len(errors)} error(s) found{_RESET}")
    print(f"{'=' * _WIDTH}\n")

    return 0 if report.is_valid else 1


def print_analysis(analysis) -> int:
    """Pretty-print a collection analysis.

    Returns:
        0 if every card was accepted, 1 otherwise.
    """
    stats = analysis.stats
    print(f"\n{'=' * _WIDTH}")
    print(f"{_BOLD}{_CYAN}  COLLECTION ANALYSIS{_RESET}")
    print(f"{'=' * _WIDTH}")
    print(f"  Valid cards:     {stats.total_cards}")
    print(f"  Invalid cards:   {analysis.invalid_count}")
    print(f"  Sections:        {stats.total_sections} (avg {stats.avg_sections_per_card:.2f}/card)")
    print(f"  With actions:    {stats.cards_with_actions}")
    for card_type, count in sorted(stats.by_type.items()):
        print(f"  Type {card_type + ':':<11} {count}")
    print(f"{'─' * _WIDTH}")

    for group in analysis.duplicates:
        print(f"  {_YELLOW}Duplicate title{_RESET} '{group.title}' x{group.count} {_DIM}{group.indices}{_RESET}")
    for issue in analysis.issues:
        print(f"  {_YELLOW}!{_RESET} {issue}")
    if not analysis.issues:
        print(f"  {_GREEN}No issues found{_RESET}")

    print(f"{'=' * _WIDTH}\n")
    return 0 if analysis.invalid_count == 0 else 1


# ─── Main ────────────────────────────────────────────────────────────


def main(argv: list[str] | None = None) -> int:
    """Run the pipeline on the given files (or the sample) and print the report."""
    args = sys.argv[1:] if argv is None else argv
    settings = get_settings()
    setup_logging(settings.log_level, settings.log_format)

    if not args:
        print("\n  Starting Card Sanitizer on the built-in sample payload...\n")
        return print_report(CardPipeline(settings).run(SAMPLE_PAYLOAD))

    payloads = [Path(path).read_text(encoding="utf-8") for path in args]
    analyzer = BatchCollectionAnalyzer(limits=settings)

    if len(payloads) == 1 and payloads[0].lstrip().startswith("["):
        try:
            payloads = analyzer.split_json_array(payloads[0])
        except CardPipelineError as e:
            print(f"  {_RED}[{e.code}]{_RESET} {e}")
            return 1
        return print_analysis(analyzer.analyze_collection(payloads))

    if len(payloads) == 1:
        return print_report(CardPipeline(settings).run(payloads[0]))

    return print_analysis(analyzer.analyze_collection(payloads))


if __name__ == "__main__":
    sys.exit(main())
