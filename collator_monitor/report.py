from __future__ import annotations

from dataclasses import dataclass
from typing import Iterable

from collator_monitor.analyzer import ClassificationResult


REPORT_HEADER = "Collator activity analysis"


@dataclass(frozen=True)
class ChainOutcome:
    """Result of one chain for one pass: a classification or an error message."""
    chain: str
    result: ClassificationResult | None = None
    error: str | None = None


@dataclass(frozen=True)
class Report:
    header: str | None
    sections: tuple[str, ...]


def format_chain_sections(result: ClassificationResult) -> list[str]:
    """Report sections for one chain; empty when every collator is healthy."""
    if not result.has_findings:
        return []

    sections = [f"Chain analysis for *{result.chain}:*"]
    if result.block_count == 0:
        sections.append(
            ":warning: The indexer returned no blocks for the whole window; "
            "it may be stalled rather than every collator being down."
        )
    if result.inactive:
        sections.append(f"*Inactive collators:*\n {', '.join(result.inactive)}")
    if result.slow:
        sections.append(
            f"*Slow collators*: (produced <{result.slow_percentage}% of expected blocks)\n "
            f"{', '.join(result.slow)}"
        )
    return sections


def format_chain_error(chain: str, error: str) -> str:
    return f":x: Error analyzing chain {chain}: {error}"


def build_report(outcomes: Iterable[ChainOutcome]) -> Report | None:
    """Merge per-chain outcomes into one report, or None when every chain is healthy."""
    sections: list[str] = []
    for outcome in outcomes:
        if outcome.error is not None:
            sections.append(format_chain_error(outcome.chain, outcome.error))
        elif outcome.result is not None:
            sections.extend(format_chain_sections(outcome.result))
    if not sections:
        return None
    return Report(header=REPORT_HEADER, sections=tuple(sections))
