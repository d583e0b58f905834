"""Classification of collators by block production over a trailing window."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Iterable, Sequence

from collator_monitor.errors import EmptyCollatorSetError
from collator_monitor.indexer_client import Block
from collator_monitor.ss58 import normalize_address


DEFAULT_WINDOW = timedelta(hours=24)
DEFAULT_BLOCK_TIME = timedelta(seconds=12)
DEFAULT_SLOW_PERCENTAGE = 75


@dataclass(frozen=True)
class ClassificationResult:
    chain: str
    inactive: tuple[str, ...]
    slow: tuple[str, ...]
    collator_count: int
    block_count: int
    expected_blocks_per_collator: float
    threshold: float
    slow_percentage: int
    production_counts: dict[str, int] = field(default_factory=dict, compare=False)

    @property
    def has_findings(self) -> bool:
        return bool(self.inactive or self.slow)


def normalize_blocks(blocks: Iterable[Block], ss58_prefix: int) -> list[Block]:
    """Re-encode every block validator as an SS58 address under ``ss58_prefix``."""
    return [
        block.model_copy(update={"validator": normalize_address(block.validator, ss58_prefix)})
        for block in blocks
    ]


def build_production_index(blocks: Iterable[Block]) -> dict[str, list[datetime]]:
    """Block timestamps grouped by validator, kept in input order."""
    index: dict[str, list[datetime]] = {}
    for block in blocks:
        index.setdefault(block.validator, []).append(block.timestamp)
    return index


def expected_blocks_per_collator(
    collator_count: int,
    window: timedelta = DEFAULT_WINDOW,
    block_time: timedelta = DEFAULT_BLOCK_TIME,
) -> float:
    if collator_count <= 0:
        raise EmptyCollatorSetError("Cannot compute expected blocks for an empty collator set")
    return (window / block_time) / collator_count


def classify_collators(
    chain: str,
    collators: Sequence[str],
    blocks: Iterable[Block],
    ss58_prefix: int,
    *,
    slow_percentage: int = DEFAULT_SLOW_PERCENTAGE,
    window: timedelta = DEFAULT_WINDOW,
    block_time: timedelta = DEFAULT_BLOCK_TIME,
) -> ClassificationResult:
    """
    Split ``collators`` into inactive and slow sets.

    ``collators`` is the authoritative universe in canonical SS58 form; blocks
    produced by addresses outside it are ignored. A collator with no blocks is
    inactive. A collator with fewer than ``slow_percentage`` percent of its
    expected share is slow, unless it is already inactive. Both tuples keep
    the universe order.
    """
    universe = list(dict.fromkeys(collators))
    expected = expected_blocks_per_collator(len(universe), window, block_time)
    threshold = expected * slow_percentage / 100

    normalized = normalize_blocks(blocks, ss58_prefix)
    index = build_production_index(normalized)
    counts = {collator: len(index.get(collator, ())) for collator in universe}

    inactive = tuple(collator for collator in universe if counts[collator] == 0)
    slow = tuple(collator for collator in universe if 0 < counts[collator] < threshold)

    return ClassificationResult(
        chain=chain,
        inactive=inactive,
        slow=slow,
        collator_count=len(universe),
        block_count=len(normalized),
        expected_blocks_per_collator=expected,
        threshold=threshold,
        slow_percentage=slow_percentage,
        production_counts=counts,
    )
