"""
Aggregation merger -- recombines partial, store-side pre-aggregated rows.

Every round trip returns rows that are already rolled up.  Combining
them across round trips needs the formula that matches the aggregation
kind:

  sum    -> add ``value``
  count  -> add ``count``
  avg    -> weight each ``value`` by its ``count``: sum(v*n) / sum(n)
  min    -> smallest ``value``
  max    -> largest ``value``

Averaging pre-averaged numbers directly would be wrong whenever batches
cover different row counts.  All five formulas are commutative and
associative, so batch order never changes the result.  Outputs are
rounded to two decimals.  A cell whose rows all carry a null value never
appears in the output.
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import Callable, Hashable, Iterable

from askchart.copilot.models import AggregationKind, MergedGroupedRow, PartialAggregateRow
from askchart.core.utils import round_value

CellKey = Hashable
KeyFn = Callable[[PartialAggregateRow], CellKey]

UNKNOWN_GROUP = "Unknown"


def label_key(row: PartialAggregateRow) -> CellKey:
    """1-D key: the row label, else the primary group."""
    return row.label or row.primary_group or UNKNOWN_GROUP


def pair_key(row: PartialAggregateRow) -> CellKey:
    """2-D key: ``(primary_group, secondary_group)``."""
    return (row.primary_group or UNKNOWN_GROUP, row.secondary_group or UNKNOWN_GROUP)


@dataclass
class _Cell:
    total: float = 0.0
    count: int = 0
    plain_total: float = 0.0
    plain_count: int = 0
    seen: bool = False


class AggregationMerger:
    """Accumulates batches for one request and one aggregation kind.

    Each instance owns its accumulator; create one per request.  Rows
    whose ``value`` is null carry nothing to merge and are skipped, except
    for ``count``, which only reads the row count.
    """

    def __init__(self, kind: AggregationKind, key: KeyFn = label_key):
        self.kind = AggregationKind(kind)
        self._key = key
        self._cells: dict[CellKey, _Cell] = {}

    def add_batch(self, rows: Iterable[PartialAggregateRow], key: KeyFn | None = None) -> None:
        """Fold one round trip's rows into the accumulator.

        Rows sharing a cell key within a batch are combined with the same
        formula as rows from different batches.
        """
        key_fn = key or self._key
        for row in rows:
            if row.value is None and self.kind is not AggregationKind.COUNT:
                continue
            self._fold(self._cells.setdefault(key_fn(row), _Cell()), row)

    def _fold(self, cell: _Cell, row: PartialAggregateRow) -> None:
        kind = self.kind
        if kind is AggregationKind.AVG:
            if row.count > 0:
                cell.total += row.value * row.count
                cell.count += row.count
            cell.plain_total += row.value
            cell.plain_count += 1
        elif kind is AggregationKind.SUM:
            cell.total += row.value
            cell.count += row.count
        elif kind is AggregationKind.COUNT:
            cell.total += row.count
            cell.count += row.count
        elif kind is AggregationKind.MIN:
            cell.total = row.value if not cell.seen else min(cell.total, row.value)
            cell.count += row.count
        else:
            cell.total = row.value if not cell.seen else max(cell.total, row.value)
            cell.count += row.count
        cell.seen = True

    def result(self) -> dict[CellKey, float]:
        """Final per-cell values; call once every batch has been added.

        An average cell without a positive count falls back to the plain
        mean of its values.
        """
        out: dict[CellKey, float] = {}
        for cell_key, cell in self._cells.items():
            if self.kind is AggregationKind.AVG:
                if cell.count > 0:
                    value = cell.total / cell.count
                else:
                    value = cell.plain_total / cell.plain_count
            else:
                value = cell.total
            out[cell_key] = round_value(value)
        return out

    def __len__(self) -> int:
        return len(self._cells)


def merge(
    batches: Iterable[Iterable[PartialAggregateRow]],
    kind: AggregationKind,
    key: KeyFn = label_key,
) -> dict[CellKey, float]:
    """Merge every batch and return ``{cell_key: value}``."""
    merger = AggregationMerger(kind, key=key)
    for batch in batches:
        merger.add_batch(batch)
    return merger.result()


def build_grouped_rows(cells: dict[CellKey, float]) -> tuple[list[MergedGroupedRow], list[str]]:
    """Pivot ``{(primary, secondary): value}`` into chart rows.

    Returns rows in first-seen primary order and the sorted, deduplicated
    secondary groups.  Absent combinations stay absent.
    """
    rows: dict[str, MergedGroupedRow] = {}
    secondary: set[str] = set()
    for (primary, second), value in cells.items():
        entry = rows.setdefault(primary, {"primaryGroup": primary})
        entry[second] = value
        secondary.add(second)
    return list(rows.values()), sorted(secondary)
