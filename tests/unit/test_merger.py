"""
Unit tests -- aggregation merger: per-kind formulas, order independence, pivoting.
"""
import math

import pytest

from askchart.copilot.merger import AggregationMerger, build_grouped_rows, merge, pair_key
from askchart.copilot.models import AggregationKind, PartialAggregateRow
from askchart.core.utils import round_value
from askchart.store.base import parse_payload


def _row(label, value, count=1):
    return PartialAggregateRow(label=label, value=value, count=count)


def _cell(primary, secondary, value, count=1):
    return PartialAggregateRow(primary_group=primary, secondary_group=secondary, value=value, count=count)



def test_avg_is_count_weighted():
    b1 = [_row("Drawer", 10, 2)]
    b2 = [_row("Drawer", 20, 1)]
    assert merge([b1, b2], AggregationKind.AVG) == {"Drawer": 13.33}


def test_sum_adds_values():
    assert merge([[_row("A", 10, 4)], [_row("A", 5.5, 1)]], AggregationKind.SUM) == {"A": 15.5}


def test_count_adds_counts():
    assert merge([[_row("A", 99, 4)], [_row("A", 1, 3)]], AggregationKind.COUNT) == {"A": 7}


def test_min_and_max():
    batches = [[_row("A", 7)], [_row("A", 3)], [_row("A", 12)]]
    assert merge(batches, AggregationKind.MIN) == {"A": 3}
    assert merge(batches, AggregationKind.MAX) == {"A": 12}


def test_min_with_negative_values():
    assert merge([[_row("A", -5)], [_row("A", 2)]], AggregationKind.MIN) == {"A": -5}


@pytest.mark.parametrize("kind", list(AggregationKind))
def test_batch_order_does_not_matter(kind):
    b1 = [_row("A", 10, 2), _row("B", 4, 5)]
    b2 = [_row("A", 20, 1)]
    b3 = [_row("B", 8, 1), _row("C", 1, 1)]
    assert merge([b1, b2, b3], kind) == merge([b3, b1, b2], kind) == merge([b2, b3, b1], kind)


def test_rows_sharing_a_key_within_a_batch():
    batch = [_row("A", 10, 1), _row("A", 30, 3)]
    assert merge([batch], AggregationKind.AVG) == {"A": 25.0}


def test_results_rounded_to_two_places():
    assert merge([[_row("A", 1, 1)], [_row("A", 2, 2)]], AggregationKind.AVG) == {"A": 1.67}


def test_missing_count_defaults_to_one():
    row = PartialAggregateRow.model_validate({"label": "A", "value": 4, "count": None})
    assert row.count == 1


def test_null_value_is_kept_as_none():
    row = PartialAggregateRow.model_validate({"label": "A", "value": None, "count": 2})
    assert row.value is None


def test_null_rows_do_not_drag_the_average():
    rows = parse_payload({"data": [{"label": "A", "value": 100, "count": 2},
                                   {"label": "A", "value": None, "count": 3}]}, "t")
    assert merge([rows], AggregationKind.AVG) == {"A": 100.0}


@pytest.mark.parametrize("kind, expected", [(AggregationKind.MIN, 50.0), (AggregationKind.MAX, 50.0),
                                            (AggregationKind.SUM, 50.0)])
def test_null_rows_ignored_by_min_max_sum(kind, expected):
    batches = [[_row("A", 50, 1)], [_row("A", None, 4)]]
    assert merge(batches, kind) == {"A": expected}


def test_null_rows_still_counted():
    assert merge([[_row("A", 5, 2)], [_row("A", None, 3)]], AggregationKind.COUNT) == {"A": 5}


def test_cell_with_only_null_values_is_absent():
    assert merge([[_row("A", None, 3), _row("B", 2, 1)]], AggregationKind.AVG) == {"B": 2.0}


def test_zero_count_average_uses_plain_mean():
    rows = [PartialAggregateRow.model_construct(label="A", value=value, count=0) for value in (10.0, 30.0)]
    assert merge([rows], AggregationKind.AVG) == {"A": 20.0}


def test_huge_values_do_not_overflow():
    assert merge([[_row("A", 1e307)], [_row("A", 5)]], AggregationKind.MAX) == {"A": 1e307}
    assert merge([[_row("A", 1e308, 2)], [_row("A", 1e308, 2)]], AggregationKind.SUM) == {"A": float("inf")}


@pytest.mark.parametrize("value, expected", [(2.675, 2.68), (1.005, 1.01), (-1.255, -1.26), (163.3333, 163.33)])
def test_round_value_half_up(value, expected):
    assert round_value(value) == expected


def test_round_value_passes_non_finite_through():
    assert round_value(float("inf")) == float("inf")
    assert math.isnan(round_value(float("nan")))


def test_merger_instances_are_independent():
    m1 = AggregationMerger(AggregationKind.SUM)
    m2 = AggregationMerger(AggregationKind.SUM)
    m1.add_batch([_row("A", 1)])
    assert len(m1) == 1
    assert m2.result() == {}



def test_pair_key_merging():
    b1 = [_cell("Saia", "TX", 100, 1)]
    b2 = [_cell("Saia", "TX", 200, 3), _cell("Saia", None, 50, 1)]
    cells = merge([b1, b2], AggregationKind.AVG, key=pair_key)
    assert cells == {("Saia", "TX"): 175.0, ("Saia", "Unknown"): 50.0}


def test_grouped_rows_pivot():
    cells = {("Saia", "TX"): 1.0, ("Estes", "CA"): 2.0, ("Saia", "CA"): 3.0}
    rows, secondary = build_grouped_rows(cells)
    assert secondary == ["CA", "TX"]
    assert rows == [
        {"primaryGroup": "Saia", "TX": 1.0, "CA": 3.0},
        {"primaryGroup": "Estes", "CA": 2.0},
    ]


def test_absent_combinations_stay_absent():
    rows, _ = build_grouped_rows({("A", "x"): 1.0, ("B", "y"): 2.0})
    assert "y" not in rows[0]
    assert "x" not in rows[1]
