"""
Unit tests -- classifier: literal terms, breakdown rule cascade, aggregation.
"""
import pytest

from askchart.catalog.loader import load_field_catalog
from askchart.copilot.classifier import (
    BREAKDOWN_RULES,
    ClassifierContext,
    classify,
    detect_aggregation,
    extract_product_terms,
    match_breakdown,
)
from askchart.copilot.models import AggregationKind, CategoryComparison, TwoDimensionBreakdown


@pytest.fixture(scope="module")
def catalog():
    return load_field_catalog()


def _ctx(prompt, catalog):
    lower = prompt.lower()
    return ClassifierContext(
        lower=lower,
        terms=extract_product_terms(lower, catalog),
        aggregation=detect_aggregation(lower),
        catalog=catalog,
    )



def test_terms_in_prompt_order():
    assert extract_product_terms("toolbox vs cargo glide vs drawer") == ["Tool Box", "CargoGlide", "Drawer"]


def test_specific_product_shadows_generic():
    terms = extract_product_terms("compare drawer system and tool box")
    assert terms == ["Drawer System", "Tool Box"]
    assert "Drawer" not in terms


def test_repeated_term_reported_once():
    assert extract_product_terms("drawer, drawer and cargoglide") == ["Drawer", "CargoGlide"]


def test_no_terms():
    assert extract_product_terms("revenue by carrier") == []



def test_aggregation_defaults_to_avg():
    assert detect_aggregation("cost for drawer and toolbox") is AggregationKind.AVG


@pytest.mark.parametrize(
    "prompt, expected",
    [
        ("total cost for drawers", AggregationKind.SUM),
        ("sum of retail", AggregationKind.SUM),
        ("how many shipments", AggregationKind.COUNT),
        ("number of loads", AggregationKind.COUNT),
        ("lowest retail by carrier", AggregationKind.MIN),
        ("highest miles", AggregationKind.MAX),
    ],
)
def test_aggregation_keywords(prompt, expected):
    assert detect_aggregation(prompt) is expected


def test_total_wins_over_count():
    assert detect_aggregation("total count of shipments") is AggregationKind.SUM


def test_keywords_match_whole_words_only():
    assert detect_aggregation("accounts summary") is AggregationKind.AVG



def test_category_comparison_scenario():
    intent = classify("Average cost by product for drawer, cargoglide, toolbox")
    assert isinstance(intent, CategoryComparison)
    assert intent.terms == ["Drawer", "CargoGlide", "Tool Box"]
    assert intent.aggregation is AggregationKind.AVG


def test_category_comparison_total():
    intent = classify("total cost for drawer and toolbox")
    assert isinstance(intent, CategoryComparison)
    assert intent.aggregation is AggregationKind.SUM


def test_single_term_is_not_a_comparison():
    assert classify("average cost for drawer") is None


def test_breakdown_scenario():
    intent = classify("revenue by carrier and state")
    assert isinstance(intent, TwoDimensionBreakdown)
    assert intent.primary_group_by == "carrier_name"
    assert intent.secondary_group_by == "origin_state"
    assert intent.metric == "retail"
    assert intent.aggregation is AggregationKind.AVG
    assert intent.category_terms == []


def test_breakdown_aggregate_verb():
    intent = classify("total weight by carrier and mode")
    assert isinstance(intent, TwoDimensionBreakdown)
    assert (intent.primary_group_by, intent.secondary_group_by) == ("carrier_name", "mode_name")
    assert intent.metric == "weight"
    assert intent.aggregation is AggregationKind.SUM


def test_breakdown_count_of_shipments():
    intent = classify("count of shipments by carrier and mode")
    assert isinstance(intent, TwoDimensionBreakdown)
    assert intent.metric == "load_id"
    assert intent.aggregation is AggregationKind.COUNT


def test_breakdown_of_template():
    intent = classify("breakdown of miles by destination and carrier")
    assert isinstance(intent, TwoDimensionBreakdown)
    assert intent.metric == "miles"
    assert (intent.primary_group_by, intent.secondary_group_by) == ("dest_state", "carrier_name")


def test_products_with_trailing_dimension():
    intent = classify("Average cost for drawer and cargoglide by origin")
    assert isinstance(intent, TwoDimensionBreakdown)
    assert intent.primary_group_by == "description"
    assert intent.secondary_group_by == "origin_state"
    assert intent.category_terms == ["Drawer", "CargoGlide"]
    assert intent.metric == "retail"


def test_breakdown_wins_over_comparison():
    intent = classify("average cost for drawer and toolbox for each carrier")
    assert isinstance(intent, TwoDimensionBreakdown)
    assert intent.secondary_group_by == "carrier_name"


def test_unknown_dimensions_fall_through():
    assert classify("show sales by region and channel") is None


def test_unrecognised_prompt():
    assert classify("hello") is None
    assert classify("") is None



def test_rule_order(catalog):
    names = [r.name for r in BREAKDOWN_RULES]
    assert names == [
        "aggregate_verb", "metric_by_pair", "breakdown_of",
        "grouped_by", "product_by_dimension", "by_a_and_b",
    ]


def test_first_accepted_rule_reported(catalog):
    rule, _ = match_breakdown(_ctx("revenue by carrier and state", catalog))
    assert rule == "metric_by_pair"


def test_rejected_template_moves_on(catalog):
    rule, intent = match_breakdown(_ctx("average cost for drawer and cargoglide by origin", catalog))
    assert rule == "product_by_dimension"
    assert intent.secondary_group_by == "origin_state"
