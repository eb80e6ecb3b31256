"""Tests for subscription filter evaluation."""
import pytest

from hookrelay.schemas import FilterCondition, WebhookFilters
from hookrelay.services.filters import evaluate_condition, matches_filters


def cond(field, operator, value):
    return FilterCondition(field=field, operator=operator, value=value)


class TestMatchesFilters:
    @pytest.mark.parametrize("filters", [None, {}, WebhookFilters()])
    def test_no_filters_match_everything(self, filters):
        assert matches_filters(filters, {"anything": 1}) is True

    def test_funnel_allow_list(self):
        filters = {"funnel_ids": ["f1", "f2"]}
        assert matches_filters(filters, {"funnel_id": "f1"}) is True
        assert matches_filters(filters, {"funnel_id": "f3"}) is False

    def test_funnel_allow_list_accepts_camel_case(self):
        filters = {"funnelIds": ["f1"]}
        assert matches_filters(filters, {"funnelId": "f1"}) is True
        assert matches_filters(filters, {"funnelId": "f9"}) is False

    def test_allow_list_ignored_when_payload_lacks_field(self):
        assert matches_filters({"funnel_ids": ["f1"]}, {"order_id": "o1"}) is True
        assert matches_filters({"product_ids": ["p1"]}, {"order_id": "o1"}) is True

    def test_product_allow_list(self):
        filters = {"product_ids": ["p1"]}
        assert matches_filters(filters, {"product_id": "p1"}) is True
        assert matches_filters(filters, {"productId": "p2"}) is False

    def test_tags_need_one_in_common(self):
        filters = {"tags": ["vip", "beta"]}
        assert matches_filters(filters, {"tags": ["new", "vip"]}) is True
        assert matches_filters(filters, {"tags": ["new"]}) is False

    def test_single_string_tag(self):
        assert matches_filters({"tags": ["vip"]}, {"tags": "vip"}) is True

    def test_all_groups_must_pass(self):
        filters = {
            "funnel_ids": ["f1"],
            "conditions": [{"field": "total", "operator": "greater_than", "value": 100}],
        }
        assert matches_filters(filters, {"funnel_id": "f1", "total": 150}) is True
        assert matches_filters(filters, {"funnel_id": "f1", "total": 50}) is False
        assert matches_filters(filters, {"funnel_id": "f2", "total": 150}) is False

    def test_greater_than_on_missing_field_fails(self):
        filters = {"conditions": [{"field": "total", "operator": "greater_than", "value": 100}]}
        assert matches_filters(filters, {}) is False

    def test_unknown_operator_is_permissive(self):
        filters = {"conditions": [{"field": "total", "operator": "regex", "value": ".*"}]}
        assert matches_filters(filters, {"total": 1}) is True


class TestEvaluateCondition:
    @pytest.mark.parametrize(
        "operator,value,data,expected",
        [
            ("equals", "paid", {"status": "paid"}, True),
            ("equals", "paid", {"status": "open"}, False),
            ("not_equals", "paid", {"status": "open"}, True),
            ("greater_than", 10, {"status": 11}, True),
            ("greater_than", 10, {"status": 10}, False),
            ("less_than", 10, {"status": 9}, True),
            ("contains", "@acme", {"status": "bob@acme.com"}, True),
            ("contains", "@beta", {"status": "bob@acme.com"}, False),
            ("starts_with", "bob", {"status": "bob@acme.com"}, True),
            ("ends_with", ".com", {"status": "bob@acme.com"}, True),
            ("ends_with", ".org", {"status": "bob@acme.com"}, False),
            ("in", ["a", "b"], {"status": "a"}, True),
            ("in", ["a", "b"], {"status": "c"}, False),
            ("in", "a", {"status": "a"}, False),
        ],
    )
    def test_operators(self, operator, value, data, expected):
        assert evaluate_condition(cond("status", operator, value), data) is expected

    def test_incomparable_types_fail(self):
        assert evaluate_condition(cond("total", "greater_than", 10), {"total": "lots"}) is False

    def test_dotted_path(self):
        data = {"customer": {"email": "amy@acme.com"}}
        assert evaluate_condition(cond("customer.email", "ends_with", "@acme.com"), data) is True
        assert evaluate_condition(cond("customer.phone", "contains", "5"), data) is False

    def test_missing_field_equals_none(self):
        assert evaluate_condition(cond("coupon", "equals", None), {}) is True
