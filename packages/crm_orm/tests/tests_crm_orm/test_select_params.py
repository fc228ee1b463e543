import pytest
from crm_orm.params import SelectParams, merge_select_params, replace_recursive
from pydantic import ValidationError


class TestSelectParams:
    def test_mapping_clause_is_wrapped_into_one_group(self):
        params = SelectParams(where_clause={"name": "Acme"})
        assert params.where_clause == [{"name": "Acme"}]

    def test_unknown_field_is_rejected(self):
        with pytest.raises(ValidationError):
            SelectParams(whereClause=[{"name": "Acme"}])

    def test_supplied_tracks_explicit_fields_only(self):
        """Fields passed explicitly, even empty ones, count as supplied."""
        params = SelectParams(having_clause=[], limit=5)
        assert params.supplied() == {"having_clause": [], "limit": 5}

    def test_coerce_accepts_mapping_model_and_none(self):
        model = SelectParams(limit=1)
        assert SelectParams.coerce(model) is model
        assert SelectParams.coerce({"limit": 2}).limit == 2
        assert SelectParams.coerce(None) == SelectParams()


class TestReplaceRecursive:
    def test_explicit_value_wins_on_collision(self):
        merged = replace_recursive({"limit": 5, "order": "ASC"}, {"limit": 1})
        assert merged == {"limit": 1, "order": "ASC"}

    def test_lists_are_merged_index_by_index(self):
        merged = replace_recursive({"select": ["id", "name"]}, {"select": ["title"]})
        assert merged == {"select": ["title", "name"]}

    def test_inputs_are_not_mutated(self):
        base = {"select": ["id"]}
        replacement = {"select": ["name", "type"]}
        replace_recursive(base, replacement)
        assert base == {"select": ["id"]}
        assert replacement == {"select": ["name", "type"]}


class TestWhereMerge:
    """Accumulated where groups W and explicit where E."""

    def test_explicit_followed_by_accumulated_group(self):
        accumulated = [{"industry": "Retail"}, {"amount>": 10}]
        params = merge_select_params(
            accumulated, [], {}, {"where_clause": [{"type": "Customer"}]}
        )
        assert params.where_clause == [
            {"type": "Customer"},
            [{"industry": "Retail"}, {"amount>": 10}],
        ]

    def test_empty_accumulated_leaves_explicit_unchanged(self):
        params = merge_select_params([], [], {}, {"where_clause": [{"type": "Customer"}]})
        assert params.where_clause == [{"type": "Customer"}]

    def test_no_explicit_where_uses_accumulated(self):
        params = merge_select_params([{"industry": "Retail"}], [], {}, None)
        assert params.where_clause == [{"industry": "Retail"}]

    def test_accumulated_state_is_not_mutated(self):
        accumulated = [{"industry": "Retail"}]
        list_params = {"joins": ["teams"], "select": ["id"]}
        merge_select_params(
            accumulated,
            [],
            list_params,
            {"where_clause": [{"a": 1}], "joins": ["contacts"], "select": ["name"]},
        )
        assert accumulated == [{"industry": "Retail"}]
        assert list_params == {"joins": ["teams"], "select": ["id"]}


class TestHavingMerge:
    def test_accumulated_having_dropped_without_explicit_having(self):
        """Legacy rule: no explicit having clause drops the accumulated one."""
        params = merge_select_params([], [{"COUNT:id>": 1}], {}, None)
        assert params.having_clause == []

    def test_accumulated_having_dropped_with_empty_explicit_having(self):
        params = merge_select_params([], [{"COUNT:id>": 1}], {}, {"having_clause": []})
        assert params.having_clause == []

    def test_accumulated_having_appended_to_non_empty_explicit(self):
        params = merge_select_params(
            [], [{"COUNT:id>": 1}], {}, {"having_clause": [{"SUM:amount>": 100}]}
        )
        assert params.having_clause == [{"SUM:amount>": 100}, [{"COUNT:id>": 1}]]

    def test_non_legacy_keeps_accumulated_having(self):
        params = merge_select_params([], [{"COUNT:id>": 1}], {}, None, legacy=False)
        assert params.having_clause == [{"COUNT:id>": 1}]


class TestJoinMerge:
    def test_accumulated_joins_dropped_without_explicit_joins(self):
        params = merge_select_params([], [], {"joins": ["teams"]}, {"limit": 1})
        assert params.joins == []

    def test_accumulated_joins_appended_when_both_present(self):
        params = merge_select_params(
            [], [], {"left_joins": ["teams"]}, {"left_joins": ["contacts"]}
        )
        assert params.left_joins == ["contacts", "teams"]

    def test_non_legacy_keeps_accumulated_joins(self):
        params = merge_select_params([], [], {"joins": ["teams"]}, None, legacy=False)
        assert params.joins == ["teams"]


class TestRemainingFields:
    def test_explicit_scalars_win(self):
        params = merge_select_params(
            [], [], {"limit": 10, "offset": 5, "order_by": "name"}, {"limit": 1}
        )
        assert params.limit == 1
        assert params.offset == 5
        assert params.order_by == "name"

    def test_select_lists_combine_by_index(self):
        params = merge_select_params(
            [], [], {"select": ["id", "name", "type"]}, {"select": ["industry"]}
        )
        assert params.select == ["industry", "name", "type"]

    def test_flags_survive_merge(self):
        params = merge_select_params([], [], {"sth": True, "distinct": True}, None)
        assert params.sth is True
        assert params.distinct is True
