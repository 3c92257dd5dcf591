"""
ModelRest — Find Query Tests
=============================

What we test:
    ✅ Eager expression parsing (single, nested, bracket lists, merging)
    ✅ Malformed expressions raise ValidationError
    ✅ Allow-list enforcement on ModelQuery.eager
    ✅ Filter keys build criteria; unknown properties and operators fail
    ✅ Range and ordering parameters
"""

from unittest.mock import MagicMock

import pytest

from modelrest.exceptions import ValidationError
from modelrest.find import FindQuery, eager_paths, is_subtree, parse_eager
from modelrest.persistence import ModelQuery

from tests.sample_models import Animal, Person


def person_query():
    return ModelQuery(MagicMock(), Person)


class TestParseEager:
    """Tests for eager expression parsing."""

    def test_single_name(self):
        """A bare name is one relation."""
        assert parse_eager("pets") == {"pets": {}}

    def test_nested_path(self):
        """A dotted path nests relations."""
        assert parse_eager("pets.owner") == {"pets": {"owner": {}}}

    def test_bracket_list(self):
        """A bracket list holds several paths."""
        assert parse_eager("[parent, pets.owner, movies]") == {
            "parent": {},
            "pets": {"owner": {}},
            "movies": {},
        }

    def test_nested_list(self):
        """A bracket list can follow a dotted prefix."""
        assert parse_eager("parent.[pets, movies]") == {
            "parent": {"pets": {}, "movies": {}},
        }

    def test_paths_merge(self):
        """Overlapping paths merge into one tree."""
        assert parse_eager("[pets, pets.owner]") == {"pets": {"owner": {}}}

    def test_list_of_expressions(self):
        """A list of expressions merges like a bracket list."""
        assert parse_eager(["parent", "pets.owner"]) == {"parent": {}, "pets": {"owner": {}}}

    def test_empty(self):
        """Empty expressions parse to an empty tree."""
        assert parse_eager(None) == {}
        assert parse_eager("  ") == {}
        assert parse_eager("[]") == {}

    @pytest.mark.parametrize("expression", ["[pets", "pets,", "pets..owner", "pets;drop", "[pets movies]"])
    def test_malformed(self, expression):
        """Malformed expressions raise ValidationError on the eager field."""
        with pytest.raises(ValidationError) as exc_info:
            parse_eager(expression)
        assert exc_info.value.context["field"] == "eager"

    def test_eager_paths(self):
        """eager_paths flattens a tree to its leaf paths."""
        assert eager_paths(parse_eager("[parent.pets, movies]")) == ["parent.pets", "movies"]

    def test_is_subtree(self):
        """is_subtree accepts prefixes of allowed paths only."""
        allowed = parse_eager("[parent.pets, movies]")
        assert is_subtree(parse_eager("parent"), allowed)
        assert is_subtree(parse_eager("parent.pets"), allowed)
        assert not is_subtree(parse_eager("parent.movies"), allowed)
        assert not is_subtree(parse_eager("pets"), allowed)


class TestEagerAllowList:
    """Tests for the eager allow-list."""

    def test_default_allow_list_is_direct_relations(self):
        """The default allow-list is every direct relation."""
        assert sorted(FindQuery(Person).allowed_eager) == ["children", "movies", "parent", "pets", "profile"]

    def test_path_outside_allow_list_fails(self):
        """A path outside the allow-list is a 400."""
        find = FindQuery(Person)
        with pytest.raises(ValidationError) as exc_info:
            find.build({"eager": "pets.owner"}, person_query())
        assert exc_info.value.status_code == 400

    def test_allowed_path_sets_eager_tree(self):
        """An allowed path becomes the query's eager tree."""
        find = FindQuery(Person).allow_eager("[parent, pets.owner]")
        query = find.build({"eager": "pets.owner"}, person_query())
        assert query.eager_tree == {"pets": {"owner": {}}}

    def test_unknown_relation_fails_even_when_unrestricted(self):
        """An unknown relation fails without an allow-list."""
        with pytest.raises(ValidationError):
            person_query().eager("wings")


class TestFilters:
    """Tests for filter keys."""

    def test_filters_add_criteria(self):
        """Each filter key adds one criterion."""
        query = FindQuery(Person).build(
            {"first_name": "F1", "age:gte": "10", "pets.name:like": "P%", "pid:isNull": ""},
            person_query(),
        )
        assert len(query._criteria) == 4

    def test_in_operator_coerces_items(self):
        """The in operator coerces every comma separated item."""
        query = FindQuery(Person).build({"id:in": "1, 2,3"}, person_query())
        compiled = query._criteria[0].compile(compile_kwargs={"literal_binds": True})
        assert "IN (1, 2, 3)" in str(compiled)

    def test_unknown_property(self):
        """An unknown property is a ValidationError."""
        with pytest.raises(ValidationError):
            FindQuery(Person).build({"height": "3"}, person_query())

    def test_unknown_operator(self):
        """An unknown operator is a ValidationError."""
        with pytest.raises(ValidationError):
            FindQuery(Person).build({"age:between": "3"}, person_query())

    def test_uncoercible_value(self):
        """A value that does not coerce is a ValidationError."""
        with pytest.raises(ValidationError):
            FindQuery(Person).build({"age": "old"}, person_query())

    def test_relation_path_on_related_model(self):
        """A dotted filter works on a belongs-to-one relation."""
        query = FindQuery(Animal).build({"owner.first_name": "F0"}, ModelQuery(MagicMock(), Animal))
        assert len(query._criteria) == 1


class TestOrderAndRange:
    """Tests for ordering and range parameters."""

    def test_range_is_inclusive(self):
        """rangeStart and rangeEnd are inclusive offsets."""
        query = FindQuery(Person).build({"rangeStart": "1", "rangeEnd": "2"}, person_query())
        stmt = query._ranged(query._select())
        assert stmt._offset_clause.value == 1
        assert stmt._limit_clause.value == 2

    @pytest.mark.parametrize("params", [{"rangeStart": "a"}, {"rangeEnd": "-1"}])
    def test_bad_range(self, params):
        """Non-numeric or negative range bounds are rejected."""
        with pytest.raises(ValidationError):
            FindQuery(Person).build(params, person_query())

    def test_order_by_own_column_only(self):
        """Ordering accepts own columns and rejects relations."""
        FindQuery(Person).build({"orderBy": "age", "orderByDesc": "id"}, person_query())
        with pytest.raises(ValidationError):
            FindQuery(Person).build({"orderBy": "pets"}, person_query())
