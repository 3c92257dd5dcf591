"""
ModelRest — Relation Set Reconciler Tests
==========================================

What we test:
    ✅ Insert / update / delete classification of a submitted collection
    ✅ Coercing identifier comparison (34 == "34", None matches nothing)
    ✅ Insert payloads lose client-supplied ids
    ✅ Idempotence once current state equals the submission
    ✅ apply_plan runs the delete batch before updates and inserts
"""

from decimal import Decimal
from unittest.mock import AsyncMock, MagicMock
from uuid import uuid4

import pytest

from modelrest.reconciler import apply_plan, identity_key, ids_equal, reconcile


CURRENT = [{"id": 34, "name": "A"}, {"id": 37, "name": "B"}]


class TestIdsEqual:
    """Tests for loose identifier comparison."""

    @pytest.mark.parametrize(
        "left, right",
        [
            (34, "34"),
            ("34", 34),
            (34, 34.0),
            (" 34 ", 34),
            (Decimal("34"), "34.0"),
            ("abc", "abc"),
        ],
    )
    def test_equal(self, left, right):
        """Numeric and textual forms of one id compare equal."""
        assert ids_equal(left, right)

    @pytest.mark.parametrize(
        "left, right",
        [
            (34, 35),
            (34, "34a"),
            (None, None),
            (None, 34),
            ("", ""),
            (True, 1),
        ],
    )
    def test_not_equal(self, left, right):
        """Different ids, missing ids and booleans never compare equal."""
        assert not ids_equal(left, right)

    def test_uuid_matches_its_text(self):
        """A UUID equals its string form."""
        value = uuid4()
        assert ids_equal(value, str(value))

    def test_identity_key_of_none_is_none(self):
        """None has no identity key."""
        assert identity_key(None) is None


class TestReconcile:
    """Tests for computing a reconciliation plan."""

    def test_mixed_submission(self):
        """Kept ids update, unknown ids insert and missing members delete."""
        submitted = [{"id": 34, "name": "A2"}, {"id": 99999, "name": "C"}, {"name": "D"}]

        plan = reconcile(CURRENT, submitted, "id")

        assert plan.delete_ids == [37]
        assert list(plan.update) == [{"id": 34, "name": "A2"}]
        assert list(plan.insert) == [{"name": "C"}, {"name": "D"}]

    def test_string_ids_match_numeric_members(self):
        """String ids match numeric members."""
        plan = reconcile(CURRENT, [{"id": "34", "name": "A2"}, {"id": "37"}], "id")

        assert plan.delete == ()
        assert plan.insert == ()
        assert [item["id"] for item in plan.update] == ["34", "37"]

    def test_insert_and_update_partition_submission(self):
        """Every submitted item lands in exactly one of insert or update."""
        submitted = [{"id": 34}, {"id": 1}, {"name": "new"}, {"id": None, "name": "x"}]

        plan = reconcile(CURRENT, submitted, "id")

        assert len(plan.insert) + len(plan.update) == len(submitted)
        assert plan.delete_ids == [37]

    def test_empty_submission_deletes_everything(self):
        """An empty submission deletes every member."""
        plan = reconcile(CURRENT, [], "id")
        assert plan.delete_ids == [34, 37]
        assert plan.insert == () and plan.update == ()

    def test_empty_current_inserts_everything(self):
        """An empty relation inserts every item without its id."""
        plan = reconcile([], [{"id": 5, "name": "X"}], "id")
        assert list(plan.insert) == [{"name": "X"}]
        assert not plan.is_empty

    def test_idempotent_after_convergence(self):
        """Reconciling a converged relation inserts and deletes nothing."""
        submitted = [{"id": 34, "name": "A2"}, {"id": 37, "name": "B"}]

        first = reconcile(CURRENT, submitted, "id")
        converged = [dict(item) for item in first.update]
        second = reconcile(converged, submitted, "id")

        assert second.insert == ()
        assert second.delete == ()

    def test_custom_id_key(self):
        """The id property name is configurable."""
        current = [{"code": "x1"}, {"code": "x2"}]
        plan = reconcile(current, [{"code": "x2"}], "code")
        assert plan.delete_ids == ["x1"]

    def test_orm_like_members(self):
        """Members may be objects with an id attribute."""
        member = MagicMock(id=34)
        plan = reconcile([member], [{"id": "34"}], "id")
        assert plan.delete == ()
        assert len(plan.update) == 1


class TestApplyPlan:
    """Tests for executing a plan."""

    @pytest.mark.asyncio
    async def test_delete_runs_before_updates_and_inserts(self):
        """The delete batch runs before any update or insert."""
        calls = []

        related = MagicMock()
        related.where_in.return_value = related
        related.delete = AsyncMock(side_effect=lambda: calls.append("delete"))
        related.insert = AsyncMock(side_effect=lambda item: calls.append(("insert", item)))

        by_id = MagicMock()
        by_id.patch = AsyncMock(side_effect=lambda values: calls.append(("patch", values)))

        plan = reconcile(CURRENT, [{"id": 34, "name": "A2"}, {"name": "D"}], "id")
        await apply_plan(plan, related_query=lambda: related, query_by_id=lambda row_id: by_id)

        assert calls[0] == "delete"
        related.where_in.assert_called_once_with("id", [37])
        assert ("patch", {"name": "A2"}) in calls
        assert ("insert", {"name": "D"}) in calls

    @pytest.mark.asyncio
    async def test_no_delete_when_nothing_to_delete(self):
        """No delete is issued for an empty delete set."""
        related = MagicMock()
        related.insert = AsyncMock()
        plan = reconcile([], [{"name": "D"}], "id")

        await apply_plan(plan, related_query=lambda: related, query_by_id=MagicMock())

        related.where_in.assert_not_called()
        related.insert.assert_awaited_once_with({"name": "D"})

    @pytest.mark.asyncio
    async def test_failure_propagates(self):
        """A failing step raises to the caller."""
        related = MagicMock()
        related.where_in.return_value = related
        related.delete = AsyncMock(side_effect=RuntimeError("boom"))
        plan = reconcile(CURRENT, [], "id")

        with pytest.raises(RuntimeError):
            await apply_plan(plan, related_query=lambda: related, query_by_id=MagicMock())
