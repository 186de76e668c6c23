"""
Tests — duplicate detection, keeper selection and the merge engine.

Covers:
    1. find_duplicate_groups / find_duplicate_projects
    2. select_keeper ranking
    3. merge_activities (conservation, paths, validation, atomicity)
    4. auto_merge_all_duplicates
"""

from datetime import datetime, timedelta, timezone

import pytest

from activity_core.core.exceptions import NotFoundError, ValidationError
from activity_core.models import db
from activity_core.models.activity import Activity, ActivityMember
from activity_core.models.commitment import Commitment
from activity_core.models.entity import Entity
from activity_core.services import activity_service, merge_service
from activity_core.services.duplicate_detector import (
    find_duplicate_groups,
    find_duplicate_projects,
)
from activity_core.services.merge_service import (
    auto_merge_all_duplicates,
    merge_activities,
    select_keeper,
)


def _make_entity(name, entity_type="person"):
    e = Entity(name=name, entity_type=entity_type)
    db.session.add(e)
    db.session.commit()
    return e


def _make_commitment(title, activity):
    c = Commitment(title=title, activity_id=activity.id)
    db.session.add(c)
    db.session.commit()
    return c


def _set_created(activity, when):
    activity.created_at = when
    db.session.commit()


# ═══════════════════════════════════════════════════════════════════════════
#  1. Duplicate detection
# ═══════════════════════════════════════════════════════════════════════════

class TestDuplicateDetector:

    def test_case_insensitive_group(self, make_activity):
        a = make_activity("Project Alpha", "project")
        b = make_activity("project alpha", "project")
        make_activity("Project Beta", "project")

        groups = find_duplicate_projects()
        assert len(groups) == 1
        group = groups[0]
        assert group.count == 2
        assert group.type == "project"
        assert group.name == "project alpha"
        assert set(group.activity_ids) == {a.id, b.id}

    def test_cyrillic_case_variants_group(self, make_activity):
        a = make_activity("Проект Альфа", "project")
        b = make_activity("проект альфа", "project")

        groups = find_duplicate_groups()
        assert len(groups) == 1
        assert groups[0].name == "проект альфа"
        assert set(groups[0].activity_ids) == {a.id, b.id}

    def test_original_is_oldest(self, make_activity):
        a = make_activity("Project Alpha", "project")
        b = make_activity("project alpha", "project")
        _set_created(b, datetime.now(timezone.utc) - timedelta(days=3))
        group = find_duplicate_projects()[0]
        assert group.original["id"] == b.id
        assert group.activities[1]["id"] == a.id

    def test_different_types_do_not_group(self, make_activity):
        make_activity("Alpha", "project")
        make_activity("Alpha", "task")
        assert find_duplicate_groups() == []

    def test_deleted_activities_ignored(self, make_activity):
        make_activity("Alpha", "project")
        b = make_activity("Alpha", "project")
        activity_service.soft_delete_activity(b.id)
        assert find_duplicate_groups() == []

    def test_type_filter(self, make_activity):
        make_activity("Alpha", "project")
        make_activity("Alpha", "project")
        make_activity("Chore", "task")
        make_activity("chore", "task")
        assert [g.type for g in find_duplicate_groups(types=["task"])] == ["task"]
        assert len(find_duplicate_groups()) == 2

    def test_to_dict(self, make_activity):
        make_activity("Alpha", "project")
        make_activity("alpha", "project")
        d = find_duplicate_groups()[0].to_dict()
        assert d["count"] == 2
        assert len(d["activities"]) == 2


# ═══════════════════════════════════════════════════════════════════════════
#  2. Keeper selection
# ═══════════════════════════════════════════════════════════════════════════

class TestSelectKeeper:

    def test_more_children_wins(self, make_activity):
        a = make_activity("Alpha", "project")
        b = make_activity("alpha", "project")
        make_activity("T1", parent=b)
        keep_id, merge_ids = select_keeper([a.id, b.id])
        assert keep_id == b.id
        assert merge_ids == [a.id]

    def test_members_break_child_tie(self, make_activity):
        a = make_activity("Alpha", "project")
        b = make_activity("alpha", "project")
        activity_service.add_member(b.id, _make_entity("Alice").id)
        assert select_keeper([a.id, b.id])[0] == b.id

    def test_oldest_wins_otherwise(self, make_activity):
        a = make_activity("Alpha", "project")
        b = make_activity("alpha", "project")
        _set_created(b, datetime.now(timezone.utc) - timedelta(days=1))
        assert select_keeper([a.id, b.id]) == (b.id, [a.id])

    def test_unknown_ids(self):
        with pytest.raises(NotFoundError):
            select_keeper(["nope"])


# ═══════════════════════════════════════════════════════════════════════════
#  3. merge_activities
# ═══════════════════════════════════════════════════════════════════════════

class TestMergeActivities:

    def _pair_with_content(self, make_activity):
        area = make_activity("Work", "area")
        keep = make_activity("Project Alpha", "project", parent=area)
        dup = make_activity("project alpha", "project")
        sub = make_activity("Phase 1", "project", parent=dup)
        t1 = make_activity("Design", parent=sub)
        t2 = make_activity("Kickoff", parent=dup)
        alice = _make_entity("Alice")
        bob = _make_entity("Bob")
        activity_service.add_member(keep.id, alice.id, "owner")
        activity_service.add_member(dup.id, alice.id, "owner")
        activity_service.add_member(dup.id, bob.id, "member")
        c1 = _make_commitment("Send estimate", dup)
        c2 = _make_commitment("Book room", keep)
        return dict(area=area, keep=keep, dup=dup, sub=sub, t1=t1, t2=t2,
                    alice=alice, bob=bob, c1=c1, c2=c2)

    def test_conserves_children_members_commitments(self, make_activity):
        s = self._pair_with_content(make_activity)

        summary = merge_activities(s["keep"].id, [s["dup"].id])

        assert summary["children_moved"] == 2
        assert summary["members_moved"] == 1
        assert summary["members_skipped"] == 1
        assert summary["commitments_moved"] == 1

        children = {a.id for a in activity_service.get_children(s["keep"].id)}
        assert children == {s["sub"].id, s["t2"].id}

        keeper_members = {(m.entity_id, m.role) for m in
                          ActivityMember.query.filter_by(activity_id=s["keep"].id)}
        assert keeper_members == {(s["alice"].id, "owner"), (s["bob"].id, "member")}

        linked = {c.id for c in Commitment.query.filter_by(activity_id=s["keep"].id)}
        assert linked == {s["c1"].id, s["c2"].id}

    def test_soft_deleted_children_stay_behind(self, make_activity):
        keep = make_activity("Project Alpha", "project")
        dup = make_activity("project alpha", "project")
        live = make_activity("Kickoff", parent=dup)
        gone = make_activity("Old kickoff", parent=dup)
        activity_service.soft_delete_activity(gone.id)
        gone_path, gone_version = gone.materialized_path, gone.version

        summary = merge_activities(keep.id, [dup.id])

        assert summary["children_moved"] == 1
        db.session.expire_all()
        assert db.session.get(Activity, live.id).parent_id == keep.id
        gone = db.session.get(Activity, gone.id)
        assert gone.parent_id == dup.id
        assert gone.materialized_path == gone_path
        assert gone.version == gone_version

    def test_merged_activity_is_archived_and_deleted(self, make_activity):
        s = self._pair_with_content(make_activity)
        merge_activities(s["keep"].id, [s["dup"].id])
        dup = db.session.get(Activity, s["dup"].id)
        assert dup.status == "archived"
        assert dup.is_deleted

    def test_grandchild_paths_follow_keeper(self, make_activity):
        s = self._pair_with_content(make_activity)
        merge_activities(s["keep"].id, [s["dup"].id])

        t1 = db.session.get(Activity, s["t1"].id)
        db.session.refresh(t1)
        assert t1.ancestor_ids == [s["area"].id, s["keep"].id, s["sub"].id]
        assert t1.depth == 3
        for activity in Activity.query_active().all():
            assert activity.depth == len(activity.ancestor_ids)

    def test_keep_in_merge_ids(self, make_activity):
        a = make_activity("Alpha", "project")
        with pytest.raises(ValidationError, match="keep_id"):
            merge_activities(a.id, [a.id])

    def test_empty_merge_ids(self, make_activity):
        a = make_activity("Alpha", "project")
        with pytest.raises(ValidationError):
            merge_activities(a.id, [])

    def test_missing_ids(self, make_activity):
        a = make_activity("Alpha", "project")
        with pytest.raises(NotFoundError) as exc:
            merge_activities(a.id, ["ghost-1", "ghost-2"])
        assert exc.value.resource_id == ["ghost-1", "ghost-2"]

    def test_already_merged_is_not_found(self, make_activity):
        a = make_activity("Alpha", "project")
        b = make_activity("Alpha", "project")
        merge_activities(a.id, [b.id])
        with pytest.raises(NotFoundError):
            merge_activities(a.id, [b.id])

    def test_ancestor_of_keeper_rejected(self, make_activity):
        outer = make_activity("Alpha", "project")
        inner = make_activity("Alpha", "project", parent=outer)
        with pytest.raises(ValidationError, match="ancestor"):
            merge_activities(inner.id, [outer.id])

    def test_failure_rolls_back_everything(self, make_activity, monkeypatch):
        s = self._pair_with_content(make_activity)

        def _boom(*args, **kwargs):
            raise RuntimeError("disk on fire")

        monkeypatch.setattr(merge_service, "_reassign_commitments", _boom)

        with pytest.raises(RuntimeError, match="disk on fire"):
            merge_activities(s["keep"].id, [s["dup"].id])

        dup = db.session.get(Activity, s["dup"].id)
        assert dup.status == "active"
        assert not dup.is_deleted
        assert dup.version == 1
        assert {a.id for a in activity_service.get_children(s["dup"].id)} == {s["sub"].id, s["t2"].id}
        assert ActivityMember.query.filter_by(activity_id=s["dup"].id).count() == 2
        assert db.session.get(Commitment, s["c1"].id).activity_id == s["dup"].id
        t1 = db.session.get(Activity, s["t1"].id)
        assert t1.ancestor_ids == [s["dup"].id, s["sub"].id]


# ═══════════════════════════════════════════════════════════════════════════
#  4. auto_merge_all_duplicates
# ═══════════════════════════════════════════════════════════════════════════

class TestAutoMerge:

    def test_merges_every_group(self, make_activity):
        a = make_activity("Project Alpha", "project")
        b = make_activity("project alpha", "project")
        make_activity("Child", parent=b)
        make_activity("Chore", "task")
        make_activity("chore", "task")

        result = auto_merge_all_duplicates()

        assert result["merged_groups"] == 2
        assert result["total_merged"] == 2
        assert result["errors"] == []
        kept = {d["kept_id"] for d in result["details"]}
        assert b.id in kept
        assert db.session.get(Activity, a.id).is_deleted
        assert find_duplicate_groups() == []

    def test_failing_group_is_collected(self, make_activity, monkeypatch):
        make_activity("Alpha", "project")
        make_activity("alpha", "project")

        def _boom(keep_id, merge_ids):
            raise RuntimeError("merge exploded")

        monkeypatch.setattr(merge_service, "merge_activities", _boom)
        result = auto_merge_all_duplicates()
        assert result["merged_groups"] == 0
        assert result["errors"] == [{"group": "alpha", "error": "merge exploded"}]
