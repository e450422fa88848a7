"""
Tests for the roster — versioned snapshots and size bounds.
"""

import threading

import pytest

from webtier.core.engine.roster import CapacityError, PoolSnapshot, Roster
from webtier.core.models.health import HealthStatus
from webtier.core.models.member import PoolMember


class TestPoolSnapshot:
    def test_empty(self):
        snap = PoolSnapshot()
        assert snap.version == 0
        assert snap.size == 0
        assert snap.healthy_members == ()

    def test_healthy_members_sorted_by_id(self, make_member):
        snap = PoolSnapshot(1, (
            make_member(member_id="m-c", status=HealthStatus.HEALTHY),
            make_member(member_id="m-a", status=HealthStatus.HEALTHY),
            make_member(member_id="m-b", status=HealthStatus.UNHEALTHY),
        ))
        assert [m.id for m in snap.healthy_members] == ["m-a", "m-c"]
        assert snap.healthy_count == 2
        assert [m.id for m in snap.unhealthy_members] == ["m-b"]

    def test_get(self, make_member):
        member = make_member()
        snap = PoolSnapshot(1, (member,))
        assert snap.get(member.id) == member
        assert snap.get("missing") is None

    def test_zone_counts_include_empty_zones(self, make_member):
        snap = PoolSnapshot(1, (make_member(zone="a"), make_member(zone="a")))
        assert snap.zone_counts(["a", "b"]) == {"a": 2, "b": 0}


class TestRosterPublish:
    def test_add_bumps_version(self, roster: Roster, make_member):
        before = roster.snapshot()
        after = roster.add([make_member(), make_member()])
        assert after.version == before.version + 1
        assert after.size == 2
        assert roster.snapshot() is after

    def test_old_snapshot_unchanged(self, roster: Roster, make_member):
        roster.add([make_member(), make_member()])
        held = roster.snapshot()
        roster.add([make_member()])
        assert held.size == 2

    def test_growth_toward_min_allowed(self, roster: Roster, make_member):
        assert roster.add([make_member()]).size == 1

    def test_above_max_rejected(self, make_member):
        roster = Roster(min_size=0, max_size=2)
        roster.add([make_member(), make_member()])
        with pytest.raises(CapacityError, match="max_size"):
            roster.add([make_member()])
        assert roster.snapshot().size == 2

    def test_shrink_below_min_rejected(self, roster: Roster, make_member):
        a, b, c = make_member(), make_member(), make_member()
        roster.add([a, b, c])
        roster.remove([a.id])
        with pytest.raises(CapacityError, match="min_size"):
            roster.remove([b.id])
        assert roster.snapshot().size == 2

    def test_remove_unknown(self, roster: Roster, make_member):
        roster.add([make_member(), make_member(), make_member()])
        with pytest.raises(KeyError):
            roster.remove(["nope"])

    def test_duplicate_ids_rejected(self, roster: Roster, make_member):
        member = make_member()
        roster.add([member])
        with pytest.raises(CapacityError, match="duplicate"):
            roster.add([member])

    def test_swap_keeps_size(self, roster: Roster, make_member):
        a, b = make_member(), make_member()
        roster.add([a, b])
        c = make_member()
        snap = roster.swap(a.id, c)
        assert snap.size == 2
        assert {m.id for m in snap.members} == {b.id, c.id}

    def test_swap_unknown(self, roster: Roster, make_member):
        roster.add([make_member(), make_member()])
        with pytest.raises(KeyError):
            roster.swap("nope", make_member())

    def test_update_health(self, roster: Roster, make_member):
        a, b = make_member(), make_member()
        roster.add([a, b])
        healthy = a.model_copy(update={"status": HealthStatus.HEALTHY, "consecutive_successes": 2})
        snap = roster.update_health({a.id: healthy, "gone": healthy})
        assert snap.get(a.id).healthy
        assert snap.get(a.id).consecutive_successes == 2
        assert snap.size == 2

    def test_update_health_keeps_membership_fields(self, roster: Roster, make_member):
        a = make_member(zone="a")
        roster.add([a, make_member()])
        stale = a.model_copy(update={"zone": "elsewhere", "status": HealthStatus.HEALTHY})
        snap = roster.update_health({a.id: stale})
        assert snap.get(a.id).zone == "a"

    def test_min_above_max(self):
        with pytest.raises(CapacityError):
            Roster(min_size=3, max_size=2)


class TestRosterListeners:
    def test_listener_sees_every_version(self, roster: Roster, make_member):
        seen = []
        roster.subscribe(lambda snap: seen.append(snap.version))
        roster.add([make_member()])
        roster.add([make_member()])
        assert seen == [1, 2]

    def test_rejected_publish_not_announced(self, make_member):
        roster = Roster(min_size=0, max_size=1)
        seen = []
        roster.subscribe(seen.append)
        roster.add([make_member()])
        with pytest.raises(CapacityError):
            roster.add([make_member()])
        assert len(seen) == 1


class TestRosterConcurrency:
    def test_parallel_adds_never_exceed_max(self, make_member):
        roster = Roster(min_size=0, max_size=10)
        members = [make_member() for _ in range(40)]
        rejected = []

        def add(member: PoolMember) -> None:
            try:
                roster.add([member])
            except CapacityError:
                rejected.append(member.id)

        threads = [threading.Thread(target=add, args=(m,)) for m in members]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        snap = roster.snapshot()
        assert snap.size == 10
        assert snap.version == 10
        assert len(rejected) == 30
