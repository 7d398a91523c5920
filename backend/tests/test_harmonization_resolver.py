"""Tests for the harmonization resolver — pure function over hand-built snapshots."""
from types import SimpleNamespace

from harmonizer.services.control_catalog import ControlCatalog, ControlRef
from harmonizer.services.harmonization import resolve
from harmonizer.services.mapping_index import Confidence, MappingIndex
from harmonizer.services.plan_snapshot import (
    DonorPlan,
    PlanRef,
    PlanSnapshot,
    TaskRef,
    effective_control_code,
)

ISO, SOC, NIST = 1, 2, 3

CATALOG = ControlCatalog([
    ControlRef(10, ISO, "A.5.1", "Policies for information security"),
    ControlRef(11, ISO, "A.8.1", "User endpoint devices"),
    ControlRef(12, ISO, "A.9.1", "Access control policy"),
    ControlRef(20, SOC, "CC1.1", "COSO Principle 1"),
    ControlRef(21, SOC, "CC6.1", "Logical access security"),
    ControlRef(22, SOC, "CC6.2", "User registration"),
    ControlRef(30, NIST, "PR.AA-01", "Identities managed"),
])


def _index(*edges):
    return MappingIndex.build(
        [SimpleNamespace(source_control_id=s, target_control_id=t, confidence=c) for s, t, c in edges],
        CATALOG,
    )


def _plan(id, framework_id=ISO, status="in_progress", hours=100, client_id=1):
    return PlanRef(id=id, client_id=client_id, framework_id=framework_id, title=f"Plan {id}",
                   status=status, estimated_hours=hours)


def _task(id, plan_id, code=None, status="todo", hours=8, title=None, derived=False):
    return TaskRef(id=id, plan_id=plan_id, title=title or f"Task {id}", status=status,
                   control_code=code, estimated_hours=hours, code_derived=derived)


def _snapshot(target_tasks, donors, target=None):
    return PlanSnapshot(
        target_plan=target or _plan(1),
        target_tasks=tuple(target_tasks),
        donors=tuple(DonorPlan(plan=p, done_tasks=tuple(ts)) for p, ts in donors),
    )


# ─── Structural pass ────────────────────────────────────────


def test_manual_mapping_credits_outstanding_task():
    snap = _snapshot(
        [_task(101, 1, "A.5.1", hours=8)],
        [(_plan(2, SOC, "in_progress"), [_task(201, 2, "CC1.1", "done")])],
    )
    result = resolve(snap, _index((20, 10, "manual")))

    assert len(result) == 1
    opp = result[0]
    assert opp.target_task_id == 101
    assert opp.source_plan_id == 2
    assert opp.source_task_id == 201
    assert opp.confidence is Confidence.MANUAL
    assert opp.saved_hours == 8


def test_saved_hours_come_from_target_task_not_donor():
    snap = _snapshot(
        [_task(101, 1, "A.5.1", hours=13)],
        [(_plan(2, SOC), [_task(201, 2, "CC1.1", "done", hours=40)])],
    )
    assert resolve(snap, _index((20, 10, "manual")))[0].saved_hours == 13


def test_missing_target_estimate_saves_zero_hours():
    snap = _snapshot(
        [_task(101, 1, "A.5.1", hours=None)],
        [(_plan(2, SOC), [_task(201, 2, "CC1.1", "done")])],
    )
    assert resolve(snap, _index((20, 10, "manual")))[0].saved_hours == 0


def test_higher_confidence_replaces_earlier_match():
    snap = _snapshot(
        [_task(101, 1, "A.5.1")],
        [(_plan(2, SOC), [
            _task(201, 2, "CC6.1", "done"),
            _task(202, 2, "CC1.1", "done"),
        ])],
    )
    result = resolve(snap, _index((21, 10, "ai_medium"), (20, 10, "manual")))
    assert len(result) == 1
    assert result[0].confidence is Confidence.MANUAL
    assert result[0].source_task_id == 202


def test_lower_confidence_does_not_replace():
    snap = _snapshot(
        [_task(101, 1, "A.5.1")],
        [(_plan(2, SOC), [
            _task(201, 2, "CC1.1", "done"),
            _task(202, 2, "CC6.1", "done"),
        ])],
    )
    result = resolve(snap, _index((20, 10, "ai_high"), (21, 10, "heuristic")))
    assert result[0].confidence is Confidence.AI_HIGH
    assert result[0].source_task_id == 201


def test_equal_confidence_keeps_first_seen():
    snap = _snapshot(
        [_task(101, 1, "A.5.1")],
        [
            (_plan(2, SOC), [_task(201, 2, "CC1.1", "done")]),
            (_plan(3, NIST), [_task(301, 3, "PR.AA-01", "done")]),
        ],
    )
    result = resolve(snap, _index((20, 10, "ai_high"), (30, 10, "ai_high")))
    assert result[0].source_plan_id == 2


def test_each_target_task_appears_once():
    snap = _snapshot(
        [_task(101, 1, "A.5.1"), _task(102, 1, "A.8.1")],
        [(_plan(2, SOC), [
            _task(201, 2, "CC1.1", "done"),
            _task(202, 2, "CC6.1", "done"),
            _task(203, 2, "CC6.2", "done"),
        ])],
    )
    index = _index(
        (20, 10, "manual"), (21, 10, "ai_medium"), (21, 11, "ai_high"), (22, 11, "manual"),
    )
    ids = [o.target_task_id for o in resolve(snap, index)]
    assert sorted(ids) == [101, 102]


def test_done_target_tasks_are_not_credited():
    snap = _snapshot(
        [_task(101, 1, "A.5.1", "done")],
        [(_plan(2, SOC), [_task(201, 2, "CC1.1", "done")])],
    )
    assert resolve(snap, _index((20, 10, "manual"))) == []


def test_mapping_into_other_framework_is_ignored():
    # CC1.1 → PR.AA-01 targets NIST, not the ISO target plan
    snap = _snapshot(
        [_task(101, 1, "A.5.1")],
        [(_plan(2, SOC), [_task(201, 2, "CC1.1", "done")])],
    )
    assert resolve(snap, _index((20, 30, "manual"))) == []


def test_only_one_hop_is_followed():
    # CC1.1 → PR.AA-01 → A.5.1 would need two hops
    snap = _snapshot(
        [_task(101, 1, "A.5.1")],
        [(_plan(2, SOC), [_task(201, 2, "CC1.1", "done")])],
    )
    assert resolve(snap, _index((20, 30, "manual"), (30, 10, "manual"))) == []


def test_target_plan_never_acts_as_its_own_donor():
    target = _plan(1)
    snap = _snapshot(
        [_task(101, 1, "A.5.1")],
        [(target, [_task(102, 1, "A.9.1", "done", title="Task 101")])],
        target=target,
    )
    assert resolve(snap, _index((12, 10, "manual"))) == []


def test_duplicate_target_codes_credit_first_task():
    snap = _snapshot(
        [_task(105, 1, "A.5.1"), _task(101, 1, "A.5.1")],
        [(_plan(2, SOC), [_task(201, 2, "CC1.1", "done")])],
    )
    result = resolve(snap, _index((20, 10, "manual")))
    assert [o.target_task_id for o in result] == [101]


# ─── Data gaps ──────────────────────────────────────────────


def test_unknown_donor_control_is_skipped_with_warning():
    snap = _snapshot(
        [_task(101, 1, "A.5.1")],
        [(_plan(2, SOC), [
            _task(201, 2, "CC9.9", "done"),
            _task(202, 2, "CC1.1", "done"),
        ])],
    )
    warnings = []
    result = resolve(snap, _index((20, 10, "manual")), warnings)
    assert [o.target_task_id for o in result] == [101]
    assert len(warnings) == 1
    assert warnings[0].kind == "unknown_control"
    assert warnings[0].task_id == 201
    assert warnings[0].plan_id == 2


def test_donor_tasks_without_code_do_not_warn():
    snap = _snapshot([_task(101, 1, "A.5.1")], [(_plan(2, SOC), [_task(201, 2, None, "done")])])
    warnings = []
    assert resolve(snap, _index(), warnings) == []
    assert warnings == []


def test_guessed_donor_code_missing_from_catalog_does_not_warn():
    title = "Q3.2025 Kickoff workshop"
    code = effective_control_code(None, title)
    assert code == "Q3.2025"
    snap = _snapshot(
        [_task(101, 1, "A.5.1")],
        [(_plan(2, SOC), [_task(201, 2, code, "done", title=title, derived=True)])],
    )
    warnings = []
    assert resolve(snap, _index((20, 10, "manual")), warnings) == []
    assert warnings == []


# ─── Heuristic pass ─────────────────────────────────────────


def test_title_match_without_mappings():
    snap = _snapshot(
        [_task(101, 1, None, hours=6, title="Access Control Policy")],
        [(_plan(2, SOC), [_task(201, 2, None, "done", title="Access Control Policy")])],
    )
    result = resolve(snap, _index())
    assert len(result) == 1
    assert result[0].confidence is Confidence.HEURISTIC
    assert result[0].saved_hours == 6
    assert "title match" in result[0].source_description


def test_title_match_is_exact():
    snap = _snapshot(
        [_task(101, 1, None, title="Access Control Policy")],
        [(_plan(2, SOC), [_task(201, 2, None, "done", title="access control policy")])],
    )
    assert resolve(snap, _index()) == []


def test_title_match_does_not_override_structural_match():
    snap = _snapshot(
        [_task(101, 1, "A.5.1", title="Security policy")],
        [(_plan(2, SOC), [
            _task(201, 2, "CC6.1", "done", title="Security policy"),
            _task(202, 2, "CC1.1", "done"),
        ])],
    )
    result = resolve(snap, _index((20, 10, "ai_medium")))
    assert result[0].confidence is Confidence.AI_MEDIUM
    assert result[0].source_task_id == 202


def test_title_match_credits_every_matching_outstanding_task():
    snap = _snapshot(
        [
            _task(101, 1, None, title="Security awareness"),
            _task(102, 1, None, title="Security awareness"),
        ],
        [(_plan(2, SOC), [_task(201, 2, None, "done", title="Security awareness")])],
    )
    assert sorted(o.target_task_id for o in resolve(snap, _index())) == [101, 102]


# ─── Ordering & determinism ─────────────────────────────────


def test_sorted_by_saved_hours_then_task_id():
    snap = _snapshot(
        [
            _task(103, 1, "A.9.1", hours=4),
            _task(101, 1, "A.5.1", hours=4),
            _task(102, 1, "A.8.1", hours=10),
        ],
        [(_plan(2, SOC), [
            _task(201, 2, "CC1.1", "done"),
            _task(202, 2, "CC6.1", "done"),
        ])],
    )
    index = _index((20, 10, "manual"), (21, 11, "manual"), (21, 12, "ai_high"))
    assert [o.target_task_id for o in resolve(snap, index)] == [102, 101, 103]


def test_repeated_resolution_is_identical():
    snap = _snapshot(
        [_task(101, 1, "A.5.1"), _task(102, 1, None, title="Access Control Policy")],
        [(_plan(2, SOC), [
            _task(201, 2, "CC1.1", "done"),
            _task(202, 2, None, "done", title="Access Control Policy"),
        ])],
    )
    index = _index((20, 10, "manual"))
    assert resolve(snap, index) == resolve(snap, index)


def test_no_donors_no_opportunities():
    assert resolve(_snapshot([_task(101, 1, "A.5.1")], []), _index((20, 10, "manual"))) == []


# ─── Effective control codes ────────────────────────────────


class TestEffectiveControlCode:
    def test_explicit_code_wins(self):
        assert effective_control_code(" A.5.1 ", "A.9.1 Access", ["CC6.1"]) == "A.5.1"

    def test_code_from_title_prefix(self):
        assert effective_control_code(None, "A.5.1 Information security policies") == "A.5.1"

    def test_title_without_dotted_prefix(self):
        assert effective_control_code(None, "Access Control Policy") is None

    def test_code_from_tags(self):
        assert effective_control_code("", "Review", ["urgent", "NIST-RC-IM"]) == "NIST-RC-IM"

    def test_short_tags_ignored(self):
        assert effective_control_code(None, "Review", ["a1", 5]) is None
