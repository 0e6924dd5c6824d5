# tests/property/conftest.py
"""Shared Hypothesis strategies for property-based tests.

Strategy Categories:
- Evidence: Present / Absent / Unreachable for each remote artifact
- Snapshots: whole probe results, reachable or not
- Task nodes: node id lists in workflow-runtime spelling

Usage:
    from tests.property.conftest import snapshots, task_node_lists

    @given(snapshot=snapshots())
    def test_decision_is_total(snapshot: ProbeSnapshot) -> None:
        ...
"""

# =============================================================================
# Hypothesis Settings
# =============================================================================
#
# For standardized @settings decorators, import from tests.property.settings:
#   from tests.property.settings import STANDARD_SETTINGS, DECISION_SETTINGS
#
# Tiers: DECISION (500), STANDARD (100), SLOW (50), QUICK (20)
# =============================================================================

from __future__ import annotations

from datetime import UTC, datetime, timedelta

from hypothesis import strategies as st

from runwarden.contracts import (
    Absent,
    ExitMarker,
    HeartbeatSnapshot,
    PidStatus,
    Present,
    ProbeSnapshot,
    Target,
    TaskNodeState,
    TaskState,
    Unreachable,
)

TARGET = Target(vm="ralph-1", control_dir="/c", task_db_path="/c/tasks.db", workdir="/w")

OBSERVED_AT = datetime(2026, 6, 1, 12, 0, tzinfo=UTC)

reasons = st.text(min_size=1, max_size=20, alphabet=st.characters(whitelist_categories=("L", "N")))

absent = st.builds(Absent, reasons)
unreachable = st.builds(Unreachable, reasons)

pid_evidence = st.one_of(
    st.builds(Present, st.builds(PidStatus, pid=st.integers(1, 2**22), alive=st.booleans())),
    absent,
    unreachable,
)

# Ages straddle the default 120s threshold; negative ages model clock skew
heartbeat_evidence = st.one_of(
    st.builds(
        Present,
        st.builds(
            HeartbeatSnapshot,
            timestamp=st.integers(-5_000, 600_000).map(lambda age_ms: OBSERVED_AT - timedelta(milliseconds=age_ms)),
            pid=st.none() | st.integers(1, 2**22),
            phase=st.sampled_from(["running", "blocked", "waiting-approval", "implement"]),
        ),
    ),
    absent,
    unreachable,
)

exit_evidence = st.one_of(
    st.builds(Present, st.builds(ExitMarker, code=st.integers(0, 255))),
    absent,
    unreachable,
)

node_ids = st.integers(1, 60).flatmap(lambda n: st.sampled_from([f"{n}:impl", f"{n}:val", f"task-{n}:impl"]))

task_node_lists = st.lists(
    st.builds(TaskNodeState, node_id=node_ids, state=st.sampled_from(list(TaskState))),
    max_size=40,
    unique_by=lambda node: node.node_id,
)

task_evidence = st.one_of(
    task_node_lists.map(lambda nodes: Present(tuple(nodes))),
    st.just(Absent("task database missing")),
    unreachable,
)


@st.composite
def snapshots(draw: st.DrawFn) -> ProbeSnapshot:
    """Reachable snapshots with arbitrary artifact evidence, or a fully unreachable one."""
    if draw(st.integers(0, 9)) == 0:
        return ProbeSnapshot.unreachable(TARGET, draw(reasons))
    return ProbeSnapshot(
        target=TARGET,
        observed_at=OBSERVED_AT,
        pid=draw(pid_evidence),
        heartbeat=draw(heartbeat_evidence),
        exit_marker=draw(exit_evidence),
        tasks=draw(task_evidence),
    )
