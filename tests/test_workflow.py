from __future__ import annotations

from typing import List, Sequence

import numpy as np
import pytest

from chronoframe.chronolog.model import AlignmentCandidate, ProxySeries, Section, TiePoint
from chronoframe.errors import (
    AlignmentCancelled,
    NoAgeData,
    NonMonotonicTiePoints,
    StaleAgeModel,
    WorkflowStateError,
)
from chronoframe.splice.composer import SpliceComposer
from chronoframe.workflow import CorrelationWorkflow, SessionState


def _make_v_section(sid: str, trough: int, *, n: int = 101, half_width: int = 4) -> Section:
    v = np.ones(n, dtype="float64")
    for k in range(-half_width, half_width + 1):
        v[trough + k] = abs(k) / float(half_width)
    return Section.from_rows(sid, [{"depth": float(z), "delta18O": float(v[z])} for z in range(n)])


def _make_session(b_ties: Sequence[TiePoint] = ()) -> CorrelationWorkflow:
    a = _make_v_section("A", 40)
    b = _make_v_section("B", 55)
    ties = [TiePoint("A", 0.0, 0.0), TiePoint("A", 100.0, 1000.0)] + list(b_ties)
    return CorrelationWorkflow([a, b], ties)


class _FixedStrategy:
    def __init__(self, cands: List[AlignmentCandidate]) -> None:
        self.cands = cands
        self.asked: List[int] = []

    def suggest(self, reference: ProxySeries, target: ProxySeries, max_suggestions: int = 7) -> List[AlignmentCandidate]:
        self.asked.append(int(max_suggestions))
        return list(self.cands[:max_suggestions])


def test_suggest_moves_to_reviewing() -> None:
    wf = _make_session()
    assert wf.state is SessionState.IDLE
    cands = wf.suggest("A", "B", "delta18O")
    assert wf.state is SessionState.REVIEWING
    assert cands and cands == wf.pending
    assert (cands[0].ref_depth, cands[0].target_depth) == (40.0, 55.0)


def test_accept_ties_both_sections_and_recalibrates() -> None:
    wf = _make_session([TiePoint("B", 0.0, 0.0), TiePoint("B", 100.0, 1000.0)])
    expected_age = wf.model("A")(40.0)
    b_version = wf.model("B").fingerprint

    top = wf.suggest("A", "B", "delta18O")[0]
    created = wf.accept(top)

    assert TiePoint("A", 40.0, expected_age) in created
    assert TiePoint("B", 55.0, expected_age) in created
    assert wf.state is SessionState.IDLE
    assert wf.pending == []
    assert len(wf.tie_points("A")) == 3
    assert len(wf.tie_points("B")) == 3
    assert wf.model("B").fingerprint != b_version
    assert wf.model("B")(55.0) == expected_age
    assert wf.linked_sections("A") == {"A", "B"}
    assert wf.graph.has_edge("A", "B")

    # re-accepting is a no-op
    assert wf.accept(top) == ()
    assert len(wf.tie_points("B")) == 3


def test_resuggest_skips_existing_tie_points() -> None:
    wf = _make_session([TiePoint("B", 0.0, 0.0), TiePoint("B", 100.0, 1000.0)])
    top = wf.suggest("A", "B", "delta18O")[0]
    wf.accept(top)

    again = wf.suggest("A", "B", "delta18O")
    eps = wf.cfg.workflow.dedupe_eps
    for c in again:
        assert all(abs(c.ref_depth - t.depth) >= eps for t in wf.tie_points("A"))
        assert all(abs(c.target_depth - t.depth) >= eps for t in wf.tie_points("B"))
    assert len(again) <= wf.cfg.align.max_suggestions


def test_failed_acceptance_rolls_back_both_sections() -> None:
    # B's age at 50 m is older than anything A can hand over at 40 m
    wf = _make_session([TiePoint("B", 0.0, 0.0), TiePoint("B", 50.0, 990.0), TiePoint("B", 100.0, 1000.0)])
    a_before = wf.tie_points("A")
    b_before = wf.tie_points("B")
    a_version = wf.model("A").fingerprint

    top = wf.suggest("A", "B", "delta18O")[0]
    with pytest.raises(NonMonotonicTiePoints):
        wf.accept(top)

    assert wf.tie_points("A") == a_before
    assert wf.tie_points("B") == b_before
    assert wf.model("A").fingerprint == a_version
    assert wf.state is SessionState.REVIEWING
    assert not wf.is_accepted(top)


def test_accept_without_any_age_fails() -> None:
    wf = CorrelationWorkflow([_make_v_section("A", 40), _make_v_section("B", 55)])
    top = wf.suggest("A", "B", "delta18O")[0]
    with pytest.raises(NoAgeData):
        wf.accept(top)
    assert wf.tie_points("A") == ()
    assert wf.state is SessionState.REVIEWING


def test_reject_stays_in_review() -> None:
    wf = _make_session()
    cands = wf.suggest("A", "B", "delta18O")
    wf.reject(cands[0])
    assert wf.state is SessionState.REVIEWING
    assert cands[0] not in wf.pending
    assert len(wf.pending) == len(cands) - 1


def test_illegal_transitions() -> None:
    wf = _make_session()
    with pytest.raises(WorkflowStateError):
        wf.accept(AlignmentCandidate(1.0, 1.0, 50.0))
    with pytest.raises(WorkflowStateError):
        wf.reject(AlignmentCandidate(1.0, 1.0, 50.0))

    wf.begin_alignment("A", "B", "delta18O")
    with pytest.raises(WorkflowStateError):
        wf.begin_alignment("A", "B", "delta18O")
    with pytest.raises(ValueError):
        CorrelationWorkflow([_make_v_section("A", 40)]).begin_alignment("A", "A", "delta18O")


def test_cancelled_run_cannot_finish() -> None:
    wf = _make_session()
    run = wf.begin_alignment("A", "B", "delta18O")
    assert wf.state is SessionState.ALIGNING
    wf.cancel()
    assert wf.state is SessionState.IDLE
    with pytest.raises(AlignmentCancelled) as ei:
        wf.finish_alignment(run)
    assert ei.value.run_id == run.run_id

    run2 = wf.begin_alignment("A", "B", "delta18O")
    with pytest.raises(AlignmentCancelled):
        wf.finish_alignment(run)
    assert wf.finish_alignment(run2)
    assert wf.state is SessionState.REVIEWING


def test_strategy_is_overfetched_then_deduplicated() -> None:
    near_tie = AlignmentCandidate(0.5, 30.0, 95.0)
    fresh = [AlignmentCandidate(float(10 * k), float(10 * k), 90.0 - k) for k in range(1, 9)]
    strategy = _FixedStrategy([near_tie] + fresh)
    a = _make_v_section("A", 40)
    b = _make_v_section("B", 55)
    wf = CorrelationWorkflow([a, b], [TiePoint("A", 0.0, 0.0), TiePoint("A", 100.0, 1000.0)], strategy=strategy)

    out = wf.suggest("A", "B", "delta18O")
    assert strategy.asked == [wf.cfg.align.max_suggestions + 2]
    assert near_tie not in out
    assert out == fresh[: wf.cfg.align.max_suggestions]


def test_default_proxy_comes_from_priority_list() -> None:
    strategy = _FixedStrategy([])
    wf = CorrelationWorkflow([_make_v_section("A", 40), _make_v_section("B", 55)], strategy=strategy)
    run = wf.begin_alignment("A", "B")
    assert run.proxy == "delta18O"


def test_add_tie_point_rejects_breaking_point() -> None:
    wf = _make_session()
    with pytest.raises(NonMonotonicTiePoints):
        wf.add_tie_point(TiePoint("A", 50.0, 1500.0))
    assert len(wf.tie_points("A")) == 2

    wf.add_tie_point(TiePoint("B", 10.0, 5.0))
    assert wf.model("B") is None
    wf.add_tie_point(TiePoint("B", 90.0, 50.0))
    assert wf.model("B") is not None
    assert wf.section("B").has_ages()

    wf.remove_tie_point(TiePoint("B", 90.0, 50.0))
    assert wf.model("B") is None
    assert not wf.section("B").has_ages()


def test_composite_excludes_undated_sections() -> None:
    wf = _make_session()
    res = wf.composite()
    assert res.excluded == ("B",)
    assert {c.source_section_id for c in res.samples} == {"A"}
    ages = [c.age for c in res.samples]
    assert all(x < y for x, y in zip(ages[:-1], ages[1:]))
    assert set(res.versions) == {"A"}

    with pytest.raises(NoAgeData):
        wf.composite(coverage={"A": (0.0, 100.0), "B": (200.0, 300.0)})


def test_composite_detects_model_change() -> None:
    wf = _make_session([TiePoint("B", 0.0, 2000.0), TiePoint("B", 100.0, 3000.0)])

    class _Racing(SpliceComposer):
        def splice(self, sections, coverage=None):
            wf.add_tie_point(TiePoint("B", 50.0, 2400.0))
            return super().splice(sections, coverage)

    wf.composer = _Racing(wf.cfg.splice)
    with pytest.raises(StaleAgeModel) as ei:
        wf.composite()
    assert ei.value.section_id == "B"


def test_failed_add_section_leaves_no_proxy_hint() -> None:
    wf = _make_session()
    c = _make_v_section("C", 30)
    with pytest.raises(NonMonotonicTiePoints):
        wf.add_section(c, [TiePoint("C", 10.0, 50.0), TiePoint("C", 20.0, 40.0)], proxy_hint="tex86")
    assert "C" not in wf.section_ids

    wf.add_section(c, [TiePoint("C", 0.0, 0.0), TiePoint("C", 100.0, 500.0)])
    assert wf.model("C").proxy_hint == "delta18O"


def test_resuggest_drops_candidates_crossing_accepted_ones() -> None:
    strategy = _FixedStrategy([AlignmentCandidate(40.0, 55.0, 90.0)])
    ties = [TiePoint(s, d, a) for s in ("A", "B") for d, a in ((0.0, 0.0), (100.0, 1000.0))]
    wf = CorrelationWorkflow([_make_v_section("A", 40), _make_v_section("B", 55)], ties, strategy=strategy)
    wf.accept(wf.suggest("A", "B", "delta18O")[0])

    strategy.cands = [
        AlignmentCandidate(30.0, 70.0, 95.0),
        AlignmentCandidate(60.0, 70.0, 80.0),
        AlignmentCandidate(20.0, 30.0, 70.0),
    ]
    out = wf.suggest("A", "B", "delta18O")
    assert [(c.ref_depth, c.target_depth) for c in out] == [(60.0, 70.0), (20.0, 30.0)]
    for c in out:
        wf.accept(c)
        wf.suggest("A", "B", "delta18O")
    assert len(wf.tie_points("B")) == 5
