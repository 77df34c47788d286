# src/chronoframe/workflow.py
from __future__ import annotations

"""
Interactive correlation session.

    Idle -> Aligning -> Reviewing -> accept  -> (recalibrate both) -> Idle
                                  -> reject  -> Reviewing
                                  -> cancel  -> Idle

Mutations (tie points, acceptance) are serialized by one lock per session; the
alignment itself runs outside the lock so a UI can run it on a worker and
cancel it. A cancelled run is discarded, never resumed.
"""

import logging
import threading
from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, Iterable, List, Mapping, Optional, Sequence, Set, Tuple

import networkx as nx

from chronoframe.agemodel.builder import AgeModel, AgeModelBuilder
from chronoframe.agemodel.monotonic import check_tie_points
from chronoframe.chronolog.model import AlignmentCandidate, CompositeSample, Section, TiePoint
from chronoframe.chronolog.shared import resolve_proxy_hint
from chronoframe.config.defaults import default_config
from chronoframe.config.schema import RunConfig
from chronoframe.correlation.aligner import CurveAligner, SuggestionStrategy
from chronoframe.errors import (
    AlignmentCancelled,
    NoAgeData,
    StaleAgeModel,
    UnknownSection,
    WorkflowStateError,
)
from chronoframe.splice.composer import SpliceComposer
from chronoframe.splice.coverage import CoverageInterval, RangeLike

logger = logging.getLogger(__name__)


class SessionState(str, Enum):
    IDLE = "idle"
    ALIGNING = "aligning"
    REVIEWING = "reviewing"


@dataclass(frozen=True)
class AlignmentRun:
    run_id: int
    reference_id: str
    target_id: str
    proxy: str


@dataclass(frozen=True)
class SpliceResult:
    samples: List[CompositeSample]
    intervals: List[CoverageInterval]
    excluded: Tuple[str, ...] = ()
    versions: Dict[str, str] = field(default_factory=dict)


def _strip_ages(section: Section) -> Section:
    return section.with_samples([s.with_age(None) for s in section.samples])


class CorrelationWorkflow:
    def __init__(
        self,
        sections: Iterable[Section] = (),
        tie_points: Iterable[TiePoint] = (),
        *,
        cfg: Optional[RunConfig] = None,
        strategy: Optional[SuggestionStrategy] = None,
        proxy_hints: Optional[Mapping[str, Optional[str]]] = None,
    ) -> None:
        self.cfg = cfg if cfg is not None else default_config()
        self.builder = AgeModelBuilder(self.cfg.age_model)
        self.strategy: SuggestionStrategy = strategy if strategy is not None else CurveAligner(self.cfg.align)
        self.composer = SpliceComposer(self.cfg.splice)
        self.graph = nx.Graph()

        self._lock = threading.RLock()
        self._raw: Dict[str, Section] = {}
        self._ties: Dict[str, List[TiePoint]] = {}
        self._calibrated: Dict[str, Section] = {}
        self._models: Dict[str, Optional[AgeModel]] = {}
        self._hints: Dict[str, Optional[str]] = dict(proxy_hints or {})

        self._state = SessionState.IDLE
        self._run_seq = 0
        self._active: Optional[AlignmentRun] = None
        self._review: Optional[AlignmentRun] = None
        self._pending: List[AlignmentCandidate] = []
        self._accepted: Set[Tuple[str, str, float, float]] = set()

        tps = list(tie_points)
        for sec in sections:
            self.add_section(sec, [t for t in tps if t.section_id == sec.id])

    # ------------------------------------------------------------------ state

    @property
    def state(self) -> SessionState:
        return self._state

    @property
    def pending(self) -> List[AlignmentCandidate]:
        return list(self._pending)

    @property
    def section_ids(self) -> List[str]:
        return list(self._raw)

    def section(self, section_id: str) -> Section:
        """Current section; samples carry ages only when its model exists."""
        self._known(section_id)
        return self._calibrated[section_id]

    def model(self, section_id: str) -> Optional[AgeModel]:
        self._known(section_id)
        return self._models[section_id]

    def tie_points(self, section_id: str) -> Tuple[TiePoint, ...]:
        self._known(section_id)
        return tuple(sorted(self._ties[section_id], key=lambda t: t.depth))

    def linked_sections(self, section_id: str) -> Set[str]:
        """Sections chronologically linked to `section_id` through accepted correspondences."""
        self._known(section_id)
        if section_id not in self.graph:
            return {section_id}
        return set(nx.node_connected_component(self.graph, section_id))

    def _known(self, section_id: str) -> None:
        if section_id not in self._raw:
            raise UnknownSection(section_id)

    # ---------------------------------------------------------- calibration

    def _calibrate(self, section_id: str, ties: Sequence[TiePoint]) -> Tuple[Section, Optional[AgeModel]]:
        raw = self._raw[section_id]
        if len(ties) < 2:
            # still reject a lone out-of-range tie point; ages stay absent
            check_tie_points(ties, section_id=section_id, depth_range=raw.depth_range())
            return raw, None
        wcfg = self.cfg.workflow
        return self.builder.calibrate(
            raw,
            ties,
            self._hints.get(section_id),
            auto_proxy=bool(wcfg.auto_proxy),
            proxy_priority=wcfg.proxy_priority,
        )

    def _commit(self, section_id: str, ties: Sequence[TiePoint], cal: Section, model: Optional[AgeModel]) -> None:
        self._ties[section_id] = list(ties)
        self._calibrated[section_id] = cal
        self._models[section_id] = model

    def add_section(
        self,
        section: Section,
        tie_points: Sequence[TiePoint] = (),
        *,
        proxy_hint: Optional[str] = None,
    ) -> Section:
        with self._lock:
            if section.id in self._raw:
                raise ValueError(f"Section {section.id!r} already in session.")
            own = [t for t in tie_points if t.section_id == section.id]
            self._raw[section.id] = _strip_ages(section)
            prior = dict(self._hints)
            if proxy_hint is not None:
                self._hints[section.id] = proxy_hint
            try:
                cal, model = self._calibrate(section.id, own)
            except Exception:
                del self._raw[section.id]
                self._hints = prior
                raise
            self._commit(section.id, own, cal, model)
            return cal

    def add_tie_point(self, tie_point: TiePoint) -> Section:
        """Adds and recalibrates; a tie point that breaks the model is rejected and not stored."""
        with self._lock:
            sid = tie_point.section_id
            self._known(sid)
            ties = self._ties[sid] + [tie_point]
            cal, model = self._calibrate(sid, ties)
            self._commit(sid, ties, cal, model)
            logger.debug("Section %r: tie point %s added (%d total)", sid, tie_point, len(ties))
            return cal

    def remove_tie_point(self, tie_point: TiePoint) -> Section:
        with self._lock:
            sid = tie_point.section_id
            self._known(sid)
            if tie_point not in self._ties[sid]:
                raise ValueError(f"Tie point {tie_point} not found in section {sid!r}.")
            ties = [t for t in self._ties[sid] if t != tie_point]
            cal, model = self._calibrate(sid, ties)
            self._commit(sid, ties, cal, model)
            return cal

    # ------------------------------------------------------------ alignment

    def begin_alignment(self, reference_id: str, target_id: str, proxy: Optional[str] = None) -> AlignmentRun:
        with self._lock:
            self._known(reference_id)
            self._known(target_id)
            if reference_id == target_id:
                raise ValueError("Reference and target must be different sections.")
            if self._state is SessionState.ALIGNING:
                raise WorkflowStateError("An alignment is already running; cancel it first.")
            if proxy is None:
                proxy = resolve_proxy_hint(self._raw[reference_id], priority=self.cfg.workflow.proxy_priority)
                if proxy is None:
                    raise ValueError(f"No proxy given and none of {self.cfg.workflow.proxy_priority} present.")

            self._run_seq += 1
            run = AlignmentRun(self._run_seq, reference_id, target_id, str(proxy))
            self._active = run
            self._pending = []
            self._state = SessionState.ALIGNING
            return run

    def finish_alignment(self, run: AlignmentRun) -> List[AlignmentCandidate]:
        """
        Runs the suggestion strategy for `run`. Safe to call off the session thread;
        the result is committed only if the run is still the active one.
        """
        ref = self._raw[run.reference_id]
        tgt = self._raw[run.target_id]
        ref_ties = list(self._ties[run.reference_id])
        tgt_ties = list(self._ties[run.target_id])
        links = self._correspondences(run.reference_id, run.target_id)
        limit = int(self.cfg.align.max_suggestions)

        try:
            cands = self.strategy.suggest(
                ref.series(run.proxy),
                tgt.series(run.proxy),
                limit + len(ref_ties) + len(tgt_ties) + len(links),
            )
        except Exception:
            with self._lock:
                if self._active is not None and self._active.run_id == run.run_id:
                    self._active = None
                    self._state = SessionState.IDLE
            raise

        eps = float(self.cfg.workflow.dedupe_eps)
        unseen = [
            c
            for c in cands
            if _near(ref_ties, c.ref_depth, eps) is None and _near(tgt_ties, c.target_depth, eps) is None
        ]
        ordered = [c for c in unseen if not _crosses(links, c)]
        fresh = ordered[:limit]

        with self._lock:
            if self._active is None or self._active.run_id != run.run_id:
                raise AlignmentCancelled(run.run_id)
            self._active = None
            self._review = run
            self._pending = fresh
            self._state = SessionState.REVIEWING
        logger.info(
            "Alignment %s~%s (%s): %d candidate(s), %d dropped near existing tie points, %d crossing accepted ones",
            run.reference_id,
            run.target_id,
            run.proxy,
            len(fresh),
            len(cands) - len(unseen),
            len(unseen) - len(ordered),
        )
        return list(fresh)

    def suggest(self, reference_id: str, target_id: str, proxy: Optional[str] = None) -> List[AlignmentCandidate]:
        return self.finish_alignment(self.begin_alignment(reference_id, target_id, proxy))

    def cancel(self) -> None:
        with self._lock:
            if self._state is not SessionState.IDLE:
                logger.info("Correlation session cancelled from %s", self._state.value)
            self._active = None
            self._review = None
            self._pending = []
            self._state = SessionState.IDLE

    def reject(self, candidate: AlignmentCandidate) -> None:
        with self._lock:
            if self._state is not SessionState.REVIEWING:
                raise WorkflowStateError(f"Cannot reject while {self._state.value}.")
            self._pending = [c for c in self._pending if c != candidate]

    def _accept_key(self, run: AlignmentRun, c: AlignmentCandidate) -> Tuple[str, str, float, float]:
        return (run.reference_id, run.target_id, float(c.ref_depth), float(c.target_depth))

    def is_accepted(self, candidate: AlignmentCandidate, run: Optional[AlignmentRun] = None) -> bool:
        run = run or self._review
        return run is not None and self._accept_key(run, candidate) in self._accepted

    def accept(self, candidate: AlignmentCandidate) -> Tuple[TiePoint, ...]:
        """
        Promote a candidate to tie points on both sections and recalibrate both
        before returning. Re-accepting an accepted candidate is a no-op.

        Returns the tie points actually created (existing ones within
        dedupe_eps are reused, not duplicated).
        """
        with self._lock:
            if self.is_accepted(candidate):
                return ()
            if self._state is not SessionState.REVIEWING or self._review is None:
                raise WorkflowStateError(f"Cannot accept while {self._state.value}.")
            if candidate not in self._pending:
                raise WorkflowStateError("Candidate is not among the pending suggestions.")

            run = self._review
            rid, tid = run.reference_id, run.target_id
            eps = float(self.cfg.workflow.dedupe_eps)
            age = self._transfer_age(rid, tid, candidate, eps)

            created: List[TiePoint] = []
            staged: Dict[str, Tuple[List[TiePoint], Section, Optional[AgeModel]]] = {}
            for sid, depth in ((rid, candidate.ref_depth), (tid, candidate.target_depth)):
                ties = list(self._ties[sid])
                if _near(ties, depth, eps) is None:
                    tp = TiePoint(sid, float(depth), float(age))
                    ties.append(tp)
                    created.append(tp)
                # all-or-nothing across both sections
                cal, model = self._calibrate(sid, ties)
                staged[sid] = (ties, cal, model)

            for sid, (ties, cal, model) in staged.items():
                self._commit(sid, ties, cal, model)

            if not self.graph.has_edge(rid, tid):
                self.graph.add_edge(rid, tid, ties=[])
            self.graph.edges[rid, tid]["ties"].append(
                {"ref": rid, "ref_depth": candidate.ref_depth, "target": tid, "target_depth": candidate.target_depth, "age": age}
            )
            self._accepted.add(self._accept_key(run, candidate))
            self._pending = []
            self._state = SessionState.IDLE
            logger.info(
                "Accepted %s@%g ~ %s@%g at %g ka (%d new tie point(s))",
                rid,
                candidate.ref_depth,
                tid,
                candidate.target_depth,
                age,
                len(created),
            )
            return tuple(created)

    def _correspondences(self, reference_id: str, target_id: str) -> List[Tuple[float, float]]:
        """Accepted (reference depth, target depth) pairs between two sections."""
        with self._lock:
            if not self.graph.has_edge(reference_id, target_id):
                return []
            out: List[Tuple[float, float]] = []
            for t in self.graph.edges[reference_id, target_id]["ties"]:
                if t["ref"] == reference_id:
                    out.append((float(t["ref_depth"]), float(t["target_depth"])))
                else:
                    out.append((float(t["target_depth"]), float(t["ref_depth"])))
            return out

    def _transfer_age(self, rid: str, tid: str, c: AlignmentCandidate, eps: float) -> float:
        for sid, depth in ((rid, c.ref_depth), (tid, c.target_depth)):
            tp = _near(self._ties[sid], depth, eps)
            if tp is not None:
                return float(tp.age)
        for sid, depth in ((rid, c.ref_depth), (tid, c.target_depth)):
            model = self._models[sid]
            if model is not None:
                return float(model(depth))
        raise NoAgeData(rid, f"no tie point or age model to date the correspondence with {tid!r}")

    # --------------------------------------------------------------- splice

    def composite(
        self,
        section_ids: Optional[Sequence[str]] = None,
        coverage: Optional[Mapping[str, RangeLike]] = None,
    ) -> SpliceResult:
        """
        Splice every dated section among `section_ids` (default: all). Undated
        sections are reported in `excluded` rather than failing the splice,
        unless explicit coverage names one of them.
        """
        with self._lock:
            ids = list(section_ids) if section_ids is not None else list(self._raw)
            for sid in ids:
                self._known(sid)
            included = [self._calibrated[sid] for sid in ids if self._models[sid] is not None]
            excluded = tuple(sid for sid in ids if self._models[sid] is None)
            versions = {s.id: self._models[s.id].fingerprint for s in included}  # type: ignore[union-attr]

        if coverage is not None:
            for sid in coverage:
                if sid in excluded:
                    raise NoAgeData(sid)
        if excluded:
            logger.info("Composite excludes undated section(s): %s", ", ".join(excluded))

        samples, intervals = self.composer.splice(included, coverage) if included else ([], [])

        with self._lock:
            for sid, fp in versions.items():
                model = self._models.get(sid)
                now = model.fingerprint if model is not None else ""
                if now != fp:
                    raise StaleAgeModel(sid, fp, now)

        return SpliceResult(samples=samples, intervals=intervals, excluded=excluded, versions=versions)


def _crosses(links: Sequence[Tuple[float, float]], c: AlignmentCandidate) -> bool:
    r, t = float(c.ref_depth), float(c.target_depth)
    return any((r < r0 and t > t0) or (r > r0 and t < t0) for r0, t0 in links)


def _near(ties: Sequence[TiePoint], depth: float, eps: float) -> Optional[TiePoint]:
    """Closest tie point within eps of depth (strictly closer than eps), else None."""
    best: Optional[TiePoint] = None
    for t in ties:
        d = abs(float(t.depth) - float(depth))
        if d < eps and (best is None or d < abs(float(best.depth) - float(depth))):
            best = t
    return best
