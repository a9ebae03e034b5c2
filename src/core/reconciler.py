"""
Overlay Plans — Intent-to-Slot Reconciliation.

Decides whether slots extracted from a message are new entries to add or a
request to change the status of entries the user already has. Best-effort by
nature: it never raises and answers NoDecision when it cannot tell.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from datetime import timedelta
from difflib import SequenceMatcher
from typing import TYPE_CHECKING, Union

from src.data.models import SlotStatus

if TYPE_CHECKING:
    from src.core.extractor import CandidateSlot, StatusChangeAnalysis
    from src.data.models import TimeSlot

logger = logging.getLogger(__name__)

DEFAULT_THRESHOLD = 0.7
CHANGE_BONUS = 0.2
ADJACENT_GAP = timedelta(seconds=1)

_CHANGE_WORDS = re.compile(
    r"\b(change|changed|switch|toggle|flip|mark|set|actually|instead|update|now|no longer|"
    r"changer|modifier|plutôt|finalement|"
    r"измени\w*|поменя\w*|смени\w*|теперь|вместо)\b",
    re.IGNORECASE,
)

_STATUS_WORDS = re.compile(
    r"\b(available|free|busy|occupied|unavailable|"
    r"disponible|libre|occupée?|pris|"
    r"свобод\w*|занят\w*)\b",
    re.IGNORECASE,
)


# ---------------------------------------------------------------------------
# Decisions
# ---------------------------------------------------------------------------


@dataclass
class AddSlots:
    candidates: list[CandidateSlot]


@dataclass
class StatusUpdate:
    slot_id: int
    status: SlotStatus


@dataclass
class ChangeStatus:
    updates: list[StatusUpdate]
    confidence: float = 1.0
    reasoning: str = ""


@dataclass
class NoDecision:
    reason: str = ""


Decision = Union[AddSlots, ChangeStatus, NoDecision]


@dataclass
class _Match:
    slot: TimeSlot | None = None
    score: float = 0.0


# ---------------------------------------------------------------------------
# Candidate collapsing
# ---------------------------------------------------------------------------


def collapse_candidates(candidates: list[CandidateSlot]) -> list[CandidateSlot]:
    """Merge neighbouring candidates of equal status into the longest intervals.

    Two candidates are neighbours when the later one starts no more than one
    second after the earlier one ends (so 23:59:59 followed by 00:00:00 joins).
    """
    ordered = sorted(candidates, key=lambda c: (c.start_time, c.end_time))
    collapsed: list[CandidateSlot] = []
    for cand in ordered:
        if collapsed:
            prev = collapsed[-1]
            if (
                prev.status == cand.status
                and prev.id is None and cand.id is None
                and cand.start_time <= prev.end_time + ADJACENT_GAP
            ):
                notes = [n for n in (prev.notes, cand.notes) if n]
                collapsed[-1] = prev.model_copy(update={
                    "end_time": max(prev.end_time, cand.end_time),
                    "notes": "; ".join(dict.fromkeys(notes)) or None,
                    "label": prev.label or cand.label,
                    "is_locked": prev.is_locked or cand.is_locked,
                })
                continue
        collapsed.append(cand)
    if len(collapsed) != len(candidates):
        logger.debug("Collapsed %d candidate(s) into %d", len(candidates), len(collapsed))
    return collapsed


# ---------------------------------------------------------------------------
# Scoring
# ---------------------------------------------------------------------------


def overlap_ratio(cand: CandidateSlot, slot: TimeSlot) -> float:
    """Intersection-over-union of the two time ranges, 0..1."""
    start = max(cand.start_time, slot.start_time)
    end = min(cand.end_time, slot.end_time)
    intersection = (end - start).total_seconds()
    if intersection < 0:
        return 0.0
    union = (max(cand.end_time, slot.end_time) - min(cand.start_time, slot.start_time)).total_seconds()
    if union <= 0:
        return 1.0
    return intersection / union


def text_similarity(a: str | None, b: str | None) -> float:
    a = (a or "").strip().casefold()
    b = (b or "").strip().casefold()
    if not a or not b:
        return 0.0
    return SequenceMatcher(None, a, b).ratio()


def mentions_change(message: str) -> bool:
    return bool(_CHANGE_WORDS.search(message or ""))


def names_status(message: str) -> bool:
    return bool(_STATUS_WORDS.search(message or ""))


def match_score(cand: CandidateSlot, slot: TimeSlot, change_hint: bool = False) -> float:
    """How sure we are that `cand` refers to the existing `slot`."""
    if cand.id is not None:
        return 1.0 if cand.id == slot.id else 0.0
    text = max(
        text_similarity(cand.notes, slot.notes),
        text_similarity(cand.label, slot.label),
    )
    score = max(overlap_ratio(cand, slot), text)
    if change_hint and score > 0:
        score += CHANGE_BONUS
    return min(score, 1.0)


def _best_match(cand: CandidateSlot, existing: list[TimeSlot], change_hint: bool) -> _Match:
    best = _Match()
    for slot in existing:
        score = match_score(cand, slot, change_hint)
        if score > best.score:
            best = _Match(slot=slot, score=score)
    return best


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------


def _from_analysis(
    analysis: StatusChangeAnalysis, existing: list[TimeSlot],
) -> ChangeStatus | None:
    by_id = {slot.id: slot for slot in existing}
    targets = [by_id[sid] for sid in dict.fromkeys(analysis.slot_ids) if sid in by_id]
    if not targets:
        return None
    updates = [
        StatusUpdate(slot.id, analysis.target_status or slot.status.toggled())
        for slot in targets
    ]
    return ChangeStatus(updates, analysis.confidence, analysis.reasoning)


def reconcile(
    message: str,
    candidates: list[CandidateSlot],
    existing: list[TimeSlot],
    analysis: StatusChangeAnalysis | None = None,
    threshold: float = DEFAULT_THRESHOLD,
) -> Decision:
    """Classify extracted candidates against the user's current slots."""
    try:
        if analysis is not None and analysis.is_change_request:
            if analysis.confidence >= threshold:
                decision = _from_analysis(analysis, existing)
                if decision is not None:
                    return decision
            else:
                logger.info(
                    "Status change below threshold (%.2f < %.2f), ignoring analysis",
                    analysis.confidence, threshold,
                )

        if not candidates:
            return NoDecision("no candidate slots")

        if existing:
            decision = _heuristic_change(message, candidates, existing, threshold)
            if decision is not None:
                return decision

        return AddSlots(collapse_candidates(candidates))
    except Exception as exc:
        logger.error("Reconciliation failed: %s", exc)
        return NoDecision("reconciliation failed")


def _heuristic_change(
    message: str,
    candidates: list[CandidateSlot],
    existing: list[TimeSlot],
    threshold: float,
) -> Decision | None:
    """ChangeStatus when every candidate confidently points at an existing slot."""
    change_hint = mentions_change(message)
    explicit_status = names_status(message)

    matches = [_best_match(cand, existing, change_hint) for cand in candidates]
    if any(m.slot is None or m.score < threshold for m in matches):
        return None

    updates: dict[int, StatusUpdate] = {}
    for cand, match in zip(candidates, matches):
        slot = match.slot
        status = cand.status if explicit_status else slot.status.toggled()
        if status != slot.status:
            updates.setdefault(slot.id, StatusUpdate(slot.id, status))

    if not updates:
        return NoDecision("matched slots already have the requested status")

    confidence = min(m.score for m in matches)
    logger.info("Heuristic status change for slots %s (confidence %.2f)", list(updates), confidence)
    return ChangeStatus(list(updates.values()), confidence, "matched existing slots")
