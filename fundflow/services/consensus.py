"""Community consensus evaluation for milestone validations.

The evaluator is a pure function of the validation set: it never touches the
database, so callers always hand it the full, freshly loaded set for one
(project, milestone) pair and recompute from scratch on every submission.
"""
from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal
from enum import Enum
from typing import Any, Iterable, Protocol, Sequence

from fundflow.models.validation import ValidationStatus

DEFAULT_REQUIRED_VALIDATIONS = 3
DEFAULT_RATING_THRESHOLD = Decimal("4.0")


class ValidationVote(Protocol):
    """Minimal view of a validation needed to score consensus."""

    validator_id: Any
    rating: int
    status: ValidationStatus


class ConsensusOutcome(str, Enum):
    NO_QUORUM = "no_quorum"
    REACHED = "reached"
    BELOW_THRESHOLD = "below_threshold"


@dataclass(frozen=True)
class ConsensusDecision:
    outcome: ConsensusOutcome
    required: int
    approved: int
    pending: int
    counted: int
    average_rating: Decimal | None

    @property
    def reached(self) -> bool:
        return self.outcome is ConsensusOutcome.REACHED


def _status(vote: ValidationVote) -> ValidationStatus:
    return ValidationStatus(vote.status)


def latest_vote_per_validator(validations: Iterable[ValidationVote]) -> list[ValidationVote]:
    """Keep only the last vote of each validator, preserving submission order."""

    latest: dict[Any, ValidationVote] = {}
    for vote in validations:
        latest.pop(vote.validator_id, None)
        latest[vote.validator_id] = vote
    return list(latest.values())


def evaluate_consensus(
    validations: Sequence[ValidationVote],
    *,
    required_validations: int = DEFAULT_REQUIRED_VALIDATIONS,
    rating_threshold: Decimal = DEFAULT_RATING_THRESHOLD,
    allow_duplicate_validator_votes: bool = True,
) -> ConsensusDecision:
    """Decide whether the validations of one milestone reach consensus.

    Quorum counts approved plus pending validations. Once quorum is met the
    arithmetic mean of the ratings of every non-rejected validation must reach
    ``rating_threshold``.
    """

    votes = list(validations)
    if not allow_duplicate_validator_votes:
        votes = latest_vote_per_validator(votes)

    approved = sum(1 for vote in votes if _status(vote) == ValidationStatus.APPROVED)
    pending = sum(1 for vote in votes if _status(vote) == ValidationStatus.PENDING)
    counted_votes = [vote for vote in votes if _status(vote) != ValidationStatus.REJECTED]

    if approved + pending < required_validations:
        return ConsensusDecision(
            outcome=ConsensusOutcome.NO_QUORUM,
            required=required_validations,
            approved=approved,
            pending=pending,
            counted=len(counted_votes),
            average_rating=None,
        )

    total = sum(Decimal(vote.rating) for vote in counted_votes)
    average = total / Decimal(len(counted_votes))
    outcome = ConsensusOutcome.REACHED if average >= rating_threshold else ConsensusOutcome.BELOW_THRESHOLD
    return ConsensusDecision(
        outcome=outcome,
        required=required_validations,
        approved=approved,
        pending=pending,
        counted=len(counted_votes),
        average_rating=average.quantize(Decimal("0.01")),
    )


__all__ = [
    "ConsensusDecision",
    "ConsensusOutcome",
    "DEFAULT_RATING_THRESHOLD",
    "DEFAULT_REQUIRED_VALIDATIONS",
    "evaluate_consensus",
    "latest_vote_per_validator",
]
