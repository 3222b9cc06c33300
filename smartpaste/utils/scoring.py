"""
Scoring functions for extraction candidates and learned matches.

Candidate scores run from 0.0 (worst) to 1.0 (best); the highest-scoring
candidate per field is selected. Match confidence is not clamped; callers
that display it clamp it themselves.
"""

from typing import Callable, Dict, List, Optional, TypeVar
import math

from .candidates import (
    Candidate,
    AmountCandidate,
    CurrencyCandidate,
    VendorCandidate,
    AccountCandidate,
    DateCandidate
)

__all__ = [
    'select_best_candidate', 'select_top_candidates', 'score_candidate',
    'score_amount_candidate', 'score_currency_candidate', 'score_vendor_candidate',
    'score_account_candidate', 'score_date_candidate',
    'apply_learned_bias', 'match_confidence', 'safe_ratio', 'weighted_confidence'
]

T = TypeVar('T', bound=Candidate)

LEARNED_FIELD_BONUS = 0.2
LEARNED_FIELD_PENALTY = 0.2
MIN_CANDIDATE_SCORE = 0.3


def _priority_score(priority: int) -> float:
    # Priority 1 = 1.0, Priority 10 = 0.5, Priority 100 = 0.33
    return 1.0 / (1.0 + math.log10(max(1, priority)))


def apply_learned_bias(score: float, candidate: Candidate) -> float:
    """
    Shift a score toward what the token store has learned about the token.

    A token previously confirmed as this field gets a bonus; a token confirmed
    as a different field gets a penalty. Unknown tokens are left alone.
    """
    if not candidate.learned_field:
        return score
    if candidate.learned_field == candidate.field:
        return score + LEARNED_FIELD_BONUS
    return score - LEARNED_FIELD_PENALTY


def score_amount_candidate(candidate: AmountCandidate) -> float:
    """
    Score amount candidate based on rule quality and context.

    Scoring factors:
    - Base priority: 1.0 / (1 + log10(priority))
    - Currency adjacency: +0.1
    - Strong prefix ("amount", "spent", "مبلغ"): +0.1
    - Blacklist context ("balance", "رصيد"): -0.5
    - Learned field bias: +/-0.2

    Returns:
        Score from 0.0 to 1.0
    """
    base_score = _priority_score(candidate.priority)

    if candidate.has_currency:
        base_score += 0.1

    if candidate.has_strong_prefix:
        base_score += 0.1

    if candidate.in_blacklist_context:
        base_score -= 0.5

    base_score = apply_learned_bias(base_score, candidate)

    return max(0.0, min(1.0, base_score))


def score_currency_candidate(candidate: CurrencyCandidate) -> float:
    """
    Score currency candidate based on evidence strength.

    - Explicit ISO code: 0.9 base
    - Symbol or Arabic word: 0.6 base
    - Context count bonus: +0.05 per extra occurrence (max +0.3)
    """
    base_score = 0.9 if candidate.is_explicit else 0.6

    context_bonus = min(0.3, (candidate.context_count - 1) * 0.05)
    base_score += context_bonus

    base_score = apply_learned_bias(base_score, candidate)

    return max(0.0, min(1.0, base_score))


def score_vendor_candidate(candidate: VendorCandidate) -> float:
    """
    Score vendor candidate based on structural features only.

    NO hardcoded vendor names:
    - Base priority
    - Title case: +0.1
    - Word count penalty: -0.1 if > 4 words (likely captured trailing text)
    """
    base_score = _priority_score(candidate.priority)

    if candidate.is_title_case:
        base_score += 0.1

    if candidate.word_count > 4:
        base_score -= 0.1

    base_score = apply_learned_bias(base_score, candidate)

    return max(0.0, min(1.0, base_score))


def score_account_candidate(candidate: AccountCandidate) -> float:
    base_score = 0.9 if candidate.is_masked else _priority_score(candidate.priority)
    base_score = apply_learned_bias(base_score, candidate)
    return max(0.0, min(1.0, base_score))


def score_date_candidate(candidate: DateCandidate) -> float:
    base_score = _priority_score(candidate.priority)

    # Dates carrying a time are almost always the transaction timestamp
    if candidate.has_time:
        base_score += 0.05

    return max(0.0, min(1.0, base_score))


_SCORERS: Dict[type, Callable] = {
    AmountCandidate: score_amount_candidate,
    CurrencyCandidate: score_currency_candidate,
    VendorCandidate: score_vendor_candidate,
    AccountCandidate: score_account_candidate,
    DateCandidate: score_date_candidate,
}


def score_candidate(candidate: Candidate) -> float:
    """Dispatch to the scorer for the candidate's type."""
    scorer = _SCORERS.get(type(candidate))
    if scorer is None:
        return apply_learned_bias(_priority_score(candidate.priority), candidate)
    return scorer(candidate)


def select_top_candidates(
    candidates: List[T],
    score_func=score_candidate,
    top_n: int = 3
) -> List[tuple[T, float]]:
    """
    Select top N candidates from list using scoring function.

    Sorting is stable, so equal scores keep text order (earlier wins).

    Returns:
        List of (candidate, score) tuples, sorted by score descending
    """
    if not candidates:
        return []

    scored = [(candidate, score_func(candidate)) for candidate in candidates]
    scored.sort(key=lambda x: x[1], reverse=True)

    return scored[:top_n]


def select_best_candidate(
    candidates: List[T],
    score_func=score_candidate
) -> Optional[tuple[T, float]]:
    """
    Select best candidate from list using scoring function.

    Returns:
        (candidate, score) for the highest-scoring candidate, or None if the
        list is empty or the best score is below MIN_CANDIDATE_SCORE
    """
    top = select_top_candidates(candidates, score_func, top_n=1)
    if not top:
        return None

    best_candidate, best_score = top[0]
    if best_score < MIN_CANDIDATE_SCORE:
        return None

    return best_candidate, best_score


def match_confidence(matched_fields: int, total_fields: int, sender_bonus: float = 0.0) -> float:
    """
    matched / total + sender bonus, not clamped. An entry with no fields scores 0.
    """
    if total_fields == 0:
        return 0.0
    return matched_fields / total_fields + sender_bonus


def safe_ratio(numerator: float, denominator: float) -> float:
    """Division with 0/0 (and x/0) defined as 0."""
    if not denominator:
        return 0.0
    return numerator / denominator


def weighted_confidence(field_confidences: Dict[str, float], weights: Dict[str, float]) -> float:
    """Weighted mean over the fields present in `weights`."""
    total_weight = sum(weights.values())
    if not total_weight:
        return 0.0
    score = sum(field_confidences.get(name, 0.0) * weight for name, weight in weights.items())
    return round(score / total_weight, 4)
