from __future__ import annotations

from datetime import datetime
from typing import List, Sequence, Tuple

from intervention_engine.domain.contracts import QuoteView


PRICE_POINTS = 30
DURATION_POINTS = 25
MISSING_DURATION_POINTS = 10
LATENCY_POINTS = 20
LONG_DETAILS_CHARS = 100


def _timestamp(value: str | None) -> float | None:
    if not value:
        return None
    try:
        return datetime.fromisoformat(str(value).replace("Z", "+00:00")).timestamp()
    except ValueError:
        return None


def _spread_score(value: float, low: float, high: float, points: int) -> float:
    # Lowest value earns every point, highest earns none.
    if high > low:
        return (high - value) / (high - low) * points
    return float(points)


def _detail_score(quote: QuoteView) -> int:
    score = 0
    if len(quote.work_details or "") > LONG_DETAILS_CHARS:
        score += 10
    if quote.terms_and_conditions:
        score += 5
    if quote.estimated_start_date:
        score += 5
    return score


def score_quotes(quotes: Sequence[QuoteView]) -> List[Tuple[QuoteView, int]]:
    if not quotes:
        return []
    prices = [quote.total_amount for quote in quotes]
    durations = [quote.estimated_duration_hours for quote in quotes if quote.estimated_duration_hours]
    times = [_timestamp(quote.submitted_at) for quote in quotes]
    known_times = [value for value in times if value is not None]

    scored: List[Tuple[QuoteView, int]] = []
    for quote, submitted in zip(quotes, times):
        score = _spread_score(quote.total_amount, min(prices), max(prices), PRICE_POINTS)
        if quote.estimated_duration_hours:
            score += _spread_score(quote.estimated_duration_hours, min(durations), max(durations), DURATION_POINTS)
        else:
            score += MISSING_DURATION_POINTS
        score += _detail_score(quote)
        if submitted is not None:
            score += _spread_score(submitted, min(known_times), max(known_times), LATENCY_POINTS)
        scored.append((quote, int(round(score))))
    return scored


def rank_quotes(quotes: Sequence[QuoteView]) -> List[Tuple[QuoteView, int]]:
    """Order quotes best first. Advisory only, never used to decide."""
    return sorted(score_quotes(quotes), key=lambda pair: (-pair[1], pair[0].id))
