import unittest

from intervention_engine.domain.contracts import QuoteView
from intervention_engine.domain.quote_ranking import rank_quotes, score_quotes


def _quote(quote_id, amount, duration=None, details="Remplacement", submitted_at=None, **extra):
    return QuoteView(
        id=quote_id,
        provider_id=f"p-{quote_id}",
        status="pending",
        total_amount=amount,
        estimated_duration_hours=duration,
        work_details=details,
        submitted_at=submitted_at,
        **extra,
    )


class QuoteRankingTest(unittest.TestCase):
    def test_empty_input(self) -> None:
        self.assertEqual(rank_quotes([]), [])

    def test_single_quote_gets_full_spread_points(self) -> None:
        [(quote, score)] = score_quotes([_quote(1, 500, duration=4, submitted_at="2030-01-01T10:00:00+00:00")])
        # price 30 + duration 25 + latency 20, no detail bonus
        self.assertEqual(quote.id, 1)
        self.assertEqual(score, 75)

    def test_cheaper_and_faster_ranks_first(self) -> None:
        cheap = _quote(1, 400, duration=2, submitted_at="2030-01-01T09:00:00+00:00")
        pricey = _quote(2, 800, duration=6, submitted_at="2030-01-01T12:00:00+00:00")
        ranked = rank_quotes([pricey, cheap])
        self.assertEqual([q.id for q, _ in ranked], [1, 2])
        self.assertEqual(ranked[0][1], 75)
        self.assertEqual(ranked[1][1], 0)

    def test_missing_duration_earns_flat_points(self) -> None:
        scores = dict((q.id, s) for q, s in score_quotes([_quote(1, 500), _quote(2, 500, duration=3)]))
        self.assertEqual(scores[1], 30 + 10)
        self.assertEqual(scores[2], 30 + 25)

    def test_detail_bonus(self) -> None:
        detailed = _quote(
            1,
            500,
            details="x" * 101,
            terms_and_conditions="Garantie 1 an",
            estimated_start_date="2030-02-01",
        )
        [(_, score)] = score_quotes([detailed])
        self.assertEqual(score, 30 + 10 + 20)

    def test_ties_break_on_id(self) -> None:
        ranked = rank_quotes([_quote(5, 500), _quote(3, 500)])
        self.assertEqual([q.id for q, _ in ranked], [3, 5])


if __name__ == "__main__":
    unittest.main()
