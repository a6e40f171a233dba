import threading
import unittest
from concurrent.futures import ThreadPoolExecutor

from intervention_engine.db import connect_database
from intervention_engine.domain.contracts import QuoteReviewInput
from intervention_engine.errors import StaleState
from intervention_engine.policies import GESTIONNAIRE, Actor
from tests.helpers.workflow import MANAGER, PROVIDER_A, PROVIDER_B, TEAM_ID, WorkflowHarness


SECOND_MANAGER = Actor(user_id="g-2", role=GESTIONNAIRE, team_id=TEAM_ID)


class ConcurrentMutationTest(unittest.TestCase):
    """Each worker opens its own connection, as concurrent requests would."""

    def setUp(self) -> None:
        self.h = WorkflowHarness(quote_sibling_policy="keep_pending")

    def tearDown(self) -> None:
        self.h.close()

    def _race(self, calls):
        barrier = threading.Barrier(len(calls))

        def run(call):
            db = connect_database(self.h.sandbox.db_path)
            try:
                barrier.wait(timeout=10)
                return "ok", call(db)
            except StaleState as exc:
                return "stale", exc
            finally:
                db.close()

        with ThreadPoolExecutor(max_workers=len(calls)) as pool:
            return list(pool.map(run, calls))

    def test_same_expected_status_only_one_wins(self) -> None:
        intervention_id = self.h.create()
        service = self.h.service

        def approve_as(actor):
            return lambda db: service.apply_transition(
                db, actor, intervention_id, expected_status="demande", action="approve"
            )

        outcomes = self._race([approve_as(MANAGER), approve_as(SECOND_MANAGER)])

        self.assertEqual(sorted(kind for kind, _ in outcomes), ["ok", "stale"])
        stale = next(value for kind, value in outcomes if kind == "stale")
        self.assertEqual(stale.actual, "approuvee")
        self.assertEqual(self.h.status(intervention_id), "approuvee")

        history = service.status_history(self.h.db, MANAGER, intervention_id).payload["events"]
        self.assertEqual([e["to_status"] for e in history].count("approuvee"), 1)

    def test_concurrent_approvals_accept_a_single_quote(self) -> None:
        intervention_id = self.h.approved()
        self.h.request_quotes(intervention_id, PROVIDER_A, PROVIDER_B)
        quote_a = self.h.submit_quote(intervention_id, PROVIDER_A)
        quote_b = self.h.submit_quote(intervention_id, PROVIDER_B, labor=700)
        service = self.h.service

        def approve(actor, quote_id):
            return lambda db: service.quotes.review_quote(
                db,
                actor,
                quote_id,
                expected_status="demande_de_devis",
                expected_quote_status="pending",
                review_input=QuoteReviewInput(decision="approve"),
            )

        outcomes = self._race([approve(MANAGER, quote_a), approve(SECOND_MANAGER, quote_b)])

        self.assertEqual(sorted(kind for kind, _ in outcomes), ["ok", "stale"])
        quotes = service.quotes.list_quotes(self.h.db, MANAGER, intervention_id).payload["quotes"]
        self.assertEqual([q["status"] for q in quotes].count("accepted"), 1)
        self.assertEqual(self.h.status(intervention_id), "planification")


if __name__ == "__main__":
    unittest.main()
