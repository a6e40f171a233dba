import unittest

from intervention_engine.domain.action_authorizer import ActionAuthorizer
from intervention_engine.domain.contracts import InterventionSnapshot, QuoteView, SlotResponseView, SlotView
from intervention_engine.domain.status_machine import STATUSES, StatusStateMachine
from intervention_engine.errors import AuthorizationDenied, InvalidTransition, ValidationFailed
from intervention_engine.observability import metrics_snapshot, reset_metrics_for_tests
from intervention_engine.ui_strings import disabled_message


G, P, L = "gestionnaire", "prestataire", "locataire"

ACTORS = {G: "g-1", P: "p-1", L: "l-1"}

EXPECTED_ACTIONS = {
    ("demande", G): ["approve", "reject", "cancel"],
    ("demande", P): [],
    ("demande", L): [],
    ("rejetee", G): [],
    ("rejetee", P): [],
    ("rejetee", L): [],
    ("approuvee", G): ["request_quotes", "start_planning", "cancel"],
    ("approuvee", P): [],
    ("approuvee", L): [],
    ("demande_de_devis", G): ["request_quotes", "approve_quote", "reject_quote", "cancel"],
    ("demande_de_devis", P): ["submit_quote"],
    ("demande_de_devis", L): [],
    ("planification", G): ["propose_slots", "respond_slot", "confirm_slot", "reject_quote", "cancel"],
    ("planification", P): ["propose_slots", "respond_slot", "view_quote"],
    ("planification", L): ["respond_slot", "confirm_slot"],
    ("planifiee", G): ["reschedule", "cancel"],
    ("planifiee", P): ["start_work", "complete_work"],
    ("planifiee", L): ["reschedule"],
    ("en_cours", G): ["cancel"],
    ("en_cours", P): ["complete_work"],
    ("en_cours", L): [],
    ("cloturee_par_prestataire", G): ["remind_tenant", "cancel"],
    ("cloturee_par_prestataire", P): [],
    ("cloturee_par_prestataire", L): ["validate_work", "contest_work"],
    ("cloturee_par_locataire", G): ["finalize", "cancel"],
    ("cloturee_par_locataire", P): [],
    ("cloturee_par_locataire", L): [],
    ("cloturee_par_gestionnaire", G): [],
    ("cloturee_par_gestionnaire", P): [],
    ("cloturee_par_gestionnaire", L): [],
    ("annulee", G): [],
    ("annulee", P): [],
    ("annulee", L): [],
}


def _quote(quote_id: int, provider_id: str, status: str) -> QuoteView:
    return QuoteView(id=quote_id, provider_id=provider_id, status=status, total_amount=100.0, work_details="x")


def _slot(slot_id: int, proposed_by: str, status: str = "pending", responses=()) -> SlotView:
    return SlotView(
        id=slot_id,
        status=status,
        proposed_by=proposed_by,
        proposer_role=P,
        slot_date="2030-01-10",
        start_time="09:00",
        end_time="11:00",
        responses=tuple(responses),
    )


def _snapshot(status: str, *, quotes=(), slots=(), providers=("p-1",), outstanding=()) -> InterventionSnapshot:
    return InterventionSnapshot(
        id=1,
        reference="INT-TEST",
        status=status,
        team_id="team-a",
        tenant_user_id="l-1",
        provider_ids=tuple(providers),
        manager_ids=("g-1",),
        quotes=tuple(quotes),
        slots=tuple(slots),
        outstanding_request_provider_ids=tuple(outstanding),
    )


class ActionAuthorizerTableTest(unittest.TestCase):
    def setUp(self) -> None:
        self.authorizer = ActionAuthorizer(StatusStateMachine())

    def test_expected_table_covers_every_status_and_role(self) -> None:
        self.assertEqual(len(EXPECTED_ACTIONS), len(STATUSES) * 3)

    def test_action_keys_for_every_status_role_pair(self) -> None:
        for (status, role), expected in EXPECTED_ACTIONS.items():
            quotes = [_quote(1, "p-1", "accepted")] if status == "planification" else []
            snapshot = _snapshot(status, quotes=quotes)
            with self.subTest(status=status, role=role):
                actions = self.authorizer.evaluate_actions(snapshot, role, ACTORS[role])
                self.assertEqual([action.key for action in actions], expected)

    def test_comment_and_confirmation_flags(self) -> None:
        actions = {a.key: a for a in self.authorizer.evaluate_actions(_snapshot("demande"), G, "g-1")}
        self.assertTrue(actions["reject"].requires_comment)
        self.assertIsNotNone(actions["reject"].confirmation_message)
        self.assertFalse(actions["approve"].requires_comment)
        self.assertIsNone(actions["approve"].confirmation_message)
        self.assertTrue(actions["cancel"].requires_comment)
        self.assertIsNotNone(actions["cancel"].confirmation_message)

    def test_evaluation_is_deterministic(self) -> None:
        snapshot = _snapshot("demande_de_devis", quotes=[_quote(3, "p-2", "pending")], providers=("p-1", "p-2"))
        first = [a.to_dict() for a in self.authorizer.evaluate_actions(snapshot, G, "g-1")]
        second = [a.to_dict() for a in self.authorizer.evaluate_actions(snapshot, G, "g-1")]
        self.assertEqual(first, second)


class ActionAuthorizerVariantTest(unittest.TestCase):
    def setUp(self) -> None:
        self.authorizer = ActionAuthorizer(StatusStateMachine())
        reset_metrics_for_tests()

    def _keys(self, snapshot, role, actor_id):
        return [action.key for action in self.authorizer.evaluate_actions(snapshot, role, actor_id)]

    def test_provider_with_pending_quote_sees_edit_and_cancel(self) -> None:
        snapshot = _snapshot("demande_de_devis", quotes=[_quote(1, "p-1", "pending")])
        self.assertEqual(self._keys(snapshot, P, "p-1"), ["edit_quote", "cancel_quote"])

    def test_provider_with_revised_quote_sees_edit_and_cancel(self) -> None:
        snapshot = _snapshot("demande_de_devis", quotes=[_quote(1, "p-1", "sent")])
        self.assertEqual(self._keys(snapshot, P, "p-1"), ["edit_quote", "cancel_quote"])

    def test_provider_with_accepted_quote_is_view_only(self) -> None:
        snapshot = _snapshot("demande_de_devis", quotes=[_quote(1, "p-1", "accepted")])
        self.assertEqual(self._keys(snapshot, P, "p-1"), ["view_quote"])

    def test_provider_with_rejected_quote_may_submit_again(self) -> None:
        snapshot = _snapshot("demande_de_devis", quotes=[_quote(1, "p-1", "rejected")])
        self.assertEqual(self._keys(snapshot, P, "p-1"), ["submit_quote"])

    def test_latest_quote_decides_variant(self) -> None:
        snapshot = _snapshot(
            "demande_de_devis",
            quotes=[_quote(1, "p-1", "rejected"), _quote(4, "p-1", "pending")],
        )
        self.assertEqual(self._keys(snapshot, P, "p-1"), ["edit_quote", "cancel_quote"])

    def test_unassigned_provider_sees_nothing(self) -> None:
        snapshot = _snapshot("planifiee")
        self.assertEqual(self._keys(snapshot, P, "p-9"), [])

    def test_other_tenant_sees_nothing(self) -> None:
        snapshot = _snapshot("cloturee_par_prestataire")
        self.assertEqual(self._keys(snapshot, L, "l-2"), [])

    def test_quote_review_disabled_without_quotes(self) -> None:
        snapshot = _snapshot("demande_de_devis")
        actions = {a.key: a for a in self.authorizer.evaluate_actions(snapshot, G, "g-1")}
        self.assertEqual(actions["approve_quote"].disabled_reason, disabled_message("no_quote_received"))
        self.assertFalse(actions["approve_quote"].enabled)

    def test_quote_review_disabled_when_all_quotes_acted_on(self) -> None:
        snapshot = _snapshot("demande_de_devis", quotes=[_quote(1, "p-1", "rejected")])
        actions = {a.key: a for a in self.authorizer.evaluate_actions(snapshot, G, "g-1")}
        self.assertEqual(actions["approve_quote"].disabled_reason, disabled_message("no_quote_to_review"))
        self.assertEqual(actions["reject_quote"].disabled_reason, disabled_message("no_quote_to_review"))

    def test_quote_review_badge_counts_reviewable_quotes(self) -> None:
        snapshot = _snapshot(
            "demande_de_devis",
            quotes=[_quote(1, "p-1", "pending"), _quote(2, "p-2", "sent"), _quote(3, "p-3", "rejected")],
            providers=("p-1", "p-2", "p-3"),
        )
        actions = {a.key: a for a in self.authorizer.evaluate_actions(snapshot, G, "g-1")}
        self.assertTrue(actions["approve_quote"].enabled)
        self.assertEqual(actions["approve_quote"].badge, 2)

    def test_request_quotes_badge_counts_outstanding_requests(self) -> None:
        snapshot = _snapshot("demande_de_devis", outstanding=("p-1", "p-2"))
        actions = {a.key: a for a in self.authorizer.evaluate_actions(snapshot, G, "g-1")}
        self.assertEqual(actions["request_quotes"].badge, 2)

    def test_confirm_slot_disabled_without_open_slot(self) -> None:
        snapshot = _snapshot("planification", slots=[_slot(1, "p-1", status="superseded")])
        actions = {a.key: a for a in self.authorizer.evaluate_actions(snapshot, L, "l-1")}
        self.assertEqual(actions["confirm_slot"].disabled_reason, disabled_message("no_open_slot"))
        self.assertEqual(actions["respond_slot"].disabled_reason, disabled_message("no_open_slot"))

    def test_respond_slot_badge_counts_unanswered_slots(self) -> None:
        answered = _slot(1, "p-1", responses=[SlotResponseView(user_id="l-1", user_role=L, response="accept")])
        snapshot = _snapshot("planification", slots=[answered, _slot(2, "p-1"), _slot(3, "g-1", status="requested")])
        actions = {a.key: a for a in self.authorizer.evaluate_actions(snapshot, L, "l-1")}
        self.assertTrue(actions["respond_slot"].enabled)
        self.assertEqual(actions["respond_slot"].badge, 2)
        self.assertEqual(actions["confirm_slot"].badge, 3)

    def test_respond_slot_disabled_when_only_own_slots_are_open(self) -> None:
        snapshot = _snapshot("planification", slots=[_slot(1, "p-1")], quotes=[_quote(1, "p-1", "accepted")])
        actions = {a.key: a for a in self.authorizer.evaluate_actions(snapshot, P, "p-1")}
        self.assertFalse(actions["respond_slot"].enabled)

    def test_authorize_rejects_action_outside_table(self) -> None:
        with self.assertRaises(InvalidTransition):
            self.authorizer.authorize(_snapshot("demande"), L, "l-1", "approve")

    def test_authorize_denies_missing_relationship_and_counts_it(self) -> None:
        with self.assertRaises(AuthorizationDenied):
            self.authorizer.authorize(_snapshot("planifiee"), P, "p-9", "start_work")
        self.assertEqual(metrics_snapshot()["authorization_denied_total"], {"start_work": 1})

    def test_authorize_rejects_disabled_action(self) -> None:
        with self.assertRaises(ValidationFailed) as ctx:
            self.authorizer.authorize(_snapshot("demande_de_devis"), G, "g-1", "approve_quote")
        self.assertEqual(ctx.exception.code, "action_disabled")

    def test_authorize_returns_enabled_action(self) -> None:
        action = self.authorizer.authorize(_snapshot("demande"), G, "g-1", "approve")
        self.assertEqual(action.key, "approve")
        self.assertTrue(action.enabled)


if __name__ == "__main__":
    unittest.main()
