import unittest

from intervention_engine.core.event_bus import (
    DomainEvent,
    EventBus,
    InterventionCreated,
    InterventionTransitioned,
)
from intervention_engine.db import connect_database
from intervention_engine.errors import InvalidTransition
from intervention_engine.observability import metrics_snapshot, reset_metrics_for_tests
from tests.helpers.workflow import MANAGER, PROVIDER_A, WorkflowHarness


def _created(**overrides) -> InterventionCreated:
    values = {"team_id": "team-a", "intervention_id": 1, "reference": "INT-1"}
    values.update(overrides)
    return InterventionCreated(**values)


class EventBusTest(unittest.TestCase):
    def setUp(self) -> None:
        reset_metrics_for_tests()

    def test_handler_execution_order_is_predictable(self) -> None:
        bus = EventBus()
        execution_trace = []

        bus.subscribe(InterventionCreated, lambda _event: execution_trace.append("first"))
        bus.subscribe(InterventionCreated, lambda _event: execution_trace.append("second"))
        bus.subscribe_all(lambda _event: execution_trace.append("all"))
        bus.publish(_created())

        self.assertEqual(execution_trace, ["first", "second", "all"])

    def test_handler_subscribed_twice_runs_once(self) -> None:
        bus = EventBus()
        received = []
        bus.subscribe(InterventionCreated, received.append)
        bus.subscribe(InterventionCreated, received.append)
        bus.subscribe_all(received.append)
        bus.publish(_created())
        self.assertEqual(len(received), 1)

    def test_failing_handler_does_not_stop_the_others(self) -> None:
        bus = EventBus()
        received = []

        def broken(_event):
            raise RuntimeError("boom")

        bus.subscribe(InterventionCreated, broken)
        bus.subscribe(InterventionCreated, received.append)
        with self.assertLogs("intervention_engine", level="ERROR") as logs:
            bus.publish(_created())

        self.assertEqual(len(received), 1)
        self.assertTrue(any("event_handler_failed" in line for line in logs.output))

    def test_events_are_counted_by_type(self) -> None:
        bus = EventBus()
        bus.publish_all([_created(), _created(intervention_id=2, reference="INT-2")])
        self.assertEqual(metrics_snapshot()["domain_events_total"], {"InterventionCreated": 2})

    def test_event_normalizes_envelope_fields(self) -> None:
        event = _created(team_id=" ", recipients=("g-1", "", "g-1", "l-1"))
        self.assertEqual(event.team_id, "unknown")
        self.assertEqual(event.recipients, ("g-1", "l-1"))
        self.assertTrue(event.event_id)

        payload = event.to_payload()
        self.assertEqual(payload["event_type"], "InterventionCreated")
        self.assertEqual(payload["recipients"], ["g-1", "l-1"])
        self.assertTrue(str(payload["occurred_at"]).endswith("Z"))


class WorkflowEventTest(unittest.TestCase):
    def setUp(self) -> None:
        self.h = WorkflowHarness()

    def tearDown(self) -> None:
        self.h.close()

    def test_events_are_published_after_commit(self) -> None:
        seen_status = []

        def on_transition(event: DomainEvent) -> None:
            other = connect_database(self.h.sandbox.db_path)
            try:
                row = other.execute("SELECT status FROM interventions WHERE id = ?", (event.intervention_id,)).fetchone()
                seen_status.append(row["status"])
            finally:
                other.close()

        self.h.bus.subscribe(InterventionTransitioned, on_transition)
        self.h.approved()
        self.assertEqual(seen_status, ["approuvee"])

    def test_failed_transition_publishes_nothing(self) -> None:
        intervention_id = self.h.create()
        published_before = len(self.h.events)
        with self.assertRaises(InvalidTransition):
            self.h.service.apply_transition(
                self.h.db, PROVIDER_A, intervention_id, expected_status="demande", action="approve"
            )
        self.assertEqual(len(self.h.events), published_before)

    def test_transition_event_names_the_other_participants(self) -> None:
        intervention_id = self.h.create()
        self.h.service.apply_transition(
            self.h.db, MANAGER, intervention_id, expected_status="demande", action="approve"
        )
        event = next(e for e in self.h.events if isinstance(e, InterventionTransitioned))
        self.assertEqual((event.from_status, event.to_status, event.action), ("demande", "approuvee", "approve"))
        self.assertIn("l-1", event.recipients)
        self.assertNotIn(MANAGER.user_id, event.recipients)


if __name__ == "__main__":
    unittest.main()
