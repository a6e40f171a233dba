import unittest

from intervention_engine.application.notification_dispatcher import NotificationDispatcher
from intervention_engine.core.event_bus import EventBus, InterventionTransitioned, QuoteSubmitted
from intervention_engine.observability import metrics_snapshot, reset_metrics_for_tests


def _transitioned(**overrides) -> InterventionTransitioned:
    values = {
        "team_id": "team-a",
        "actor_id": "g-1",
        "recipients": ("l-1", "p-1"),
        "intervention_id": 3,
        "action": "approve",
        "from_status": "demande",
        "to_status": "approuvee",
    }
    values.update(overrides)
    return InterventionTransitioned(**values)


class NotificationDispatcherTest(unittest.TestCase):
    def setUp(self) -> None:
        reset_metrics_for_tests()
        self.sent = []
        self.bus = EventBus()

    def test_one_notification_per_recipient(self) -> None:
        NotificationDispatcher(sender=self.sent.append).register(self.bus)
        self.bus.publish(_transitioned())

        self.assertEqual([n.recipient_id for n in self.sent], ["l-1", "p-1"])
        self.assertEqual({n.template for n in self.sent}, {"status_approve"})
        self.assertEqual(self.sent[0].intervention_id, 3)
        self.assertEqual(self.sent[0].data["to_status"], "approuvee")
        self.assertEqual(metrics_snapshot()["notifications"], {"sent": 2, "failed": 0})

    def test_template_follows_event_type(self) -> None:
        dispatcher = NotificationDispatcher(sender=self.sent.append)
        notifications = dispatcher.notifications_for(
            QuoteSubmitted(team_id="team-a", recipients=("g-1",), intervention_id=3, quote_id=9, provider_id="p-1")
        )
        self.assertEqual([(n.recipient_id, n.template) for n in notifications], [("g-1", "quote_received")])

    def test_event_without_recipients_sends_nothing(self) -> None:
        NotificationDispatcher(sender=self.sent.append).register(self.bus)
        self.bus.publish(_transitioned(recipients=()))
        self.assertEqual(self.sent, [])

    def test_sender_failure_is_counted_and_not_raised(self) -> None:
        def flaky(notification):
            if notification.recipient_id == "l-1":
                raise ConnectionError("smtp down")
            self.sent.append(notification)

        NotificationDispatcher(sender=flaky).register(self.bus)
        with self.assertLogs("intervention_engine.notifications", level="ERROR") as logs:
            self.bus.publish(_transitioned())

        self.assertEqual([n.recipient_id for n in self.sent], ["p-1"])
        self.assertEqual(metrics_snapshot()["notifications"], {"sent": 1, "failed": 1})
        self.assertTrue(any("notification_failed" in line for line in logs.output))

    def test_disabled_dispatcher_is_silent(self) -> None:
        NotificationDispatcher(sender=self.sent.append, enabled=False).register(self.bus)
        self.bus.publish(_transitioned())
        self.assertEqual(self.sent, [])
        self.assertEqual(metrics_snapshot()["notifications"], {"sent": 0, "failed": 0})


if __name__ == "__main__":
    unittest.main()
