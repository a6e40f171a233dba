import unittest
from datetime import timezone
from unittest.mock import patch

from intervention_engine.config import _float_env
from intervention_engine.domain.policy import EnginePolicy


class FloatEnvTest(unittest.TestCase):
    def test_decimal_threshold_is_kept(self) -> None:
        with patch.dict("os.environ", {"BUDGET_VARIANCE_THRESHOLD_PERCENT": "12.5"}):
            self.assertEqual(_float_env("BUDGET_VARIANCE_THRESHOLD_PERCENT", 20.0), 12.5)

    def test_unreadable_values_fall_back(self) -> None:
        for raw in ("douze", "nan", "inf"):
            with self.subTest(value=raw):
                with patch.dict("os.environ", {"BUDGET_VARIANCE_THRESHOLD_PERCENT": raw}):
                    self.assertEqual(_float_env("BUDGET_VARIANCE_THRESHOLD_PERCENT", 20.0), 20.0)


class EnginePolicyTest(unittest.TestCase):
    def test_from_config_reads_overrides(self) -> None:
        policy = EnginePolicy.from_config(
            {
                "QUOTE_SIBLING_POLICY": "KEEP_PENDING",
                "CONTEST_TARGET_STATUS": "planification",
                "BUDGET_VARIANCE_THRESHOLD_PERCENT": 12.5,
                "STALE_STATE_RETRY_ATTEMPTS": -3,
            }
        )
        self.assertEqual(policy.quote_sibling_policy, "keep_pending")
        self.assertEqual(policy.contest_target_status, "planification")
        self.assertEqual(policy.budget_variance_threshold_percent, 12.5)
        self.assertEqual(policy.stale_state_retry_attempts, 0)

    def test_default_zone_is_utc(self) -> None:
        self.assertIs(EnginePolicy.from_config({}).slot_timezone, timezone.utc)

    def test_unknown_zone_is_rejected(self) -> None:
        with self.assertRaises(ValueError):
            EnginePolicy(scheduling_timezone="Nowhere/Atlantis")

    def test_unknown_sibling_policy_is_rejected(self) -> None:
        with self.assertRaises(ValueError):
            EnginePolicy(quote_sibling_policy="accept_all")


if __name__ == "__main__":
    unittest.main()
