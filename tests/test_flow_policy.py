import unittest

from app.procurement.flow_policy import (
    PROCESS_STAGES,
    TRANSITION_RULES,
    RequestStatus,
    allowed_actions,
    flow_meta,
    primary_action,
)


class FlowPolicyTest(unittest.TestCase):
    def test_required_process_stages_exist(self) -> None:
        keys = [item["key"] for item in PROCESS_STAGES]
        self.assertEqual(keys, ["solicitacao", "revisao", "propostas", "avaliacao", "pedido"])

    def test_every_status_has_actions(self) -> None:
        for status in RequestStatus:
            self.assertTrue(allowed_actions(status), f"acoes vazias em {status.value}")

    def test_primary_action_is_in_allowed_actions(self) -> None:
        for status in RequestStatus:
            primary = primary_action(status)
            self.assertIsNotNone(primary)
            self.assertIn(primary, allowed_actions(status), f"primary fora de allowed em {status.value}")

    def test_transition_table_matches_lifecycle(self) -> None:
        expected = {
            "submit_for_review": ({"DRAFT"}, "IN_REVIEW"),
            "review_approve": ({"IN_REVIEW"}, "APPROVED_FOR_SUBMISSION"),
            "review_reject": ({"IN_REVIEW"}, "REJECTED"),
            "submit_for_bidding": ({"APPROVED_FOR_SUBMISSION"}, "BIDDING"),
            "reactivate": ({"EXPIRED"}, "APPROVED_FOR_SUBMISSION"),
            "close_bidding": ({"BIDDING"}, "BID_EVALUATION"),
            "recommend_offer": ({"BID_EVALUATION", "RECOMMENDED"}, "RECOMMENDED"),
            "send_to_ordering": ({"RECOMMENDED"}, "SENT_TO_ORDERING"),
            "place_order": ({"SENT_TO_ORDERING"}, "ORDERED"),
        }
        for action, (sources, target) in expected.items():
            rule = TRANSITION_RULES[action]
            self.assertEqual({status.value for status in rule.sources}, sources, action)
            self.assertEqual(rule.target.value, target, action)

    def test_terminal_statuses_only_offer_read_actions(self) -> None:
        self.assertEqual(allowed_actions(RequestStatus.ORDERED), ["view_order"])
        self.assertEqual(allowed_actions(RequestStatus.REJECTED), ["view_history"])
        self.assertTrue(flow_meta("ORDERED")["terminal"])
        self.assertFalse(flow_meta("BIDDING")["terminal"])

    def test_flow_meta_for_bidding(self) -> None:
        meta = flow_meta("bidding")
        self.assertEqual(meta["status"], "BIDDING")
        self.assertEqual(meta["stage"], "propostas")
        self.assertEqual(meta["primary_action"], "submit_offer")
        self.assertEqual(meta["primary_action_label"], "Enviar proposta")
        self.assertIn("close_bidding", meta["allowed_actions"])
        states = [step["state"] for step in meta["process_steps"]]
        self.assertEqual(states, ["completed", "completed", "current", "future", "future"])

    def test_unknown_status_has_no_actions(self) -> None:
        self.assertEqual(allowed_actions("ARCHIVED"), [])
        self.assertIsNone(primary_action(None))
        self.assertIsNone(RequestStatus.parse("nope"))


if __name__ == "__main__":
    unittest.main()
