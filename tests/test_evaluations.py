import unittest

from app.contexts.procurement.application.evaluation_service import EvaluationService
from app.errors import InvalidStateError, PermissionError, ValidationError
from tests.helpers.lifecycle import (
    ADMIN,
    OFFICER,
    OTHER_PM,
    PLANNER,
    PM,
    PROVIDER_A,
    PROVIDER_B,
    LifecycleSandbox,
)


class EvaluationServiceTest(unittest.TestCase):
    def setUp(self) -> None:
        self.s = LifecycleSandbox(prefix="evaluations")
        self.request_id = self.s.to_bidding()["id"]
        self.offer_a = self.s.offer(PROVIDER_A, self.request_id, price=800, delivery_days=5)
        self.s.clock.advance(minutes=1)
        self.offer_b = self.s.offer(PROVIDER_B, self.request_id, price=650, delivery_days=15)
        self.s.engine.close_bidding(PM, self.request_id)
        self.service = EvaluationService(self.s.engine)

    def tearDown(self) -> None:
        self.s.close()

    def test_save_scores_offers_and_keeps_one_sheet_per_request(self) -> None:
        self.assertIsNone(self.service.get(PM, self.request_id))

        saved = self.service.save(
            OFFICER,
            self.request_id,
            {
                "offers": [
                    {"offer_id": self.offer_a["id"], "score_price": 8, "score_delivery": 6, "score_quality": 10},
                    {"offer_id": self.offer_b["id"], "total_score": 5, "notes": " cheaper "},
                ],
                "comment": " solid shortlist ",
                "recommended_offer_id": self.offer_a["id"],
            },
        )
        self.assertEqual(saved["evaluated_by"], "olga")
        self.assertEqual(saved["weights"], {"price": 0.6, "delivery": 0.25, "quality": 0.15})
        self.assertEqual(saved["comment"], "solid shortlist")
        self.assertEqual(saved["recommended_offer_id"], self.offer_a["id"])
        first, second = saved["offers"]
        self.assertAlmostEqual(first["total_score"], 7.8)
        self.assertEqual(first["provider_username"], "acme")
        self.assertEqual(first["price"], 800)
        self.assertEqual(second["total_score"], 5)
        self.assertEqual(second["notes"], "cheaper")

        self.s.clock.advance(hours=1)
        resaved = self.service.save(
            OFFICER,
            self.request_id,
            {"weights": {"price": 1, "delivery": 0, "quality": 0}, "offers": [{"offer_id": self.offer_b["id"]}]},
        )
        self.assertEqual(resaved["id"], saved["id"])
        self.assertEqual(resaved["created_at"], saved["created_at"])
        self.assertNotEqual(resaved["updated_at"], saved["updated_at"])
        self.assertIsNone(resaved["recommended_offer_id"])
        self.assertEqual([entry["offer_id"] for entry in resaved["offers"]], [self.offer_b["id"]])
        self.assertEqual(self.service.evaluations.count(self.s.db), 1)

        self.assertEqual(self.service.get(PLANNER, self.request_id)["id"], saved["id"])
        notes = self.s.notifications(type="EVALUATION_UPDATED")
        self.assertEqual(len(notes), 1)
        self.assertEqual(notes[0]["to_username"], "alice")

    def test_saving_does_not_move_the_request_or_its_offers(self) -> None:
        self.service.save(
            ADMIN,
            self.request_id,
            {"offers": [{"offer_id": self.offer_a["id"]}], "recommended_offer_id": self.offer_a["id"]},
        )
        self.assertEqual(self.s.engine.get(PM, self.request_id)["status"], "BID_EVALUATION")
        self.assertEqual(self.s.engine.offers.find_one(self.s.db, self.offer_a["id"])["status"], "SHORTLISTED")

    def test_recommended_offer_must_be_among_evaluated_offers(self) -> None:
        with self.assertRaises(ValidationError) as ctx:
            self.service.save(
                OFFICER,
                self.request_id,
                {"offers": [{"offer_id": self.offer_a["id"]}], "recommended_offer_id": self.offer_b["id"]},
            )
        self.assertEqual(ctx.exception.message_key, "recommended_offer_not_evaluated")
        self.assertEqual(self.service.evaluations.count(self.s.db), 0)

    def test_rejects_malformed_sheets(self) -> None:
        other_id = self.s.to_bidding(OTHER_PM)["id"]
        foreign = self.s.offer(PROVIDER_A, other_id)
        cases = [
            ({"offers": [{"offer_id": foreign["id"]}]}, "evaluation_offer_unknown"),
            ({"offers": [{"offer_id": ""}]}, "evaluation_offer_unknown"),
            ({"offers": "all"}, "evaluation_invalid"),
            ({"weights": {"price": "heavy"}}, "evaluation_invalid"),
            ({"offers": [{"offer_id": self.offer_a["id"], "score_price": -1}]}, "evaluation_invalid"),
            (
                {"offers": [{"offer_id": self.offer_a["id"]}, {"offer_id": self.offer_a["id"]}]},
                "evaluation_invalid",
            ),
        ]
        for body, message_key in cases:
            with self.subTest(body=body):
                with self.assertRaises(ValidationError) as ctx:
                    self.service.save(OFFICER, self.request_id, body)
                self.assertEqual(ctx.exception.message_key, message_key)

    def test_guards(self) -> None:
        with self.assertRaises(PermissionError):
            self.service.save(PLANNER, self.request_id, {})
        with self.assertRaises(PermissionError):
            self.service.get(PROVIDER_A, self.request_id)
        with self.assertRaises(PermissionError):
            self.service.get(OTHER_PM, self.request_id)

        bidding_id = self.s.to_bidding()["id"]
        with self.assertRaises(InvalidStateError) as ctx:
            self.service.save(OFFICER, bidding_id, {})
        self.assertEqual(ctx.exception.message_key, "evaluation_closed")
        self.assertEqual(ctx.exception.payload["status"], "BIDDING")


if __name__ == "__main__":
    unittest.main()
