import unittest
from datetime import timedelta

from app.errors import AuthenticationError, InvalidStateError, PermissionError, ValidationError
from app.policies import Role
from app.procurement.flow_policy import RequestStatus
from app.procurement.transitions import (
    bidding_ends_at,
    build_new_request,
    build_purchase_order,
    build_update_patch,
    check_document,
    check_role,
    maybe_auto_advance,
    maybe_expire,
    parse_timestamp,
    plan_place_order,
    plan_review_reject,
    plan_submit_for_review,
    resolve_order_offer_id,
    to_iso,
)
from tests.helpers.lifecycle import ADMIN, OFFICER, OTHER_PM, PLANNER, PM, T0, caller


def _document(status: str = "DRAFT", **extra) -> dict:
    document = {
        "id": "req-1",
        "title": "Data engineer",
        "status": status,
        "payload": {},
        "max_offers": 0,
        "bidding_cycle_days": 7,
        "created_by": "alice",
        "created_at": to_iso(T0),
        "updated_at": to_iso(T0),
    }
    document.update(extra)
    return document


class NewRequestTest(unittest.TestCase):
    def test_builds_draft_owned_by_caller(self) -> None:
        document, notifications = build_new_request(
            {"title": "  Cloud architect ", "max_offers": 3, "project_id": "P-7", "roles": ["Architect"]},
            PM,
            T0,
        )
        self.assertEqual(document["status"], "DRAFT")
        self.assertEqual(document["title"], "Cloud architect")
        self.assertEqual(document["created_by"], "alice")
        self.assertEqual(document["max_offers"], 3)
        self.assertEqual(document["bidding_cycle_days"], 7)
        self.assertEqual(document["payload"], {"project_id": "P-7", "roles": ["Architect"]})
        self.assertEqual(len(notifications), 1)
        self.assertEqual(notifications[0].to_username, "alice")

    def test_protected_fields_are_ignored(self) -> None:
        document, _ = build_new_request({"title": "x", "status": "ORDERED", "created_by": "mallory"}, PM, T0)
        self.assertEqual(document["status"], "DRAFT")
        self.assertEqual(document["created_by"], "alice")
        self.assertNotIn("status", document["payload"])

    def test_requires_initiator_and_title(self) -> None:
        with self.assertRaises(PermissionError):
            build_new_request({"title": "x"}, OFFICER, T0)
        with self.assertRaises(AuthenticationError):
            build_new_request({"title": "x"}, caller("PROJECT_MANAGER", ""), T0)
        with self.assertRaises(ValidationError) as ctx:
            build_new_request({"title": "   "}, PM, T0)
        self.assertEqual(ctx.exception.message_key, "title_required")

    def test_rejects_negative_numbers(self) -> None:
        with self.assertRaises(ValidationError):
            build_new_request({"title": "x", "max_offers": -1}, PM, T0)
        with self.assertRaises(ValidationError):
            build_new_request({"title": "x", "bidding_cycle_days": "abc"}, PM, T0)

    def test_integer_fields_accept_only_whole_numbers(self) -> None:
        document, _ = build_new_request({"title": "x", "max_offers": " 4 ", "bidding_cycle_days": 0}, PM, T0)
        self.assertEqual(document["max_offers"], 4)
        self.assertEqual(document["bidding_cycle_days"], 0)
        for value in (2.5, "04", True, "-2"):
            with self.subTest(value=value):
                with self.assertRaises(ValidationError) as ctx:
                    build_new_request({"title": "x", "max_offers": value}, PM, T0)
                self.assertEqual(ctx.exception.message_key, "number_invalid")

    def test_update_patch_merges_payload(self) -> None:
        document = _document(payload={"project_id": "P-1", "type": "T&M"})
        patch = build_update_patch(document, {"title": "Renamed", "project_id": "P-2"}, T0)
        self.assertEqual(patch["title"], "Renamed")
        self.assertEqual(patch["payload"], {"project_id": "P-2", "type": "T&M"})


class GuardOrderTest(unittest.TestCase):
    def test_role_check_before_document_check(self) -> None:
        with self.assertRaises(AuthenticationError):
            check_role("review_approve", caller(None, "olga"))
        with self.assertRaises(PermissionError):
            check_role("review_approve", PM)
        check_role("review_approve", OFFICER)

    def test_admin_may_close_bidding_without_owning(self) -> None:
        check_role("close_bidding", ADMIN)
        self.assertEqual(check_document("close_bidding", _document("BIDDING"), ADMIN), RequestStatus.BIDDING)
        with self.assertRaises(PermissionError):
            check_role("submit_for_bidding", ADMIN)

    def test_non_owner_rejected_before_status(self) -> None:
        with self.assertRaises(PermissionError) as ctx:
            check_document("submit_for_review", _document("IN_REVIEW"), OTHER_PM)
        self.assertEqual(ctx.exception.message_key, "not_owner")

    def test_wrong_status_reports_allowed_actions(self) -> None:
        with self.assertRaises(InvalidStateError) as ctx:
            check_document("submit_for_review", _document("IN_REVIEW"), PM)
        error = ctx.exception
        self.assertEqual(error.http_status, 409)
        self.assertEqual(error.payload["status"], "IN_REVIEW")
        self.assertEqual(error.payload["action"], "submit_for_review")
        self.assertIn("review_approve", error.payload["allowed_actions"])
        self.assertEqual(error.payload["primary_action"], "review_approve")


class ExplicitPlanTest(unittest.TestCase):
    def test_submit_for_review_notifies_reviewers_and_owner(self) -> None:
        plan = plan_submit_for_review(_document(), PM, T0)
        self.assertEqual(plan.from_status, RequestStatus.DRAFT)
        self.assertEqual(plan.to_status, RequestStatus.IN_REVIEW)
        self.assertEqual(plan.patch["status"], "IN_REVIEW")
        self.assertEqual(plan.patch["submitted_by"], "alice")
        targets = {notification.target for notification in plan.notifications}
        self.assertEqual(targets, {"role:reviewer", "user:alice"})
        keys = {notification.idempotency_key for notification in plan.notifications}
        self.assertEqual(keys, {"req-1:SUBMITTED_FOR_REVIEW_REVIEWER", "req-1:SUBMITTED_FOR_REVIEW_OWNER"})

    def test_reject_keeps_reason(self) -> None:
        plan = plan_review_reject(_document("IN_REVIEW"), OFFICER, T0, "  budget frozen ")
        self.assertEqual(plan.patch["reject_reason"], "budget frozen")
        self.assertEqual(plan.reason, "budget frozen")
        self.assertIn("budget frozen", plan.notifications[0].message)

    def test_plan_apply_does_not_mutate_input(self) -> None:
        document = _document()
        updated = plan_submit_for_review(document, PM, T0).apply(document)
        self.assertEqual(document["status"], "DRAFT")
        self.assertEqual(updated["status"], "IN_REVIEW")

    def test_order_offer_resolution(self) -> None:
        document = _document("SENT_TO_ORDERING", recommended_offer_id="off-1")
        self.assertEqual(resolve_order_offer_id(document), "off-1")
        self.assertEqual(resolve_order_offer_id(document, "off-2"), "off-2")
        with self.assertRaises(InvalidStateError) as ctx:
            resolve_order_offer_id(_document("SENT_TO_ORDERING"))
        self.assertEqual(ctx.exception.message_key, "recommended_offer_missing")

    def test_place_order_rejects_offer_of_other_request(self) -> None:
        with self.assertRaises(InvalidStateError) as ctx:
            plan_place_order(_document("SENT_TO_ORDERING"), PLANNER, T0, {"id": "off-9", "request_id": "req-2"}, "po-1")
        self.assertEqual(ctx.exception.message_key, "offer_not_in_request")

    def test_purchase_order_snapshot(self) -> None:
        document = _document(
            "SENT_TO_ORDERING",
            payload={"project_id": "P-1", "project_name": "Atlas", "contract_supplier": "Frame AG", "type": "T&M"},
        )
        offer = {
            "id": "off-1",
            "request_id": "req-1",
            "price": 950.0,
            "currency": None,
            "delivery_days": 5,
            "submitted_by": "acme",
            "provider_name": "Acme GmbH",
            "roles_provided": ["Developer"],
        }
        order = build_purchase_order(document, offer, PLANNER, T0, "po-1", default_currency="EUR")
        self.assertEqual(order["id"], "po-1")
        self.assertEqual(order["total_price"], 950.0)
        self.assertEqual(order["currency"], "EUR")
        self.assertEqual(order["provider_username"], "acme")
        self.assertEqual(order["ordered_by"], "rita")
        self.assertEqual(order["snapshot"]["project_name"], "Atlas")
        self.assertEqual(order["snapshot"]["supplier"], "Frame AG")
        self.assertEqual(order["snapshot"]["offer"]["delivery_days"], 5)


class BackgroundPlanTest(unittest.TestCase):
    def _bidding(self, **extra) -> dict:
        return _document("BIDDING", bidding_started_at=to_iso(T0), **extra)

    def test_expiry_fires_exactly_at_cycle_end(self) -> None:
        document = self._bidding()
        ends_at = bidding_ends_at(document)
        self.assertEqual(ends_at, T0 + timedelta(days=7))
        self.assertIsNone(maybe_expire(document, ends_at - timedelta(seconds=1)))
        plan = maybe_expire(document, ends_at)
        self.assertIsNotNone(plan)
        self.assertEqual(plan.to_status, RequestStatus.EXPIRED)
        self.assertEqual(plan.patch["expired_at"], to_iso(ends_at))
        self.assertEqual(plan.notifications[0].type, "REQUEST_EXPIRED")
        self.assertEqual(plan.notifications[0].idempotency_key, "req-1:EXPIRED")

    def test_zero_day_cycle_expires_immediately(self) -> None:
        self.assertIsNotNone(maybe_expire(self._bidding(bidding_cycle_days=0), T0))

    def test_expiry_ignores_other_statuses_and_missing_start(self) -> None:
        later = T0 + timedelta(days=30)
        self.assertIsNone(maybe_expire(_document("BID_EVALUATION", bidding_started_at=to_iso(T0)), later))
        self.assertIsNone(maybe_expire(_document("BIDDING"), later))

    def test_auto_advance_needs_positive_quota(self) -> None:
        self.assertIsNone(maybe_auto_advance(self._bidding(max_offers=0), 10, T0))
        self.assertIsNone(maybe_auto_advance(self._bidding(max_offers=3), 2, T0))
        plan = maybe_auto_advance(self._bidding(max_offers=3), 3, T0)
        self.assertEqual(plan.to_status, RequestStatus.BID_EVALUATION)
        self.assertEqual(
            {notification.idempotency_key for notification in plan.notifications},
            {"req-1:AUTO_TO_BID_EVAL_OWNER", "req-1:AUTO_TO_BID_EVAL_EVALUATOR"},
        )
        self.assertIn(Role.EVALUATOR, {notification.to_role for notification in plan.notifications})

    def test_parse_timestamp_accepts_zulu_and_naive(self) -> None:
        self.assertEqual(parse_timestamp("2026-03-02T09:00:00Z"), T0)
        self.assertEqual(parse_timestamp("2026-03-02T09:00:00"), T0)
        self.assertIsNone(parse_timestamp("not a date"))
        self.assertIsNone(parse_timestamp(None))


if __name__ == "__main__":
    unittest.main()
