from __future__ import annotations

import logging
import uuid
from datetime import datetime
from typing import Any, Callable, Dict, Mapping

from app.contexts.notifications.application.service import NotificationService
from app.contexts.procurement.infrastructure.repositories import (
    OfferRepository,
    PurchaseOrderRepository,
    RequestRepository,
    StatusEventRepository,
)
from app.core import EventBus, PurchaseOrderPlaced, RequestCreated, RequestStatusChanged, get_event_bus
from app.errors import ConflictError, NotFoundError, ValidationError
from app.observability import observe_request_transition
from app.policies import Caller, require_authenticated
from app.procurement.evaluation import DEFAULT_STRATEGY, WeightedScoreStrategy
from app.procurement.flow_policy import OfferStatus, RequestStatus
from app.procurement.transitions import (
    DEFAULT_BIDDING_CYCLE_DAYS,
    TransitionPlan,
    build_new_request,
    build_purchase_order,
    build_update_patch,
    check_document,
    check_role,
    current_status,
    ensure_offer_belongs,
    maybe_auto_advance,
    maybe_expire,
    plan_close_bidding,
    plan_place_order,
    plan_reactivate,
    plan_recommend_offer,
    plan_review_approve,
    plan_review_reject,
    plan_send_to_ordering,
    plan_submit_for_bidding,
    plan_submit_for_review,
    resolve_order_offer_id,
    to_iso,
    utc_now,
)


LOGGER = logging.getLogger("app.lifecycle")


class RequestLifecycleEngine:
    """Runs request transitions against one storage handle.

    Every status change is a compare-and-set on ``status``. Explicit transitions
    that lose the race raise :class:`ConflictError`; background transitions
    (expiry, auto-advance) that lose are dropped. Notifications go out only
    after the winning write is committed.
    """

    def __init__(
        self,
        db,
        *,
        requests: RequestRepository | None = None,
        offers: OfferRepository | None = None,
        purchase_orders: PurchaseOrderRepository | None = None,
        status_events: StatusEventRepository | None = None,
        notifications: NotificationService | None = None,
        event_bus: EventBus | None = None,
        strategy: WeightedScoreStrategy = DEFAULT_STRATEGY,
        clock: Callable[[], datetime] = utc_now,
        default_cycle_days: int = DEFAULT_BIDDING_CYCLE_DAYS,
        default_currency: str = "EUR",
        page_limit_max: int = 100,
    ) -> None:
        self.db = db
        self.requests = requests or RequestRepository()
        self.offers = offers or OfferRepository()
        self.purchase_orders = purchase_orders or PurchaseOrderRepository()
        self.status_events = status_events or StatusEventRepository()
        self.notifications = notifications or NotificationService(clock=clock)
        self.event_bus = event_bus or get_event_bus()
        self.strategy = strategy
        self.clock = clock
        self.default_cycle_days = int(default_cycle_days)
        self.default_currency = default_currency
        self.page_limit_max = max(1, int(page_limit_max))

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def load(self, request_id: str) -> Dict[str, Any]:
        document = self.requests.find_one(self.db, request_id)
        if document is None:
            raise NotFoundError(message_key="request_not_found", details=f"Request {request_id} not found")
        return self.refresh(document)

    def get(self, caller: Caller, request_id: str) -> Dict[str, Any]:
        require_authenticated(caller, identity=False)
        document = self.load(request_id)
        document["offers_count"] = self.offers.count_for_request(self.db, document["id"])
        return document

    def list(
        self,
        caller: Caller,
        *,
        status: str | None = None,
        view: str | None = None,
        query: str | None = None,
        page: int = 1,
        limit: int = 20,
    ) -> Dict[str, Any]:
        require_authenticated(caller, identity=False)
        filters: Dict[str, Any] = {}
        if str(view or "").strip().lower() == "my":
            require_authenticated(caller)
            filters["created_by"] = caller.identity
        search_where, search_params = self.requests.search_clause(query)
        self._refresh_bidding(filters, search_where, search_params)

        if status:
            parsed = RequestStatus.parse(status)
            if parsed is None:
                raise ValidationError(message_key="status_invalid", details=f"Unknown status: {status}")
            filters["status"] = parsed.value
        return self._page(filters, search_where, search_params, page=page, limit=limit)

    def list_in_status(self, status: RequestStatus, *, page: int = 1, limit: int = 20) -> Dict[str, Any]:
        self._refresh_bidding({}, None, [])
        return self._page({"status": status.value}, None, [], page=page, limit=limit)

    def history(self, caller: Caller, request_id: str) -> list[dict]:
        document = self.get(caller, request_id)
        return self.status_events.list_for_entity(self.db, entity="request", entity_id=document["id"])

    def _page(self, filters, extra_where, extra_params, *, page: int, limit: int) -> Dict[str, Any]:
        page = max(1, int(page or 1))
        limit = max(1, min(int(limit or 20), self.page_limit_max))
        total = self.requests.count(self.db, filters, extra_where=extra_where, extra_params=extra_params)
        documents = self.requests.find_many(
            self.db,
            filters,
            sort=(("created_at", "DESC"),),
            limit=limit,
            offset=(page - 1) * limit,
            extra_where=extra_where,
            extra_params=extra_params,
        )
        counts = self.offers.counts_by_request(self.db, [document["id"] for document in documents])
        for document in documents:
            document["offers_count"] = counts.get(document["id"], 0)
        pages = (total + limit - 1) // limit if total else 0
        return {
            "data": documents,
            "meta": {"page": page, "limit": limit, "total": total, "pages": pages},
        }

    def _refresh_bidding(self, filters: Mapping[str, Any], extra_where, extra_params, *, limit: int = 200) -> int:
        scoped = dict(filters)
        scoped["status"] = RequestStatus.BIDDING.value
        documents = self.requests.find_many(
            self.db,
            scoped,
            sort=(("updated_at", "ASC"),),
            limit=limit,
            extra_where=extra_where,
            extra_params=extra_params,
        )
        moved = 0
        for document in documents:
            if self.refresh(document).get("status") != RequestStatus.BIDDING.value:
                moved += 1
        return moved

    # ------------------------------------------------------------------
    # Background transitions
    # ------------------------------------------------------------------

    def refresh(self, document: Dict[str, Any]) -> Dict[str, Any]:
        """Apply expiry, then auto-advance, when the document is due; no-op otherwise."""
        if RequestStatus.parse(document.get("status")) != RequestStatus.BIDDING:
            return document
        now = self.clock()
        plan = maybe_expire(document, now)
        if plan is None:
            offer_count = self.offers.count_for_request(self.db, document["id"])
            plan = maybe_auto_advance(document, offer_count, now)
        if plan is None:
            return document
        applied = self._apply(plan, document, background=True)
        if applied is not None:
            return applied
        return self.requests.find_one(self.db, document["id"]) or document

    def sweep(self, limit: int = 200) -> int:
        return self._refresh_bidding({}, None, [], limit=limit)

    # ------------------------------------------------------------------
    # Draft editing
    # ------------------------------------------------------------------

    def create(self, caller: Caller, body: Mapping[str, Any]) -> Dict[str, Any]:
        document, notifications = build_new_request(
            body,
            caller,
            self.clock(),
            default_cycle_days=self.default_cycle_days,
        )
        self.requests.insert(self.db, document)
        self.status_events.add_event(
            self.db,
            entity="request",
            entity_id=document["id"],
            action="create",
            from_status=None,
            to_status=document["status"],
            actor=caller.identity,
            occurred_at=document["created_at"],
        )
        self.db.commit()
        LOGGER.info("request_created", extra={"request_ref": document["id"], "actor": caller.identity})
        self.notifications.dispatch(self.db, notifications)
        self.event_bus.publish(RequestCreated(request_id=document["id"], created_by=caller.identity))
        document["offers_count"] = 0
        return document

    def update(self, caller: Caller, request_id: str, body: Mapping[str, Any]) -> Dict[str, Any]:
        check_role("update_request", caller)
        document = self.load(request_id)
        status = check_document("update_request", document, caller)
        patch = build_update_patch(document, body, self.clock())
        if self.requests.conditional_update(self.db, document["id"], status, patch) == 0:
            self._conflict("update_request", document)
        self.db.commit()
        document.update(patch)
        return document

    def delete(self, caller: Caller, request_id: str) -> None:
        check_role("delete_request", caller)
        document = self.load(request_id)
        status = check_document("delete_request", document, caller)
        if self.requests.delete_in_status(self.db, document["id"], status) == 0:
            self._conflict("delete_request", document)
        self.db.commit()
        LOGGER.info("request_deleted", extra={"request_ref": document["id"], "actor": caller.identity})

    # ------------------------------------------------------------------
    # Explicit transitions
    # ------------------------------------------------------------------

    def submit_for_review(self, caller: Caller, request_id: str) -> Dict[str, Any]:
        return self._transition("submit_for_review", caller, request_id, plan_submit_for_review)

    def review_approve(self, caller: Caller, request_id: str) -> Dict[str, Any]:
        return self._transition("review_approve", caller, request_id, plan_review_approve)

    def review_reject(self, caller: Caller, request_id: str, reason: str | None = None) -> Dict[str, Any]:
        return self._transition(
            "review_reject",
            caller,
            request_id,
            lambda document, who, now: plan_review_reject(document, who, now, reason),
        )

    def submit_for_bidding(self, caller: Caller, request_id: str) -> Dict[str, Any]:
        return self._transition("submit_for_bidding", caller, request_id, plan_submit_for_bidding)

    def reactivate(self, caller: Caller, request_id: str) -> Dict[str, Any]:
        return self._transition("reactivate", caller, request_id, plan_reactivate)

    def send_to_ordering(self, caller: Caller, request_id: str) -> Dict[str, Any]:
        return self._transition("send_to_ordering", caller, request_id, plan_send_to_ordering)

    def close_bidding(self, caller: Caller, request_id: str) -> Dict[str, Any]:
        check_role("close_bidding", caller)
        document = self.load(request_id)
        check_document("close_bidding", document, caller)
        offers = self.offers.list_for_request(self.db, document["id"])
        max_offers = int(document.get("max_offers") or 0)
        if max_offers > 0:
            best = self.strategy.shortlist(document, offers, max_offers)
        else:
            best = self.strategy.rank(document, offers)
        best_ids = [str(offer["id"]) for offer in best]
        plan = plan_close_bidding(document, caller, self.clock(), best_ids)

        def shortlist_offers() -> None:
            for offer_id in best_ids:
                self.offers.set_status(self.db, offer_id, OfferStatus.SHORTLISTED, plan.patch["updated_at"])

        updated = self._apply(plan, document, side_effects=shortlist_offers)
        updated["offers_count"] = len(offers)
        return updated

    def recommend_offer(self, caller: Caller, request_id: str, offer_id: str | None) -> Dict[str, Any]:
        check_role("recommend_offer", caller)
        document = self.load(request_id)
        check_document("recommend_offer", document, caller)
        offer = self._load_offer(offer_id)
        plan = plan_recommend_offer(document, caller, self.clock(), offer)

        def promote_offer() -> None:
            updated_at = plan.patch["updated_at"]
            self.offers.set_status_where(
                self.db,
                document["id"],
                OfferStatus.RECOMMENDED,
                OfferStatus.SUBMITTED,
                updated_at,
                exclude_id=offer["id"],
            )
            self.offers.set_status(self.db, offer["id"], OfferStatus.RECOMMENDED, updated_at)

        updated = self._apply(plan, document, side_effects=promote_offer)
        updated["offers"] = self.offers.list_for_request(self.db, document["id"])
        return updated

    def place_order(self, caller: Caller, request_id: str, offer_id: str | None = None) -> Dict[str, Any]:
        check_role("place_order", caller)
        document = self.load(request_id)
        check_document("place_order", document, caller)
        offer = self._load_offer(resolve_order_offer_id(document, offer_id))
        ensure_offer_belongs(document, offer)

        now = self.clock()
        order_id = uuid.uuid4().hex
        plan = plan_place_order(document, caller, now, offer, order_id)
        purchase_order = build_purchase_order(
            document,
            offer,
            caller,
            now,
            order_id,
            default_currency=self.default_currency,
        )

        def write_order() -> None:
            self.purchase_orders.insert(self.db, purchase_order)
            self.offers.set_status(self.db, offer["id"], OfferStatus.ORDERED, to_iso(now))

        updated = self._apply(plan, document, side_effects=write_order)
        self.event_bus.publish(
            PurchaseOrderPlaced(
                request_id=document["id"],
                purchase_order_id=order_id,
                offer_id=str(offer["id"]),
                ordered_by=caller.identity,
            )
        )
        updated["purchase_order"] = purchase_order
        return updated

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _load_offer(self, offer_id: str | None) -> Dict[str, Any]:
        offer_key = str(offer_id or "").strip()
        if not offer_key:
            raise ValidationError(message_key="offer_id_required", details="offer_id is required")
        offer = self.offers.find_one(self.db, offer_key)
        if offer is None:
            raise NotFoundError(message_key="offer_not_found", details=f"Offer {offer_key} not found")
        return offer

    def _transition(
        self,
        action: str,
        caller: Caller,
        request_id: str,
        planner: Callable[[Dict[str, Any], Caller, datetime], TransitionPlan],
    ) -> Dict[str, Any]:
        check_role(action, caller)
        document = self.load(request_id)
        plan = planner(document, caller, self.clock())
        return self._apply(plan, document)

    def _apply(
        self,
        plan: TransitionPlan,
        document: Dict[str, Any],
        *,
        background: bool = False,
        side_effects: Callable[[], None] | None = None,
    ) -> Dict[str, Any] | None:
        affected = self.requests.conditional_update(self.db, plan.request_id, plan.from_status, plan.patch)
        if affected == 0:
            self.db.rollback()
            if background:
                observe_request_transition(plan.action, "dropped")
                LOGGER.info(
                    "lazy_transition_dropped",
                    extra={"request_ref": plan.request_id, "action": plan.action},
                )
                return None
            self._conflict(plan.action, document)

        try:
            if side_effects is not None:
                side_effects()
            self.status_events.add_event(
                self.db,
                entity="request",
                entity_id=plan.request_id,
                action=plan.action,
                from_status=plan.from_status.value,
                to_status=plan.to_status.value,
                reason=plan.reason,
                actor=plan.actor,
                occurred_at=plan.patch["updated_at"],
            )
            self.db.commit()
        except Exception:
            self.db.rollback()
            raise

        observe_request_transition(plan.action, "applied")
        LOGGER.info(
            "request_transition_applied",
            extra={
                "request_ref": plan.request_id,
                "action": plan.action,
                "from_status": plan.from_status.value,
                "to_status": plan.to_status.value,
                "actor": plan.actor,
            },
        )
        self.notifications.dispatch(self.db, plan.notifications)
        self.event_bus.publish(
            RequestStatusChanged(
                request_id=plan.request_id,
                action=plan.action,
                from_status=plan.from_status.value,
                to_status=plan.to_status.value,
                actor=plan.actor,
                background=background,
            )
        )
        return plan.apply(document)

    def _conflict(self, action: str, document: Mapping[str, Any]) -> None:
        observe_request_transition(action, "conflict")
        LOGGER.warning(
            "request_transition_conflict",
            extra={"request_ref": document.get("id"), "action": action, "expected_status": current_status(document).value},
        )
        raise ConflictError(details=f"Request {document.get('id')} changed during {action}")
