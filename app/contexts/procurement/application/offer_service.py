from __future__ import annotations

import logging
from typing import Any, Dict, Mapping

from app.contexts.procurement.application.lifecycle_engine import RequestLifecycleEngine
from app.core import OfferSubmitted
from app.errors import InvalidStateError, NotFoundError, PermissionError, ValidationError
from app.policies import Caller, Role, require_authenticated, require_roles
from app.procurement.flow_policy import OfferStatus, RequestStatus
from app.procurement.transitions import Notification, new_document_id, to_iso
from app.ui_strings import notification_text


LOGGER = logging.getLogger("app.offers")

OFFER_READ_ALL_ROLES = (Role.EVALUATOR, Role.ORDERING, Role.ADMIN)


def _price(value: object) -> float:
    if value is None or value == "" or isinstance(value, bool):
        raise ValidationError(message_key="price_invalid", details="price is required")
    try:
        parsed = float(value)
    except (TypeError, ValueError):
        raise ValidationError(message_key="price_invalid", details="price must be a number") from None
    if parsed < 0 or parsed != parsed:
        raise ValidationError(message_key="price_invalid", details="price must be >= 0")
    return parsed


def _delivery_days(value: object) -> int | None:
    if value is None or value == "":
        return None
    try:
        parsed = int(value)
    except (TypeError, ValueError):
        raise ValidationError(message_key="number_invalid", details="delivery_days must be an integer") from None
    if parsed < 0 or isinstance(value, bool):
        raise ValidationError(message_key="number_invalid", details="delivery_days must be >= 0")
    return parsed


def _roles_provided(value: object) -> list:
    if not isinstance(value, list):
        raise ValidationError(message_key="roles_required", details="roles_provided must be a non-empty list")
    entries = []
    for entry in value:
        if isinstance(entry, Mapping):
            if str(entry.get("role_name") or entry.get("roleName") or "").strip():
                entries.append(dict(entry))
        elif str(entry or "").strip():
            entries.append(str(entry).strip())
    if not entries:
        raise ValidationError(message_key="roles_required", details="roles_provided must be a non-empty list")
    return entries


class OfferService:
    def __init__(self, engine: RequestLifecycleEngine) -> None:
        self.engine = engine

    @property
    def db(self):
        return self.engine.db

    def submit_offer(self, caller: Caller, request_id: str, body: Mapping[str, Any]) -> Dict[str, Any]:
        require_authenticated(caller)
        require_roles(caller, Role.PROVIDER)
        # stored status; expiry and auto-advance run after the insert
        document = self.engine.requests.find_one(self.db, request_id)
        if document is None:
            raise NotFoundError(message_key="request_not_found", details=f"Request {request_id} not found")
        status = RequestStatus.parse(document.get("status"))
        if status != RequestStatus.BIDDING:
            raise InvalidStateError(
                message_key="request_closed_for_offers",
                details=f"Offers are only accepted while BIDDING (current: {document.get('status')})",
                payload={"status": document.get("status"), "action": "submit_offer"},
            )

        body = body or {}
        timestamp = to_iso(self.engine.clock())
        offer = {
            "id": new_document_id(),
            "request_id": document["id"],
            "submitted_by": caller.identity,
            "provider_name": str(body.get("provider_name") or "").strip() or caller.identity,
            "price": _price(body.get("price")),
            "currency": str(body.get("currency") or "").strip().upper() or self.engine.default_currency,
            "delivery_days": _delivery_days(body.get("delivery_days")),
            "roles_provided": _roles_provided(body.get("roles_provided")),
            "notes": str(body.get("notes") or ""),
            "status": OfferStatus.SUBMITTED.value,
            "created_at": timestamp,
            "updated_at": timestamp,
        }
        self.engine.offers.insert(self.db, offer)
        self.db.commit()
        LOGGER.info(
            "offer_submitted",
            extra={"request_ref": document["id"], "offer_ref": offer["id"], "actor": caller.identity},
        )

        title, message = notification_text(
            "offer_submitted",
            title=document.get("title"),
            provider=offer["provider_name"],
        )
        self.engine.notifications.dispatch(
            self.db,
            [
                Notification(
                    type="OFFER_SUBMITTED",
                    title=title,
                    message=message,
                    request_id=document["id"],
                    to_username=document.get("created_by"),
                    meta={"offer_id": offer["id"]},
                )
            ],
        )
        self.engine.event_bus.publish(
            OfferSubmitted(request_id=document["id"], offer_id=offer["id"], submitted_by=caller.identity)
        )
        # the deadline may have passed, or the new offer may complete the quota
        self.engine.refresh(document)
        return offer

    def list_offers(self, caller: Caller, request_id: str) -> list[dict]:
        require_authenticated(caller, identity=False)
        document = self.engine.load(request_id)
        if caller.has_role(*OFFER_READ_ALL_ROLES) or caller.owns(document):
            return self.engine.offers.list_for_request(self.db, document["id"])
        if caller.has_role(Role.PROVIDER) and caller.identity:
            return self.engine.offers.list_for_request(self.db, document["id"], submitted_by=caller.identity)
        raise PermissionError(details="Caller may not list offers of this request")
