"""Pure planning functions for the request lifecycle.

Nothing here touches storage. Each ``plan_*`` function checks the guard for one
transition and returns a :class:`TransitionPlan`: the status compare-and-set
(``from_status`` -> ``to_status``), the field patch and the notifications to
emit once the write wins. ``maybe_expire`` and ``maybe_auto_advance`` return
``None`` whenever the document is not due, so they can be re-run freely.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Iterable, Mapping, Tuple

from app.errors import InvalidStateError, PermissionError, ValidationError
from app.policies import Caller, Role, require_authenticated
from app.procurement.flow_policy import (
    TRANSITION_RULES,
    RequestStatus,
    allowed_actions,
    primary_action,
)
from app.ui_strings import notification_text


DEFAULT_BIDDING_CYCLE_DAYS = 7

EDITABLE_FIELDS = ("title", "max_offers", "bidding_cycle_days")

PROTECTED_FIELDS = frozenset(
    {
        "id",
        "status",
        "payload",
        "created_by",
        "created_at",
        "updated_at",
        "submitted_at",
        "submitted_by",
        "review_approved_at",
        "review_approved_by",
        "rejected_at",
        "rejected_by",
        "reject_reason",
        "bidding_started_at",
        "bidding_started_by",
        "bid_evaluation_at",
        "recommended_at",
        "recommended_by",
        "recommended_offer_id",
        "shortlisted_offer_ids",
        "sent_to_ordering_at",
        "sent_to_ordering_by",
        "ordered_at",
        "ordered_by",
        "ordered_offer_id",
        "order_id",
        "expired_at",
        "reactivated_at",
        "reactivated_by",
        "offers_count",
    }
)


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def to_iso(value: datetime) -> str:
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).isoformat()


def parse_timestamp(value: object) -> datetime | None:
    if isinstance(value, datetime):
        parsed = value
    else:
        raw = str(value or "").strip()
        if not raw:
            return None
        try:
            parsed = datetime.fromisoformat(raw.replace("Z", "+00:00"))
        except ValueError:
            return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc)


def new_document_id() -> str:
    return uuid.uuid4().hex


@dataclass(frozen=True)
class Notification:
    type: str
    title: str
    message: str
    request_id: str | None = None
    to_username: str | None = None
    to_role: Role | None = None
    idempotency_key: str | None = None
    meta: Dict[str, Any] = field(default_factory=dict)

    @property
    def target(self) -> str:
        if self.to_username:
            return f"user:{self.to_username}"
        if self.to_role:
            return f"role:{self.to_role.value}"
        return "nobody"


@dataclass(frozen=True)
class TransitionPlan:
    action: str
    request_id: str
    from_status: RequestStatus
    to_status: RequestStatus
    patch: Dict[str, Any]
    actor: str | None = None
    reason: str | None = None
    notifications: Tuple[Notification, ...] = ()

    def apply(self, document: Mapping[str, Any]) -> Dict[str, Any]:
        updated = dict(document)
        updated.update(self.patch)
        return updated


def current_status(document: Mapping[str, Any]) -> RequestStatus:
    status = RequestStatus.parse(document.get("status"))
    if status is None:
        raise InvalidStateError(details=f"Unknown status: {document.get('status')!r}")
    return status


def _title(document: Mapping[str, Any]) -> str:
    return str(document.get("title") or "").strip() or "Sem titulo"


def _to_owner(document: Mapping[str, Any], text_key: str, *, key: str | None = None, **context) -> Tuple[Notification, ...]:
    owner = str(document.get("created_by") or "").strip().lower()
    if not owner:
        return ()
    title, message = notification_text(text_key, title=_title(document), **context)
    return (
        Notification(
            type="REQUEST_STATUS",
            title=title,
            message=message,
            request_id=str(document.get("id") or "") or None,
            to_username=owner,
            idempotency_key=key,
        ),
    )


def _to_role(
    document: Mapping[str, Any],
    role: Role,
    text_key: str,
    *,
    notification_type: str = "REQUEST_STATUS",
    key: str | None = None,
    **context,
) -> Tuple[Notification, ...]:
    title, message = notification_text(text_key, title=_title(document), **context)
    return (
        Notification(
            type=notification_type,
            title=title,
            message=message,
            request_id=str(document.get("id") or "") or None,
            to_role=role,
            idempotency_key=key,
        ),
    )


# ---------------------------------------------------------------------------
# Guards
# ---------------------------------------------------------------------------


def check_role(action: str, caller: Caller) -> None:
    rule = TRANSITION_RULES[action]
    require_authenticated(caller)
    if caller.has_role(rule.role):
        return
    if rule.admin_allowed and caller.is_admin:
        return
    raise PermissionError(details=f"Only {rule.role.value} may {action}")


def check_document(action: str, document: Mapping[str, Any], caller: Caller) -> RequestStatus:
    """Ownership and current-status guard; call after :func:`check_role`."""
    rule = TRANSITION_RULES[action]
    if rule.owner_only and not caller.owns(document):
        if not (rule.admin_allowed and caller.is_admin):
            raise PermissionError(message_key="not_owner", details="Caller does not own this request")
    status = current_status(document)
    if status not in rule.sources:
        raise InvalidStateError(
            details=f"{action} is not allowed from {status.value}",
            payload={
                "status": status.value,
                "action": action,
                "allowed_actions": allowed_actions(status),
                "primary_action": primary_action(status),
            },
        )
    return status


def _plan(
    action: str,
    document: Mapping[str, Any],
    caller: Caller | None,
    now: datetime,
    patch: Dict[str, Any],
    notifications: Iterable[Notification] = (),
    *,
    reason: str | None = None,
) -> TransitionPlan:
    rule = TRANSITION_RULES[action]
    from_status = current_status(document)
    full_patch = {"status": rule.target.value, "updated_at": to_iso(now)}
    full_patch.update(patch)
    return TransitionPlan(
        action=action,
        request_id=str(document["id"]),
        from_status=from_status,
        to_status=rule.target,
        patch=full_patch,
        actor=caller.identity if caller else None,
        reason=reason,
        notifications=tuple(notifications),
    )


# ---------------------------------------------------------------------------
# Document shaping
# ---------------------------------------------------------------------------


def _non_negative_int(value: object, field_name: str, default: int) -> int:
    if value is None or value == "":
        return default
    if isinstance(value, bool):
        raise ValidationError(message_key="number_invalid", details=f"{field_name} must be an integer")
    try:
        parsed = int(value)
    except (TypeError, ValueError):
        raise ValidationError(message_key="number_invalid", details=f"{field_name} must be an integer") from None
    if parsed < 0:
        raise ValidationError(message_key="number_invalid", details=f"{field_name} must be a non-negative integer")
    if not isinstance(value, int) and str(parsed) != str(value).strip():
        raise ValidationError(message_key="number_invalid", details=f"{field_name} must be a non-negative integer")
    return parsed


def _split_body(body: Mapping[str, Any]) -> Tuple[Dict[str, Any], Dict[str, Any]]:
    fields: Dict[str, Any] = {}
    payload: Dict[str, Any] = {}
    nested = body.get("payload")
    if isinstance(nested, Mapping):
        payload.update(nested)
    for key, value in body.items():
        if key in EDITABLE_FIELDS:
            fields[key] = value
        elif key not in PROTECTED_FIELDS:
            payload[key] = value
    return fields, payload


def build_new_request(
    body: Mapping[str, Any],
    caller: Caller,
    now: datetime,
    *,
    default_cycle_days: int = DEFAULT_BIDDING_CYCLE_DAYS,
) -> Tuple[Dict[str, Any], Tuple[Notification, ...]]:
    require_authenticated(caller)
    if not caller.has_role(Role.INITIATOR):
        raise PermissionError(details="Only initiator may create requests")

    fields, payload = _split_body(body or {})
    title = str(fields.get("title") or "").strip()
    if not title:
        raise ValidationError(message_key="title_required", details="title is required")

    timestamp = to_iso(now)
    document = {
        "id": new_document_id(),
        "title": title,
        "status": RequestStatus.DRAFT.value,
        "payload": payload,
        "max_offers": _non_negative_int(fields.get("max_offers"), "max_offers", 0),
        "bidding_cycle_days": _non_negative_int(
            fields.get("bidding_cycle_days"), "bidding_cycle_days", default_cycle_days
        ),
        "created_by": caller.identity,
        "created_at": timestamp,
        "updated_at": timestamp,
    }
    return document, _to_owner(document, "request_created")


def build_update_patch(document: Mapping[str, Any], body: Mapping[str, Any], now: datetime) -> Dict[str, Any]:
    fields, payload = _split_body(body or {})
    patch: Dict[str, Any] = {}
    if "title" in fields:
        title = str(fields.get("title") or "").strip()
        if not title:
            raise ValidationError(message_key="title_required", details="title is required")
        patch["title"] = title
    if "max_offers" in fields:
        patch["max_offers"] = _non_negative_int(fields["max_offers"], "max_offers", 0)
    if "bidding_cycle_days" in fields:
        patch["bidding_cycle_days"] = _non_negative_int(
            fields["bidding_cycle_days"], "bidding_cycle_days", DEFAULT_BIDDING_CYCLE_DAYS
        )
    if payload:
        merged = dict(document.get("payload") or {})
        merged.update(payload)
        patch["payload"] = merged
    patch["updated_at"] = to_iso(now)
    return patch


# ---------------------------------------------------------------------------
# Explicit transitions
# ---------------------------------------------------------------------------


def plan_submit_for_review(document: Mapping[str, Any], caller: Caller, now: datetime) -> TransitionPlan:
    check_document("submit_for_review", document, caller)
    key = str(document["id"])
    return _plan(
        "submit_for_review",
        document,
        caller,
        now,
        {"submitted_at": to_iso(now), "submitted_by": caller.identity},
        _to_role(document, Role.REVIEWER, "submitted_for_review_reviewer", key=f"{key}:SUBMITTED_FOR_REVIEW_REVIEWER")
        + _to_owner(document, "submitted_for_review_owner", key=f"{key}:SUBMITTED_FOR_REVIEW_OWNER"),
    )


def plan_review_approve(document: Mapping[str, Any], caller: Caller, now: datetime) -> TransitionPlan:
    check_document("review_approve", document, caller)
    return _plan(
        "review_approve",
        document,
        caller,
        now,
        {"review_approved_at": to_iso(now), "review_approved_by": caller.identity},
        _to_owner(document, "review_approved", key=f"{document['id']}:REVIEW_APPROVED"),
    )


def plan_review_reject(
    document: Mapping[str, Any],
    caller: Caller,
    now: datetime,
    reason: str | None = None,
) -> TransitionPlan:
    check_document("review_reject", document, caller)
    reason_text = str(reason or "").strip()
    return _plan(
        "review_reject",
        document,
        caller,
        now,
        {"rejected_at": to_iso(now), "rejected_by": caller.identity, "reject_reason": reason_text},
        _to_owner(
            document,
            "review_rejected",
            key=f"{document['id']}:REVIEW_REJECTED",
            reason=f"Motivo: {reason_text}" if reason_text else "",
        ),
        reason=reason_text or None,
    )


def plan_submit_for_bidding(document: Mapping[str, Any], caller: Caller, now: datetime) -> TransitionPlan:
    check_document("submit_for_bidding", document, caller)
    return _plan(
        "submit_for_bidding",
        document,
        caller,
        now,
        {"bidding_started_at": to_iso(now), "bidding_started_by": caller.identity},
        _to_role(document, Role.PROVIDER, "bidding_open_provider")
        + _to_owner(document, "bidding_open_owner"),
    )


def plan_reactivate(document: Mapping[str, Any], caller: Caller, now: datetime) -> TransitionPlan:
    check_document("reactivate", document, caller)
    return _plan(
        "reactivate",
        document,
        caller,
        now,
        {
            "reactivated_at": to_iso(now),
            "reactivated_by": caller.identity,
            "bidding_started_at": None,
            "bidding_started_by": None,
            "expired_at": None,
        },
        _to_owner(document, "reactivated"),
    )


def plan_close_bidding(
    document: Mapping[str, Any],
    caller: Caller,
    now: datetime,
    shortlisted_offer_ids: Iterable[str] = (),
) -> TransitionPlan:
    check_document("close_bidding", document, caller)
    return _plan(
        "close_bidding",
        document,
        caller,
        now,
        {"bid_evaluation_at": to_iso(now), "shortlisted_offer_ids": [str(item) for item in shortlisted_offer_ids]},
        _to_owner(document, "bid_evaluation_owner")
        + _to_role(document, Role.EVALUATOR, "bid_evaluation_evaluator"),
    )


def ensure_offer_belongs(document: Mapping[str, Any], offer: Mapping[str, Any]) -> None:
    if str(offer.get("request_id") or "") != str(document.get("id") or ""):
        raise InvalidStateError(message_key="offer_not_in_request", details="Offer does not belong to this request")


def plan_recommend_offer(
    document: Mapping[str, Any],
    caller: Caller,
    now: datetime,
    offer: Mapping[str, Any],
) -> TransitionPlan:
    check_document("recommend_offer", document, caller)
    ensure_offer_belongs(document, offer)
    return _plan(
        "recommend_offer",
        document,
        caller,
        now,
        {
            "recommended_offer_id": str(offer["id"]),
            "recommended_at": to_iso(now),
            "recommended_by": caller.identity,
        },
        _to_owner(document, "recommended_owner")
        + _to_role(document, Role.ORDERING, "recommended_ordering"),
    )


def plan_send_to_ordering(document: Mapping[str, Any], caller: Caller, now: datetime) -> TransitionPlan:
    check_document("send_to_ordering", document, caller)
    return _plan(
        "send_to_ordering",
        document,
        caller,
        now,
        {"sent_to_ordering_at": to_iso(now), "sent_to_ordering_by": caller.identity},
        _to_role(document, Role.ORDERING, "sent_to_ordering", notification_type="REQUEST_SENT_TO_ORDERING")
        + _to_owner(document, "sent_to_ordering_owner"),
    )


def resolve_order_offer_id(document: Mapping[str, Any], explicit_offer_id: object = None) -> str:
    offer_id = str(explicit_offer_id or document.get("recommended_offer_id") or "").strip()
    if not offer_id:
        raise InvalidStateError(
            message_key="recommended_offer_missing",
            details="offer_id missing and request has no recommended offer",
        )
    return offer_id


def plan_place_order(
    document: Mapping[str, Any],
    caller: Caller,
    now: datetime,
    offer: Mapping[str, Any],
    order_id: str,
) -> TransitionPlan:
    check_document("place_order", document, caller)
    ensure_offer_belongs(document, offer)
    return _plan(
        "place_order",
        document,
        caller,
        now,
        {
            "order_id": order_id,
            "ordered_at": to_iso(now),
            "ordered_by": caller.identity,
            "ordered_offer_id": str(offer["id"]),
        },
        _to_owner(document, "ordered_owner")
        + _to_role(document, Role.ORDERING, "ordered_ordering"),
    )


def build_purchase_order(
    document: Mapping[str, Any],
    offer: Mapping[str, Any],
    caller: Caller,
    now: datetime,
    order_id: str,
    *,
    default_currency: str = "EUR",
) -> Dict[str, Any]:
    payload = dict(document.get("payload") or {})
    currency = str(offer.get("currency") or default_currency)
    return {
        "id": order_id,
        "request_id": str(document["id"]),
        "offer_id": str(offer["id"]),
        "ordered_by": caller.identity,
        "ordered_at": to_iso(now),
        "total_price": offer.get("price"),
        "currency": currency,
        "provider_username": offer.get("submitted_by") or "",
        "provider_name": offer.get("provider_name") or "",
        "roles_provided": list(offer.get("roles_provided") or []),
        "delivery_days": offer.get("delivery_days"),
        "snapshot": {
            "request_title": document.get("title") or "",
            "request_type": payload.get("type") or "",
            "project_id": payload.get("project_id") or "",
            "project_name": payload.get("project_name") or "",
            "supplier": payload.get("contract_supplier") or "",
            "offer": {
                "price": offer.get("price"),
                "currency": currency,
                "delivery_days": offer.get("delivery_days"),
                "notes": offer.get("notes") or "",
            },
        },
        "created_at": to_iso(now),
    }


# ---------------------------------------------------------------------------
# Background transitions
# ---------------------------------------------------------------------------


def bidding_ends_at(document: Mapping[str, Any]) -> datetime | None:
    started = parse_timestamp(document.get("bidding_started_at"))
    if started is None:
        return None
    try:
        days = int(document.get("bidding_cycle_days"))
    except (TypeError, ValueError):
        days = DEFAULT_BIDDING_CYCLE_DAYS
    return started + timedelta(days=days)


def maybe_expire(document: Mapping[str, Any], now: datetime) -> TransitionPlan | None:
    if RequestStatus.parse(document.get("status")) != RequestStatus.BIDDING:
        return None
    ends_at = bidding_ends_at(document)
    if ends_at is None or now < ends_at:
        return None
    return TransitionPlan(
        action="expire",
        request_id=str(document["id"]),
        from_status=RequestStatus.BIDDING,
        to_status=RequestStatus.EXPIRED,
        patch={
            "status": RequestStatus.EXPIRED.value,
            "expired_at": to_iso(now),
            "updated_at": to_iso(now),
        },
        notifications=tuple(
            Notification(
                type="REQUEST_EXPIRED",
                title=item.title,
                message=item.message,
                request_id=item.request_id,
                to_username=item.to_username,
                idempotency_key=item.idempotency_key,
            )
            for item in _to_owner(document, "request_expired", key=f"{document['id']}:EXPIRED")
        ),
    )


def maybe_auto_advance(document: Mapping[str, Any], offer_count: int, now: datetime) -> TransitionPlan | None:
    if RequestStatus.parse(document.get("status")) != RequestStatus.BIDDING:
        return None
    try:
        max_offers = int(document.get("max_offers") or 0)
    except (TypeError, ValueError):
        max_offers = 0
    if max_offers <= 0 or int(offer_count) < max_offers:
        return None
    request_id = str(document["id"])
    return TransitionPlan(
        action="auto_advance",
        request_id=request_id,
        from_status=RequestStatus.BIDDING,
        to_status=RequestStatus.BID_EVALUATION,
        patch={
            "status": RequestStatus.BID_EVALUATION.value,
            "bid_evaluation_at": to_iso(now),
            "updated_at": to_iso(now),
        },
        notifications=_to_owner(document, "bid_evaluation_owner", key=f"{request_id}:AUTO_TO_BID_EVAL_OWNER")
        + _to_role(
            document,
            Role.EVALUATOR,
            "bid_evaluation_evaluator",
            key=f"{request_id}:AUTO_TO_BID_EVAL_EVALUATOR",
        ),
    )

