from __future__ import annotations

import logging
from typing import Any, Dict, Mapping

from app.contexts.procurement.application.lifecycle_engine import RequestLifecycleEngine
from app.contexts.procurement.infrastructure.repositories import EvaluationRepository
from app.errors import InvalidStateError, PermissionError, ValidationError
from app.policies import Caller, Role, require_authenticated, require_roles
from app.procurement.flow_policy import RequestStatus
from app.procurement.transitions import Notification, new_document_id, to_iso
from app.ui_strings import notification_text


LOGGER = logging.getLogger("app.evaluations")

DEFAULT_WEIGHTS = {"price": 0.6, "delivery": 0.25, "quality": 0.15}
SCORE_FIELDS = {"price": "score_price", "delivery": "score_delivery", "quality": "score_quality"}
EVALUATION_STATUSES = (RequestStatus.BID_EVALUATION, RequestStatus.RECOMMENDED)
EVALUATION_READ_ROLES = (Role.EVALUATOR, Role.ORDERING, Role.ADMIN)


def _number(value: object, field_name: str, default: float = 0.0) -> float:
    if value is None or value == "":
        return default
    if isinstance(value, bool):
        raise ValidationError(message_key="evaluation_invalid", details=f"{field_name} must be a number")
    try:
        parsed = float(value)
    except (TypeError, ValueError):
        raise ValidationError(message_key="evaluation_invalid", details=f"{field_name} must be a number") from None
    if parsed < 0 or parsed != parsed:
        raise ValidationError(message_key="evaluation_invalid", details=f"{field_name} must be >= 0")
    return parsed


def _weights(value: object) -> Dict[str, float]:
    if value is None:
        return dict(DEFAULT_WEIGHTS)
    if not isinstance(value, Mapping):
        raise ValidationError(message_key="evaluation_invalid", details="weights must be an object")
    return {
        name: _number(value.get(name), f"weights.{name}", default)
        for name, default in DEFAULT_WEIGHTS.items()
    }


class EvaluationService:
    """Keeps one evaluation sheet per request while its offers are being assessed.

    The sheet is advisory: it never moves the request. ``recommend_offer`` stays
    the only way to mark an offer RECOMMENDED.
    """

    def __init__(self, engine: RequestLifecycleEngine, evaluations: EvaluationRepository | None = None) -> None:
        self.engine = engine
        self.evaluations = evaluations or EvaluationRepository()

    @property
    def db(self):
        return self.engine.db

    def get(self, caller: Caller, request_id: str) -> Dict[str, Any] | None:
        require_authenticated(caller, identity=False)
        document = self.engine.load(request_id)
        if not (caller.has_role(*EVALUATION_READ_ROLES) or caller.owns(document)):
            raise PermissionError(details="Caller may not read the evaluation of this request")
        return self.evaluations.get_by_request(self.db, document["id"])

    def save(self, caller: Caller, request_id: str, body: Mapping[str, Any]) -> Dict[str, Any]:
        require_authenticated(caller)
        require_roles(caller, Role.EVALUATOR, Role.ADMIN)
        document = self.engine.load(request_id)
        status = RequestStatus.parse(document.get("status"))
        if status not in EVALUATION_STATUSES:
            raise InvalidStateError(
                message_key="evaluation_closed",
                details=f"Evaluations are kept during BID_EVALUATION and RECOMMENDED (current: {document.get('status')})",
                payload={"status": document.get("status"), "action": "save_evaluation"},
            )

        body = body or {}
        weights = _weights(body.get("weights"))
        offers = self._scored_offers(document, body.get("offers"), weights)
        recommended_offer_id = str(body.get("recommended_offer_id") or "").strip() or None
        if recommended_offer_id and recommended_offer_id not in {entry["offer_id"] for entry in offers}:
            raise ValidationError(
                message_key="recommended_offer_not_evaluated",
                details="recommended_offer_id must be one of the evaluated offers",
            )

        timestamp = to_iso(self.engine.clock())
        self.evaluations.upsert(
            self.db,
            {
                "id": new_document_id(),
                "request_id": document["id"],
                "evaluated_by": caller.identity,
                "weights": weights,
                "offers": offers,
                "comment": str(body.get("comment") or "").strip(),
                "recommended_offer_id": recommended_offer_id,
                "created_at": timestamp,
                "updated_at": timestamp,
            },
        )
        self.db.commit()
        LOGGER.info(
            "evaluation_saved",
            extra={"request_ref": document["id"], "actor": caller.identity, "offers": len(offers)},
        )

        owner = str(document.get("created_by") or "").strip()
        if owner:
            title, message = notification_text("evaluation_updated", title=document.get("title") or "")
            self.engine.notifications.dispatch(
                self.db,
                [
                    Notification(
                        type="EVALUATION_UPDATED",
                        title=title,
                        message=message,
                        request_id=document["id"],
                        to_username=owner,
                        idempotency_key=f"{document['id']}:EVALUATION_UPDATED",
                    )
                ],
            )
        return self.evaluations.get_by_request(self.db, document["id"])

    def _scored_offers(self, document: Mapping[str, Any], entries: object, weights: Mapping[str, float]) -> list:
        if entries is None:
            return []
        if not isinstance(entries, list):
            raise ValidationError(message_key="evaluation_invalid", details="offers must be a list")
        known = {offer["id"]: offer for offer in self.engine.offers.list_for_request(self.db, document["id"])}
        scored = []
        seen = set()
        for entry in entries:
            if not isinstance(entry, Mapping):
                raise ValidationError(message_key="evaluation_invalid", details="each evaluated offer must be an object")
            offer_id = str(entry.get("offer_id") or "").strip()
            offer = known.get(offer_id)
            if offer is None:
                raise ValidationError(
                    message_key="evaluation_offer_unknown",
                    details=f"Offer {offer_id or '?'} is not an offer of request {document['id']}",
                )
            if offer_id in seen:
                raise ValidationError(message_key="evaluation_invalid", details=f"Offer {offer_id} evaluated twice")
            seen.add(offer_id)

            scores = {field: _number(entry.get(field), field) for field in SCORE_FIELDS.values()}
            if entry.get("total_score") not in (None, ""):
                total = _number(entry.get("total_score"), "total_score")
            else:
                total = sum(weights[name] * scores[field] for name, field in SCORE_FIELDS.items())
            scored.append(
                {
                    "offer_id": offer_id,
                    "provider_username": offer.get("submitted_by"),
                    "price": offer.get("price"),
                    "currency": offer.get("currency"),
                    "delivery_days": offer.get("delivery_days"),
                    **scores,
                    "total_score": round(total, 4),
                    "notes": str(entry.get("notes") or "").strip(),
                }
            )
        return scored
