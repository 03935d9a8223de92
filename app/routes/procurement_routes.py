from __future__ import annotations

from typing import Any, Dict

from flask import Blueprint, current_app, jsonify, request

from app.contexts.procurement.application.evaluation_service import EvaluationService
from app.contexts.procurement.application.lifecycle_engine import RequestLifecycleEngine
from app.contexts.procurement.application.offer_service import OfferService
from app.contexts.procurement.application.purchase_order_service import PurchaseOrderService
from app.db import get_db
from app.policies import current_caller, require_authenticated
from app.procurement.flow_policy import RequestStatus, flow_meta
from app.procurement.transitions import bidding_ends_at, to_iso, utc_now
from app.ui_strings import OFFER_STATUS_LABELS, request_status_label, success_message


procurement_bp = Blueprint("procurement", __name__)


def _parse_int(value, default: int, min_value: int = 1, max_value: int = 1000) -> int:
    try:
        parsed = int(value)
    except (TypeError, ValueError):
        return default
    return max(min_value, min(parsed, max_value))


def _clock():
    return current_app.extensions.get("servicebid_clock") or utc_now


def _engine() -> RequestLifecycleEngine:
    return RequestLifecycleEngine(
        get_db(),
        clock=_clock(),
        default_cycle_days=int(current_app.config.get("DEFAULT_BIDDING_CYCLE_DAYS", 7)),
        default_currency=str(current_app.config.get("DEFAULT_OFFER_CURRENCY", "EUR")),
        page_limit_max=int(current_app.config.get("REQUESTS_PAGE_LIMIT_MAX", 100)),
    )


def serialize_request(document: Dict[str, Any]) -> Dict[str, Any]:
    payload = dict(document)
    status = payload.get("status")
    ends_at = bidding_ends_at(payload) if status == RequestStatus.BIDDING.value else None
    payload["status_label"] = request_status_label(status)
    payload["bidding_ends_at"] = to_iso(ends_at) if ends_at else None
    payload["flow"] = flow_meta(status)
    return payload


def serialize_offer(offer: Dict[str, Any]) -> Dict[str, Any]:
    payload = dict(offer)
    status = str(payload.get("status") or "")
    payload["status_label"] = OFFER_STATUS_LABELS.get(status, status)
    return payload


def _request_response(document: Dict[str, Any], status_code: int = 200):
    return jsonify(serialize_request(document)), status_code


def _page_response(result: Dict[str, Any]):
    return jsonify(
        {
            "data": [serialize_request(document) for document in result["data"]],
            "meta": result["meta"],
        }
    )


# ---------------------------------------------------------------------------
# Requests
# ---------------------------------------------------------------------------


@procurement_bp.route("/api/requests", methods=["GET", "POST"])
def requests_api():
    engine = _engine()
    caller = current_caller()
    if request.method == "POST":
        payload = request.get_json(silent=True) or {}
        document = engine.create(caller, payload)
        return _request_response(document, 201)

    result = engine.list(
        caller,
        status=request.args.get("status"),
        view=request.args.get("view"),
        query=request.args.get("q"),
        page=_parse_int(request.args.get("page"), default=1, max_value=100_000),
        limit=_parse_int(request.args.get("limit"), default=20, max_value=engine.page_limit_max),
    )
    return _page_response(result)


@procurement_bp.route("/api/requests/bidding", methods=["GET"])
def requests_open_for_bidding_api():
    engine = _engine()
    result = engine.list_in_status(
        RequestStatus.BIDDING,
        page=_parse_int(request.args.get("page"), default=1, max_value=100_000),
        limit=_parse_int(request.args.get("limit"), default=50, max_value=engine.page_limit_max),
    )
    return _page_response(result)


@procurement_bp.route("/api/requests/bid-evaluation", methods=["GET"])
def requests_in_bid_evaluation_api():
    engine = _engine()
    require_authenticated(current_caller(), identity=False)
    result = engine.list_in_status(
        RequestStatus.BID_EVALUATION,
        page=_parse_int(request.args.get("page"), default=1, max_value=100_000),
        limit=_parse_int(request.args.get("limit"), default=50, max_value=engine.page_limit_max),
    )
    return _page_response(result)


@procurement_bp.route("/api/requests/<string:request_id>", methods=["GET", "PUT", "DELETE"])
def request_detail_api(request_id: str):
    engine = _engine()
    caller = current_caller()
    if request.method == "PUT":
        payload = request.get_json(silent=True) or {}
        return _request_response(engine.update(caller, request_id, payload))
    if request.method == "DELETE":
        engine.delete(caller, request_id)
        return jsonify({"deleted": True, "id": request_id, "message": success_message("request_deleted")})
    return _request_response(engine.get(caller, request_id))


@procurement_bp.route("/api/requests/<string:request_id>/history", methods=["GET"])
def request_history_api(request_id: str):
    events = _engine().history(current_caller(), request_id)
    return jsonify({"items": events})


@procurement_bp.route("/api/requests/<string:request_id>/submit-for-review", methods=["POST"])
def submit_for_review_api(request_id: str):
    return _request_response(_engine().submit_for_review(current_caller(), request_id))


@procurement_bp.route("/api/requests/<string:request_id>/review-approve", methods=["POST"])
def review_approve_api(request_id: str):
    return _request_response(_engine().review_approve(current_caller(), request_id))


@procurement_bp.route("/api/requests/<string:request_id>/review-reject", methods=["POST"])
def review_reject_api(request_id: str):
    payload = request.get_json(silent=True) or {}
    reason = payload.get("reason") or payload.get("reject_reason")
    return _request_response(_engine().review_reject(current_caller(), request_id, reason))


@procurement_bp.route("/api/requests/<string:request_id>/submit-for-bidding", methods=["POST"])
def submit_for_bidding_api(request_id: str):
    return _request_response(_engine().submit_for_bidding(current_caller(), request_id))


@procurement_bp.route("/api/requests/<string:request_id>/reactivate", methods=["POST"])
def reactivate_api(request_id: str):
    return _request_response(_engine().reactivate(current_caller(), request_id))


@procurement_bp.route("/api/requests/<string:request_id>/close-bidding", methods=["POST"])
def close_bidding_api(request_id: str):
    return _request_response(_engine().close_bidding(current_caller(), request_id))


@procurement_bp.route("/api/requests/<string:request_id>/recommend-offer", methods=["POST"])
def recommend_offer_api(request_id: str):
    payload = request.get_json(silent=True) or {}
    document = _engine().recommend_offer(current_caller(), request_id, payload.get("offer_id"))
    body = serialize_request(document)
    body["offers"] = [serialize_offer(offer) for offer in document.get("offers", [])]
    return jsonify(body)


@procurement_bp.route("/api/requests/<string:request_id>/send-to-ordering", methods=["POST"])
def send_to_ordering_api(request_id: str):
    return _request_response(_engine().send_to_ordering(current_caller(), request_id))


@procurement_bp.route("/api/requests/<string:request_id>/order", methods=["POST"])
def place_order_api(request_id: str):
    payload = request.get_json(silent=True) or {}
    document = _engine().place_order(current_caller(), request_id, payload.get("offer_id"))
    return _request_response(document, 201)


# ---------------------------------------------------------------------------
# Offers
# ---------------------------------------------------------------------------


@procurement_bp.route("/api/requests/<string:request_id>/offers", methods=["GET", "POST"])
def offers_api(request_id: str):
    service = OfferService(_engine())
    caller = current_caller()
    if request.method == "POST":
        payload = request.get_json(silent=True) or {}
        offer = service.submit_offer(caller, request_id, payload)
        return jsonify(serialize_offer(offer)), 201
    return jsonify({"items": [serialize_offer(offer) for offer in service.list_offers(caller, request_id)]})


# ---------------------------------------------------------------------------
# Purchase orders
# ---------------------------------------------------------------------------


@procurement_bp.route("/api/purchase-orders", methods=["GET"])
def purchase_orders_api():
    service = PurchaseOrderService(get_db())
    items = service.list(current_caller(), request_id=request.args.get("request_id"))
    return jsonify({"items": items})


@procurement_bp.route("/api/purchase-orders/my", methods=["GET"])
def my_purchase_orders_api():
    service = PurchaseOrderService(get_db())
    return jsonify({"items": service.list_mine(current_caller())})


@procurement_bp.route("/api/purchase-orders/<string:purchase_order_id>", methods=["GET"])
def purchase_order_detail_api(purchase_order_id: str):
    service = PurchaseOrderService(get_db())
    return jsonify(service.get(current_caller(), purchase_order_id))


# ---------------------------------------------------------------------------
# Evaluations
# ---------------------------------------------------------------------------


@procurement_bp.route("/api/requests/<string:request_id>/evaluation", methods=["GET", "POST"])
def evaluation_api(request_id: str):
    service = EvaluationService(_engine())
    caller = current_caller()
    if request.method == "POST":
        payload = request.get_json(silent=True) or {}
        saved = service.save(caller, request_id, payload)
        return jsonify({"data": saved, "message": success_message("evaluation_saved")})
    return jsonify({"data": service.get(caller, request_id)})
