from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Dict, FrozenSet, List, Tuple

from app.policies import Role


class RequestStatus(str, Enum):
    DRAFT = "DRAFT"
    IN_REVIEW = "IN_REVIEW"
    APPROVED_FOR_SUBMISSION = "APPROVED_FOR_SUBMISSION"
    BIDDING = "BIDDING"
    BID_EVALUATION = "BID_EVALUATION"
    RECOMMENDED = "RECOMMENDED"
    SENT_TO_ORDERING = "SENT_TO_ORDERING"
    ORDERED = "ORDERED"
    REJECTED = "REJECTED"
    EXPIRED = "EXPIRED"

    @classmethod
    def parse(cls, value: object) -> "RequestStatus | None":
        if isinstance(value, cls):
            return value
        try:
            return cls(str(value or "").strip().upper())
        except ValueError:
            return None


class OfferStatus(str, Enum):
    SUBMITTED = "SUBMITTED"
    SHORTLISTED = "SHORTLISTED"
    RECOMMENDED = "RECOMMENDED"
    ORDERED = "ORDERED"
    REJECTED = "REJECTED"


TERMINAL_STATUSES: FrozenSet[RequestStatus] = frozenset({RequestStatus.ORDERED, RequestStatus.REJECTED})


@dataclass(frozen=True)
class TransitionRule:
    action: str
    sources: Tuple[RequestStatus, ...]
    target: RequestStatus | None
    role: Role
    owner_only: bool = False
    admin_allowed: bool = False


TRANSITION_RULES: Dict[str, TransitionRule] = {
    rule.action: rule
    for rule in (
        TransitionRule("update_request", (RequestStatus.DRAFT,), None, Role.INITIATOR, owner_only=True),
        TransitionRule("delete_request", (RequestStatus.DRAFT,), None, Role.INITIATOR, owner_only=True),
        TransitionRule(
            "submit_for_review",
            (RequestStatus.DRAFT,),
            RequestStatus.IN_REVIEW,
            Role.INITIATOR,
            owner_only=True,
        ),
        TransitionRule(
            "review_approve",
            (RequestStatus.IN_REVIEW,),
            RequestStatus.APPROVED_FOR_SUBMISSION,
            Role.REVIEWER,
        ),
        TransitionRule("review_reject", (RequestStatus.IN_REVIEW,), RequestStatus.REJECTED, Role.REVIEWER),
        TransitionRule(
            "submit_for_bidding",
            (RequestStatus.APPROVED_FOR_SUBMISSION,),
            RequestStatus.BIDDING,
            Role.INITIATOR,
            owner_only=True,
        ),
        TransitionRule(
            "reactivate",
            (RequestStatus.EXPIRED,),
            RequestStatus.APPROVED_FOR_SUBMISSION,
            Role.INITIATOR,
            owner_only=True,
        ),
        TransitionRule(
            "close_bidding",
            (RequestStatus.BIDDING,),
            RequestStatus.BID_EVALUATION,
            Role.INITIATOR,
            owner_only=True,
            admin_allowed=True,
        ),
        TransitionRule(
            "recommend_offer",
            (RequestStatus.BID_EVALUATION, RequestStatus.RECOMMENDED),
            RequestStatus.RECOMMENDED,
            Role.EVALUATOR,
        ),
        TransitionRule(
            "send_to_ordering",
            (RequestStatus.RECOMMENDED,),
            RequestStatus.SENT_TO_ORDERING,
            Role.INITIATOR,
            owner_only=True,
        ),
        TransitionRule("place_order", (RequestStatus.SENT_TO_ORDERING,), RequestStatus.ORDERED, Role.ORDERING),
    )
}


ACTION_LABELS: Dict[str, str] = {
    "update_request": "Editar solicitacao",
    "delete_request": "Excluir solicitacao",
    "submit_for_review": "Enviar para revisao",
    "review_approve": "Aprovar",
    "review_reject": "Rejeitar",
    "submit_for_bidding": "Abrir propostas",
    "reactivate": "Reativar",
    "close_bidding": "Encerrar propostas",
    "submit_offer": "Enviar proposta",
    "recommend_offer": "Recomendar proposta",
    "send_to_ordering": "Enviar para pedido",
    "place_order": "Emitir pedido",
    "view_order": "Abrir ordem",
    "view_history": "Ver historico",
}


PRIMARY_ACTIONS: Dict[RequestStatus, str] = {
    RequestStatus.DRAFT: "submit_for_review",
    RequestStatus.IN_REVIEW: "review_approve",
    RequestStatus.APPROVED_FOR_SUBMISSION: "submit_for_bidding",
    RequestStatus.BIDDING: "submit_offer",
    RequestStatus.BID_EVALUATION: "recommend_offer",
    RequestStatus.RECOMMENDED: "send_to_ordering",
    RequestStatus.SENT_TO_ORDERING: "place_order",
    RequestStatus.ORDERED: "view_order",
    RequestStatus.REJECTED: "view_history",
    RequestStatus.EXPIRED: "reactivate",
}


PROCESS_STAGES: List[Dict[str, str]] = [
    {"key": "solicitacao", "label": "Solicitacao"},
    {"key": "revisao", "label": "Revisao"},
    {"key": "propostas", "label": "Propostas"},
    {"key": "avaliacao", "label": "Avaliacao"},
    {"key": "pedido", "label": "Pedido"},
]


_STAGE_BY_STATUS: Dict[RequestStatus, str] = {
    RequestStatus.DRAFT: "solicitacao",
    RequestStatus.IN_REVIEW: "revisao",
    RequestStatus.REJECTED: "revisao",
    RequestStatus.APPROVED_FOR_SUBMISSION: "propostas",
    RequestStatus.BIDDING: "propostas",
    RequestStatus.EXPIRED: "propostas",
    RequestStatus.BID_EVALUATION: "avaliacao",
    RequestStatus.RECOMMENDED: "avaliacao",
    RequestStatus.SENT_TO_ORDERING: "pedido",
    RequestStatus.ORDERED: "pedido",
}


def allowed_actions(status: RequestStatus | str | None) -> List[str]:
    parsed = RequestStatus.parse(status)
    if parsed is None:
        return []
    actions = [rule.action for rule in TRANSITION_RULES.values() if parsed in rule.sources]
    if parsed == RequestStatus.BIDDING:
        actions.append("submit_offer")
    if parsed == RequestStatus.ORDERED:
        actions.append("view_order")
    if not actions:
        actions.append("view_history")
    return actions


def primary_action(status: RequestStatus | str | None) -> str | None:
    parsed = RequestStatus.parse(status)
    if parsed is None:
        return None
    return PRIMARY_ACTIONS.get(parsed)


def action_label(action: str, fallback: str | None = None) -> str:
    label = ACTION_LABELS.get(action)
    if label:
        return label
    if fallback is not None:
        return fallback
    return action


def stage_for_request_status(status: RequestStatus | str | None) -> str:
    parsed = RequestStatus.parse(status)
    if parsed is None:
        return "solicitacao"
    return _STAGE_BY_STATUS.get(parsed, "solicitacao")


def build_process_steps(current_stage: str) -> List[Dict[str, object]]:
    current_idx = next((idx for idx, item in enumerate(PROCESS_STAGES) if item["key"] == current_stage), 0)
    steps: List[Dict[str, object]] = []
    for idx, stage in enumerate(PROCESS_STAGES):
        state = "future"
        if idx < current_idx:
            state = "completed"
        elif idx == current_idx:
            state = "current"
        steps.append({"key": stage["key"], "label": stage["label"], "state": state})
    return steps


def flow_meta(status: RequestStatus | str | None) -> Dict[str, object]:
    parsed = RequestStatus.parse(status)
    stage = stage_for_request_status(parsed)
    primary = primary_action(parsed)
    return {
        "stage": stage,
        "status": parsed.value if parsed else None,
        "terminal": parsed in TERMINAL_STATUSES,
        "allowed_actions": allowed_actions(parsed),
        "primary_action": primary,
        "primary_action_label": action_label(primary) if primary else None,
        "process_steps": build_process_steps(stage),
    }
