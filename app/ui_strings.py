from __future__ import annotations

from typing import Dict, List, Tuple


STATUS_GROUPS: Dict[str, List[Dict[str, str]]] = {
    "solicitacao": [
        {
            "key": "DRAFT",
            "label": "Rascunho",
            "description": "Solicitacao em elaboracao pelo gerente de projeto.",
        },
        {
            "key": "IN_REVIEW",
            "label": "Em revisao",
            "description": "Solicitacao aguardando aprovacao do revisor.",
        },
        {
            "key": "APPROVED_FOR_SUBMISSION",
            "label": "Aprovada para envio",
            "description": "Solicitacao aprovada, pronta para abrir propostas.",
        },
        {
            "key": "BIDDING",
            "label": "Recebendo propostas",
            "description": "Fornecedores podem enviar propostas ate o fim do ciclo.",
        },
        {
            "key": "BID_EVALUATION",
            "label": "Avaliacao de propostas",
            "description": "Propostas encerradas, aguardando recomendacao.",
        },
        {
            "key": "RECOMMENDED",
            "label": "Proposta recomendada",
            "description": "Uma proposta vencedora foi recomendada.",
        },
        {
            "key": "SENT_TO_ORDERING",
            "label": "Enviada para pedido",
            "description": "Aguardando emissao da ordem de compra.",
        },
        {
            "key": "ORDERED",
            "label": "Pedido emitido",
            "description": "Ordem de compra emitida para a proposta escolhida.",
        },
        {
            "key": "REJECTED",
            "label": "Rejeitada",
            "description": "Solicitacao rejeitada na revisao.",
        },
        {
            "key": "EXPIRED",
            "label": "Expirada",
            "description": "Ciclo de propostas encerrado sem avaliacao. Pode ser reativada.",
        },
    ],
    "proposta": [
        {"key": "SUBMITTED", "label": "Enviada", "description": "Proposta recebida."},
        {"key": "SHORTLISTED", "label": "Pre-selecionada", "description": "Entre as melhores propostas."},
        {"key": "RECOMMENDED", "label": "Recomendada", "description": "Proposta recomendada pelo avaliador."},
        {"key": "ORDERED", "label": "Contratada", "description": "Proposta convertida em ordem de compra."},
        {"key": "REJECTED", "label": "Descartada", "description": "Proposta fora da selecao."},
    ],
}


# (title, message) por chave de notificacao; mensagens aceitam format(**context).
NOTIFICATION_TEXTS: Dict[str, Tuple[str, str]] = {
    "request_created": ("Solicitacao criada", 'Voce criou a solicitacao "{title}" (DRAFT).'),
    "submitted_for_review_reviewer": ("Nova solicitacao em revisao", 'Solicitacao "{title}" enviada para revisao.'),
    "submitted_for_review_owner": ("Enviada para revisao", 'Sua solicitacao "{title}" esta IN_REVIEW.'),
    "review_approved": ("Solicitacao aprovada", 'Sua solicitacao "{title}" foi aprovada para envio.'),
    "review_rejected": ("Solicitacao rejeitada", 'Sua solicitacao "{title}" foi rejeitada. {reason}'),
    "bidding_open_provider": ("Nova solicitacao aberta", 'A solicitacao "{title}" esta aberta para propostas.'),
    "bidding_open_owner": ("Propostas abertas", 'Sua solicitacao "{title}" esta BIDDING.'),
    "request_expired": ("Solicitacao expirada", 'Sua solicitacao "{title}" expirou apos o ciclo de propostas.'),
    "reactivated": ("Solicitacao reativada", 'Sua solicitacao "{title}" voltou para APPROVED_FOR_SUBMISSION.'),
    "bid_evaluation_owner": ("Propostas encerradas", 'Sua solicitacao "{title}" foi para BID_EVALUATION.'),
    "bid_evaluation_evaluator": ("Solicitacao pronta para avaliacao", 'Solicitacao "{title}" esta em BID_EVALUATION.'),
    "recommended_owner": ("Proposta recomendada", 'Solicitacao "{title}" esta RECOMMENDED.'),
    "recommended_ordering": ("Pedido a caminho", 'Solicitacao "{title}" esta RECOMMENDED e deve seguir para pedido.'),
    "sent_to_ordering": ("Nova solicitacao para pedido", 'A solicitacao "{title}" esta pronta para pedido.'),
    "sent_to_ordering_owner": ("Enviada para pedido", 'Sua solicitacao "{title}" esta SENT_TO_ORDERING.'),
    "ordered_owner": ("Pedido emitido", 'Sua solicitacao "{title}" esta ORDERED.'),
    "ordered_ordering": ("Pedido registrado", 'Pedido registrado para a solicitacao "{title}".'),
    "offer_submitted": ("Nova proposta recebida", 'Fornecedor "{provider}" enviou proposta para "{title}".'),
    "evaluation_updated": ("Avaliacao registrada", 'A avaliacao das propostas de "{title}" foi atualizada.'),
}


MESSAGES: Dict[str, Dict[str, str]] = {
    "success": {
        "request_saved": "Solicitacao salva com sucesso.",
        "request_deleted": "Solicitacao excluida.",
        "offer_saved": "Proposta registrada com sucesso.",
        "evaluation_saved": "Avaliacao salva com sucesso.",
        "order_placed": "Ordem de compra emitida.",
        "notification_read": "Notificacao marcada como lida.",
    },
    "error": {
        "action_not_allowed_for_status": "Esta acao nao e permitida para o status atual.",
        "action_invalid": "Acao invalida para esta operacao.",
        "auth_required": "Autenticacao necessaria.",
        "identity_required": "Informe o usuario (X-Username) para esta acao.",
        "permission_denied": "Voce nao possui permissao para executar esta acao.",
        "not_owner": "Somente o criador da solicitacao pode executar esta acao.",
        "not_found": "Registro nao encontrado.",
        "request_not_found": "Solicitacao nao encontrada.",
        "offer_not_found": "Proposta nao encontrada.",
        "purchase_order_not_found": "Ordem de compra nao encontrada.",
        "notification_not_found": "Notificacao nao encontrada.",
        "offer_not_in_request": "A proposta nao pertence a esta solicitacao.",
        "recommended_offer_missing": "Nenhuma proposta recomendada para emitir o pedido.",
        "offer_id_required": "Informe a proposta (offer_id).",
        "request_closed_for_offers": "A solicitacao nao aceita novas propostas neste status.",
        "evaluation_closed": "A avaliacao so pode ser registrada durante a analise das propostas.",
        "evaluation_invalid": "Dados da avaliacao sao invalidos.",
        "evaluation_offer_unknown": "A avaliacao cita uma proposta que nao pertence a esta solicitacao.",
        "recommended_offer_not_evaluated": "A proposta recomendada precisa constar nas propostas avaliadas.",
        "title_required": "Titulo obrigatorio.",
        "roles_required": "Informe os perfis cobertos pela proposta.",
        "price_invalid": "Preco informado e invalido.",
        "number_invalid": "Valor numerico invalido.",
        "validation_error": "Dados informados sao invalidos.",
        "status_invalid": "Status informado e invalido.",
        "status_conflict": "A solicitacao foi alterada por outra operacao. Atualize e tente novamente.",
        "storage_unavailable": "Banco de dados indisponivel no momento. Tente novamente em instantes.",
        "rate_limit_exceeded": "Muitas requisicoes. Tente novamente em instantes.",
        "unexpected_error": "Nao foi possivel concluir a operacao. Tente novamente em instantes.",
    },
}


def status_keys_for_group(group: str) -> List[str]:
    return [item["key"] for item in STATUS_GROUPS.get(group, [])]


def build_status_labels(group: str) -> Dict[str, str]:
    return {item["key"]: item["label"] for item in STATUS_GROUPS.get(group, [])}


REQUEST_STATUS_LABELS = build_status_labels("solicitacao")
OFFER_STATUS_LABELS = build_status_labels("proposta")


def request_status_label(status: str | None) -> str:
    key = str(status or "").strip()
    return REQUEST_STATUS_LABELS.get(key, key)


def get_message(category: str, key: str, default: str | None = None) -> str:
    message = MESSAGES.get(category, {}).get(key)
    if message:
        return message
    if default is not None:
        return default
    return key


def error_message(key: str, default: str | None = None) -> str:
    return get_message("error", key, default)


def success_message(key: str, default: str | None = None) -> str:
    return get_message("success", key, default)


def notification_text(key: str, **context: object) -> Tuple[str, str]:
    title, template = NOTIFICATION_TEXTS.get(key, (key, ""))
    values = {name: ("" if value is None else str(value)) for name, value in context.items()}
    values.setdefault("title", "Sem titulo")
    try:
        message = template.format(**values)
    except KeyError:
        message = template
    return title, message.strip()
