from app.contexts.procurement.infrastructure.repositories.evaluation_repository import EvaluationRepository
from app.contexts.procurement.infrastructure.repositories.offer_repository import OfferRepository
from app.contexts.procurement.infrastructure.repositories.purchase_order_repository import PurchaseOrderRepository
from app.contexts.procurement.infrastructure.repositories.request_repository import RequestRepository
from app.contexts.procurement.infrastructure.repositories.status_event_repository import StatusEventRepository

__all__ = [
    "EvaluationRepository",
    "OfferRepository",
    "PurchaseOrderRepository",
    "RequestRepository",
    "StatusEventRepository",
]
