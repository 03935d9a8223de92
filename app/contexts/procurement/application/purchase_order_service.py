from __future__ import annotations

from app.contexts.procurement.infrastructure.repositories import PurchaseOrderRepository, RequestRepository
from app.errors import NotFoundError, PermissionError
from app.policies import Caller, Role, require_authenticated, require_roles


PURCHASE_ORDER_READ_ALL_ROLES = (Role.ORDERING, Role.EVALUATOR, Role.ADMIN)


class PurchaseOrderService:
    """Read side of purchase orders; orders are only written by ``place_order``."""

    def __init__(
        self,
        db,
        *,
        purchase_orders: PurchaseOrderRepository | None = None,
        requests: RequestRepository | None = None,
    ) -> None:
        self.db = db
        self.purchase_orders = purchase_orders or PurchaseOrderRepository()
        self.requests = requests or RequestRepository()

    def list(self, caller: Caller, *, request_id: str | None = None) -> list[dict]:
        require_authenticated(caller, identity=False)
        if request_id:
            document = self.requests.find_one(self.db, request_id)
            if document is None:
                raise NotFoundError(message_key="request_not_found", details=f"Request {request_id} not found")
            if not (caller.has_role(*PURCHASE_ORDER_READ_ALL_ROLES) or caller.owns(document)):
                raise PermissionError(details="Caller may not read orders of this request")
            return self.purchase_orders.find_many(self.db, {"request_id": str(request_id)})
        require_roles(caller, *PURCHASE_ORDER_READ_ALL_ROLES)
        return self.purchase_orders.find_many(self.db, sort=(("ordered_at", "DESC"),), limit=200)

    def list_mine(self, caller: Caller) -> list[dict]:
        require_authenticated(caller)
        if caller.has_role(Role.PROVIDER):
            filters = {"provider_username": caller.identity}
        else:
            require_roles(caller, Role.ORDERING, Role.ADMIN)
            filters = {"ordered_by": caller.identity}
        return self.purchase_orders.find_many(self.db, filters, sort=(("ordered_at", "DESC"),), limit=200)

    def get(self, caller: Caller, purchase_order_id: str) -> dict:
        require_authenticated(caller, identity=False)
        order = self.purchase_orders.find_one(self.db, purchase_order_id)
        if order is None:
            raise NotFoundError(message_key="purchase_order_not_found", details="Purchase order not found")
        if caller.has_role(*PURCHASE_ORDER_READ_ALL_ROLES):
            return order
        if caller.identity and caller.identity == order.get("provider_username"):
            return order
        document = self.requests.find_one(self.db, order["request_id"])
        if caller.owns(document):
            return order
        raise PermissionError(details="Caller may not read this purchase order")
