from __future__ import annotations

from datetime import datetime, timedelta, timezone

from app.config import DEFAULT_ROLE_ASSIGNMENTS
from app.contexts.notifications.application.service import NotificationService
from app.contexts.procurement.application.lifecycle_engine import RequestLifecycleEngine
from app.contexts.procurement.application.offer_service import OfferService
from app.core import EventBus
from app.policies import build_caller, parse_role_assignments
from tests.helpers.temp_db import TempDbSandbox


ASSIGNMENTS = parse_role_assignments(DEFAULT_ROLE_ASSIGNMENTS)

T0 = datetime(2026, 3, 2, 9, 0, tzinfo=timezone.utc)


class FakeClock:
    def __init__(self, start: datetime = T0) -> None:
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **delta) -> datetime:
        self.now = self.now + timedelta(**delta)
        return self.now


def caller(role: str | None, username: str | None = None):
    return build_caller(role, username, ASSIGNMENTS)


PM = caller("PROJECT_MANAGER", "alice")
OTHER_PM = caller("PROJECT_MANAGER", "bob")
OFFICER = caller("PROCUREMENT_OFFICER", "olga")
PLANNER = caller("RESOURCE_PLANNER", "rita")
PROVIDER_A = caller("SERVICE_PROVIDER", "acme")
PROVIDER_B = caller("SERVICE_PROVIDER", "globex")
PROVIDER_C = caller("SERVICE_PROVIDER", "initech")
ADMIN = caller("SYSTEM_ADMIN", "root")


class LifecycleSandbox:
    """Temp sqlite DB plus an engine wired to a fake clock and a private event bus."""

    def __init__(self, prefix: str = "lifecycle") -> None:
        self.temp_db = TempDbSandbox(prefix=prefix)
        self.db = self.temp_db.open_database()
        self.clock = FakeClock()
        self.bus = EventBus()
        self.engine = RequestLifecycleEngine(
            self.db,
            notifications=NotificationService(clock=self.clock),
            event_bus=self.bus,
            clock=self.clock,
        )
        self.offers = OfferService(self.engine)

    def close(self) -> None:
        self.db.close()
        self.temp_db.cleanup()

    # -- shortcuts -----------------------------------------------------

    def new_request(self, owner=PM, **body) -> dict:
        body.setdefault("title", "Backend developer for Atlas")
        return self.engine.create(owner, body)

    def to_bidding(self, owner=PM, **body) -> dict:
        document = self.new_request(owner, **body)
        self.engine.submit_for_review(owner, document["id"])
        self.engine.review_approve(OFFICER, document["id"])
        return self.engine.submit_for_bidding(owner, document["id"])

    def offer(self, provider, request_id: str, price=1000, delivery_days=10, roles=("Developer",)) -> dict:
        return self.offers.submit_offer(
            provider,
            request_id,
            {"price": price, "delivery_days": delivery_days, "roles_provided": list(roles)},
        )

    def notifications(self, **filters) -> list[dict]:
        return self.engine.notifications.repository.find_many(self.db, filters, sort=(("created_at", "ASC"),))
