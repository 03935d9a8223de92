from __future__ import annotations

import logging
import uuid
from datetime import datetime
from typing import Callable, Iterable

from app.contexts.notifications.infrastructure.repository import NotificationRepository
from app.errors import NotFoundError
from app.observability import observe_notification
from app.policies import Caller, require_authenticated
from app.procurement.transitions import Notification, to_iso, utc_now


LOGGER = logging.getLogger("app.notifications")


class NotificationService:
    """Delivers planned notifications and serves the recipient inbox.

    Delivery is fire-and-forget: a failing write is logged and skipped, and
    never reaches the transition that produced it.
    """

    def __init__(
        self,
        repository: NotificationRepository | None = None,
        *,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self.repository = repository or NotificationRepository()
        self.clock = clock

    def dispatch(self, db, notifications: Iterable[Notification]) -> int:
        delivered = 0
        for notification in notifications:
            if not notification.to_username and not notification.to_role:
                continue
            try:
                inserted = self.repository.insert_once(db, self._to_document(notification))
                db.commit()
            except Exception:  # noqa: BLE001
                observe_notification("failed")
                LOGGER.exception(
                    "notification_dispatch_failed",
                    extra={
                        "notification_type": notification.type,
                        "target": notification.target,
                        "request_ref": notification.request_id,
                        "uniq_key": notification.idempotency_key,
                    },
                )
                self._rollback_quietly(db)
                continue
            if inserted:
                delivered += 1
                observe_notification("delivered")
            else:
                observe_notification("deduplicated")
        return delivered

    def _to_document(self, notification: Notification) -> dict:
        return {
            "id": uuid.uuid4().hex,
            "uniq_key": notification.idempotency_key,
            "to_username": notification.to_username,
            "to_role": notification.to_role.value if notification.to_role else None,
            "type": notification.type,
            "title": notification.title,
            "message": notification.message,
            "request_id": notification.request_id,
            "meta": dict(notification.meta or {}),
            "read": False,
            "created_at": to_iso(self.clock()),
        }

    @staticmethod
    def _rollback_quietly(db) -> None:
        try:
            db.rollback()
        except Exception:  # noqa: BLE001
            LOGGER.warning("notification_rollback_failed")

    def list_for_caller(self, db, caller: Caller, *, unread_only: bool = False, limit: int = 50) -> list[dict]:
        require_authenticated(caller, identity=False)
        return self.repository.list_for_recipient(
            db,
            username=caller.identity or None,
            roles=sorted(role.value for role in caller.roles),
            unread_only=unread_only,
            limit=max(1, min(int(limit), 200)),
        )

    def mark_read(self, db, caller: Caller, notification_id: str) -> dict:
        require_authenticated(caller, identity=False)
        notification = self.repository.find_one(db, notification_id)
        if notification is None or not self._addressed_to(notification, caller):
            raise NotFoundError(message_key="notification_not_found", details="Notification not found")
        if not notification.get("read"):
            self.repository.update(db, notification_id, {"read": True})
            db.commit()
            notification["read"] = True
        return notification

    @staticmethod
    def _addressed_to(notification: dict, caller: Caller) -> bool:
        if caller.identity and notification.get("to_username") == caller.identity:
            return True
        role = notification.get("to_role")
        return bool(role) and role in {item.value for item in caller.roles}
