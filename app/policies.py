from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, FrozenSet, Mapping

from app.errors import AuthenticationError
from app.errors import PermissionError as AppPermissionError


class Role(str, Enum):
    INITIATOR = "initiator"
    REVIEWER = "reviewer"
    EVALUATOR = "evaluator"
    ORDERING = "ordering"
    PROVIDER = "provider"
    ADMIN = "admin"


# Sinonimos aceitos no header, ja sem espacos/underscores e em maiusculas.
ROLE_SYNONYMS: Dict[str, str] = {
    "PROJECTMANAGER": "PROJECT_MANAGER",
    "PM": "PROJECT_MANAGER",
    "PROCUREMENTOFFICER": "PROCUREMENT_OFFICER",
    "PO": "PROCUREMENT_OFFICER",
    "RESOURCEPLANNER": "RESOURCE_PLANNER",
    "RP": "RESOURCE_PLANNER",
    "SERVICEPROVIDER": "SERVICE_PROVIDER",
    "PROVIDER": "SERVICE_PROVIDER",
    "SP": "SERVICE_PROVIDER",
    "SYSTEMADMIN": "SYSTEM_ADMIN",
    "SYSTEMADMINISTRATOR": "SYSTEM_ADMIN",
    "ADMIN": "SYSTEM_ADMIN",
}


def normalize_role_name(raw: str | None) -> str:
    """Fold a raw role header into its canonical upper-snake name ("" when absent)."""
    text = str(raw or "").strip()
    if not text:
        return ""
    upper = "_".join(text.upper().replace("-", " ").split())
    compact = upper.replace("_", "")
    return ROLE_SYNONYMS.get(compact) or ROLE_SYNONYMS.get(upper) or upper


def normalize_identity(raw: str | None) -> str:
    return str(raw or "").strip().lower()


def parse_role_assignments(raw: object) -> Dict[str, FrozenSet[Role]]:
    """Parse ``NAME:role,role;NAME:role`` (or a mapping) into canonical name -> roles."""
    if isinstance(raw, Mapping):
        items = [(str(name), value) for name, value in raw.items()]
    else:
        items = []
        for chunk in str(raw or "").split(";"):
            if ":" not in chunk:
                continue
            name, roles = chunk.split(":", 1)
            items.append((name, roles.split(",")))

    assignments: Dict[str, FrozenSet[Role]] = {}
    for name, values in items:
        canonical = normalize_role_name(name)
        if not canonical:
            continue
        if isinstance(values, str):
            values = values.split(",")
        roles = set()
        for value in values:
            try:
                roles.add(Role(str(value).strip().lower()))
            except ValueError:
                continue
        if roles:
            assignments[canonical] = frozenset(roles)
    return assignments


def resolve_roles(role_name: str, assignments: Mapping[str, FrozenSet[Role]]) -> FrozenSet[Role]:
    if not role_name:
        return frozenset()
    if role_name in assignments:
        return assignments[role_name]
    try:
        return frozenset({Role(role_name.lower())})
    except ValueError:
        return frozenset()


@dataclass(frozen=True)
class Caller:
    role_name: str
    identity: str
    roles: FrozenSet[Role] = field(default_factory=frozenset)

    @property
    def is_admin(self) -> bool:
        return Role.ADMIN in self.roles

    def has_role(self, *roles: Role) -> bool:
        return any(role in self.roles for role in roles)

    def owns(self, document: Mapping | None) -> bool:
        if not self.identity or not document:
            return False
        return normalize_identity(document.get("created_by")) == self.identity


def build_caller(
    raw_role: str | None,
    raw_identity: str | None,
    assignments: Mapping[str, FrozenSet[Role]],
) -> Caller:
    role_name = normalize_role_name(raw_role)
    return Caller(
        role_name=role_name,
        identity=normalize_identity(raw_identity),
        roles=resolve_roles(role_name, assignments),
    )


def current_caller() -> Caller:
    from flask import current_app, g, request

    cached = getattr(g, "caller", None)
    if isinstance(cached, Caller):
        return cached
    assignments = current_app.extensions.get("role_assignments")
    if assignments is None:
        assignments = parse_role_assignments(current_app.config.get("ROLE_ASSIGNMENTS"))
        current_app.extensions["role_assignments"] = assignments
    caller = build_caller(
        request.headers.get("X-User-Role"),
        request.headers.get("X-Username"),
        assignments,
    )
    g.caller = caller
    return caller


def require_authenticated(caller: Caller, *, identity: bool = True) -> Caller:
    if not caller.role_name:
        raise AuthenticationError(details="Missing X-User-Role")
    if identity and not caller.identity:
        raise AuthenticationError(message_key="identity_required", details="Missing X-Username")
    return caller


def require_roles(caller: Caller, *allowed_roles: Role) -> Caller:
    if caller.has_role(*allowed_roles):
        return caller
    raise AppPermissionError(
        details=f"Requires role: {', '.join(role.value for role in allowed_roles)}",
    )
