from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Iterable, List, Mapping, Sequence, Set

MISSING_PRICE_PENALTY = 1e12
MISSING_DELIVERY_PENALTY = 1e6


def _role_names(entries: object) -> List[str]:
    if not isinstance(entries, (list, tuple)):
        return []
    names = []
    for entry in entries:
        if isinstance(entry, Mapping):
            raw = entry.get("role_name") or entry.get("roleName") or entry.get("name")
        else:
            raw = entry
        name = str(raw or "").strip()
        if name:
            names.append(name)
    return names


def required_roles(request_document: Mapping[str, Any]) -> List[str]:
    payload = request_document.get("payload") or {}
    return _role_names(payload.get("roles"))


def provided_roles(offer: Mapping[str, Any]) -> Set[str]:
    return {name.lower() for name in _role_names(offer.get("roles_provided"))}


def _number(value: object, fallback: float) -> float:
    if value is None or value == "":
        return fallback
    try:
        return float(value)
    except (TypeError, ValueError):
        return fallback


@dataclass(frozen=True)
class WeightedScoreStrategy:
    """Lower score wins: weighted price plus weighted delivery days."""

    price_weight: float = 0.7
    delivery_weight: float = 0.3

    def covers_roles(self, request_document: Mapping[str, Any], offer: Mapping[str, Any]) -> bool:
        have = provided_roles(offer)
        return all(name.lower() in have for name in required_roles(request_document))

    def score(self, offer: Mapping[str, Any]) -> float:
        price = _number(offer.get("price"), MISSING_PRICE_PENALTY)
        days = _number(offer.get("delivery_days"), MISSING_DELIVERY_PENALTY)
        return price * self.price_weight + days * self.delivery_weight

    def rank(self, request_document: Mapping[str, Any], offers: Iterable[Mapping[str, Any]]) -> List[Mapping[str, Any]]:
        eligible = [offer for offer in offers if self.covers_roles(request_document, offer)]
        # sorted() is stable, so ties keep submission order
        return sorted(eligible, key=self.score)

    def shortlist(
        self,
        request_document: Mapping[str, Any],
        offers: Sequence[Mapping[str, Any]],
        limit: int,
    ) -> List[Mapping[str, Any]]:
        if limit <= 0:
            return []
        return self.rank(request_document, offers)[:limit]


DEFAULT_STRATEGY = WeightedScoreStrategy()
