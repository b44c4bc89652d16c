"""Entitlement sources: who gets to see every generated creative."""

from __future__ import annotations

import logging
from enum import Enum
from typing import Any, Protocol

from pydantic import BaseModel

from adgen.client import ApiClient

logger = logging.getLogger(__name__)

SUBSCRIPTION_PATH = "/api/subscription"


class PlanTier(str, Enum):
    FREE = "free"
    TRIAL = "trial"
    PAID = "paid"


class Entitlement(BaseModel):
    tier: PlanTier = PlanTier.FREE
    active: bool = False
    plan: str = ""

    @property
    def entitled(self) -> bool:
        """Only an active paid plan unlocks gated items."""
        return self.tier is PlanTier.PAID and self.active


class EntitlementSource(Protocol):
    async def current(self) -> Entitlement: ...


class StaticEntitlements:
    def __init__(self, entitlement: Entitlement | bool):
        if isinstance(entitlement, bool):
            entitlement = Entitlement(tier=PlanTier.PAID if entitlement else PlanTier.FREE, active=entitlement)
        self._entitlement = entitlement

    async def current(self) -> Entitlement:
        return self._entitlement


def entitlement_from_subscription(body: dict[str, Any]) -> Entitlement:
    """Map ``{subscription: {plan, status, isValid}}`` onto an Entitlement."""
    sub = body.get("subscription") if isinstance(body.get("subscription"), dict) else body
    plan = str(sub.get("plan") or "").lower()
    status = str(sub.get("status") or "").lower()
    active = bool(sub.get("isValid", status in ("active", "authenticated")))
    if not plan or plan in ("free", "none"):
        tier = PlanTier.FREE
    elif plan == "trial" or status == "trial":
        tier = PlanTier.TRIAL
    else:
        tier = PlanTier.PAID
    return Entitlement(tier=tier, active=active, plan=plan)


class SubscriptionEntitlements:
    """Reads the caller's subscription from the service on every call."""

    def __init__(self, client: ApiClient):
        self._client = client

    async def current(self) -> Entitlement:
        body = await self._client.get_json(SUBSCRIPTION_PATH)
        if not isinstance(body, dict):
            logger.warning("Unexpected subscription body; treating as free tier")
            return Entitlement()
        return entitlement_from_subscription(body.get("data") if isinstance(body.get("data"), dict) else body)
