"""
Caller-supplied context for return mutations.

Core services never read the acting user or feature switches from global
state. Routes and CLI commands build these values and pass them in.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Mapping


@dataclass(frozen=True)
class Session:
    """The user performing a mutation (recorded on the return row)."""
    user_id: int | None = None


@dataclass(frozen=True)
class FeatureFlags:
    """
    Side effects a return mutation is allowed to perform.

    - supplier_balance_sync: apply +/- return totals to the supplier balance
    - purchase_order_sync: re-run reconciliation on the linked purchase order
    """
    supplier_balance_sync: bool = True
    purchase_order_sync: bool = True

    @classmethod
    def from_config(cls, config: Mapping[str, Any]) -> "FeatureFlags":
        return cls(
            supplier_balance_sync=bool(config.get("RETURNS_SUPPLIER_BALANCE_SYNC", True)),
            purchase_order_sync=bool(config.get("RETURNS_PURCHASE_ORDER_SYNC", True)),
        )
