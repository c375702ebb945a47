"""In-memory audit trail of price and catalog changes."""

from __future__ import annotations

import uuid
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any

from pricepilot.context import get_correlation_id, get_shop_domain

audit_entries: list[dict[str, Any]] = []


def _snapshot(values: dict[str, Any] | None) -> dict[str, Any] | None:
    # Money and ids are kept as strings so entries serialise without loss.
    if values is None:
        return None
    return {key: str(value) if isinstance(value, (Decimal, uuid.UUID)) else value for key, value in values.items()}


def record(
    actor_user_id: str,
    entity_type: str,
    entity_id: str,
    action: str,
    before: dict[str, Any] | None,
    after: dict[str, Any] | None,
    shop_domain: str | None = None,
    correlation_id: str | None = None,
) -> None:
    audit_entries.append(
        {
            "id": str(uuid.uuid4()),
            "actor_user_id": actor_user_id,
            "entity_type": entity_type,
            "entity_id": entity_id,
            "action": action,
            "shop_domain": shop_domain or get_shop_domain(),
            "before": _snapshot(before),
            "after": _snapshot(after),
            "correlation_id": correlation_id or get_correlation_id(),
            "occurred_at": datetime.now(timezone.utc).isoformat(),
        }
    )


def entries_for(entity_type: str, entity_id: str) -> list[dict[str, Any]]:
    return [entry for entry in audit_entries if entry["entity_type"] == entity_type and entry["entity_id"] == entity_id]
