"""
Cost Extractor
Resolves a call's cost from client data or the platform payload
"""
import math
from dataclasses import dataclass
from typing import Any, Dict, Iterable, Optional

from app.domain.models.call import CostSource


@dataclass(frozen=True)
class CostResolution:
    """Resolved cost plus the provenance tag stored next to it."""
    cost_usd: float
    source: CostSource
    path: Optional[str] = None

    def as_payload_tags(self) -> Dict[str, Any]:
        tags: Dict[str, Any] = {"cost_source": self.source.value}
        if self.path:
            tags["cost_path"] = self.path
        return tags


def _as_cost(value: Any) -> Optional[float]:
    """Return value as a finite non-negative float, or None."""
    if isinstance(value, bool) or value is None:
        return None
    if isinstance(value, str):
        try:
            value = float(value.strip())
        except ValueError:
            return None
    if not isinstance(value, (int, float)):
        return None
    value = float(value)
    if not math.isfinite(value) or value < 0:
        return None
    return value


def _lookup(payload: Dict[str, Any], path: str) -> Any:
    node: Any = payload
    for key in path.split("."):
        if not isinstance(node, dict) or key not in node:
            return None
        node = node[key]
    return node


def extract_cost(
    body: Dict[str, Any],
    payload_paths: Iterable[str],
) -> CostResolution:
    """
    Resolve the cost of a call deterministically.

    Order: the client-supplied ``cost_usd`` field, then each dotted
    payload path in order, then zero tagged WEB_CALL_NO_METER.
    Never returns a missing value.
    """
    client_cost = _as_cost(body.get("cost_usd"))
    if client_cost is not None:
        return CostResolution(cost_usd=client_cost, source=CostSource.CLIENT)

    for path in payload_paths:
        payload_cost = _as_cost(_lookup(body, path))
        if payload_cost is not None:
            return CostResolution(cost_usd=payload_cost, source=CostSource.PAYLOAD, path=path)

    return CostResolution(cost_usd=0.0, source=CostSource.WEB_CALL_NO_METER)


def stored_cost(row: Dict[str, Any]) -> Optional[CostResolution]:
    """
    Cost already persisted on a calls row, with its provenance tag.

    None when the row has no cost or no recognisable cost_source.
    """
    payload = row.get("raw_payload")
    if not isinstance(payload, dict):
        return None
    cost = _as_cost(row.get("cost_usd"))
    if cost is None:
        return None
    try:
        source = CostSource(payload.get("cost_source"))
    except ValueError:
        return None
    return CostResolution(cost_usd=cost, source=source, path=payload.get("cost_path"))
