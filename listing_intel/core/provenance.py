from __future__ import annotations

from datetime import datetime, timezone
from typing import Any

LARGE_SWING_PCT = 15.0
_EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)


def build_events(sights: list[dict[str, Any]]) -> list[dict[str, Any]]:
    """
    Timeline of what changed between crawl revisits of one listing.
    """
    ordered = sorted(sights, key=lambda sight: _parse_dt(sight.get("seen_at")))
    if not ordered:
        return []

    events: list[dict[str, Any]] = [
        {"kind": "LISTED", "at": ordered[0].get("seen_at"), "payload": {"url": ordered[0].get("source_url")}}
    ]
    for prev, cur in zip(ordered, ordered[1:]):
        prev_price, cur_price = prev.get("price_eur"), cur.get("price_eur")
        if prev_price and cur_price and prev_price != cur_price:
            events.append(
                {
                    "kind": "PRICE_CHANGE",
                    "at": cur.get("seen_at"),
                    "payload": {
                        "from": prev_price,
                        "to": cur_price,
                        "delta": cur_price - prev_price,
                        "pct": round((cur_price - prev_price) / prev_price * 100.0, 2),
                    },
                }
            )
        if (prev.get("title") or "") != (cur.get("title") or ""):
            events.append(
                {
                    "kind": "RELABEL",
                    "at": cur.get("seen_at"),
                    "payload": {"from": prev.get("title"), "to": cur.get("title")},
                }
            )
        if (prev.get("contact") or "") != (cur.get("contact") or ""):
            events.append({"kind": "CONTACT_CHANGED", "at": cur.get("seen_at"), "payload": {}})
    return events


def price_swings(events: list[dict[str, Any]], threshold_pct: float = LARGE_SWING_PCT) -> list[dict[str, Any]]:
    return [
        event["payload"]
        for event in events
        if event["kind"] == "PRICE_CHANGE" and abs(event["payload"]["pct"]) >= threshold_pct
    ]


def is_price_drop(previous_price: float | None, current_price: float | None, threshold_pct: float = 5.0) -> bool:
    if not previous_price or previous_price <= 0 or current_price is None:
        return False
    return (1 - current_price / previous_price) * 100.0 >= threshold_pct


def _parse_dt(value: Any) -> datetime:
    parsed = value
    if isinstance(value, str):
        try:
            parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
        except ValueError:
            parsed = None
    if not isinstance(parsed, datetime):
        return _EPOCH
    return parsed if parsed.tzinfo else parsed.replace(tzinfo=timezone.utc)
