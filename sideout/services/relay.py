"""Relay change events to an external notifier (push, websockets, email...)."""
from __future__ import annotations

import logging
from typing import Iterable

import httpx

import config
from sideout.scheduling.events import ChangeEvent

logger = logging.getLogger("sideout.relay")


async def relay_events(events: Iterable[ChangeEvent]) -> bool:
    """POST events to EVENT_RELAY_URL. Best-effort: failures are logged, never raised.

    Returns True when the relay accepted the batch (or there was nothing to send).
    """
    payload = [e.to_dict() for e in events]
    if not payload or not config.EVENT_RELAY_URL:
        return True
    headers = {}
    if config.EVENT_RELAY_SECRET:
        headers["Authorization"] = f"Bearer {config.EVENT_RELAY_SECRET}"
    try:
        async with httpx.AsyncClient(timeout=10.0) as client:
            r = await client.post(config.EVENT_RELAY_URL, json={"events": payload}, headers=headers)
            r.raise_for_status()
    except httpx.HTTPError as e:
        logger.warning("Event relay failed (%d events): %s", len(payload), e)
        return False
    return True
