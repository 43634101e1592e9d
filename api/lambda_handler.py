"""
SNS-triggered entry point.

Each record's Sns.Message is a schedule request body. Records are handled in
order; the first fatal error propagates so the platform redelivers the event.

Redelivery replays every record of the event. Slot placements converge on
replay, but a "now" record handled before the failure is published to the
processor topic again. SNS invokes Lambda with one record per event, so this
only arises for hand-built multi-record events; the processor must tolerate
duplicate immediate sends.
"""
from __future__ import annotations

import asyncio
import structlog
from typing import Any, Optional

from api.bootstrap import Components, build_components

logger = structlog.get_logger()

_components: Optional[Components] = None


def _get_components() -> Components:
    global _components
    if _components is None:
        _components = build_components()
    return _components


def handler(event: dict, context: Any = None) -> dict:
    return asyncio.run(process_event(event))


async def process_event(event: dict, components: Components = None) -> dict:
    components = components or _get_components()
    records = event.get("Records") or []
    logger.debug("sns_event_received", records=len(records))

    await components.bus.connect()
    try:
        results = []
        for record in records:
            body = record["Sns"]["Message"]
            result = await components.scheduler.handle_body(body)
            results.append(result.to_dict())
    finally:
        await components.bus.close()

    return {"processed": len(results), "results": results}
