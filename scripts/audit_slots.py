#!/usr/bin/env python3
"""
Slot Audit — Inspect the slot store and report duplicate placements.

Concurrent reschedules of the same notification can briefly leave it in more
than one slot; the next reschedule converges it. This report shows which
notifications are currently in that state.

Usage:
    # Duplicate report (exit code 1 if any are found):
    python scripts/audit_slots.py

    # Dump one slot:
    python scripts/audit_slots.py --slot 08-05

    # Use a specific settings file:
    NOTIFICATION_SCHEDULER_CONFIG=config/settings.yaml python scripts/audit_slots.py
"""
import argparse
import asyncio
import json
import os
import sys
from collections import defaultdict

# Ensure app root is on path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))


async def find_duplicates(store) -> dict[str, list[str]]:
    """Map of notification id → slots, for ids stored in more than one slot."""
    slots_by_id = defaultdict(list)
    for time_slot in await store.list_slots():
        for notification_id in await store.list_keys(time_slot):
            slots_by_id[notification_id].append(time_slot)
    return {nid: sorted(slots) for nid, slots in slots_by_id.items() if len(slots) > 1}


async def dump_slot(store, time_slot: str) -> None:
    placements = await store.list_placements(time_slot)
    print(f"Slot {time_slot}: {len(placements)} notification(s)")
    for placement in placements:
        payload = placement.payload
        print(f"  {placement.notification_id}  "
              f"type={payload.get('notificationType')}  send={payload.get('sendTimeUtc')}")


async def run_audit(time_slot: str = "") -> int:
    from config.settings import load_settings
    from core.time_slots import is_valid_time_slot
    from database.store_factory import create_store

    settings = load_settings()
    store = create_store(settings.store.to_dict())

    if time_slot:
        if not is_valid_time_slot(time_slot):
            print(f"Invalid slot {time_slot!r}, expected HH-MM on a 5 minute boundary")
            return 2
        await dump_slot(store, time_slot)
        return 0

    slots = await store.list_slots()
    print(f"Store: {settings.store.backend}  slots in use: {len(slots)}")
    duplicates = await find_duplicates(store)
    if not duplicates:
        print("No duplicate placements.")
        return 0

    print(f"Duplicate placements: {len(duplicates)}")
    print(json.dumps(duplicates, indent=2, sort_keys=True))
    return 1


def main():
    parser = argparse.ArgumentParser(description="Slot store audit")
    parser.add_argument("--slot", default="", help="Dump the placements of one HH-MM slot")
    args = parser.parse_args()

    sys.exit(asyncio.run(run_audit(time_slot=args.slot)))


if __name__ == "__main__":
    main()
