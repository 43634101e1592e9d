"""Wires store, bus and scheduler from settings. Shared by every entry point."""
from __future__ import annotations

from dataclasses import dataclass

from config.settings import Settings, get_settings
from core.scheduler import NotificationScheduler, create_scheduler
from database.store_base import BaseSlotStore
from database.store_factory import create_store
from job_queue.message_queue import NotificationBus, create_notification_bus
from utils.logging_setup import configure_logging


@dataclass
class Components:
    settings: Settings
    store: BaseSlotStore
    bus: NotificationBus
    scheduler: NotificationScheduler


def build_components(settings: Settings = None) -> Components:
    settings = settings or get_settings()
    configure_logging(settings.log_level, settings.log_format)

    store = create_store(settings.store.to_dict())
    bus = create_notification_bus(settings.bus.to_dict())
    scheduler = create_scheduler(
        store, bus,
        processor_topic=settings.bus.processor_topic,
        diagnostics_timezone=settings.diagnostics_timezone,
    )
    return Components(settings=settings, store=store, bus=bus, scheduler=scheduler)
