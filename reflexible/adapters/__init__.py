"""Adapters package - Bridge between the engine and presentation layers."""
from __future__ import annotations

__all__ = [
    "EventBus",
]

from reflexible.adapters.event_bus import EventBus
