"""Real-time session event fan-out."""

from tourquote.events.bus import SessionBus, Subscription, get_bus

__all__ = ["SessionBus", "Subscription", "get_bus"]
