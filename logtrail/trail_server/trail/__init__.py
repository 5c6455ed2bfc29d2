"""Live tail subscriptions for LogTrail."""

from .hub import Subscription, TrailHub

__all__ = ["Subscription", "TrailHub"]
