"""Routers package."""

from . import (
    health,
    subscriptions,
    business,
    offers,
)
