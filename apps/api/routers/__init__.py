"""Routers package."""

from . import (
    health,
    keys,
)
