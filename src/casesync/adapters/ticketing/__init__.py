"""Ticketing system adapter."""

from __future__ import annotations

from .client import TicketingClient

__all__ = ["TicketingClient"]
