"""State management modules."""

from mealhold.state.ledger import InventoryLedger
from mealhold.state.manager import StateManager
from mealhold.state.reservations import ReservationRepository

__all__ = ["StateManager", "InventoryLedger", "ReservationRepository"]
