"""Seed demo stores for the reservation system."""

import asyncio

from mealhold.models.geo import GeoPoint
from mealhold.state.ledger import InventoryLedger
from mealhold.state.manager import StateManager

DEMO_STORES = [
    {
        "store_id": "tokyo_station_teishoku",
        "name": "Tokyo Station Teishoku",
        "location": GeoPoint(lat=35.6812, lng=139.7671),
        "remaining_count": 5,
        "is_open": True,
        "max_dining_minutes": 30,
    },
    {
        "store_id": "kanda_curry",
        "name": "Kanda Curry Kitchen",
        "location": GeoPoint(lat=35.6918, lng=139.7709),
        "remaining_count": 3,
        "is_open": True,
        "max_dining_minutes": 20,
    },
    {
        "store_id": "nihonbashi_soba",
        "name": "Nihonbashi Soba",
        "location": GeoPoint(lat=35.6840, lng=139.7745),
        "remaining_count": 0,
        "is_open": True,
        "max_dining_minutes": 25,
    },
    {
        "store_id": "ginza_yakiniku",
        "name": "Ginza Yakiniku",
        "location": GeoPoint(lat=35.6717, lng=139.7650),
        "remaining_count": 8,
        "is_open": False,
        "max_dining_minutes": 45,
    },
]


async def seed_stores() -> None:
    """Seed store inventory."""
    print("Seeding stores...")

    state_manager = StateManager()
    await state_manager.connect()
    ledger = InventoryLedger(state_manager)

    for store in DEMO_STORES:
        inventory = await ledger.register_store(**store)
        state = "open" if inventory.is_open else "closed"
        print(f"  ✓ Added {inventory.name} ({state}, remaining: {inventory.remaining_count})")

    await state_manager.disconnect()
    print("✓ Stores seeded successfully\n")


async def main() -> None:
    """Run all seed functions."""
    print("\n" + "=" * 50)
    print("  Seeding Reservation System Data")
    print("=" * 50 + "\n")

    await seed_stores()

    print("=" * 50)
    print("  ✓ All data seeded successfully!")
    print("=" * 50 + "\n")


if __name__ == "__main__":
    asyncio.run(main())
