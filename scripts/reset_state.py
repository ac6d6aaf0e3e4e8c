"""Reset reservation state in Redis (useful for testing)."""

import asyncio

from mealhold.state.ledger import STORES
from mealhold.state.manager import StateManager
from mealhold.state.reservations import RESERVATIONS, USERS

COLLECTIONS = (STORES, RESERVATIONS, USERS)


async def reset_all_state() -> None:
    """Delete every store, reservation and user record."""
    print("\n⚠️  WARNING: This will delete ALL stores, reservations and user pointers!")
    response = input("Are you sure? (yes/no): ")

    if response.lower() != "yes":
        print("Cancelled.")
        return

    print("\nResetting state...")

    state_manager = StateManager()
    await state_manager.connect()

    for collection in COLLECTIONS:
        records = await state_manager.read_collection(collection)
        for record_id in records:
            await state_manager.write(f"{collection}/{record_id}", None)
        print(f"  ✓ Cleared {len(records)} {collection}")

    await state_manager.disconnect()

    print("✓ All state cleared from Redis\n")


if __name__ == "__main__":
    asyncio.run(reset_all_state())
