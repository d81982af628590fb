"""Seed a sample fleet and print what was created."""

import asyncio

from fleetdispatch.services.dispatch import DispatchService
from fleetdispatch.services.seed import seed_sample_fleet


async def main() -> None:
    """Seed an in-process engine and show the result."""
    print("\n" + "=" * 50)
    print("  Seeding Sample Fleet")
    print("=" * 50 + "\n")

    service = DispatchService()
    seeded = await seed_sample_fleet(service)

    for vehicle in seeded["vehicles"]:
        print(f"  ✓ Vehicle {vehicle.vehicle_number} ({vehicle.type.value}, {vehicle.capacity} kg)")
    for driver in seeded["drivers"]:
        print(f"  ✓ Driver {driver.name} ({driver.email})")
    for delivery in seeded["deliveries"]:
        when = delivery.scheduled_time.isoformat() if delivery.scheduled_time else "unscheduled"
        print(f"  ✓ Delivery for {delivery.customer.name} at {when}")

    print("\n" + "=" * 50)
    print("  ✓ Sample fleet seeded successfully!")
    print("=" * 50 + "\n")


if __name__ == "__main__":
    asyncio.run(main())
