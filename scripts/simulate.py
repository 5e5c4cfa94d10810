"""
Chaos Simulation Script

Fires concurrent orders and cart updates at a running DineFlow API to
exercise the inventory lock, the atomic cart upsert and the outbox.
Run from project root: python scripts/simulate.py --seed

Version: 4.0.0
"""

import argparse
import asyncio
import random
import sys
import time
from datetime import datetime
from typing import Any

import httpx

# Windows event loop fix
if sys.platform == "win32":
    asyncio.set_event_loop_policy(asyncio.WindowsSelectorEventLoopPolicy())

# Configuration
API_BASE_URL = "http://localhost:8000"
TOTAL_ORDERS = 50

FIRST_NAMES = ["John", "Jane", "Mike", "Sarah", "Tom", "Emma", "David", "Lisa", "Chris", "Amy"]
STREETS = ["Main St", "Broadway", "5th Avenue", "Park Ave", "Madison Ave", "Lexington Ave"]
MENU = [
    ("Pizza Margherita", 14.99),
    ("Pepperoni Pizza", 16.99),
    ("Caesar Salad", 8.99),
    ("Garlic Bread", 5.99),
    ("Pasta Carbonara", 13.99),
    ("Tiramisu", 7.99),
]


# =============================================================================
# SEEDING
# =============================================================================

async def seed(num_customers: int = 10, stock: int = 200) -> dict[str, Any]:
    """Create an owner, a restaurant, its menu with stock, and customers."""
    from dineflow import models
    from dineflow.core.config import get_settings
    from dineflow.database import create_database

    database = create_database(get_settings())
    await database.init()
    try:
        async with database.session() as session:
            owner = models.User(email=f"owner-{models.new_id()[:8]}@dineflow.test",
                                first_name="Olivia", role=models.UserRole.RESTAURANT_OWNER)
            session.add(owner)
            await session.flush()

            restaurant = models.Restaurant(name="Simulation Trattoria", owner_id=owner.id)
            session.add(restaurant)
            await session.flush()

            for title, price in MENU:
                item = models.MenuItem(restaurant_id=restaurant.id, title=title,
                                       final_price=price, max_order_quantity=10)
                session.add(item)
                await session.flush()
                session.add(models.Inventory(
                    restaurant_id=restaurant.id, menu_item_id=item.id, variant_key="",
                    quantity=stock, reorder_threshold=10, status=models.InventoryStatus.IN_STOCK,
                ))

            customers = []
            for _ in range(num_customers):
                customer = models.User(
                    email=f"customer-{models.new_id()[:8]}@dineflow.test",
                    first_name=random.choice(FIRST_NAMES),
                    role=models.UserRole.CUSTOMER,
                )
                session.add(customer)
                customers.append(customer)
            await session.commit()

            return {
                "owner_id": owner.id,
                "restaurant_id": restaurant.id,
                "customer_ids": [c.id for c in customers],
            }
    finally:
        await database.close()


# =============================================================================
# REQUESTS
# =============================================================================

def generate_order_payload(restaurant_id: str, menu_items: list[dict]) -> dict[str, Any]:
    """Random DELIVERY or PICKUP order over the restaurant's menu."""
    chosen = random.sample(menu_items, k=min(len(menu_items), random.randint(1, 3)))
    order_type = random.choice(["DELIVERY", "PICKUP"])
    payload = {
        "restaurant_id": restaurant_id,
        "order_type": order_type,
        "items": [{"menu_item_id": item["id"], "quantity": random.randint(1, 3)} for item in chosen],
        "notes": random.choice([None, "Extra napkins", "Ring doorbell", "Leave at door"]),
        "source": "SIMULATION",
    }
    if order_type == "DELIVERY":
        payload["delivery_address"] = {
            "street": f"{random.randint(1, 999)} {random.choice(STREETS)}",
            "city": "New York",
            "zip": "10001",
        }
    return payload


async def send_order(
    client: httpx.AsyncClient,
    order_num: int,
    user_id: str,
    restaurant_id: str,
    menu_items: list[dict],
) -> dict[str, Any]:
    payload = generate_order_payload(restaurant_id, menu_items)
    start_time = time.time()

    try:
        response = await client.post(
            f"{API_BASE_URL}/api/orders",
            json=payload,
            headers={"X-User-Id": user_id},
            timeout=30.0,
        )
        elapsed = round(time.time() - start_time, 3)

        if response.status_code == 201:
            data = response.json()
            return {"order_num": order_num, "success": True, "order_id": data["id"],
                    "total": data["total"], "time": elapsed, "mode": "order"}
        return {"order_num": order_num, "success": False, "error": response.text[:100],
                "time": elapsed, "mode": "order"}
    except httpx.HTTPError as e:
        elapsed = round(time.time() - start_time, 3)
        return {"order_num": order_num, "success": False, "error": str(e)[:100],
                "time": elapsed, "mode": "order"}


async def send_cart_add(
    client: httpx.AsyncClient,
    order_num: int,
    user_id: str,
    menu_item_id: str,
) -> dict[str, Any]:
    """Concurrent adds of the same item hit the merge path of the cart upsert."""
    start_time = time.time()
    try:
        response = await client.post(
            f"{API_BASE_URL}/api/cart/items",
            json={"menu_item_id": menu_item_id, "quantity": 1},
            headers={"X-User-Id": user_id},
            timeout=30.0,
        )
        elapsed = round(time.time() - start_time, 3)
        return {"order_num": order_num, "success": response.status_code == 200,
                "error": None if response.status_code == 200 else response.text[:100],
                "time": elapsed, "mode": "cart"}
    except httpx.HTTPError as e:
        elapsed = round(time.time() - start_time, 3)
        return {"order_num": order_num, "success": False, "error": str(e)[:100],
                "time": elapsed, "mode": "cart"}


# =============================================================================
# MAIN SIMULATION RUNNER
# =============================================================================

async def run_simulation(
    restaurant_id: str,
    customer_ids: list[str],
    num_orders: int = TOTAL_ORDERS,
) -> dict[str, Any]:
    print("=" * 70)
    print("CHAOS SIMULATION - HIGH CONCURRENCY TEST")
    print("=" * 70)
    print(f"Total Requests: {num_orders}")
    print(f"Target: {API_BASE_URL}")
    print(f"Started: {datetime.now().strftime('%H:%M:%S')}")
    print("=" * 70)

    start_time = time.time()

    async with httpx.AsyncClient() as client:
        response = await client.get(f"{API_BASE_URL}/api/restaurants/{restaurant_id}/menu-items")
        response.raise_for_status()
        menu_items = response.json()
        if not menu_items:
            print("Restaurant has no active menu items")
            return {"total": 0, "successful": 0, "failed": 0, "results": []}

        hot_item = menu_items[0]["id"]
        tasks = []
        for i in range(num_orders):
            user_id = random.choice(customer_ids)
            if i % 5 == 4:
                tasks.append(send_cart_add(client, i + 1, customer_ids[0], hot_item))
            else:
                tasks.append(send_order(client, i + 1, user_id, restaurant_id, menu_items))
        results = await asyncio.gather(*tasks)

    total_time = round(time.time() - start_time, 2)

    successful = [r for r in results if r["success"]]
    failed = [r for r in results if not r["success"]]
    orders = [r for r in successful if r["mode"] == "order"]

    print("\n" + "=" * 70)
    print("SIMULATION RESULTS")
    print("=" * 70)
    print(f"\nSuccessful: {len(successful)}/{num_orders}")
    print(f"Failed: {len(failed)}/{num_orders}")
    print(f"Total Time: {total_time}s")

    if successful:
        avg_time = round(sum(r["time"] for r in successful) / len(successful), 3)
        print("\nPerformance Metrics:")
        print(f"   Average Response: {avg_time}s")
        print(f"   Fastest: {min(r['time'] for r in successful)}s")
        print(f"   Slowest: {max(r['time'] for r in successful)}s")
        print(f"   Orders placed: {len(orders)} (${sum(r['total'] for r in orders):.2f})")

    if failed:
        print("\nFailed Request Details (showing first 5):")
        for f in failed[:5]:
            print(f"   #{f['order_num']} [{f['mode']}]: {f.get('error', 'Unknown error')}")

    print("=" * 70)
    return {
        "total": num_orders,
        "successful": len(successful),
        "failed": len(failed),
        "total_time": total_time,
        "results": results,
    }


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description="Chaos Simulation Script")
    parser.add_argument("--seed", action="store_true", help="Seed a restaurant and customers first")
    parser.add_argument("--restaurant-id", help="Existing restaurant id")
    parser.add_argument("--customer-ids", help="Comma-separated existing customer ids")
    parser.add_argument("--orders", type=int, default=TOTAL_ORDERS, help="Number of requests")
    parser.add_argument("--base-url", default=API_BASE_URL, help="API base URL")
    args = parser.parse_args()

    API_BASE_URL = args.base_url

    if args.seed:
        seeded = asyncio.run(seed())
        restaurant_id, customer_ids = seeded["restaurant_id"], seeded["customer_ids"]
        print(f"Seeded restaurant {restaurant_id} with {len(customer_ids)} customers")
    elif args.restaurant_id and args.customer_ids:
        restaurant_id, customer_ids = args.restaurant_id, args.customer_ids.split(",")
    else:
        parser.error("use --seed or pass --restaurant-id and --customer-ids")

    asyncio.run(run_simulation(restaurant_id, customer_ids, args.orders))
