from __future__ import annotations

import os

os.environ["ENV_MODE"] = "development"

from types import SimpleNamespace

import pytest
from sqlalchemy.ext.asyncio import AsyncSession

from dineflow import models, schemas
from dineflow.database import Database
from dineflow.services import orders
from dineflow.services.notifications import MockNotificationProvider
from dineflow.services.payment import MockPaymentGateway


@pytest.fixture()
async def database(tmp_path) -> Database:
    db = Database(f"sqlite+aiosqlite:///{tmp_path}/dineflow-test.db")
    await db.init()
    try:
        yield db
    finally:
        await db.close()


@pytest.fixture()
async def session(database: Database) -> AsyncSession:
    async with database.session() as db_session:
        yield db_session


@pytest.fixture()
def gateway() -> MockPaymentGateway:
    return MockPaymentGateway(min_latency=0, max_latency=0)


@pytest.fixture()
def provider() -> MockNotificationProvider:
    return MockNotificationProvider()


@pytest.fixture(autouse=True)
def patched_providers(monkeypatch, gateway, provider):
    monkeypatch.setattr("dineflow.services.payments.get_payment_gateway", lambda: gateway)
    monkeypatch.setattr("dineflow.api.payments.get_payment_gateway", lambda: gateway)
    monkeypatch.setattr("dineflow.services.notification_center.get_notification_provider", lambda: provider)


def _user(email: str, role: models.UserRole, first_name: str) -> models.User:
    return models.User(email=email, first_name=first_name, role=role, phone="+15550100")


@pytest.fixture()
async def seed(session: AsyncSession) -> SimpleNamespace:
    """One restaurant with two tracked menu items and a user per role."""
    owner = _user("owner@trattoria.test", models.UserRole.RESTAURANT_OWNER, "Olivia")
    staff = _user("staff@trattoria.test", models.UserRole.RESTAURANT_STAFF, "Sam")
    outsider = _user("owner@elsewhere.test", models.UserRole.RESTAURANT_OWNER, "Oscar")
    customer = _user("jane@customer.test", models.UserRole.CUSTOMER, "Jane")
    other_customer = _user("john@customer.test", models.UserRole.CUSTOMER, "John")
    admin = _user("admin@dineflow.test", models.UserRole.ADMIN, "Ada")
    session.add_all([owner, staff, outsider, customer, other_customer, admin])
    await session.flush()

    restaurant = models.Restaurant(name="Trattoria Roma", owner_id=owner.id)
    session.add(restaurant)
    await session.flush()
    session.add(models.RestaurantStaff(restaurant_id=restaurant.id, user_id=staff.id))

    pizza = models.MenuItem(
        restaurant_id=restaurant.id, title="Pizza Margherita", final_price=10.00, max_order_quantity=10
    )
    salad = models.MenuItem(
        restaurant_id=restaurant.id, title="Caesar Salad", final_price=5.00, max_order_quantity=10
    )
    session.add_all([pizza, salad])
    await session.flush()

    pizza_stock = models.Inventory(
        restaurant_id=restaurant.id, menu_item_id=pizza.id, variant_key="",
        quantity=50, reorder_threshold=5, status=models.InventoryStatus.IN_STOCK,
    )
    salad_stock = models.Inventory(
        restaurant_id=restaurant.id, menu_item_id=salad.id, variant_key="",
        quantity=50, reorder_threshold=5, status=models.InventoryStatus.IN_STOCK,
    )
    session.add_all([pizza_stock, salad_stock])
    await session.commit()

    return SimpleNamespace(
        owner=owner,
        staff=staff,
        outsider=outsider,
        customer=customer,
        other_customer=other_customer,
        admin=admin,
        restaurant=restaurant,
        pizza=pizza,
        salad=salad,
        pizza_stock=pizza_stock,
        salad_stock=salad_stock,
    )


@pytest.fixture()
def place_order(session: AsyncSession, seed: SimpleNamespace):
    """Place 2 x pizza + 1 x salad for the seeded customer."""

    async def _place(
        order_type: models.OrderType = models.OrderType.DELIVERY,
        user: models.User | None = None,
        items: list[tuple[models.MenuItem, int]] | None = None,
    ) -> models.Order:
        lines = items or [(seed.pizza, 2), (seed.salad, 1)]
        payload = schemas.OrderCreate(
            restaurant_id=seed.restaurant.id,
            order_type=order_type,
            delivery_address={"street": "350 Fifth Avenue", "city": "New York", "zip": "10118"}
            if order_type == models.OrderType.DELIVERY
            else None,
            items=[
                schemas.OrderItemCreate(menu_item_id=item.id, quantity=quantity)
                for item, quantity in lines
            ],
        )
        placed_by = user or seed.customer
        return await orders.create_order(session, payload, placed_by.id, placed_by.tenant_id)

    return _place
