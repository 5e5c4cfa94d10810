"""
HTTP routers. ``register_routers`` mounts every one of them on the app.
"""

from fastapi import FastAPI

from dineflow.api import cart, inventory, notifications, orders, payments, restaurants


def register_routers(app: FastAPI) -> None:
    app.include_router(restaurants.router)
    app.include_router(inventory.router)
    app.include_router(cart.router)
    app.include_router(orders.router)
    app.include_router(orders.cancellations_router)
    app.include_router(orders.deliveries_router)
    app.include_router(payments.router)
    app.include_router(notifications.router)
    app.include_router(notifications.feedback_router)
