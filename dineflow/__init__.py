"""
                DineFlow

Multi-tenant restaurant ordering platform: catalog, inventory, cart,
orders, payments, deliveries and notifications behind one FastAPI service,
with a hybrid Mock/Real architecture for external providers.

Version: 4.0.0
License: MIT
"""

__version__ = "4.0.0"
