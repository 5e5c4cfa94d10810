"""
                        Services Module

Contains all business logic with the hybrid architecture pattern for
external providers (Mock in development, Real in production).

Services:
    - catalog, inventory, cart: Restaurant menu and stock
    - orders, cancellations, deliveries: Order workflow
    - payments (+ payment gateways): Stripe payment processing
    - notification_center, fanout (+ notification providers): SendGrid / Twilio
    - outbox, event_handlers: Transactional outbox dispatch
    - authorization, audit, feedback
"""
