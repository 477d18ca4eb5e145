"""
API v1 package initialization.

Routers for checkout, order tracking, the admin back office and payment
webhooks. They are mounted under the configured API prefix in ``main``.
"""
