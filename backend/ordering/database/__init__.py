"""
Database package.

- connection: async engine, session scope and connectivity classification
- base: declarative base and shared column mixins
- models: ORM models for the catalog, customers and orders
"""

__all__ = []
