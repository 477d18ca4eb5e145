"""Realtime notification publishing for order updates."""
