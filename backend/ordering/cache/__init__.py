"""
Redis access for webhook idempotency markers and realtime order channels.
"""
