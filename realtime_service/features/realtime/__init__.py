"""Realtime WebSocket feature: endpoint and frame schemas."""
