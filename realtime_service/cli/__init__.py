"""Command-line interface for realtime-service."""
