"""Core configuration, topics and exceptions."""
