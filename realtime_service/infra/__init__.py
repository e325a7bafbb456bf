"""Infrastructure: logging, metrics, backend client and the realtime core."""
