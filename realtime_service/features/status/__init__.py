"""Status port feature: status snapshot, health, metrics and direct push."""
