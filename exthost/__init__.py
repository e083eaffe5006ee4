"""exthost: capability-gated extension runtime."""
