"""Infrastructure adapters (database, Redis, email, realtime, tasks, logging)."""
