"""Background workers executed by the taskiq worker process."""
