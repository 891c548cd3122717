"""Background task infrastructure: taskiq broker and APScheduler jobs."""
