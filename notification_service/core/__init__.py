"""Core building blocks shared by every feature: settings, database, errors."""
