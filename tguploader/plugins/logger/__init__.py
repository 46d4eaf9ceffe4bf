"""Logger plugin - logs upload lifecycle events."""
