"""Session lifecycle, shared state and types."""
