"""Background services: scheduler and dashboard."""
