"""Market simulation services."""
