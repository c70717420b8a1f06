"""School canteen order placement service."""
