"""Voice provider webhook endpoints."""
