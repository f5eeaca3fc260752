"""Voice provider integration (outbound calls and provider webhooks)."""
