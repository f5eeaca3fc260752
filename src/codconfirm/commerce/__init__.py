"""Upstream commerce platform integration (Shopify)."""
