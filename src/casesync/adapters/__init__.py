"""Adapters connecting the domain ports to databases and HTTP services."""
