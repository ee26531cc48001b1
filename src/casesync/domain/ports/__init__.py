"""Ports the domain depends on; adapters provide the implementations."""
