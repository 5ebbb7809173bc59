"""Transports to the messaging backend."""
