"""Shared-store (Redis) bucket backend."""
