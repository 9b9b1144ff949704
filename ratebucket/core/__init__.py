"""Bucket primitives shared by the local and Redis-backed variants."""
