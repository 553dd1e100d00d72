"""Durable job queue: Redis-backed worker pools with an in-process fallback."""
