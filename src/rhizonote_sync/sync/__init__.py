"""Synchronization engine: planning, execution and scheduling."""
