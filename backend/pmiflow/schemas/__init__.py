"""Pydantic models for inbound events and API responses."""
