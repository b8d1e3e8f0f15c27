"""Tenant access control service."""
