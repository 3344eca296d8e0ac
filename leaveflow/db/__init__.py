"""Persistence layer for LeaveFlow."""
