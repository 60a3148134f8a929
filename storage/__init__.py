"""Durable local storage for controller preferences."""
