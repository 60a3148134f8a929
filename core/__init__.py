"""Endpoint health monitoring and failover core."""
