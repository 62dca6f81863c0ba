"""
API module for the healing dashboard backend.

This module contains:
- endpoints.py: Execution request, stream and control endpoints
- healing_endpoints.py: Healing notifications, dashboard and tracking configuration
"""

__all__ = ["endpoints", "healing_endpoints"]
