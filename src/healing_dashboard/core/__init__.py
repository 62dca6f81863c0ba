"""
Core module for the healing dashboard backend.

This module contains:
- config.py: Application configuration and settings
- config_loader.py: YAML-backed tracking configuration
- logging_config.py: Logging configuration
"""

__all__ = ["config", "config_loader", "logging_config"]
