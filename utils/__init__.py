"""Shared utilities."""

__all__ = ['logging_config']
