"""
Core Kernel Module

Foundational utilities shared by parsers, calculators and services.

Components:
- settings: Engine configuration with environment overrides
- hashing: SHA256 audit seal for tax calculations

Copyright (c) 2026 Andreas Wagner. All rights reserved.
"""

__all__ = ['settings', 'hashing']
