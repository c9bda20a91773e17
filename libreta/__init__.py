"""
Libreta Backend Package
=======================

Flask-based backend for the Libreta grading and pedagogical-monitoring portal.

Structure:
- routes/: API route blueprints
- services/: Business rules (completion, appreciations, lock guard, grading)
- store.py: Supabase data access
- config.py: Configuration management
"""

from .config import config, Config

__version__ = "1.0.0"

__all__ = ['config', 'Config']
