"""
Repository pattern implementations for Snowflake.

Repositories translate between domain models and database representations.
"""

from .visitors import VisitorRepository

__all__ = ["VisitorRepository"]
