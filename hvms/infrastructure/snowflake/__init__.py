"""
Snowflake persistence for visitor records.

Connection management lives in client.py; SQL lives in the repositories.
"""

from .client import MockSnowflakeConnection, SnowflakeConnectionError, create_snowflake_connection
from .repositories.visitors import SnowflakeConfig, VisitorRepository

__all__ = [
    "MockSnowflakeConnection",
    "SnowflakeConfig",
    "SnowflakeConnectionError",
    "VisitorRepository",
    "create_snowflake_connection",
]
