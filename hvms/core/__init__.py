"""
Core business logic for visitor check-in.

This module is framework-agnostic - it doesn't import FastAPI, boto3,
Snowflake or qrcode. Storage, signing and rendering arrive through the
protocols declared in core.custody.orchestrator and core.custody.tokens.
"""
