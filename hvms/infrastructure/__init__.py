"""
Infrastructure layer - external service integrations.

Each subdirectory wraps an external dependency:
- storage: Object storage and signed URLs (R2/S3)
- snowflake: Visitor record persistence
- qr: Check-in token rendering

These wrappers translate between external formats and our domain models.
"""
