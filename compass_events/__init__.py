"""compass_events — Event management backend on DynamoDB.

Provides:
    - Entity repositories for users, events and registrations (soft delete,
      write-if-absent uniqueness, continuation-token listing)
    - Role-based authorization rules
    - Identity helpers (password hashing, JWT)
    - Best-effort SES notifications and S3 image storage
"""

__version__ = "1.0.0"
