# app/core/__init__.py
"""
Core application modules.
Contains essential infrastructure components:
- bootstrap: Default admin creation and reference data seeding
- db: Database configuration and connection management
- errors: Application error taxonomy mapped to HTTP status codes
- permissions: Permission tags and the user permission check
- security: Authentication, password hashing and JWT tokens
"""
