"""
SQLAlchemy ORM models package.

All models are imported here so that:
  1. Base.metadata knows every table before create_all runs
  2. Other modules can import from portal.models directly
"""

from portal.models.user import User, LoginRecord, Role  # noqa: F401
from portal.models.refresh_token import RefreshToken  # noqa: F401
from portal.models.transaction import Transaction, TransactionStatus  # noqa: F401
from portal.models.audit_event import AuditEvent  # noqa: F401
