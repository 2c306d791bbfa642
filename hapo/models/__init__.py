"""
SQLAlchemy ORM models package.

All models are imported here so that:
  1. Base.metadata knows every table before create_all runs
  2. Other modules can import from hapo.models directly
"""

from hapo.models.account import Account, AccountRole  # noqa: F401
from hapo.models.session import Session  # noqa: F401
from hapo.models.verification import PendingVerification, VerificationPurpose  # noqa: F401
from hapo.models.transaction import Transaction  # noqa: F401
from hapo.models.money_request import MoneyRequest  # noqa: F401
from hapo.models.recurring_payment import RecurringPayment  # noqa: F401
