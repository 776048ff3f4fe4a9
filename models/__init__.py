from .database import Base, engine, SessionLocal, get_db, create_tables
from .user import User
from .club import (
    Club, ClubMember, Activity, InsuranceProduct, RefundPolicy,
    ClubRole, ActivityStatus
)
from .enrollment import Enrollment, EnrollmentStatus
from .order import (
    Order, Payment, Verification, Refund,
    OrderStatus, PaymentGateway, PaymentStatus, RefundReason, RefundStatus
)
from .finance import (
    ClubAccount, Settlement, Withdrawal, FinanceTransaction,
    SettlementStatus, WithdrawalStatus, TransactionType
)
from .notification import Notification

__all__ = [
    "Base",
    "engine",
    "SessionLocal",
    "get_db",
    "create_tables",
    "User",
    "Club", "ClubMember", "Activity", "InsuranceProduct", "RefundPolicy",
    "ClubRole", "ActivityStatus",
    "Enrollment", "EnrollmentStatus",
    "Order", "Payment", "Verification", "Refund",
    "OrderStatus", "PaymentGateway", "PaymentStatus", "RefundReason", "RefundStatus",
    "ClubAccount", "Settlement", "Withdrawal", "FinanceTransaction",
    "SettlementStatus", "WithdrawalStatus", "TransactionType",
    "Notification",
]
