"""
资金流水服务
"""
from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, List, Optional, Tuple

from sqlalchemy.orm import Session

from models.finance import FinanceTransaction, TransactionType
from models.user import User
from utils.order_utils import to_money
from utils.permission_utils import check_club_manager


class TransactionService:
    """资金流水服务类"""

    def __init__(self, db: Session):
        self.db = db

    def record(self, club_id: str, type: TransactionType, amount: Decimal,
               balance_before: Decimal, balance_after: Decimal, description: str = None,
               activity_id: str = None, settlement_id: str = None,
               withdrawal_id: str = None) -> FinanceTransaction:
        """记一笔流水，随调用方事务提交"""
        transaction = FinanceTransaction(
            club_id=club_id,
            type=type,
            amount=to_money(amount),
            balance_before=to_money(balance_before),
            balance_after=to_money(balance_after),
            description=description,
            activity_id=activity_id,
            settlement_id=settlement_id,
            withdrawal_id=withdrawal_id
        )
        self.db.add(transaction)
        return transaction

    def list_transactions(self, club_id: str, user: User, type: Optional[TransactionType] = None,
                          activity_id: str = None, start_date: datetime = None,
                          end_date: datetime = None, page: int = 1,
                          size: int = 20) -> Tuple[List[FinanceTransaction], int]:
        """分页查询俱乐部流水"""
        check_club_manager(self.db, club_id, user)

        query = self.db.query(FinanceTransaction).filter(FinanceTransaction.club_id == club_id)
        if type:
            query = query.filter(FinanceTransaction.type == type)
        if activity_id:
            query = query.filter(FinanceTransaction.activity_id == activity_id)
        if start_date:
            query = query.filter(FinanceTransaction.created_at >= start_date)
        if end_date:
            query = query.filter(FinanceTransaction.created_at < end_date)

        total = query.count()
        items = (
            query.order_by(FinanceTransaction.created_at.desc())
            .offset((page - 1) * size)
            .limit(size)
            .all()
        )
        return items, total

    def get_monthly_stats(self, club_id: str, user: User, year: int, month: int) -> Dict[str, Any]:
        """月度收支统计"""
        check_club_manager(self.db, club_id, user)

        start = datetime(year, month, 1)
        end = datetime(year + 1, 1, 1) if month == 12 else datetime(year, month + 1, 1)
        transactions = self.db.query(FinanceTransaction).filter(
            FinanceTransaction.club_id == club_id,
            FinanceTransaction.created_at >= start,
            FinanceTransaction.created_at < end
        ).all()

        totals = {t: Decimal("0.00") for t in TransactionType}
        for item in transactions:
            totals[item.type] += abs(to_money(item.amount))

        income = totals[TransactionType.SETTLEMENT]
        fee = totals[TransactionType.FEE]
        return {
            "year": year,
            "month": month,
            "settlement_income": income,
            "platform_fee": fee,
            "withdrawal": totals[TransactionType.WITHDRAWAL],
            "net_income": income - fee,
            "transaction_count": len(transactions),
        }
