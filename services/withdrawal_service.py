"""
提现服务
申请时冻结金额，审核拒绝解冻，打款完成后扣减余额
"""
from datetime import datetime
from decimal import Decimal
from typing import List, Optional, Tuple

from sqlalchemy.orm import Session

from config import settings
from models.finance import TransactionType, Withdrawal, WithdrawalStatus
from models.user import User
from services.account_service import AccountService
from services.logger import get_logger, log_business_event
from services.notification_service import NotificationService, NotificationType
from services.state_machine import WithdrawalAction, transition
from services.transaction_service import TransactionService
from utils.exceptions import BusinessException, NotFound, Precondition, ValidationError
from utils.order_utils import generate_serial_no, to_money
from utils.permission_utils import check_club_manager

logger = get_logger("withdrawal_service")


class WithdrawalService:
    """提现服务类"""

    def __init__(self, db: Session):
        self.db = db
        self.account_service = AccountService(db)
        self.transaction_service = TransactionService(db)

    def create_withdrawal(self, club_id: str, user: User, amount: Decimal) -> Withdrawal:
        """
        申请提现

        Args:
            club_id: 俱乐部ID
            user: 申请人（俱乐部 OWNER/ADMIN）
            amount: 提现金额

        Returns:
            Withdrawal: 待审核的提现申请
        """
        club = check_club_manager(self.db, club_id, user)
        amount = to_money(amount)
        business = settings.business

        account = self.account_service.get_or_create_account(club_id)
        if not account.bank_account:
            raise Precondition("请先设置收款账户")
        if amount < business.min_withdrawal:
            raise ValidationError(f"最低提现金额为 {business.min_withdrawal} 元")
        available = to_money(account.balance) - to_money(account.frozen_balance)
        if amount > available:
            raise ValidationError(f"可用余额不足，当前可提现 {available} 元")

        fee = to_money(amount * Decimal(business.withdrawal_fee_rate))
        try:
            self.account_service.freeze(club_id, amount)
            withdrawal = Withdrawal(
                withdrawal_no=generate_serial_no("WD"),
                club_id=club_id,
                applicant_id=user.id,
                amount=amount,
                fee=fee,
                actual_amount=amount - fee,
                bank_name=account.bank_name,
                bank_account=account.bank_account,
                account_name=account.account_name,
                status=WithdrawalStatus.PENDING
            )
            self.db.add(withdrawal)
            self.db.commit()
            self.db.refresh(withdrawal)
        except BusinessException:
            self.db.rollback()
            raise
        except Exception as e:
            self.db.rollback()
            logger.error(f"申请提现失败: {str(e)}")
            raise

        log_business_event(
            logger, "withdrawal_requested",
            withdrawal_no=withdrawal.withdrawal_no, club_id=club.id, amount=str(amount)
        )
        return withdrawal

    def _get_withdrawal(self, withdrawal_id: str) -> Withdrawal:
        withdrawal = self.db.query(Withdrawal).filter(Withdrawal.id == withdrawal_id).first()
        if not withdrawal:
            raise NotFound("提现申请不存在")
        return withdrawal

    def _notify_applicant(self, withdrawal: Withdrawal, type: str, title: str, content: str):
        NotificationService(self.db).notify(
            withdrawal.applicant_id, type, title, content, {"withdrawal_id": withdrawal.id}
        )

    def approve_withdrawal(self, withdrawal_id: str, reviewer: User) -> Withdrawal:
        """审核通过，等待打款"""
        withdrawal = self._get_withdrawal(withdrawal_id)
        try:
            transition(
                self.db, withdrawal, WithdrawalAction.APPROVE,
                reviewed_by=reviewer.id,
                reviewed_at=datetime.utcnow()
            )
            self.db.commit()
        except BusinessException:
            self.db.rollback()
            raise

        logger.info(f"提现 {withdrawal.withdrawal_no} 审核通过，审核人 {reviewer.id}")
        self._notify_applicant(
            withdrawal, NotificationType.WITHDRAWAL_APPROVED,
            "提现审核通过", f"提现 {withdrawal.amount} 元已审核通过，等待打款"
        )
        return withdrawal

    def reject_withdrawal(self, withdrawal_id: str, reviewer: User, reason: str) -> Withdrawal:
        """审核拒绝并解冻金额"""
        withdrawal = self._get_withdrawal(withdrawal_id)
        try:
            transition(
                self.db, withdrawal, WithdrawalAction.REJECT,
                reviewed_by=reviewer.id,
                reviewed_at=datetime.utcnow(),
                reject_reason=reason
            )
            self.account_service.unfreeze(withdrawal.club_id, to_money(withdrawal.amount))
            self.db.commit()
        except BusinessException:
            self.db.rollback()
            raise
        except Exception as e:
            self.db.rollback()
            logger.error(f"拒绝提现失败: {str(e)}")
            raise

        log_business_event(
            logger, "withdrawal_rejected",
            withdrawal_no=withdrawal.withdrawal_no, amount=str(withdrawal.amount), reason=reason
        )
        self._notify_applicant(withdrawal, NotificationType.WITHDRAWAL_REJECTED, "提现申请被拒绝", reason)
        return withdrawal

    def complete_withdrawal(self, withdrawal_id: str, operator: User) -> Withdrawal:
        """确认打款完成：扣减余额与冻结金额，记录流水"""
        withdrawal = self._get_withdrawal(withdrawal_id)
        amount = to_money(withdrawal.amount)
        try:
            transition(self.db, withdrawal, WithdrawalAction.COMPLETE, transferred_at=datetime.utcnow())
            before, after = self.account_service.debit_withdrawal(withdrawal.club_id, amount)
            self.transaction_service.record(
                withdrawal.club_id, TransactionType.WITHDRAWAL, -amount, before, after,
                description=f"提现 {withdrawal.withdrawal_no}",
                withdrawal_id=withdrawal.id
            )
            self.db.commit()
        except BusinessException:
            self.db.rollback()
            raise
        except Exception as e:
            self.db.rollback()
            logger.error(f"完成提现失败: {str(e)}")
            raise

        log_business_event(
            logger, "withdrawal_completed",
            withdrawal_no=withdrawal.withdrawal_no, amount=str(amount), operator=operator.id
        )
        self._notify_applicant(
            withdrawal, NotificationType.WITHDRAWAL_COMPLETED,
            "提现已到账", f"提现 {amount} 元已打款至尾号 {(withdrawal.bank_account or '')[-4:]} 的账户"
        )
        return withdrawal

    def list_withdrawals(self, club_id: str, user: User, status: Optional[WithdrawalStatus] = None,
                         page: int = 1, size: int = 20) -> Tuple[List[Withdrawal], int]:
        """分页查询俱乐部提现记录"""
        check_club_manager(self.db, club_id, user)
        query = self.db.query(Withdrawal).filter(Withdrawal.club_id == club_id)
        if status:
            query = query.filter(Withdrawal.status == status)
        total = query.count()
        items = query.order_by(Withdrawal.created_at.desc()).offset((page - 1) * size).limit(size).all()
        return items, total

    def get_withdrawal(self, club_id: str, withdrawal_id: str, user: User) -> Withdrawal:
        """获取提现详情"""
        check_club_manager(self.db, club_id, user)
        withdrawal = self._get_withdrawal(withdrawal_id)
        if withdrawal.club_id != club_id:
            raise NotFound("提现申请不存在")
        return withdrawal

    def list_pending_withdrawals(self) -> List[Withdrawal]:
        """待处理的提现（平台管理员）"""
        return (
            self.db.query(Withdrawal)
            .filter(Withdrawal.status.in_((WithdrawalStatus.PENDING, WithdrawalStatus.APPROVED)))
            .order_by(Withdrawal.created_at.asc())
            .all()
        )
