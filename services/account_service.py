"""
俱乐部账户服务

余额变动全部使用数据库端的条件增减，不做先读后写。
"""
from decimal import Decimal
from typing import Any, Dict, Tuple

from sqlalchemy.orm import Session

from models.finance import ClubAccount
from models.user import User
from services.logger import get_logger, log_business_event
from utils.exceptions import InvalidState, ValidationError
from utils.order_utils import to_money
from utils.permission_utils import check_club_manager, get_club_or_404

logger = get_logger("account_service")


def mask_bank_account(bank_account: str) -> str:
    """银行卡号脱敏，只保留后四位"""
    if not bank_account:
        return ""
    return f"**** **** **** {bank_account[-4:]}"


class AccountService:
    """俱乐部账户服务类"""

    def __init__(self, db: Session):
        self.db = db

    def get_or_create_account(self, club_id: str) -> ClubAccount:
        """获取俱乐部账户，不存在时创建（不提交）"""
        account = self.db.query(ClubAccount).filter(ClubAccount.club_id == club_id).first()
        if account:
            return account

        get_club_or_404(self.db, club_id)
        account = ClubAccount(
            club_id=club_id,
            balance=Decimal("0"),
            frozen_balance=Decimal("0"),
            total_income=Decimal("0"),
            total_withdraw=Decimal("0")
        )
        self.db.add(account)
        self.db.flush()
        logger.info(f"创建俱乐部账户 {club_id}")
        return account

    def _current_balance(self, club_id: str) -> Decimal:
        return to_money(
            self.db.query(ClubAccount.balance).filter(ClubAccount.club_id == club_id).scalar()
        )

    def get_account_detail(self, club_id: str, user: User) -> Dict[str, Any]:
        """账户详情，收款账户脱敏"""
        check_club_manager(self.db, club_id, user)
        account = self.get_or_create_account(club_id)
        self.db.commit()

        balance = to_money(account.balance)
        frozen = to_money(account.frozen_balance)
        has_bank_account = bool(account.bank_account)
        return {
            "club_id": club_id,
            "balance": balance,
            "frozen_balance": frozen,
            "available_balance": balance - frozen,
            "total_income": to_money(account.total_income),
            "total_withdraw": to_money(account.total_withdraw),
            "has_bank_account": has_bank_account,
            "bank_info": {
                "bank_name": account.bank_name,
                "bank_account": mask_bank_account(account.bank_account),
                "account_name": account.account_name,
            } if has_bank_account else None,
        }

    def update_bank_account(self, club_id: str, user: User, bank_name: str,
                            bank_account: str, account_name: str) -> Dict[str, Any]:
        """设置收款账户"""
        check_club_manager(self.db, club_id, user)
        try:
            account = self.get_or_create_account(club_id)
            account.bank_name = bank_name
            account.bank_account = bank_account
            account.account_name = account_name
            self.db.commit()
        except Exception as e:
            self.db.rollback()
            logger.error(f"更新收款账户失败: {str(e)}")
            raise

        logger.info(f"用户 {user.id} 更新俱乐部 {club_id} 收款账户")
        return self.get_account_detail(club_id, user)

    def credit_settlement(self, club_id: str, amount: Decimal) -> Tuple[Decimal, Decimal]:
        """
        结算入账：余额与累计收入同时增加

        Returns:
            (入账前余额, 入账后余额)
        """
        self.get_or_create_account(club_id)
        self.db.flush()
        self.db.query(ClubAccount).filter(ClubAccount.club_id == club_id).update({
            ClubAccount.balance: ClubAccount.balance + amount,
            ClubAccount.total_income: ClubAccount.total_income + amount,
        }, synchronize_session=False)

        after = self._current_balance(club_id)
        log_business_event(logger, "account_credited", club_id=club_id, amount=str(amount), balance=str(after))
        return after - amount, after

    def freeze(self, club_id: str, amount: Decimal):
        """冻结提现金额，可用余额不足时失败"""
        rows = self.db.query(ClubAccount).filter(
            ClubAccount.club_id == club_id,
            ClubAccount.balance - ClubAccount.frozen_balance >= amount
        ).update({
            ClubAccount.frozen_balance: ClubAccount.frozen_balance + amount,
        }, synchronize_session=False)
        if rows == 0:
            raise ValidationError("可用余额不足")
        log_business_event(logger, "balance_frozen", club_id=club_id, amount=str(amount))

    def unfreeze(self, club_id: str, amount: Decimal):
        """解冻提现金额"""
        rows = self.db.query(ClubAccount).filter(
            ClubAccount.club_id == club_id,
            ClubAccount.frozen_balance >= amount
        ).update({
            ClubAccount.frozen_balance: ClubAccount.frozen_balance - amount,
        }, synchronize_session=False)
        if rows == 0:
            raise InvalidState("冻结金额不足，无法解冻")
        log_business_event(logger, "balance_unfrozen", club_id=club_id, amount=str(amount))

    def debit_withdrawal(self, club_id: str, amount: Decimal) -> Tuple[Decimal, Decimal]:
        """
        提现出账：扣减余额与冻结金额，累计提现增加

        Returns:
            (出账前余额, 出账后余额)
        """
        rows = self.db.query(ClubAccount).filter(
            ClubAccount.club_id == club_id,
            ClubAccount.frozen_balance >= amount,
            ClubAccount.balance >= amount
        ).update({
            ClubAccount.balance: ClubAccount.balance - amount,
            ClubAccount.frozen_balance: ClubAccount.frozen_balance - amount,
            ClubAccount.total_withdraw: ClubAccount.total_withdraw + amount,
        }, synchronize_session=False)
        if rows == 0:
            raise InvalidState("账户冻结金额不足，无法完成提现")

        after = self._current_balance(club_id)
        log_business_event(logger, "account_debited", club_id=club_id, amount=str(amount), balance=str(after))
        return after + amount, after
