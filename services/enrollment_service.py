"""
报名服务
处理活动报名、取消报名
"""
from datetime import datetime
from typing import List, Optional

from sqlalchemy.orm import Session

from models.club import Activity, ActivityStatus
from models.enrollment import Enrollment, EnrollmentStatus, INACTIVE_ENROLLMENT_STATUSES
from models.order import OrderStatus
from models.user import User
from services.logger import get_logger
from services.state_machine import OrderAction, transition
from utils.exceptions import BusinessException, Conflict, Forbidden, InvalidState, NotFound

logger = get_logger("enrollment_service")


class EnrollmentService:
    """报名服务类"""

    def __init__(self, db: Session):
        self.db = db

    def _count_active(self, activity_id: str) -> int:
        return self.db.query(Enrollment).filter(
            Enrollment.activity_id == activity_id,
            Enrollment.status.notin_(INACTIVE_ENROLLMENT_STATUSES)
        ).count()

    def create_enrollment(self, user: User, activity_id: str, contact_name: str,
                          contact_phone: str, remark: str = None) -> Enrollment:
        """
        报名活动

        Args:
            user: 报名用户
            activity_id: 活动ID
            contact_name: 联系人
            contact_phone: 联系电话
            remark: 备注

        Returns:
            Enrollment: 新建的报名记录，金额取活动当前价格
        """
        activity = self.db.query(Activity).filter(Activity.id == activity_id).first()
        if not activity:
            raise NotFound("活动不存在")
        if activity.status != ActivityStatus.PUBLISHED:
            raise InvalidState("活动未开放报名")

        existing = self.db.query(Enrollment).filter(
            Enrollment.activity_id == activity_id,
            Enrollment.user_id == user.id,
            Enrollment.status.notin_(INACTIVE_ENROLLMENT_STATUSES)
        ).first()
        if existing:
            raise Conflict("您已报名该活动")

        active_count = self._count_active(activity_id)
        if activity.max_people and active_count >= activity.max_people:
            raise InvalidState("活动名额已满")

        try:
            enrollment = Enrollment(
                activity_id=activity_id,
                user_id=user.id,
                contact_name=contact_name,
                contact_phone=contact_phone,
                remark=remark,
                amount=activity.price,
                status=EnrollmentStatus.PENDING
            )
            self.db.add(enrollment)

            if activity.max_people and active_count + 1 >= activity.max_people:
                activity.status = ActivityStatus.FULL

            self.db.commit()
            self.db.refresh(enrollment)
            logger.info(f"用户 {user.id} 报名活动 {activity_id}，报名ID {enrollment.id}")
            return enrollment

        except Exception as e:
            self.db.rollback()
            logger.error(f"报名失败: {str(e)}")
            raise

    def get_enrollment(self, enrollment_id: str, user: User = None) -> Enrollment:
        """获取报名详情，传入 user 时校验归属"""
        enrollment = self.db.query(Enrollment).filter(Enrollment.id == enrollment_id).first()
        if not enrollment:
            raise NotFound("报名记录不存在")
        if user is not None and enrollment.user_id != user.id and not user.is_admin:
            raise Forbidden("无权查看该报名")
        return enrollment

    def cancel_enrollment(self, enrollment_id: str, user: User) -> Enrollment:
        """
        取消报名

        仅待支付的报名可以取消，未支付的订单一并取消；
        已支付的报名需要走退款流程。
        """
        enrollment = self.get_enrollment(enrollment_id, user)
        if enrollment.status != EnrollmentStatus.PENDING:
            raise InvalidState("仅待支付的报名可以取消，已支付请申请退款")

        order = enrollment.order
        try:
            if order is not None and order.status == OrderStatus.PENDING:
                transition(self.db, order, OrderAction.CANCEL, cancelled_at=datetime.utcnow())
            elif order is not None and order.status != OrderStatus.CANCELLED:
                raise InvalidState("订单正在支付中，暂不能取消报名")

            enrollment.status = EnrollmentStatus.CANCELLED
            enrollment.cancelled_at = datetime.utcnow()

            # 释放名额
            activity = enrollment.activity
            if activity.status == ActivityStatus.FULL:
                activity.status = ActivityStatus.PUBLISHED

            self.db.commit()
            self.db.refresh(enrollment)
            logger.info(f"用户 {user.id} 取消报名 {enrollment_id}")
            return enrollment

        except BusinessException:
            self.db.rollback()
            raise
        except Exception as e:
            self.db.rollback()
            logger.error(f"取消报名失败: {str(e)}")
            raise

    def list_user_enrollments(self, user_id: str, status: Optional[EnrollmentStatus] = None) -> List[Enrollment]:
        """获取用户的报名列表"""
        query = self.db.query(Enrollment).filter(Enrollment.user_id == user_id)
        if status:
            query = query.filter(Enrollment.status == status)
        return query.order_by(Enrollment.created_at.desc()).all()

    def list_activity_enrollments(self, activity_id: str, status: Optional[EnrollmentStatus] = None) -> List[Enrollment]:
        """获取活动的报名列表"""
        query = self.db.query(Enrollment).filter(Enrollment.activity_id == activity_id)
        if status:
            query = query.filter(Enrollment.status == status)
        return query.order_by(Enrollment.created_at.asc()).all()
