"""
活动报名相关API
"""

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.orm import Session
from typing import List, Optional

from models import get_db
from models.club import Activity
from models.enrollment import EnrollmentStatus
from models.user import User
from models.schemas import EnrollmentCreate, EnrollmentResponse
from services.enrollment_service import EnrollmentService
from services.logger import get_logger
from utils.auth_utils import get_current_user
from utils.exceptions import Forbidden, NotFound
from utils.permission_utils import can_verify_activity

logger = get_logger("enrollments_api")
router = APIRouter(prefix="/enrollments", tags=["活动报名"])


@router.post("/", response_model=EnrollmentResponse, status_code=status.HTTP_201_CREATED)
async def create_enrollment(
    data: EnrollmentCreate,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    """报名活动"""
    return EnrollmentService(db).create_enrollment(
        current_user, data.activity_id, data.contact_name, data.contact_phone, data.remark
    )


@router.get("/mine", response_model=List[EnrollmentResponse])
async def list_my_enrollments(
    status_filter: Optional[EnrollmentStatus] = Query(None, alias="status"),
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    """我的报名"""
    return EnrollmentService(db).list_user_enrollments(current_user.id, status_filter)


@router.get("/activity/{activity_id}", response_model=List[EnrollmentResponse])
async def list_activity_enrollments(
    activity_id: str,
    status_filter: Optional[EnrollmentStatus] = Query(None, alias="status"),
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    """活动报名名单（领队、俱乐部管理员）"""
    activity = db.query(Activity).filter(Activity.id == activity_id).first()
    if not activity:
        raise NotFound("活动不存在")
    if not can_verify_activity(db, activity, current_user):
        raise Forbidden("无权查看报名名单")
    return EnrollmentService(db).list_activity_enrollments(activity_id, status_filter)


@router.get("/{enrollment_id}", response_model=EnrollmentResponse)
async def get_enrollment(
    enrollment_id: str,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    """报名详情"""
    return EnrollmentService(db).get_enrollment(enrollment_id, current_user)


@router.delete("/{enrollment_id}", response_model=EnrollmentResponse)
async def cancel_enrollment(
    enrollment_id: str,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    """取消报名"""
    return EnrollmentService(db).cancel_enrollment(enrollment_id, current_user)
