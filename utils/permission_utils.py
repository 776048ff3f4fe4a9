"""权限管理工具模块
俱乐部成员角色与平台角色的权限判断
"""
from typing import Optional

from sqlalchemy.orm import Session

from models.club import Activity, Club, ClubMember, ClubRole
from models.user import User
from services.logger import get_logger
from utils.exceptions import Forbidden, NotFound

logger = get_logger("permission_utils")

# 可以管理俱乐部财务、审核退款的角色
CLUB_MANAGER_ROLES = {ClubRole.OWNER, ClubRole.ADMIN}


def get_club_role(db: Session, club: Club, user_id: str) -> Optional[ClubRole]:
    """获取用户在俱乐部中的角色，俱乐部创建者视为 OWNER"""
    if club.owner_id == user_id:
        return ClubRole.OWNER
    member = db.query(ClubMember).filter(
        ClubMember.club_id == club.id,
        ClubMember.user_id == user_id
    ).first()
    return member.role if member else None


def get_club_or_404(db: Session, club_id: str) -> Club:
    club = db.query(Club).filter(Club.id == club_id).first()
    if not club:
        raise NotFound("俱乐部不存在")
    return club


def is_club_manager(db: Session, club: Club, user: User) -> bool:
    """平台管理员或俱乐部 OWNER/ADMIN"""
    if user.is_admin:
        return True
    return get_club_role(db, club, user.id) in CLUB_MANAGER_ROLES


def check_club_manager(db: Session, club_id: str, user: User) -> Club:
    """检查俱乐部管理权限，返回俱乐部"""
    club = get_club_or_404(db, club_id)
    if not is_club_manager(db, club, user):
        logger.warning(f"用户 {user.id} 无权管理俱乐部 {club_id}")
        raise Forbidden("无权管理该俱乐部")
    return club


def can_verify_activity(db: Session, activity: Activity, user: User) -> bool:
    """活动领队、俱乐部 OWNER/ADMIN 或平台管理员可以核销"""
    if user.is_admin or activity.leader_id == user.id:
        return True
    return get_club_role(db, activity.club, user.id) in CLUB_MANAGER_ROLES
