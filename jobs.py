#!/usr/bin/env python3
"""
定时任务入口

由 cron 或容器调度器周期调用：
    python jobs.py expire-orders      关闭超时未支付订单
    python jobs.py auto-settle        结算已结束的活动
    python jobs.py sync-payments      同步长时间支付中的订单
"""
import argparse
import sys

from models import SessionLocal
from services.logger import get_logger, performance_logger
from services.order_service import OrderService
from services.payment_service import PaymentService
from services.settlement_service import SettlementService

logger = get_logger("jobs")


def expire_orders(db) -> dict:
    return {"expired": OrderService(db).cancel_expired_orders()}


def auto_settle(db) -> dict:
    return SettlementService(db).auto_settle_activities()


def sync_payments(db, older_than_minutes: int = 5) -> dict:
    return {"updated": PaymentService(db).sync_paying_orders(older_than_minutes)}


JOBS = {
    "expire-orders": expire_orders,
    "auto-settle": auto_settle,
    "sync-payments": sync_payments,
}


def run_job(name: str, **kwargs) -> dict:
    """在独立会话中执行一个任务"""
    db = SessionLocal()
    try:
        with performance_logger(logger, f"job:{name}"):
            result = JOBS[name](db, **kwargs)
        logger.info(f"任务 {name} 完成: {result}")
        return result
    finally:
        db.close()


def main(argv=None) -> int:
    parser = argparse.ArgumentParser(description="风追后端定时任务")
    parser.add_argument("job", choices=sorted(JOBS.keys()), help="任务名称")
    parser.add_argument("--older-than", type=int, default=5,
                        help="sync-payments: 支付中超过多少分钟的订单才同步")
    args = parser.parse_args(argv)

    kwargs = {}
    if args.job == "sync-payments":
        kwargs["older_than_minutes"] = args.older_than

    try:
        run_job(args.job, **kwargs)
    except Exception as e:
        logger.error(f"任务 {args.job} 执行失败: {str(e)}", exc_info=True)
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
