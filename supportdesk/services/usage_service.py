import math
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Optional
from uuid import UUID

from supportdesk.config import settings
from supportdesk.database import utcnow
from supportdesk.logging_config import get_logger
from supportdesk.services.notification_service import NotificationSender, notify_users
from supportdesk.services.result import Result
from supportdesk.services.store import ConversationStore

logger = get_logger("usage_service")

BILLING_CYCLE_DAYS = 30


@dataclass
class UsageCheck:
    has_reached_limit: bool
    current_usage: int
    limit: int

    @property
    def remaining(self) -> int:
        return max(0, self.limit - self.current_usage)


def _plan_limit(store: ConversationStore, company) -> int:
    plan = store.get_plan(company.plan_id)
    return plan.ai_responses_per_month if plan else 0


def check_usage_limit(store: ConversationStore, tenant_id: UUID) -> UsageCheck:
    """Monthly AI quota check. A tenant without a plan has no AI quota."""
    company = store.get_company(tenant_id)
    if not company:
        return UsageCheck(has_reached_limit=True, current_usage=0, limit=0)

    limit = _plan_limit(store, company)
    current = company.ai_responses_this_month or 0
    return UsageCheck(has_reached_limit=current >= limit, current_usage=current, limit=limit)


async def track_ai_response(
    store: ConversationStore,
    notifier: Optional[NotificationSender],
    tenant_id: UUID,
) -> int:
    """Count one persisted AI reply. Warns tenant admins once per cycle at the warning threshold."""
    new_count = store.increment_ai_usage(tenant_id)
    company = store.get_company(tenant_id)
    limit = _plan_limit(store, company) if company else 0

    should_warn = (
        company is not None
        and limit > 0
        and new_count / limit >= settings.usage_warning_threshold
        and store.patch_company_if(tenant_id, {"usage_warning_sent": False}, usage_warning_sent=True)
    )
    store.commit()

    if should_warn:
        logger.warning(
            f"Tenant reached {int(settings.usage_warning_threshold * 100)}% of AI usage",
            extra={"context": {"tenant_id": str(tenant_id), "usage": new_count, "limit": limit}},
        )
        admin_ids = store.list_staff_ids(tenant_id, roles=("admin",))
        if notifier and admin_ids:
            await notify_users(
                notifier,
                admin_ids,
                "AI usage warning",
                f"Your team has used {new_count} of {limit} AI responses this month.",
                "/billing",
            )
    return new_count


def reset_monthly_usage(store: ConversationStore, tenant_id: UUID, now: Optional[datetime] = None) -> Result[datetime]:
    """Start a new billing cycle: zero the counter and re-arm the usage warning."""
    company = store.get_company(tenant_id)
    if not company:
        return Result.failure("Company not found", "not_found")

    now = now or utcnow()
    next_reset = now + timedelta(days=BILLING_CYCLE_DAYS)
    store.patch_company(
        tenant_id,
        ai_responses_this_month=0,
        usage_warning_sent=False,
        ai_responses_reset_at=next_reset,
    )
    store.commit()
    logger.info("Monthly usage reset", extra={"context": {"tenant_id": str(tenant_id)}})
    return Result.success(next_reset)


def reset_due_usage(store: ConversationStore, now: Optional[datetime] = None) -> int:
    """Reset every tenant whose cycle has ended. Returns how many were reset."""
    now = now or utcnow()
    tenant_ids = store.list_tenants_due_for_reset(now)
    for tenant_id in tenant_ids:
        reset_monthly_usage(store, tenant_id, now)
    return len(tenant_ids)


def get_current_usage(store: ConversationStore, tenant_id: UUID, now: Optional[datetime] = None) -> Result[dict]:
    company = store.get_company(tenant_id)
    if not company:
        return Result.failure("Company not found", "not_found")

    plan = store.get_plan(company.plan_id)
    limit = plan.ai_responses_per_month if plan else 0
    used = company.ai_responses_this_month or 0
    percentage = round(used / limit * 100, 1) if limit > 0 else 0

    days_until_reset = None
    if company.ai_responses_reset_at:
        now = now or utcnow()
        seconds = (company.ai_responses_reset_at - now).total_seconds()
        days_until_reset = max(0, math.ceil(seconds / 86400))

    return Result.success(
        {
            "plan": plan.name if plan else None,
            "total_limit": limit,
            "current_usage": used,
            "remaining": max(0, limit - used),
            "percentage_used": percentage,
            "reset_at": company.ai_responses_reset_at,
            "days_until_reset": days_until_reset,
        }
    )
