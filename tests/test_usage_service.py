from datetime import datetime, timedelta, timezone
from uuid import uuid4

import pytest

from supportdesk.models import Company
from supportdesk.services.usage_service import (
    check_usage_limit,
    get_current_usage,
    reset_due_usage,
    reset_monthly_usage,
    track_ai_response,
)

NOW = datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)


class TestCheckUsageLimit:
    def test_under_limit(self, store, make_tenant):
        tenant = make_tenant(limit=100, used=10)

        usage = check_usage_limit(store, tenant.id)

        assert usage.has_reached_limit is False
        assert usage.current_usage == 10
        assert usage.remaining == 90

    def test_at_limit(self, store, make_tenant):
        tenant = make_tenant(limit=100, used=100)

        assert check_usage_limit(store, tenant.id).has_reached_limit is True

    def test_tenant_without_plan_has_no_quota(self, store):
        company = Company(name="No plan")
        store.db.add(company)
        store.db.commit()

        usage = check_usage_limit(store, company.id)

        assert usage.has_reached_limit is True
        assert usage.limit == 0

    def test_unknown_tenant(self, store):
        assert check_usage_limit(store, uuid4()).has_reached_limit is True


class TestTrackAiResponse:
    @pytest.mark.asyncio
    async def test_increments_counter(self, store, notifier, make_tenant):
        tenant = make_tenant(limit=100, used=3)

        count = await track_ai_response(store, notifier, tenant.id)

        assert count == 4
        assert store.get_company(tenant.id).ai_responses_this_month == 4
        assert notifier.calls == []

    @pytest.mark.asyncio
    async def test_warns_admins_once_at_threshold(self, store, notifier, make_tenant, make_user):
        tenant = make_tenant(limit=10, used=7)
        admin = make_user(tenant, role="admin", display_name="Ada Admin")
        make_user(tenant, role="support")

        await track_ai_response(store, notifier, tenant.id)
        await track_ai_response(store, notifier, tenant.id)

        assert len(notifier.calls) == 1
        call = notifier.calls[0]
        assert call["title"] == "AI usage warning"
        assert call["user_ids"] == [str(admin.id)]
        assert "8 of 10" in call["body"]
        assert store.get_company(tenant.id).usage_warning_sent is True

    @pytest.mark.asyncio
    async def test_notifier_failure_does_not_raise(self, store, make_tenant, make_user):
        class BrokenNotifier:
            async def notify(self, *args, **kwargs):
                raise RuntimeError("push down")

        tenant = make_tenant(limit=10, used=8)
        make_user(tenant, role="admin")

        assert await track_ai_response(store, BrokenNotifier(), tenant.id) == 9


class TestResetUsage:
    def test_reset_clears_counter_and_warning(self, store, make_tenant):
        tenant = make_tenant(limit=10, used=9, usage_warning_sent=True)

        result = reset_monthly_usage(store, tenant.id, NOW)

        assert result.ok is True
        assert result.value == NOW + timedelta(days=30)
        company = store.get_company(tenant.id)
        assert company.ai_responses_this_month == 0
        assert company.usage_warning_sent is False
        assert company.ai_responses_reset_at == NOW + timedelta(days=30)

    def test_reset_unknown_tenant(self, store):
        assert reset_monthly_usage(store, uuid4()).error_code == "not_found"

    def test_reset_due_only_touches_expired_cycles(self, store, make_tenant):
        due = make_tenant(used=50, ai_responses_reset_at=NOW - timedelta(hours=1))
        later = make_tenant(used=20, ai_responses_reset_at=NOW + timedelta(days=3))

        assert reset_due_usage(store, NOW) == 1
        assert store.get_company(due.id).ai_responses_this_month == 0
        assert store.get_company(later.id).ai_responses_this_month == 20


class TestGetCurrentUsage:
    def test_summary(self, store, make_tenant):
        tenant = make_tenant(limit=200, used=50, ai_responses_reset_at=NOW + timedelta(days=2, hours=1))

        result = get_current_usage(store, tenant.id, NOW)

        assert result.value == {
            "plan": "Pro",
            "total_limit": 200,
            "current_usage": 50,
            "remaining": 150,
            "percentage_used": 25.0,
            "reset_at": NOW + timedelta(days=2, hours=1),
            "days_until_reset": 3,
        }
