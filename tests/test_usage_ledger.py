"""Tests for usage cost, recording, plan limits and summaries."""

from datetime import datetime, timedelta
from types import SimpleNamespace

import pytest

from modelmarket.core.database import get_session_context
from modelmarket.core.errors import RATE_LIMIT_EXCEEDED, TOO_MANY_REQUESTS, MarketError
from modelmarket.models.marketplace import AIModel
from modelmarket.models.usage import UsageRecord
from modelmarket.services.usage_ledger import stats_window, usage_ledger

NOW = datetime(2026, 3, 15, 12, 0, 0)


def _plan(per_month=None, per_minute=None):
    return SimpleNamespace(name="Test", requests_per_month=per_month, requests_per_minute=per_minute)


class TestCalculateCost:
    def test_inference(self):
        # 1500 tokens → 0.0015, 500 ms → 0.00005
        assert usage_ledger.calculate_cost("inference", 1500, 500) == pytest.approx(0.00155)

    def test_inference_rounds_to_five_places(self):
        assert usage_ledger.calculate_cost("inference", 2000, 500) == 0.00205

    def test_download_flat_fee(self):
        assert usage_ledger.calculate_cost("download", 99999, 99999) == 0.01

    def test_view_free(self):
        assert usage_ledger.calculate_cost("view") == 0.0


class TestRecordUsage:
    def test_appends_row(self, market):
        entry = usage_ledger.record_usage(
            market.buyer.id, market.model.id, "inference", tokens_used=2000, response_time_ms=500,
            metadata={"prompt_chars": 12}, now=NOW,
        )
        assert entry.cost == 0.00205
        assert entry.timestamp == NOW
        with get_session_context() as session:
            row = session.get(UsageRecord, entry.usage_id)
        assert row.request_count == 1
        assert row.token_count == 2000
        assert row.metadata_json == '{"prompt_chars": 12}'

    def test_negative_values_rejected(self, market):
        with pytest.raises(ValueError):
            usage_ledger.record_usage(market.buyer.id, market.model.id, "inference", tokens_used=-1)

    def test_bump_model_stats(self, market):
        usage_ledger.bump_model_stats(market.model.id, "inference")
        usage_ledger.bump_model_stats(market.model.id, "inference")
        usage_ledger.bump_model_stats(market.model.id, "download")
        usage_ledger.bump_model_stats(market.model.id, "view")
        with get_session_context() as session:
            model = session.get(AIModel, market.model.id)
        assert model.api_call_count == 2
        assert model.download_count == 1


class TestCheckLimits:
    def _record(self, market, at, tokens=0):
        usage_ledger.record_usage(market.buyer.id, market.model.id, "inference", tokens_used=tokens, now=at)

    def test_counts_calendar_month_and_last_minute(self, market):
        self._record(market, datetime(2026, 2, 28, 23, 59), tokens=999)
        self._record(market, datetime(2026, 3, 1, 0, 0), tokens=100)
        self._record(market, NOW - timedelta(minutes=5), tokens=10)
        self._record(market, NOW - timedelta(seconds=30), tokens=1)

        limits = usage_ledger.check_limits(market.buyer.id, market.model.id, _plan(100, 10), NOW)
        assert limits.monthly_requests == 3
        assert limits.monthly_tokens == 111
        assert limits.minute_requests == 1
        assert limits.monthly_percent == 3
        assert limits.minute_percent == 10
        assert limits.resets_at == datetime(2026, 4, 1)
        assert limits.is_near_limit is False

    def test_near_limit_at_eighty_percent(self, market):
        for i in range(4):
            self._record(market, NOW - timedelta(days=1, minutes=i))
        limits = usage_ledger.check_limits(market.buyer.id, market.model.id, _plan(5, None), NOW)
        assert limits.monthly_percent == 80
        assert limits.is_near_limit is True
        assert limits.minute_percent is None

    def _bulk(self, market, count, at):
        with get_session_context() as session:
            for _ in range(count):
                session.add(UsageRecord(user_id=market.buyer.id, model_id=market.model.id, operation="inference", date=at))
            session.commit()

    def test_minute_limit_alone_at_eighty_percent(self, market):
        self._bulk(market, 4, NOW - timedelta(seconds=20))
        limits = usage_ledger.check_limits(market.buyer.id, market.model.id, _plan(1000, 5), NOW)
        assert limits.monthly_percent == 0
        assert limits.minute_percent == 80
        assert limits.is_near_limit is True

    @pytest.mark.parametrize("used,near", [(79, False), (80, True)])
    def test_monthly_threshold_boundary(self, market, used, near):
        self._bulk(market, used, NOW - timedelta(days=2))
        limits = usage_ledger.check_limits(market.buyer.id, market.model.id, _plan(100, 10), NOW)
        assert limits.minute_requests == 0
        assert limits.is_near_limit is near

    @pytest.mark.parametrize("used,near", [(79, False), (80, True)])
    def test_minute_threshold_boundary(self, market, used, near):
        self._bulk(market, used, NOW - timedelta(seconds=10))
        limits = usage_ledger.check_limits(market.buyer.id, market.model.id, _plan(None, 100), NOW)
        assert limits.monthly_percent is None
        assert limits.minute_requests == used
        assert limits.is_near_limit is near

    def test_no_plan_means_unlimited(self, market):
        self._record(market, NOW)
        limits = usage_ledger.check_limits(market.buyer.id, market.model.id, None, NOW)
        assert limits.monthly_percent is None
        assert limits.is_near_limit is False
        usage_ledger.enforce_limits(limits, NOW)

    def test_other_models_not_counted(self, market):
        usage_ledger.record_usage(market.buyer.id, "another-model", "inference", now=NOW)
        limits = usage_ledger.check_limits(market.buyer.id, market.model.id, _plan(1, 1), NOW)
        assert limits.monthly_requests == 0


class TestEnforceLimits:
    def test_monthly_exhausted(self, market):
        usage_ledger.record_usage(market.buyer.id, market.model.id, "inference", now=NOW - timedelta(days=2))
        limits = usage_ledger.check_limits(market.buyer.id, market.model.id, _plan(1, 10), NOW)
        with pytest.raises(MarketError) as exc_info:
            usage_ledger.enforce_limits(limits, NOW)
        assert exc_info.value.code == RATE_LIMIT_EXCEEDED
        assert exc_info.value.context["retry_after"] == (datetime(2026, 4, 1) - NOW).total_seconds()

    def test_minute_exhausted(self, market):
        usage_ledger.record_usage(market.buyer.id, market.model.id, "inference", now=NOW - timedelta(seconds=5))
        limits = usage_ledger.check_limits(market.buyer.id, market.model.id, _plan(100, 1), NOW)
        with pytest.raises(MarketError) as exc_info:
            usage_ledger.enforce_limits(limits, NOW)
        assert exc_info.value.code == TOO_MANY_REQUESTS
        assert exc_info.value.context["retry_after"] == 60


class TestSummarize:
    def test_ranges_and_warnings(self, market):
        usage_ledger.record_usage(market.buyer.id, market.model.id, "inference", tokens_used=1000, now=NOW)
        usage_ledger.record_usage(market.buyer.id, market.model.id, "download", now=NOW - timedelta(days=3))
        usage_ledger.record_usage(market.buyer.id, market.model.id, "view", now=NOW - timedelta(days=60))

        summary = usage_ledger.summarize(market.buyer.id, {market.model.id: _plan(3, None)}, NOW)

        assert summary["usage"]["today"]["requests"] == 1
        assert summary["usage"]["thisWeek"]["requests"] == 2
        assert summary["usage"]["thisMonth"]["requests"] == 2
        assert summary["usage"]["allTime"]["requests"] == 3
        assert summary["usage"]["allTime"]["tokens"] == 1000
        assert summary["lastMinuteRequests"] == 1
        assert len(summary["recentActivity"]) == 3
        assert summary["recentActivity"][0]["operation"] == "inference"
        assert summary["subscriptions"][0]["limits"]["monthly"]["percentage"] == 67
        assert summary["warnings"] == []

    def test_warning_when_near_limit(self, market):
        for _ in range(3):
            usage_ledger.record_usage(market.buyer.id, market.model.id, "inference", now=NOW)
        summary = usage_ledger.summarize(market.buyer.id, {market.model.id: _plan(3, None)}, NOW)
        assert len(summary["warnings"]) == 1


class TestStats:
    def _seed(self, market):
        rec = usage_ledger.record_usage
        rec(market.buyer.id, market.model.id, "inference", tokens_used=100, response_time_ms=200,
            now=NOW - timedelta(minutes=10))
        rec(market.buyer.id, market.model.id, "inference", response_time_ms=400, now=NOW - timedelta(minutes=20))
        rec(market.buyer.id, market.model.id, "inference", tokens_used=50, now=NOW - timedelta(hours=2))
        rec(market.buyer.id, market.model.id, "inference", tokens_used=9999, now=NOW - timedelta(days=2))

    def test_windows(self):
        assert stats_window("hour", NOW) == (NOW - timedelta(hours=1), NOW)
        assert stats_window("week", NOW)[0] == NOW - timedelta(days=7)
        assert stats_window("month", datetime(2026, 3, 31, 8))[0] == datetime(2026, 2, 28, 8)
        assert stats_window("year", NOW)[0] == datetime(2025, 3, 15, 12)

    def test_day_period_grouped_by_hour(self, market):
        self._seed(market)
        stats = usage_ledger.stats(market.buyer.id, period="day", now=NOW)

        assert stats["period"]["interval"] == "hour"
        assert stats["totals"]["requests"] == 3
        assert stats["totals"]["tokens"] == 150
        assert stats["totals"]["sessions"] == 3
        assert stats["totals"]["averageResponseTime"] == 200

        timeline = stats["timeline"]
        assert [t["date"] for t in timeline] == ["2026-03-15T11:00:00+00:00", "2026-03-15T10:00:00+00:00"]
        assert timeline[0]["requests"] == 2
        assert timeline[0]["averageResponseTime"] == 300
        assert stats["pagination"] == {"limit": 30, "offset": 0, "total": 2, "hasMore": False}
        assert stats["efficiency"]["costPerRequest"] == pytest.approx(0.00007)
        assert stats["efficiency"]["requestsPerInterval"] == 2

    def test_pagination(self, market):
        self._seed(market)
        first = usage_ledger.stats(market.buyer.id, period="day", limit=1, now=NOW)
        second = usage_ledger.stats(market.buyer.id, period="day", limit=1, offset=1, now=NOW)
        assert first["pagination"]["hasMore"] is True
        assert second["pagination"]["hasMore"] is False
        assert first["timeline"][0]["date"] != second["timeline"][0]["date"]
        # totals cover the whole period, not the page
        assert first["totals"]["requests"] == second["totals"]["requests"] == 3

    def test_model_breakdown(self, market):
        self._seed(market)
        usage_ledger.record_usage(market.buyer.id, "deleted-model", "inference", now=NOW)

        breakdown = usage_ledger.stats(market.buyer.id, period="week", now=NOW)["modelBreakdown"]
        assert len(breakdown) == 1
        assert breakdown[0]["model"] == {
            "id": market.model.id,
            "name": "Sentiment Pro",
            "category": "nlp",
            "creator": "Creator",
        }
        assert breakdown[0]["stats"]["requests"] == 4

    def test_model_filter_skips_breakdown(self, market):
        self._seed(market)
        usage_ledger.record_usage(market.buyer.id, "other", "view", now=NOW)
        stats = usage_ledger.stats(market.buyer.id, period="week", model_id=market.model.id, now=NOW)
        assert stats["modelBreakdown"] is None
        assert stats["totals"]["requests"] == 4

    def test_empty_period(self, market):
        stats = usage_ledger.stats(market.buyer.id, period="hour", now=NOW)
        assert stats["timeline"] == []
        assert stats["modelBreakdown"] == []
        assert stats["efficiency"] == {
            "costPerRequest": 0,
            "requestsPerInterval": 0,
            "averageResponseTime": 0,
            "efficiency": 0.0,
        }

    def test_unknown_period_rejected(self, market):
        with pytest.raises(ValueError):
            usage_ledger.stats(market.buyer.id, period="decade", now=NOW)
