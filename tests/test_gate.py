"""
Tests for the host gate and the Redis sliding-window rate limiter.
"""

import time
from unittest.mock import MagicMock, patch

import pytest

from linksy.search.errors import HostAccessError, QuotaExceededError, RateLimitedError
from linksy.search.gate import (
    check_host_access,
    check_host_rate_limit,
    check_token_budget,
    filtered_response,
    host_rate_limit,
    is_query_excluded,
)
from linksy.search.rate_limit import check_rate_limit


def _host(**overrides):
    host = {
        "id": "host-1",
        "is_active": True,
        "is_host": True,
        "host_embed_active": True,
        "host_widget_config": {},
        "host_monthly_token_budget": None,
        "host_tokens_used_this_month": 0,
        "excluded_search_terms": [],
    }
    host.update(overrides)
    return host


class TestExclusion:
    def test_case_insensitive_substring(self):
        assert is_query_excluded("Need a LAWYER for court", ["lawyer"])

    def test_no_terms(self):
        assert not is_query_excluded("anything", None)
        assert not is_query_excluded("anything", [])

    def test_blank_terms_ignored(self):
        assert not is_query_excluded("anything", ["", "  "])

    def test_filtered_response_shape(self):
        response = filtered_response("lawyer")
        assert response["filtered"] is True
        assert response["needs"] == []
        assert response["providers"] == []
        assert response["message"]


class TestHostAccess:
    def test_valid_host_passes(self):
        check_host_access(_host())

    def test_missing_host(self):
        with pytest.raises(HostAccessError):
            check_host_access(None)

    @pytest.mark.parametrize("flag", ["is_active", "is_host", "host_embed_active"])
    def test_each_flag_required(self, flag):
        with pytest.raises(HostAccessError):
            check_host_access(_host(**{flag: False}))


class TestTokenBudget:
    def test_no_budget_is_unlimited(self):
        check_token_budget(_host(host_tokens_used_this_month=10**9))

    def test_under_budget(self):
        check_token_budget(_host(host_monthly_token_budget=100, host_tokens_used_this_month=99))

    def test_at_budget_rejected(self):
        with pytest.raises(QuotaExceededError):
            check_token_budget(_host(host_monthly_token_budget=100, host_tokens_used_this_month=100))


class TestHostRateLimit:
    def test_default_limit(self):
        assert host_rate_limit(_host()) == 60

    def test_configured_limit(self):
        assert host_rate_limit(_host(host_widget_config={"search_rate_limit_per_minute": 5})) == 5

    @patch("linksy.search.gate.check_rate_limit")
    def test_rejection_raises_with_metadata(self, mock_check):
        mock_check.return_value = MagicMock(success=False, limit=5, remaining=0, reset=1_700_000_060)
        with pytest.raises(RateLimitedError) as exc_info:
            check_host_rate_limit(_host(), "1.2.3.4", MagicMock())
        exc = exc_info.value
        assert (exc.limit, exc.remaining, exc.reset) == (5, 0, 1_700_000_060)
        headers = exc.headers(now=1_700_000_000)
        assert headers["X-RateLimit-Limit"] == "5"
        assert headers["Retry-After"] == "60"


def _redis(count, oldest=None):
    client = MagicMock()
    pipe = client.pipeline.return_value
    pipe.execute.return_value = [0, 1, count, oldest or [], True]
    return client


class _SortedSetRedis:
    """Just enough sorted-set Redis for the limiter. Pipelines apply on execute()."""

    def __init__(self):
        self.sets = {}
        self.after_execute = None

    def pipeline(self, transaction=True):
        return _Pipeline(self)

    def zremrangebyscore(self, key, low, high):
        entries = self.sets.setdefault(key, {})
        stale = [m for m, score in entries.items() if low <= score <= high]
        for m in stale:
            del entries[m]
        return len(stale)

    def zadd(self, key, mapping):
        self.sets.setdefault(key, {}).update(mapping)
        return len(mapping)

    def zcard(self, key):
        return len(self.sets.get(key, {}))

    def zrange(self, key, start, end, withscores=False):
        ordered = sorted(self.sets.get(key, {}).items(), key=lambda kv: kv[1])
        return ordered[start:end + 1]

    def expire(self, key, seconds):
        return True

    def zrem(self, key, *members):
        entries = self.sets.get(key, {})
        return sum(1 for m in members if entries.pop(m, None) is not None)


class _Pipeline:
    def __init__(self, redis):
        self._redis = redis
        self._ops = []

    def __getattr__(self, name):
        return lambda *args, **kwargs: self._ops.append((name, args, kwargs))

    def execute(self):
        results = [getattr(self._redis, name)(*args, **kwargs) for name, args, kwargs in self._ops]
        hook, self._redis.after_execute = self._redis.after_execute, None
        if hook:
            hook()
        return results


class TestSlidingWindow:
    def test_allows_under_limit(self):
        client = _redis(count=3, oldest=[("m", 1000.0)])
        result = check_rate_limit("h", "ip", 5, 60, client, now=1010.0)
        assert result.success
        assert result.remaining == 2
        assert result.reset == 1060
        client.pipeline.return_value.zadd.assert_called_once()
        client.zrem.assert_not_called()

    def test_rejected_request_removes_its_entry(self):
        client = _redis(count=6, oldest=[("m", 1000.0)])
        result = check_rate_limit("h", "ip", 5, 60, client, now=1010.0)
        assert not result.success
        assert result.remaining == 0
        recorded = next(iter(client.pipeline.return_value.zadd.call_args.args[1]))
        client.zrem.assert_called_once_with("search_ratelimit:h:ip", recorded)

    def test_trims_old_entries(self):
        client = _redis(count=1)
        check_rate_limit("h", "ip", 5, 60, client, now=1000.0)
        client.pipeline.return_value.zremrangebyscore.assert_called_once_with(
            "search_ratelimit:h:ip", 0, 940.0
        )

    def test_concurrent_workers_share_one_slot(self):
        redis = _SortedSetRedis()
        second = []
        redis.after_execute = lambda: second.append(check_rate_limit("h", "ip", 1, 60, redis, now=1000.0))

        first = check_rate_limit("h", "ip", 1, 60, redis, now=1000.0)

        assert first.success
        assert not second[0].success
        assert redis.zcard("search_ratelimit:h:ip") == 1

    def test_backing_off_regains_capacity(self):
        redis = _SortedSetRedis()
        assert check_rate_limit("h", "ip", 1, 60, redis, now=1000.0).success
        assert not check_rate_limit("h", "ip", 1, 60, redis, now=1030.0).success
        assert check_rate_limit("h", "ip", 1, 60, redis, now=1061.0).success

    def test_fails_open_without_redis(self):
        assert check_rate_limit("h", "ip", 5, 60, None).success

    def test_fails_open_on_redis_error(self):
        client = MagicMock()
        client.pipeline.side_effect = ConnectionError("down")
        assert check_rate_limit("h", "ip", 5, 60, client).success


class TestSlidingWindowRedis:
    def test_window_enforced(self, redis_client):
        now = time.time()
        results = [check_rate_limit("host", "10.0.0.1", 3, 60, redis_client, now=now + i * 0.01) for i in range(4)]
        assert [r.success for r in results] == [True, True, True, False]
        assert results[3].remaining == 0
