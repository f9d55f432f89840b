from __future__ import annotations

import pytest

from cardsync.core import config as app_config
from cardsync.services import limits
from cardsync.services.limits import ProgressiveDelay


def test_first_attempt_has_no_delay():
    delay = ProgressiveDelay(base_seconds=0.2, max_seconds=5.0, factor=2.0)
    assert delay.delay_for(0) == 0
    assert delay.delay_for(1) == 0


def test_second_attempt_is_base_times_factor():
    delay = ProgressiveDelay(base_seconds=0.2, max_seconds=5.0, factor=2.0)
    assert delay.delay_for(2) == pytest.approx(0.4)
    assert delay.delay_for(3) == pytest.approx(0.8)


def test_delay_is_non_decreasing_and_capped():
    delay = ProgressiveDelay(base_seconds=0.2, max_seconds=5.0, factor=2.0)
    values = [delay.delay_for(n) for n in range(0, 200)]
    assert values == sorted(values)
    assert max(values) == 5.0
    assert delay.delay_for(10_000) == 5.0


def test_login_policy_reads_delay_settings(monkeypatch):
    monkeypatch.setattr(app_config.settings, "LOGIN_DELAY_BASE_MS", 100)
    monkeypatch.setattr(app_config.settings, "LOGIN_DELAY_MAX_MS", 1000)
    monkeypatch.setattr(app_config.settings, "LOGIN_DELAY_FACTOR", 3.0)

    policy = limits.get_policy(limits.LOGIN)

    assert policy.max_attempts == 5
    assert policy.window_seconds == 15 * 60
    assert policy.block_seconds == 60 * 60
    assert policy.progressive_delay == ProgressiveDelay(base_seconds=0.1, max_seconds=1.0, factor=3.0)


def test_operations_have_independent_policies():
    assert limits.get_policy(limits.REGISTER).max_attempts == 3
    assert limits.get_policy(limits.REGISTER).block_seconds == 24 * 60 * 60
    assert limits.get_policy(limits.SYNC_READ).progressive_delay is None
    assert limits.rate_limit_message("unknown") == limits.DEFAULT_ERROR_MESSAGE
