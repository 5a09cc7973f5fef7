"""
Unit tests for emulator fault injection.
"""

import pytest

from docdb.emulator.faults import FailurePattern, FaultConfig, FaultInjector


class TestFaultConfig:
    """Test suite for FaultConfig validation."""

    def test_defaults(self):
        config = FaultConfig()
        assert config.enabled is False
        assert config.error_codes == [503]
        assert config.pattern == FailurePattern.RANDOM

    @pytest.mark.parametrize("rate", [-0.1, 1.5])
    def test_invalid_rate(self, rate):
        with pytest.raises(ValueError, match="failure_rate"):
            FaultConfig(failure_rate=rate)

    def test_invalid_retry_after(self):
        with pytest.raises(ValueError, match="retry_after_ms"):
            FaultConfig(retry_after_ms=-1)

    def test_unsupported_code(self):
        with pytest.raises(ValueError, match="not supported"):
            FaultConfig(error_codes=[404])

    def test_empty_codes_default_to_503(self):
        assert FaultConfig(error_codes=[]).error_codes == [503]


class TestScheduledFaults:
    """Test suite for explicitly scheduled failures."""

    def test_disabled_by_default(self):
        injector = FaultInjector()
        result = injector.check_failure("GET", "dbs")
        assert not result.should_fail
        assert injector.injected_count == 0

    def test_schedule_count(self):
        injector = FaultInjector()
        injector.schedule(503, count=2)

        assert injector.check_failure("GET", "dbs").error_code == 503
        assert injector.check_failure("POST", "dbs").should_fail
        assert not injector.check_failure("GET", "dbs").should_fail
        assert injector.injected_count == 2

    def test_throttle_gets_retry_after(self):
        injector = FaultInjector(FaultConfig(retry_after_ms=25))
        injector.schedule(429)
        result = injector.check_failure("GET", "dbs")
        assert result.error_code == 429
        assert result.retry_after_ms == 25

    def test_explicit_retry_after(self):
        injector = FaultInjector()
        injector.schedule(429, retry_after_ms=7)
        assert injector.check_failure("GET", "dbs").retry_after_ms == 7

    def test_server_error_has_no_retry_after(self):
        injector = FaultInjector()
        injector.schedule(500)
        assert injector.check_failure("GET", "dbs").retry_after_ms is None

    def test_method_and_path_filters(self):
        injector = FaultInjector()
        injector.schedule(502, method="post", path_prefix="/dbs/db1/colls")

        assert not injector.check_failure("GET", "dbs/db1/colls/c1").should_fail
        assert not injector.check_failure("POST", "dbs/db2/colls").should_fail
        assert injector.check_failure("POST", "dbs/db1/colls/c1/docs").error_code == 502
        assert not injector.check_failure("POST", "dbs/db1/colls/c1/docs").should_fail

    def test_unsupported_scheduled_code(self):
        with pytest.raises(ValueError):
            FaultInjector().schedule(400)

    def test_reset(self):
        injector = FaultInjector(FaultConfig(enabled=True, failure_rate=1.0))
        injector.schedule(503, count=3)
        injector.reset()
        assert not injector.check_failure("GET", "dbs").should_fail
        assert injector.injected_count == 0


class TestPatternFaults:
    """Test suite for pattern-based failures."""

    def test_sequential_pattern(self):
        injector = FaultInjector(FaultConfig(
            enabled=True, failure_rate=0.5, error_codes=[500], pattern=FailurePattern.SEQUENTIAL
        ))
        outcomes = [injector.check_failure("GET", "dbs").should_fail for _ in range(6)]
        assert outcomes == [False, True, False, True, False, True]

    def test_sequential_zero_rate(self):
        injector = FaultInjector(FaultConfig(enabled=True, failure_rate=0.0, pattern=FailurePattern.SEQUENTIAL))
        assert not any(injector.check_failure("GET", "dbs").should_fail for _ in range(5))

    def test_random_pattern_is_seeded(self):
        config = FaultConfig(enabled=True, failure_rate=0.5, error_codes=[429, 503])
        first, second = FaultInjector(config), FaultInjector(config)
        first.set_seed(42)
        second.set_seed(42)

        a = [first.check_failure("GET", "dbs").error_code for _ in range(20)]
        b = [second.check_failure("GET", "dbs").error_code for _ in range(20)]
        assert a == b

    def test_always_fail(self):
        injector = FaultInjector()
        injector.configure(FaultConfig(enabled=True, failure_rate=1.0, error_codes=[504]))
        assert all(injector.check_failure("GET", "dbs").error_code == 504 for _ in range(5))
