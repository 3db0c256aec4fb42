"""
Unit tests for the retry policy.
"""

import pytest

from shared.retry import RetryConfig, calculate_delay, is_retryable


class TestRetryPolicy:
    """Test cases for retry classification and backoff."""

    @pytest.mark.parametrize("status_code", [None, 408, 429, 500, 502, 503, 504])
    def test_retryable_outcomes(self, status_code):
        assert is_retryable(status_code) is True

    @pytest.mark.parametrize("status_code", [200, 201, 301, 400, 401, 403, 404, 409, 422])
    def test_terminal_outcomes(self, status_code):
        assert is_retryable(status_code) is False

    def test_exponential_backoff(self):
        config = RetryConfig(base_delay=1.0, max_delay=10.0, jitter=False)

        assert [calculate_delay(attempt, config) for attempt in range(1, 6)] == [1.0, 2.0, 4.0, 8.0, 10.0]

    def test_jitter_stays_within_ten_percent(self):
        config = RetryConfig(base_delay=2.0, max_delay=10.0)

        for _ in range(50):
            assert 1.8 <= calculate_delay(1, config) <= 2.2

    def test_custom_base_respects_cap(self):
        config = RetryConfig(base_delay=0.5, max_delay=5.0, exponential_base=3.0, jitter=False)

        assert [calculate_delay(attempt, config) for attempt in (1, 2, 3, 4)] == [0.5, 1.5, 4.5, 5.0]

    def test_zero_delay(self):
        assert calculate_delay(4, RetryConfig(base_delay=0.0)) == 0.0
