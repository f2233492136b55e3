"""
Tests for retry helpers and the workflow node decorator.
"""

import pytest
from unittest.mock import Mock

from mat_curator.error_handling import (
    RetryConfig, ErrorContext, calculate_retry_delay, retry_with_backoff, handle_node_error,
    QuotaExhaustedError, CatalogAPIError,
)
from mat_curator.models import CurationState


class TestRetryWithBackoff:
    """Test cases for retry_with_backoff."""

    def setup_method(self):
        self.sleep = Mock()
        self.config = RetryConfig(max_attempts=3, base_delay=1.0, jitter=False)

    def test_retries_until_success(self):
        func = Mock(side_effect=[CatalogAPIError("flaky"), "ok"])
        func.__name__ = "fetch"
        wrapped = retry_with_backoff(self.config, exceptions=(CatalogAPIError,), sleep=self.sleep)(func)

        assert wrapped() == "ok"
        assert func.call_count == 2
        self.sleep.assert_called_once_with(1.0)

    def test_raises_last_exception(self):
        func = Mock(side_effect=CatalogAPIError("down"))
        func.__name__ = "fetch"
        context = ErrorContext("curate_target", "search", target="John Danaher")
        wrapped = retry_with_backoff(self.config, exceptions=(CatalogAPIError,), context=context,
                                     sleep=self.sleep)(func)

        with pytest.raises(CatalogAPIError):
            wrapped()
        assert func.call_count == 3

    def test_quota_exhaustion_never_retried(self):
        func = Mock(side_effect=QuotaExhaustedError())
        func.__name__ = "fetch"
        wrapped = retry_with_backoff(self.config, exceptions=(Exception,), sleep=self.sleep)(func)

        with pytest.raises(QuotaExhaustedError):
            wrapped()
        assert func.call_count == 1
        self.sleep.assert_not_called()

    def test_unlisted_exception_propagates(self):
        func = Mock(side_effect=KeyError("x"))
        func.__name__ = "fetch"
        wrapped = retry_with_backoff(self.config, exceptions=(CatalogAPIError,), sleep=self.sleep)(func)

        with pytest.raises(KeyError):
            wrapped()
        assert func.call_count == 1


class TestRetryDelay:
    """Backoff delay calculation."""

    def test_exponential_growth_and_cap(self):
        config = RetryConfig(base_delay=1.0, max_delay=5.0, jitter=False)

        assert calculate_retry_delay(1, config) == 0
        assert calculate_retry_delay(2, config) == 1.0
        assert calculate_retry_delay(3, config) == 2.0
        assert calculate_retry_delay(10, config) == 5.0

    def test_jitter_stays_close(self):
        config = RetryConfig(base_delay=10.0, jitter=True)
        delay = calculate_retry_delay(2, config)
        assert 9.0 <= delay <= 11.0


class TestErrorContext:

    def test_describe(self):
        context = ErrorContext("curate_target", "get_details", video_id="abc", target="Gordon Ryan")
        assert context.describe() == "[curate_target:get_details target=Gordon Ryan video=abc]"


class TestHandleNodeError:
    """Node decorator behaviour."""

    class FakeNode:
        @handle_node_error("fake")
        def ok(self, state):
            return {"next_index": state.next_index + 1}

        @handle_node_error("fake")
        def broken(self, state):
            raise RuntimeError("kaboom")

    def test_passes_updates_through(self):
        assert self.FakeNode().ok(CurationState()) == {"next_index": 1}

    def test_failure_becomes_fatal_error(self):
        state = CurationState(errors=["earlier"])

        updates = self.FakeNode().broken(state)

        assert updates["fatal_error"] == "RuntimeError: kaboom"
        assert updates["errors"][0] == "earlier"
        assert "kaboom" in updates["errors"][1]
