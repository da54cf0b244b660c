"""Tests for the retry delays chosen by the error policy."""

import pytest

from stellar_operator.controller.error_policy import Action, ErrorPolicy
from stellar_operator.controller.errors import (
    CleanupIncomplete,
    ResourceConflict,
    TransientApiError,
    ValidationError,
)


class TestErrorPolicy:
    def test_validation_errors_retry_slowly(self):
        assert ErrorPolicy().on_error("default/a", ValidationError("bad")) == Action.requeue(60.0)

    @pytest.mark.parametrize(
        "error",
        [
            TransientApiError("unavailable", status=503),
            ResourceConflict("conflict"),
            CleanupIncomplete("incomplete", ["storage_claim"]),
            RuntimeError("unexpected"),
        ],
    )
    def test_everything_else_retries_quickly(self, error):
        assert ErrorPolicy().on_error("default/a", error).requeue_after == 15.0

    def test_delays_are_configurable(self):
        policy = ErrorPolicy(validation_retry=120, transient_retry=5)
        assert policy.on_error("k", ValidationError("bad")).requeue_after == 120
        assert policy.on_error("k", TransientApiError("x")).requeue_after == 5


class TestAction:
    def test_await_change_has_no_delay(self):
        assert Action.await_change().requeue_after is None

    def test_resource_conflict_is_a_transient_error(self):
        error = ResourceConflict("exists")
        assert isinstance(error, TransientApiError)
        assert error.status == 409
        assert error.retriable is True
