# tests/test_health.py
import pytest

from modules.listing_watch.lib.errors import (
    AccessDenied,
    Cause,
    DataShapeError,
    RepositoryError,
    TransientNetworkError,
    category_name,
    classify_cause,
)
from modules.listing_watch.lib.health import (
    HealthState,
    IterationTracker,
    build_iteration_alert,
    health_state,
)
from modules.listing_watch.lib.models import ProviderStatus


# ----------------------------------------------------------------------
# Cause classification
# ----------------------------------------------------------------------
@pytest.mark.parametrize(
    "message,cause",
    [
        ("Timeout 30000ms exceeded", Cause.TIMEOUT),
        ("HTTP 403: Forbidden", Cause.FORBIDDEN),
        ("429 Too Many Requests", Cause.RATE_LIMITED),
        ("Please solve the CAPTCHA", Cause.CAPTCHA),
        ("waiting for selector '.card' failed", Cause.SELECTOR),
        ("net::ERR_NAME_NOT_RESOLVED", Cause.NAVIGATION),
        ("Request blocked", Cause.ACCESS_DENIED),
        ("something odd", Cause.UNKNOWN),
    ],
)
def test_classify_cause_by_message(message, cause):
    assert classify_cause(RuntimeError(message)) is cause


def test_classify_cause_first_match_wins():
    # both "timeout" and "403" appear; timeout is checked first
    assert classify_cause("timeout after 403") is Cause.TIMEOUT


def test_data_shape_error_without_keywords_is_selector():
    assert classify_cause(DataShapeError("zero results")) is Cause.SELECTOR


def test_category_name_prefers_explicit_subclass():
    assert category_name(AccessDenied("nope")) == "AccessDenied"
    assert category_name(RepositoryError("disk")) == "RepositoryError"
    assert category_name(RuntimeError("Timeout")) == "TransientNetworkError"
    assert category_name(RuntimeError("???")) == "ScrapeError"


# ----------------------------------------------------------------------
# Provider health
# ----------------------------------------------------------------------
@pytest.mark.parametrize(
    "errors,state",
    [(0, HealthState.HEALTHY), (1, HealthState.DEGRADED), (2, HealthState.DEGRADED), (3, HealthState.UNHEALTHY), (9, HealthState.UNHEALTHY)],
)
def test_health_state_thresholds(errors, state):
    assert health_state(errors) is state


def test_provider_status_zero_results_is_unhealthy():
    assert ProviderStatus.build("P", 3, 0).healthy is True
    assert ProviderStatus.build("P", 0, 0).healthy is False
    assert ProviderStatus.build("P", 3, 1).healthy is False


# ----------------------------------------------------------------------
# ScrapeRunner via the stub provider
# ----------------------------------------------------------------------
def test_runner_counts_failures_and_resets_on_success(stub_provider_cls, make_raw, read_log):
    provider = stub_provider_cls("Stub")(
        script=[TransientNetworkError("Timeout"), RuntimeError("HTTP 403"), [make_raw("1"), make_raw("2")]]
    )
    assert provider.scrape(10) == []
    assert provider.consecutive_errors == 1
    assert provider.last_error.cause is Cause.TIMEOUT

    assert provider.scrape(10) == []
    assert provider.consecutive_errors == 2

    listings = provider.scrape(10)
    assert [l.id for l in listings] == ["1", "2"]
    assert provider.consecutive_errors == 0
    assert provider.last_error is None

    errors = read_log("error")
    assert [r["cause"] for r in errors] == ["timeout", "forbidden"]
    assert errors[1]["consecutive_errors"] == 2
    assert errors[0]["category"] == "TransientNetworkError"


@pytest.mark.parametrize(
    "error",
    [AccessDenied("HTTP 403: Forbidden"), TransientNetworkError("Timeout 30000ms exceeded"), DataShapeError("no cards")],
)
def test_every_failure_category_counts_once_per_pass(stub_provider_cls, error):
    provider = stub_provider_cls("Stub")(script=[error])
    seen = []
    for _ in range(3):
        provider.scrape(10)
        seen.append(provider.consecutive_errors)
    assert seen == [1, 2, 3]
    assert health_state(provider.consecutive_errors) is HealthState.UNHEALTHY


def test_runner_empty_fetch_is_a_failure(stub_provider_cls):
    provider = stub_provider_cls("Stub")(script=[[]])
    assert provider.scrape(10) == []
    assert provider.consecutive_errors == 1
    assert provider.last_error.cause is Cause.SELECTOR


def test_runner_filters_invalid_and_truncates(stub_provider_cls, make_raw):
    rows = [make_raw("1"), {"title": "no link"}, make_raw("2"), make_raw("3")]
    provider = stub_provider_cls("Stub")(script=[rows])
    listings = provider.scrape(2)
    assert [l.id for l in listings] == ["1", "2"]
    assert all(l.source == "Stub" for l in listings)


def test_runner_reraises_infrastructure_errors(stub_provider_cls):
    provider = stub_provider_cls("Stub")(script=[RepositoryError("database is locked")])
    with pytest.raises(RepositoryError):
        provider.scrape(10)
    assert provider.consecutive_errors == 0


def test_disabled_provider_returns_nothing(stub_provider_cls, make_raw):
    provider = stub_provider_cls("Stub")(url="  ", script=[[make_raw("1")]])
    assert provider.is_enabled() is False
    assert provider.scrape(10) == []
    assert provider.calls == 0


# ----------------------------------------------------------------------
# Iteration tracker
# ----------------------------------------------------------------------
def _failing_iteration(tracker, *pairs):
    tracker.start_iteration()
    for provider, user in pairs:
        tracker.record_error(provider, user)
    return tracker.end_iteration()


def test_alert_sent_once_at_threshold(tracker, transport):
    results = [_failing_iteration(tracker, ("Immowelt", "u1")) for _ in range(6)]
    assert results[:3] == [None, None, None]
    assert results[3] is not None
    assert results[4:] == [None, None]
    assert tracker.consecutive_failed_iterations == 6
    assert len(transport.sent) == 1
    assert "4 consecutive iterations with errors." in transport.sent[0]


def test_clean_iteration_resets_streak(tracker, transport):
    for _ in range(4):
        _failing_iteration(tracker, ("P", "u1"))
    assert len(transport.sent) == 1

    tracker.start_iteration()
    assert tracker.end_iteration() is None
    assert tracker.consecutive_failed_iterations == 0
    assert tracker.notified_for_current_streak is False

    for _ in range(4):
        _failing_iteration(tracker, ("P", "u1"))
    assert len(transport.sent) == 2


def test_disabled_alerts_still_count(alerts, transport):
    tracker = IterationTracker(alerts, alerts_enabled=False)
    for _ in range(5):
        assert _failing_iteration(tracker, ("P", "u1")) is None
    assert tracker.consecutive_failed_iterations == 5
    assert transport.sent == []


def test_errors_dedupe_users_and_default_unknown(tracker):
    tracker.start_iteration()
    tracker.record_error("Immowelt", "u1")
    tracker.record_error("Immowelt", "u1")
    tracker.record_error("Immonet", None)
    assert tracker.errors_snapshot() == {"Immowelt": {"u1"}, "Immonet": {"unknown"}}


def test_record_error_with_error_logs_scraping_error(tracker, read_log):
    tracker.start_iteration()
    tracker.record_error("Immowelt", "u1", RuntimeError("boom"))
    (record,) = read_log("error")
    assert record["event"] == "SCRAPING_ERROR"
    assert record["provider"] == "Immowelt"
    assert record["user_id"] == "u1"


def test_build_iteration_alert_message():
    details = build_iteration_alert(4, {"Immowelt": {"u1", "u2"}, "Immonet": {"u2"}})
    assert details.provider == "Multiple"
    assert details.source == "Scraper"
    assert "2 users affected in last iteration." in details.message
    assert "By provider: Immowelt: 2, Immonet: 1" in details.message
