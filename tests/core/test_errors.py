import pytest

from cloudstrap.config.models import RetryPolicy
from cloudstrap.errors import ExternalCallError, MissingPrerequisiteError, is_transient, redact
from cloudstrap.execution.retry import call_with_retry, is_retriable
from cloudstrap.secrets import RemoteSecret, register, scrub


@pytest.mark.parametrize("text", [
    "curl: (28) Operation timed out after 30001 milliseconds",
    "curl: (6) Could not resolve host: get.k3s.io",
    "ssh: connect to host 10.0.0.5 port 2222: Connection refused",
    "(TooManyRequests) 429 rate limited",
    "Temporary failure in name resolution",
    "ERROR: Operation returned an invalid status code 503",
    "< HTTP/1.1 502 Bad Gateway",
    "The server responded with (500)",
])
def test_transient_failures_are_detected(text):
    assert is_transient(text)
    assert ExternalCallError("curl", 1, text).retriable


@pytest.mark.parametrize("text", [
    "(InvalidParameter) The image was not found",
    "(QuotaExceeded) Operation could not be completed as it results in exceeding approved quota",
    "E: Unable to locate package docker-ce",
    "",
])
def test_permanent_failures_are_not_retriable(text):
    assert not ExternalCallError("az vm create", 1, text).retriable


def test_numbers_in_a_quota_error_do_not_make_it_transient():
    stderr = (
        "(QuotaExceeded) Operation could not be completed as it results in exceeding approved "
        "standardESv5Family Cores quota. Location: eastus, Current Limit: 500, "
        "Current Usage: 496, Additional Required: 8, (Minimum) New Limit Required: 504."
    )
    assert not ExternalCallError("az vm create", 1, stderr).retriable
    assert not is_transient("Disk size 500 GB is above the image size")


def test_permanent_markers_win_over_transient_wording():
    assert not is_transient("(AuthorizationFailed) request timed out while checking access")


def test_external_call_error_message_uses_last_stderr_line():
    exc = ExternalCallError("az group create", 3, "WARNING: noise\nERROR: denied\n")
    assert str(exc) == "`az group create` failed (rc=3): ERROR: denied"
    assert ExternalCallError("x", 1, retriable=True).retriable


def test_redact_replaces_values():
    assert redact("token=abc user=me", ["abc", "", "me"]) == "token=*** user=***"


def test_remote_secret_redacts_the_token_only():
    s = RemoteSecret.from_env("GHUsername", "CR_PAT", environ={"GHUsername": "octo-redact", "CR_PAT": "ghp_redact_me"})
    assert "ghp_redact_me" not in repr(s)
    assert "octo-redact" not in repr(s)
    assert scrub("cloning with ghp_redact_me as octo-redact") == "cloning with *** as octo-redact"
    assert scrub("/home/octo-redact/Downloads/demo1-key") == "/home/octo-redact/Downloads/demo1-key"
    assert s.as_env() == {"GHUsername": "octo-redact", "CR_PAT": "ghp_redact_me"}


def test_remote_secret_requires_both_values():
    with pytest.raises(MissingPrerequisiteError) as ei:
        RemoteSecret.from_env("GHUsername", "CR_PAT", environ={"GHUsername": "octo"})
    assert ei.value.missing == ["env:CR_PAT"]


def test_scrub_uses_registered_values():
    register("hunter2-registered")
    assert scrub("pw hunter2-registered") == "pw ***"


# ----------------- retry -----------------

def test_call_with_retry_retries_transient_then_succeeds():
    sleeps, retries = [], []
    outcomes = [ExternalCallError("curl", 7, "curl: (7) Failed to connect"), "ok"]

    def fn():
        o = outcomes.pop(0)
        if isinstance(o, Exception):
            raise o
        return o

    result = call_with_retry(
        fn,
        RetryPolicy(attempts=3, backoff_seconds=1.5),
        on_retry=lambda a, e, d: retries.append((a, d)),
        sleep=sleeps.append,
    )
    assert result == "ok"
    assert retries == [(1, 1.5)]
    assert sleeps == [1.5]


def test_call_with_retry_gives_up_after_attempts():
    calls = []

    def fn():
        calls.append(1)
        raise ExternalCallError("curl", 28, "timed out")

    with pytest.raises(ExternalCallError):
        call_with_retry(fn, RetryPolicy(attempts=3), sleep=lambda s: None)
    assert len(calls) == 3


def test_call_with_retry_does_not_retry_permanent_errors():
    calls = []

    def fn():
        calls.append(1)
        raise ExternalCallError("az vm create", 1, "(InvalidParameter) bad image")

    with pytest.raises(ExternalCallError):
        call_with_retry(fn, RetryPolicy(attempts=5), sleep=lambda s: None)
    assert len(calls) == 1


def test_only_external_call_errors_are_retriable():
    assert not is_retriable(ValueError("timed out"))
    assert is_retriable(ExternalCallError("x", 1, "timed out"))
