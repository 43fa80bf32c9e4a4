import asyncio

import pytest

from orchestration_service.classifier import classify, classify_with_rule
from orchestration_service.errors import ErrorKind, UnknownOperation, UpstreamError, ValidationRejected


@pytest.mark.parametrize("message", [
    "upstream request timeout: SD/SalesOrder/ExportSalesOrders",
    "Request timed out after 60s",
    "connection reset by peer",
    "Connection refused",
    "getaddrinfo ENOTFOUND erp.local",
    "Rate limit exceeded",
    "429 Too Many Requests",
])
def test_transient_messages_are_retriable(message):
    assert classify(Exception(message)) == ErrorKind.RETRIABLE


@pytest.mark.parametrize("message", [
    "Validation failed for field CustomerId",
    "Invalid date format",
    "ItemCode is required",
    "missing parameter: data",
    "Unauthorized",
    "Forbidden for WM/Common",
    "upstream authentication failed: invalid credentials",
])
def test_validation_and_auth_messages_are_fatal(message):
    assert classify(Exception(message)) == ErrorKind.FATAL


def test_unrecognised_message_defaults_to_retriable():
    assert classify_with_rule(Exception("something odd happened")) == ("default", ErrorKind.RETRIABLE)


def test_transport_code_wins_over_message():
    err = UpstreamError("opaque failure", code="ECONNRESET")
    assert classify_with_rule(err) == ("network", ErrorKind.RETRIABLE)


def test_http_status_is_used_when_message_is_silent():
    assert classify(UpstreamError("boom", status=429)) == ErrorKind.RETRIABLE
    assert classify(UpstreamError("boom", status=422)) == ErrorKind.FATAL
    assert classify(UpstreamError("boom", status=403)) == ErrorKind.FATAL


def test_timeout_exception_types_are_network():
    assert classify_with_rule(asyncio.TimeoutError()) == ("network", ErrorKind.RETRIABLE)
    assert classify(ConnectionResetError()) == ErrorKind.RETRIABLE


def test_policy_rejection_is_fatal_even_with_network_words():
    err = ValidationRejected("export_items", "parameter 'note' mentions a timeout")
    assert classify_with_rule(err) == ("policy", ErrorKind.FATAL)
    assert classify(UnknownOperation("nope")) == ErrorKind.FATAL


def test_classification_is_deterministic():
    err = Exception("Connection reset while reading response")
    assert {classify(err) for _ in range(20)} == {ErrorKind.RETRIABLE}
