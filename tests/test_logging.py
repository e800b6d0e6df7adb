import logging

from logging_config import RequestContextFilter, bind_user, reset_context, set_context


def make_record():
    return logging.LogRecord("orders", logging.INFO, __file__, 1, "hello", None, None)


def test_filter_without_request():
    record = make_record()
    assert RequestContextFilter().filter(record)
    assert record.request_id == "-"
    assert record.user_id == "-"


def test_filter_reads_bound_context():
    token = set_context(request_id="abc123", path="/api/orders")
    try:
        bind_user("u-1")
        record = make_record()
        RequestContextFilter().filter(record)
    finally:
        reset_context(token)

    assert record.request_id == "abc123"
    assert record.user_id == "u-1"
    assert record.path == "/api/orders"
