import logging

from chatborg.log_util import RequestIdFilter, new_request_id, request_id_var


def make_record():
    return logging.LogRecord("chatborg", logging.INFO, __file__, 1, "hello", None, None)


def test_filter_outside_a_request():
    record = make_record()
    assert RequestIdFilter().filter(record) is True
    assert record.request_id == "-"


def test_filter_inside_a_request():
    token = request_id_var.set("abc123")
    try:
        record = make_record()
        RequestIdFilter().filter(record)
    finally:
        request_id_var.reset(token)

    assert record.request_id == "abc123"


def test_request_ids_are_short_and_unique():
    ids = {new_request_id() for _ in range(100)}
    assert len(ids) == 100
    assert all(len(i) == 12 for i in ids)
