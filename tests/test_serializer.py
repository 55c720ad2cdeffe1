"""Tests for snapshot payload rendering."""

import json

from proc_manager.serializer import (
    error_payload,
    escape_string,
    serialize_snapshot,
    terminated_payload,
)
from tests.conftest import make_record, make_snapshot


def test_exact_layout():
    payload = serialize_snapshot(make_snapshot(make_record(pid=1), user="alice"))
    assert payload == (
        b'{"current_user":"alice","count":1,"processes":['
        b'{"pid":1,"name":"init","user":"root","state":"S","vmsize_kb":1000,'
        b'"vmrss_kb":500,"cpu_percent":0.00,"mem_percent":0.00}]}'
    )


def test_empty_snapshot():
    assert serialize_snapshot(make_snapshot()) == (
        b'{"current_user":"alice","count":0,"processes":[]}'
    )


def test_percentages_have_two_decimals():
    payload = serialize_snapshot(
        make_snapshot(make_record(cpu_percent=1.5, mem_percent=100 / 3))
    )
    assert b'"cpu_percent":1.50' in payload
    assert b'"mem_percent":33.33' in payload


def test_processes_in_pid_order():
    snapshot = make_snapshot(*(make_record(pid=pid) for pid in (1000, 42, 3, 7)))
    data = json.loads(serialize_snapshot(snapshot))
    assert [p["pid"] for p in data["processes"]] == [3, 7, 42, 1000]
    assert data["count"] == 4


def test_escape_string():
    assert escape_string('a"b') == 'a\\"b'
    assert escape_string("a\\b") == "a\\\\b"
    assert escape_string("a\nb") == "a\\nb"
    assert escape_string("a\tb") == "a\tb"


def test_escaped_name_round_trips():
    """A strict JSON parser recovers names with quotes, backslashes and newlines."""
    name = 'we"ird\\na\nme'
    data = json.loads(serialize_snapshot(make_snapshot(make_record(name=name, owner='o"wn'))))
    assert data["processes"][0]["name"] == name
    assert data["processes"][0]["user"] == 'o"wn'


def test_other_control_characters_pass_through():
    payload = serialize_snapshot(make_snapshot(make_record(name="tab\there")))
    assert b"tab\there" in payload
    assert json.loads(payload, strict=False)["processes"][0]["name"] == "tab\there"


def test_raw_bytes_pass_through():
    name = b"caf\xe9".decode("utf-8", "surrogateescape")
    payload = serialize_snapshot(make_snapshot(make_record(name=name)))
    assert b'"name":"caf\xe9"' in payload


def test_payload_larger_than_initial_buffer():
    records = [make_record(pid=pid, name="x" * 50) for pid in range(1, 501)]
    data = json.loads(serialize_snapshot(make_snapshot(*records)))
    assert data["count"] == 500
    assert len(data["processes"]) == 500


def test_requesting_user_escaped():
    data = json.loads(serialize_snapshot(make_snapshot(user='a"b')))
    assert data["current_user"] == 'a"b'


def test_error_payload():
    assert json.loads(error_payload("Not found")) == {"error": "Not found"}
    assert json.loads(error_payload("kill failed", errno=1, message="nope")) == {
        "error": "kill failed",
        "errno": 1,
        "message": "nope",
    }


def test_terminated_payload():
    assert json.loads(terminated_payload(42)) == {"status": "terminated", "pid": 42}
