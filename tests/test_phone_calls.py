from __future__ import annotations

from datetime import datetime, timezone

import pytest

from utils.calls import DEFAULT_CALLER_NAME, caller_group, resolve_caller_name, time_greeting
from utils.phone import normalize_us_number_to_e164
from utils.sms import build_thread_text, merge_and_sort_messages

PRIMARY = frozenset({"+12065550100"})
SECONDARY = frozenset({"+12065550111"})


@pytest.mark.parametrize(
    ("raw", "expected"),
    [
        ("(206) 555-0100", "+12065550100"),
        ("206.555.0100", "+12065550100"),
        ("1-206-555-0100", "+12065550100"),
        ("+44 20 7946 0958", "+442079460958"),
        ("", None),
        (None, None),
        ("ext.", None),
    ],
)
def test_normalize_us_number_to_e164(raw, expected):
    assert normalize_us_number_to_e164(raw) == expected


def test_resolve_caller_name_prefers_primary():
    name = resolve_caller_name(
        "+12065550100",
        primary_callers=PRIMARY,
        secondary_callers=SECONDARY,
        primary_name="Ada",
        secondary_name="Grace",
    )
    assert name == "Ada"


def test_resolve_caller_name_falls_back_without_configured_name():
    name = resolve_caller_name(
        "+12065550111",
        primary_callers=PRIMARY,
        secondary_callers=SECONDARY,
        primary_name="Ada",
        secondary_name="  ",
    )
    assert name == DEFAULT_CALLER_NAME


def test_caller_group():
    assert caller_group("+12065550100", primary_callers=PRIMARY, secondary_callers=SECONDARY) == "primary"
    assert caller_group("+12065550111", primary_callers=PRIMARY, secondary_callers=SECONDARY) == "secondary"
    assert caller_group("+19995550000", primary_callers=PRIMARY, secondary_callers=SECONDARY) is None
    assert caller_group(None, primary_callers=PRIMARY, secondary_callers=SECONDARY) is None


@pytest.mark.parametrize(
    ("utc_hour", "expected"),
    [(16, "Good morning"), (21, "Good afternoon"), (3, "Good evening")],
)
def test_time_greeting_uses_local_hour(utc_hour, expected):
    # Los Angeles is UTC-7 in October.
    now = datetime(2026, 10, 19, utc_hour, 0, tzinfo=timezone.utc)
    assert time_greeting("America/Los_Angeles", now) == expected


def test_sms_thread_orders_newest_first_and_limits():
    inbound = [
        {"from": "+12065550100", "body": "first", "date_sent": datetime(2026, 3, 1, 8, 0)},
        {"from": "+12065550100", "body": "undated", "date_sent": None},
    ]
    outbound = [
        {"from": "+12065550199", "body": "reply", "date_created": datetime(2026, 3, 1, 8, 5, tzinfo=timezone.utc)},
    ]

    merged = merge_and_sort_messages(inbound, outbound)

    assert [message["body"] for message in merged] == ["reply", "first", "undated"]
    assert build_thread_text(merged, "+12065550100", limit=2) == (
        "Assistant [2026-03-01T08:05:00Z]: reply\nUser [2026-03-01T08:00:00Z]: first"
    )
