import json
from datetime import timedelta

import pytest

from layersnap import timing
from layersnap.timing import TimedRun, Timer, format_duration


@pytest.mark.parametrize(
    "categories, category, wait, want",
    [
        ({}, "foo", 3.0, timedelta(seconds=3)),
        ({"foo": timedelta(seconds=4)}, "foo", 2.0, timedelta(seconds=6)),
    ],
    ids=["new category", "existing category"],
)
def test_start_stop(categories, category, wait, want):
    run = TimedRun(categories=categories, clock=lambda: wait)
    run.stop(Timer(category=category, start_time=0.0))
    assert run.categories[category] == want


def test_stop_accumulates_over_several_timers():
    readings = iter([1.0, 5.0])
    run = TimedRun(clock=lambda: next(readings))
    run.stop(Timer("a", 0.0))
    run.stop(Timer("a", 4.0))
    assert run.categories == {"a": timedelta(seconds=2)}


@pytest.mark.parametrize(
    "categories, want",
    [
        ({"foo": timedelta(seconds=3)}, "foo: 3s\n"),
        (
            {"foo": timedelta(seconds=3), "bar": timedelta(seconds=1)},
            "bar: 1s\nfoo: 3s\n",
        ),
        (
            {"foo": timedelta(seconds=3), "bar": timedelta(milliseconds=1)},
            "bar: 1ms\nfoo: 3s\n",
        ),
    ],
    ids=["single key", "two keys", "units"],
)
def test_summary(categories, want):
    assert TimedRun(categories=categories).summary() == want


def test_summary_of_empty_run():
    assert TimedRun().summary() == ""


def test_to_json_reports_nanoseconds():
    run = TimedRun(categories={"foo": timedelta(seconds=3)})
    assert json.loads(run.to_json()) == {"foo": 3_000_000_000}


@pytest.mark.parametrize(
    "delta, want",
    [
        (timedelta(), "0s"),
        (timedelta(seconds=3), "3s"),
        (timedelta(milliseconds=1), "1ms"),
        (timedelta(seconds=1, milliseconds=500), "1.5s"),
        (timedelta(hours=1), "1h0m0s"),
        (timedelta(microseconds=1500), "1.5ms"),
        (-timedelta(seconds=3), "-3s"),
    ],
)
def test_format_duration(delta, want):
    assert format_duration(delta) == want


def test_module_level_functions_use_default_run():
    timer = timing.start("module-level-category")
    assert timer.category == "module-level-category"
    timing.DEFAULT_RUN.stop(timer)
    assert "module-level-category: " in timing.summary()
    assert json.loads(timing.to_json())["module-level-category"] >= 0