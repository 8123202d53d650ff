import math
import os
import sys
from datetime import date

sys.path.append(os.path.dirname(os.path.dirname(__file__)))

from efficiency.aggregation import (
    aggregate,
    build_report_sections,
    by_date,
    by_date_and_shift,
    by_machine,
    compare_today_yesterday,
    machine_roster,
    rolling_summary,
    shift_weft_series,
    split_by_shift,
    summarize,
    window_dates,
)
from efficiency.models import Settings, Shift
from efficiency.sorting import DESCENDING, SortDescriptor


def _row(mc, total, run, weft=0, stops=0, day="2024-05-01", shift="Day", record_id=None):
    return {
        "id": record_id,
        "date": day,
        "shift": shift,
        "machine_number": mc,
        "weft_meter": weft,
        "stops": stops,
        "total_time": total,
        "run_time": run,
    }


def test_same_machine_records_aggregate_by_seconds():
    records = [
        _row("1", "10:00", "09:00", weft=100, stops=2),
        _row("1", "10:00", "08:00", weft=80, stops=5),
    ]

    result = aggregate(records, by_machine)["1"]

    assert result.total_seconds == 72000
    assert result.run_seconds == 61200
    assert math.isclose(result.efficiency_percent, 85.0)
    assert math.isclose(result.total_weft, 180)
    assert math.isclose(result.loss_total, 100 / 9 + 20)
    assert result.stops_total == 7
    assert result.record_count == 2


def test_group_efficiency_is_weighted_not_averaged():
    records = [_row("M", "02:00", "02:00"), _row("M", "00:10", "00:00")]

    result = summarize(records)

    assert math.isclose(result.efficiency_percent, 120 / 130 * 100)
    assert not math.isclose(result.efficiency_percent, 50.0)


def test_aggregate_with_keys_zero_fills_and_ignores_others():
    records = [_row("2", "01:00", "01:00", weft=10), _row("9", "01:00", "00:30")]

    totals = aggregate(records, by_machine, keys=["1", "2", "3"])

    assert list(totals) == ["1", "2", "3"]
    assert totals["1"].record_count == 0
    assert totals["1"].efficiency_percent == 0
    assert totals["2"].total_weft == 10
    assert "9" not in totals


def test_aggregate_without_keys_uses_first_appearance_order():
    records = [
        _row("1", "01:00", "01:00", day="2024-05-02", shift="Night"),
        _row("2", "01:00", "01:00", day="2024-05-01"),
        _row("3", "01:00", "01:00", day="2024-05-02", shift="Night"),
    ]

    assert list(aggregate(records, by_date)) == ["2024-05-02", "2024-05-01"]
    grouped = aggregate(records, by_date_and_shift)
    assert grouped[("2024-05-02", "Night")].record_count == 2


def test_empty_input_aggregates_to_zero():
    result = summarize([])

    assert result.total_seconds == 0
    assert result.efficiency_percent == 0
    assert aggregate([], by_machine) == {}


def test_window_dates_newest_first():
    assert window_dates("2024-05-03", 3) == [date(2024, 5, 3), date(2024, 5, 2), date(2024, 5, 1)]
    assert window_dates("2024-05-03", 0) == []
    assert window_dates(None, 3) == []


def test_rolling_summary_has_entry_for_every_day():
    records = [
        _row("1", "10:00", "09:00", weft=100, day="2024-05-09"),
        _row("1", "10:00", "05:00", weft=40, day="2024-05-05"),
        _row("1", "10:00", "05:00", weft=40, day="2024-04-01"),
    ]

    summaries = rolling_summary(records, date(2024, 5, 9), days=9)

    assert len(summaries) == 9
    assert summaries[0].date == date(2024, 5, 9)
    assert summaries[-1].date == date(2024, 5, 1)
    assert math.isclose(summaries[0].efficiency_percent, 90.0)
    assert summaries[1].total_weft == 0
    assert summaries[4].date == date(2024, 5, 5)
    assert summaries[4].total_weft == 40
    assert sum(item.total_weft for item in summaries) == 140


def test_machine_roster_from_settings():
    assert machine_roster(Settings(total_machines=3)) == ("1", "2", "3")
    assert machine_roster(Settings()) == ()
    assert machine_roster(None) == ()


def test_compare_today_yesterday_lists_full_roster():
    records = [
        _row("2", "10:00", "09:00", weft=90, day="2024-05-02"),
        _row("2", "10:00", "08:00", weft=80, day="2024-05-01"),
        _row("10", "10:00", "05:00", weft=50, day="2024-05-02"),
    ]

    comparisons = compare_today_yesterday(records, "2024-05-02", machine_roster(Settings(total_machines=3)))

    assert [item.machine_number for item in comparisons] == ["1", "2", "3"]
    idle = comparisons[0]
    assert idle.today.efficiency_percent == 0 and idle.yesterday.total_weft == 0
    second = comparisons[1].to_dict()
    assert second["today_weft"] == 90
    assert second["yesterday_weft"] == 80
    assert math.isclose(second["efficiency_change"], 10.0)


def test_compare_today_yesterday_without_roster_uses_recorded_machines():
    records = [
        _row("10", "10:00", "05:00", day="2024-05-02"),
        _row("2", "10:00", "05:00", day="2024-05-01"),
        _row("5", "10:00", "05:00", day="2024-04-20"),
    ]

    comparisons = compare_today_yesterday(records, date(2024, 5, 2))

    assert [item.machine_number for item in comparisons] == ["2", "10"]


def test_shift_weft_series_counts_non_day_as_night():
    records = [
        _row("1", "01:00", "01:00", weft=10, day="2024-05-02", shift="Day"),
        _row("2", "01:00", "01:00", weft=5, day="2024-05-02", shift="Night"),
        _row("3", "01:00", "01:00", weft=7, day="2024-05-02", shift="unknown"),
        _row("1", "01:00", "01:00", weft=3, day="2024-05-01", shift="Day"),
        _row("1", "01:00", "01:00", weft=99, day=None),
    ]

    points = [point.to_dict() for point in shift_weft_series(records)]

    assert points == [
        {"date": "2024-05-01", "Day": 3, "Night": 0.0},
        {"date": "2024-05-02", "Day": 10, "Night": 12},
    ]


def test_report_sections_newest_first_with_shift_then_machine_rows():
    records = [
        _row("10", "01:00", "01:00", day="2024-05-01", shift="Day", record_id="a"),
        _row("2", "01:00", "00:30", day="2024-05-01", shift="Night", record_id="b"),
        _row("2", "01:00", "01:00", day="2024-05-01", shift="Day", record_id="c"),
        _row("1", "01:00", "01:00", day="2024-05-03", shift="Day", record_id="d"),
        _row("1", "01:00", "01:00", day="", shift="Day", record_id="e"),
    ]

    sections = build_report_sections(records)

    assert [section.date for section in sections] == [date(2024, 5, 3), date(2024, 5, 1), None]
    assert [row.record.id for row in sections[1].rows] == ["c", "a", "b"]
    assert sections[1].totals.record_count == 3
    assert math.isclose(sections[1].totals.efficiency_percent, 2.5 / 3 * 100)


def test_split_by_shift_sorts_each_table():
    records = [
        _row("10", "10:00", "09:00", shift="Day"),
        _row("2", "10:00", "05:00", shift="Day"),
        _row("3", "10:00", "07:00", shift="Night"),
    ]

    tables = split_by_shift(records)
    assert [row.record.machine_number for row in tables.day.rows] == ["2", "10"]
    assert tables.night.shift is Shift.NIGHT
    assert tables.night.totals.record_count == 1

    by_efficiency = split_by_shift(records, SortDescriptor("efficiency_percent", DESCENDING))
    assert [row.record.machine_number for row in by_efficiency.day.rows] == ["10", "2"]

    payload = tables.to_dict()
    assert payload["day"]["shift"] == "Day"
    assert payload["day"]["totals"]["record_count"] == 2


def test_machine_roster_is_capped():
    roster = machine_roster(Settings(total_machines=10**9))

    assert len(roster) == 1000
    assert roster[-1] == "1000"
