import pytest

from aggregation import (
    adjust_attendance_days,
    attendance_percentage,
    average_days,
    average_marks,
    average_percentage,
    clamp_marks,
    default_attendance_days,
    department_structure,
    marks_percentage,
    round_half_up,
    search_rows,
    status_attendance_percentage,
)


def test_attendance_percentage_counts_od_as_attended():
    assert attendance_percentage(18, 1, 22) == 86


def test_attendance_percentage_zero_working_days_is_zero():
    assert attendance_percentage(0, 0, 0) == 0


def test_round_half_up_rounds_halves_away_from_zero():
    assert round_half_up(2.5) == 3
    assert round_half_up(2.49) == 2


def test_status_attendance_percentage():
    assert status_attendance_percentage(["present", "od", "absent"]) == 67
    assert status_attendance_percentage([]) == 0


def test_average_marks_rounds_to_one_decimal():
    assert average_marks([42, 38, 45]) == 41.7
    assert average_marks([]) == 0


def test_marks_and_average_percentages():
    assert marks_percentage(45, 50) == 90
    assert marks_percentage(10, 0) == 0
    assert average_percentage([90, 80, 75]) == 82
    assert average_days([18, 19, 20]) == 19


@pytest.mark.parametrize("value,expected", [(120, 100), (-5, 0), (64, 64)])
def test_clamp_marks(value, expected):
    assert clamp_marks(value, 100) == expected


def test_default_attendance_days_floors_each_share():
    assert default_attendance_days(22) == {"present_days": 17, "absent_days": 3, "od_days": 1}


def test_adjust_present_days_trims_absent_days():
    row = {"present_days": 17, "absent_days": 3, "od_days": 1}
    updated = adjust_attendance_days(row, "present_days", 20, 22)
    assert updated == {"present_days": 20, "absent_days": 1, "od_days": 1}
    assert row["present_days"] == 17


def test_adjust_absent_and_od_days_trim_present_days():
    row = {"present_days": 17, "absent_days": 3, "od_days": 1}
    assert adjust_attendance_days(row, "absent_days", 10, 22)["present_days"] == 11
    assert adjust_attendance_days(row, "od_days", 5, 22)["present_days"] == 14


def test_adjust_never_goes_negative():
    row = {"present_days": 17, "absent_days": 3, "od_days": 1}
    assert adjust_attendance_days(row, "present_days", 22, 22)["absent_days"] == 0


def test_adjust_rejects_unknown_field():
    with pytest.raises(ValueError):
        adjust_attendance_days({"present_days": 1, "absent_days": 0, "od_days": 0}, "late_days", 1, 5)


def test_search_rows_is_case_insensitive_substring_match():
    rows = [
        {"name": "John Doe", "email": "john@example.com", "roll_number": "IT2023001"},
        {"name": "Jane Smith", "email": "jane@example.com", "roll_number": "IT2023002"},
    ]
    assert search_rows(rows, "JOHN", ["name", "email", "roll_number"]) == [rows[0]]
    assert search_rows(rows, "2023002", ["name", "email", "roll_number"]) == [rows[1]]
    assert search_rows(rows, "  ", ["name"]) == rows
    assert search_rows(rows, "nobody", ["name"]) == []


def test_department_structure_groups_by_year_in_first_seen_order():
    counts = [
        {"year": 2, "section": "A", "student_count": 30},
        {"year": 1, "section": "A", "student_count": 28},
        {"year": 2, "section": "B", "student_count": None},
    ]
    assert department_structure(counts) == [
        {"year": "Year 2", "sections": [{"section": "A", "student_count": 30}, {"section": "B", "student_count": 0}]},
        {"year": "Year 1", "sections": [{"section": "A", "student_count": 28}]},
    ]
