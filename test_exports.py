import csv
from datetime import date
from io import StringIO

from exports import ATTENDANCE_HEADERS, build_attendance_csv, build_marks_csv, export_filename


def attendance_record(**overrides):
    record = {
        "month": "March",
        "year": "2024",
        "class": "Second Year A",
        "subject": "Data Structures",
        "working_days": 22,
        "present_days": 18,
        "absent_days": 3,
        "od_days": 1,
    }
    record.update(overrides)
    return record


def test_attendance_csv_has_header_plus_one_line_per_record():
    content = build_attendance_csv([attendance_record(), attendance_record(month="April")])
    lines = content.strip("\n").split("\n")
    assert len(lines) == 3
    assert lines[0] == ",".join(ATTENDANCE_HEADERS)
    assert lines[1].endswith(",86%")


def test_attendance_csv_quotes_embedded_commas():
    content = build_attendance_csv([attendance_record(subject="Networks, Advanced")])
    rows = list(csv.reader(StringIO(content)))
    assert rows[1][3] == "Networks, Advanced"
    assert len(rows[1]) == len(ATTENDANCE_HEADERS)


def test_marks_csv_percentage_uses_average_over_total():
    record = {
        "date": "2024-03-10",
        "class": "Second Year A",
        "subject": "Algorithms",
        "exam_type": "CAT I",
        "total_marks": 50,
        "average_marks": 41.7,
    }
    rows = list(csv.reader(StringIO(build_marks_csv([record]))))
    assert rows[0][-1] == "Percentage"
    assert rows[1] == ["2024-03-10", "Second Year A", "Algorithms", "CAT I", "50", "41.7", "83%"]


def test_empty_export_is_header_only():
    assert build_marks_csv([]).count("\n") == 1


def test_export_filename_uses_iso_date():
    assert export_filename("attendance_records", date(2024, 3, 5)) == "attendance_records_2024-03-05.csv"
