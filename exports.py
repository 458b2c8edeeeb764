import csv
from datetime import date
from io import StringIO

from aggregation import attendance_percentage, marks_percentage

ATTENDANCE_HEADERS = [
    'Month', 'Year', 'Class', 'Subject', 'Working Days',
    'Present Days', 'Absent Days', 'OD Days', 'Attendance %',
]
MARKS_HEADERS = ['Date', 'Class', 'Subject', 'Exam Type', 'Total Marks', 'Average Marks', 'Percentage']


def _write_csv(headers, rows):
    output = StringIO()
    writer = csv.writer(output, lineterminator='\n')
    writer.writerow(headers)
    writer.writerows(rows)
    return output.getvalue()


def build_attendance_csv(records):
    """One line per monthly attendance record, after the header."""
    rows = []
    for record in records:
        pct = attendance_percentage(record['present_days'], record['od_days'], record['working_days'])
        rows.append([
            record['month'],
            record['year'],
            record['class'],
            record['subject'],
            record['working_days'],
            record['present_days'],
            record['absent_days'],
            record['od_days'],
            f'{pct}%',
        ])
    return _write_csv(ATTENDANCE_HEADERS, rows)


def build_marks_csv(records):
    rows = []
    for record in records:
        pct = marks_percentage(record['average_marks'], record['total_marks'])
        rows.append([
            record['date'],
            record['class'],
            record['subject'],
            record['exam_type'],
            record['total_marks'],
            record['average_marks'],
            f'{pct}%',
        ])
    return _write_csv(MARKS_HEADERS, rows)


def export_filename(prefix, today=None):
    today = today or date.today()
    return f'{prefix}_{today.isoformat()}.csv'
