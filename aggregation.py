"""
Derived statistics over query results: attendance percentages, mark
averages, per-year class rollups and the search filter used by every
listing.
"""

import math
from decimal import Decimal, ROUND_HALF_UP

ATTENDANCE_FIELDS = ('present_days', 'absent_days', 'od_days')


def round_half_up(value):
    """Round to the nearest integer, halves going up (2.5 -> 3)."""
    return int(math.floor(value + 0.5))


def _round_one_decimal(value):
    return float(Decimal(repr(value)).quantize(Decimal('0.1'), rounding=ROUND_HALF_UP))


def attendance_percentage(present_days, od_days, working_days):
    """OD days count as attended."""
    if not working_days:
        return 0
    return round_half_up((present_days + od_days) / working_days * 100)


def status_attendance_percentage(statuses):
    statuses = list(statuses)
    if not statuses:
        return 0
    attended = sum(1 for status in statuses if status in ('present', 'od'))
    return round_half_up(attended / len(statuses) * 100)


def average_marks(marks):
    marks = [m for m in marks if m is not None]
    if not marks:
        return 0
    return _round_one_decimal(sum(marks) / len(marks))


def marks_percentage(marks, total_marks):
    if not total_marks:
        return 0
    return round_half_up(marks / total_marks * 100)


def average_percentage(percentages):
    percentages = list(percentages)
    if not percentages:
        return 0
    return round_half_up(sum(percentages) / len(percentages))


def average_days(values):
    values = list(values)
    if not values:
        return 0
    return round_half_up(sum(values) / len(values))


def clamp_marks(value, total_marks):
    return min(max(0, value), total_marks)


def default_attendance_days(working_days):
    """Initial per-student split offered when a class is first selected."""
    return {
        'present_days': math.floor(working_days * 0.8),
        'absent_days': math.floor(working_days * 0.15),
        'od_days': math.floor(working_days * 0.05),
    }


def adjust_attendance_days(row, field, value, working_days):
    """Set one day count and shrink its partner so the total fits working_days.

    Changing present days trims absent days; changing absent or OD days
    trims present days. Returns a new dict.
    """
    if field not in ATTENDANCE_FIELDS:
        raise ValueError(f"Unknown attendance field: {field}")
    updated = dict(row)
    updated[field] = value
    if field == 'present_days':
        updated['absent_days'] = max(0, min(row['absent_days'], working_days - value - row['od_days']))
    elif field == 'absent_days':
        updated['present_days'] = max(0, min(row['present_days'], working_days - value - row['od_days']))
    else:
        updated['present_days'] = max(0, min(row['present_days'], working_days - value - row['absent_days']))
    return updated


def search_rows(rows, term, fields):
    """Case-insensitive substring match of term against any of fields."""
    needle = (term or '').strip().lower()
    if not needle:
        return list(rows)
    matched = []
    for row in rows:
        for field in fields:
            value = row.get(field)
            if value is not None and needle in str(value).lower():
                matched.append(row)
                break
    return matched


def department_structure(class_counts):
    """Group per-class student counts under 'Year N', keeping first-seen order."""
    grouped = {}
    for cls in class_counts:
        year_key = f"Year {cls['year']}"
        grouped.setdefault(year_key, []).append({
            'section': cls['section'],
            'student_count': cls.get('student_count') or 0,
        })
    return [{'year': year, 'sections': sections} for year, sections in grouped.items()]
