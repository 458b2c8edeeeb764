"""
Entity repositories for the school portal.

Each function takes a plain dict shaped like the submitting form and returns
a plain dict shaped like the table that lists it. Names typed by users
(class name, subject name, roll number) are resolved to row ids here. A
function that writes more than one table does so inside one
``db_connection(commit=True)`` block, so a failing step rolls back the
earlier ones.
"""

from concurrent.futures import ThreadPoolExecutor
from datetime import date, datetime
import logging

from aggregation import (
    average_days,
    average_marks,
    attendance_percentage,
    clamp_marks,
    default_attendance_days,
    marks_percentage,
    status_attendance_percentage,
)
from db import db_connection, db_execute

logger = logging.getLogger(__name__)

MONTHS = [
    'January', 'February', 'March', 'April', 'May', 'June',
    'July', 'August', 'September', 'October', 'November', 'December',
]
ATTENDANCE_STATUSES = ('present', 'absent', 'od')
COUNTED_TABLES = ('faculty', 'students', 'classes', 'subjects')


def format_date(value):
    if not value:
        return ''
    if isinstance(value, (date, datetime)):
        return value.strftime('%Y-%m-%d')
    return str(value)


def safe_int(value, default=0):
    try:
        return int(value)
    except (TypeError, ValueError):
        return default


def _lookup_id(c, table, column, value, label):
    db_execute(c, f'SELECT id FROM {table} WHERE {column} = ? LIMIT 1', (value,))
    row = c.fetchone()
    if not row:
        raise ValueError(f'{label} not found: {value}')
    return row['id']


class RecordNotFoundError(LookupError):
    pass


def _owned_row(c, table, record_id, faculty_id, columns='id'):
    """Fetch a row that belongs to faculty_id, or raise RecordNotFoundError."""
    db_execute(c, f'SELECT {columns} FROM {table} WHERE id = ? AND faculty_id = ?', (record_id, faculty_id))
    row = c.fetchone()
    if not row:
        raise RecordNotFoundError(f'Record not found: {record_id}')
    return row


def _ids_by_name(c, table, names, label):
    """Map each name to its row id; every name must exist."""
    names = [n for n in (names or []) if n]
    if not names:
        return {}
    db_execute(c, f'SELECT id, name FROM {table} WHERE name = ANY(?)', (list(names),))
    found = {row['name']: row['id'] for row in c.fetchall()}
    missing = [n for n in names if n not in found]
    if missing:
        raise ValueError(f"{label} not found: {', '.join(missing)}")
    return found


# ==================== FACULTY ====================

def _write_faculty_links(c, faculty_id, classes, subjects):
    classes = list(dict.fromkeys(n for n in (classes or []) if n))
    subjects = list(dict.fromkeys(n for n in (subjects or []) if n))
    class_ids = _ids_by_name(c, 'classes', classes, 'Class')
    for name in classes:
        db_execute(c, 'INSERT INTO faculty_classes (faculty_id, class_id) VALUES (?, ?)',
                   (faculty_id, class_ids[name]))
    subject_ids = _ids_by_name(c, 'subjects', subjects, 'Subject')
    for name in subjects:
        db_execute(c, 'INSERT INTO faculty_subjects (faculty_id, subject_id) VALUES (?, ?)',
                   (faculty_id, subject_ids[name]))


def _faculty_names(c, link_table, target_table, target_column, faculty_id):
    db_execute(
        c,
        f'''SELECT t.name
            FROM {link_table} l
            JOIN {target_table} t ON t.id = l.{target_column}
            WHERE l.faculty_id = ?
            ORDER BY t.name''',
        (faculty_id,),
    )
    return [row['name'] for row in c.fetchall()]


def get_faculty():
    """List faculty with the names of their classes and subjects."""
    with db_connection() as conn:
        c = conn.cursor()
        db_execute(c, 'SELECT id, user_id, name, email, contact, temp_password FROM faculty ORDER BY name')
        rows = c.fetchall()
        faculty = []
        for row in rows:
            faculty.append({
                'id': row['id'],
                'user_id': row['user_id'],
                'name': row['name'],
                'email': row['email'],
                'contact': row['contact'],
                'temp_password': row['temp_password'],
                'classes': _faculty_names(c, 'faculty_classes', 'classes', 'class_id', row['id']),
                'subjects': _faculty_names(c, 'faculty_subjects', 'subjects', 'subject_id', row['id']),
            })
    return faculty


def add_faculty_with_cursor(c, faculty, user_id=None, temp_password=None):
    db_execute(
        c,
        '''INSERT INTO faculty (user_id, name, email, contact, temp_password)
           VALUES (?, ?, ?, ?, ?)
           RETURNING id''',
        (user_id, faculty['name'], faculty['email'], faculty.get('contact', ''), temp_password),
    )
    faculty_id = c.fetchone()['id']
    _write_faculty_links(c, faculty_id, faculty.get('classes'), faculty.get('subjects'))
    return faculty_id


def add_faculty(faculty):
    with db_connection(commit=True) as conn:
        c = conn.cursor()
        faculty_id = add_faculty_with_cursor(c, faculty)
    return {'id': faculty_id, **faculty}


def update_faculty(faculty_id, faculty):
    with db_connection(commit=True) as conn:
        c = conn.cursor()
        db_execute(c, 'UPDATE faculty SET name = ?, email = ?, contact = ? WHERE id = ?',
                   (faculty['name'], faculty['email'], faculty.get('contact', ''), faculty_id))
        db_execute(c, 'DELETE FROM faculty_classes WHERE faculty_id = ?', (faculty_id,))
        db_execute(c, 'DELETE FROM faculty_subjects WHERE faculty_id = ?', (faculty_id,))
        _write_faculty_links(c, faculty_id, faculty.get('classes'), faculty.get('subjects'))
    return {'id': faculty_id, **faculty}


def delete_faculty(faculty_id):
    with db_connection(commit=True) as conn:
        c = conn.cursor()
        db_execute(c, 'DELETE FROM faculty_classes WHERE faculty_id = ?', (faculty_id,))
        db_execute(c, 'DELETE FROM faculty_subjects WHERE faculty_id = ?', (faculty_id,))
        db_execute(c, 'DELETE FROM faculty WHERE id = ?', (faculty_id,))
    return {'id': faculty_id}


def resolve_faculty_id(faculty_id, email=''):
    """Return a faculty id that exists, falling back to a lookup by email."""
    with db_connection() as conn:
        c = conn.cursor()
        if safe_int(faculty_id, None) is not None:
            db_execute(c, 'SELECT id FROM faculty WHERE id = ?', (safe_int(faculty_id),))
            row = c.fetchone()
            if row:
                return row['id']
        if not email:
            raise ValueError('Faculty ID not found. Please log out and log back in.')
        db_execute(c, 'SELECT id FROM faculty WHERE LOWER(email) = LOWER(?) LIMIT 1', (email,))
        row = c.fetchone()
    if not row:
        raise ValueError('Your faculty account is not properly set up. Please contact an administrator.')
    logger.info("Resolved faculty %s by email %s", row['id'], email)
    return row['id']


def get_faculty_workspace(faculty_id, working_days=None):
    """Classes, subjects and class rosters available to one faculty member.

    Every subject the faculty teaches is offered for every class they are
    linked to. With ``working_days`` each roster row also carries the
    default day split for a new monthly record.
    """
    with db_connection() as conn:
        c = conn.cursor()
        db_execute(
            c,
            '''SELECT cl.id, cl.name
               FROM faculty_classes fc
               JOIN classes cl ON cl.id = fc.class_id
               WHERE fc.faculty_id = ?
               ORDER BY cl.name''',
            (faculty_id,),
        )
        classes = c.fetchall()
        subjects = _faculty_names(c, 'faculty_subjects', 'subjects', 'subject_id', faculty_id)
        students = {}
        for cls in classes:
            db_execute(c, 'SELECT id, name, roll_number, email FROM students WHERE class_id = ? ORDER BY roll_number',
                       (cls['id'],))
            students[cls['name']] = [
                {'id': s['id'], 'name': s['name'], 'roll_number': s['roll_number'], 'email': s['email']}
                for s in c.fetchall()
            ]
    if working_days:
        defaults = default_attendance_days(working_days)
        for roster in students.values():
            for student in roster:
                student.update(defaults)
    class_names = [cls['name'] for cls in classes]
    return {
        'classes': class_names,
        'subjects': {name: list(subjects) for name in class_names},
        'students': students,
    }


# ==================== STUDENTS & PARENTS ====================

STUDENT_SELECT = '''SELECT s.id, s.user_id, s.name, s.email, s.roll_number, s.class_id,
                           cl.name AS class_name, s.department, s.semester, s.year, s.dob, s.mobile
                    FROM students s
                    JOIN classes cl ON cl.id = s.class_id'''


def _first_parent(c, student_id):
    db_execute(c, 'SELECT id, name, email, mobile, relation FROM parents WHERE student_id = ? ORDER BY id LIMIT 1',
               (student_id,))
    return c.fetchone()


def _student_row(c, row):
    parent = _first_parent(c, row['id']) or {}
    return {
        'id': row['id'],
        'name': row['name'],
        'email': row['email'],
        'roll_number': row['roll_number'],
        'class': row['class_name'],
        'department': row['department'],
        'semester': row['semester'],
        'year': row['year'],
        'dob': format_date(row['dob']),
        'mobile': row['mobile'],
        'parent_name': parent.get('name'),
        'parent_mobile': parent.get('mobile'),
        'parent_email': parent.get('email'),
        'relation': parent.get('relation'),
    }


def get_students():
    with db_connection() as conn:
        c = conn.cursor()
        db_execute(c, STUDENT_SELECT + ' ORDER BY s.roll_number')
        rows = c.fetchall()
        return [_student_row(c, row) for row in rows]


def get_students_for_class(class_name):
    with db_connection() as conn:
        c = conn.cursor()
        db_execute(c, STUDENT_SELECT + ' WHERE cl.name = ? ORDER BY s.roll_number', (class_name,))
        rows = c.fetchall()
        return [_student_row(c, row) for row in rows]


def get_student_profile(student_id):
    with db_connection() as conn:
        c = conn.cursor()
        db_execute(c, STUDENT_SELECT + ' WHERE s.id = ?', (student_id,))
        row = c.fetchone()
        if not row:
            return None
        profile = _student_row(c, row)
    profile['class_id'] = row['class_id']
    return profile


def _student_values(student, class_id):
    return (
        student['name'],
        student['email'],
        student['roll_number'],
        class_id,
        student['department'],
        safe_int(student.get('semester'), 1),
        safe_int(student.get('year'), 1),
        student.get('dob') or None,
        student.get('mobile') or '',
    )


def _parent_values(student):
    return (
        student['parent_name'],
        student['parent_email'],
        student.get('parent_mobile') or '',
        student.get('relation') or '',
    )


def _has_parent_details(student):
    return bool(student.get('parent_name') and student.get('parent_email'))


def add_student(student):
    with db_connection(commit=True) as conn:
        c = conn.cursor()
        class_id = _lookup_id(c, 'classes', 'name', student['class'], 'Class')
        db_execute(c, 'SELECT id FROM students WHERE roll_number = ?', (student['roll_number'],))
        if c.fetchone():
            raise ValueError(f"Roll number already exists: {student['roll_number']}")
        db_execute(
            c,
            '''INSERT INTO students
               (name, email, roll_number, class_id, department, semester, year, dob, mobile)
               VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
               RETURNING id''',
            _student_values(student, class_id),
        )
        student_id = c.fetchone()['id']
        if _has_parent_details(student):
            db_execute(
                c,
                '''INSERT INTO parents (student_id, name, email, mobile, relation)
                   VALUES (?, ?, ?, ?, ?)''',
                (student_id,) + _parent_values(student),
            )
    return {'id': student_id, **student}


def update_student(student_id, student):
    with db_connection(commit=True) as conn:
        c = conn.cursor()
        class_id = _lookup_id(c, 'classes', 'name', student['class'], 'Class')
        db_execute(c, 'SELECT id FROM students WHERE roll_number = ? AND id <> ?',
                   (student['roll_number'], student_id))
        if c.fetchone():
            raise ValueError(f"Roll number already exists: {student['roll_number']}")
        db_execute(
            c,
            '''UPDATE students
               SET name = ?, email = ?, roll_number = ?, class_id = ?, department = ?,
                   semester = ?, year = ?, dob = ?, mobile = ?
               WHERE id = ?''',
            _student_values(student, class_id) + (student_id,),
        )
        if _has_parent_details(student):
            parent = _first_parent(c, student_id)
            if parent:
                db_execute(c, 'UPDATE parents SET name = ?, email = ?, mobile = ?, relation = ? WHERE id = ?',
                           _parent_values(student) + (parent['id'],))
            else:
                db_execute(
                    c,
                    '''INSERT INTO parents (student_id, name, email, mobile, relation)
                       VALUES (?, ?, ?, ?, ?)''',
                    (student_id,) + _parent_values(student),
                )
    return {'id': student_id, **student}


def delete_student(student_id):
    """Delete a student after every row that references it."""
    with db_connection(commit=True) as conn:
        c = conn.cursor()
        for table in ('parents', 'attendance_records', 'student_attendance', 'marks', 'reports'):
            db_execute(c, f'DELETE FROM {table} WHERE student_id = ?', (student_id,))
        db_execute(c, 'DELETE FROM students WHERE id = ?', (student_id,))
    return {'id': student_id}


# ==================== CLASSES & SUBJECTS ====================

def get_classes():
    with db_connection() as conn:
        c = conn.cursor()
        db_execute(c, 'SELECT name FROM classes ORDER BY year, section')
        return [row['name'] for row in c.fetchall()]


def list_classes():
    with db_connection() as conn:
        c = conn.cursor()
        db_execute(c, 'SELECT id, name, year, section FROM classes ORDER BY year, section')
        rows = c.fetchall()
        classes = []
        for row in rows:
            db_execute(c, 'SELECT COUNT(*) AS total FROM students WHERE class_id = ?', (row['id'],))
            student_count = c.fetchone()['total']
            db_execute(
                c,
                '''SELECT f.name
                   FROM faculty_classes fc
                   JOIN faculty f ON f.id = fc.faculty_id
                   WHERE fc.class_id = ?
                   ORDER BY f.name''',
                (row['id'],),
            )
            classes.append({
                'id': row['id'],
                'name': row['name'],
                'year': row['year'],
                'section': row['section'],
                'student_count': student_count,
                'faculty': [f['name'] for f in c.fetchall()],
            })
    return classes


def add_class(cls):
    with db_connection(commit=True) as conn:
        c = conn.cursor()
        db_execute(c, 'INSERT INTO classes (name, year, section) VALUES (?, ?, ?) RETURNING id',
                   (cls['name'], safe_int(cls['year']), cls['section']))
        class_id = c.fetchone()['id']
    return {'id': class_id, 'name': cls['name'], 'year': safe_int(cls['year']), 'section': cls['section'],
            'student_count': 0, 'faculty': []}


def update_class(class_id, cls):
    with db_connection(commit=True) as conn:
        c = conn.cursor()
        db_execute(c, 'UPDATE classes SET name = ?, year = ?, section = ? WHERE id = ?',
                   (cls['name'], safe_int(cls['year']), cls['section'], class_id))
    return {'id': class_id, 'name': cls['name'], 'year': safe_int(cls['year']), 'section': cls['section']}


def delete_class(class_id):
    with db_connection(commit=True) as conn:
        c = conn.cursor()
        db_execute(c, 'DELETE FROM faculty_classes WHERE class_id = ?', (class_id,))
        db_execute(c, 'DELETE FROM classes WHERE id = ?', (class_id,))
    return {'id': class_id}


def set_class_faculty(class_id, faculty_ids):
    """Replace the faculty linked to a class."""
    with db_connection(commit=True) as conn:
        c = conn.cursor()
        db_execute(c, 'DELETE FROM faculty_classes WHERE class_id = ?', (class_id,))
        for faculty_id in faculty_ids:
            db_execute(c, 'INSERT INTO faculty_classes (faculty_id, class_id) VALUES (?, ?)',
                       (faculty_id, class_id))
    return {'id': class_id, 'faculty_ids': list(faculty_ids)}


def get_subjects():
    with db_connection() as conn:
        c = conn.cursor()
        db_execute(c, 'SELECT name FROM subjects ORDER BY semester, name')
        return [row['name'] for row in c.fetchall()]


def list_subjects():
    with db_connection() as conn:
        c = conn.cursor()
        db_execute(c, 'SELECT id, name, code, semester FROM subjects ORDER BY semester, name')
        return [dict(row) for row in c.fetchall()]


def add_subject(subject):
    with db_connection(commit=True) as conn:
        c = conn.cursor()
        db_execute(c, 'INSERT INTO subjects (name, code, semester) VALUES (?, ?, ?) RETURNING id',
                   (subject['name'], subject['code'], safe_int(subject['semester'])))
        subject_id = c.fetchone()['id']
    return {'id': subject_id, 'name': subject['name'], 'code': subject['code'],
            'semester': safe_int(subject['semester'])}


def update_subject(subject_id, subject):
    with db_connection(commit=True) as conn:
        c = conn.cursor()
        db_execute(c, 'UPDATE subjects SET name = ?, code = ?, semester = ? WHERE id = ?',
                   (subject['name'], subject['code'], safe_int(subject['semester']), subject_id))
    return {'id': subject_id, 'name': subject['name'], 'code': subject['code'],
            'semester': safe_int(subject['semester'])}


def delete_subject(subject_id):
    with db_connection(commit=True) as conn:
        c = conn.cursor()
        db_execute(c, 'DELETE FROM faculty_subjects WHERE subject_id = ?', (subject_id,))
        db_execute(c, 'DELETE FROM subjects WHERE id = ?', (subject_id,))
    return {'id': subject_id}


# ==================== ATTENDANCE ====================

def validate_student_days(student_attendance, working_days):
    for row in student_attendance:
        days = [safe_int(row.get(field), -1) for field in ('present_days', 'absent_days', 'od_days')]
        if min(days) < 0:
            raise ValueError(f"Day counts must be zero or more for student {row.get('id')}.")
        if sum(days) > working_days:
            raise ValueError(f"Day counts exceed {working_days} working days for student {row.get('id')}.")


def _attendance_averages(student_attendance):
    return (
        average_days(safe_int(s['present_days']) for s in student_attendance),
        average_days(safe_int(s['absent_days']) for s in student_attendance),
        average_days(safe_int(s['od_days']) for s in student_attendance),
    )


def month_start_date(month, year):
    if month not in MONTHS:
        raise ValueError(f'Unknown month: {month}')
    return date(safe_int(year), MONTHS.index(month) + 1, 1)


def get_attendance_records(faculty_id):
    """Monthly attendance records for a faculty member, newest first."""
    with db_connection() as conn:
        c = conn.cursor()
        db_execute(
            c,
            '''SELECT a.id, a.month, a.year, a.working_days, a.present_days, a.absent_days, a.od_days,
                      cl.name AS class_name, su.name AS subject_name
               FROM attendance a
               JOIN classes cl ON cl.id = a.class_id
               JOIN subjects su ON su.id = a.subject_id
               WHERE a.faculty_id = ? AND a.month IS NOT NULL
               ORDER BY a.year DESC, a.date DESC''',
            (faculty_id,),
        )
        rows = c.fetchall()
    return [{
        'id': row['id'],
        'month': row['month'],
        'year': row['year'],
        'class': row['class_name'],
        'subject': row['subject_name'],
        'working_days': row['working_days'],
        'present_days': row['present_days'],
        'absent_days': row['absent_days'],
        'od_days': row['od_days'],
    } for row in rows]


def add_attendance_record(attendance, student_attendance):
    """Store a monthly attendance record and one day-count row per student."""
    working_days = safe_int(attendance['working_days'])
    if not student_attendance:
        raise ValueError('No students to record attendance for.')
    validate_student_days(student_attendance, working_days)
    faculty_id = resolve_faculty_id(attendance['faculty_id'], attendance.get('faculty_email', ''))
    avg_present, avg_absent, avg_od = _attendance_averages(student_attendance)
    month, year = attendance['month'], str(attendance['year'])

    with db_connection(commit=True) as conn:
        c = conn.cursor()
        class_id = _lookup_id(c, 'classes', 'name', attendance['class'], 'Class')
        subject_id = _lookup_id(c, 'subjects', 'name', attendance['subject'], 'Subject')
        db_execute(
            c,
            '''SELECT id FROM attendance
               WHERE faculty_id = ? AND class_id = ? AND subject_id = ? AND month = ? AND year = ?''',
            (faculty_id, class_id, subject_id, month, year),
        )
        if c.fetchone():
            raise ValueError('Attendance record already exists for this month, year, class and subject')
        db_execute(
            c,
            '''INSERT INTO attendance
               (date, month, year, class_id, subject_id, faculty_id, working_days, present_days, absent_days, od_days)
               VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
               RETURNING id''',
            (month_start_date(month, year), month, year, class_id, subject_id, faculty_id,
             working_days, avg_present, avg_absent, avg_od),
        )
        attendance_id = c.fetchone()['id']
        for student in student_attendance:
            db_execute(
                c,
                '''INSERT INTO student_attendance (attendance_id, student_id, present_days, absent_days, od_days)
                   VALUES (?, ?, ?, ?, ?)''',
                (attendance_id, student['id'], safe_int(student['present_days']),
                 safe_int(student['absent_days']), safe_int(student['od_days'])),
            )
    return {
        'id': attendance_id,
        'month': month,
        'year': year,
        'class': attendance['class'],
        'subject': attendance['subject'],
        'working_days': working_days,
        'present_days': avg_present,
        'absent_days': avg_absent,
        'od_days': avg_od,
    }


def get_student_attendance_details(attendance_id, faculty_id):
    with db_connection() as conn:
        c = conn.cursor()
        _owned_row(c, 'attendance', attendance_id, faculty_id)
        db_execute(
            c,
            '''SELECT sa.student_id, sa.present_days, sa.absent_days, sa.od_days, s.name, s.roll_number
               FROM student_attendance sa
               JOIN students s ON s.id = sa.student_id
               WHERE sa.attendance_id = ?
               ORDER BY s.roll_number''',
            (attendance_id,),
        )
        rows = c.fetchall()
    return [{
        'id': row['student_id'],
        'name': row['name'],
        'roll_number': row['roll_number'],
        'present_days': row['present_days'],
        'absent_days': row['absent_days'],
        'od_days': row['od_days'],
    } for row in rows]


def update_attendance_record(attendance_id, attendance, student_attendance, faculty_id):
    """Rewrite a monthly record's header and each student's day counts.

    Moving the record to another month is refused when the faculty already
    has a record for that month, class and subject.
    """
    working_days = safe_int(attendance['working_days'])
    if not student_attendance:
        raise ValueError('No students to record attendance for.')
    validate_student_days(student_attendance, working_days)
    avg_present, avg_absent, avg_od = _attendance_averages(student_attendance)
    month, year = attendance['month'], str(attendance['year'])
    attendance_date = month_start_date(month, year)
    with db_connection(commit=True) as conn:
        c = conn.cursor()
        current = _owned_row(c, 'attendance', attendance_id, faculty_id, 'id, class_id, subject_id')
        db_execute(
            c,
            '''SELECT id FROM attendance
               WHERE faculty_id = ? AND class_id = ? AND subject_id = ? AND month = ? AND year = ? AND id <> ?''',
            (faculty_id, current['class_id'], current['subject_id'], month, year, attendance_id),
        )
        if c.fetchone():
            raise ValueError('Attendance record already exists for this month, year, class and subject')
        db_execute(
            c,
            '''UPDATE attendance
               SET date = ?, month = ?, year = ?, working_days = ?, present_days = ?, absent_days = ?, od_days = ?
               WHERE id = ?''',
            (attendance_date, month, year, working_days, avg_present, avg_absent, avg_od, attendance_id),
        )
        for student in student_attendance:
            db_execute(
                c,
                '''UPDATE student_attendance
                   SET present_days = ?, absent_days = ?, od_days = ?
                   WHERE attendance_id = ? AND student_id = ?''',
                (safe_int(student['present_days']), safe_int(student['absent_days']),
                 safe_int(student['od_days']), attendance_id, student['id']),
            )
    return {
        'id': attendance_id,
        'month': month,
        'year': year,
        'working_days': working_days,
        'present_days': avg_present,
        'absent_days': avg_absent,
        'od_days': avg_od,
    }


def delete_attendance_record(attendance_id, faculty_id):
    with db_connection(commit=True) as conn:
        c = conn.cursor()
        _owned_row(c, 'attendance', attendance_id, faculty_id)
        db_execute(c, 'DELETE FROM student_attendance WHERE attendance_id = ?', (attendance_id,))
        db_execute(c, 'DELETE FROM attendance_records WHERE attendance_id = ?', (attendance_id,))
        db_execute(c, 'DELETE FROM attendance WHERE id = ?', (attendance_id,))
    return {'id': attendance_id}


def _session_summary(attendance_id, attendance_date, class_name, subject_name, working_days, statuses):
    return {
        'id': attendance_id,
        'date': format_date(attendance_date),
        'class': class_name,
        'subject': subject_name,
        'total_students': len(statuses),
        'present_students': statuses.count('present'),
        'absent_students': statuses.count('absent'),
        'od_students': statuses.count('od'),
        'working_days': working_days,
    }


def add_attendance_session(attendance, statuses):
    """Store a dated attendance session with one status per student."""
    for row in statuses:
        if row.get('status') not in ATTENDANCE_STATUSES:
            raise ValueError(f"Invalid attendance status for student {row.get('id')}: {row.get('status')}")
    faculty_id = resolve_faculty_id(attendance['faculty_id'], attendance.get('faculty_email', ''))
    with db_connection(commit=True) as conn:
        c = conn.cursor()
        class_id = _lookup_id(c, 'classes', 'name', attendance['class'], 'Class')
        subject_id = _lookup_id(c, 'subjects', 'name', attendance['subject'], 'Subject')
        db_execute(
            c,
            '''INSERT INTO attendance (date, class_id, subject_id, faculty_id, working_days)
               VALUES (?, ?, ?, ?, ?)
               RETURNING id''',
            (attendance['date'], class_id, subject_id, faculty_id, safe_int(attendance['working_days'])),
        )
        attendance_id = c.fetchone()['id']
        for row in statuses:
            db_execute(c, 'INSERT INTO attendance_records (attendance_id, student_id, status) VALUES (?, ?, ?)',
                       (attendance_id, row['id'], row['status']))
    return _session_summary(attendance_id, attendance['date'], attendance['class'], attendance['subject'],
                            safe_int(attendance['working_days']), [row['status'] for row in statuses])


def get_attendance_sessions(faculty_id):
    with db_connection() as conn:
        c = conn.cursor()
        db_execute(
            c,
            '''SELECT a.id, a.date, a.working_days, cl.name AS class_name, su.name AS subject_name
               FROM attendance a
               JOIN classes cl ON cl.id = a.class_id
               JOIN subjects su ON su.id = a.subject_id
               WHERE a.faculty_id = ? AND a.month IS NULL
               ORDER BY a.date DESC''',
            (faculty_id,),
        )
        sessions = c.fetchall()
        summaries = []
        for row in sessions:
            db_execute(c, 'SELECT status FROM attendance_records WHERE attendance_id = ?', (row['id'],))
            statuses = [r['status'] for r in c.fetchall()]
            summaries.append(_session_summary(row['id'], row['date'], row['class_name'], row['subject_name'],
                                              row['working_days'], statuses))
    return summaries


# ==================== MARKS ====================

def get_marks_records(faculty_id):
    with db_connection() as conn:
        c = conn.cursor()
        db_execute(
            c,
            '''SELECT e.id, e.name, e.date, e.total_marks, cl.name AS class_name, su.name AS subject_name
               FROM exams e
               JOIN classes cl ON cl.id = e.class_id
               JOIN subjects su ON su.id = e.subject_id
               WHERE e.faculty_id = ?
               ORDER BY e.date DESC''',
            (faculty_id,),
        )
        exams = c.fetchall()
        records = []
        for exam in exams:
            db_execute(c, 'SELECT marks FROM marks WHERE exam_id = ?', (exam['id'],))
            marks = [row['marks'] for row in c.fetchall()]
            records.append({
                'id': exam['id'],
                'date': format_date(exam['date']),
                'class': exam['class_name'],
                'subject': exam['subject_name'],
                'exam_type': exam['name'],
                'total_marks': exam['total_marks'],
                'average_marks': average_marks(marks),
            })
    return records


def _clamped_marks(student_marks, total_marks):
    return [(row['id'], clamp_marks(safe_int(row.get('marks')), total_marks)) for row in student_marks]


def add_marks_record(exam, student_marks):
    total_marks = safe_int(exam['total_marks'])
    if total_marks < 1:
        raise ValueError('Total marks must be at least 1')
    marks = _clamped_marks(student_marks, total_marks)
    faculty_id = resolve_faculty_id(exam['faculty_id'], exam.get('faculty_email', ''))
    with db_connection(commit=True) as conn:
        c = conn.cursor()
        class_id = _lookup_id(c, 'classes', 'name', exam['class'], 'Class')
        subject_id = _lookup_id(c, 'subjects', 'name', exam['subject'], 'Subject')
        db_execute(
            c,
            '''INSERT INTO exams (name, date, class_id, subject_id, faculty_id, total_marks)
               VALUES (?, ?, ?, ?, ?, ?)
               RETURNING id''',
            (exam['exam_type'], exam['date'], class_id, subject_id, faculty_id, total_marks),
        )
        exam_id = c.fetchone()['id']
        for student_id, value in marks:
            db_execute(c, 'INSERT INTO marks (exam_id, student_id, marks) VALUES (?, ?, ?)',
                       (exam_id, student_id, value))
    return {
        'id': exam_id,
        'date': format_date(exam['date']),
        'class': exam['class'],
        'subject': exam['subject'],
        'exam_type': exam['exam_type'],
        'total_marks': total_marks,
        'average_marks': average_marks(value for _, value in marks),
    }


def get_exam_marks(exam_id, faculty_id):
    with db_connection() as conn:
        c = conn.cursor()
        exam = _owned_row(c, 'exams', exam_id, faculty_id, 'total_marks')
        db_execute(
            c,
            '''SELECT m.student_id, m.marks, s.name, s.roll_number
               FROM marks m
               JOIN students s ON s.id = m.student_id
               WHERE m.exam_id = ?
               ORDER BY s.roll_number''',
            (exam_id,),
        )
        rows = c.fetchall()
    total_marks = exam['total_marks']
    return [{
        'id': row['student_id'],
        'name': row['name'],
        'roll_number': row['roll_number'],
        'marks': row['marks'],
        'percentage': marks_percentage(row['marks'], total_marks),
    } for row in rows]


def update_exam_marks(exam_id, student_marks, faculty_id):
    with db_connection(commit=True) as conn:
        c = conn.cursor()
        exam = _owned_row(c, 'exams', exam_id, faculty_id, 'total_marks')
        marks = _clamped_marks(student_marks, exam['total_marks'])
        for student_id, value in marks:
            db_execute(c, 'UPDATE marks SET marks = ? WHERE exam_id = ? AND student_id = ?',
                       (value, exam_id, student_id))
    return {'id': exam_id, 'average_marks': average_marks(value for _, value in marks)}


def delete_marks_record(exam_id, faculty_id):
    with db_connection(commit=True) as conn:
        c = conn.cursor()
        _owned_row(c, 'exams', exam_id, faculty_id)
        db_execute(c, 'DELETE FROM marks WHERE exam_id = ?', (exam_id,))
        db_execute(c, 'DELETE FROM exams WHERE id = ?', (exam_id,))
    return {'id': exam_id}


# ==================== REPORTS ====================

REPORT_FIELDS = ('attendance', 'cat_i', 'cat_ii', 'model', 'behavior', 'comments')


def get_reports(faculty_id):
    with db_connection() as conn:
        c = conn.cursor()
        db_execute(
            c,
            '''SELECT r.*, s.name AS student_name, s.roll_number, cl.name AS class_name
               FROM reports r
               JOIN students s ON s.id = r.student_id
               JOIN classes cl ON cl.id = s.class_id
               WHERE r.faculty_id = ?
               ORDER BY r.date DESC''',
            (faculty_id,),
        )
        rows = c.fetchall()
    reports = []
    for row in rows:
        report = {
            'id': row['id'],
            'date': format_date(row['date']),
            'class': row['class_name'],
            'student': row['student_name'],
            'roll_number': row['roll_number'],
            'parent_email': row['parent_email'],
            'sent': bool(row['sent']),
        }
        report.update({field: row[field] for field in REPORT_FIELDS})
        reports.append(report)
    return reports


def add_report(report):
    with db_connection(commit=True) as conn:
        c = conn.cursor()
        student_id = _lookup_id(c, 'students', 'roll_number', report['roll_number'], 'Student')
        db_execute(
            c,
            '''INSERT INTO reports
               (date, student_id, faculty_id, parent_email, attendance, cat_i, cat_ii, model, behavior, comments, sent)
               VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, FALSE)
               RETURNING id''',
            (report['date'], student_id, report['faculty_id'], report.get('parent_email', ''))
            + tuple(report.get(field, '') for field in REPORT_FIELDS),
        )
        report_id = c.fetchone()['id']
    return {'id': report_id, **report, 'sent': False}


def mark_report_sent(report_id, faculty_id):
    with db_connection(commit=True) as conn:
        c = conn.cursor()
        _owned_row(c, 'reports', report_id, faculty_id)
        db_execute(c, 'UPDATE reports SET sent = TRUE WHERE id = ?', (report_id,))
    return {'id': report_id, 'sent': True}


def delete_report(report_id, faculty_id):
    with db_connection(commit=True) as conn:
        c = conn.cursor()
        _owned_row(c, 'reports', report_id, faculty_id)
        db_execute(c, 'DELETE FROM reports WHERE id = ?', (report_id,))
    return {'id': report_id}


# ==================== STUDENT & PARENT DASHBOARDS ====================

def get_student_attendance(student_id):
    """Share of attendance sessions marked present or OD, as 'NN%'."""
    with db_connection() as conn:
        c = conn.cursor()
        db_execute(c, 'SELECT status FROM attendance_records WHERE student_id = ?', (student_id,))
        statuses = [row['status'] for row in c.fetchall()]
    return f'{status_attendance_percentage(statuses)}%'


def get_student_monthly_attendance(student_id):
    with db_connection() as conn:
        c = conn.cursor()
        db_execute(
            c,
            '''SELECT a.month, a.year, a.working_days, su.name AS subject_name,
                      sa.present_days, sa.absent_days, sa.od_days
               FROM student_attendance sa
               JOIN attendance a ON a.id = sa.attendance_id
               JOIN subjects su ON su.id = a.subject_id
               WHERE sa.student_id = ?
               ORDER BY a.date DESC''',
            (student_id,),
        )
        rows = c.fetchall()
    return [{
        'month': row['month'],
        'year': row['year'],
        'subject': row['subject_name'],
        'working_days': row['working_days'],
        'present_days': row['present_days'],
        'absent_days': row['absent_days'],
        'od_days': row['od_days'],
        'percentage': attendance_percentage(row['present_days'], row['od_days'], row['working_days']),
    } for row in rows]


def get_student_marks(student_id):
    with db_connection() as conn:
        c = conn.cursor()
        db_execute(
            c,
            '''SELECT m.marks, e.name AS exam_name, e.date, e.total_marks, su.name AS subject_name
               FROM marks m
               JOIN exams e ON e.id = m.exam_id
               JOIN subjects su ON su.id = e.subject_id
               WHERE m.student_id = ?
               ORDER BY e.date DESC''',
            (student_id,),
        )
        rows = c.fetchall()
    return [{
        'exam': row['exam_name'],
        'subject': row['subject_name'],
        'date': format_date(row['date']),
        'marks': f"{row['marks']}/{row['total_marks']}",
        'percentage': marks_percentage(row['marks'], row['total_marks']),
    } for row in rows]


def get_upcoming_exams(class_id, limit=4):
    with db_connection() as conn:
        c = conn.cursor()
        db_execute(
            c,
            '''SELECT e.name, e.date, su.name AS subject_name
               FROM exams e
               JOIN subjects su ON su.id = e.subject_id
               WHERE e.class_id = ? AND e.date > CURRENT_DATE
               ORDER BY e.date ASC
               LIMIT ?''',
            (class_id, limit),
        )
        rows = c.fetchall()
    return [{'name': row['name'], 'date': format_date(row['date']), 'subject': row['subject_name']} for row in rows]


def get_child_info(parent_id):
    with db_connection() as conn:
        c = conn.cursor()
        db_execute(
            c,
            '''SELECT s.id, s.name, s.roll_number, cl.name AS class_name
               FROM parents p
               JOIN students s ON s.id = p.student_id
               JOIN classes cl ON cl.id = s.class_id
               WHERE p.id = ?''',
            (parent_id,),
        )
        row = c.fetchone()
    if not row:
        raise ValueError(f'No student linked to parent {parent_id}')
    return {'id': row['id'], 'name': row['name'], 'roll_number': row['roll_number'], 'class': row['class_name']}


def get_child_reports(student_id):
    with db_connection() as conn:
        c = conn.cursor()
        db_execute(
            c,
            '''SELECT r.*, f.name AS faculty_name
               FROM reports r
               JOIN faculty f ON f.id = r.faculty_id
               WHERE r.student_id = ?
               ORDER BY r.date DESC''',
            (student_id,),
        )
        rows = c.fetchall()
    reports = []
    for row in rows:
        report = {'id': row['id'], 'date': format_date(row['date']), 'faculty_name': row['faculty_name']}
        report.update({field: row[field] for field in REPORT_FIELDS})
        reports.append(report)
    return reports


# ==================== ADMIN DASHBOARD ====================

def count_rows(table):
    if table not in COUNTED_TABLES:
        raise ValueError(f'Cannot count table: {table}')
    with db_connection() as conn:
        c = conn.cursor()
        db_execute(c, f'SELECT COUNT(*) AS total FROM {table}')
        row = c.fetchone()
    return int(row['total'] or 0) if row else 0


def get_dashboard_counts():
    """Entity counts for the admin dashboard, queried concurrently."""
    with ThreadPoolExecutor(max_workers=len(COUNTED_TABLES)) as pool:
        totals = list(pool.map(count_rows, COUNTED_TABLES))
    return {
        'faculty_count': totals[0],
        'student_count': totals[1],
        'class_count': totals[2],
        'subject_count': totals[3],
    }


def get_recent_users(limit=5):
    with db_connection() as conn:
        c = conn.cursor()
        db_execute(c, 'SELECT name, role, created_at FROM users ORDER BY created_at DESC LIMIT ?', (limit,))
        rows = c.fetchall()
    return [{'name': row['name'], 'role': row['role'], 'created_at': format_date(row['created_at'])} for row in rows]


def get_class_student_counts():
    with db_connection() as conn:
        c = conn.cursor()
        db_execute(
            c,
            '''SELECT cl.id, cl.name, cl.year, cl.section, COUNT(s.id) AS student_count
               FROM classes cl
               LEFT JOIN students s ON s.class_id = cl.id
               GROUP BY cl.id, cl.name, cl.year, cl.section
               ORDER BY cl.year, cl.section''',
        )
        return [dict(row) for row in c.fetchall()]
