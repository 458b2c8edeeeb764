"""
School Portal

Flask application exposing the school data layer to four roles: admin,
faculty, student and parent. Every route answers JSON except the CSV
exports.
"""

from flask import Flask, request, session, jsonify, Response
from flask_wtf.csrf import CSRFProtect, CSRFError
from datetime import timedelta

import os
import logging

import psycopg2
from dotenv import load_dotenv

from aggregation import adjust_attendance_days, average_percentage, department_structure, search_rows
from auth import (
    AuthenticationError,
    admin_login,
    bootstrap_admin,
    build_session_user,
    change_password,
    create_admin_user,
    create_faculty_user,
    faculty_login,
    parent_login,
    student_login,
)
from db import init_db
from demo import demo_fallback_enabled, demo_login, demo_workspace
from exports import build_attendance_csv, build_marks_csv, export_filename
from forms import (
    AttendanceAdjustForm,
    AttendanceForm,
    AttendanceSessionForm,
    AttendanceUpdateForm,
    ChangePasswordForm,
    ClassFacultyForm,
    ClassForm,
    FacultyForm,
    LoginForm,
    MarksForm,
    MarksUpdateForm,
    ParentLoginForm,
    RegisterForm,
    ReportForm,
    StudentForm,
    StudentLoginForm,
    SubjectForm,
    form_errors,
)
from repositories import (
    RecordNotFoundError,
    add_attendance_record,
    add_attendance_session,
    add_class,
    add_faculty,
    add_marks_record,
    add_report,
    add_student,
    add_subject,
    delete_attendance_record,
    delete_class,
    delete_faculty,
    delete_marks_record,
    delete_report,
    delete_student,
    delete_subject,
    get_attendance_records,
    get_attendance_sessions,
    get_child_info,
    get_child_reports,
    get_classes,
    get_class_student_counts,
    get_dashboard_counts,
    get_exam_marks,
    get_faculty,
    get_faculty_workspace,
    get_marks_records,
    get_recent_users,
    get_reports,
    get_student_attendance,
    get_student_attendance_details,
    get_student_marks,
    get_student_monthly_attendance,
    get_student_profile,
    get_students,
    get_students_for_class,
    get_subjects,
    get_upcoming_exams,
    list_classes,
    list_subjects,
    mark_report_sent,
    resolve_faculty_id,
    set_class_faculty,
    update_attendance_record,
    update_class,
    update_exam_marks,
    update_faculty,
    update_student,
    update_subject,
)

load_dotenv()


def env_flag(name, default=''):
    return os.environ.get(name, default).strip().lower() in ('1', 'true', 'yes')


app = Flask(__name__)
ALLOW_INSECURE_DEFAULTS = env_flag('ALLOW_INSECURE_DEFAULTS')
secret_key = os.environ.get('SECRET_KEY')
if not secret_key:
    if ALLOW_INSECURE_DEFAULTS:
        # Explicitly opt-in fallback for local/dev only.
        secret_key = 'dev-secret-key-change-me'
    else:
        raise RuntimeError("SECRET_KEY is required in production. Set SECRET_KEY or enable ALLOW_INSECURE_DEFAULTS for local development.")
if not ALLOW_INSECURE_DEFAULTS and len(secret_key) < 32:
    raise RuntimeError("SECRET_KEY is too short. Use at least 32 characters in production.")
app.secret_key = secret_key
app.config['WTF_CSRF_TIME_LIMIT'] = None
app.config['SESSION_COOKIE_HTTPONLY'] = True
app.config['SESSION_COOKIE_SAMESITE'] = 'Lax'

try:
    SESSION_LIFETIME_HOURS = int(os.environ.get('SESSION_LIFETIME_HOURS', '8'))
except ValueError:
    raise RuntimeError("SESSION_LIFETIME_HOURS must be a whole number of hours.") from None
app.config['PERMANENT_SESSION_LIFETIME'] = timedelta(hours=SESSION_LIFETIME_HOURS)

# Initialize CSRF Protection
csrf = CSRFProtect(app)

DATABASE_URL = os.environ.get('DATABASE_URL', '').strip()
if not DATABASE_URL.startswith(('postgres://', 'postgresql://')):
    raise RuntimeError("PostgreSQL is required. Set DATABASE_URL to a postgresql:// connection string.")
ADMIN_EMAIL = os.environ.get('ADMIN_EMAIL', '').strip().lower()
ADMIN_PASSWORD = os.environ.get('ADMIN_PASSWORD', '').strip()
# Open admin sign-up is for first-run setup only; otherwise an admin must be signed in.
ALLOW_ADMIN_REGISTRATION = env_flag('ALLOW_ADMIN_REGISTRATION')

# Set up logging
logging.basicConfig(filename='app.log', level=logging.INFO,
                    format='%(asctime)s - %(levelname)s - %(message)s')
logger = logging.getLogger(__name__)
if ALLOW_INSECURE_DEFAULTS:
    logger.warning("ALLOW_INSECURE_DEFAULTS is enabled. Development-only fallbacks may be active.")

# Initialize database (can be disabled when schema is managed by migrations).
RUN_STARTUP_DDL = env_flag('RUN_STARTUP_DDL', '1')
if RUN_STARTUP_DDL:
    init_db()
else:
    logger.warning("RUN_STARTUP_DDL is disabled. Ensure schema is already migrated before startup.")

RUN_STARTUP_BOOTSTRAP = env_flag('RUN_STARTUP_BOOTSTRAP', '1')
if RUN_STARTUP_BOOTSTRAP and ADMIN_EMAIL:
    if len(ADMIN_PASSWORD) < 12:
        raise RuntimeError("ADMIN_PASSWORD must be set to at least 12 characters to bootstrap ADMIN_EMAIL.")
    bootstrap_admin(ADMIN_EMAIL, ADMIN_PASSWORD)


# ==================== HELPERS ====================

def _error(message, status=400):
    return jsonify({'error': message}), status


def _unauthorized():
    return _error('Please log in with the right account to continue.', 401)


def _current_user():
    return session.get('user') or {}


def _is_demo_id(value):
    return str(value or '').startswith('demo-')


def _search(rows, *fields):
    return search_rows(rows, request.args.get('q', ''), fields)


def _start_session(role, result):
    session_user = build_session_user(role, result)
    session.clear()
    session.permanent = True
    session['user'] = session_user
    session['role'] = role
    return jsonify({'user': session_user})


def _faculty_ref():
    user = _current_user()
    return user.get('faculty_id'), user.get('email', '')


def _csv_response(content, prefix):
    return Response(
        content,
        mimetype='text/csv',
        headers={'Content-Disposition': f'attachment; filename={export_filename(prefix)}'}
    )


# ==================== ERRORS ====================

@app.errorhandler(CSRFError)
def csrf_error(error):
    """Handle CSRF token errors."""
    return _error('Form token expired/invalid. Please retry your last action.')


@app.errorhandler(AuthenticationError)
def authentication_error(error):
    return _error(str(error), 401)


@app.errorhandler(RecordNotFoundError)
def record_not_found(error):
    return _error(str(error), 404)


@app.errorhandler(ValueError)
def validation_error(error):
    return _error(str(error))


@app.errorhandler(psycopg2.Error)
def database_error(error):
    logger.exception("Database error on %s %s", request.method, request.path)
    return _error('A database error occurred. Please try again.', 500)


# ==================== AUTH ROUTES ====================

@app.route('/login/admin', methods=['POST'])
def login_admin():
    form = LoginForm()
    if not form.validate_on_submit():
        return _error(form_errors(form))
    return _start_session('admin', admin_login(form.email.data.strip(), form.password.data))


@app.route('/login/faculty', methods=['POST'])
def login_faculty():
    form = LoginForm()
    if not form.validate_on_submit():
        return _error(form_errors(form))
    return _start_session('faculty', faculty_login(form.email.data.strip(), form.password.data))


@app.route('/login/student', methods=['POST'])
def login_student():
    form = StudentLoginForm()
    if not form.validate_on_submit():
        return _error(form_errors(form))
    return _start_session('student', student_login(form.roll_number.data, form.dob.data))


@app.route('/login/parent', methods=['POST'])
def login_parent():
    form = ParentLoginForm()
    if not form.validate_on_submit():
        return _error(form_errors(form))
    return _start_session('parent', parent_login(form.mobile.data, form.dob.data))


@app.route('/logout')
def logout():
    session.clear()
    return jsonify({'message': 'Logged out'})


@app.route('/register/admin', methods=['POST'])
def register_admin():
    if not ALLOW_ADMIN_REGISTRATION and session.get('role') != 'admin':
        return _unauthorized()
    form = RegisterForm()
    if not form.validate_on_submit():
        return _error(form_errors(form))
    user = create_admin_user(form.email.data, form.password.data, form.name.data.strip())
    return jsonify({'user': user}), 201


@app.route('/session')
def current_session():
    user = _current_user()
    if not user:
        return _unauthorized()
    return jsonify({'user': user})


# ==================== ADMIN ROUTES ====================

@app.route('/admin')
def admin_dashboard():
    if session.get('role') != 'admin':
        return _unauthorized()
    counts = get_dashboard_counts()
    return jsonify({
        **counts,
        'recent_users': get_recent_users(),
        'departments': department_structure(get_class_student_counts()),
    })


@app.route('/admin/faculty', methods=['GET', 'POST'])
def admin_faculty():
    if session.get('role') != 'admin':
        return _unauthorized()
    if request.method == 'GET':
        return jsonify({
            'faculty': _search(get_faculty(), 'name', 'email', 'contact'),
            'class_options': get_classes(),
            'subject_options': get_subjects(),
        })
    form = FacultyForm()
    if not form.validate_on_submit():
        return _error(form_errors(form))
    if form.without_account.data:
        faculty = add_faculty(form.to_dict())
    else:
        faculty = create_faculty_user(form.to_dict())
    return jsonify({'faculty': faculty}), 201


@app.route('/admin/faculty/<int:faculty_id>/update', methods=['POST'])
def admin_update_faculty(faculty_id):
    if session.get('role') != 'admin':
        return _unauthorized()
    form = FacultyForm()
    if not form.validate_on_submit():
        return _error(form_errors(form))
    return jsonify({'faculty': update_faculty(faculty_id, form.to_dict())})


@app.route('/admin/faculty/<int:faculty_id>/delete', methods=['POST'])
def admin_delete_faculty(faculty_id):
    if session.get('role') != 'admin':
        return _unauthorized()
    return jsonify(delete_faculty(faculty_id))


@app.route('/admin/students', methods=['GET', 'POST'])
def admin_students():
    if session.get('role') != 'admin':
        return _unauthorized()
    if request.method == 'GET':
        class_name = request.args.get('class', '').strip()
        students = get_students_for_class(class_name) if class_name else get_students()
        return jsonify({'students': _search(students, 'name', 'email', 'roll_number')})
    form = StudentForm()
    if not form.validate_on_submit():
        return _error(form_errors(form))
    return jsonify({'student': add_student(form.to_dict())}), 201


@app.route('/admin/students/<int:student_id>/update', methods=['POST'])
def admin_update_student(student_id):
    if session.get('role') != 'admin':
        return _unauthorized()
    form = StudentForm()
    if not form.validate_on_submit():
        return _error(form_errors(form))
    return jsonify({'student': update_student(student_id, form.to_dict())})


@app.route('/admin/students/<int:student_id>/delete', methods=['POST'])
def admin_delete_student(student_id):
    if session.get('role') != 'admin':
        return _unauthorized()
    return jsonify(delete_student(student_id))


@app.route('/admin/classes', methods=['GET', 'POST'])
def admin_classes():
    if session.get('role') != 'admin':
        return _unauthorized()
    if request.method == 'GET':
        return jsonify({'classes': _search(list_classes(), 'name', 'section')})
    form = ClassForm()
    if not form.validate_on_submit():
        return _error(form_errors(form))
    return jsonify({'class': add_class(form.to_dict())}), 201


@app.route('/admin/classes/<int:class_id>/update', methods=['POST'])
def admin_update_class(class_id):
    if session.get('role') != 'admin':
        return _unauthorized()
    form = ClassForm()
    if not form.validate_on_submit():
        return _error(form_errors(form))
    return jsonify({'class': update_class(class_id, form.to_dict())})


@app.route('/admin/classes/<int:class_id>/delete', methods=['POST'])
def admin_delete_class(class_id):
    if session.get('role') != 'admin':
        return _unauthorized()
    return jsonify(delete_class(class_id))


@app.route('/admin/classes/<int:class_id>/faculty', methods=['POST'])
def admin_class_faculty(class_id):
    if session.get('role') != 'admin':
        return _unauthorized()
    form = ClassFacultyForm()
    if not form.validate_on_submit():
        return _error(form_errors(form))
    return jsonify(set_class_faculty(class_id, form.faculty_ids.data or []))


@app.route('/admin/subjects', methods=['GET', 'POST'])
def admin_subjects():
    if session.get('role') != 'admin':
        return _unauthorized()
    if request.method == 'GET':
        return jsonify({'subjects': _search(list_subjects(), 'name', 'code')})
    form = SubjectForm()
    if not form.validate_on_submit():
        return _error(form_errors(form))
    return jsonify({'subject': add_subject(form.to_dict())}), 201


@app.route('/admin/subjects/<int:subject_id>/update', methods=['POST'])
def admin_update_subject(subject_id):
    if session.get('role') != 'admin':
        return _unauthorized()
    form = SubjectForm()
    if not form.validate_on_submit():
        return _error(form_errors(form))
    return jsonify({'subject': update_subject(subject_id, form.to_dict())})


@app.route('/admin/subjects/<int:subject_id>/delete', methods=['POST'])
def admin_delete_subject(subject_id):
    if session.get('role') != 'admin':
        return _unauthorized()
    return jsonify(delete_subject(subject_id))


# ==================== FACULTY ROUTES ====================

@app.route('/faculty')
def faculty_dashboard():
    if session.get('role') != 'faculty':
        return _unauthorized()
    faculty_id, _ = _faculty_ref()
    needs_password_change = bool(_current_user().get('needs_password_change'))
    if _is_demo_id(faculty_id):
        return jsonify({**demo_workspace(), 'demo': True, 'needs_password_change': needs_password_change})
    try:
        workspace = get_faculty_workspace(faculty_id, request.args.get('working_days', type=int))
    except psycopg2.OperationalError:
        if not demo_fallback_enabled():
            raise
        logger.warning("Faculty workspace unavailable for %s; serving demo workspace", faculty_id)
        return jsonify({**demo_workspace(), 'demo': True, 'needs_password_change': needs_password_change})
    return jsonify({**workspace, 'demo': False, 'needs_password_change': needs_password_change})


def _faculty_rows(fetch):
    """Rows owned by the signed-in faculty; demo identities own nothing."""
    faculty_id, _ = _faculty_ref()
    if _is_demo_id(faculty_id):
        return []
    return fetch(faculty_id)


def _record_owner():
    """Faculty id that a single attendance, exam or report row must belong to."""
    faculty_id, _ = _faculty_ref()
    if _is_demo_id(faculty_id) or faculty_id is None:
        raise RecordNotFoundError('Record not found')
    return faculty_id


def _filtered_attendance():
    return _search(_faculty_rows(get_attendance_records), 'month', 'year', 'class', 'subject')


def _filtered_marks():
    return _search(_faculty_rows(get_marks_records), 'class', 'subject', 'exam_type', 'date')


@app.route('/faculty/attendance', methods=['GET', 'POST'])
def faculty_attendance():
    if session.get('role') != 'faculty':
        return _unauthorized()
    if request.method == 'GET':
        return jsonify({'records': _filtered_attendance()})
    form = AttendanceForm()
    if not form.validate_on_submit():
        return _error(form_errors(form))
    faculty_id, faculty_email = _faculty_ref()
    attendance = {
        'month': form.month.data,
        'year': form.year.data,
        'class': form.class_name.data,
        'subject': form.subject.data,
        'working_days': form.working_days.data,
        'faculty_id': faculty_id,
        'faculty_email': faculty_email,
    }
    record = add_attendance_record(attendance, form.student_rows())
    return jsonify({'record': record}), 201


@app.route('/faculty/attendance/<int:attendance_id>')
def faculty_attendance_details(attendance_id):
    if session.get('role') != 'faculty':
        return _unauthorized()
    return jsonify({'students': get_student_attendance_details(attendance_id, _record_owner())})


@app.route('/faculty/attendance/<int:attendance_id>/update', methods=['POST'])
def faculty_update_attendance(attendance_id):
    if session.get('role') != 'faculty':
        return _unauthorized()
    form = AttendanceUpdateForm()
    if not form.validate_on_submit():
        return _error(form_errors(form))
    attendance = {'month': form.month.data, 'year': form.year.data, 'working_days': form.working_days.data}
    record = update_attendance_record(attendance_id, attendance, form.student_rows(), _record_owner())
    return jsonify({'record': record})


@app.route('/faculty/attendance/<int:attendance_id>/delete', methods=['POST'])
def faculty_delete_attendance(attendance_id):
    if session.get('role') != 'faculty':
        return _unauthorized()
    return jsonify(delete_attendance_record(attendance_id, _record_owner()))


@app.route('/faculty/attendance/adjust', methods=['POST'])
def faculty_adjust_attendance():
    """Recompute one student's day counts after a single field changes."""
    if session.get('role') != 'faculty':
        return _unauthorized()
    form = AttendanceAdjustForm()
    if not form.validate_on_submit():
        return _error(form_errors(form))
    row = adjust_attendance_days(form.row(), form.changed_field.data, form.value.data, form.working_days.data)
    return jsonify({'row': row})


@app.route('/faculty/attendance/export')
def faculty_export_attendance():
    if session.get('role') != 'faculty':
        return _unauthorized()
    return _csv_response(build_attendance_csv(_filtered_attendance()), 'attendance_records')


@app.route('/faculty/attendance-sessions', methods=['GET', 'POST'])
def faculty_attendance_sessions():
    if session.get('role') != 'faculty':
        return _unauthorized()
    faculty_id, faculty_email = _faculty_ref()
    if request.method == 'GET':
        return jsonify({'sessions': _faculty_rows(get_attendance_sessions)})
    form = AttendanceSessionForm()
    if not form.validate_on_submit():
        return _error(form_errors(form))
    attendance = {
        'date': form.date.data,
        'class': form.class_name.data,
        'subject': form.subject.data,
        'working_days': form.working_days.data,
        'faculty_id': faculty_id,
        'faculty_email': faculty_email,
    }
    return jsonify({'session': add_attendance_session(attendance, form.student_rows())}), 201


@app.route('/faculty/marks', methods=['GET', 'POST'])
def faculty_marks():
    if session.get('role') != 'faculty':
        return _unauthorized()
    if request.method == 'GET':
        return jsonify({'records': _filtered_marks()})
    form = MarksForm()
    if not form.validate_on_submit():
        return _error(form_errors(form))
    faculty_id, faculty_email = _faculty_ref()
    exam = {
        'date': form.date.data,
        'class': form.class_name.data,
        'subject': form.subject.data,
        'exam_type': form.exam_type.data,
        'total_marks': form.total_marks.data,
        'faculty_id': faculty_id,
        'faculty_email': faculty_email,
    }
    return jsonify({'record': add_marks_record(exam, form.student_rows())}), 201


@app.route('/faculty/marks/<int:exam_id>')
def faculty_exam_marks(exam_id):
    if session.get('role') != 'faculty':
        return _unauthorized()
    return jsonify({'students': get_exam_marks(exam_id, _record_owner())})


@app.route('/faculty/marks/<int:exam_id>/update', methods=['POST'])
def faculty_update_marks(exam_id):
    if session.get('role') != 'faculty':
        return _unauthorized()
    form = MarksUpdateForm()
    if not form.validate_on_submit():
        return _error(form_errors(form))
    return jsonify({'record': update_exam_marks(exam_id, form.student_rows(), _record_owner())})


@app.route('/faculty/marks/<int:exam_id>/delete', methods=['POST'])
def faculty_delete_marks(exam_id):
    if session.get('role') != 'faculty':
        return _unauthorized()
    return jsonify(delete_marks_record(exam_id, _record_owner()))


@app.route('/faculty/marks/export')
def faculty_export_marks():
    if session.get('role') != 'faculty':
        return _unauthorized()
    return _csv_response(build_marks_csv(_filtered_marks()), 'marks_records')


@app.route('/faculty/reports', methods=['GET', 'POST'])
def faculty_reports():
    if session.get('role') != 'faculty':
        return _unauthorized()
    faculty_id, faculty_email = _faculty_ref()
    if request.method == 'GET':
        return jsonify({'reports': _search(_faculty_rows(get_reports), 'student', 'roll_number', 'class')})
    form = ReportForm()
    if not form.validate_on_submit():
        return _error(form_errors(form))
    report = form.to_dict()
    report['faculty_id'] = resolve_faculty_id(faculty_id, faculty_email)
    return jsonify({'report': add_report(report)}), 201


@app.route('/faculty/reports/<int:report_id>/sent', methods=['POST'])
def faculty_report_sent(report_id):
    if session.get('role') != 'faculty':
        return _unauthorized()
    return jsonify(mark_report_sent(report_id, _record_owner()))


@app.route('/faculty/reports/<int:report_id>/delete', methods=['POST'])
def faculty_delete_report(report_id):
    if session.get('role') != 'faculty':
        return _unauthorized()
    return jsonify(delete_report(report_id, _record_owner()))


@app.route('/faculty/students', methods=['POST'])
def faculty_add_student():
    if session.get('role') != 'faculty':
        return _unauthorized()
    form = StudentForm()
    if not form.validate_on_submit():
        return _error(form_errors(form))
    return jsonify({'student': add_student(form.to_dict())}), 201


@app.route('/faculty/change-password', methods=['POST'])
def faculty_change_password():
    if session.get('role') != 'faculty':
        return _unauthorized()
    form = ChangePasswordForm()
    if not form.validate_on_submit():
        return _error(form_errors(form))
    user = _current_user()
    change_password(user.get('id'), form.current_password.data, form.new_password.data)
    session['user'] = {**user, 'needs_password_change': False}
    return jsonify({'message': 'Password changed successfully!'})


# ==================== STUDENT & PARENT ROUTES ====================

@app.route('/student')
def student_dashboard():
    if session.get('role') != 'student':
        return _unauthorized()
    student_id = _current_user().get('student_id')
    if _is_demo_id(student_id):
        return jsonify({'student': demo_login('student')['student'], 'attendance': '0%', 'monthly_attendance': [],
                        'marks': [], 'average_percentage': 0, 'upcoming_exams': []})
    profile = get_student_profile(student_id)
    if not profile:
        return _error('Student profile not found.', 404)
    marks = get_student_marks(student_id)
    return jsonify({
        'student': profile,
        'attendance': get_student_attendance(student_id),
        'monthly_attendance': get_student_monthly_attendance(student_id),
        'marks': marks,
        'average_percentage': average_percentage(m['percentage'] for m in marks),
        'upcoming_exams': get_upcoming_exams(profile['class_id']),
    })


@app.route('/parent')
def parent_dashboard():
    if session.get('role') != 'parent':
        return _unauthorized()
    parent_id = _current_user().get('parent_id')
    if _is_demo_id(parent_id):
        child = demo_login('parent')['parent']['student']
        return jsonify({'child': child, 'attendance': '0%', 'marks': [], 'reports': []})
    child = get_child_info(parent_id)
    return jsonify({
        'child': child,
        'attendance': get_student_attendance(child['id']),
        'marks': get_student_marks(child['id']),
        'reports': get_child_reports(child['id']),
    })


if __name__ == '__main__':
    app.run(debug=env_flag('FLASK_DEBUG'))
