"""
Sign-in and account management.

Each role login first asks the database. If that fails for any reason and
the caller typed one of the demo credentials, the demo identity is returned
instead; otherwise the failure is raised as ``AuthenticationError``.
"""

from datetime import date, datetime
import logging
import secrets

from werkzeug.security import generate_password_hash, check_password_hash

from db import db_connection, db_execute
from demo import match_demo_credentials
from repositories import add_faculty_with_cursor, format_date

logger = logging.getLogger(__name__)

ROLES = ('admin', 'faculty', 'student', 'parent')
DATE_FORMATS = ('%Y-%m-%d', '%d-%m-%Y', '%d/%m/%Y', '%Y/%m/%d')


class AuthenticationError(ValueError):
    pass


def normalize_date(value):
    """Return value as YYYY-MM-DD; accepts dates, ISO timestamps and d/m/Y text."""
    if isinstance(value, (date, datetime)):
        return value.strftime('%Y-%m-%d')
    text = (value or '').strip()
    if 'T' in text:
        text = text.split('T', 1)[0]
    for fmt in DATE_FORMATS:
        try:
            return datetime.strptime(text, fmt).strftime('%Y-%m-%d')
        except ValueError:
            continue
    raise ValueError(f'Invalid date: {value}')


def _try_normalize_date(value):
    try:
        return normalize_date(value)
    except ValueError:
        return (value or '').strip() if isinstance(value, str) else value


def generate_temp_password(length=10):
    """Generate a temporary password."""
    alphabet = "ABCDEFGHJKLMNPQRSTUVWXYZabcdefghijkmnopqrstuvwxyz23456789!@#$"
    return ''.join(secrets.choice(alphabet) for _ in range(max(8, length)))


def _user_dict(row):
    return {'id': row['id'], 'email': row['email'], 'name': row['name'], 'role': row['role']}


def sign_in(email, password, role=None):
    with db_connection() as conn:
        c = conn.cursor()
        db_execute(c, 'SELECT id, email, password_hash, name, role FROM users WHERE LOWER(email) = LOWER(?) LIMIT 1',
                   ((email or '').strip(),))
        row = c.fetchone()
    if not row or not row['password_hash'] or not check_password_hash(row['password_hash'], password or ''):
        raise AuthenticationError('Invalid email or password')
    if role and row['role'] != role:
        raise AuthenticationError(f'User is not registered as {role}')
    return _user_dict(row)


def sign_up_with_cursor(c, email, password, name, role):
    if role not in ROLES:
        raise ValueError('Invalid role')
    email = (email or '').strip().lower()
    db_execute(c, 'SELECT id FROM users WHERE LOWER(email) = ?', (email,))
    if c.fetchone():
        raise ValueError(f'An account already exists for {email}')
    db_execute(
        c,
        'INSERT INTO users (email, password_hash, name, role) VALUES (?, ?, ?, ?) RETURNING id',
        (email, generate_password_hash(password), name, role),
    )
    return c.fetchone()['id']


def sign_up(email, password, name, role):
    with db_connection(commit=True) as conn:
        c = conn.cursor()
        user_id = sign_up_with_cursor(c, email, password, name, role)
    logger.info("Created %s account %s", role, email)
    return {'id': user_id, 'email': (email or '').strip().lower(), 'name': name, 'role': role}


def create_admin_user(email, password, name):
    return sign_up(email, password, name, 'admin')


def _demo_or_raise(role, identifier, secret, exc):
    demo = match_demo_credentials(role, identifier, secret)
    if demo:
        logger.warning("Backend %s login failed (%s); using demo identity", role, exc)
        return demo
    if isinstance(exc, AuthenticationError):
        raise exc
    logger.exception("Unexpected error during %s login", role)
    raise AuthenticationError('Login failed. Please try again.') from exc


def admin_login(email, password):
    try:
        return {'user': sign_in(email, password, role='admin')}
    except Exception as exc:
        return _demo_or_raise('admin', email, password, exc)


def _faculty_profile_with_cursor(c, user):
    """Find the faculty row for user by user_id, then by email, else create it."""
    columns = 'id, user_id, name, email, contact, temp_password'
    db_execute(c, f'SELECT {columns} FROM faculty WHERE user_id = ? LIMIT 1', (user['id'],))
    row = c.fetchone()
    if row:
        return dict(row)
    db_execute(c, f'SELECT {columns} FROM faculty WHERE LOWER(email) = LOWER(?) LIMIT 1', (user['email'],))
    row = c.fetchone()
    if row:
        db_execute(c, 'UPDATE faculty SET user_id = ? WHERE id = ?', (user['id'], row['id']))
        profile = dict(row)
        profile['user_id'] = user['id']
        return profile
    db_execute(
        c,
        'INSERT INTO faculty (user_id, name, email, contact) VALUES (?, ?, ?, ?) RETURNING id',
        (user['id'], user['name'], user['email'], ''),
    )
    faculty_id = c.fetchone()['id']
    logger.info("Created missing faculty profile %s for %s", faculty_id, user['email'])
    return {'id': faculty_id, 'user_id': user['id'], 'name': user['name'], 'email': user['email'],
            'contact': '', 'temp_password': None}


def faculty_login(email, password):
    try:
        user = sign_in(email, password, role='faculty')
        with db_connection(commit=True) as conn:
            c = conn.cursor()
            profile = _faculty_profile_with_cursor(c, user)
        return {'user': user, 'faculty': profile}
    except Exception as exc:
        return _demo_or_raise('faculty', email, password, exc)


STUDENT_LOGIN_SELECT = '''SELECT s.id, s.user_id, s.name, s.email, s.roll_number, s.class_id,
                                 cl.name AS class_name, s.department, s.semester, s.year, s.dob, s.mobile
                          FROM students s
                          JOIN classes cl ON cl.id = s.class_id'''


def _student_profile(row):
    return {
        'id': row['id'],
        'user_id': row['user_id'],
        'name': row['name'],
        'email': row['email'],
        'roll_number': row['roll_number'],
        'class_id': row['class_id'],
        'class': row['class_name'],
        'department': row['department'],
        'semester': row['semester'],
        'year': row['year'],
        'dob': format_date(row['dob']),
        'mobile': row['mobile'],
    }


def _linked_user(c, user_id):
    if not user_id:
        return None
    db_execute(c, 'SELECT id, email, name, role FROM users WHERE id = ?', (user_id,))
    row = c.fetchone()
    return _user_dict(row) if row else None


def student_login(roll_number, dob):
    try:
        roll_number = (roll_number or '').strip()
        dob = normalize_date(dob)
        with db_connection() as conn:
            c = conn.cursor()
            db_execute(c, STUDENT_LOGIN_SELECT + ' WHERE s.roll_number = ? AND s.dob = ?', (roll_number, dob))
            row = c.fetchone()
            if not row:
                db_execute(c, STUDENT_LOGIN_SELECT + ' WHERE s.roll_number = ?', (roll_number,))
                row = next((r for r in c.fetchall() if r['dob'] and normalize_date(r['dob']) == dob), None)
            if not row:
                raise AuthenticationError('Invalid roll number or date of birth')
            user = _linked_user(c, row['user_id'])
        if not user:
            user = {'id': f"temp-{row['id']}", 'email': row['email'], 'name': row['name'], 'role': 'student'}
        return {'user': user, 'student': _student_profile(row)}
    except Exception as exc:
        return _demo_or_raise('student', roll_number, _try_normalize_date(dob), exc)


def parent_login(mobile, child_dob):
    try:
        mobile = (mobile or '').strip()
        child_dob = normalize_date(child_dob)
        with db_connection() as conn:
            c = conn.cursor()
            db_execute(
                c,
                '''SELECT p.id AS parent_id, p.user_id AS parent_user_id, p.name AS parent_name,
                          p.email AS parent_email, p.mobile AS parent_mobile, p.relation, s.id, s.user_id,
                          s.name, s.email, s.roll_number, s.class_id, cl.name AS class_name,
                          s.department, s.semester, s.year, s.dob, s.mobile
                   FROM parents p
                   JOIN students s ON s.id = p.student_id
                   JOIN classes cl ON cl.id = s.class_id
                   WHERE p.mobile = ?
                   ORDER BY p.id''',
                (mobile,),
            )
            row = next((r for r in c.fetchall() if r['dob'] and normalize_date(r['dob']) == child_dob), None)
            if not row:
                raise AuthenticationError('Invalid mobile number or date of birth')
            user = _linked_user(c, row['parent_user_id'])
        if not user:
            user = {'id': f"temp-parent-{row['parent_id']}", 'email': row['parent_email'],
                    'name': row['parent_name'], 'role': 'parent'}
        parent = {
            'id': row['parent_id'],
            'user_id': row['parent_user_id'],
            'name': row['parent_name'],
            'email': row['parent_email'],
            'mobile': row['parent_mobile'],
            'relation': row['relation'],
            'student': _student_profile(row),
        }
        return {'user': user, 'parent': parent}
    except Exception as exc:
        return _demo_or_raise('parent', mobile, _try_normalize_date(child_dob), exc)


def create_faculty_user(faculty):
    """Create a faculty login with a temporary password plus the faculty row."""
    temp_password = generate_temp_password()
    with db_connection(commit=True) as conn:
        c = conn.cursor()
        user_id = sign_up_with_cursor(c, faculty['email'], temp_password, faculty['name'], 'faculty')
        faculty_id = add_faculty_with_cursor(c, faculty, user_id=user_id, temp_password=temp_password)
    logger.info("Created faculty account %s", faculty['email'])
    return {'id': faculty_id, 'user_id': user_id, **faculty, 'temp_password': temp_password}


def is_temporary_identity(user_id):
    return str(user_id).startswith(('demo-', 'temp-'))


def change_password(user_id, current_password, new_password):
    if is_temporary_identity(user_id):
        raise ValueError('Password cannot be changed for a demo or temporary account.')
    with db_connection(commit=True) as conn:
        c = conn.cursor()
        db_execute(c, 'SELECT password_hash FROM users WHERE id = ?', (user_id,))
        row = c.fetchone()
        if not row or not check_password_hash(row['password_hash'] or '', current_password or ''):
            raise AuthenticationError('Current password is incorrect.')
        db_execute(c, 'UPDATE users SET password_hash = ? WHERE id = ?',
                   (generate_password_hash(new_password), user_id))
        db_execute(c, 'UPDATE faculty SET temp_password = NULL WHERE user_id = ?', (user_id,))
    logger.info("Password changed for user %s", user_id)


def set_password(email, new_password):
    """Overwrite a user's password without checking the old one. Returns False when no user matched."""
    with db_connection(commit=True) as conn:
        c = conn.cursor()
        db_execute(c, 'UPDATE users SET password_hash = ? WHERE LOWER(email) = LOWER(?) RETURNING id',
                   (generate_password_hash(new_password), email))
        row = c.fetchone()
        if not row:
            return False
        db_execute(c, 'UPDATE faculty SET temp_password = NULL WHERE user_id = ?', (row['id'],))
    return True


def build_session_user(role, result):
    """Flatten a login result into the dict stored in the session cookie."""
    user = result['user']
    profile = result.get(role) or {}
    session_user = {
        'id': user['id'],
        'email': user.get('email'),
        'name': profile.get('name') or user.get('name'),
        'role': role,
        'needs_password_change': bool(role == 'faculty' and profile.get('temp_password')),
    }
    if role in ('faculty', 'student', 'parent'):
        session_user[f'{role}_id'] = profile.get('id')
    if role == 'parent':
        session_user['student_id'] = (profile.get('student') or {}).get('id')
    return session_user


def bootstrap_admin(email, password, name='Administrator'):
    """Ensure the configured admin account exists; never reset an existing password."""
    with db_connection(commit=True) as conn:
        c = conn.cursor()
        db_execute(c, 'SELECT id, role FROM users WHERE LOWER(email) = LOWER(?)', (email,))
        row = c.fetchone()
        if not row:
            sign_up_with_cursor(c, email, password, name, 'admin')
            logger.info("Admin user created: %s", email)
        elif row['role'] != 'admin':
            logger.warning(
                "ADMIN_EMAIL '%s' exists with role '%s'; skipping automatic role escalation.",
                email,
                row['role'],
            )
