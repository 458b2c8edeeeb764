"""
Demo identities and fixtures.

Used when the database sign-in fails but the caller supplied one of the
well-known demo credentials, and (optionally) when the faculty workspace
cannot be read from the database.
"""

import copy
import os

DEMO_ADMIN_EMAIL = 'admin@example.com'
DEMO_ADMIN_PASSWORD = 'admin123'
DEMO_FACULTY_EMAIL = 'faculty@example.com'
DEMO_FACULTY_PASSWORD = 'faculty123'
DEMO_STUDENT_ROLL = 'IT2023001'
DEMO_DOB = '2000-01-01'
DEMO_PARENT_MOBILE = '9999999999'
DEMO_PARENT_ALT_MOBILE = '9876543210'

_DEMO_STUDENT = {
    'id': 'demo-student-profile-id',
    'user_id': 'demo-student-id',
    'name': 'Demo Student',
    'email': 'student@example.com',
    'roll_number': DEMO_STUDENT_ROLL,
    'class': 'Second Year B',
    'department': 'IT',
    'semester': 4,
    'year': 2,
    'dob': DEMO_DOB,
    'mobile': DEMO_PARENT_ALT_MOBILE,
}

DEMO_IDENTITIES = {
    'admin': {
        'user': {'id': 'demo-admin-id', 'email': DEMO_ADMIN_EMAIL, 'name': 'Demo Admin', 'role': 'admin'},
    },
    'faculty': {
        'user': {'id': 'demo-faculty-id', 'email': DEMO_FACULTY_EMAIL, 'name': 'Demo Faculty', 'role': 'faculty'},
        'faculty': {
            'id': 'demo-faculty-profile-id',
            'user_id': 'demo-faculty-id',
            'name': 'Demo Faculty',
            'email': DEMO_FACULTY_EMAIL,
            'contact': '1234567890',
            'temp_password': None,
        },
    },
    'student': {
        'user': {'id': 'demo-student-id', 'email': 'student@example.com', 'name': 'Demo Student', 'role': 'student'},
        'student': _DEMO_STUDENT,
    },
    'parent': {
        'user': {'id': 'demo-parent-id', 'email': 'parent@example.com', 'name': 'Demo Parent', 'role': 'parent'},
        'parent': {
            'id': 'demo-parent-profile-id',
            'user_id': 'demo-parent-id',
            'name': 'Demo Parent',
            'email': 'parent@example.com',
            'mobile': DEMO_PARENT_MOBILE,
            'relation': 'Father',
            'student': _DEMO_STUDENT,
        },
    },
}

DEMO_WORKSPACE = {
    'classes': ['Second Year A', 'Third Year B'],
    'subjects': {
        'Second Year A': ['Data Structures', 'Algorithms'],
        'Third Year B': ['Database Management', 'Computer Networks'],
    },
    'students': {
        'Second Year A': [
            {'id': 1, 'name': 'John Doe', 'roll_number': 'IT2023001', 'email': 'john@example.com'},
            {'id': 2, 'name': 'Jane Smith', 'roll_number': 'IT2023002', 'email': 'jane@example.com'},
        ],
        'Third Year B': [
            {'id': 3, 'name': 'Alice Johnson', 'roll_number': 'IT2022001', 'email': 'alice@example.com'},
            {'id': 4, 'name': 'Bob Williams', 'roll_number': 'IT2022002', 'email': 'bob@example.com'},
        ],
    },
}


def _flag(name, default):
    return os.environ.get(name, default).strip().lower() in ('1', 'true', 'yes')


def demo_login_enabled():
    return _flag('ALLOW_DEMO_LOGIN', '1')


def demo_fallback_enabled():
    return _flag('ALLOW_DEMO_FALLBACK', '0')


def demo_login(role):
    """Return a fresh copy of the synthetic login result for role."""
    if role not in DEMO_IDENTITIES:
        raise ValueError("Invalid role")
    return copy.deepcopy(DEMO_IDENTITIES[role])


def match_demo_credentials(role, identifier, secret):
    """Return the demo login result when (identifier, secret) is a demo pair for role."""
    if not demo_login_enabled():
        return None
    identifier = (identifier or '').strip()
    secret = (secret or '').strip()
    matched = False
    if role == 'admin':
        matched = identifier.lower() == DEMO_ADMIN_EMAIL and secret == DEMO_ADMIN_PASSWORD
    elif role == 'faculty':
        matched = identifier.lower() == DEMO_FACULTY_EMAIL and secret == DEMO_FACULTY_PASSWORD
    elif role == 'student':
        matched = identifier == 'demo' or (identifier == DEMO_STUDENT_ROLL and secret == DEMO_DOB)
    elif role == 'parent':
        matched = identifier == DEMO_PARENT_MOBILE or (identifier == DEMO_PARENT_ALT_MOBILE and secret == DEMO_DOB)
    return demo_login(role) if matched else None


def demo_workspace():
    return copy.deepcopy(DEMO_WORKSPACE)
