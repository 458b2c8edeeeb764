"""Initial schema for the school portal.

Revision ID: 001_initial
Revises:
Create Date: 2026-10-19 00:00:00.000000

"""
from alembic import op


# revision identifiers, used by Alembic.
revision = '001_initial'
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    """Create all tables and indexes for the school portal."""

    # Login accounts for every role
    op.execute('''CREATE TABLE IF NOT EXISTS users (
                    id SERIAL PRIMARY KEY,
                    email TEXT UNIQUE NOT NULL,
                    password_hash TEXT,
                    name TEXT NOT NULL,
                    role TEXT NOT NULL CHECK (role IN ('admin', 'faculty', 'student', 'parent')),
                    created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
                )''')

    op.execute('''CREATE TABLE IF NOT EXISTS faculty (
                    id SERIAL PRIMARY KEY,
                    user_id INTEGER REFERENCES users(id),
                    name TEXT NOT NULL,
                    email TEXT NOT NULL,
                    contact TEXT,
                    temp_password TEXT,
                    created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
                )''')

    op.execute('''CREATE TABLE IF NOT EXISTS classes (
                    id SERIAL PRIMARY KEY,
                    name TEXT UNIQUE NOT NULL,
                    year INTEGER NOT NULL,
                    section TEXT NOT NULL,
                    created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
                )''')

    op.execute('''CREATE TABLE IF NOT EXISTS subjects (
                    id SERIAL PRIMARY KEY,
                    name TEXT UNIQUE NOT NULL,
                    code TEXT NOT NULL,
                    semester INTEGER NOT NULL,
                    created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
                )''')

    # Faculty <-> class / subject links
    op.execute('''CREATE TABLE IF NOT EXISTS faculty_classes (
                    id SERIAL PRIMARY KEY,
                    faculty_id INTEGER NOT NULL REFERENCES faculty(id),
                    class_id INTEGER NOT NULL REFERENCES classes(id),
                    created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
                    UNIQUE(faculty_id, class_id)
                )''')
    op.execute('''CREATE TABLE IF NOT EXISTS faculty_subjects (
                    id SERIAL PRIMARY KEY,
                    faculty_id INTEGER NOT NULL REFERENCES faculty(id),
                    subject_id INTEGER NOT NULL REFERENCES subjects(id),
                    created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
                    UNIQUE(faculty_id, subject_id)
                )''')

    op.execute('''CREATE TABLE IF NOT EXISTS students (
                    id SERIAL PRIMARY KEY,
                    user_id INTEGER REFERENCES users(id),
                    name TEXT NOT NULL,
                    email TEXT NOT NULL,
                    roll_number TEXT UNIQUE NOT NULL,
                    class_id INTEGER NOT NULL REFERENCES classes(id),
                    department TEXT NOT NULL,
                    semester INTEGER NOT NULL,
                    year INTEGER NOT NULL,
                    dob DATE,
                    mobile TEXT,
                    created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
                )''')

    op.execute('''CREATE TABLE IF NOT EXISTS parents (
                    id SERIAL PRIMARY KEY,
                    user_id INTEGER REFERENCES users(id),
                    student_id INTEGER NOT NULL REFERENCES students(id),
                    name TEXT NOT NULL,
                    email TEXT NOT NULL,
                    mobile TEXT,
                    relation TEXT,
                    created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
                )''')
    op.execute('CREATE INDEX IF NOT EXISTS idx_parents_mobile ON parents (mobile)')

    # Monthly aggregates carry month/year; dated sessions leave them NULL
    op.execute('''CREATE TABLE IF NOT EXISTS attendance (
                    id SERIAL PRIMARY KEY,
                    date DATE,
                    month TEXT,
                    year TEXT,
                    class_id INTEGER NOT NULL REFERENCES classes(id),
                    subject_id INTEGER NOT NULL REFERENCES subjects(id),
                    faculty_id INTEGER NOT NULL REFERENCES faculty(id),
                    working_days INTEGER NOT NULL,
                    present_days INTEGER DEFAULT 0,
                    absent_days INTEGER DEFAULT 0,
                    od_days INTEGER DEFAULT 0,
                    created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
                )''')
    op.execute('''CREATE UNIQUE INDEX IF NOT EXISTS uq_attendance_month
                  ON attendance (faculty_id, class_id, subject_id, month, year)''')

    op.execute('''CREATE TABLE IF NOT EXISTS attendance_records (
                    id SERIAL PRIMARY KEY,
                    attendance_id INTEGER NOT NULL REFERENCES attendance(id),
                    student_id INTEGER NOT NULL REFERENCES students(id),
                    status TEXT NOT NULL CHECK (status IN ('present', 'absent', 'od')),
                    created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
                )''')
    op.execute('''CREATE TABLE IF NOT EXISTS student_attendance (
                    id SERIAL PRIMARY KEY,
                    attendance_id INTEGER NOT NULL REFERENCES attendance(id),
                    student_id INTEGER NOT NULL REFERENCES students(id),
                    present_days INTEGER NOT NULL DEFAULT 0,
                    absent_days INTEGER NOT NULL DEFAULT 0,
                    od_days INTEGER NOT NULL DEFAULT 0,
                    created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
                    UNIQUE(attendance_id, student_id)
                )''')

    op.execute('''CREATE TABLE IF NOT EXISTS exams (
                    id SERIAL PRIMARY KEY,
                    name TEXT NOT NULL,
                    date DATE NOT NULL,
                    class_id INTEGER NOT NULL REFERENCES classes(id),
                    subject_id INTEGER NOT NULL REFERENCES subjects(id),
                    faculty_id INTEGER NOT NULL REFERENCES faculty(id),
                    total_marks INTEGER NOT NULL CHECK (total_marks >= 1),
                    created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
                )''')
    op.execute('''CREATE TABLE IF NOT EXISTS marks (
                    id SERIAL PRIMARY KEY,
                    exam_id INTEGER NOT NULL REFERENCES exams(id),
                    student_id INTEGER NOT NULL REFERENCES students(id),
                    marks INTEGER NOT NULL CHECK (marks >= 0),
                    created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
                    UNIQUE(exam_id, student_id)
                )''')

    op.execute('''CREATE TABLE IF NOT EXISTS reports (
                    id SERIAL PRIMARY KEY,
                    date DATE NOT NULL,
                    student_id INTEGER NOT NULL REFERENCES students(id),
                    faculty_id INTEGER NOT NULL REFERENCES faculty(id),
                    parent_email TEXT,
                    attendance TEXT,
                    cat_i TEXT,
                    cat_ii TEXT,
                    model TEXT,
                    behavior TEXT,
                    comments TEXT,
                    sent BOOLEAN DEFAULT FALSE,
                    created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
                )''')


def downgrade() -> None:
    """Drop all tables (destructive)."""
    op.execute('DROP TABLE IF EXISTS reports CASCADE')
    op.execute('DROP TABLE IF EXISTS marks CASCADE')
    op.execute('DROP TABLE IF EXISTS exams CASCADE')
    op.execute('DROP TABLE IF EXISTS student_attendance CASCADE')
    op.execute('DROP TABLE IF EXISTS attendance_records CASCADE')
    op.execute('DROP TABLE IF EXISTS attendance CASCADE')
    op.execute('DROP TABLE IF EXISTS parents CASCADE')
    op.execute('DROP TABLE IF EXISTS students CASCADE')
    op.execute('DROP TABLE IF EXISTS faculty_subjects CASCADE')
    op.execute('DROP TABLE IF EXISTS faculty_classes CASCADE')
    op.execute('DROP TABLE IF EXISTS subjects CASCADE')
    op.execute('DROP TABLE IF EXISTS classes CASCADE')
    op.execute('DROP TABLE IF EXISTS faculty CASCADE')
    op.execute('DROP TABLE IF EXISTS users CASCADE')
