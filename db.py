from contextlib import contextmanager
import logging
import os

from dotenv import load_dotenv

load_dotenv()

logger = logging.getLogger(__name__)

PK_COLUMN_SQL = 'SERIAL PRIMARY KEY'


def get_database_url():
    url = (os.environ.get('DATABASE_URL') or '').strip()
    if not url:
        raise RuntimeError("DATABASE_URL not found. Set it in .env")
    return url


def _adapt_query(query):
    return query.replace('?', '%s')


def db_execute(cursor, query, params=None):
    if params is None:
        return cursor.execute(_adapt_query(query))
    return cursor.execute(_adapt_query(query), params)


def get_db():
    """Create a PostgreSQL DB connection."""
    try:
        import psycopg2
        from psycopg2.extras import DictCursor
    except ImportError as exc:
        raise RuntimeError("PostgreSQL backend requires psycopg2-binary") from exc
    return psycopg2.connect(get_database_url(), cursor_factory=DictCursor, connect_timeout=10)


@contextmanager
def db_connection(commit=False):
    """Context manager for PostgreSQL connections with optional commit.

    Every statement issued inside one block shares a transaction; an
    exception rolls the whole block back.
    """
    conn = get_db()
    try:
        yield conn
        if commit:
            conn.commit()
    except Exception:
        conn.rollback()
        raise
    finally:
        conn.close()


SCHEMA_STATEMENTS = [
    f'''CREATE TABLE IF NOT EXISTS users (
            id {PK_COLUMN_SQL},
            email TEXT UNIQUE NOT NULL,
            password_hash TEXT,
            name TEXT NOT NULL,
            role TEXT NOT NULL CHECK (role IN ('admin', 'faculty', 'student', 'parent')),
            created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
        )''',
    f'''CREATE TABLE IF NOT EXISTS faculty (
            id {PK_COLUMN_SQL},
            user_id INTEGER REFERENCES users(id),
            name TEXT NOT NULL,
            email TEXT NOT NULL,
            contact TEXT,
            temp_password TEXT,
            created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
        )''',
    f'''CREATE TABLE IF NOT EXISTS classes (
            id {PK_COLUMN_SQL},
            name TEXT UNIQUE NOT NULL,
            year INTEGER NOT NULL,
            section TEXT NOT NULL,
            created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
        )''',
    f'''CREATE TABLE IF NOT EXISTS subjects (
            id {PK_COLUMN_SQL},
            name TEXT UNIQUE NOT NULL,
            code TEXT NOT NULL,
            semester INTEGER NOT NULL,
            created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
        )''',
    f'''CREATE TABLE IF NOT EXISTS faculty_classes (
            id {PK_COLUMN_SQL},
            faculty_id INTEGER NOT NULL REFERENCES faculty(id),
            class_id INTEGER NOT NULL REFERENCES classes(id),
            created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
            UNIQUE(faculty_id, class_id)
        )''',
    f'''CREATE TABLE IF NOT EXISTS faculty_subjects (
            id {PK_COLUMN_SQL},
            faculty_id INTEGER NOT NULL REFERENCES faculty(id),
            subject_id INTEGER NOT NULL REFERENCES subjects(id),
            created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
            UNIQUE(faculty_id, subject_id)
        )''',
    f'''CREATE TABLE IF NOT EXISTS students (
            id {PK_COLUMN_SQL},
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
        )''',
    f'''CREATE TABLE IF NOT EXISTS parents (
            id {PK_COLUMN_SQL},
            user_id INTEGER REFERENCES users(id),
            student_id INTEGER NOT NULL REFERENCES students(id),
            name TEXT NOT NULL,
            email TEXT NOT NULL,
            mobile TEXT,
            relation TEXT,
            created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
        )''',
    'CREATE INDEX IF NOT EXISTS idx_parents_mobile ON parents (mobile)',
    f'''CREATE TABLE IF NOT EXISTS attendance (
            id {PK_COLUMN_SQL},
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
        )''',
    '''CREATE UNIQUE INDEX IF NOT EXISTS uq_attendance_month
           ON attendance (faculty_id, class_id, subject_id, month, year)''',
    f'''CREATE TABLE IF NOT EXISTS attendance_records (
            id {PK_COLUMN_SQL},
            attendance_id INTEGER NOT NULL REFERENCES attendance(id),
            student_id INTEGER NOT NULL REFERENCES students(id),
            status TEXT NOT NULL CHECK (status IN ('present', 'absent', 'od')),
            created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
        )''',
    f'''CREATE TABLE IF NOT EXISTS student_attendance (
            id {PK_COLUMN_SQL},
            attendance_id INTEGER NOT NULL REFERENCES attendance(id),
            student_id INTEGER NOT NULL REFERENCES students(id),
            present_days INTEGER NOT NULL DEFAULT 0,
            absent_days INTEGER NOT NULL DEFAULT 0,
            od_days INTEGER NOT NULL DEFAULT 0,
            created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
            UNIQUE(attendance_id, student_id)
        )''',
    f'''CREATE TABLE IF NOT EXISTS exams (
            id {PK_COLUMN_SQL},
            name TEXT NOT NULL,
            date DATE NOT NULL,
            class_id INTEGER NOT NULL REFERENCES classes(id),
            subject_id INTEGER NOT NULL REFERENCES subjects(id),
            faculty_id INTEGER NOT NULL REFERENCES faculty(id),
            total_marks INTEGER NOT NULL CHECK (total_marks >= 1),
            created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
        )''',
    f'''CREATE TABLE IF NOT EXISTS marks (
            id {PK_COLUMN_SQL},
            exam_id INTEGER NOT NULL REFERENCES exams(id),
            student_id INTEGER NOT NULL REFERENCES students(id),
            marks INTEGER NOT NULL CHECK (marks >= 0),
            created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
            UNIQUE(exam_id, student_id)
        )''',
    f'''CREATE TABLE IF NOT EXISTS reports (
            id {PK_COLUMN_SQL},
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
        )''',
]


def init_db():
    """
    Creates all required tables in PostgreSQL if they don't exist.
    """
    with db_connection(commit=True) as conn:
        c = conn.cursor()
        for statement in SCHEMA_STATEMENTS:
            db_execute(c, statement)
    logger.info("Database schema initialized.")
