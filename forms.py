import json

from flask_wtf import FlaskForm
from wtforms import (
    BooleanField,
    IntegerField,
    PasswordField,
    SelectMultipleField,
    StringField,
    TextAreaField,
    validators,
)

from aggregation import ATTENDANCE_FIELDS
from repositories import ATTENDANCE_STATUSES, MONTHS

EMAIL_PATTERN = r'^[A-Za-z0-9._%+-]+@[A-Za-z0-9.-]+\.[A-Za-z]{2,}$'
DATE_PATTERN = r'^\d{4}-\d{2}-\d{2}$'
EXAM_TYPES = ['CAT I', 'CAT II', 'Model Exam', 'Final Exam']
RELATIONS = ['Father', 'Mother', 'Guardian']
BEHAVIORS = ['Good', 'Average', 'Needs Improvement']


def email_field(label, required=True, message='Please enter a valid email address'):
    first = validators.DataRequired(message) if required else validators.Optional()
    return StringField(label, [first, validators.Regexp(EMAIL_PATTERN, message=message)])


def required(label, message=None):
    return StringField(label, [validators.DataRequired(message or f'{label} is required')])


def date_field(label='Date'):
    return StringField(label, [
        validators.DataRequired(f'{label} is required'),
        validators.Regexp(DATE_PATTERN, message=f'{label} must be YYYY-MM-DD'),
    ])


def form_errors(form):
    """All field errors joined into one message."""
    messages = []
    for errors in form.errors.values():
        messages.extend(errors)
    return ', '.join(messages) or 'Validation failed'


def load_rows(raw, required_keys):
    """Parse the JSON list of per-student rows posted with attendance and marks forms."""
    try:
        rows = json.loads(raw or '[]')
    except json.JSONDecodeError as exc:
        raise ValueError('Student rows must be a JSON list') from exc
    if not isinstance(rows, list):
        raise ValueError('Student rows must be a JSON list')
    for row in rows:
        if not isinstance(row, dict) or any(key not in row for key in required_keys):
            raise ValueError(f"Each student row needs: {', '.join(required_keys)}")
    return rows


class LoginForm(FlaskForm):
    email = email_field('Email')
    password = PasswordField('Password', [validators.Length(min=6, message='Password must be at least 6 characters')])


class RegisterForm(LoginForm):
    name = StringField('Name', [validators.Length(min=2, message='Name must be at least 2 characters')])


class StudentLoginForm(FlaskForm):
    roll_number = required('Roll number')
    dob = required('Date of birth')


class ParentLoginForm(FlaskForm):
    mobile = required('Mobile number')
    dob = required("Child's date of birth")


class ChangePasswordForm(FlaskForm):
    current_password = PasswordField('Current password', [validators.DataRequired('All fields are required.')])
    new_password = PasswordField('New password', [
        validators.DataRequired('All fields are required.'),
        validators.Length(min=6, message='Password must be at least 6 characters'),
    ])
    confirm_password = PasswordField('Confirm password', [
        validators.EqualTo('new_password', message='New passwords do not match.'),
    ])


class FacultyForm(FlaskForm):
    name = StringField('Name', [validators.Length(min=2, message='Name must be at least 2 characters')])
    email = email_field('Email')
    contact = StringField('Contact', [validators.Length(min=10, message='Contact number must be at least 10 characters')])
    classes = SelectMultipleField('Classes', validate_choice=False)
    subjects = SelectMultipleField('Subjects', validate_choice=False)
    without_account = BooleanField('Skip login account')

    def to_dict(self):
        return {
            'name': self.name.data.strip(),
            'email': self.email.data.strip().lower(),
            'contact': self.contact.data.strip(),
            'classes': list(self.classes.data or []),
            'subjects': list(self.subjects.data or []),
        }


class StudentForm(FlaskForm):
    name = StringField('Name', [validators.Length(min=2, message='Name must be at least 2 characters')])
    email = email_field('Email')
    roll_number = StringField('Roll number', [validators.Length(min=3, message='Roll number must be at least 3 characters')])
    class_name = required('Class')
    department = required('Department')
    semester = IntegerField('Semester', [validators.NumberRange(min=1, max=8)])
    year = IntegerField('Year', [validators.NumberRange(min=1, max=4)])
    dob = StringField('Date of birth', [validators.Optional(), validators.Regexp(DATE_PATTERN)])
    mobile = StringField('Mobile', [validators.Optional()])
    parent_name = StringField('Parent name', [validators.Optional()])
    parent_mobile = StringField('Parent mobile', [validators.Optional()])
    parent_email = email_field('Parent email', required=False, message='Please enter a valid parent email')
    relation = StringField('Relation', [validators.Optional(), validators.AnyOf(RELATIONS)])

    def to_dict(self):
        return {
            'name': self.name.data.strip(),
            'email': self.email.data.strip().lower(),
            'roll_number': self.roll_number.data.strip(),
            'class': self.class_name.data.strip(),
            'department': self.department.data.strip(),
            'semester': self.semester.data,
            'year': self.year.data,
            'dob': self.dob.data or None,
            'mobile': self.mobile.data or '',
            'parent_name': self.parent_name.data or '',
            'parent_mobile': self.parent_mobile.data or '',
            'parent_email': (self.parent_email.data or '').strip().lower(),
            'relation': self.relation.data or '',
        }


class ClassForm(FlaskForm):
    name = required('Class name')
    year = IntegerField('Year', [validators.NumberRange(min=1, max=4)])
    section = required('Section')

    def to_dict(self):
        return {'name': self.name.data.strip(), 'year': self.year.data, 'section': self.section.data.strip()}


class ClassFacultyForm(FlaskForm):
    faculty_ids = SelectMultipleField('Faculty', coerce=int, validate_choice=False)


class SubjectForm(FlaskForm):
    name = required('Subject name')
    code = required('Subject code')
    semester = IntegerField('Semester', [validators.NumberRange(min=1, max=8)])

    def to_dict(self):
        return {'name': self.name.data.strip(), 'code': self.code.data.strip(), 'semester': self.semester.data}


class AttendanceUpdateForm(FlaskForm):
    month = StringField('Month', [validators.DataRequired('Month is required'), validators.AnyOf(MONTHS)])
    year = StringField('Year', [validators.Regexp(r'^\d{4}$', message='Year must have four digits')])
    working_days = IntegerField('Working days', [
        validators.NumberRange(min=1, message='Working days must be at least 1'),
    ])
    students = TextAreaField('Students', [validators.DataRequired('Student rows are required')])

    def student_rows(self):
        return load_rows(self.students.data, ('id', 'present_days', 'absent_days', 'od_days'))


class AttendanceForm(AttendanceUpdateForm):
    class_name = required('Class')
    subject = required('Subject')


def day_count(label):
    return IntegerField(label, [
        validators.InputRequired(f'{label} is required'),
        validators.NumberRange(min=0, message=f'{label} must be zero or more'),
    ])


class AttendanceAdjustForm(FlaskForm):
    working_days = IntegerField('Working days', [
        validators.NumberRange(min=1, message='Working days must be at least 1'),
    ])
    present_days = day_count('Present days')
    absent_days = day_count('Absent days')
    od_days = day_count('OD days')
    changed_field = StringField('Field', [validators.AnyOf(ATTENDANCE_FIELDS, message='Unknown attendance field')])
    value = day_count('Value')

    def row(self):
        return {
            'present_days': self.present_days.data,
            'absent_days': self.absent_days.data,
            'od_days': self.od_days.data,
        }


class AttendanceSessionForm(FlaskForm):
    date = date_field()
    class_name = required('Class')
    subject = required('Subject')
    working_days = IntegerField('Working days', [
        validators.NumberRange(min=1, message='Working days must be at least 1'),
    ])
    students = TextAreaField('Students', [validators.DataRequired('Student rows are required')])

    def student_rows(self):
        rows = load_rows(self.students.data, ('id', 'status'))
        for row in rows:
            if row['status'] not in ATTENDANCE_STATUSES:
                raise ValueError(f"Invalid attendance status: {row['status']}")
        return rows


class MarksUpdateForm(FlaskForm):
    students = TextAreaField('Students', [validators.DataRequired('Student rows are required')])

    def student_rows(self):
        rows = load_rows(self.students.data, ('id', 'marks'))
        for row in rows:
            if isinstance(row['marks'], bool) or not isinstance(row['marks'], (int, float)):
                raise ValueError(f"Marks must be a number for student {row['id']}")
        return rows


class MarksForm(MarksUpdateForm):
    date = date_field()
    class_name = required('Class')
    subject = required('Subject')
    exam_type = StringField('Exam type', [validators.DataRequired('Exam type is required'), validators.AnyOf(EXAM_TYPES)])
    total_marks = IntegerField('Total marks', [validators.NumberRange(min=1, message='Total marks must be at least 1')])


class ReportForm(FlaskForm):
    date = date_field()
    roll_number = required('Roll number')
    parent_email = email_field('Parent email', message='Please enter a valid parent email')
    attendance = required('Attendance')
    cat_i = required('CAT I', 'CAT I marks are required')
    cat_ii = required('CAT II', 'CAT II marks are required')
    model = required('Model', 'Model exam marks are required')
    behavior = StringField('Behavior', [validators.DataRequired('Behavior rating is required'), validators.AnyOf(BEHAVIORS)])
    comments = TextAreaField('Comments', [validators.Optional()])

    def to_dict(self):
        return {
            'date': self.date.data,
            'roll_number': self.roll_number.data.strip(),
            'parent_email': self.parent_email.data.strip().lower(),
            'attendance': self.attendance.data,
            'cat_i': self.cat_i.data,
            'cat_ii': self.cat_ii.data,
            'model': self.model.data,
            'behavior': self.behavior.data,
            'comments': self.comments.data or '',
        }
