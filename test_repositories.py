from datetime import date

import pytest

import repositories


@pytest.fixture
def db(fake_db):
    def install(results=None):
        return fake_db(results, modules=[repositories])
    return install


def test_delete_student_removes_dependents_before_student(db):
    cursor = db()
    repositories.delete_student(4)
    tables = [q.split("FROM ")[1].split(" ")[0] for q, _ in cursor.executed]
    assert tables == ["parents", "attendance_records", "student_attendance", "marks", "reports", "students"]
    assert all(params == (4,) for _, params in cursor.executed)


def test_delete_faculty_removes_links_first(db):
    cursor = db()
    repositories.delete_faculty(2)
    assert [q for q, _ in cursor.executed] == [
        "DELETE FROM faculty_classes WHERE faculty_id = ?",
        "DELETE FROM faculty_subjects WHERE faculty_id = ?",
        "DELETE FROM faculty WHERE id = ?",
    ]


def test_add_faculty_writes_join_rows_for_resolved_names(db):
    cursor = db({
        "INSERT INTO faculty (user_id": {"id": 7},
        "FROM classes WHERE name = ANY": [{"id": 1, "name": "Second Year A"}],
        "FROM subjects WHERE name = ANY": [{"id": 3, "name": "Algorithms"}],
    })
    faculty = repositories.add_faculty({
        "name": "Ada",
        "email": "ada@example.com",
        "contact": "1234567890",
        "classes": ["Second Year A"],
        "subjects": ["Algorithms"],
    })
    assert faculty["id"] == 7
    assert cursor.queries("INSERT INTO faculty_classes")[0][1] == (7, 1)
    assert cursor.queries("INSERT INTO faculty_subjects")[0][1] == (7, 3)


def test_add_faculty_rejects_unknown_class(db):
    db({"INSERT INTO faculty (user_id": {"id": 7}, "FROM classes WHERE name = ANY": []})
    with pytest.raises(ValueError, match="Class not found: Nowhere"):
        repositories.add_faculty({"name": "Ada", "email": "ada@example.com", "classes": ["Nowhere"]})


def test_add_student_rejects_duplicate_roll_number(db):
    cursor = db({
        "FROM classes WHERE name": {"id": 1},
        "FROM students WHERE roll_number": {"id": 3},
    })
    with pytest.raises(ValueError, match="Roll number already exists"):
        repositories.add_student({"name": "John", "email": "j@example.com", "roll_number": "IT2023001",
                                  "class": "Second Year A", "department": "IT", "semester": 4, "year": 2})
    assert not cursor.queries("INSERT INTO students")


def test_add_student_inserts_parent_when_details_given(db):
    cursor = db({
        "FROM classes WHERE name": {"id": 1},
        "INSERT INTO students": {"id": 11},
    })
    repositories.add_student({
        "name": "John", "email": "j@example.com", "roll_number": "IT2023009", "class": "Second Year A",
        "department": "IT", "semester": 4, "year": 2, "dob": "2005-06-01", "mobile": "",
        "parent_name": "Mary", "parent_email": "mary@example.com", "parent_mobile": "9000000000",
        "relation": "Mother",
    })
    assert cursor.queries("INSERT INTO parents")[0][1] == (11, "Mary", "mary@example.com", "9000000000", "Mother")


def test_get_students_uses_first_parent_row(db):
    db({
        "FROM parents WHERE student_id": {"id": 1, "name": "Mary", "email": "mary@example.com",
                                          "mobile": "9000000000", "relation": "Mother"},
        "FROM students s": [{
            "id": 5, "user_id": None, "name": "John", "email": "j@example.com", "roll_number": "IT2023001",
            "class_id": 1, "class_name": "Second Year A", "department": "IT", "semester": 4, "year": 2,
            "dob": date(2005, 6, 1), "mobile": "",
        }],
    })
    students = repositories.get_students()
    assert students[0]["class"] == "Second Year A"
    assert students[0]["dob"] == "2005-06-01"
    assert students[0]["parent_name"] == "Mary"
    assert students[0]["relation"] == "Mother"


def test_add_attendance_record_rejects_existing_month(db, monkeypatch):
    monkeypatch.setattr(repositories, "resolve_faculty_id", lambda *args: 5)
    cursor = db({
        "FROM classes WHERE name": {"id": 1},
        "FROM subjects WHERE name": {"id": 2},
        "SELECT id FROM attendance": {"id": 9},
    })
    attendance = {"month": "March", "year": "2024", "class": "Second Year A", "subject": "Algorithms",
                  "working_days": 22, "faculty_id": 5}
    rows = [{"id": 1, "present_days": 18, "absent_days": 3, "od_days": 1}]
    with pytest.raises(ValueError, match="already exists"):
        repositories.add_attendance_record(attendance, rows)
    assert not cursor.queries("INSERT INTO attendance")


def test_add_attendance_record_stores_rounded_averages(db, monkeypatch):
    monkeypatch.setattr(repositories, "resolve_faculty_id", lambda *args: 5)
    cursor = db({
        "FROM classes WHERE name": {"id": 1},
        "FROM subjects WHERE name": {"id": 2},
        "INSERT INTO attendance": {"id": 30},
    })
    attendance = {"month": "March", "year": 2024, "class": "Second Year A", "subject": "Algorithms",
                  "working_days": 22, "faculty_id": 5}
    rows = [
        {"id": 1, "present_days": 18, "absent_days": 3, "od_days": 1},
        {"id": 2, "present_days": 20, "absent_days": 1, "od_days": 1},
    ]
    record = repositories.add_attendance_record(attendance, rows)
    header_params = cursor.queries("INSERT INTO attendance")[0][1]
    assert header_params == (date(2024, 3, 1), "March", "2024", 1, 2, 5, 22, 19, 2, 1)
    assert len(cursor.queries("INSERT INTO student_attendance")) == 2
    assert record["id"] == 30
    assert record["present_days"] == 19


def test_add_attendance_record_rejects_days_over_working_days(db, monkeypatch):
    monkeypatch.setattr(repositories, "resolve_faculty_id", lambda *args: 5)
    cursor = db()
    attendance = {"month": "March", "year": "2024", "class": "A", "subject": "B", "working_days": 10, "faculty_id": 5}
    with pytest.raises(ValueError, match="exceed 10 working days"):
        repositories.add_attendance_record(attendance, [{"id": 1, "present_days": 8, "absent_days": 2, "od_days": 1}])
    assert cursor.executed == []


def test_add_marks_record_clamps_marks(db, monkeypatch):
    monkeypatch.setattr(repositories, "resolve_faculty_id", lambda *args: 5)
    cursor = db({
        "FROM classes WHERE name": {"id": 1},
        "FROM subjects WHERE name": {"id": 2},
        "INSERT INTO exams": {"id": 4},
    })
    exam = {"date": "2024-03-10", "class": "Second Year A", "subject": "Algorithms", "exam_type": "CAT I",
            "total_marks": 50, "faculty_id": 5}
    record = repositories.add_marks_record(exam, [{"id": 1, "marks": 60}, {"id": 2, "marks": -2}, {"id": 3, "marks": 45}])
    stored = [params[2] for _, params in cursor.queries("INSERT INTO marks")]
    assert stored == [50, 0, 45]
    assert record["average_marks"] == 31.7


def test_get_marks_records_averages_student_marks(db):
    db({
        "SELECT marks FROM marks": [{"marks": 42}, {"marks": 38}, {"marks": 45}],
        "FROM exams e": [{"id": 1, "name": "CAT I", "date": date(2024, 3, 10), "total_marks": 50,
                          "class_name": "Second Year A", "subject_name": "Algorithms"}],
    })
    records = repositories.get_marks_records(5)
    assert records == [{
        "id": 1, "date": "2024-03-10", "class": "Second Year A", "subject": "Algorithms",
        "exam_type": "CAT I", "total_marks": 50, "average_marks": 41.7,
    }]


def test_resolve_faculty_id_falls_back_to_email(db):
    db({"FROM faculty WHERE LOWER(email)": {"id": 12}})
    assert repositories.resolve_faculty_id("demo-faculty-profile-id", "ada@example.com") == 12


def test_resolve_faculty_id_reports_missing_profile(db):
    db()
    with pytest.raises(ValueError, match="not properly set up"):
        repositories.resolve_faculty_id(99, "ghost@example.com")


def test_get_faculty_workspace_offers_every_subject_for_every_class(db):
    db({
        "FROM faculty_classes fc": [{"id": 1, "name": "Second Year A"}, {"id": 2, "name": "Third Year B"}],
        "FROM faculty_subjects l": [{"name": "Algorithms"}],
        "FROM students WHERE class_id": [{"id": 5, "name": "John", "roll_number": "IT1", "email": "j@example.com"}],
    })
    workspace = repositories.get_faculty_workspace(3)
    assert workspace["classes"] == ["Second Year A", "Third Year B"]
    assert workspace["subjects"] == {"Second Year A": ["Algorithms"], "Third Year B": ["Algorithms"]}
    assert workspace["students"]["Third Year B"][0]["roll_number"] == "IT1"


def test_get_student_attendance_formats_percentage(db):
    db({"FROM attendance_records": [{"status": "present"}, {"status": "od"}, {"status": "absent"}]})
    assert repositories.get_student_attendance(5) == "67%"


def test_get_dashboard_counts_collects_each_table(monkeypatch):
    totals = {"faculty": 3, "students": 120, "classes": 4, "subjects": 9}
    monkeypatch.setattr(repositories, "count_rows", lambda table: totals[table])
    assert repositories.get_dashboard_counts() == {
        "faculty_count": 3, "student_count": 120, "class_count": 4, "subject_count": 9,
    }


def test_count_rows_rejects_unknown_table():
    with pytest.raises(ValueError):
        repositories.count_rows("users; DROP TABLE users")


def test_add_faculty_skips_repeated_names(db):
    cursor = db({
        "INSERT INTO faculty (user_id": {"id": 7},
        "FROM classes WHERE name = ANY": [{"id": 1, "name": "Second Year A"}],
        "FROM subjects WHERE name = ANY": [{"id": 3, "name": "Algorithms"}],
    })
    repositories.add_faculty({
        "name": "Ada",
        "email": "ada@example.com",
        "classes": ["Second Year A", "Second Year A"],
        "subjects": ["Algorithms", "Algorithms"],
    })
    assert cursor.queries("FROM classes WHERE name = ANY")[0][1] == (["Second Year A"],)
    assert len(cursor.queries("INSERT INTO faculty_classes")) == 1
    assert len(cursor.queries("INSERT INTO faculty_subjects")) == 1


def test_get_faculty_workspace_prefills_default_days(db):
    db({
        "FROM faculty_classes fc": [{"id": 1, "name": "Second Year A"}],
        "FROM faculty_subjects l": [{"name": "Algorithms"}],
        "FROM students WHERE class_id": [{"id": 5, "name": "John", "roll_number": "IT1", "email": "j@example.com"}],
    })
    student = repositories.get_faculty_workspace(3, working_days=22)["students"]["Second Year A"][0]
    assert (student["present_days"], student["absent_days"], student["od_days"]) == (17, 3, 1)


def test_delete_class_removes_links_first(db):
    cursor = db()
    repositories.delete_class(3)
    assert [q for q, _ in cursor.executed] == [
        "DELETE FROM faculty_classes WHERE class_id = ?",
        "DELETE FROM classes WHERE id = ?",
    ]


def test_delete_subject_removes_links_first(db):
    cursor = db()
    repositories.delete_subject(6)
    assert [q for q, _ in cursor.executed] == [
        "DELETE FROM faculty_subjects WHERE subject_id = ?",
        "DELETE FROM subjects WHERE id = ?",
    ]


def test_update_attendance_record_moves_month_and_recomputes(db):
    cursor = db({"FROM attendance WHERE id = ? AND faculty_id": {"id": 30, "class_id": 1, "subject_id": 2}})
    attendance = {"month": "April", "year": 2024, "working_days": 20}
    rows = [
        {"id": 1, "present_days": 18, "absent_days": 2, "od_days": 0},
        {"id": 2, "present_days": 15, "absent_days": 4, "od_days": 1},
    ]
    record = repositories.update_attendance_record(30, attendance, rows, 5)
    header_params = cursor.queries("UPDATE attendance")[0][1]
    assert header_params == (date(2024, 4, 1), "April", "2024", 20, 17, 3, 1, 30)
    assert cursor.queries("UPDATE student_attendance")[1][1] == (15, 4, 1, 30, 2)
    assert record["month"] == "April"
    assert record["present_days"] == 17


def test_update_attendance_record_rejects_days_over_working_days(db):
    cursor = db()
    attendance = {"month": "March", "year": "2024", "working_days": 10}
    with pytest.raises(ValueError, match="exceed 10 working days"):
        repositories.update_attendance_record(30, attendance, [{"id": 1, "present_days": 9, "absent_days": 2, "od_days": 0}], 5)
    assert cursor.executed == []


def test_update_attendance_record_rejects_month_taken_by_another_record(db):
    cursor = db({
        "FROM attendance WHERE id = ? AND faculty_id": {"id": 30, "class_id": 1, "subject_id": 2},
        "AND id <> ?": {"id": 31},
    })
    attendance = {"month": "April", "year": "2024", "working_days": 20}
    with pytest.raises(ValueError, match="already exists"):
        repositories.update_attendance_record(30, attendance, [{"id": 1, "present_days": 18, "absent_days": 2, "od_days": 0}], 5)
    assert cursor.queries("AND id <> ?")[0][1] == (5, 1, 2, "April", "2024", 30)
    assert not cursor.queries("UPDATE attendance")


def test_update_attendance_record_of_other_faculty_is_not_found(db):
    cursor = db()
    attendance = {"month": "March", "year": "2024", "working_days": 20}
    with pytest.raises(repositories.RecordNotFoundError):
        repositories.update_attendance_record(30, attendance, [{"id": 1, "present_days": 18, "absent_days": 2, "od_days": 0}], 2)
    assert cursor.executed[0][1] == (30, 2)
    assert not cursor.queries("UPDATE")


def test_update_exam_marks_clamps_to_stored_total(db):
    cursor = db({"FROM exams WHERE id = ? AND faculty_id": {"total_marks": 50}})
    record = repositories.update_exam_marks(4, [{"id": 1, "marks": 70}, {"id": 2, "marks": -5}, {"id": 3, "marks": 41}], 5)
    assert cursor.queries("FROM exams WHERE id")[0][1] == (4, 5)
    assert [params for _, params in cursor.queries("UPDATE marks")] == [(50, 4, 1), (0, 4, 2), (41, 4, 3)]
    assert record == {"id": 4, "average_marks": 30.3}


def test_delete_marks_record_of_other_faculty_deletes_nothing(db):
    cursor = db()
    with pytest.raises(repositories.RecordNotFoundError):
        repositories.delete_marks_record(4, 2)
    assert not cursor.queries("DELETE")


def test_delete_report_checks_owner_first(db):
    cursor = db({"FROM reports WHERE id = ? AND faculty_id": {"id": 8}})
    repositories.delete_report(8, 5)
    assert [q for q, _ in cursor.executed] == [
        "SELECT id FROM reports WHERE id = ? AND faculty_id = ?",
        "DELETE FROM reports WHERE id = ?",
    ]


def test_add_attendance_session_counts_statuses(db, monkeypatch):
    monkeypatch.setattr(repositories, "resolve_faculty_id", lambda *args: 5)
    cursor = db({
        "FROM classes WHERE name": {"id": 1},
        "FROM subjects WHERE name": {"id": 2},
        "INSERT INTO attendance (date": {"id": 40},
    })
    attendance = {"date": "2024-03-11", "class": "Second Year A", "subject": "Algorithms",
                  "working_days": "1", "faculty_id": 5}
    statuses = [{"id": 1, "status": "present"}, {"id": 2, "status": "od"}, {"id": 3, "status": "absent"}]
    summary = repositories.add_attendance_session(attendance, statuses)
    assert cursor.queries("INSERT INTO attendance (date")[0][1] == ("2024-03-11", 1, 2, 5, 1)
    assert [p for _, p in cursor.queries("INSERT INTO attendance_records")][2] == (40, 3, "absent")
    assert summary == {
        "id": 40, "date": "2024-03-11", "class": "Second Year A", "subject": "Algorithms",
        "total_students": 3, "present_students": 1, "absent_students": 1, "od_students": 1, "working_days": 1,
    }


def test_add_attendance_session_rejects_unknown_status(db, monkeypatch):
    monkeypatch.setattr(repositories, "resolve_faculty_id", lambda *args: pytest.fail("should not resolve"))
    cursor = db()
    attendance = {"date": "2024-03-11", "class": "A", "subject": "B", "working_days": 1, "faculty_id": 5}
    with pytest.raises(ValueError, match="Invalid attendance status"):
        repositories.add_attendance_session(attendance, [{"id": 1, "status": "late"}])
    assert cursor.executed == []


def test_get_attendance_sessions_summarises_each_session(db):
    db({
        "FROM attendance a": [{"id": 40, "date": date(2024, 3, 11), "working_days": 1,
                               "class_name": "Second Year A", "subject_name": "Algorithms"}],
        "FROM attendance_records WHERE attendance_id": [{"status": "present"}, {"status": "present"}, {"status": "od"}],
    })
    sessions = repositories.get_attendance_sessions(5)
    assert sessions == [{
        "id": 40, "date": "2024-03-11", "class": "Second Year A", "subject": "Algorithms",
        "total_students": 3, "present_students": 2, "absent_students": 0, "od_students": 1, "working_days": 1,
    }]


def test_get_child_reports_includes_faculty_name(db):
    cursor = db({"FROM reports r": [{
        "id": 2, "date": date(2024, 3, 31), "faculty_name": "Ada", "attendance": "86%", "cat_i": "42",
        "cat_ii": "45", "model": "80", "behavior": "Good", "comments": "Steady progress",
    }]})
    reports = repositories.get_child_reports(5)
    assert cursor.queries("FROM reports r")[0][1] == (5,)
    assert reports == [{
        "id": 2, "date": "2024-03-31", "faculty_name": "Ada", "attendance": "86%", "cat_i": "42",
        "cat_ii": "45", "model": "80", "behavior": "Good", "comments": "Steady progress",
    }]
