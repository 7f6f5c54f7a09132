from pathlib import Path

import pytest

from fastapi.testclient import TestClient

from exam_eval.exceptions import DependencyError
from exam_eval.models import Paper, PaperStatus, Teacher
from exam_eval.services.grading_queue import GradingQueue, QueueFull
from exam_eval.services.papers import enqueue_grading, parse_rubric, regrade, run_grading_pipeline
from exam_eval.services.grading import PlaceholderGrader
from exam_eval.services.ocr import PlaceholderTextExtractor

QUESTION_FILE = ("questions.pdf", b"%PDF-1.4 question paper", "application/pdf")
ANSWER_FILE = ("answers.jpg", b"\xff\xd8\xff answer sheet", "image/jpeg")


def upload(client: TestClient, headers, files=None, **fields):
    data = {
        "roll_no": "21CS001",
        "subject": "Mathematics",
        "exam_date": "2024-03-15",
        "max_marks": "100",
        "title": "Midterm",
        "rubric": '{"accuracy": {"points": 60}, "clarity": {"points": 40}}',
    }
    data.update(fields)
    if files is None:
        files = {"question_paper": QUESTION_FILE, "answer_sheet": ANSWER_FILE}
    return client.post("/api/papers/upload", data=data, files=files, headers=headers)


class BrokenExtractor:
    def extract_text(self, path):
        raise DependencyError("OCR backend down", service="ocr")


class FullQueue:
    def submit(self, paper_id):
        raise QueueFull(1)


def test_end_to_end_paper_lifecycle(client: TestClient, make_user, auth_headers):
    admin = make_user(role="admin")
    teacher = make_user(role="teacher")
    student = make_user(role="student", roll_no="21CS001", name="Asha", section="B")

    # 1. upload
    response = upload(client, auth_headers(admin))
    assert response.status_code == 201
    paper = response.json()["paper"]
    assert paper["status"] == "uploaded"
    assert paper["student_name"] == "Asha"
    assert paper["ai_grade"] is None
    paper_id = paper["id"]

    # 2. pipeline has run
    response = client.get(f"/api/papers/{paper_id}", headers=auth_headers(admin))
    paper = response.json()
    assert paper["status"] == "ai_graded"
    assert 0 <= paper["ai_grade"]["score"] <= 100
    assert paper["ai_grade"]["breakdown"]
    assert paper["grading_attempts"] == 1

    # 3. teacher review, then final grade
    response = client.put(
        f"/api/papers/{paper_id}/status",
        json={
            "status": "teacher_reviewing",
            "teacher_review": {"corrections": "Q2 deserves more credit", "status": "approved"},
        },
        headers=auth_headers(teacher),
    )
    assert response.status_code == 200
    assert response.json()["teacher_review"]["reviewer_id"] == teacher.id
    assert response.json()["teacher_review"]["status"] == "approved"

    response = client.put(
        f"/api/papers/{paper_id}/status",
        json={"status": "final_graded", "final_grade": {"score": 78, "feedback": "Solid work"}},
        headers=auth_headers(admin),
    )
    assert response.status_code == 200
    assert response.json()["final_grade"]["score"] == 78
    assert response.json()["final_grade"]["graded_by"] == admin.id

    response = client.get("/api/papers/results/21CS001")
    assert response.status_code == 404

    # 4. release
    response = client.put(
        f"/api/papers/{paper_id}/status", json={"status": "released"}, headers=auth_headers(admin)
    )
    assert response.status_code == 200

    response = client.get("/api/papers/results/21CS001")
    assert response.status_code == 200
    results = response.json()
    assert [r["id"] for r in results] == [paper_id]
    assert results[0]["final_grade"]["score"] == 78
    assert set(results[0]) == {"id", "title", "subject", "exam_date", "max_marks", "ai_grade", "final_grade"}

    # 5. deactivating the student keeps the paper
    assert client.delete(f"/api/users/{student.id}", headers=auth_headers(admin)).status_code == 200
    response = client.get(f"/api/papers/{paper_id}", headers=auth_headers(admin))
    assert response.status_code == 200
    assert client.get("/api/papers/results/21CS001").status_code == 200


def test_spoc_can_upload_but_students_and_teachers_cannot(client, make_user, auth_headers):
    make_user(role="student", roll_no="21CS001")
    spoc = make_user(role="spoc")
    teacher = make_user(role="teacher")
    student = make_user(role="student", roll_no="21CS002")

    assert upload(client, auth_headers(spoc)).status_code == 201
    assert upload(client, auth_headers(teacher)).status_code == 403
    assert upload(client, auth_headers(student)).status_code == 403
    assert upload(client, {}).status_code == 401


def test_upload_validation(client, settings, make_user, auth_headers):
    admin = make_user(role="admin")
    make_user(role="student", roll_no="21CS001")
    headers = auth_headers(admin)

    bad_type = {"question_paper": QUESTION_FILE, "answer_sheet": ("answers.docx", b"doc", "application/msword")}
    assert upload(client, headers, files=bad_type).status_code == 400

    missing = {"question_paper": QUESTION_FILE}
    response = upload(client, headers, files=missing)
    assert response.status_code == 400
    assert response.json()["code"] == "VALIDATION_ERROR"

    assert upload(client, headers, max_marks="0").status_code == 400

    response = upload(client, headers, roll_no="99XX999")
    assert response.status_code == 404
    assert response.json()["code"] == "STUDENT_NOT_FOUND"

    settings.max_upload_bytes = 5
    assert upload(client, headers).status_code == 400


def test_upload_rejects_inactive_student(client, make_user, auth_headers):
    admin = make_user(role="admin")
    make_user(role="student", roll_no="21CS001", is_active=False)
    assert upload(client, auth_headers(admin)).status_code == 404


def test_upload_stores_files_and_free_text_rubric(client, session, settings, make_user, auth_headers):
    admin = make_user(role="admin")
    make_user(role="student", roll_no="21CS001")
    response = upload(client, auth_headers(admin), rubric="Marks for method and final answer")
    paper = session.get(Paper, response.json()["paper"]["id"])

    assert paper.rubric_json == {"text": "Marks for method and final answer"}
    assert paper.original_file_name == "questions.pdf|answers.jpg"
    assert Path(paper.question_paper_path).parent == Path(settings.upload_dir)
    assert Path(paper.answer_paper_path).read_bytes() == ANSWER_FILE[1]
    assert Path(paper.question_paper_path).name.startswith("question_questions_")


def test_parse_rubric():
    assert parse_rubric(None) == {}
    assert parse_rubric('{"a": 1}') == {"a": 1}
    assert parse_rubric("[1, 2]") == {"text": "[1, 2]"}
    assert parse_rubric("be fair") == {"text": "be fair"}


def test_students_only_see_their_own_papers(client, make_user, make_paper, auth_headers):
    alice = make_user(role="student", roll_no="21CS010")
    bob = make_user(role="student", roll_no="21CS011")
    alice_paper = make_paper(alice)
    bob_paper = make_paper(bob)

    assert client.get(f"/api/papers/{alice_paper.id}", headers=auth_headers(alice)).status_code == 200
    assert client.get(f"/api/papers/{bob_paper.id}", headers=auth_headers(alice)).status_code == 403

    response = client.get("/api/papers", headers=auth_headers(alice))
    assert [p["id"] for p in response.json()["papers"]] == [alice_paper.id]

    response = client.get(f"/api/papers/{bob_paper.id}/download", headers=auth_headers(alice))
    assert response.status_code == 403


def test_teacher_list_scope(client, session, make_user, make_paper, auth_headers):
    teacher_user = make_user(role="teacher")
    admin = make_user(role="admin")
    student = make_user(role="student", roll_no="21CS020")
    teacher = Teacher(user_id=teacher_user.id, employee_id="EMP-1", subjects=["Physics"])
    session.add(teacher)
    session.commit()

    physics = make_paper(student, subject="Physics", title="Physics")
    maths = make_paper(student, subject="Mathematics", title="Maths")
    chemistry = make_paper(student, subject="Chemistry", title="Chem")

    response = client.get("/api/papers", headers=auth_headers(teacher_user))
    assert [p["id"] for p in response.json()["papers"]] == [physics.id]

    response = client.post(
        f"/api/teachers/{teacher.id}/assign-paper",
        json={"paper_id": chemistry.id},
        headers=auth_headers(admin),
    )
    assert response.status_code == 200
    assert chemistry.id in response.json()["assigned_paper_ids"]

    response = client.get("/api/papers", headers=auth_headers(teacher_user))
    ids = {p["id"] for p in response.json()["papers"]}
    assert ids == {physics.id, chemistry.id}
    assert maths.id not in ids

    response = client.get(f"/api/papers/{chemistry.id}", headers=auth_headers(admin))
    assert response.json()["status"] == "teacher_reviewing"


def test_list_filters_and_pagination(client, make_user, make_paper, auth_headers):
    admin = make_user(role="admin")
    student = make_user(role="student", roll_no="21CS030")
    other = make_user(role="student", roll_no="21CS031")
    for i in range(3):
        make_paper(student, title=f"Quiz {i}")
    make_paper(other, subject="Physics", status=PaperStatus.RELEASED)

    response = client.get("/api/papers?limit=2&page=1", headers=auth_headers(admin))
    body = response.json()
    assert len(body["papers"]) == 2
    assert body["pagination"] == {"current": 1, "pages": 2, "total": 4}

    response = client.get("/api/papers?roll_no=21CS030", headers=auth_headers(admin))
    assert response.json()["pagination"]["total"] == 3

    response = client.get("/api/papers?status=released&subject=Physics", headers=auth_headers(admin))
    assert [p["roll_no"] for p in response.json()["papers"]] == ["21CS031"]

    response = client.get("/api/papers?status=bogus", headers=auth_headers(admin))
    assert response.status_code == 400


def test_status_update_permissions(client, make_user, make_paper, auth_headers):
    admin = make_user(role="admin")
    spoc = make_user(role="spoc")
    teacher = make_user(role="teacher")
    student = make_user(role="student", roll_no="21CS040")
    paper = make_paper(student, status=PaperStatus.AI_GRADED, max_marks=50)
    url = f"/api/papers/{paper.id}/status"

    assert client.put(url, json={"status": "released"}, headers=auth_headers(student)).status_code == 403

    review = {"corrections": None, "status": "needs_revision"}
    assert client.put(url, json={"status": "teacher_reviewing", "teacher_review": review},
                      headers=auth_headers(admin)).status_code == 403
    assert client.put(url, json={"status": "final_graded", "final_grade": {"score": 10}},
                      headers=auth_headers(spoc)).status_code == 403

    response = client.put(url, json={"status": "final_graded", "final_grade": {"score": 51}},
                          headers=auth_headers(teacher))
    assert response.status_code == 400

    assert client.put(url, json={"status": "archived"}, headers=auth_headers(admin)).status_code == 400

    response = client.put(url, json={"status": "teacher_corrected"}, headers=auth_headers(spoc))
    assert response.status_code == 200
    assert response.json()["status"] == "teacher_corrected"
    assert response.json()["final_grade"] is None


def test_unknown_paper_is_404(client, make_user, auth_headers):
    admin = make_user(role="admin")
    response = client.get("/api/papers/999", headers=auth_headers(admin))
    assert response.status_code == 404
    assert response.json()["code"] == "PAPER_NOT_FOUND"


def test_download(client, make_user, make_paper, auth_headers):
    admin = make_user(role="admin")
    student = make_user(role="student", roll_no="21CS050")
    paper = make_paper(student)

    response = client.get(f"/api/papers/{paper.id}/download?kind=question", headers=auth_headers(student))
    assert response.status_code == 200
    assert response.content == b"%PDF-1.4 q"

    response = client.get(f"/api/papers/{paper.id}/download", headers=auth_headers(admin))
    assert response.content == b"%PDF-1.4 a"

    assert client.get(f"/api/papers/{paper.id}/download?kind=rubric",
                      headers=auth_headers(admin)).status_code == 400

    Path(paper.answer_paper_path).unlink()
    response = client.get(f"/api/papers/{paper.id}/download", headers=auth_headers(admin))
    assert response.status_code == 404


def test_grading_failure_leaves_paper_uploaded(client_factory, make_user, auth_headers):
    client = client_factory(extractor=BrokenExtractor())
    admin = make_user(role="admin")
    make_user(role="student", roll_no="21CS001")

    response = upload(client, auth_headers(admin))
    assert response.status_code == 201
    paper_id = response.json()["paper"]["id"]

    paper = client.get(f"/api/papers/{paper_id}", headers=auth_headers(admin)).json()
    assert paper["status"] == "uploaded"
    assert paper["ai_grade"] is None
    assert paper["grading_attempts"] == 2
    assert "OCR backend down" in paper["grading_error"]

    response = client.post(f"/api/papers/{paper_id}/regrade", headers=auth_headers(admin))
    assert response.status_code == 200
    assert response.json()["paper"]["grading_attempts"] == 4


def test_regrade_after_failure_succeeds(client, session, make_user, make_paper, auth_headers):
    admin = make_user(role="admin")
    student = make_user(role="student", roll_no="21CS060")
    paper = make_paper(student)
    paper.grading_error = "OCR backend down"
    session.commit()

    response = client.post(f"/api/papers/{paper.id}/regrade", headers=auth_headers(admin))
    assert response.status_code == 200
    body = response.json()["paper"]
    assert body["status"] == "ai_graded"
    assert body["grading_error"] is None

    response = client.post(f"/api/papers/{paper.id}/regrade", headers=auth_headers(admin))
    assert response.status_code == 400


def test_pipeline_skips_papers_moved_on(session, session_factory, make_user, make_paper):
    student = make_user(role="student", roll_no="21CS070")
    paper = make_paper(student, status=PaperStatus.TEACHER_REVIEWING)

    run_grading_pipeline(paper.id, session_factory, PlaceholderTextExtractor(), PlaceholderGrader())

    session.refresh(paper)
    assert paper.status == PaperStatus.TEACHER_REVIEWING
    assert paper.ai_score is None
    assert paper.grading_attempts == 0


def test_pipeline_clamps_score(session, session_factory, make_user, make_paper):
    class Overeager(PlaceholderGrader):
        def grade(self, text, criteria):
            result = super().grade(text, criteria)
            return result.model_copy(update={"score": criteria.max_marks * 3})

    student = make_user(role="student", roll_no="21CS080")
    paper = make_paper(student, max_marks=20)

    run_grading_pipeline(paper.id, session_factory, PlaceholderTextExtractor(), Overeager())

    session.refresh(paper)
    assert paper.status == PaperStatus.AI_GRADED
    assert paper.ai_score == 20
    assert paper.ocr_text.startswith("Questions:\n")
    assert "\n\nAnswers:\n" in paper.ocr_text


def test_full_queue_does_not_fail_upload(session, make_user, make_paper):
    student = make_user(role="student", roll_no="21CS090")
    paper = make_paper(student)

    assert enqueue_grading(session, FullQueue(), paper) is False

    session.refresh(paper)
    assert paper.status == PaperStatus.UPLOADED
    assert "full" in paper.grading_error


def test_regrade_on_full_queue_keeps_a_failure_record(session, make_user, make_paper):
    student = make_user(role="student", roll_no="21CS091")
    paper = make_paper(student)
    paper.grading_error = "OCR backend down"
    session.commit()

    with pytest.raises(QueueFull):
        regrade(session, FullQueue(), paper.id)

    session.refresh(paper)
    assert paper.status == PaperStatus.UPLOADED
    assert "full" in paper.grading_error


def test_closed_queue_does_not_fail_upload(session, make_user, make_paper):
    student = make_user(role="student", roll_no="21CS092")
    paper = make_paper(student)
    queue = GradingQueue(lambda paper_id: None, workers=1)
    queue.shutdown()

    assert enqueue_grading(session, queue, paper) is False
    session.refresh(paper)
    assert paper.grading_error == "Grading queue is shut down"
    assert queue.pending == 0
