"""Participant HTML flow: access page, form, submission, terminal notices."""

from sqlmodel import Session, select

from course_feedback.models import EvaluationSession, FeedbackResponse


def _stored_responses(engine):
    with Session(engine) as session:
        return session.exec(select(FeedbackResponse)).all()


def test_access_page_renders(client):
    resp = client.get("/feedback")
    assert resp.status_code == 200
    assert "Session Access Key" in resp.text


def test_empty_access_code_is_rejected(client):
    resp = client.post("/feedback", data={"access_code": "   "})
    assert resp.status_code == 400
    assert "Please enter your session access key" in resp.text


def test_valid_code_redirects_to_form(client, demo_session):
    resp = client.post("/feedback", data={"access_code": "demo123a"}, follow_redirects=False)
    assert resp.status_code == 303
    assert resp.headers["location"] == "/feedback/DEMO123A"


def test_unknown_code_shows_plain_message(client, demo_session):
    resp = client.post("/feedback", data={"access_code": "ZZZZ9999"})
    assert resp.status_code == 404
    assert "Session not found. Please check your access key." in resp.text


def test_ended_session_shows_message(client, make_session):
    make_session(status="completed")
    resp = client.get("/feedback/DEMO123A")
    assert resp.status_code == 403
    assert "This session has already ended." in resp.text


def test_form_renders_widgets_per_question(client, make_session):
    make_session(
        questions=[
            {"id": "r", "text": "Rate the lab", "type": "rating", "scale": 4, "required": True},
            {"id": "yn", "text": "Would you recommend it?", "type": "yes_no"},
            {"id": "mc", "text": "Best part", "type": "multiple_choice",
             "options": ["Lectures", "Projects"]},
            {"id": "t", "text": "Anything else?", "type": "text"},
        ]
    )
    resp = client.get("/feedback/DEMO123A")
    assert resp.status_code == 200
    html = resp.text
    assert "Rate the lab" in html
    assert html.count('name="answer_r"') == 4
    assert 'name="answer_yn" value="yes"' in html
    assert 'value="Projects"' in html
    assert '<textarea name="answer_t"' in html
    assert 'name="hint_timezone"' in html


def test_submit_form_then_already_submitted(client, engine, demo_session):
    assert client.get("/feedback/DEMO123A").status_code == 200

    resp = client.post(
        "/feedback/DEMO123A",
        data={
            "answer_q1": "5",
            "answer_q2": "4",
            "answer_q3": "",
            "hint_timezone": "Europe/Oslo",
            "hint_screen": "1920x1080x24",
        },
        headers={"user-agent": "Mozilla/5.0 (iPhone; CPU iPhone OS 17_0) Mobile/15E148"},
    )
    assert resp.status_code == 200
    assert "Thank you!" in resp.text

    rows = _stored_responses(engine)
    assert len(rows) == 1
    assert rows[0].response_data == {"q1": 5, "q2": 4}
    assert rows[0].response_metadata["device_type"] == "mobile"
    assert rows[0].response_metadata["browser_fingerprint"].startswith("fp_")
    assert rows[0].response_metadata["ip_address"] != ""

    # Revisiting short-circuits to the notice
    again = client.get("/feedback/DEMO123A")
    assert again.status_code == 200
    assert "Feedback already submitted" in again.text

    # Resubmitting is terminal, no form to retry
    dup = client.post("/feedback/DEMO123A", data={"answer_q1": "1", "answer_q2": "1"})
    assert dup.status_code == 409
    assert "Feedback already submitted" in dup.text
    assert "Submit Feedback" not in dup.text
    assert len(_stored_responses(engine)) == 1


def test_incomplete_form_is_redisplayed_with_answers(client, engine, demo_session):
    resp = client.post("/feedback/DEMO123A", data={"answer_q1": "3"})
    assert resp.status_code == 422
    assert "Please answer all required questions (1 remaining)." in resp.text
    assert "Submit Feedback" in resp.text
    assert "checked" in resp.text
    assert _stored_responses(engine) == []


def test_submission_refreshes_stats(client, engine, demo_session):
    client.post(
        "/feedback/DEMO123A",
        data={"answer_q1": "4", "answer_q2": "4", "answer_q3": "Nice"},
    )
    with Session(engine) as session:
        evaluation = session.get(EvaluationSession, demo_session.id)
        assert evaluation.stats["total_responses"] == 1
        assert evaluation.stats["completion_rate"] == 100.0


def test_new_browser_gets_new_identity(client, engine, demo_session):
    from fastapi.testclient import TestClient

    from course_feedback.main import app

    client.post("/feedback/DEMO123A", data={"answer_q1": "4", "answer_q2": "4"})

    # Fresh cookie jar: a different participant as far as the server can tell
    other_browser = TestClient(app)
    resp = other_browser.get("/feedback/DEMO123A")
    assert "Submit Feedback" in resp.text

    other_browser.post("/feedback/DEMO123A", data={"answer_q1": "2", "answer_q2": "2"})
    assert len(_stored_responses(engine)) == 2


def test_browser_reported_address_is_recorded(client, engine, demo_session):
    form = client.get("/feedback/DEMO123A")
    assert 'name="hint_ip"' in form.text

    client.post(
        "/feedback/DEMO123A",
        data={"answer_q1": "4", "answer_q2": "4", "hint_ip": "203.0.113.40"},
        headers={"x-forwarded-for": "192.0.2.1"},
    )
    rows = _stored_responses(engine)
    assert rows[0].response_metadata["ip_address"] == "203.0.113.40"
