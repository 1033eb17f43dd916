"""Channel flows through the classroom manager: presence, broadcasts and session lifecycle."""

from __future__ import annotations

import pytest

from codeshare_app.core.debounce import CodeUpdateDebouncer
from codeshare_app.core.errors import ConflictError, UnauthorizedError
from codeshare_app.core.models import StudentStatus

from conftest import FULL_LIST, PARTIAL_LIST, FakeConnection, ManualScheduler, join_student


def _send(manager, connection, event, **data):
    manager.handle_message(connection, {"event": event, "data": data})


def _grace_key(session_id, student_id):
    return ("grace", session_id, student_id)


class TestJoining:
    def test_teacher_receives_roster_then_initial_data(self, manager, classroom):
        session_id, teacher_id, old_teacher = classroom
        manager.join_session(session_id, "Ada")
        teacher = FakeConnection()
        manager.connect(teacher)

        _send(manager, teacher, "join-session", sessionId=session_id, userId=teacher_id, role="teacher")

        assert teacher.events() == ["students-list", "initial-data"]
        roster = teacher.sent[0][1]
        assert [(row["name"], row["points"], row["status"]) for row in roster] == [("Ada", 0, "disconnected")]
        assert teacher.last("initial-data")["points"] is None
        assert old_teacher.closed

    def test_wrong_teacher_id_is_rejected(self, manager, classroom):
        session_id, _, _ = classroom
        impostor = FakeConnection()
        manager.connect(impostor)

        _send(manager, impostor, "join-session", sessionId=session_id, userId="not-the-teacher", role="teacher")

        assert impostor.last("error")["kind"] == "Unauthorized"

    def test_unknown_session_is_reported(self, manager):
        connection = FakeConnection()
        manager.connect(connection)

        _send(manager, connection, "join-session", sessionId="NOPE00", userId="s1", userName="Ada", role="student")

        assert connection.last("error")["kind"] == "NotFound"

    def test_student_join_announces_once_and_sends_initial_data(self, manager, classroom):
        session_id, _, teacher = classroom
        _, student_id, _ = manager.join_session(session_id, "Ada")

        student = join_student(manager, session_id, student_id)

        initial = student.last("initial-data")
        assert initial["points"] == 0
        assert initial["codeTemplate"].startswith("<!DOCTYPE html>")
        assert initial["currentTaskId"] is None
        assert teacher.last("student-joined") == {"studentId": student_id, "studentName": "Ada", "points": 0}
        assert student.count("student-joined") == 0
        assert not manager.presence.has_pending_grace(session_id, student_id)

    def test_channel_only_join_requires_a_name(self, manager, classroom):
        session_id, _, teacher = classroom

        student = join_student(manager, session_id, "fresh-id")

        assert student.last("error")["kind"] == "InvalidInput"
        assert teacher.count("student-joined") == 0

    def test_channel_only_join_with_name_creates_the_student(self, manager, classroom):
        session_id, _, teacher = classroom

        join_student(manager, session_id, "fresh-id", "Grace")

        assert teacher.last("student-joined")["studentName"] == "Grace"
        assert manager.registry.find_session_for_student("fresh-id").session_id == session_id

    def test_second_pending_student_with_the_same_name_is_a_conflict(self, manager, classroom):
        session_id, _, _ = classroom
        _, first_id, _ = manager.join_session(session_id, "Anna")

        with pytest.raises(ConflictError):
            manager.join_session(session_id, "Anna")

        assert [entry.id for entry in manager.registry.require_session(session_id).list_students()] == [first_id]

    def test_malformed_frames_report_invalid_input(self, manager):
        connection = FakeConnection()
        manager.connect(connection)

        manager.handle_message(connection, {"event": "dance", "data": {}})
        manager.handle_message(connection, {"event": "join-session", "data": {"sessionId": "X"}})

        assert connection.count("error") == 2
        assert all(data["kind"] == "InvalidInput" for event, data in connection.sent)


class TestReconnection:
    def test_reconnect_within_grace_keeps_entry_and_does_not_reannounce(self, manager, classroom):
        session_id, _, teacher = classroom
        _, student_id, _ = manager.join_session(session_id, "Ada")
        first = join_student(manager, session_id, student_id)
        state = manager.registry.require_session(session_id)
        state.add_points(student_id, 15)

        manager.disconnect(first)
        assert manager.presence.has_pending_grace(session_id, student_id)
        assert state.get_student(student_id).status is StudentStatus.DISCONNECTED

        second = join_student(manager, session_id, student_id)

        assert second.last("initial-data")["points"] == 15
        assert teacher.count("student-joined") == 1
        assert teacher.count("student-left") == 0
        assert not manager.presence.has_pending_grace(session_id, student_id)

    def test_grace_expiry_removes_student_and_notifies(self, manager, classroom, scheduler):
        session_id, _, teacher = classroom
        _, student_id, _ = manager.join_session(session_id, "Ada")
        student = join_student(manager, session_id, student_id)

        manager.disconnect(student)
        scheduler.fire(_grace_key(session_id, student_id))

        assert teacher.last("student-left") == {"studentId": student_id, "studentName": "Ada"}
        assert manager.registry.require_session(session_id).list_students() == []

    def test_http_join_without_channel_is_evicted_after_grace(self, manager, classroom, scheduler):
        session_id, _, _ = classroom
        _, student_id, _ = manager.join_session(session_id, "Ada")

        assert manager.presence.has_pending_grace(session_id, student_id)
        scheduler.fire(_grace_key(session_id, student_id))

        assert manager.registry.require_session(session_id).get_student(student_id) is None

    def test_new_connection_supersedes_the_old_one(self, manager, classroom):
        session_id, _, teacher = classroom
        _, student_id, _ = manager.join_session(session_id, "Ada")
        old = join_student(manager, session_id, student_id)

        new = join_student(manager, session_id, student_id)
        manager.disconnect(old)

        assert old.closed
        assert not manager.presence.has_pending_grace(session_id, student_id)
        _send(manager, new, "code-update", sessionId=session_id, userId=student_id, code="<p>new</p>")
        assert teacher.last("student-code-update")["code"] == "<p>new</p>"
        assert teacher.count("student-joined") == 1

    def test_disconnect_before_join_is_harmless(self, manager, scheduler):
        connection = FakeConnection()
        manager.connect(connection)

        manager.disconnect(connection)

        assert scheduler.pending == {}


class TestCodeAndTeacherEvents:
    @pytest.fixture
    def student(self, manager, classroom):
        session_id, _, teacher = classroom
        _, student_id, _ = manager.join_session(session_id, "Ada")
        connection = join_student(manager, session_id, student_id)
        teacher.clear()
        connection.clear()
        return student_id, connection

    def test_code_updates_reach_the_teacher_in_order(self, manager, classroom, student):
        session_id, _, teacher = classroom
        student_id, connection = student

        for index in range(5):
            _send(manager, connection, "code-update", sessionId=session_id, userId=student_id, code=f"v{index}")

        assert [data["code"] for event, data in teacher.sent] == ["v0", "v1", "v2", "v3", "v4"]
        assert connection.sent == []

    def test_stale_sequence_numbers_are_dropped(self, manager, classroom, student):
        session_id, _, teacher = classroom
        student_id, connection = student

        _send(manager, connection, "code-update", sessionId=session_id, userId=student_id, code="v2", seq=2)
        _send(manager, connection, "code-update", sessionId=session_id, userId=student_id, code="v1", seq=1)

        assert [data["code"] for _, data in teacher.sent] == ["v2"]
        assert manager.registry.require_session(session_id).get_student_code(student_id) == "v2"

    def test_students_cannot_publish_for_someone_else(self, manager, classroom, student):
        session_id, _, teacher = classroom
        _, connection = student

        _send(manager, connection, "code-update", sessionId=session_id, userId="other", code="x")

        assert connection.last("error")["kind"] == "Unauthorized"
        assert teacher.sent == []

    def test_students_cannot_send_teacher_events(self, manager, classroom, student):
        session_id, _, _ = classroom
        _, connection = student

        _send(manager, connection, "update-template", sessionId=session_id, template="<p>hijack</p>")

        assert connection.last("error")["kind"] == "Unauthorized"

    def test_template_update_reaches_students_but_not_sender(self, manager, classroom, student):
        session_id, _, teacher = classroom
        _, connection = student

        _send(manager, teacher, "update-template", sessionId=session_id, template="<p>new</p>")

        assert connection.sent == [("template-updated", "<p>new</p>")]
        assert teacher.sent == []
        late = join_student(manager, session_id, "late-id", "Linus")
        assert late.last("initial-data")["codeTemplate"] == "<p>new</p>"

    def test_set_task_broadcasts_the_task(self, manager, classroom, student):
        session_id, _, teacher = classroom
        _, connection = student

        _send(manager, teacher, "set-task", sessionId=session_id, taskId=5)

        assigned = connection.last("task-assigned")["task"]
        assert assigned["id"] == 5
        assert assigned["starter_code"] == "<h1></h1>"
        assert "<strong>shopping list</strong>" in assigned["description_html"]
        assert manager.registry.require_session(session_id).get_current_task() == 5

    def test_set_unknown_task_is_not_found(self, manager, classroom, student):
        session_id, _, teacher = classroom
        _, connection = student

        _send(manager, teacher, "set-task", sessionId=session_id, taskId=42)

        assert teacher.last("error")["kind"] == "NotFound"
        assert connection.sent == []

    def test_hint_goes_only_to_its_recipient(self, manager, classroom, student):
        session_id, _, teacher = classroom
        student_id, connection = student
        other = join_student(manager, session_id, "other-id", "Grace")
        other.clear()
        connection.clear()

        _send(manager, teacher, "send-hint", sessionId=session_id, studentId=student_id, hint=" Close the tag ")

        assert connection.sent == [("receive-hint", {"hint": "Close the tag"})]
        assert other.sent == []

    def test_hint_to_disconnected_student_is_dropped(self, manager, classroom, student):
        session_id, _, teacher = classroom
        student_id, connection = student
        manager.disconnect(connection)
        teacher.clear()

        _send(manager, teacher, "send-hint", sessionId=session_id, studentId=student_id, hint="Psst")

        assert teacher.sent == []
        assert connection.count("receive-hint") == 0

    def test_bad_hints_are_rejected(self, manager, classroom, student):
        session_id, _, teacher = classroom
        student_id, _ = student

        _send(manager, teacher, "send-hint", sessionId=session_id, studentId=student_id, hint="   ")
        _send(manager, teacher, "send-hint", sessionId=session_id, studentId="ghost", hint="Hi")

        assert [data["kind"] for _, data in teacher.sent] == ["InvalidInput", "NotFound"]

    def test_teacher_can_fetch_student_code(self, manager, classroom, student):
        session_id, _, teacher = classroom
        student_id, connection = student
        _send(manager, connection, "code-update", sessionId=session_id, userId=student_id, code="<p>mine</p>")

        _send(manager, teacher, "get-student-code", sessionId=session_id, studentId=student_id)

        assert teacher.last("student-code") == {"studentId": student_id, "code": "<p>mine</p>", "points": 0}

    def test_leave_session_removes_student_immediately(self, manager, classroom, student, scheduler):
        session_id, _, teacher = classroom
        student_id, connection = student

        _send(manager, connection, "leave-session", sessionId=session_id, userId=student_id)
        manager.disconnect(connection)

        assert teacher.last("student-left")["studentId"] == student_id
        assert manager.registry.require_session(session_id).get_student(student_id) is None
        assert not manager.presence.has_pending_grace(session_id, student_id)

    def test_debounced_edits_reach_the_teacher_once(self, manager, classroom, student):
        session_id, _, teacher = classroom
        student_id, connection = student
        editor_timer = ManualScheduler()
        debouncer = CodeUpdateDebouncer(
            editor_timer,
            lambda code, seq: _send(
                manager, connection, "code-update", sessionId=session_id, userId=student_id, code=code, seq=seq
            ),
        )

        for index in range(20):
            debouncer.push(f"<p>{'x' * index}</p>")
        editor_timer.fire_all()

        assert teacher.events() == ["student-code-update"]
        assert teacher.last("student-code-update")["code"] == f"<p>{'x' * 19}</p>"


class TestScoringBroadcasts:
    def test_first_completion_broadcasts_points_update(self, manager, classroom):
        session_id, _, teacher = classroom
        _, student_id, _ = manager.join_session(session_id, "Ada")
        student = join_student(manager, session_id, student_id)
        teacher.clear()

        partial = manager.validate_task(5, PARTIAL_LIST, student_id)
        first = manager.validate_task(5, FULL_LIST, student_id)
        again = manager.validate_task(5, FULL_LIST, student_id)

        assert (partial.passed, partial.score) == (False, 67)
        assert first.passed and again.passed
        expected = {"studentId": student_id, "points": 15, "taskCompleted": "Shopping list"}
        assert teacher.sent == [("points-update", expected)]
        assert student.count("points-update") == 1
        assert manager.get_ranking(session_id)[0].points == 15
        assert [r.attempts for r in manager.get_progress(student_id)] == [3]


class TestSessionLifecycle:
    def test_end_session_notifies_and_closes_everyone(self, manager, classroom):
        session_id, teacher_id, teacher = classroom
        _, student_id, _ = manager.join_session(session_id, "Ada")
        student = join_student(manager, session_id, student_id)

        assert manager.end_session(session_id, teacher_id) is True

        assert student.last("session-ended") == {"sessionId": session_id}
        assert teacher.last("session-ended") == {"sessionId": session_id}
        assert student.closed and teacher.closed
        assert manager.registry.get_session(session_id) is None
        assert manager.end_session(session_id, teacher_id) is False

    def test_only_the_teacher_can_end_a_session(self, manager, classroom):
        session_id, _, _ = classroom

        with pytest.raises(UnauthorizedError):
            manager.end_session(session_id, "someone-else")

    def test_end_session_over_the_channel(self, manager, classroom, scheduler):
        session_id, _, teacher = classroom
        manager.join_session(session_id, "Ada")

        _send(manager, teacher, "end-session", sessionId=session_id)

        assert teacher.closed
        assert manager.registry.get_session(session_id) is None
        assert scheduler.pending == {}

    def test_idle_session_is_reaped_after_teacher_leaves(self, manager, classroom, clock):
        session_id, _, teacher = classroom
        _, student_id, _ = manager.join_session(session_id, "Ada")
        student = join_student(manager, session_id, student_id)

        manager.disconnect(teacher)
        clock.advance(1799)
        assert manager.reap_idle_sessions() == []

        clock.advance(2)
        assert manager.reap_idle_sessions() == [session_id]
        assert student.last("session-ended") == {"sessionId": session_id}
        assert manager.registry.get_session(session_id) is None

    def test_teacher_return_stops_the_idle_clock(self, manager, classroom, clock):
        session_id, teacher_id, teacher = classroom
        manager.disconnect(teacher)
        clock.advance(1000)
        join = FakeConnection()
        manager.connect(join)
        _send(manager, join, "join-session", sessionId=session_id, userId=teacher_id, role="teacher")

        clock.advance(5000)

        assert manager.reap_idle_sessions() == []

    def test_shutdown_closes_every_session(self, manager, classroom):
        session_id, _, teacher = classroom
        other_id, _ = manager.create_session("Mr. Holm")

        manager.shutdown()

        assert teacher.closed
        assert manager.registry.list_sessions() == []
        assert other_id != session_id

    def test_teacher_rejoining_after_the_idle_scan_keeps_the_session(self, manager, classroom, clock, monkeypatch):
        session_id, teacher_id, teacher = classroom
        state = manager.registry.require_session(session_id)
        manager.disconnect(teacher)
        clock.advance(1801)
        scanned = manager.registry.find_idle_sessions(1800)
        assert scanned == [state]
        returning = FakeConnection()
        manager.connect(returning)
        _send(manager, returning, "join-session", sessionId=session_id, userId=teacher_id, role="teacher")
        monkeypatch.setattr(manager.registry, "find_idle_sessions", lambda timeout: scanned)

        assert manager.reap_idle_sessions() == []
        assert manager.registry.get_session(session_id) is state
        assert not returning.closed
