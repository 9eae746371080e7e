"""
Tests for the exam session state machine.

Covers:
- Lifecycle gating (rules, start, terminal no-ops)
- MCQ escalation: warn then reject
- Coding advisory violations and full-screen resume
- Countdown ticks, low-time warning and forced submission at zero
- Idempotent submission and persistence-failure retry
- Resuming from persisted records
"""

import time
from datetime import datetime, timedelta, timezone
from pathlib import Path

import pytest

import sys
sys.path.insert(0, str(Path(__file__).parent.parent))

from assessment.errors import PersistenceError, RuntimeUnavailableError
from assessment.events import SubmitRequested, Tick
from assessment.integrity import SimulatedEnvironment
from assessment.models import (
    EngineConfig,
    ExecutionResult,
    ExecutionStatus,
    Question,
    QuestionType,
    SessionState,
    TestCase,
)
from assessment.session import ExamEngine
from assessment.store import MemoryStore
from assessment.translations import TRANSLATIONS

NOW = datetime(2025, 3, 1, 9, 0, 0, tzinfo=timezone.utc)
EN = TRANSLATIONS["en"]


class FakeAdapter:
    """Runtime adapter double: stdout is looked up by stdin."""

    def __init__(self, outputs=None, ready=True):
        self.outputs = outputs or {}
        self.ready = ready
        self.languages = ["python", "javascript"]
        self.calls = []
        self.initialized = []

    def initialize(self, language_id=None):
        self.initialized.append(language_id)

    def is_ready(self, language_id):
        return self.ready

    def wait_ready(self, language_id, timeout=None):
        return self.ready

    def get(self, language_id):
        return None

    def template_for(self, language_id):
        return f"# {language_id} starter\n"

    def execute(self, language_id, source, stdin, time_limit_ms=None):
        self.calls.append((language_id, source, stdin))
        if not self.ready:
            return ExecutionResult("", "Python runtime not ready", ExecutionStatus.NOT_READY)
        return ExecutionResult(self.outputs.get(stdin, ""), "", ExecutionStatus.OK)


class FakeClock:
    def __init__(self):
        self.now = 100.0

    def __call__(self):
        return self.now

    def advance(self, seconds):
        self.now += seconds


class FlakyStore(MemoryStore):
    """MemoryStore whose writes fail while `failing` is set."""

    def __init__(self):
        super().__init__()
        self.failing = False

    def set(self, key, data, merge=False):
        if self.failing:
            raise OSError("disk unavailable")
        super().set(key, data, merge)


def mcq_questions(seconds_left=600):
    end = NOW + timedelta(seconds=seconds_left)
    return [
        Question(id="m1", type=QuestionType.MCQ, title="2 + 2", prompt="", options=["3", "4"], answer="4", end_at=end),
        Question(id="m2", type=QuestionType.MCQ, title="Capital of France", prompt="",
                 options=["Paris", "Lyon"], answer="Paris", end_at=end),
    ]


def coding_questions(seconds_left=600):
    end = NOW + timedelta(seconds=seconds_left)
    return [
        Question(id="c1", type=QuestionType.CODE, title="Double", prompt="Print twice n",
                 test_cases=[TestCase("1", "2", 1), TestCase("3", "6", 2)], end_at=end),
        Question(id="c2", type=QuestionType.CODE, title="Echo", prompt="Echo the input",
                 test_cases=[TestCase("hi", "hi", 1)], end_at=end),
    ]


def make_engine(questions, kind, store=None, environment=None, adapter=None, **kwargs):
    engine = ExamEngine(
        "u1",
        questions,
        kind,
        adapter or FakeAdapter({"1": "2", "3": "6", "hi": "hi"}),
        store if store is not None else MemoryStore(),
        environment=environment or SimulatedEnvironment(),
        server_now=NOW,
        use_ticker=False,
        **kwargs
    )
    return engine


def started(engine):
    assert engine.accept_rules(True)
    assert engine.start()
    return engine


class TestLifecycle:
    """Test rules acceptance and start gating."""

    def test_initial_state_awaits_rules(self):
        engine = make_engine(mcq_questions(), QuestionType.MCQ)
        assert engine.state == SessionState.AWAITING_RULES
        assert engine.session.remaining_seconds == 600

    def test_rules_require_explicit_true(self):
        engine = make_engine(mcq_questions(), QuestionType.MCQ)
        assert engine.accept_rules(False) is False
        assert engine.accept_rules("yes") is False
        assert engine.state == SessionState.AWAITING_RULES
        assert engine.accept_rules(True) is True
        assert engine.state == SessionState.AWAITING_START

    def test_start_requires_accepted_rules(self):
        engine = make_engine(mcq_questions(), QuestionType.MCQ)
        assert engine.start() is False
        assert engine.state == SessionState.AWAITING_RULES

    def test_start_enters_running_and_fullscreen(self):
        env = SimulatedEnvironment()
        engine = started(make_engine(mcq_questions(), QuestionType.MCQ, environment=env))
        assert engine.state == SessionState.RUNNING
        assert env.is_fullscreen is True
        assert env.listener_count() > 0

    def test_start_continues_when_fullscreen_denied(self):
        env = SimulatedEnvironment(fullscreen_available=False)
        engine = started(make_engine(mcq_questions(), QuestionType.MCQ, environment=env))
        assert engine.state == SessionState.RUNNING
        assert env.fullscreen_requests == 1
        assert engine.snapshot().fullscreen is False

    def test_commands_before_start_are_noops(self):
        engine = make_engine(mcq_questions(), QuestionType.MCQ)
        assert engine.select_answer("m1", "4") is False
        assert engine.submit() is None
        result = engine.run_sample("1")
        assert result.status == ExecutionStatus.FAILED
        assert result.stderr == EN["exam_not_running"]

    def test_coding_engine_initializes_default_runtime(self):
        adapter = FakeAdapter()
        make_engine(coding_questions(), QuestionType.CODE, adapter=adapter)
        assert adapter.initialized == ["python"]


class TestMcqEscalation:
    """Scenario B: first violation warns, second rejects."""

    def test_warn_then_reject(self):
        env = SimulatedEnvironment()
        clock = FakeClock()
        store = MemoryStore()
        engine = started(make_engine(mcq_questions(), QuestionType.MCQ, store=store, environment=env, clock=clock))

        env.switch_tab()
        assert engine.session.violation_count == 1
        assert engine.state == SessionState.RUNNING
        assert engine.session.warning_given is True
        assert engine.snapshot().warning_message == EN["warning_final"]

        clock.advance(1.0)
        env.switch_tab()
        assert engine.state == SessionState.REJECTED

        doc = store.get("responses/u1")
        assert doc["round1_rejected"] is True
        assert doc["round1_submitted"] is True
        assert doc["violations"] == 2
        assert doc["violation_reasons"] == ["Tab switch detected", "Tab switch detected"]

    def test_rejection_detaches_listeners_and_exits_fullscreen(self):
        env = SimulatedEnvironment()
        clock = FakeClock()
        engine = started(make_engine(mcq_questions(), QuestionType.MCQ, environment=env, clock=clock))

        env.switch_tab()
        clock.advance(1.0)
        env.leave_fullscreen()

        assert engine.state == SessionState.REJECTED
        assert env.listener_count() == 0
        assert env.is_fullscreen is False

    def test_violations_frozen_after_rejection(self):
        env = SimulatedEnvironment()
        clock = FakeClock()
        engine = started(make_engine(mcq_questions(), QuestionType.MCQ, environment=env, clock=clock))

        for _ in range(4):
            env.switch_tab()
            clock.advance(1.0)

        assert engine.session.violation_count == 2

    def test_duplicate_signals_within_debounce_count_once(self):
        env = SimulatedEnvironment()
        engine = started(make_engine(mcq_questions(), QuestionType.MCQ, environment=env, clock=FakeClock()))

        env.switch_tab()
        env.blur()
        env.switch_tab()

        assert engine.session.violation_count == 1
        assert engine.state == SessionState.RUNNING

    def test_escape_counts_and_is_suppressed(self):
        env = SimulatedEnvironment()
        engine = started(make_engine(mcq_questions(), QuestionType.MCQ, environment=env, clock=FakeClock()))

        event = env.press_escape()

        assert event.default_prevented is True
        assert engine.session.violation_count == 1

    def test_refresh_is_suppressed_without_violation(self):
        env = SimulatedEnvironment()
        engine = started(make_engine(mcq_questions(), QuestionType.MCQ, environment=env))

        event = env.press_refresh()

        assert event.default_prevented is True
        assert engine.session.violation_count == 0

    def test_configurable_threshold(self):
        env = SimulatedEnvironment()
        clock = FakeClock()
        config = EngineConfig(mcq_reject_after=3)
        engine = started(make_engine(mcq_questions(), QuestionType.MCQ, environment=env, clock=clock, config=config))

        for _ in range(2):
            env.switch_tab()
            clock.advance(1.0)
        assert engine.state == SessionState.RUNNING

        env.switch_tab()
        assert engine.state == SessionState.REJECTED


class TestCodingViolations:
    """Coding rounds record violations but never reject."""

    def test_advisory_banner_never_rejects(self):
        env = SimulatedEnvironment()
        clock = FakeClock()
        engine = started(make_engine(coding_questions(), QuestionType.CODE, environment=env, clock=clock))

        for _ in range(5):
            env.switch_tab()
            clock.advance(1.0)

        assert engine.state == SessionState.RUNNING
        assert engine.session.violation_count == 5
        assert engine.session.warning_message == EN["violation_visibility_hidden"]

    def test_resume_fullscreen_clears_banner(self):
        env = SimulatedEnvironment()
        engine = started(make_engine(coding_questions(), QuestionType.CODE, environment=env, clock=FakeClock()))

        env.leave_fullscreen()
        assert engine.session.warning_message == EN["violation_fullscreen_exit"]

        assert engine.resume_fullscreen() is True
        assert env.is_fullscreen is True
        assert engine.session.warning_message is None

    def test_context_menu_suppressed(self):
        env = SimulatedEnvironment()
        engine = started(make_engine(coding_questions(), QuestionType.CODE, environment=env))

        event = env.right_click()

        assert event.default_prevented is True
        assert engine.session.violation_count == 0

    def test_alert_beeps_when_sound_enabled(self):
        env = SimulatedEnvironment()
        started(make_engine(coding_questions(), QuestionType.CODE, environment=env, clock=FakeClock()))
        env.switch_tab()
        assert env.beeps == 1

    def test_no_beep_when_sound_disabled(self):
        env = SimulatedEnvironment()
        config = EngineConfig(sound_enabled=False)
        started(make_engine(coding_questions(), QuestionType.CODE, environment=env, clock=FakeClock(), config=config))
        env.switch_tab()
        assert env.beeps == 0


class TestSubmission:
    """Test coding and MCQ submission."""

    def test_coding_submit_persists_record(self):
        store = MemoryStore()
        engine = started(make_engine(coding_questions(), QuestionType.CODE, store=store))
        engine.update_code("c1", "print(int(input()) * 2)")

        record = engine.submit("c1")

        assert record.question_id == "c1"
        assert record.score == 100.0
        doc = store.get("responses/u1/round2/c1")
        assert doc["code"] == "print(int(input()) * 2)"
        assert doc["passed"] == 2
        assert doc["total"] == 2
        assert doc["result"] == "Passed"
        assert engine.state == SessionState.RUNNING

    def test_submit_twice_returns_same_record(self):
        store = MemoryStore()
        engine = started(make_engine(coding_questions(), QuestionType.CODE, store=store))

        first = engine.submit("c1")
        writes = store.writes
        second = engine.submit("c1")

        assert second is first
        assert store.writes == writes

    def test_submitted_question_is_locked(self):
        engine = started(make_engine(coding_questions(), QuestionType.CODE))
        engine.submit("c1")
        assert engine.update_code("c1", "print('late')") is False
        assert engine.set_language("c1", "javascript") is False

    def test_all_questions_submitted_ends_session(self):
        env = SimulatedEnvironment()
        engine = started(make_engine(coding_questions(), QuestionType.CODE, environment=env))

        engine.submit("c1")
        engine.submit("c2")

        assert engine.state == SessionState.SUBMITTED
        assert engine.finalized is True
        assert env.listener_count() == 0

    def test_mcq_submit_grades_whole_set(self):
        store = MemoryStore()
        engine = started(make_engine(mcq_questions(), QuestionType.MCQ, store=store))
        assert engine.select_answer("m1", "4")
        assert engine.select_answer("m2", "Lyon")

        record = engine.submit()

        assert record.kind == "mcq"
        assert engine.state == SessionState.SUBMITTED
        doc = store.get("responses/u1")
        assert doc["round1_submitted"] is True
        assert doc["round1"]["correct"] == 1
        assert doc["round1"]["wrong"] == 1
        assert engine.submit() is record

    def test_select_answer_rejects_unknown_option(self):
        engine = started(make_engine(mcq_questions(), QuestionType.MCQ))
        assert engine.select_answer("m1", "5") is False
        assert engine.select_answer("nope", "4") is False

    def test_submit_requested_event(self):
        engine = started(make_engine(coding_questions(), QuestionType.CODE))
        record = engine.post(SubmitRequested("c2"))
        assert record.question_id == "c2"

    def test_code_source_is_used_for_submission(self):
        store = MemoryStore()
        files = {"c1": "print(2)"}
        engine = started(make_engine(
            coding_questions(), QuestionType.CODE, store=store,
            code_source=lambda qid, lang: files.get(qid)
        ))

        engine.submit("c1")

        assert store.get("responses/u1/round2/c1")["code"] == "print(2)"

    def test_starter_code_falls_back_to_language_template(self):
        engine = make_engine(coding_questions(), QuestionType.CODE)
        assert engine.code_for("c1") == "# python starter\n"
        assert engine.code_for("c1", "javascript") == "# javascript starter\n"


class TestPersistenceFailure:
    """Failed writes are surfaced and retryable."""

    def test_failed_submit_raises_and_keeps_state(self):
        store = FlakyStore()
        engine = started(make_engine(coding_questions(), QuestionType.CODE, store=store))
        store.failing = True

        with pytest.raises(PersistenceError):
            engine.submit("c1")

        assert engine.state == SessionState.RUNNING
        assert "c1" not in engine.session.submitted_question_ids
        assert engine.session.warning_message.startswith("Submission failed")

        store.failing = False
        record = engine.submit("c1")
        assert record is not None
        assert "c1" in engine.session.submitted_question_ids

    def test_timeout_with_failed_write_can_be_retried(self):
        store = FlakyStore()
        engine = started(make_engine(coding_questions(seconds_left=1), QuestionType.CODE, store=store))
        store.failing = True

        engine.post(Tick())

        assert engine.state == SessionState.TIMED_OUT
        assert engine.finalized is False
        assert engine.session.warning_message == EN["submission_failed_retry"]

        with pytest.raises(PersistenceError):
            engine.retry_submission()

        store.failing = False
        assert engine.retry_submission() is True
        assert engine.state == SessionState.SUBMITTED
        assert set(store.query("responses/u1/round2")) == {"c1", "c2"}

    def test_rejection_with_failed_write_can_be_retried(self):
        store = FlakyStore()
        env = SimulatedEnvironment()
        clock = FakeClock()
        engine = started(make_engine(mcq_questions(), QuestionType.MCQ, store=store, environment=env, clock=clock))
        store.failing = True

        env.switch_tab()
        clock.advance(1.0)
        env.switch_tab()

        assert engine.state == SessionState.REJECTED
        assert engine.finalized is False

        store.failing = False
        assert engine.retry_submission() is True
        assert engine.finalized is True
        assert store.get("responses/u1")["round1_rejected"] is True

    def test_retry_with_nothing_pending(self):
        engine = started(make_engine(mcq_questions(), QuestionType.MCQ))
        assert engine.retry_submission() is False

    def test_runtime_unavailable_blocks_submission(self):
        engine = started(make_engine(coding_questions(), QuestionType.CODE, adapter=FakeAdapter(ready=False)))

        with pytest.raises(RuntimeUnavailableError):
            engine.submit("c1")

        assert engine.state == SessionState.RUNNING
        assert engine.session.submitted_question_ids == set()


class TestCountdown:
    """Ticks, low-time warning and forced submission."""

    def test_ticks_advance_both_counters(self):
        engine = started(make_engine(mcq_questions(seconds_left=600), QuestionType.MCQ))
        for _ in range(5):
            engine.post(Tick())
        snapshot = engine.snapshot()
        assert snapshot.remaining_seconds == 595
        assert snapshot.elapsed_seconds == 5

    def test_low_time_warning_fires_once(self):
        env = SimulatedEnvironment()
        notices = []
        engine = started(make_engine(
            mcq_questions(seconds_left=62), QuestionType.MCQ, environment=env,
            on_notify=lambda kind, message: notices.append(kind)
        ))

        engine.post(Tick(count=3))

        assert notices == ["low_time"]
        assert env.beeps == 1
        assert engine.session.warning_message == EN["warning_low_time"].format(seconds=60)

    def test_scenario_c_timeout_submits_remaining_question(self):
        store = MemoryStore()
        engine = started(make_engine(coding_questions(seconds_left=3), QuestionType.CODE, store=store))
        engine.submit("c1")
        engine.update_code("c2", "print(input())")

        engine.post(Tick())
        engine.post(Tick())
        assert engine.state == SessionState.RUNNING
        engine.post(Tick())

        assert engine.state == SessionState.SUBMITTED
        assert engine.session.timed_out is True
        assert engine.snapshot().remaining_seconds == 0
        doc = store.get("responses/u1/round2/c2")
        assert doc["code"] == "print(input())"
        assert doc["timed_out"] is True

    def test_expiry_submits_exactly_once(self):
        store = MemoryStore()
        engine = started(make_engine(mcq_questions(seconds_left=1), QuestionType.MCQ, store=store))

        engine.post(Tick(count=5))
        writes = store.writes
        engine.post(Tick(count=5))

        assert writes == 1
        assert store.writes == 1
        assert store.get("responses/u1")["round1"]["timed_out"] is True

    def test_window_already_closed_expires_on_start(self):
        store = MemoryStore()
        engine = started(make_engine(mcq_questions(seconds_left=-30), QuestionType.MCQ, store=store))
        assert engine.state == SessionState.SUBMITTED
        assert engine.session.remaining_seconds == 0

    def test_no_deadline_never_expires(self):
        questions = mcq_questions()
        for q in questions:
            q.end_at = None
        engine = started(make_engine(questions, QuestionType.MCQ))
        engine.post(Tick(count=10))
        assert engine.state == SessionState.RUNNING
        assert engine.snapshot().remaining_seconds is None
        assert engine.snapshot().elapsed_seconds == 10

    def test_ticks_after_terminal_are_ignored(self):
        engine = started(make_engine(mcq_questions(), QuestionType.MCQ))
        engine.submit()
        elapsed = engine.session.elapsed_seconds
        engine.post(Tick(count=3))
        assert engine.session.elapsed_seconds == elapsed

    def test_background_ticker_drives_expiry(self):
        store = MemoryStore()
        engine = ExamEngine(
            "u1",
            mcq_questions(seconds_left=1),
            QuestionType.MCQ,
            FakeAdapter(),
            store,
            environment=SimulatedEnvironment(),
            config=EngineConfig(tick_interval_seconds=0.01),
            server_now=NOW
        )
        started(engine)

        deadline = time.monotonic() + 5.0
        while engine.state != SessionState.SUBMITTED and time.monotonic() < deadline:
            time.sleep(0.01)
        engine.close()

        assert engine.state == SessionState.SUBMITTED
        assert store.writes == 1


class TestRunFeedback:
    """Interactive runs never persist."""

    def test_run_tests_reports_without_persisting(self):
        store = MemoryStore()
        engine = started(make_engine(coding_questions(), QuestionType.CODE, store=store))

        report = engine.run_tests("c1")

        assert report.passed_count == 2
        assert store.writes == 0
        assert engine.snapshot().last_report is report

    def test_scenario_d_run_sample_not_ready(self):
        engine = started(make_engine(coding_questions(), QuestionType.CODE, adapter=FakeAdapter(ready=False)))

        result = engine.run_sample("5")

        assert result.status == ExecutionStatus.NOT_READY
        assert "not ready" in result.stderr
        assert engine.state == SessionState.RUNNING

    def test_run_sample_uses_custom_input(self):
        adapter = FakeAdapter({"7": "14"})
        engine = started(make_engine(coding_questions(), QuestionType.CODE, adapter=adapter))

        result = engine.run_sample("7", "c1")

        assert result.stdout == "14"
        assert adapter.calls[-1][2] == "7"


class TestResume:
    """Loading a session that already has persisted records."""

    def test_coding_submissions_restored(self):
        store = MemoryStore()
        store.set("responses/u1/round2/c1", {"result": "Passed"})
        engine = make_engine(coding_questions(), QuestionType.CODE, store=store)
        assert engine.session.submitted_question_ids == {"c1"}
        assert engine.state == SessionState.AWAITING_RULES

    def test_all_coding_submitted_loads_terminal(self):
        store = MemoryStore()
        store.set("responses/u1/round2/c1", {"result": "Passed"})
        store.set("responses/u1/round2/c2", {"result": "Failed"})
        engine = make_engine(coding_questions(), QuestionType.CODE, store=store)
        assert engine.state == SessionState.SUBMITTED
        assert engine.finalized is True

    def test_mcq_rejection_restored(self):
        store = MemoryStore()
        store.set("responses/u1", {"round1_submitted": True, "round1_rejected": True})
        engine = make_engine(mcq_questions(), QuestionType.MCQ, store=store)
        assert engine.state == SessionState.REJECTED
        assert engine.finalized is True
        assert engine.accept_rules(True) is False

    def test_resubmitting_restored_coding_question_returns_stored_record(self):
        store = MemoryStore()
        store.set("responses/u1/round2/c1", {
            "result": "Passed", "percentage": 100, "exam_violations": 1,
            "duration_sec": 42, "submitted_at": "2025-03-01T09:05:00+00:00",
        })
        adapter = FakeAdapter({"1": "2", "3": "6"})
        engine = started(make_engine(coding_questions(), QuestionType.CODE, store=store, adapter=adapter))

        record = engine.submit("c1")

        assert record is not None
        assert record.key == "responses/u1/round2/c1"
        assert record.score == 100.0
        assert record.duration == 42
        assert record.submitted_at == datetime(2025, 3, 1, 9, 5, tzinfo=timezone.utc)
        assert adapter.calls == []

    def test_submitted_mcq_set_returns_stored_record(self):
        store = MemoryStore()
        store.set("responses/u1", {
            "round1_submitted": True,
            "round1": {"score": 2, "exam_duration": 300, "violations": 1,
                       "submitted_at": "2025-03-01T09:10:00+00:00"},
        })
        engine = make_engine(mcq_questions(), QuestionType.MCQ, store=store)

        record = engine.submit()

        assert engine.state == SessionState.SUBMITTED
        assert record.kind == "mcq"
        assert record.score == 2.0
        assert record.violation_count == 1
        assert record is engine.submit()

    def test_restored_rejection_keeps_reason(self):
        store = MemoryStore()
        store.set("responses/u1", {"round1_submitted": True, "round1_rejected": True,
                                   "reason": "Tab switch detected", "violations": 2})
        engine = make_engine(mcq_questions(), QuestionType.MCQ, store=store)

        assert engine.submit().kind == "rejection"
        assert engine.session.rejection_reason == "Tab switch detected"
        assert engine.retry_submission() is False
