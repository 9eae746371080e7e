"""
Exam session state machine.

ExamEngine owns one ExamSession and is the only code that writes to it.
Candidate commands, timer ticks and integrity violations all enter through
methods that take the same engine lock, so no two handlers interleave.

States:
    AwaitingRulesAcceptance -> AwaitingStart -> Running -> Submitted | Rejected
    Running -> TimedOut -> Submitted   (forced submission at zero)

Commands issued in a state that does not accept them are no-ops.
"""

import threading
import time
from datetime import datetime
from typing import Callable, List, Optional

from .clock import SystemClock
from .errors import EngineError, PersistenceError
from .events import SubmitRequested, Tick, ViolationDetected
from .grader import Evaluator
from .integrity import (
    Environment,
    Escalation,
    HeadlessEnvironment,
    IntegrityMonitor,
    escalation_policy_for,
)
from .models import (
    EngineConfig,
    EvaluationReport,
    ExamSession,
    ExecutionResult,
    ExecutionStatus,
    Question,
    QuestionType,
    SessionSnapshot,
    SessionState,
    SubmissionRecord,
)
from .question_bank import earliest_deadline
from .sandbox import RuntimeAdapter
from .store import DocumentStore
from .submitter import ResultSubmitter
from .timer import LOW_TIME_WARNING, TIME_EXPIRED, CountdownTimer, ElapsedCounter, Ticker
from .translations import TRANSLATIONS

SET_RECORD = "round1"


class ExamEngine:
    """Drives one candidate through one assessment."""

    def __init__(
        self,
        candidate_id: str,
        questions: List[Question],
        kind: QuestionType,
        adapter: RuntimeAdapter,
        store: DocumentStore,
        environment: Optional[Environment] = None,
        config: Optional[EngineConfig] = None,
        server_now: Optional[datetime] = None,
        session_logger: Optional[Callable[[str, str], None]] = None,
        on_notify: Optional[Callable[[str, str], None]] = None,
        code_source: Optional[Callable[[str, str], Optional[str]]] = None,
        use_ticker: bool = True,
        clock: Callable[[], float] = time.monotonic,
        now_fn: Optional[Callable[[], datetime]] = None,
        default_language: str = "python"
    ):
        self.config = config or EngineConfig.default()
        self.messages = TRANSLATIONS.get(self.config.language, TRANSLATIONS["en"])
        self.session = ExamSession(candidate_id=candidate_id, kind=kind, questions=list(questions))
        self.adapter = adapter
        self.environment = environment or HeadlessEnvironment()
        self.session_logger = session_logger
        self.on_notify = on_notify
        self.code_source = code_source
        self.last_report: Optional[EvaluationReport] = None
        self._lock = threading.RLock()

        self.evaluator = Evaluator(
            adapter,
            init_timeout=self.config.runtime_init_timeout_seconds,
            session_logger=self._log
        )
        self.evaluator.set_message_fn(self._msg)
        self.submitter = ResultSubmitter(store, now_fn=now_fn, session_logger=self._log)
        self.policy = escalation_policy_for(kind, self.config.mcq_reject_after)
        self.monitor = IntegrityMonitor(
            self.environment,
            self.post,
            kind,
            debounce_ms=self.config.visibility_debounce_ms,
            sound_enabled=self.config.sound_enabled,
            clock=clock,
            session_logger=self._log
        )

        if server_now is None:
            server_now = SystemClock().now()
        self.countdown = CountdownTimer.from_window(
            server_now,
            earliest_deadline(self.session.questions),
            self.config.low_time_warning_seconds
        )
        self.session.remaining_seconds = self.countdown.remaining_seconds
        self.elapsed = ElapsedCounter()
        self.ticker = Ticker(lambda: self.post(Tick()), self.config.tick_interval_seconds) if use_ticker else None

        if default_language not in adapter.languages:
            default_language = adapter.languages[0]
        self.default_language = default_language
        if kind == QuestionType.CODE:
            for question in self.session.questions:
                self.session.languages[question.id] = default_language
            self.adapter.initialize(default_language)

        self._restore()
        self._log(
            "SESSION_LOAD",
            f"Candidate: {candidate_id}, Kind: {kind.value}, Questions: {len(self.session.questions)}, "
            f"Remaining: {self.session.remaining_seconds}, State: {self.session.state.value}"
        )

    # ===== HELPERS =====

    def _msg(self, key: str, **kwargs) -> str:
        template = self.messages.get(key) or TRANSLATIONS["en"].get(key, key)
        return template.format(**kwargs)

    def _log(self, event: str, details: str = ""):
        if self.session_logger:
            try:
                self.session_logger(event, details)
            except OSError:
                pass

    def _notify(self, kind: str, message: str):
        if not self.on_notify:
            return
        try:
            self.on_notify(kind, message)
        except Exception as e:
            self._log("NOTIFY_FAILED", f"{kind}: {e}")

    def _restore(self):
        """Pick up submissions persisted by an earlier load of this session."""
        session = self.session
        if session.kind == QuestionType.CODE:
            question_ids = {q.id for q in session.questions}
            records = self.submitter.coding_records(session.candidate_id)
            for question_id in question_ids & set(records):
                session.records[question_id] = records[question_id]
                session.submitted_question_ids.add(question_id)
            if question_ids and session.submitted_question_ids == question_ids:
                session.state = SessionState.SUBMITTED
        else:
            record = self.submitter.mcq_record(session.candidate_id)
            if record is None:
                return
            session.records[SET_RECORD] = record
            if record.kind == "rejection":
                session.state = SessionState.REJECTED
                session.rejection_reason = record.data.get("reason")
            else:
                session.state = SessionState.SUBMITTED
            session.submitted_question_ids.update(q.id for q in session.questions)

    @property
    def state(self) -> SessionState:
        return self.session.state

    @property
    def finalized(self) -> bool:
        """Terminal with every record persisted."""
        session = self.session
        if session.state == SessionState.SUBMITTED:
            return True
        if session.state == SessionState.REJECTED:
            return SET_RECORD in session.records
        return False

    @property
    def current_question(self) -> Optional[Question]:
        if not self.session.questions:
            return None
        return self.session.questions[self.session.current_index]

    def _resolve_question_id(self, question_id: Optional[str]) -> Optional[str]:
        if question_id is not None:
            return question_id
        question = self.current_question
        return question.id if question else None

    def _current_code(self, question: Question, language_id: str) -> str:
        key = f"{question.id}:{language_id}"
        if self.code_source is not None:
            try:
                source = self.code_source(question.id, language_id)
            except OSError as e:
                self._log("CODE_SOURCE_ERROR", f"Question: {question.id}, Error: {e}")
                source = None
            if source is not None:
                self.session.code_buffers[key] = source
        if key not in self.session.code_buffers:
            self.session.code_buffers[key] = question.template_for(
                language_id, self.adapter.template_for(language_id)
            )
        return self.session.code_buffers[key]

    def _enter_terminal(self, state: SessionState):
        session = self.session
        session.state = state
        self.elapsed.stop()
        session.elapsed_seconds = self.elapsed.seconds
        self.countdown.stop()
        self.monitor.detach()
        if self.ticker:
            self.ticker.stop()
        try:
            self.environment.exit_fullscreen()
        except Exception as e:
            self._log("FULLSCREEN_EXIT_FAILED", str(e))

    def _all_submitted(self) -> bool:
        questions = self.session.questions
        return bool(questions) and all(q.id in self.session.submitted_question_ids for q in questions)

    # ===== LIFECYCLE COMMANDS =====

    def accept_rules(self, accepted: bool = True) -> bool:
        """Move to AwaitingStart. Requires an explicit True."""
        with self._lock:
            if self.session.state != SessionState.AWAITING_RULES or accepted is not True:
                return False
            self.session.state = SessionState.AWAITING_START
            self._log("RULES_ACCEPTED", "Candidate accepted the exam rules")
            return True

    def start(self) -> bool:
        """Enter Running: full-screen (best effort), counters, integrity monitor."""
        with self._lock:
            if self.session.state != SessionState.AWAITING_START:
                return False

            self.session.state = SessionState.RUNNING
            self.elapsed.start()
            self.monitor.attach()
            try:
                self.environment.request_fullscreen()
            except Exception as e:
                self._log("FULLSCREEN_UNAVAILABLE", str(e))

            remaining = self.session.remaining_seconds
            self._log("EXAM_START", f"Remaining: {'none' if remaining is None else f'{remaining}s'}")

            events = self.countdown.start()
            if self.ticker:
                self.ticker.start()
            self._handle_timer_events(events)
            return True

    def reject(self, reason: str) -> Optional[SubmissionRecord]:
        """
        Terminate the exam for integrity reasons.

        Raises:
            PersistenceError: If the rejection record could not be written;
                the session stays Rejected and retry_submission() may be used.
        """
        with self._lock:
            if self.session.state != SessionState.RUNNING:
                return None
            self.session.rejection_reason = reason
            self._enter_terminal(SessionState.REJECTED)
            self._log("REJECTED", f"Reason: {reason}, Violations: {self.session.violation_count}")
            self._notify("rejected", self._msg("warning_rejected"))
            return self._persist_rejection()

    def _persist_rejection(self) -> SubmissionRecord:
        try:
            record = self.submitter.finalize_rejection(self.session, self.session.rejection_reason or "")
        except PersistenceError as e:
            self.session.warning_message = self._msg("submission_failed", error=e)
            self._log("SUBMISSION_FAILED", f"Rejection record: {e}")
            raise
        self.session.records[SET_RECORD] = record
        return record

    def submit(self, question_id: Optional[str] = None) -> Optional[SubmissionRecord]:
        """
        Submit a coding question, or the whole MCQ set.

        Re-submitting an already-submitted question returns its record without
        running anything again.

        Raises:
            PersistenceError: If the record could not be written; state is unchanged.
            RuntimeUnavailableError: If the interpreter never became ready.
        """
        with self._lock:
            session = self.session
            if session.kind == QuestionType.MCQ:
                if session.state != SessionState.RUNNING:
                    return session.records.get(SET_RECORD)
                return self._submit_mcq()

            question_id = self._resolve_question_id(question_id)
            if question_id is None:
                return None
            if question_id in session.submitted_question_ids:
                return session.records.get(question_id)
            if session.state != SessionState.RUNNING:
                return None
            return self._submit_coding(question_id)

    def _submit_mcq(self, auto: bool = False) -> SubmissionRecord:
        session = self.session
        try:
            record = self.submitter.finalize_mcq(session)
        except PersistenceError as e:
            session.warning_message = self._msg("submission_failed", error=e)
            self._log("SUBMISSION_FAILED", f"MCQ set: {e}")
            raise

        session.records[SET_RECORD] = record
        session.submitted_question_ids.update(q.id for q in session.questions)
        self._log(
            "AUTO_SUBMISSION" if auto else "SUBMISSION",
            f"MCQ set, Score: {record.data['round1']['score']}/{len(session.questions)}"
        )
        self._enter_terminal(SessionState.SUBMITTED)
        self._log("SESSION_FINISH", f"Duration: {session.elapsed_seconds}s, Violations: {session.violation_count}")
        return record

    def _submit_coding(self, question_id: str, auto: bool = False) -> Optional[SubmissionRecord]:
        session = self.session
        question = session.get_question(question_id)
        if question is None:
            return None

        language_id = session.languages.get(question_id, self.default_language)
        code = self._current_code(question, language_id)
        try:
            report = self.evaluator.evaluate(question, code, language_id)
            record = self.submitter.finalize_coding(session, question, report, code, language_id)
        except EngineError as e:
            session.warning_message = self._msg("submission_failed", error=e)
            self._log("SUBMISSION_FAILED", f"Question: {question_id}, Error: {e}")
            raise

        self.last_report = report
        session.submitted_question_ids.add(question_id)
        session.records[question_id] = record
        self._log(
            "AUTO_SUBMISSION" if auto else "SUBMISSION",
            f"Question: {question_id}, Language: {language_id}, "
            f"Passed: {report.passed_count}/{report.total_count}, Percentage: {report.percentage}"
        )

        if self._all_submitted():
            self._enter_terminal(SessionState.SUBMITTED)
            self._log("SESSION_FINISH", f"Duration: {session.elapsed_seconds}s, Violations: {session.violation_count}")
        return record

    def _finalize_pending(self) -> List[EngineError]:
        """Forced submission of everything not yet persisted."""
        session = self.session
        failures: List[EngineError] = []

        if session.kind == QuestionType.MCQ:
            if SET_RECORD not in session.records:
                try:
                    self._submit_mcq(auto=True)
                except EngineError as e:
                    failures.append(e)
        else:
            for question_id in session.pending_question_ids():
                try:
                    self._submit_coding(question_id, auto=True)
                except EngineError as e:
                    failures.append(e)
            if not failures and session.state != SessionState.SUBMITTED:
                self._enter_terminal(SessionState.SUBMITTED)

        if failures:
            session.warning_message = self._msg("submission_failed_retry")
            self._notify("error", session.warning_message)
        return failures

    def retry_submission(self) -> bool:
        """
        Retry finalization that failed after a timeout or rejection.

        Returns:
            True when everything is persisted, False if there was nothing to retry

        Raises:
            EngineError: The first failure if finalization still does not succeed
        """
        with self._lock:
            session = self.session
            if session.state == SessionState.TIMED_OUT:
                failures = self._finalize_pending()
                if failures:
                    raise failures[0]
                return True
            if (session.state == SessionState.REJECTED
                    and session.rejection_reason is not None
                    and SET_RECORD not in session.records):
                self._persist_rejection()
                return True
            return False

    def close(self):
        """Stop background activity without finalizing. The session can be resumed later."""
        with self._lock:
            self.monitor.detach()
            if self.ticker:
                self.ticker.stop()
            self.elapsed.stop()
        if self.ticker:
            self.ticker.join()
        self._log("SESSION_CLOSE", f"State: {self.session.state.value}")

    # ===== CANDIDATE COMMANDS =====

    def navigate(self, index: int) -> bool:
        with self._lock:
            if self.session.is_terminal or not self.session.questions:
                return False
            if index < 0 or index >= len(self.session.questions):
                return False
            self.session.current_index = index
            return True

    def select_answer(self, question_id: str, option: str) -> bool:
        """Record an MCQ answer. Only while Running."""
        with self._lock:
            session = self.session
            if session.kind != QuestionType.MCQ or session.state != SessionState.RUNNING:
                return False
            question = session.get_question(question_id)
            if question is None:
                return False
            if question.options and option not in question.options:
                return False
            session.answers[question_id] = option
            return True

    def set_language(self, question_id: str, language_id: str) -> bool:
        with self._lock:
            session = self.session
            if session.kind != QuestionType.CODE or session.is_terminal:
                return False
            if session.get_question(question_id) is None or language_id not in self.adapter.languages:
                return False
            if question_id in session.submitted_question_ids:
                return False
            session.languages[question_id] = language_id
            self.adapter.initialize(language_id)
            return True

    def update_code(self, question_id: str, source: str, language_id: Optional[str] = None) -> bool:
        """Replace the code buffer of an unsubmitted question. Only while Running."""
        with self._lock:
            session = self.session
            if session.kind != QuestionType.CODE or session.state != SessionState.RUNNING:
                return False
            if session.get_question(question_id) is None or question_id in session.submitted_question_ids:
                return False
            language_id = language_id or session.languages.get(question_id, self.default_language)
            session.code_buffers[f"{question_id}:{language_id}"] = source
            return True

    def code_for(self, question_id: Optional[str] = None, language_id: Optional[str] = None) -> str:
        with self._lock:
            question_id = self._resolve_question_id(question_id)
            question = self.session.get_question(question_id) if question_id else None
            if question is None:
                return ""
            language_id = language_id or self.session.languages.get(question_id, self.default_language)
            return self._current_code(question, language_id)

    def run_sample(self, custom_input: str = "", question_id: Optional[str] = None) -> ExecutionResult:
        """
        Run the current code against ad hoc input. Not scored.

        Outside Running, or before the interpreter is ready, a non-Ok result
        describing why is returned instead of raising.
        """
        with self._lock:
            if self.session.state != SessionState.RUNNING:
                return ExecutionResult("", self._msg("exam_not_running"), ExecutionStatus.FAILED)
            question_id = self._resolve_question_id(question_id)
            question = self.session.get_question(question_id) if question_id else None
            if question is None:
                return ExecutionResult("", self._msg("no_question_loaded"), ExecutionStatus.FAILED)
            language_id = self.session.languages.get(question.id, self.default_language)
            return self.evaluator.run_sample(self._current_code(question, language_id), language_id, custom_input)

    def run_tests(self, question_id: Optional[str] = None) -> Optional[EvaluationReport]:
        """Run every test case of a question for feedback. Nothing is persisted."""
        with self._lock:
            if self.session.state != SessionState.RUNNING:
                return None
            question_id = self._resolve_question_id(question_id)
            question = self.session.get_question(question_id) if question_id else None
            if question is None or not question.is_coding:
                return None
            language_id = self.session.languages.get(question.id, self.default_language)
            report = self.evaluator.run_tests(question, self._current_code(question, language_id), language_id)
            self.last_report = report
            return report

    def dismiss_warning(self):
        with self._lock:
            self.session.warning_message = None

    def resume_fullscreen(self) -> bool:
        """The banner's resume action. Best effort."""
        with self._lock:
            if self.session.state != SessionState.RUNNING:
                return False
            resumed = self.monitor.reacquire_fullscreen()
            if resumed:
                self.session.warning_message = None
            return resumed

    # ===== EVENTS =====

    def post(self, event):
        """Apply an event from the timer, the integrity monitor or the front end."""
        with self._lock:
            if isinstance(event, Tick):
                self._on_tick(event.count)
            elif isinstance(event, ViolationDetected):
                self._on_violation(event)
            elif isinstance(event, SubmitRequested):
                return self.submit(event.question_id)
            return None

    def _on_tick(self, count: int):
        for _ in range(count):
            if self.session.state != SessionState.RUNNING:
                return
            self.elapsed.tick()
            self.session.elapsed_seconds = self.elapsed.seconds
            events = self.countdown.tick()
            self.session.remaining_seconds = self.countdown.remaining_seconds
            self._handle_timer_events(events)

    def _handle_timer_events(self, events: List[str]):
        for event in events:
            if event == LOW_TIME_WARNING:
                message = self._msg("warning_low_time", seconds=self.config.low_time_warning_seconds)
                self.session.warning_message = message
                self.monitor.alert()
                self._log("LOW_TIME_WARNING", f"{self.session.remaining_seconds}s remaining")
                self._notify("low_time", message)
            elif event == TIME_EXPIRED:
                self._on_time_expired()

    def _on_time_expired(self):
        if self.session.state != SessionState.RUNNING:
            return
        self.session.timed_out = True
        pending = self.session.pending_question_ids()
        self._log("EXAM_TIMEOUT", f"Time finished - auto-submitting {len(pending)} question(s)")
        self._enter_terminal(SessionState.TIMED_OUT)
        self._notify("time_expired", self._msg("time_expired"))
        self._finalize_pending()

    def _on_violation(self, event: ViolationDetected):
        session = self.session
        if session.state != SessionState.RUNNING:
            return

        session.violation_count += 1
        session.violation_log.append(event.reason)
        self._log("VIOLATION", f"#{session.violation_count}: {event.reason}")

        decision = self.policy.decide(session.violation_count)
        if decision == Escalation.REJECT:
            session.warning_message = self._msg("warning_rejected")
            try:
                self.reject(event.reason)
            except EngineError as e:
                self._notify("error", self._msg("submission_failed", error=e))
        elif decision == Escalation.WARN:
            session.warning_given = True
            session.warning_message = self._msg("warning_final")
            self.monitor.alert()
            self.monitor.reacquire_fullscreen()
            self._log("WARNING", "Final warning shown")
            self._notify("warning", session.warning_message)
        else:
            session.warning_message = self._msg(f"violation_{event.signal}")
            self.monitor.alert()
            self._notify("warning", session.warning_message)

    # ===== PRESENTATION =====

    def snapshot(self) -> SessionSnapshot:
        with self._lock:
            session = self.session
            return SessionSnapshot(
                state=session.state,
                current_index=session.current_index,
                question_count=len(session.questions),
                remaining_seconds=session.remaining_seconds,
                elapsed_seconds=session.elapsed_seconds,
                violation_count=session.violation_count,
                warning_message=session.warning_message,
                submitted_question_ids=frozenset(session.submitted_question_ids),
                answers=dict(session.answers),
                fullscreen=self.environment.is_fullscreen,
                last_report=self.last_report
            )
