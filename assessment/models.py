"""
Data models for the assessment engine.

Provides type-safe structures for questions, execution results, verdicts,
exam sessions, submission records and the engine configuration.
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Optional, List, Dict, Any, Set


class QuestionType(str, Enum):
    MCQ = "mcq"
    CODE = "code"


class ExecutionStatus(str, Enum):
    """Outcome of one execute() call."""
    OK = "Ok"
    RUNTIME_ERROR = "RuntimeError"
    COMPILE_ERROR = "CompileError"
    FAILED = "Failed"
    NOT_READY = "NotReady"


class SessionState(str, Enum):
    AWAITING_RULES = "AwaitingRulesAcceptance"
    AWAITING_START = "AwaitingStart"
    RUNNING = "Running"
    SUBMITTED = "Submitted"
    REJECTED = "Rejected"
    TIMED_OUT = "TimedOut"


TERMINAL_STATES = frozenset({SessionState.SUBMITTED, SessionState.REJECTED, SessionState.TIMED_OUT})


def parse_timestamp(value: Any) -> Optional[datetime]:
    """
    Parse a scheduling timestamp from a bank file.

    Accepts ISO-8601 strings, epoch milliseconds, or datetime objects.
    Naive values are taken as UTC.
    """
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, (int, float)):
        return datetime.fromtimestamp(value / 1000.0, tz=timezone.utc)
    else:
        text = str(value).strip()
        if text.endswith("Z"):
            text = text[:-1] + "+00:00"
        parsed = datetime.fromisoformat(text)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


@dataclass
class TestCase:
    """A hidden (input, expected output) pair. Identity is positional."""
    __test__ = False

    input: str
    expected_output: str
    id: Optional[Any] = None


@dataclass
class Example:
    """Worked example shown to the candidate."""
    input: str
    output: str
    explanation: Optional[str] = None


@dataclass
class Question:
    """Represents a multiple-choice or coding question."""
    id: str
    type: QuestionType
    title: str
    prompt: str
    constraints: Optional[str] = None
    examples: List[Example] = field(default_factory=list)
    test_cases: List[TestCase] = field(default_factory=list)
    starter_code: Dict[str, str] = field(default_factory=dict)
    time_limit_ms: Optional[int] = None
    options: List[str] = field(default_factory=list)
    answer: Optional[str] = None
    start_at: Optional[datetime] = None
    end_at: Optional[datetime] = None
    assigned_to: List[str] = field(default_factory=list)
    difficulty: Optional[str] = None

    @property
    def is_coding(self) -> bool:
        return self.type == QuestionType.CODE

    def template_for(self, language_id: str, fallback: str = "") -> str:
        """Starter code for a language, falling back to the language default."""
        return self.starter_code.get(language_id) or self.starter_code.get("*") or fallback

    @staticmethod
    def from_dict(data: dict) -> 'Question':
        """Create a Question object from a dictionary."""
        qtype = QuestionType(data.get('type', 'code'))

        tests = []
        for i, tc in enumerate(data.get('testCases') or data.get('test_cases') or [], start=1):
            tests.append(TestCase(
                input=tc.get('input') or "",
                expected_output=tc.get('expectedOutput', tc.get('expected_output')) or "",
                id=tc.get('id', i)
            ))

        examples = [
            Example(input=ex.get('input', ""), output=ex.get('output', ""), explanation=ex.get('explanation'))
            for ex in data.get('examples') or []
        ]

        # A single codeTemplate applies to every language
        starter = dict(data.get('starter_code') or {})
        template = data.get('codeTemplate') or data.get('code_template')
        if template:
            starter.setdefault('*', template)

        # Bank files give timeLimit in seconds
        if data.get('timeLimit'):
            time_limit = int(float(data['timeLimit']) * 1000)
        else:
            time_limit = data.get('time_limit_ms')

        return Question(
            id=str(data['id']),
            type=qtype,
            title=data.get('title', ''),
            prompt=data.get('description', data.get('prompt', '')),
            constraints=data.get('constraints'),
            examples=examples,
            test_cases=tests,
            starter_code=starter,
            time_limit_ms=int(time_limit) if time_limit else None,
            options=list(data.get('options') or []),
            answer=data.get('answer'),
            start_at=parse_timestamp(data.get('startAt', data.get('start_at'))),
            end_at=parse_timestamp(data.get('endAt', data.get('end_at'))),
            assigned_to=list(data.get('assignedTo', data.get('assigned_to')) or []),
            difficulty=data.get('difficulty')
        )


@dataclass(frozen=True)
class ExecutionResult:
    """Output of running one program against one stdin. Never mutated."""
    stdout: str
    stderr: str
    status: ExecutionStatus
    elapsed_time: float = 0.0

    @property
    def ok(self) -> bool:
        return self.status == ExecutionStatus.OK


@dataclass(frozen=True)
class TestCaseVerdict:
    """Pass/fail outcome of one test case."""
    __test__ = False

    case_id: Any
    input: str
    expected_output: str
    actual_output: str
    passed: bool
    stderr: Optional[str] = None

    def to_dict(self) -> dict:
        return {
            "id": self.case_id,
            "input": self.input,
            "expected": self.expected_output,
            "output": self.actual_output,
            "passed": self.passed,
            "stderr": self.stderr,
        }


@dataclass(frozen=True)
class EvaluationReport:
    """All verdicts for one question plus aggregate score."""
    verdicts: List[TestCaseVerdict]
    passed_count: int
    total_count: int
    percentage: int

    @property
    def result(self) -> str:
        return "Passed" if all(v.passed for v in self.verdicts) else "Failed"


@dataclass(frozen=True)
class SubmissionRecord:
    """A persisted, immutable final result."""
    key: str
    candidate_id: str
    question_id: Optional[str]
    kind: str  # "code", "mcq" or "rejection"
    score: float
    violation_count: int
    duration: int
    submitted_at: Optional[datetime]
    data: Dict[str, Any]


@dataclass
class ExamSession:
    """
    Per-candidate state for one assessment.

    Only the ExamEngine writes to this object.
    """
    candidate_id: str
    kind: QuestionType
    questions: List[Question]
    state: SessionState = SessionState.AWAITING_RULES
    elapsed_seconds: int = 0
    violation_count: int = 0
    violation_log: List[str] = field(default_factory=list)
    remaining_seconds: Optional[int] = None
    answers: Dict[str, str] = field(default_factory=dict)
    code_buffers: Dict[str, str] = field(default_factory=dict)  # "qid:lang" -> source
    languages: Dict[str, str] = field(default_factory=dict)     # qid -> selected language
    submitted_question_ids: Set[str] = field(default_factory=set)
    records: Dict[str, SubmissionRecord] = field(default_factory=dict)
    current_index: int = 0
    warning_message: Optional[str] = None
    warning_given: bool = False
    timed_out: bool = False
    rejection_reason: Optional[str] = None

    @property
    def is_terminal(self) -> bool:
        return self.state in TERMINAL_STATES

    def get_question(self, question_id: str) -> Optional[Question]:
        for question in self.questions:
            if question.id == question_id:
                return question
        return None

    def pending_question_ids(self) -> List[str]:
        return [q.id for q in self.questions if q.id not in self.submitted_question_ids]


@dataclass(frozen=True)
class SessionSnapshot:
    """Read-only view handed to the presentation layer."""
    state: SessionState
    current_index: int
    question_count: int
    remaining_seconds: Optional[int]
    elapsed_seconds: int
    violation_count: int
    warning_message: Optional[str]
    submitted_question_ids: frozenset
    answers: Dict[str, str]
    fullscreen: bool
    last_report: Optional[EvaluationReport] = None


@dataclass
class EngineConfig:
    """
    Configuration for engine behavior.

    Attributes:
        low_time_warning_seconds: Remaining time at which the one-shot warning fires
        tick_interval_seconds: Period of the countdown tick
        visibility_debounce_ms: Window that collapses duplicate tab-switch events
        mcq_reject_after: Violation count at which an MCQ exam is rejected
        sound_enabled: Whether audible cues are played
        execution_time_limit_ms: Default wall-clock cap per test case
        runtime_init_timeout_seconds: How long a submission waits for an interpreter
        node_executable: Path to node, or None to search PATH
        store_dir: Directory of the JSON document store
        time_server_url: URL whose Date header is the trusted clock, or None
        language: Message language ("en" or "fr")
    """
    low_time_warning_seconds: int = 60
    tick_interval_seconds: float = 1.0
    visibility_debounce_ms: int = 500
    mcq_reject_after: int = 2
    sound_enabled: bool = True
    execution_time_limit_ms: int = 10000
    runtime_init_timeout_seconds: float = 30.0
    node_executable: Optional[str] = None
    store_dir: str = "exam_data"
    time_server_url: Optional[str] = None
    language: str = "en"

    @staticmethod
    def from_dict(data: dict) -> 'EngineConfig':
        """Create EngineConfig from dictionary."""
        return EngineConfig(
            low_time_warning_seconds=int(data.get('low_time_warning_seconds', 60)),
            tick_interval_seconds=float(data.get('tick_interval_seconds', 1.0)),
            visibility_debounce_ms=int(data.get('visibility_debounce_ms', 500)),
            mcq_reject_after=int(data.get('mcq_reject_after', 2)),
            sound_enabled=bool(data.get('sound_enabled', True)),
            execution_time_limit_ms=int(data.get('execution_time_limit_ms', 10000)),
            runtime_init_timeout_seconds=float(data.get('runtime_init_timeout_seconds', 30.0)),
            node_executable=data.get('node_executable'),
            store_dir=data.get('store_dir', 'exam_data'),
            time_server_url=data.get('time_server_url'),
            language=data.get('language', 'en')
        )

    def validate(self) -> tuple[bool, str]:
        """
        Validate configuration consistency.

        Returns:
            Tuple of (is_valid, error_message)
        """
        if self.visibility_debounce_ms < 500:
            return False, f"Visibility debounce must be at least 500 ms (got {self.visibility_debounce_ms})"

        if self.mcq_reject_after < 1:
            return False, "mcq_reject_after must be at least 1"

        if self.low_time_warning_seconds < 0:
            return False, "low_time_warning_seconds must be non-negative"

        if self.tick_interval_seconds <= 0:
            return False, "tick_interval_seconds must be positive"

        if self.execution_time_limit_ms < 1:
            return False, "execution_time_limit_ms must be positive"

        if self.runtime_init_timeout_seconds < 0:
            return False, "runtime_init_timeout_seconds must be non-negative"

        if self.language not in ("en", "fr"):
            return False, f"Unsupported language '{self.language}'"

        return True, ""

    @staticmethod
    def default() -> 'EngineConfig':
        """Return the default configuration."""
        return EngineConfig()
