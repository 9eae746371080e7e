"""
Grader module for running test cases and producing verdicts.

Provides the Evaluator class which runs a program against every test case of
a question through the RuntimeAdapter and compares outputs exactly.
"""

import math
from typing import Callable, List, Optional

from .errors import RuntimeUnavailableError
from .models import (
    EvaluationReport,
    ExecutionResult,
    Question,
    TestCase,
    TestCaseVerdict,
)
from .sandbox import RuntimeAdapter
from .translations import TRANSLATIONS


def outputs_match(actual: str, expected: str) -> bool:
    """
    Exact string equality after trimming the whole output.

    Only leading/trailing whitespace of the full text is ignored; internal
    whitespace and case are significant.
    """
    return (actual or "").strip() == (expected or "").strip()


def score_percentage(passed: int, total: int) -> int:
    """Rounded pass rate, halves rounded up. Zero cases score zero."""
    if total <= 0:
        return 0
    return int(math.floor(passed / total * 100 + 0.5))


class Evaluator:
    """Handles test case execution and output validation."""

    def __init__(
        self,
        adapter: RuntimeAdapter,
        init_timeout: Optional[float] = 30.0,
        session_logger: Optional[Callable[[str, str], None]] = None
    ):
        self.adapter = adapter
        self.init_timeout = init_timeout
        self.session_logger = session_logger
        self._message_fn = None

    # ===== HELPER FUNCTIONS =====

    def set_message_fn(self, message_fn):
        self._message_fn = message_fn

    def _msg(self, key: str, **kwargs) -> str:
        if self._message_fn:
            return self._message_fn(key, **kwargs)
        template = TRANSLATIONS["en"].get(key, key)
        return template.format(**kwargs)

    @staticmethod
    def make_verdict(test_case: TestCase, result: ExecutionResult) -> TestCaseVerdict:
        """Derive a verdict from one execution. Pure."""
        actual = (result.stdout or "").strip()
        expected = (test_case.expected_output or "").strip()
        return TestCaseVerdict(
            case_id=test_case.id,
            input=test_case.input,
            expected_output=expected,
            actual_output=actual,
            passed=result.ok and actual == expected,
            stderr=result.stderr or None
        )

    # ===== TEST EXECUTION =====

    def _run_cases(self, question: Question, code: str, language_id: str) -> EvaluationReport:
        verdicts: List[TestCaseVerdict] = []
        passed_count = 0

        for test_case in question.test_cases:
            result = self.adapter.execute(language_id, code, test_case.input or "", question.time_limit_ms)
            verdict = self.make_verdict(test_case, result)
            if verdict.passed:
                passed_count += 1
            verdicts.append(verdict)

        total = len(question.test_cases)
        return EvaluationReport(
            verdicts=verdicts,
            passed_count=passed_count,
            total_count=total,
            percentage=score_percentage(passed_count, total)
        )

    def evaluate(self, question: Question, code: str, language_id: str) -> EvaluationReport:
        """
        Run all test cases for a question in order, one at a time.

        Waits for the language runtime to finish loading first, so every case
        runs against a ready interpreter.

        Raises:
            RuntimeUnavailableError: If the runtime never became ready; no
                partial report is produced.
        """
        if not self.adapter.is_ready(language_id):
            self._log("RUNTIME_WAIT", f"Waiting for {language_id} runtime")
            if not self.adapter.wait_ready(language_id, self.init_timeout):
                runtime = self.adapter.get(language_id)
                reason = runtime.error if runtime and runtime.error else "not ready"
                raise RuntimeUnavailableError(language_id, reason)

        report = self._run_cases(question, code, language_id)
        self._log("EVALUATE", f"Question: {question.id}, Passed: {report.passed_count}/{report.total_count}")
        return report

    def run_tests(self, question: Question, code: str, language_id: str) -> EvaluationReport:
        """
        Interactive run over all test cases. Not scored, never waits.

        Cases executed before the runtime is ready show up as failed verdicts
        carrying the not-ready message.
        """
        report = self._run_cases(question, code, language_id)
        self._log("TEST_RESULT", f"Question: {question.id}, Passed: {report.passed_count}/{report.total_count}")
        return report

    def run_sample(self, code: str, language_id: str, custom_input: str) -> ExecutionResult:
        """Execute one ad hoc input for feedback. Never waits, never raises."""
        result = self.adapter.execute(language_id, code, custom_input or "")
        self._log("RUN_SAMPLE", f"Language: {language_id}, Status: {result.status.value}")
        return result

    def _log(self, event: str, details: str):
        if self.session_logger:
            self.session_logger(event, details)

    # ===== UTILITY METHODS =====

    def format_test_results(self, report: EvaluationReport, show_details: bool = False) -> str:
        """
        Format a report for display to the candidate.

        Args:
            report: Report from evaluate() or run_tests()
            show_details: If True, show stderr and output comparison for failed cases

        Returns:
            Formatted string for terminal display
        """
        lines = [self._msg("grader_running_tests", total=report.total_count)]

        for i, verdict in enumerate(report.verdicts, start=1):
            num = verdict.case_id if verdict.case_id is not None else i
            if verdict.passed:
                lines.append(self._msg("grader_test_passed", num=num))
                continue

            if verdict.stderr:
                lines.append(self._msg("grader_test_failed_error", num=num))
            else:
                lines.append(self._msg("grader_test_failed_wrong", num=num))

            if show_details:
                if verdict.stderr:
                    lines.append(self._msg("grader_error_label", text=verdict.stderr.strip()[:200]))
                lines.append(self._msg("grader_input_label", text=repr(verdict.input)[:100]))
                lines.append(self._msg("grader_expected_output", output=repr(verdict.expected_output)[:100]))
                lines.append(self._msg("grader_student_output", output=repr(verdict.actual_output)[:100]))

        lines.append("")
        lines.append(self._msg(
            "grader_result_summary",
            passed=report.passed_count,
            total=report.total_count,
            percentage=report.percentage
        ))
        return "\n".join(lines)
