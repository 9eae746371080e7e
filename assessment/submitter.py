"""
Result submitter.

Packages final session state into SubmissionRecords and writes them to the
document store. Writes are merges keyed by candidate and question (or set),
so a retried write lands on the same document.
"""

from datetime import datetime, timezone
from typing import Callable, Dict, List, Optional

from .errors import PersistenceError
from .grader import score_percentage
from .models import EvaluationReport, ExamSession, Question, SubmissionRecord, parse_timestamp
from .store import DocumentStore


def coding_key(candidate_id: str, question_id: str) -> str:
    return f"responses/{candidate_id}/round2/{question_id}"


def coding_collection(candidate_id: str) -> str:
    return f"responses/{candidate_id}/round2"


def mcq_key(candidate_id: str) -> str:
    return f"responses/{candidate_id}"


def grade_mcq(questions: List[Question], answers: Dict[str, str]) -> dict:
    """
    Compare selected options with the answer key.

    Unanswered questions count as wrong.
    """
    correct = 0
    wrong = 0
    details = {}
    for question in questions:
        selected = answers.get(question.id, "")
        is_correct = selected == question.answer
        if is_correct:
            correct += 1
        else:
            wrong += 1
        details[question.id] = {
            "question": question.title,
            "selected": selected,
            "correct": question.answer,
            "is_correct": is_correct,
        }
    return {
        "score": correct,
        "correct": correct,
        "wrong": wrong,
        "percentage": score_percentage(correct, len(questions)),
        "answers": details,
    }


class ResultSubmitter:
    """Computes aggregates and persists final records."""

    def __init__(
        self,
        store: DocumentStore,
        now_fn: Optional[Callable[[], datetime]] = None,
        session_logger: Optional[Callable[[str, str], None]] = None
    ):
        self.store = store
        self.now_fn = now_fn or (lambda: datetime.now(timezone.utc))
        self.session_logger = session_logger

    def _write(self, key: str, data: dict, merge: bool):
        try:
            self.store.set(key, data, merge=merge)
        except Exception as e:
            if self.session_logger:
                self.session_logger("PERSISTENCE_ERROR", f"Key: {key}, Error: {e}")
            raise PersistenceError(key, e) from e

    def finalize_coding(
        self,
        session: ExamSession,
        question: Question,
        report: EvaluationReport,
        code: str,
        language_id: str
    ) -> SubmissionRecord:
        """Persist one coding question. Requires a complete report."""
        if report.total_count != len(question.test_cases) or len(report.verdicts) != report.total_count:
            raise ValueError(f"Incomplete evaluation for question '{question.id}'")

        submitted_at = self.now_fn()
        key = coding_key(session.candidate_id, question.id)
        data = {
            "code": code,
            "language": language_id,
            "result": report.result,
            "percentage": report.percentage,
            "passed": report.passed_count,
            "total": report.total_count,
            "problem_id": question.id,
            "submitted_at": submitted_at.isoformat(),
            "exam_violations": session.violation_count,
            "violation_reasons": list(session.violation_log),
            "duration_sec": session.elapsed_seconds,
            "timed_out": session.timed_out,
            "verdicts": [v.to_dict() for v in report.verdicts],
        }
        self._write(key, data, merge=True)

        return SubmissionRecord(
            key=key,
            candidate_id=session.candidate_id,
            question_id=question.id,
            kind="code",
            score=float(report.percentage),
            violation_count=session.violation_count,
            duration=session.elapsed_seconds,
            submitted_at=submitted_at,
            data=data
        )

    def finalize_mcq(self, session: ExamSession) -> SubmissionRecord:
        """Persist the whole MCQ set."""
        graded = grade_mcq(session.questions, session.answers)
        submitted_at = self.now_fn()
        key = mcq_key(session.candidate_id)
        round_data = {
            "submitted_at": submitted_at.isoformat(),
            "score": graded["score"],
            "correct": graded["correct"],
            "wrong": graded["wrong"],
            "percentage": graded["percentage"],
            "answers": graded["answers"],
            "exam_duration": session.elapsed_seconds,
            "violations": session.violation_count,
            "violation_reasons": list(session.violation_log),
            "timed_out": session.timed_out,
        }
        data = {"round1": round_data, "round1_submitted": True}
        self._write(key, data, merge=True)

        return SubmissionRecord(
            key=key,
            candidate_id=session.candidate_id,
            question_id=None,
            kind="mcq",
            score=float(graded["score"]),
            violation_count=session.violation_count,
            duration=session.elapsed_seconds,
            submitted_at=submitted_at,
            data=data
        )

    def finalize_rejection(self, session: ExamSession, reason: str) -> SubmissionRecord:
        """Persist a rejected MCQ set."""
        rejected_at = self.now_fn()
        key = mcq_key(session.candidate_id)
        data = {
            "round1_submitted": True,
            "round1_rejected": True,
            "rejected_at": rejected_at.isoformat(),
            "violations": session.violation_count,
            "violation_reasons": list(session.violation_log),
            "reason": reason,
            "exam_duration": session.elapsed_seconds,
        }
        self._write(key, data, merge=True)

        return SubmissionRecord(
            key=key,
            candidate_id=session.candidate_id,
            question_id=None,
            kind="rejection",
            score=0.0,
            violation_count=session.violation_count,
            duration=session.elapsed_seconds,
            submitted_at=rejected_at,
            data=data
        )

    # ===== RESUME =====

    def coding_records(self, candidate_id: str) -> Dict[str, SubmissionRecord]:
        """Persisted coding records of a candidate, keyed by question id."""
        collection = coding_collection(candidate_id)
        try:
            docs = self.store.query(collection)
        except Exception as e:
            raise PersistenceError(collection, e) from e

        records = {}
        for question_id, doc in docs.items():
            records[question_id] = SubmissionRecord(
                key=coding_key(candidate_id, question_id),
                candidate_id=candidate_id,
                question_id=question_id,
                kind="code",
                score=float(doc.get("percentage", 0)),
                violation_count=int(doc.get("exam_violations", 0)),
                duration=int(doc.get("duration_sec", 0)),
                submitted_at=parse_timestamp(doc.get("submitted_at")),
                data=doc
            )
        return records

    def mcq_record(self, candidate_id: str) -> Optional[SubmissionRecord]:
        """
        The persisted MCQ set record (submitted or rejected), or None.

        A rejection is kind "rejection" with score 0.
        """
        doc = self.mcq_status(candidate_id)
        if not doc or not doc.get("round1_submitted"):
            return None

        if doc.get("round1_rejected"):
            return SubmissionRecord(
                key=mcq_key(candidate_id),
                candidate_id=candidate_id,
                question_id=None,
                kind="rejection",
                score=0.0,
                violation_count=int(doc.get("violations", 0)),
                duration=int(doc.get("exam_duration", 0)),
                submitted_at=parse_timestamp(doc.get("rejected_at")),
                data=doc
            )

        round_data = doc.get("round1") or {}
        return SubmissionRecord(
            key=mcq_key(candidate_id),
            candidate_id=candidate_id,
            question_id=None,
            kind="mcq",
            score=float(round_data.get("score", 0)),
            violation_count=int(round_data.get("violations", 0)),
            duration=int(round_data.get("exam_duration", 0)),
            submitted_at=parse_timestamp(round_data.get("submitted_at")),
            data=doc
        )

    def mcq_status(self, candidate_id: str) -> Optional[dict]:
        try:
            return self.store.get(mcq_key(candidate_id))
        except Exception as e:
            raise PersistenceError(mcq_key(candidate_id), e) from e
