"""
Terminal front end for the assessment engine.

Loads a question bank, seeds the countdown from the trusted clock, and drives
an ExamEngine from an interactive 'exam>' prompt. Candidate code lives in one
file per question inside the working directory; the engine reads the file
whenever it runs or submits.
"""

import argparse
import getpass
import sys
from pathlib import Path
from typing import List, Optional

from .clock import HttpDateClock, get_server_time
from .config_loader import load_config
from .errors import EngineError
from .integrity import HeadlessEnvironment, Signal
from .models import EngineConfig, ExecutionStatus, Question, QuestionType, SessionState
from .question_bank import QuestionBank, filter_questions, load_bank
from .sandbox import JavaScriptRuntime, PythonRuntime, RuntimeAdapter
from .session import ExamEngine
from .session_log import SessionLog
from .store import JsonFileStore
from .timer import format_clock
from .translations import TRANSLATIONS

EXTENSIONS = {"python": ".py", "javascript": ".js"}
COMMENT_PREFIX = {"python": "#", "javascript": "//"}


def option_letter(index: int) -> str:
    return chr(ord('A') + index)


class ExamRunner:
    """Main CLI application controller."""

    def __init__(self):
        self.config: Optional[EngineConfig] = None
        self.messages = TRANSLATIONS["en"]
        self.bank: Optional[QuestionBank] = None
        self.engine: Optional[ExamEngine] = None
        self.session_log: Optional[SessionLog] = None
        self.work_dir: Optional[Path] = None

    def _msg(self, key: str, **kwargs) -> str:
        template = self.messages.get(key) or TRANSLATIONS["en"].get(key, key)
        return template.format(**kwargs)

    # ===== SETUP =====

    def _build_parser(self) -> argparse.ArgumentParser:
        parser = argparse.ArgumentParser(
            description="Timed assessment runner (multiple-choice and coding rounds)",
            formatter_class=argparse.RawDescriptionHelpFormatter
        )
        parser.add_argument(
            "--bank",
            required=True,
            help="Question bank file: plain .json, or an encrypted bank/bundle (e.g. bank_round2.enc)"
        )
        parser.add_argument(
            "--config",
            help="Path to engine configuration file (default: config.json next to the entry point)"
        )
        parser.add_argument(
            "--candidate",
            help="Candidate identifier (prompted when omitted)"
        )
        parser.add_argument(
            "--kind",
            choices=[k.value for k in QuestionType],
            default=QuestionType.CODE.value,
            help="Assessment kind: mcq (round 1) or code (round 2). Default: code"
        )
        parser.add_argument(
            "--language",
            choices=["en", "fr"],
            help="Interface language (default: from configuration)"
        )
        parser.add_argument(
            "--work-dir",
            help="Directory for code files and the session log (default: ./exam_<candidate>)"
        )
        return parser

    def _load_bank(self, bank_path: Path) -> bool:
        key_input = None
        if bank_path.suffix.lower() != '.json':
            try:
                key_input = getpass.getpass(self._msg("ask_enc_pass", bank=bank_path.name))
            except (KeyboardInterrupt, EOFError):
                print(f"\n{self._msg('enc_exit')}")
                return False
            key_input = key_input.strip()
            if not key_input:
                print(self._msg("enc_error"))
                return False

        print(f"\n{self._msg('bank_loading')}")
        try:
            self.bank = load_bank(bank_path, key_input)
        except ValueError as e:
            print(self._msg("bank_error", error=e))
            return False

        print(self._msg("bank_success"))
        print(self._msg("bank_group", group=self.bank.group or "-", count=len(self.bank.questions)))
        return True

    def _ask_candidate(self) -> Optional[str]:
        try:
            candidate = input(self._msg("ask_candidate")).strip()
        except (KeyboardInterrupt, EOFError):
            print(f"\n{self._msg('enc_exit')}")
            return None
        if not candidate:
            print(self._msg("candidate_error"))
            return None
        return candidate

    def _accept_rules(self) -> bool:
        kind = self.engine.session.kind
        print("\n" + self._msg("header"))
        print(self._msg("rules_header"))
        print(self._msg("header"))
        print(self._msg("rules_mcq" if kind == QuestionType.MCQ else "rules_code",
                        count=len(self.engine.session.questions),
                        remaining=format_clock(self.engine.session.remaining_seconds)))
        try:
            answer = input(self._msg("rules_prompt")).strip().lower()
        except (KeyboardInterrupt, EOFError):
            print()
            return False
        return self.engine.accept_rules(answer in ("y", "yes", "o", "oui"))

    def run(self, argv: Optional[List[str]] = None) -> int:
        """Main application entry point."""
        args = self._build_parser().parse_args(argv)

        try:
            self.config = load_config(Path(args.config) if args.config else None)
        except ValueError as e:
            print(TRANSLATIONS["en"]["config_error"].format(error=e))
            return 1
        if args.language:
            self.config.language = args.language
        self.messages = TRANSLATIONS[self.config.language]

        print(self._msg("header"))
        print(self._msg("title"))
        print(self._msg("header"))

        if not self._load_bank(Path(args.bank)):
            return 1
        if self.bank.config is not None:
            language = self.config.language
            self.config = self.bank.config
            self.config.language = args.language or language
            print(f"✓ {self._msg('config_bundle')}")
        else:
            print(f"✓ {self._msg('config_default', src=args.config or 'config.json')}")

        candidate = args.candidate or self._ask_candidate()
        if not candidate:
            return 1

        safe_candidate = "".join(c if c.isalnum() else '_' for c in candidate.lower())
        self.work_dir = Path(args.work_dir) if args.work_dir else Path.cwd() / f"exam_{safe_candidate}"
        self.work_dir.mkdir(parents=True, exist_ok=True)
        self.session_log = SessionLog(self.work_dir / "session.log")
        print(f"✓ {self._msg('workdir', path=self.work_dir)}")

        clock = HttpDateClock(self.config.time_server_url) if self.config.time_server_url else None
        server_now = get_server_time(clock, session_logger=self.session_log)

        kind = QuestionType(args.kind)
        questions = filter_questions(self.bank.questions, candidate, server_now, kind)
        if not questions:
            print(self._msg("no_questions", kind=kind.value))
            return 1

        adapter = RuntimeAdapter(
            [
                PythonRuntime(session_logger=self.session_log),
                JavaScriptRuntime(self.config.node_executable, session_logger=self.session_log),
            ],
            default_time_limit_ms=self.config.execution_time_limit_ms
        )
        try:
            self.engine = ExamEngine(
                candidate,
                questions,
                kind,
                adapter,
                JsonFileStore(Path(self.config.store_dir)),
                environment=HeadlessEnvironment(),
                config=self.config,
                server_now=server_now,
                session_logger=self.session_log,
                on_notify=self._on_notify,
                code_source=self._read_code
            )
        except EngineError as e:
            print(self._msg("cmd_error", error=e))
            return 1

        if self.engine.finalized:
            print(self._msg("already_finished", state=self.engine.state.value))
            return 0

        if not self._accept_rules():
            print(self._msg("rules_declined"))
            return 1

        if kind == QuestionType.CODE:
            self._write_starter_files()
        self.engine.start()
        print(f"✓ {self._msg('exam_started', remaining=format_clock(self.engine.session.remaining_seconds))}")

        try:
            self.command_loop()
        finally:
            self.engine.close()

        return 0

    # ===== CODE FILES =====

    def _qn(self, question: Question) -> str:
        return f"q{self.engine.session.questions.index(question) + 1}"

    def _code_file(self, question: Question, language_id: str) -> Path:
        return self.work_dir / f"{self._qn(question)}{EXTENSIONS.get(language_id, '.txt')}"

    def _read_code(self, question_id: str, language_id: str) -> Optional[str]:
        question = self.engine.session.get_question(question_id)
        if question is None:
            return None
        code_file = self._code_file(question, language_id)
        if not code_file.exists():
            return None
        return code_file.read_text(encoding='utf-8')

    def _create_code_file(self, question: Question, language_id: str) -> Path:
        """Starter file with the prompt as comments above the template."""
        code_file = self._code_file(question, language_id)
        if code_file.exists():
            return code_file

        prefix = COMMENT_PREFIX.get(language_id, "#")
        lines = [f"{prefix} {question.title} ({question.id})", prefix + " " + "=" * 68]
        for line in question.prompt.split('\n'):
            lines.append(f"{prefix} {line}".rstrip())
        lines.append(prefix + " " + "=" * 68)
        lines.append("")
        template = self.engine.code_for(question.id, language_id)
        code_file.write_text("\n".join(lines) + "\n" + template, encoding='utf-8')
        return code_file

    def _write_starter_files(self):
        session = self.engine.session
        for question in session.questions:
            if question.id in session.submitted_question_ids:
                continue
            self._create_code_file(question, session.languages.get(question.id, self.engine.default_language))

    # ===== NOTIFICATIONS =====

    def _on_notify(self, kind: str, message: str):
        """Banner printed from the engine (may run on the timer thread)."""
        bar = "!" * 60
        print(f"\n{bar}\n{message}\n{bar}")
        if kind in ("time_expired", "rejected"):
            print(self._msg("cmd_press_enter"))

    # ===== COMMAND LOOP =====

    def _resolve(self, qn: Optional[str]) -> Optional[Question]:
        questions = self.engine.session.questions
        if qn is None:
            return self.engine.current_question
        valid_questions = [f"q{i + 1}" for i in range(len(questions))]
        if qn not in valid_questions:
            print(self._msg("cmd_question_invalid", qn=qn, valid_questions=', '.join(valid_questions)))
            return None
        return questions[valid_questions.index(qn)]

    def command_loop(self):
        """Main interactive command loop."""
        print("\n" + self._msg("header"))
        print(self._msg("cmd_help_text"))
        print(self._msg("header") + "\n")

        while not self.engine.finalized:
            try:
                if self.engine.state == SessionState.TIMED_OUT:
                    print(self._msg("cmd_retry_hint"))

                cmd_line = input("exam> ").strip()
                if self.engine.finalized:
                    break
                if not cmd_line:
                    continue

                parts = cmd_line.split()
                command = parts[0].lower()
                arg = parts[1].lower() if len(parts) > 1 else None

                self.session_log.log("COMMAND_RUN", f"Command: {cmd_line}")

                if command in ('exit', 'quit'):
                    self.cmd_exit()
                    return
                elif command == 'help':
                    self.cmd_help()
                elif command.startswith('q') and command[1:].isdigit():
                    self.cmd_show_question(command)
                elif command == 'show':
                    self.cmd_show_question(arg)
                elif command in ('next', 'prev'):
                    step = 1 if command == 'next' else -1
                    if self.engine.navigate(self.engine.session.current_index + step):
                        self.cmd_show_question(None)
                elif command == 'answer':
                    if len(parts) < 3:
                        print(self._msg("cmd_answer_usage"))
                    else:
                        self.cmd_answer(arg, " ".join(parts[2:]))
                elif command == 'lang':
                    if len(parts) < 3:
                        print(self._msg("cmd_lang_usage", languages=", ".join(self.engine.adapter.languages)))
                    else:
                        self.cmd_lang(arg, parts[2].lower())
                elif command == 'run':
                    self.cmd_run(arg, parts[2] if len(parts) > 2 else None)
                elif command == 'test':
                    self.cmd_test(arg)
                elif command == 'submit':
                    self.cmd_submit(arg)
                elif command == 'retry':
                    self.cmd_retry()
                elif command == 'status':
                    self.cmd_status()
                elif command == 'time':
                    self.cmd_time()
                elif command == 'resume':
                    self.engine.resume_fullscreen()
                elif command == 'dismiss':
                    self.engine.dismiss_warning()
                else:
                    print(self._msg("cmd_unknown", command=command))

            except (KeyboardInterrupt, EOFError):
                print(f"\n{self._msg('cmd_interrupt')}")
                self._report_interrupt()
            except Exception as e:
                print(self._msg("cmd_error", error=e))
                self.session_log.log("ERROR", str(e))

        self._print_final()

    def _report_interrupt(self):
        """Ctrl+C / Ctrl+D at the prompt is the terminal's way of leaving the exam."""
        if self.engine.state != SessionState.RUNNING:
            return
        if self.engine.session.kind == QuestionType.MCQ:
            signal = Signal.ESCAPE_KEY
        else:
            signal = Signal.FOCUS_LOST
        self.session_log.log("INTERRUPT", f"Reported as {signal.value}")
        self.engine.environment.emit(signal)

    def _print_final(self):
        session = self.engine.session
        print()
        if session.state == SessionState.REJECTED:
            print(self._msg("final_rejected", violations=session.violation_count))
        else:
            print(self._msg("final_submitted", elapsed=format_clock(session.elapsed_seconds)))

    # ===== COMMANDS =====

    def cmd_help(self):
        """Display help message."""
        question_list = ", ".join(f"q{i + 1}" for i in range(len(self.engine.session.questions)))
        key = "cmd_help_mcq" if self.engine.session.kind == QuestionType.MCQ else "cmd_help_code"
        print(self._msg(key, questions=question_list))

    def cmd_time(self):
        """Display remaining and elapsed exam time."""
        snapshot = self.engine.snapshot()
        print()
        print(self._msg("cmd_time_heading", remaining=format_clock(snapshot.remaining_seconds)))
        print(self._msg("cmd_time_elapsed", elapsed=format_clock(snapshot.elapsed_seconds)))
        print()

    def cmd_show_question(self, qn: Optional[str]):
        """Display the prompt for a question."""
        question = self._resolve(qn)
        if question is None:
            return
        self.engine.navigate(self.engine.session.questions.index(question))

        print()
        print(self._msg("cmd_show_heading", qn=self._qn(question), title=question.title,
                        difficulty=question.difficulty or "-"))
        print()
        print(question.prompt)

        if question.constraints:
            print()
            print(self._msg("cmd_show_constraints"))
            print(question.constraints)

        for example in question.examples:
            print()
            print(self._msg("cmd_show_sample_input"))
            print(example.input)
            print(self._msg("cmd_show_sample_output"))
            print(example.output)
            if example.explanation:
                print(self._msg("cmd_show_explanation", text=example.explanation))

        if question.type == QuestionType.MCQ:
            print()
            selected = self.engine.session.answers.get(question.id)
            for i, option in enumerate(question.options):
                marker = "*" if option == selected else " "
                print(f" {marker} {option_letter(i)}) {option}")
        else:
            language_id = self.engine.session.languages.get(question.id, self.engine.default_language)
            print()
            print(self._msg("cmd_show_code_file", path=self._code_file(question, language_id), language=language_id))
            if question.id in self.engine.session.submitted_question_ids:
                print(self._msg("cmd_show_submitted"))
        print()

    def cmd_answer(self, qn: str, choice: str):
        """Select an MCQ option by letter or by its text."""
        question = self._resolve(qn)
        if question is None:
            return
        option = choice
        if len(choice) == 1 and choice.isalpha():
            index = ord(choice.upper()) - ord('A')
            if 0 <= index < len(question.options):
                option = question.options[index]
        if self.engine.select_answer(question.id, option):
            print(self._msg("cmd_answer_saved", qn=qn, option=option))
        else:
            print(self._msg("cmd_answer_rejected", qn=qn))

    def cmd_lang(self, qn: str, language_id: str):
        question = self._resolve(qn)
        if question is None:
            return
        if not self.engine.set_language(question.id, language_id):
            print(self._msg("cmd_lang_usage", languages=", ".join(self.engine.adapter.languages)))
            return
        code_file = self._create_code_file(question, language_id)
        print(self._msg("cmd_lang_set", qn=qn, language=language_id, path=code_file))

    def _read_custom_input(self, input_file: Optional[str]) -> Optional[str]:
        if input_file:
            try:
                return Path(input_file).read_text(encoding='utf-8')
            except OSError as e:
                print(self._msg("cmd_error", error=e))
                return None

        print(self._msg("cmd_run_input_prompt"))
        lines = []
        while True:
            line = input()
            if line == "":
                break
            lines.append(line)
        return "\n".join(lines)

    def cmd_run(self, qn: Optional[str], input_file: Optional[str]):
        """Run the code once against custom input."""
        question = self._resolve(qn)
        if question is None:
            return
        custom_input = self._read_custom_input(input_file)
        if custom_input is None:
            return

        result = self.engine.run_sample(custom_input, question.id)
        print()
        if result.stdout:
            print(self._msg("cmd_run_stdout"))
            print(result.stdout.rstrip())
        if result.stderr:
            print(self._msg("cmd_run_stderr"))
            print(result.stderr.rstrip())
        print(self._msg("cmd_run_status", status=result.status.value, elapsed=f"{result.elapsed_time:.2f}"))
        if result.status == ExecutionStatus.NOT_READY:
            print(self._msg("cmd_run_not_ready"))
        print()

    def cmd_test(self, qn: Optional[str]):
        """Run all test cases without submitting."""
        question = self._resolve(qn)
        if question is None:
            return
        report = self.engine.run_tests(question.id)
        if report is None:
            print(self._msg("cmd_test_unavailable"))
            return
        print()
        print(self.engine.evaluator.format_test_results(report, show_details=True))
        print()

    def cmd_submit(self, qn: Optional[str]):
        """Submit one coding question, or the whole MCQ set after confirmation."""
        session = self.engine.session
        if session.kind == QuestionType.MCQ:
            unanswered = len([q for q in session.questions if q.id not in session.answers])
            try:
                confirm = input(self._msg("cmd_submit_confirm", unanswered=unanswered)).strip().lower()
            except (KeyboardInterrupt, EOFError):
                print()
                return
            if confirm not in ('y', 'yes', 'o', 'oui'):
                return
            question_id = None
        else:
            question = self._resolve(qn)
            if question is None:
                return
            question_id = question.id
            print(self._msg("cmd_submit_start", qn=self._qn(question)))

        try:
            record = self.engine.submit(question_id)
        except EngineError as e:
            print(self._msg("submission_failed", error=e))
            return

        if record is None:
            print(self._msg("cmd_test_unavailable"))
        elif record.kind == "code":
            print(self._msg("cmd_submit_result", passed=record.data["passed"], total=record.data["total"],
                            percentage=record.data["percentage"], result=record.data["result"]))
        else:
            print(self._msg("cmd_submit_mcq_saved"))

    def cmd_retry(self):
        try:
            if self.engine.retry_submission():
                print(self._msg("cmd_retry_ok"))
        except EngineError as e:
            print(self._msg("submission_failed", error=e))

    def cmd_status(self):
        """Display submission status."""
        snapshot = self.engine.snapshot()
        session = self.engine.session
        print()
        print(self._msg("cmd_status_header", candidate=session.candidate_id, state=snapshot.state.value))
        for question in session.questions:
            if session.kind == QuestionType.MCQ:
                done = question.id in snapshot.answers
            else:
                done = question.id in snapshot.submitted_question_ids
            status = self._msg("cmd_status_done") if done else self._msg("cmd_status_missing")
            print(f"- {self._qn(question)} ({question.id}): {status}")
        print(self._msg("cmd_status_violations", count=snapshot.violation_count))
        if snapshot.warning_message:
            print(self._msg("cmd_status_warning", message=snapshot.warning_message))
        print()

    def cmd_exit(self):
        """Leave without finalizing. Submitted questions stay submitted."""
        print()
        print(self._msg("cmd_exit_message"))
        self.session_log.log("SESSION_EXIT", "Candidate exited session - progress saved")


def main(argv: Optional[List[str]] = None):
    """Entry point for the exam runner."""
    runner = ExamRunner()
    sys.exit(runner.run(argv))


if __name__ == "__main__":
    main()
