"""
Language runtimes for executing candidate code.

Each runtime runs the program in a fresh interpreter process through a
wrapper script that captures stdout/stderr in memory and feeds stdin line by
line. Interpreters are located lazily on a background thread; until that
finishes, execute() reports NotReady instead of running.

The parent enforces the wall-clock cap. The Python wrapper sets its own
RLIMIT_CPU on Unix; no code runs between fork and exec because the engine
process has live threads.
"""

import sys
import json
import time
import shutil
import tempfile
import threading
import subprocess
from enum import Enum
from pathlib import Path
from typing import Callable, Dict, List, Optional

from .models import ExecutionResult, ExecutionStatus


RESULT_MARKER = "__ASSESSMENT_RESULT__"

PYTHON_WRAPPER = r'''
import builtins
import io
import json
import sys
import traceback
import warnings

_payload = json.loads(sys.stdin.read())
if _payload.get("cpu_limit"):
    try:
        import resource
        resource.setrlimit(resource.RLIMIT_CPU, (_payload["cpu_limit"], _payload["cpu_limit"]))
    except (ImportError, ValueError, OSError):
        pass
_lines = _payload["stdin"].split("\n")


def _fake_input(prompt=None):
    return _lines.pop(0) if _lines else ""


class _LineReader(io.TextIOBase):
    def readable(self):
        return True

    def readline(self, size=-1):
        return (_lines.pop(0) + "\n") if _lines else ""

    def read(self, size=-1):
        rest = "\n".join(_lines)
        del _lines[:]
        return rest


_real_stdout = sys.stdout
_stdout, _stderr = io.StringIO(), io.StringIO()
sys.stdout, sys.stderr, sys.stdin = _stdout, _stderr, _LineReader()
builtins.input = _fake_input

# Compile-time warnings (e.g. invalid escapes) are not program errors
warnings.simplefilter("ignore", SyntaxWarning)

status = "Ok"
try:
    code = compile(_payload["source"], "<user_code>", "exec")
except (SyntaxError, ValueError) as e:
    status = "CompileError"
    _stderr.write("Compilation Error: " + "".join(traceback.format_exception_only(type(e), e)).strip())
else:
    try:
        exec(code, {"__name__": "__main__", "__builtins__": builtins})
    except SystemExit as e:
        if e.code not in (None, 0):
            status = "RuntimeError"
            _stderr.write("Runtime Error: exited with status " + str(e.code))
    except BaseException as e:
        status = "RuntimeError"
        _stdout = io.StringIO()
        _stderr.write("Runtime Error: " + "".join(traceback.format_exception_only(type(e), e)).strip())

sys.stdout, sys.stderr = _real_stdout, sys.__stderr__
if status == "Ok" and _stderr.getvalue():
    status = "RuntimeError"
_real_stdout.write("\n" + "__ASSESSMENT_RESULT__" + json.dumps({
    "status": status,
    "stdout": _stdout.getvalue(),
    "stderr": _stderr.getvalue(),
}))
_real_stdout.flush()
'''

JAVASCRIPT_WRAPPER = r'''
"use strict";
const fs = require("fs");
const payload = JSON.parse(fs.readFileSync(0, "utf8"));
const lines = payload.stdin.split("\n");
let outBuff = [];
const errBuff = [];

const fmt = (a) => (typeof a === "object" && a !== null ? JSON.stringify(a) : String(a));
const input = () => (lines.length ? lines.shift() : "");
const print = (...args) => { outBuff.push(args.map(fmt).join(" ")); };
const printErr = (...args) => { errBuff.push(args.map(fmt).join(" ")); };
const sandboxConsole = { log: print, info: print, debug: print, error: printErr, warn: printErr };

let status = "Ok";
let fn = null;
try {
  fn = new Function("input", "readline", "print", "console", "require", "process",
    "\"use strict\";\n" + payload.source);
} catch (e) {
  status = e instanceof SyntaxError ? "CompileError" : "RuntimeError";
  errBuff.push((status === "CompileError" ? "Compilation Error: " : "Runtime Error: ") + (e && e.message ? e.message : String(e)));
}
if (fn !== null) {
  try {
    fn(input, input, print, sandboxConsole, undefined, undefined);
  } catch (e) {
    status = "RuntimeError";
    outBuff = [];
    errBuff.push("Runtime Error: " + (e && e.message ? e.message : String(e)));
  }
}
process.stdout.write("\n" + "__ASSESSMENT_RESULT__" + JSON.stringify({
  status: status,
  stdout: outBuff.join("\n"),
  stderr: errBuff.join("\n"),
}));
'''


class RuntimeState(str, Enum):
    UNINITIALIZED = "uninitialized"
    LOADING = "loading"
    READY = "ready"
    UNAVAILABLE = "unavailable"


def get_python_executable():
    """Get the appropriate Python executable path."""
    if getattr(sys, 'frozen', False):
        python_path = shutil.which('python')
        if not python_path:
            python_path = shutil.which('python3')

        if python_path:
            return python_path, ['-I', '-B']
        else:
            raise RuntimeError("Python executable not found. Please ensure Python is installed on the exam machines.")
    else:
        return sys.executable, ['-I', '-B']


def run_wrapper(
    command: List[str],
    wrapper_name: str,
    wrapper_code: str,
    source: str,
    stdin: str,
    timeout_sec: Optional[float]
) -> ExecutionResult:
    """
    Run a wrapper script in a scratch directory and decode its result.

    Args:
        command: Interpreter command (executable plus flags)
        wrapper_name: File name for the wrapper inside the scratch directory
        wrapper_code: Wrapper script source
        source: Candidate program
        stdin: Text fed to the program's read primitive
        timeout_sec: Wall-clock cap, or None for no cap

    Returns:
        ExecutionResult with elapsed wall-clock time in seconds
    """
    request = {"source": source, "stdin": stdin}
    if timeout_sec is not None:
        request["cpu_limit"] = int(timeout_sec) + 1
    payload = json.dumps(request).encode('utf-8')

    with tempfile.TemporaryDirectory() as temp_dir:
        wrapper_path = Path(temp_dir) / wrapper_name
        with open(wrapper_path, 'w', encoding='utf-8') as f:
            f.write(wrapper_code)

        start = time.perf_counter()
        try:
            proc = subprocess.run(
                [*command, str(wrapper_path)],
                input=payload,
                capture_output=True,
                timeout=timeout_sec,
                check=False,
                cwd=temp_dir
            )
        except subprocess.TimeoutExpired:
            elapsed = time.perf_counter() - start
            limit_ms = int(timeout_sec * 1000) if timeout_sec else 0
            return ExecutionResult("", f"Time limit exceeded ({limit_ms} ms)", ExecutionStatus.RUNTIME_ERROR, elapsed)
        except (OSError, ValueError) as e:
            return ExecutionResult("", f"Execution error: {e}", ExecutionStatus.FAILED, time.perf_counter() - start)

        stdout = proc.stdout.decode('utf-8', errors='replace')
        stderr = proc.stderr.decode('utf-8', errors='replace')
        elapsed = time.perf_counter() - start

    return decode_result(stdout, stderr, proc.returncode, elapsed)


def decode_result(stdout: str, stderr: str, returncode: int, elapsed: float) -> ExecutionResult:
    """Turn raw wrapper output into an ExecutionResult."""
    marker_at = stdout.rfind(RESULT_MARKER)
    if marker_at == -1:
        if 'MemoryError' in stderr:
            return ExecutionResult("", "Runtime Error: Memory limit exceeded", ExecutionStatus.RUNTIME_ERROR, elapsed)
        if returncode != 0:
            detail = stderr.strip()[-500:] or f"interpreter exited with status {returncode}"
            return ExecutionResult("", f"Runtime Error: {detail}", ExecutionStatus.RUNTIME_ERROR, elapsed)
        return ExecutionResult("", "Failed to read program output", ExecutionStatus.FAILED, elapsed)

    try:
        data = json.loads(stdout[marker_at + len(RESULT_MARKER):])
        status = ExecutionStatus(data["status"])
    except (ValueError, KeyError, TypeError):
        return ExecutionResult("", "Failed to read program output", ExecutionStatus.FAILED, elapsed)

    return ExecutionResult(
        stdout=data.get("stdout") or "",
        stderr=data.get("stderr") or "",
        status=status,
        elapsed_time=elapsed
    )


class LanguageRuntime:
    """
    One interpreter for one language.

    initialize() is idempotent and returns immediately; the interpreter is
    located and checked on a background thread. Executions are single-flight.
    """

    language_id = ""
    display_name = ""
    wrapper_name = "wrapper"
    wrapper_code = ""
    template = ""

    def __init__(self, session_logger: Optional[Callable[[str, str], None]] = None):
        self.session_logger = session_logger
        self.state = RuntimeState.UNINITIALIZED
        self.error: Optional[str] = None
        self.version: Optional[str] = None
        self._command: Optional[List[str]] = None
        self._init_lock = threading.Lock()
        self._exec_lock = threading.Lock()
        self._ready_event = threading.Event()
        self._init_thread: Optional[threading.Thread] = None

    def resolve_command(self) -> List[str]:
        """Return the interpreter command (executable plus flags)."""
        raise NotImplementedError

    def initialize(self):
        """Start loading the interpreter if nobody has yet."""
        with self._init_lock:
            if self.state != RuntimeState.UNINITIALIZED:
                return
            self.state = RuntimeState.LOADING
            self._init_thread = threading.Thread(target=self._load, daemon=True)
            self._init_thread.start()

    def _load(self):
        try:
            command = self.resolve_command()
            proc = subprocess.run(
                [*command, "--version"],
                capture_output=True,
                timeout=30,
                check=False
            )
            if proc.returncode != 0:
                raise RuntimeError(f"'{command[0]} --version' exited with status {proc.returncode}")
            output = (proc.stdout or proc.stderr).decode('utf-8', errors='replace').strip()
            self.version = output or None
            self._command = command
            self.state = RuntimeState.READY
            self._log("RUNTIME_READY", f"{self.display_name}: {self.version or 'unknown version'}")
        except (OSError, RuntimeError, subprocess.SubprocessError) as e:
            self.error = str(e)
            self.state = RuntimeState.UNAVAILABLE
            self._log("RUNTIME_UNAVAILABLE", f"{self.display_name}: {e}")
        finally:
            self._ready_event.set()

    def wait_ready(self, timeout: Optional[float] = None) -> bool:
        """Block until initialization finishes. Returns True if ready."""
        self.initialize()
        self._ready_event.wait(timeout)
        return self.state == RuntimeState.READY

    @property
    def is_ready(self) -> bool:
        return self.state == RuntimeState.READY

    def execute(self, source: str, stdin: str, time_limit_ms: Optional[int] = None) -> ExecutionResult:
        """Run source against stdin. Never raises."""
        if self.state == RuntimeState.UNAVAILABLE:
            return ExecutionResult("", f"{self.display_name} runtime unavailable: {self.error}", ExecutionStatus.FAILED)
        if self.state != RuntimeState.READY:
            return ExecutionResult("", f"{self.display_name} runtime not ready", ExecutionStatus.NOT_READY)

        timeout_sec = time_limit_ms / 1000.0 if time_limit_ms else None
        with self._exec_lock:
            return run_wrapper(
                self._command,
                self.wrapper_name,
                self.wrapper_code,
                source,
                stdin or "",
                timeout_sec
            )

    def _log(self, event: str, details: str):
        if self.session_logger:
            try:
                self.session_logger(event, details)
            except OSError:
                pass


class PythonRuntime(LanguageRuntime):
    language_id = "python"
    display_name = "Python"
    wrapper_name = "__wrapper__.py"
    wrapper_code = PYTHON_WRAPPER
    template = """# Python
# Use input() to read lines; print() to write output.

x = input().strip()
if x:
    try:
        print(int(x) * 2)
    except Exception:
        print(x)
"""

    def resolve_command(self) -> List[str]:
        executable, flags = get_python_executable()
        return [executable, *flags]


class JavaScriptRuntime(LanguageRuntime):
    language_id = "javascript"
    display_name = "JavaScript"
    wrapper_name = "__wrapper__.js"
    wrapper_code = JAVASCRIPT_WRAPPER
    template = """// JavaScript
// Use input() / readline() to read lines from provided stdin,
// and print() to output.

const s = input().trim();
if (s) {
  const n = Number(s);
  if (!Number.isNaN(n)) print(n * 2);
  else print(s);
}
"""

    def __init__(self, executable: Optional[str] = None, session_logger=None):
        super().__init__(session_logger=session_logger)
        self.executable = executable

    def resolve_command(self) -> List[str]:
        node = self.executable or shutil.which('node') or shutil.which('nodejs')
        if not node:
            raise RuntimeError("Node.js executable not found. Please install node to run JavaScript questions.")
        return [node]


class RuntimeAdapter:
    """Uniform execute() contract over the per-language runtimes."""

    def __init__(
        self,
        runtimes: Optional[List[LanguageRuntime]] = None,
        default_time_limit_ms: Optional[int] = None
    ):
        if runtimes is None:
            runtimes = [PythonRuntime(), JavaScriptRuntime()]
        self.runtimes: Dict[str, LanguageRuntime] = {r.language_id: r for r in runtimes}
        self.default_time_limit_ms = default_time_limit_ms

    @property
    def languages(self) -> List[str]:
        return list(self.runtimes.keys())

    def get(self, language_id: str) -> Optional[LanguageRuntime]:
        return self.runtimes.get(language_id)

    def initialize(self, language_id: Optional[str] = None):
        """Kick off lazy loading for one language, or all of them."""
        if language_id is None:
            for runtime in self.runtimes.values():
                runtime.initialize()
            return
        runtime = self.runtimes.get(language_id)
        if runtime:
            runtime.initialize()

    def is_ready(self, language_id: str) -> bool:
        runtime = self.runtimes.get(language_id)
        return runtime is not None and runtime.is_ready

    def wait_ready(self, language_id: str, timeout: Optional[float] = None) -> bool:
        runtime = self.runtimes.get(language_id)
        if runtime is None:
            return False
        return runtime.wait_ready(timeout)

    def template_for(self, language_id: str) -> str:
        runtime = self.runtimes.get(language_id)
        return runtime.template if runtime else ""

    def execute(
        self,
        language_id: str,
        source: str,
        stdin: str,
        time_limit_ms: Optional[int] = None
    ) -> ExecutionResult:
        """
        Execute source for a language.

        An unknown language reports Failed; a runtime still loading reports
        NotReady. This method never raises.
        """
        runtime = self.runtimes.get(language_id)
        if runtime is None:
            return ExecutionResult("", "Unsupported language.", ExecutionStatus.FAILED)
        runtime.initialize()
        return runtime.execute(source, stdin, time_limit_ms or self.default_time_limit_ms)
