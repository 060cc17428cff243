"""
Remote code execution providers.

Both providers return the raw run result; deciding whether the run passed is
coding_lab's job.
"""

import logging
import time
from typing import Optional, Protocol

import httpx

from constants import (
    CODE_EXECUTION_TIMEOUT,
    CODE_EXECUTOR,
    JUDGE0_API_KEY,
    JUDGE0_API_URL,
    PISTON_API_URL,
)
from error_utils import CodeExecutionError
from models import ExecutionOutput

logger = logging.getLogger(__name__)


def normalize_output(output: Optional[str]) -> str:
    """Trim the text and every line, drop blank lines."""
    if not output:
        return ""
    lines = (line.strip() for line in output.strip().split("\n"))
    return "\n".join(line for line in lines if line)


class CodeExecutor(Protocol):
    async def execute(self, source_code: str, language: str, stdin: str = "") -> ExecutionOutput:
        ...


class PistonExecutor:
    """Public Piston API (no key required)."""

    language_map = {
        "python": "python",
        "javascript": "javascript",
        "java": "java",
        "cpp": "c++",
        "c": "c",
    }

    version_map = {
        "python": "3.10.0",
        "javascript": "18.15.0",
        "java": "15.0.2",
        "cpp": "10.2.0",
        "c": "10.2.0",
    }

    extensions = {
        "python": "py",
        "javascript": "js",
        "java": "java",
        "cpp": "cpp",
        "c": "c",
    }

    compile_timeout_ms = 10000
    run_timeout_ms = 3000

    def __init__(self, base_url: str = PISTON_API_URL, timeout: float = CODE_EXECUTION_TIMEOUT,
                 transport: Optional[httpx.AsyncBaseTransport] = None):
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.transport = transport

    def build_payload(self, source_code: str, language: str, stdin: str = "") -> dict:
        lang = language.lower()
        return {
            "language": self.language_map.get(lang, "python"),
            "version": self.version_map.get(lang, "3.10.0"),
            "files": [{"name": f"solution.{self.extensions.get(lang, 'py')}", "content": source_code}],
            "stdin": stdin or "",
            "compile_timeout": self.compile_timeout_ms,
            "run_timeout": self.run_timeout_ms,
            "compile_memory_limit": -1,
            "run_memory_limit": -1,
        }

    async def execute(self, source_code: str, language: str, stdin: str = "") -> ExecutionOutput:
        payload = self.build_payload(source_code, language, stdin)
        started = time.monotonic()
        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self.transport) as client:
                response = await client.post(f"{self.base_url}/execute", json=payload)
        except httpx.TimeoutException as e:
            raise CodeExecutionError("Code execution timed out") from e
        except httpx.HTTPError as e:
            logger.exception("Piston request failed")
            raise CodeExecutionError("Failed to reach the code execution service") from e

        if response.status_code != 200:
            message = _error_message(response)
            logger.error(f"Piston returned {response.status_code}: {message}")
            raise CodeExecutionError(message or f"Code execution service returned {response.status_code}")

        data = response.json()
        run = data.get("run") or {}
        compile_stage = data.get("compile") or {}
        stderr = run.get("stderr") or ""
        exit_code = run.get("code")
        # A failed compile never reaches the run stage output
        if compile_stage.get("code") not in (None, 0):
            stderr = compile_stage.get("stderr") or compile_stage.get("output") or stderr
            exit_code = compile_stage.get("code")

        return ExecutionOutput(
            stdout=run.get("stdout") or "",
            stderr=stderr,
            exit_code=exit_code or 0,
            signal=run.get("signal"),
            execution_time=time.monotonic() - started,
        )


class Judge0Executor:
    """Judge0 CE via RapidAPI (key required)."""

    language_ids = {
        "python": 71,      # Python 3.8.1
        "javascript": 63,  # JavaScript (Node.js 12.14.0)
        "java": 62,        # Java (OpenJDK 13.0.1)
        "cpp": 54,         # C++ (GCC 9.2.0)
        "c": 50,           # C (GCC 9.2.0)
        "typescript": 74   # TypeScript (3.7.4)
    }

    ACCEPTED = 3
    TIME_LIMIT_EXCEEDED = 5

    def __init__(self, base_url: str = JUDGE0_API_URL, api_key: str = JUDGE0_API_KEY,
                 timeout: float = CODE_EXECUTION_TIMEOUT,
                 transport: Optional[httpx.AsyncBaseTransport] = None):
        self.base_url = base_url.rstrip("/")
        self.api_key = api_key
        self.timeout = timeout
        self.transport = transport

    async def execute(self, source_code: str, language: str, stdin: str = "") -> ExecutionOutput:
        if not self.api_key:
            raise CodeExecutionError("JUDGE0_API_KEY is not configured")

        headers = {
            "content-type": "application/json",
            "X-RapidAPI-Key": self.api_key,
            "X-RapidAPI-Host": httpx.URL(self.base_url).host,
        }
        submission_data = {
            "source_code": source_code,
            "language_id": self.language_ids.get(language.lower(), 71),
            "stdin": stdin or "",
        }

        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self.transport) as client:
                response = await client.post(
                    f"{self.base_url}/submissions",
                    json=submission_data,
                    headers=headers,
                    params={"base64_encoded": "false", "wait": "true"}
                )
        except httpx.TimeoutException as e:
            raise CodeExecutionError("Code execution timed out") from e
        except httpx.HTTPError as e:
            logger.exception("Judge0 request failed")
            raise CodeExecutionError("Failed to reach the code execution service") from e

        if response.status_code not in (200, 201):
            logger.error(f"Judge0 returned {response.status_code}: {response.text[:200]}")
            raise CodeExecutionError("Failed to submit code to Judge0")

        result = response.json()
        status_id = (result.get("status") or {}).get("id")
        stderr = result.get("stderr") or result.get("compile_output") or ""
        exit_code = result.get("exit_code")
        if exit_code is None:
            exit_code = 0 if status_id == self.ACCEPTED else 1
        signal = "SIGKILL" if status_id == self.TIME_LIMIT_EXCEEDED else result.get("exit_signal")

        return ExecutionOutput(
            stdout=result.get("stdout") or "",
            stderr=stderr,
            exit_code=exit_code,
            signal=str(signal) if signal else None,
            execution_time=float(result.get("time") or 0),
        )


def _error_message(response: httpx.Response) -> str:
    try:
        return response.json().get("message", "")
    except ValueError:
        return response.text[:200]


def get_executor(name: str = CODE_EXECUTOR) -> CodeExecutor:
    if name == "judge0":
        return Judge0Executor()
    if name == "piston":
        return PistonExecutor()
    raise ValueError(f"Unknown code executor '{name}'")
