"""
Coding lab grading: run the sample test, then the hidden tests, and persist
the outcome as a CodingSubmission.
"""

import logging
from typing import List, Optional

from code_execution import CodeExecutor, normalize_output
from datetime_utils import Clock, SystemClock
from error_utils import QuestionNotFoundError
from models import (
    CodingQuestion,
    CodingSubmission,
    CodingSubmissionStatus,
    CreateCodingQuestionRequest,
    ExecutionOutput,
    ExecutionResult,
    ExecutionStatus,
    HiddenTestCase,
    HiddenTestCaseRequest,
    HiddenTestOutcome,
    HiddenTestsResult,
)
from stores import CodingStore

logger = logging.getLogger(__name__)


def evaluate_output(raw: ExecutionOutput, expected_output: Optional[str]) -> ExecutionResult:
    """Grade one run against one expected output."""
    actual = normalize_output(raw.stdout)
    expected = normalize_output(expected_output)
    result = ExecutionResult(
        status=ExecutionStatus.SUCCESS,
        output=raw.stdout.strip(),
        execution_time=raw.execution_time,
        expected_output=expected,
        actual_output=actual,
    )

    if raw.signal:
        result.status = ExecutionStatus.TIMEOUT
        result.error = f"Execution was terminated ({raw.signal}); time limit exceeded"
    elif raw.exit_code != 0 or raw.stderr:
        result.status = ExecutionStatus.ERROR
        result.error = raw.stderr.strip() or "Execution failed"
    elif expected_output and actual != expected:
        result.status = ExecutionStatus.TEST_FAILED
        result.error = f"Output mismatch!\nExpected: {expected}\nGot: {actual}"
    else:
        result.tests_passed = 1
    return result


class CodingLabService:
    def __init__(self, store: CodingStore, executor: CodeExecutor, clock: Optional[Clock] = None):
        self.store = store
        self.executor = executor
        self.clock = clock or SystemClock()

    async def _get_question(self, question_id: str) -> CodingQuestion:
        question = await self.store.get_question(question_id)
        if question is None:
            raise QuestionNotFoundError(f"Coding question {question_id} not found")
        return question

    async def quick_run(self, code: str, language: str, expected_output: str = "", stdin: str = "") -> ExecutionResult:
        """Run once against a single expected output. Provider failures come back as an error result."""
        try:
            raw = await self.executor.execute(code, language, stdin)
        except Exception as e:
            logger.error(f"Code execution failed: {e}")
            return ExecutionResult(
                status=ExecutionStatus.ERROR,
                error=str(e) or "Failed to execute code. Please try again.",
            )
        return evaluate_output(raw, expected_output)

    async def run_hidden_tests(self, code: str, language: str,
                               hidden_tests: List[HiddenTestCase]) -> HiddenTestsResult:
        """Run hidden tests one after another; a failed run counts as not passed."""
        outcome = HiddenTestsResult(total_tests=len(hidden_tests))
        for test in hidden_tests:
            result = await self.quick_run(code, language, test.expected_output, test.input)
            passed = result.status == ExecutionStatus.SUCCESS
            if passed:
                outcome.tests_passed += 1
            outcome.results.append(HiddenTestOutcome(
                test_number=test.test_number,
                passed=passed,
                input=test.input,
                expected_output=normalize_output(test.expected_output),
                actual_output=result.actual_output or "",
            ))
        return outcome

    async def _grade(self, question: CodingQuestion, code: str, language: str) -> ExecutionResult:
        result = await self.quick_run(code, language, question.sample_output, question.sample_input)
        logger.info(f"Sample test for question {question.id}: {result.status.value}")

        if result.tests_passed != 1:
            return result

        hidden_tests = await self.store.get_hidden_tests(question.id)
        if not hidden_tests:
            return result

        hidden = await self.run_hidden_tests(code, language, hidden_tests)
        logger.info(f"Hidden tests for question {question.id}: {hidden.tests_passed}/{hidden.total_tests}")
        result.hidden_tests_result = hidden
        result.tests_passed = 1 + hidden.tests_passed
        result.total_tests = 1 + hidden.total_tests
        if hidden.tests_passed != hidden.total_tests:
            result.status = ExecutionStatus.TEST_FAILED
            result.error = f"Hidden tests failed: {hidden.total_tests - hidden.tests_passed} of {hidden.total_tests}"
        return result

    async def preview(self, question_id: str, code: str, language: str) -> ExecutionResult:
        """Sample plus hidden tests, nothing persisted."""
        question = await self._get_question(question_id)
        return await self._grade(question, code, language)

    async def submit(self, question_id: str, student_id: str, code: str, language: str) -> CodingSubmission:
        question = await self._get_question(question_id)
        result = await self._grade(question, code, language)

        accepted = result.tests_passed == result.total_tests and result.status == ExecutionStatus.SUCCESS
        submission = CodingSubmission(
            question_id=question.id,
            student_id=student_id,
            code=code,
            language=language,
            status=CodingSubmissionStatus.ACCEPTED if accepted else CodingSubmissionStatus.ERROR,
            output=result.output,
            error_message=result.error,
            execution_time=round(result.execution_time * 1000),
            memory_used=result.memory_used,
            tests_passed=result.tests_passed,
            total_tests=result.total_tests,
            submitted_at=self.clock.now(),
        )
        saved = await self.store.save_submission(submission)
        logger.info(
            f"Coding submission {saved.id} for question {question.id} by {student_id}: "
            f"{saved.status.value} ({saved.tests_passed}/{saved.total_tests})"
        )
        return saved

    # ===== Question management =====

    async def create_question(self, faculty_id: str, request: CreateCodingQuestionRequest) -> CodingQuestion:
        question = CodingQuestion(faculty_id=faculty_id, created_at=self.clock.now(), **request.model_dump())
        saved = await self.store.save_question(question)
        logger.info(f"Created coding question {saved.id} '{saved.title}'")
        return saved

    async def add_hidden_test(self, question_id: str, request: HiddenTestCaseRequest) -> HiddenTestCase:
        await self._get_question(question_id)
        existing = await self.store.list_all_hidden_tests(question_id)
        test_number = request.test_number or (max((t.test_number for t in existing), default=0) + 1)
        test_case = HiddenTestCase(
            question_id=question_id,
            input=request.input,
            expected_output=request.expected_output,
            test_number=test_number,
            is_active=request.is_active,
            created_at=self.clock.now(),
        )
        return await self.store.save_hidden_test(test_case)
