from fastapi import APIRouter, HTTPException, Depends
import logging

from auth import get_current_user, require_role
from error_utils import (
    AssessmentError,
    QuestionNotFoundError,
    SubmissionNotFoundError,
    raise_for_domain_error,
    safe_raise_http,
)
from models import CodeRunRequest, CodeSubmitRequest, CodingQuestion, ExecutionResult, UserRole
from services import Services, get_services

logger = logging.getLogger(__name__)

router = APIRouter()


async def _visible_question(services: Services, question_id: str, user: dict) -> CodingQuestion:
    question = await services.coding.store.get_question(question_id)
    if question is None or (not question.is_published and user["role"] == UserRole.STUDENT):
        raise QuestionNotFoundError(f"Coding question {question_id} not found")
    return question


@router.get("/questions")
async def list_questions(
    user: dict = Depends(get_current_user),
    services: Services = Depends(get_services)
):
    """Published problems (faculty and admins also see drafts)"""
    try:
        if user["role"] == UserRole.STUDENT:
            return await services.coding.store.list_published_questions()
        return await services.coding.store.list_questions()
    except AssessmentError as e:
        raise_for_domain_error(e)
    except Exception as e:
        safe_raise_http("Failed to list coding questions", e)


@router.get("/questions/{question_id}")
async def get_question(
    question_id: str,
    user: dict = Depends(get_current_user),
    services: Services = Depends(get_services)
):
    """Problem statement with the sample test only"""
    try:
        return await _visible_question(services, question_id, user)
    except AssessmentError as e:
        raise_for_domain_error(e)
    except Exception as e:
        safe_raise_http("Failed to load coding question", e)


@router.post("/run", response_model=ExecutionResult)
async def run_code(
    request: CodeRunRequest,
    user: dict = Depends(get_current_user),
    services: Services = Depends(get_services)
):
    """Quick run against a caller-supplied expected output"""
    logger.info(f"Quick run ({request.language}) by {user['user_id']}")
    return await services.coding.quick_run(request.code, request.language, request.expected_output, request.stdin)


@router.post("/questions/{question_id}/preview", response_model=ExecutionResult)
async def preview_solution(
    question_id: str,
    request: CodeSubmitRequest,
    user: dict = Depends(get_current_user),
    services: Services = Depends(get_services)
):
    """Sample and hidden tests without saving a submission"""
    try:
        await _visible_question(services, question_id, user)
        return await services.coding.preview(question_id, request.code, request.language)
    except AssessmentError as e:
        raise_for_domain_error(e)
    except Exception as e:
        safe_raise_http("Failed to run code", e)


@router.post("/questions/{question_id}/submit")
async def submit_solution(
    question_id: str,
    request: CodeSubmitRequest,
    user: dict = Depends(require_role(UserRole.STUDENT)),
    services: Services = Depends(get_services)
):
    """Grade against sample and hidden tests and save the submission"""
    try:
        await _visible_question(services, question_id, user)
        return await services.coding.submit(question_id, user["user_id"], request.code, request.language)
    except AssessmentError as e:
        raise_for_domain_error(e)
    except Exception as e:
        safe_raise_http("Failed to submit code", e)


@router.get("/questions/{question_id}/submissions")
async def list_question_submissions(
    question_id: str,
    user: dict = Depends(get_current_user),
    services: Services = Depends(get_services)
):
    """Students see their own history; faculty and admins see everyone's"""
    try:
        student_id = user["user_id"] if user["role"] == UserRole.STUDENT else None
        return await services.coding.store.list_submissions(question_id=question_id, student_id=student_id)
    except AssessmentError as e:
        raise_for_domain_error(e)
    except Exception as e:
        safe_raise_http("Failed to list coding submissions", e)


@router.get("/submissions/{submission_id}")
async def get_coding_submission(
    submission_id: str,
    user: dict = Depends(get_current_user),
    services: Services = Depends(get_services)
):
    try:
        submission = await services.coding.store.get_submission(submission_id)
        if submission is None:
            raise SubmissionNotFoundError(f"Coding submission {submission_id} not found")
        if user["role"] == UserRole.STUDENT and submission.student_id != user["user_id"]:
            raise HTTPException(status_code=403, detail="Not your submission")
        return submission
    except HTTPException:
        raise
    except AssessmentError as e:
        raise_for_domain_error(e)
    except Exception as e:
        safe_raise_http("Failed to load coding submission", e)
