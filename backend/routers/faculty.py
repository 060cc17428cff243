from fastapi import APIRouter, Depends, HTTPException, Query
from typing import Optional
import logging

from analytics import assessment_overview, coding_overview
from auth import require_role
from error_utils import AssessmentError, AssessmentNotFoundError, raise_for_domain_error, safe_raise_http
from models import (
    Assessment,
    CreateAssessmentRequest,
    CreateCodingQuestionRequest,
    CreateStudentRequest,
    HiddenTestCaseRequest,
    Question,
    UserRole,
)
from services import Services, get_services

logger = logging.getLogger(__name__)

router = APIRouter()

staff_only = require_role(UserRole.FACULTY, UserRole.ADMIN)
admin_only = require_role(UserRole.ADMIN)


@router.post("/assessments")
async def create_assessment(
    request: CreateAssessmentRequest,
    user: dict = Depends(staff_only),
    services: Services = Depends(get_services)
):
    """Create an assessment together with its questions"""
    try:
        assessment = await services.assessments.save_assessment(Assessment(
            title=request.title,
            subject=request.subject,
            unit=request.unit,
            faculty_id=user["user_id"],
            duration_minutes=request.duration_minutes,
            created_at=services.sessions.clock.now(),
        ))

        questions = []
        for q in request.questions:
            questions.append(await services.assessments.save_question(Question(
                assessment_id=assessment.id,
                **q.model_dump()
            )))

        logger.info(f"Created assessment {assessment.id} with {len(questions)} questions")
        return {"assessment": assessment, "questions": questions}
    except AssessmentError as e:
        raise_for_domain_error(e)
    except Exception as e:
        safe_raise_http("Failed to create assessment", e)


@router.get("/assessments")
async def list_assessments(
    user: dict = Depends(staff_only),
    services: Services = Depends(get_services)
):
    try:
        faculty_id = None if user["role"] == UserRole.ADMIN else user["user_id"]
        return await services.assessments.list_assessments(faculty_id)
    except AssessmentError as e:
        raise_for_domain_error(e)
    except Exception as e:
        safe_raise_http("Failed to list assessments", e)


@router.delete("/assessments/{assessment_id}")
async def delete_assessment(
    assessment_id: str,
    user: dict = Depends(staff_only),
    services: Services = Depends(get_services)
):
    """Remove an assessment and its questions. Sessions and submissions are kept."""
    try:
        assessment = await services.assessments.get_assessment(assessment_id)
        if assessment is None:
            raise AssessmentNotFoundError(f"Assessment {assessment_id} not found")
        if user["role"] != UserRole.ADMIN and assessment.faculty_id != user["user_id"]:
            raise HTTPException(status_code=403, detail="Not your assessment")

        await services.assessments.delete_assessment(assessment_id)
        logger.info(f"Assessment {assessment_id} deleted by {user['user_id']}")
        return {"success": True, "deleted": assessment_id}
    except HTTPException:
        raise
    except AssessmentError as e:
        raise_for_domain_error(e)
    except Exception as e:
        safe_raise_http("Failed to delete assessment", e)


@router.get("/assessments/{assessment_id}/questions")
async def list_assessment_questions(
    assessment_id: str,
    user: dict = Depends(staff_only),
    services: Services = Depends(get_services)
):
    """Questions including answer keys"""
    try:
        if await services.assessments.get_assessment(assessment_id) is None:
            raise AssessmentNotFoundError(f"Assessment {assessment_id} not found")
        return await services.assessments.list_questions(assessment_id)
    except AssessmentError as e:
        raise_for_domain_error(e)
    except Exception as e:
        safe_raise_http("Failed to list questions", e)


@router.get("/analytics/assessments")
async def get_assessment_analytics(
    user: dict = Depends(staff_only),
    services: Services = Depends(get_services)
):
    try:
        faculty_id = None if user["role"] == UserRole.ADMIN else user["user_id"]
        assessments = await services.assessments.list_assessments(faculty_id)
        submissions = await services.submissions.list_for_assessments([a.id for a in assessments])
        return assessment_overview(assessments, submissions)
    except AssessmentError as e:
        raise_for_domain_error(e)
    except Exception as e:
        safe_raise_http("Failed to compute analytics", e)


@router.post("/coding/questions")
async def create_coding_question(
    request: CreateCodingQuestionRequest,
    user: dict = Depends(staff_only),
    services: Services = Depends(get_services)
):
    try:
        return await services.coding.create_question(user["user_id"], request)
    except AssessmentError as e:
        raise_for_domain_error(e)
    except Exception as e:
        safe_raise_http("Failed to create coding question", e)


@router.post("/coding/questions/{question_id}/hidden-tests")
async def add_hidden_test(
    question_id: str,
    request: HiddenTestCaseRequest,
    user: dict = Depends(staff_only),
    services: Services = Depends(get_services)
):
    try:
        test_case = await services.coding.add_hidden_test(question_id, request)
        logger.info(f"Added hidden test {test_case.test_number} to coding question {question_id}")
        return test_case
    except AssessmentError as e:
        raise_for_domain_error(e)
    except Exception as e:
        safe_raise_http("Failed to add hidden test", e)


@router.get("/coding/questions/{question_id}/hidden-tests")
async def list_hidden_tests(
    question_id: str,
    user: dict = Depends(staff_only),
    services: Services = Depends(get_services)
):
    try:
        return await services.coding.store.list_all_hidden_tests(question_id)
    except AssessmentError as e:
        raise_for_domain_error(e)
    except Exception as e:
        safe_raise_http("Failed to list hidden tests", e)


@router.get("/analytics/coding")
async def get_coding_analytics(
    user: dict = Depends(admin_only),
    services: Services = Depends(get_services)
):
    try:
        questions = await services.coding.store.list_questions()
        submissions = await services.coding.store.list_submissions()
        return coding_overview(questions, submissions)
    except AssessmentError as e:
        raise_for_domain_error(e)
    except Exception as e:
        safe_raise_http("Failed to compute coding analytics", e)


@router.get("/students")
async def list_students(
    search: Optional[str] = Query(None, max_length=100),
    user: dict = Depends(staff_only),
    services: Services = Depends(get_services)
):
    try:
        return await services.users.list_users(role=UserRole.STUDENT, search=search)
    except AssessmentError as e:
        raise_for_domain_error(e)
    except Exception as e:
        safe_raise_http("Failed to list students", e)


@router.post("/students")
async def add_student(
    request: CreateStudentRequest,
    user: dict = Depends(staff_only),
    services: Services = Depends(get_services)
):
    """Faculty can only ever add students"""
    try:
        return await services.users.create_user(request, UserRole.STUDENT)
    except AssessmentError as e:
        raise_for_domain_error(e)
    except Exception as e:
        safe_raise_http("Failed to add student", e)
