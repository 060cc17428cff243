from fastapi import APIRouter, HTTPException, Depends
from typing import List
import logging

from auth import get_current_user, require_role
from entry_guard import EntryDecision, accepts_edits, evaluate_entry
from error_utils import (
    AssessmentError,
    AssessmentNotFoundError,
    SessionReadOnlyError,
    SubmissionInFlightError,
    SubmissionNotFoundError,
    raise_for_domain_error,
    safe_raise_http,
)
from models import (
    AvailableAssessment,
    DraftSaveRequest,
    EnterTestResponse,
    SubmitTestRequest,
    SubmitTestResponse,
    TestSession,
    TimerStatus,
    UserRole,
)
from services import Services, get_services

logger = logging.getLogger(__name__)

router = APIRouter()

student_only = require_role(UserRole.STUDENT)


async def _owned_session(services: Services, session_id: str, user: dict) -> TestSession:
    session = await services.sessions.get_session(session_id)
    if session.student_id != user["user_id"]:
        raise HTTPException(status_code=403, detail="Not your test session")
    return session


@router.get("/assessments", response_model=List[AvailableAssessment])
async def list_available_assessments(
    user: dict = Depends(student_only),
    services: Services = Depends(get_services)
):
    """Student dashboard: every assessment, with the result once it has been taken"""
    try:
        assessments = await services.assessments.list_assessments()
        taken = {s.assessment_id: s for s in await services.submissions.list_for_student(user["user_id"])}
        available = []
        for a in assessments:
            submission = taken.get(a.id)
            available.append(AvailableAssessment(
                id=a.id,
                title=a.title,
                subject=a.subject,
                unit=a.unit,
                duration_minutes=a.duration_minutes,
                created_at=a.created_at,
                submission_id=submission.id if submission else None,
                total_score=submission.total_score if submission else None,
            ))
        return available
    except AssessmentError as e:
        raise_for_domain_error(e)
    except Exception as e:
        safe_raise_http("Failed to list assessments", e)


@router.post("/assessments/{assessment_id}/enter", response_model=EnterTestResponse)
async def enter_test(
    assessment_id: str,
    user: dict = Depends(student_only),
    services: Services = Depends(get_services)
):
    """Open (or re-open) the test-taking view, applying the re-entry guard"""
    try:
        assessment = await services.assessments.get_assessment(assessment_id)
        if assessment is None:
            raise AssessmentNotFoundError(f"Assessment {assessment_id} not found")
        questions = await services.assessments.list_questions(assessment_id)

        session = await services.sessions.get_or_create_session(
            assessment_id, user["user_id"], assessment.duration_minutes
        )
        remaining = services.sessions.calculate_remaining_time(session)
        decision = evaluate_entry(session, remaining)

        if decision == EntryDecision.REDIRECT_TO_RESULTS:
            return EnterTestResponse(
                decision=decision.value,
                session=session,
                remaining_seconds=remaining,
                submission_id=session.locked_by_submission_id,
            )

        answers = await services.drafts.load(session.id)

        if decision == EntryDecision.EXPIRED:
            logger.info(f"Session {session.id} expired before re-entry, auto-submitting from draft")
            try:
                result = await services.finalizer.finalize(session, answers, is_auto_submitted=True)
            except SubmissionInFlightError:
                return EnterTestResponse(
                    decision=EntryDecision.FINALIZING.value,
                    session=session,
                    remaining_seconds=0,
                )
            session = await services.sessions.get_session(session.id)
            return EnterTestResponse(
                decision=decision.value,
                session=session,
                remaining_seconds=0,
                submission_id=result.submission.id,
            )

        return EnterTestResponse(
            decision=decision.value,
            session=session,
            remaining_seconds=remaining,
            questions=[q.public_view() for q in questions],
            answers=answers,
        )
    except HTTPException:
        raise
    except AssessmentError as e:
        raise_for_domain_error(e)
    except Exception as e:
        safe_raise_http("Failed to open the test", e)


@router.get("/sessions/{session_id}/timer", response_model=TimerStatus)
async def get_timer(
    session_id: str,
    user: dict = Depends(student_only),
    services: Services = Depends(get_services)
):
    """Remaining time, always derived from the stored start time"""
    try:
        session = await _owned_session(services, session_id, user)
        remaining = services.sessions.calculate_remaining_time(session)
        return TimerStatus(
            session_id=session.id,
            status=session.status,
            remaining_seconds=remaining,
            is_expired=remaining == 0,
            duration_seconds=session.duration_seconds,
            started_at=session.started_at,
        )
    except HTTPException:
        raise
    except AssessmentError as e:
        raise_for_domain_error(e)
    except Exception as e:
        safe_raise_http("Failed to read timer", e)


@router.put("/sessions/{session_id}/draft")
async def save_draft(
    session_id: str,
    request: DraftSaveRequest,
    user: dict = Depends(student_only),
    services: Services = Depends(get_services)
):
    """Autosave target: overwrite the session's draft with the full answer mapping"""
    try:
        session = await _owned_session(services, session_id, user)
        remaining = services.sessions.calculate_remaining_time(session)
        if services.finalizer.is_in_flight(session.id) or not accepts_edits(session, remaining):
            raise SessionReadOnlyError(f"Session {session.id} no longer accepts answers")

        await services.drafts.save(session.id, request.answers)
        return {"success": True, "saved_answers": len(request.answers), "remaining_seconds": remaining}
    except HTTPException:
        raise
    except AssessmentError as e:
        raise_for_domain_error(e)
    except Exception as e:
        safe_raise_http("Failed to save draft", e)


@router.post("/sessions/{session_id}/submit", response_model=SubmitTestResponse)
async def submit_test(
    session_id: str,
    request: SubmitTestRequest,
    user: dict = Depends(student_only),
    services: Services = Depends(get_services)
):
    """Finalize the attempt. A session that is already locked returns its submission."""
    try:
        session = await _owned_session(services, session_id, user)
        answers = request.answers
        if not answers:
            answers = await services.drafts.load(session.id)

        result = await services.finalizer.finalize(session, answers, is_auto_submitted=request.is_auto_submitted)
        return SubmitTestResponse(
            success=True,
            already_submitted=result.already_submitted,
            submission=result.submission,
        )
    except HTTPException:
        raise
    except AssessmentError as e:
        raise_for_domain_error(e)
    except Exception as e:
        safe_raise_http("Failed to submit test", e)


@router.get("/submissions/{submission_id}")
async def get_submission(
    submission_id: str,
    user: dict = Depends(get_current_user),
    services: Services = Depends(get_services)
):
    """Results view"""
    try:
        submission = await services.submissions.get(submission_id)
        if submission is None:
            raise SubmissionNotFoundError(f"Submission {submission_id} not found")
        if user["role"] == UserRole.STUDENT and submission.student_id != user["user_id"]:
            raise HTTPException(status_code=403, detail="Not your submission")
        return submission
    except HTTPException:
        raise
    except AssessmentError as e:
        raise_for_domain_error(e)
    except Exception as e:
        safe_raise_http("Failed to load submission", e)


@router.get("/submissions")
async def list_my_submissions(
    user: dict = Depends(student_only),
    services: Services = Depends(get_services)
):
    """Student dashboard: every finished attempt"""
    try:
        submissions = await services.submissions.list_for_student(user["user_id"])
        return sorted(submissions, key=lambda s: s.submitted_at, reverse=True)
    except AssessmentError as e:
        raise_for_domain_error(e)
    except Exception as e:
        safe_raise_http("Failed to list submissions", e)
