"""
API Routes - FastAPI endpoints for tutors, students and guardians.

NO DICTIONARIES - All requests/responses use Pydantic models.
"""

import base64
import binascii
from datetime import UTC, datetime

from fastapi import APIRouter, BackgroundTasks, Depends, Response, status
from structlog import get_logger

from manabee.api.dependencies import get_caller, get_services
from manabee.exceptions import InvalidArgumentError, NotFoundError, QuotaExceededError
from manabee.models.api import (
    GenerateLessonContentRequest,
    GenerateLessonContentResponse,
    JobStatus,
    QuestionJobResponse,
    RegisterEndpointRequest,
    SendNotificationRequest,
    SendNotificationResponse,
    SubmitQuestionRequest,
    SuccessResponse,
    UserProfileResponse,
)
from manabee.models.domain import CallerIdentity, QuestionJobData
from manabee.services.registry import ServiceRegistry

logger = get_logger(__name__)

router = APIRouter()


def _job_response(job: QuestionJobData) -> QuestionJobResponse:
    return QuestionJobResponse(
        id=job.job_id,
        student_id=job.student_id,
        subject=job.subject,
        status=job.status,
        ai_analysis=job.ai_analysis,
        error=job.error,
        created_at=job.created_at,
        processing_started_at=job.processing_started_at,
        analyzed_at=job.analyzed_at,
        error_at=job.error_at,
    )


@router.post("/v1/lessons/generate", response_model=GenerateLessonContentResponse)
async def generate_lesson_content(
    request: GenerateLessonContentRequest,
    caller: CallerIdentity = Depends(get_caller),
    services: ServiceRegistry = Depends(get_services),
) -> GenerateLessonContentResponse:
    """
    Generate a lesson summary, homework plan and quiz from a transcript.

    Consumes one unit of the caller's daily AI quota before the provider is
    called; the unit is spent even if generation then fails.

    Errors:
    - 400: blank transcript
    - 401: missing or invalid token
    - 429: daily limit reached
    - 503: AI provider not configured
    - 500/502: provider returned incomplete data or failed
    """
    if not request.transcript.strip():
        raise InvalidArgumentError("Transcript is required")

    limit = services.settings.daily_ai_limit
    decision = await services.quota.consume_today(caller.user_id, limit)
    if not decision.allowed:
        raise QuotaExceededError(limit)

    return await services.generator.generate(
        caller.user_id, request.transcript, request.student_context
    )


@router.post("/v1/notifications/send", response_model=SendNotificationResponse)
async def send_notification(
    request: SendNotificationRequest,
    caller: CallerIdentity = Depends(get_caller),
    services: ServiceRegistry = Depends(get_services),
) -> SendNotificationResponse:
    """Push a notification to every registered device of the target user."""
    summary = await services.dispatcher.send(
        sender_id=caller.user_id,
        target_user_id=request.target_user_id,
        title=request.title,
        body=request.body,
        url=request.url,
        category=request.type,
    )
    return SendNotificationResponse(success=True, sent=summary.sent, failed=summary.failed)


@router.post("/v1/notifications/endpoints", response_model=SuccessResponse)
async def register_endpoint(
    request: RegisterEndpointRequest,
    caller: CallerIdentity = Depends(get_caller),
    services: ServiceRegistry = Depends(get_services),
) -> SuccessResponse:
    """Register a device token for the caller. Re-registering is a no-op."""
    await services.dispatcher.register_endpoint(caller.user_id, request.token)
    return SuccessResponse(success=True)


@router.post(
    "/v1/questions",
    response_model=QuestionJobResponse,
    status_code=status.HTTP_202_ACCEPTED,
)
async def submit_question(
    request: SubmitQuestionRequest,
    background_tasks: BackgroundTasks,
    caller: CallerIdentity = Depends(get_caller),
    services: ServiceRegistry = Depends(get_services),
) -> QuestionJobResponse:
    """
    Submit a photographed question for analysis.

    The job is stored as queued and analysis runs after the response is
    sent; poll GET /v1/questions/{job_id} for the result.
    """
    try:
        base64.b64decode(request.image_base64, validate=True)
    except (binascii.Error, ValueError) as e:
        raise InvalidArgumentError("image_base64 is not valid base64") from e

    job = await services.store.create_job(
        student_id=caller.user_id,
        image_payload=request.image_base64,
        image_mime_type=request.mime_type,
        subject=request.subject,
        status=JobStatus.QUEUED,
        at=datetime.now(UTC),
    )
    background_tasks.add_task(services.pipeline.on_job_created, job.job_id)

    logger.info("question_submitted", job_id=job.job_id, student_id=caller.user_id)
    return _job_response(job)


@router.get("/v1/questions/{job_id}", response_model=QuestionJobResponse)
async def get_question(
    job_id: str,
    caller: CallerIdentity = Depends(get_caller),
    services: ServiceRegistry = Depends(get_services),
) -> QuestionJobResponse:
    """Fetch a question job. Visible to the submitting student and admins."""
    job = await services.store.get_job(job_id)
    if job is None:
        raise NotFoundError("Question", job_id)

    if job.student_id != caller.user_id:
        await services.guard.require_admin(caller)

    return _job_response(job)


@router.post("/v1/users/me/profile", response_model=UserProfileResponse)
async def provision_profile(
    response: Response,
    caller: CallerIdentity = Depends(get_caller),
    services: ServiceRegistry = Depends(get_services),
) -> UserProfileResponse:
    """
    Create the caller's default profile on first sign-in.

    Returns 201 when the profile was created and 200 when it already existed.
    """
    profile, created = await services.provisioner.provision(caller)
    if created:
        response.status_code = status.HTTP_201_CREATED

    endpoints = await services.store.list_endpoints(profile.user_id)
    return UserProfileResponse(
        id=profile.user_id,
        email=profile.email,
        name=profile.name,
        role=profile.role,
        must_change_password=profile.must_change_password,
        endpoint_count=len(endpoints),
        created_at=profile.created_at,
        updated_at=profile.updated_at,
        updated_by=profile.updated_by,
    )
