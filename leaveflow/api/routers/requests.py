"""Leave/outpass request API endpoints."""

import logging
from typing import List, Optional
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Query, status

from leaveflow.api.deps import get_current_identity, get_workflow_service
from leaveflow.api.schemas.common import ErrorResponse, PaginatedResponse, PaginationParams
from leaveflow.api.schemas.requests import (
    ApproveAction,
    RejectAction,
    RequestCreate,
    RequestHistoryResponse,
    RequestResponse,
    RequestStatistics,
)
from leaveflow.core.rbac import Role, require_approver, require_role
from leaveflow.core.workflow import Forbidden, InvalidTransition, NotFound, ValidationError, WorkflowError
from leaveflow.core.workflow.service import WorkflowService
from leaveflow.db.models import Identity

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/requests", tags=["requests"])

_STATUS_CODES = {
    ValidationError: status.HTTP_400_BAD_REQUEST,
    Forbidden: status.HTTP_403_FORBIDDEN,
    NotFound: status.HTTP_404_NOT_FOUND,
    InvalidTransition: status.HTTP_409_CONFLICT,
}


def _http_error(exc: WorkflowError) -> HTTPException:
    """Translate a workflow error into an HTTP error."""
    body = ErrorResponse(
        error=exc.message,
        code=exc.code,
        errors=getattr(exc, "errors", []),
    )
    return HTTPException(
        status_code=_STATUS_CODES.get(type(exc), status.HTTP_400_BAD_REQUEST),
        detail=body.model_dump(),
    )


@router.post("", response_model=RequestResponse, status_code=status.HTTP_201_CREATED)
@require_role(Role.STUDENT)
async def submit_request(
    payload: RequestCreate,
    current_identity: Identity = Depends(get_current_identity),
    service: WorkflowService = Depends(get_workflow_service),
):
    """Submit a new leave or outpass application."""
    try:
        request = service.submit_request(
            submitter_id=current_identity.id,
            request_type=payload.request_type,
            schedule=payload.schedule,
            reason=payload.reason,
            address=payload.address,
            attendance=payload.attendance_percent,
            score=payload.last_semester_score,
            approver_emails=payload.approver_emails,
        )
    except WorkflowError as e:
        service.db.rollback()
        raise _http_error(e)

    return RequestResponse.model_validate(request)


@router.get("", response_model=PaginatedResponse[RequestResponse])
async def list_requests(
    pagination: PaginationParams = Depends(),
    request_status: Optional[str] = Query(None, alias="status"),
    request_type: Optional[str] = None,
    current_identity: Identity = Depends(get_current_identity),
    service: WorkflowService = Depends(get_workflow_service),
):
    """
    List requests for the current identity.

    Students get their own requests, newest first. Approvers get the pending
    requests waiting at their level, oldest first.
    """
    if current_identity.role == Role.STUDENT.value:
        total = service.count_requests_for_submitter(current_identity.id, status=request_status)
        requests = service.get_requests_for_submitter(
            current_identity.id,
            status=request_status,
            limit=pagination.limit,
            offset=pagination.offset,
        )
    else:
        total = service.count_requests_for_role(current_identity.role, request_type=request_type)
        requests = service.get_requests_for_role(
            current_identity.role,
            request_type=request_type,
            limit=pagination.limit,
            offset=pagination.offset,
        )

    return PaginatedResponse[RequestResponse].create(
        items=[RequestResponse.model_validate(r) for r in requests],
        total=total,
        page=pagination.page,
        per_page=pagination.per_page,
    )


@router.get("/stats", response_model=RequestStatistics)
@require_approver
async def request_statistics(
    current_identity: Identity = Depends(get_current_identity),
    service: WorkflowService = Depends(get_workflow_service),
):
    """Dashboard counts for the current approver."""
    return RequestStatistics(**service.get_statistics(current_identity.role))


@router.get("/{request_id}", response_model=RequestResponse)
async def get_request(
    request_id: UUID,
    current_identity: Identity = Depends(get_current_identity),
    service: WorkflowService = Depends(get_workflow_service),
):
    """Get a specific request."""
    try:
        request = service.get_visible_request(request_id, current_identity.id)
    except WorkflowError as e:
        raise _http_error(e)

    return RequestResponse.model_validate(request)


@router.get("/{request_id}/history", response_model=List[RequestHistoryResponse])
async def get_request_history(
    request_id: UUID,
    current_identity: Identity = Depends(get_current_identity),
    service: WorkflowService = Depends(get_workflow_service),
):
    """Get the transition history of a request."""
    try:
        service.get_visible_request(request_id, current_identity.id)
        history = service.get_history(request_id)
    except WorkflowError as e:
        raise _http_error(e)

    return [RequestHistoryResponse.model_validate(h) for h in history]


@router.post("/{request_id}/approve", response_model=RequestResponse)
@require_approver
async def approve_request(
    request_id: UUID,
    action: ApproveAction,
    current_identity: Identity = Depends(get_current_identity),
    service: WorkflowService = Depends(get_workflow_service),
):
    """Approve a request at the current identity's level."""
    try:
        request = service.decide(
            request_id,
            actor_id=current_identity.id,
            actor_role=current_identity.role,
            decision="approve",
            comment=action.comment,
        )
    except WorkflowError as e:
        service.db.rollback()
        raise _http_error(e)

    return RequestResponse.model_validate(request)


@router.post("/{request_id}/reject", response_model=RequestResponse)
@require_approver
async def reject_request(
    request_id: UUID,
    action: RejectAction,
    current_identity: Identity = Depends(get_current_identity),
    service: WorkflowService = Depends(get_workflow_service),
):
    """Reject a request at the current identity's level."""
    try:
        request = service.decide(
            request_id,
            actor_id=current_identity.id,
            actor_role=current_identity.role,
            decision="reject",
            comment=action.reason,
        )
    except WorkflowError as e:
        service.db.rollback()
        raise _http_error(e)

    return RequestResponse.model_validate(request)


@router.post("/{request_id}/cancel", response_model=RequestResponse)
@require_role(Role.STUDENT)
async def cancel_request(
    request_id: UUID,
    current_identity: Identity = Depends(get_current_identity),
    service: WorkflowService = Depends(get_workflow_service),
):
    """Cancel a pending request owned by the current student."""
    try:
        request = service.cancel(request_id, current_identity.id)
    except WorkflowError as e:
        service.db.rollback()
        raise _http_error(e)

    return RequestResponse.model_validate(request)
