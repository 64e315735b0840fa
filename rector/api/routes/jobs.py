import logging

from fastapi import APIRouter, Depends, HTTPException, status

from rector.api.deps import get_owner_id, get_store
from rector.api.models import JobStatusResponse
from rector.storage.status_repo import StatusStore

router = APIRouter()
logger = logging.getLogger("rector.api.routes.jobs")

_JOB_NOT_FOUND_MSG = "Job not found."


@router.get("/{job_id}", response_model=JobStatusResponse)
async def get_job_status(  # noqa: B008
  job_id: str,
  owner_id: str = Depends(get_owner_id),  # noqa: B008
  store: StatusStore = Depends(get_store),  # noqa: B008
) -> JobStatusResponse:
  """Fetch the persisted status of a compilation job."""
  record = await store.get_job(job_id)
  # Other owners' jobs are indistinguishable from missing ones.
  if record is None or record.owner_id != owner_id:
    raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=_JOB_NOT_FOUND_MSG)

  return JobStatusResponse(
    job_id=record.job_id,
    document_id=record.document_id,
    status=record.status,
    attempt_count=record.attempt_count,
    artifact_ref=record.artifact_ref,
    failure_reason=record.failure_reason,
    message=record.failure_message,
    created_at=record.created_at,
    completed_at=record.completed_at,
  )
