import logging

from fastapi import APIRouter, Depends, HTTPException, status

from rector.api.deps import get_owner_id, get_pipeline
from rector.api.models import GeneratePdfRequest, PdfJobAccepted
from rector.pipeline.orchestrator import PipelineOrchestrator

router = APIRouter()
logger = logging.getLogger("rector.api.routes.documents")


@router.post("/{document_id}/pdf", response_model=PdfJobAccepted, status_code=status.HTTP_202_ACCEPTED)
async def generate_pdf(  # noqa: B008
  document_id: str,
  request: GeneratePdfRequest,
  owner_id: str = Depends(get_owner_id),  # noqa: B008
  orchestrator: PipelineOrchestrator = Depends(get_pipeline),  # noqa: B008
) -> PdfJobAccepted:
  """Start background PDF generation; progress is pushed on the event stream."""
  if not request.document:
    raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Resume document is required.")

  # JobAlreadyActiveError is mapped to 409 by the app-level handler.
  job = await orchestrator.trigger(document_id, owner_id, request.document)
  return PdfJobAccepted(job_id=job.job_id, document_id=job.document_id, status=job.status)
