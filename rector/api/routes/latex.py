import logging
import time

from fastapi import APIRouter, Depends, HTTPException, status
from fastapi.responses import Response

from rector.api.deps import get_compiler, get_owner_id
from rector.api.models import LatexRequest, LatexStatusResponse, LatexValidationResponse
from rector.pipeline.errors import ToolchainMissingError
from rector.rendering.compiler import DocumentCompiler, validate_markup
from rector.utils.ids import file_base_name, generate_job_id

router = APIRouter()
logger = logging.getLogger("rector.api.routes.latex")

_CONTENT_REQUIRED_MSG = "LaTeX content is required"
_VALID_MSG = "LaTeX content is valid"
_INSTALLED_MSG = "pdflatex is available and ready to use"
_NOT_INSTALLED_MSG = "pdflatex is not installed. Please install MacTeX or TeX Live."


def _require_valid_markup(request: LatexRequest) -> str:
  if not request.latex_content:
    raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=_CONTENT_REQUIRED_MSG)
  reason = validate_markup(request.latex_content)
  if reason is not None:
    raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=reason)
  return request.latex_content


@router.post("/convert", response_class=Response)
async def convert_latex(  # noqa: B008
  request: LatexRequest,
  owner_id: str = Depends(get_owner_id),  # noqa: B008
  compiler: DocumentCompiler = Depends(get_compiler),  # noqa: B008
) -> Response:
  """Compile caller-supplied LaTeX once and return the PDF as a download."""
  started = time.perf_counter()
  markup = _require_valid_markup(request)
  base_name = file_base_name(request.file_name)
  logger.info("LaTeX conversion requested owner=%s file=%s length=%s", owner_id, base_name, len(markup))

  try:
    result = await compiler.compile(markup, generate_job_id(), base_name=base_name)
  except ToolchainMissingError as exc:
    raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=str(exc)) from exc

  if not result.success or result.pdf_bytes is None:
    # No correction loop here; the caller gets the compiler's own excerpt.
    raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail=result.error_excerpt)

  elapsed_ms = int((time.perf_counter() - started) * 1000)
  logger.info("LaTeX conversion completed owner=%s file=%s size=%s elapsed_ms=%s", owner_id, base_name, len(result.pdf_bytes), elapsed_ms)
  headers = {"Content-Disposition": f'attachment; filename="{base_name}.pdf"', "X-Processing-Time": str(elapsed_ms)}
  return Response(content=result.pdf_bytes, media_type="application/pdf", headers=headers)


@router.post("/validate", response_model=LatexValidationResponse)
async def validate_latex(  # noqa: B008
  request: LatexRequest,
  owner_id: str = Depends(get_owner_id),  # noqa: B008
) -> LatexValidationResponse:
  """Check the document skeleton without compiling."""
  if not request.latex_content:
    raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=_CONTENT_REQUIRED_MSG)
  reason = validate_markup(request.latex_content)
  return LatexValidationResponse(valid=reason is None, message=reason or _VALID_MSG)


@router.get("/status", response_model=LatexStatusResponse)
async def latex_status(  # noqa: B008
  owner_id: str = Depends(get_owner_id),  # noqa: B008
  compiler: DocumentCompiler = Depends(get_compiler),  # noqa: B008
) -> LatexStatusResponse:
  installed = compiler.is_available()
  return LatexStatusResponse(installed=installed, message=_INSTALLED_MSG if installed else _NOT_INSTALLED_MSG)
