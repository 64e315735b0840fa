from __future__ import annotations

from fastapi import Depends, FastAPI, HTTPException
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware

from rector.api.routes import documents, events, jobs, latex
from rector.config import get_settings
from rector.core.exceptions import global_exception_handler, http_exception_handler, job_conflict_exception_handler, request_validation_exception_handler
from rector.core.lifespan import lifespan
from rector.core.middleware import RequestLoggingMiddleware, SecurityHeadersMiddleware
from rector.pipeline.errors import JobAlreadyActiveError
from rector.rendering.compiler import DocumentCompiler
from rector.services.pipeline import get_document_compiler

settings = get_settings()

app = FastAPI(lifespan=lifespan, docs_url=None, redoc_url=None, openapi_url=None if settings.environment == "production" else "/openapi.json")

app.add_middleware(CORSMiddleware, allow_origins=settings.allowed_origins, allow_credentials=True, allow_methods=["GET", "POST", "OPTIONS"], allow_headers=["content-type", "x-user-id"], expose_headers=["content-length", "content-disposition", "x-processing-time", "x-request-id"])


# Add exception handlers
app.add_exception_handler(Exception, global_exception_handler)
app.add_exception_handler(HTTPException, http_exception_handler)
app.add_exception_handler(JobAlreadyActiveError, job_conflict_exception_handler)
app.add_exception_handler(RequestValidationError, request_validation_exception_handler)

# Add middleware
app.add_middleware(RequestLoggingMiddleware)
app.add_middleware(SecurityHeadersMiddleware)


@app.get("/health", include_in_schema=False)
async def health_check(compiler: DocumentCompiler = Depends(get_document_compiler)) -> dict[str, str | bool]:  # noqa: B008
  """Return a simple health status plus toolchain availability."""
  return {"status": "ok", "version": "0.1.0", "pdflatex": compiler.is_available()}


app.include_router(documents.router, prefix="/v1/documents", tags=["documents"])
app.include_router(jobs.router, prefix="/v1/jobs", tags=["jobs"])
app.include_router(events.router, prefix="/v1/events", tags=["events"])
app.include_router(latex.router, prefix="/v1/latex", tags=["latex"])
