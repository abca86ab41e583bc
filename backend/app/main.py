import os
import re
import subprocess
import time
import uuid
from contextlib import asynccontextmanager
from typing import List, Optional

from botocore.exceptions import BotoCoreError, ClientError
from fastapi import APIRouter, Depends, FastAPI, File, HTTPException, Request, Response, UploadFile
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import FileResponse, JSONResponse
from prometheus_client import CONTENT_TYPE_LATEST, Counter, Histogram, generate_latest
from sqlalchemy.exc import SQLAlchemyError

from . import checklist as checklist_ops
from . import corrective_actions as ca_ops
from . import lifecycle
from . import nonconformities as nc_ops
from . import organizations as org_ops
from . import snapshot
from . import templates as template_ops
from .ai_model import NCAnalysisClient
from .auth import role_required
from .db import ROOT_DIR, engine, init_db
from .errors import AppError, NotFound
from .logging_config import log_event
from .schemas import (
    Audit,
    AuditCreate,
    AuditCreated,
    AuditDetail,
    AuditStatus,
    AuditSummary,
    AuditTrail,
    ChecklistItem,
    ChecklistItemUpdate,
    ChecklistTemplate,
    CompletionValidation,
    CorrectiveAction,
    CorrectiveActionCreate,
    CorrectiveActionUpdate,
    Envelope,
    ErrorResponse,
    EvidenceItem,
    EvidencePresignRequest,
    EvidencePresignResponse,
    NCAnalysis,
    NCStatus,
    Nonconformity,
    NonconformityCreate,
    NonconformityUpdate,
    Organization,
    OrganizationCreate,
    OrganizationUpdate,
    Outcome,
    Profile,
    ProfileLink,
    QuestionCreate,
    SetupRequest,
    TemplateCreate,
    TemplateQuestion,
    ValidationErrorResponse,
)
from .storage import LocalEvidenceStore, _get_s3_client, get_evidence_store
from .tenancy import TenantContext, resolve_tenant


# --- App ---
@asynccontextmanager
async def lifespan(app: FastAPI):
    init_db()
    client, bucket = _get_s3_client()
    if client and bucket:
        try:
            buckets = [b.get("Name") for b in client.list_buckets().get("Buckets", [])]
            if bucket not in buckets:
                client.create_bucket(Bucket=bucket)
        except (BotoCoreError, ClientError) as e:
            log_event("object_store_unavailable", level="warning", bucket=bucket, error=str(e))
    yield


openapi_tags = [
    {"name": "Health", "description": "Service status and metrics"},
    {"name": "Organizations", "description": "Tenant provisioning and settings"},
    {"name": "Templates", "description": "Reusable checklist templates"},
    {"name": "Audits", "description": "Audit lifecycle, validation and trail"},
    {"name": "Checklist", "description": "Checklist outcomes and evidence"},
    {"name": "Nonconformities", "description": "Findings raised from non-compliant items"},
    {"name": "Corrective Actions", "description": "Remediation plans for non-conformities"},
    {"name": "Setup", "description": "Admin bootstrap utilities"},
]

app = FastAPI(
    title="ISO 9001 Audit API",
    version="0.1.0",
    description="Multi-tenant ISO 9001 audit management: templates, checklists, non-conformities, corrective actions and the audit lifecycle.",
    lifespan=lifespan,
    openapi_tags=openapi_tags,
)
app.add_middleware(
    CORSMiddleware,
    allow_origins=(os.getenv("CORS_ALLOWED_ORIGINS", "*").split(",") if os.getenv("CORS_ALLOWED_ORIGINS") else ["*"]),
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

ERRORS = {
    401: {"model": ErrorResponse},
    403: {"model": ErrorResponse},
    404: {"model": ErrorResponse},
    409: {"model": ErrorResponse},
    422: {"model": ValidationErrorResponse},
}


# --- Error mapping ---
@app.exception_handler(AppError)
async def app_error_handler(request: Request, exc: AppError):
    if exc.status_code >= 500:
        log_event(
            "dependency_failure",
            level="error",
            request_id=getattr(request.state, "request_id", None),
            path=request.url.path,
            detail=exc.detail,
        )
    return JSONResponse(status_code=exc.status_code, content=exc.to_body())


@app.exception_handler(SQLAlchemyError)
async def db_error_handler(request: Request, exc: SQLAlchemyError):
    log_event(
        "database_error",
        level="error",
        request_id=getattr(request.state, "request_id", None),
        path=request.url.path,
        error=str(exc),
    )
    return JSONResponse(status_code=503, content={"detail": "Database unavailable"})


@app.exception_handler(RequestValidationError)
async def request_validation_handler(request: Request, exc: RequestValidationError):
    errors = {}
    for err in exc.errors():
        loc = [str(p) for p in err.get("loc", ()) if p not in ("body", "query", "path")]
        errors[".".join(loc) or "body"] = err.get("msg", "invalid")
    return JSONResponse(status_code=422, content={"detail": "Validation failed", "errors": errors})


# --- Request ID + metrics middleware ---
REQUEST_COUNT = Counter(
    "http_requests_total",
    "Total HTTP requests",
    labelnames=("method", "status"),
)
ERROR_COUNT = Counter(
    "http_requests_errors_total",
    "Total HTTP error responses",
    labelnames=("method", "status"),
)
# duration histogram (seconds) with per-route label
REQUEST_DURATION = Histogram(
    "http_request_duration_seconds",
    "HTTP request duration in seconds",
    labelnames=("method", "route", "status"),
    buckets=(0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0),
)


def _observe(request: Request, status: int, start: float) -> float:
    duration_ms = (time.perf_counter() - start) * 1000.0
    REQUEST_COUNT.labels(method=request.method, status=str(status)).inc()
    if status >= 400:
        ERROR_COUNT.labels(method=request.method, status=str(status)).inc()
    route_label = getattr(request.scope.get("route"), "path", request.url.path)
    REQUEST_DURATION.labels(method=request.method, route=route_label, status=str(status)).observe(duration_ms / 1000.0)
    return round(duration_ms, 2)


@app.middleware("http")
async def add_request_id_and_collect_metrics(request: Request, call_next):
    req_id = request.headers.get("X-Request-ID") or uuid.uuid4().hex
    request.state.request_id = req_id
    start = time.perf_counter()
    fields = {
        "request_id": req_id,
        "method": request.method,
        "path": request.url.path,
        "query": request.url.query,
        "client_ip": getattr(request.client, "host", None),
        "user_agent": request.headers.get("user-agent"),
    }
    try:
        response: Response = await call_next(request)
    except Exception as exc:
        duration_ms = _observe(request, 500, start)
        log_event("request_error", level="error", status=500, duration_ms=duration_ms, error=str(exc), **fields)
        raise
    response.headers["X-Request-ID"] = req_id
    duration_ms = _observe(request, response.status_code, start)
    log_event("request", status=response.status_code, duration_ms=duration_ms, **fields)
    return response


# Security headers
@app.middleware("http")
async def security_headers(request: Request, call_next):
    response: Response = await call_next(request)
    if os.getenv("ENV", "dev").lower() == "prod":
        response.headers["Strict-Transport-Security"] = "max-age=31536000; includeSubDomains"
    response.headers["X-Content-Type-Options"] = "nosniff"
    response.headers["Content-Security-Policy"] = "default-src 'none'; frame-ancestors 'none'"
    return response


def _tenant(conn, auth, request: Request) -> TenantContext:
    return resolve_tenant(conn, auth, getattr(request.state, "request_id", None))


def _check_page(limit: int, offset: int) -> None:
    if limit < 1 or limit > 200:
        raise HTTPException(status_code=400, detail="limit must be between 1 and 200")
    if offset < 0:
        raise HTTPException(status_code=400, detail="offset must be >= 0")


@app.get("/health", tags=["Health"])
def health():
    return {"status": "ok"}


@app.get("/metrics", tags=["Health"])
def metrics():
    return Response(generate_latest(), media_type=CONTENT_TYPE_LATEST)


# --- Provisioning (admin) ---
router_v1 = APIRouter(prefix="/v1")


@router_v1.post("/orgs", response_model=Organization, tags=["Organizations"], responses=ERRORS, summary="Create an organization")
def v1_create_org(payload: OrganizationCreate, _auth=Depends(role_required("admin"))):
    with engine.begin() as conn:
        row = org_ops.create_organization(conn, payload.id, payload.name, payload.slug, payload.vat_number)
    return Organization(**row)


@router_v1.get("/orgs", response_model=Envelope[Organization], tags=["Organizations"], summary="List organizations")
def v1_list_orgs(limit: int = 50, offset: int = 0, _auth=Depends(role_required("admin"))):
    _check_page(limit, offset)
    with engine.connect() as conn:
        rows, total = org_ops.list_organizations(conn, limit, offset)
    return Envelope[Organization](items=[Organization(**r) for r in rows], total=total, limit=limit, offset=offset)


@router_v1.put("/profiles/{user_id}", response_model=Profile, tags=["Organizations"], responses=ERRORS, summary="Link a user to an organization")
def v1_link_profile(user_id: str, payload: ProfileLink, _auth=Depends(role_required("admin"))):
    with engine.begin() as conn:
        row = org_ops.link_profile(conn, user_id, payload.org_id, payload.email)
    return Profile(**row)


app.include_router(router_v1)


@app.post("/setup", tags=["Setup"], responses=ERRORS)
def setup(request: Request, payload: Optional[SetupRequest] = None, _auth=Depends(role_required("admin"))):
    actions = []
    payload = payload or SetupRequest()
    if payload.run_migrations:
        try:
            subprocess.run(
                ["alembic", "-c", str(ROOT_DIR / "backend" / "alembic.ini"), "upgrade", "head"],
                check=True, cwd=str(ROOT_DIR), env=os.environ.copy(),
            )
            actions.append("migrated")
        except (OSError, subprocess.CalledProcessError) as e:
            actions.append(f"migrate_failed:{e}")
    default_org = os.getenv("DEFAULT_ORG_ID")
    if default_org:
        with engine.begin() as conn:
            slug = re.sub(r"[^a-z0-9-]+", "-", default_org.lower()).strip("-")
            org_ops.create_organization(conn, default_org, default_org, slug)
            actions.append(f"ensured_org:{default_org}")
            dev_user = os.getenv("DEV_USER_ID")
            if dev_user:
                org_ops.link_profile(conn, dev_user, default_org)
                actions.append(f"linked_profile:{dev_user}")
    if payload.verify_object_store:
        client, bucket = _get_s3_client()
        if client and bucket:
            try:
                client.head_bucket(Bucket=bucket)
                actions.append("object_store_ok")
            except (BotoCoreError, ClientError) as e:
                actions.append(f"object_store_failed:{e}")
        else:
            actions.append("object_store_not_configured")
    log_event("setup", actions=actions, request_id=getattr(request.state, "request_id", None))
    return {"ok": True, "actions": actions}


# --- Organization settings ---
@app.get("/organization", response_model=Organization, tags=["Organizations"], responses=ERRORS)
def get_organization(request: Request, _auth=Depends(role_required("viewer"))):
    with engine.connect() as conn:
        ctx = _tenant(conn, _auth, request)
        return Organization(**org_ops.get_organization(conn, ctx))


@app.patch("/organization", response_model=Organization, tags=["Organizations"], responses=ERRORS)
def update_organization(payload: OrganizationUpdate, request: Request, _auth=Depends(role_required("editor"))):
    with engine.begin() as conn:
        ctx = _tenant(conn, _auth, request)
        row = org_ops.update_organization(conn, ctx, payload.name, payload.slug, payload.vat_number)
    return Organization(**row)


# --- Templates ---
@app.post("/templates", response_model=ChecklistTemplate, status_code=201, tags=["Templates"], responses=ERRORS)
def create_template(payload: TemplateCreate, request: Request, _auth=Depends(role_required("editor"))):
    with engine.begin() as conn:
        ctx = _tenant(conn, _auth, request)
        row = template_ops.create_template(conn, ctx, payload.title, payload.description)
    return ChecklistTemplate(**row)


@app.get("/templates", response_model=List[ChecklistTemplate], tags=["Templates"], responses=ERRORS)
def list_templates(request: Request, response: Response, _auth=Depends(role_required("viewer"))):
    with engine.connect() as conn:
        ctx = _tenant(conn, _auth, request)
        rows = template_ops.list_templates(conn, ctx)
    response.headers["X-Total-Count"] = str(len(rows))
    return [ChecklistTemplate(**r) for r in rows]


@app.get("/templates/{template_id}", response_model=ChecklistTemplate, tags=["Templates"], responses=ERRORS)
def get_template(template_id: str, request: Request, _auth=Depends(role_required("viewer"))):
    with engine.connect() as conn:
        ctx = _tenant(conn, _auth, request)
        return ChecklistTemplate(**template_ops.get_template(conn, ctx, template_id))


@app.post("/templates/{template_id}/questions", response_model=TemplateQuestion, status_code=201, tags=["Templates"], responses=ERRORS)
def add_template_question(template_id: str, payload: QuestionCreate, request: Request, _auth=Depends(role_required("editor"))):
    with engine.begin() as conn:
        ctx = _tenant(conn, _auth, request)
        row = template_ops.add_question(conn, ctx, template_id, payload.question)
    return TemplateQuestion(**row)


@app.delete("/templates/{template_id}/questions/{question_id}", status_code=204, tags=["Templates"], responses=ERRORS)
def delete_template_question(template_id: str, question_id: str, request: Request, _auth=Depends(role_required("editor"))):
    with engine.begin() as conn:
        ctx = _tenant(conn, _auth, request)
        template_ops.soft_delete_question(conn, ctx, question_id, template_id)
    return Response(status_code=204)


# --- Audits ---
@app.post("/audits", response_model=AuditCreated, status_code=201, tags=["Audits"], responses=ERRORS)
def create_audit(payload: AuditCreate, request: Request, _auth=Depends(role_required("editor"))):
    with engine.begin() as conn:
        ctx = _tenant(conn, _auth, request)
        audit_id = snapshot.create_audit_from_template(conn, ctx, payload.title, payload.scheduled_date, payload.template_id)
    return AuditCreated(id=audit_id)


@app.get("/audits", response_model=List[Audit], tags=["Audits"], responses=ERRORS)
def list_audits(request: Request, response: Response, status: Optional[AuditStatus] = None, limit: int = 50, offset: int = 0, _auth=Depends(role_required("viewer"))):
    _check_page(limit, offset)
    with engine.connect() as conn:
        ctx = _tenant(conn, _auth, request)
        rows, total = snapshot.list_audits(conn, ctx, status, limit, offset)
    response.headers["X-Total-Count"] = str(total)
    return [Audit(**r) for r in rows]


@app.get("/audits/{audit_id}", response_model=AuditDetail, tags=["Audits"], responses=ERRORS)
def get_audit(audit_id: str, request: Request, _auth=Depends(role_required("viewer"))):
    with engine.connect() as conn:
        ctx = _tenant(conn, _auth, request)
        return AuditDetail(**snapshot.get_audit(conn, ctx, audit_id))


@app.get("/audits/{audit_id}/validation", response_model=CompletionValidation, tags=["Audits"], responses=ERRORS)
def validate_audit(audit_id: str, request: Request, _auth=Depends(role_required("viewer"))):
    with engine.connect() as conn:
        ctx = _tenant(conn, _auth, request)
        result = lifecycle.validate_audit_completion(conn, ctx, audit_id)
    return CompletionValidation(**result.as_dict())


@app.post("/audits/{audit_id}/start", response_model=Audit, tags=["Audits"], responses=ERRORS)
def start_audit(audit_id: str, request: Request, _auth=Depends(role_required("editor"))):
    with engine.begin() as conn:
        ctx = _tenant(conn, _auth, request)
        row = lifecycle.start_audit(conn, ctx, audit_id)
    return Audit(**row)


@app.post("/audits/{audit_id}/complete", response_model=Audit, tags=["Audits"], responses=ERRORS)
def complete_audit(audit_id: str, request: Request, _auth=Depends(role_required("editor"))):
    with engine.begin() as conn:
        ctx = _tenant(conn, _auth, request)
        row = lifecycle.complete_audit(conn, ctx, audit_id)
    return Audit(**row)


@app.post("/audits/{audit_id}/close", response_model=Audit, tags=["Audits"], responses=ERRORS)
def close_audit(audit_id: str, request: Request, _auth=Depends(role_required("editor"))):
    with engine.begin() as conn:
        ctx = _tenant(conn, _auth, request)
        row = lifecycle.close_audit(conn, ctx, audit_id)
    return Audit(**row)


@app.get("/audits/{audit_id}/summary", response_model=AuditSummary, tags=["Audits"], responses=ERRORS)
def audit_summary(audit_id: str, request: Request, _auth=Depends(role_required("viewer"))):
    with engine.connect() as conn:
        ctx = _tenant(conn, _auth, request)
        return AuditSummary(**lifecycle.get_audit_summary(conn, ctx, audit_id))


@app.get("/audits/{audit_id}/trail", response_model=AuditTrail, tags=["Audits"], responses=ERRORS)
def audit_trail(audit_id: str, request: Request, _auth=Depends(role_required("viewer"))):
    with engine.connect() as conn:
        ctx = _tenant(conn, _auth, request)
        entries = lifecycle.get_audit_trail(conn, ctx, audit_id)
    return AuditTrail(audit_id=audit_id, entries=entries, total_count=len(entries))


@app.get("/audits/{audit_id}/evidence", response_model=List[EvidenceItem], tags=["Checklist"], responses=ERRORS)
def audit_evidence(audit_id: str, request: Request, outcome: Optional[Outcome] = None, _auth=Depends(role_required("viewer"))):
    with engine.connect() as conn:
        ctx = _tenant(conn, _auth, request)
        rows = checklist_ops.list_audit_evidence(conn, ctx, audit_id, outcome)
    return [EvidenceItem(**r) for r in rows]


# --- Checklist items ---
@app.patch("/checklist-items/{item_id}", response_model=ChecklistItem, tags=["Checklist"], responses=ERRORS)
def update_checklist_item(item_id: str, payload: ChecklistItemUpdate, request: Request, _auth=Depends(role_required("editor"))):
    with engine.begin() as conn:
        ctx = _tenant(conn, _auth, request)
        row = checklist_ops.update_item(conn, ctx, item_id, payload.outcome, payload.notes, payload.evidence_url)
    return ChecklistItem(**row)


@app.post(
    "/checklist-items/{item_id}/evidence",
    response_model=ChecklistItem,
    tags=["Checklist"],
    responses={**ERRORS, 413: {"model": ErrorResponse}, 503: {"model": ErrorResponse}},
    openapi_extra={
        "x-codeSamples": [
            {"lang": "cURL", "label": "curl (multipart)", "source": "curl -X POST '{{baseUrl}}/checklist-items/{{itemId}}/evidence' -H 'Authorization: Bearer {{token}}' -F 'file=@extinguisher.jpg;type=image/jpeg'"}
        ]
    },
)
def upload_evidence(item_id: str, request: Request, file: UploadFile = File(...), _auth=Depends(role_required("editor"))):
    max_mb = int(os.getenv("MAX_UPLOAD_MB", "25"))
    cl = request.headers.get("content-length")
    if cl and int(cl) > max_mb * 1024 * 1024:
        raise HTTPException(status_code=413, detail="Payload too large")
    data = file.file.read()
    store = get_evidence_store()
    with engine.begin() as conn:
        ctx = _tenant(conn, _auth, request)
        row = checklist_ops.attach_evidence(conn, ctx, item_id, store, file.filename, data, file.content_type)
    return ChecklistItem(**row)


@app.post("/checklist-items/{item_id}/evidence/presign", response_model=EvidencePresignResponse, tags=["Checklist"], responses=ERRORS)
def presign_evidence(item_id: str, payload: EvidencePresignRequest, request: Request, _auth=Depends(role_required("editor"))):
    store = get_evidence_store()
    with engine.connect() as conn:
        ctx = _tenant(conn, _auth, request)
        out = checklist_ops.presign_evidence(conn, ctx, item_id, store, payload.filename, payload.content_type, payload.size)
    return EvidencePresignResponse(**out)


@app.get("/evidence/{key:path}", tags=["Checklist"])
def download_evidence(key: str):
    store = get_evidence_store()
    if not isinstance(store, LocalEvidenceStore):
        raise NotFound("Evidence not found")
    path = store.resolve(key)
    if not path.is_file():
        raise NotFound("Evidence not found")
    return FileResponse(str(path), filename=path.name)


# --- Non-conformities ---
@app.post("/nonconformities", response_model=Nonconformity, status_code=201, tags=["Nonconformities"], responses=ERRORS)
def create_nonconformity(payload: NonconformityCreate, request: Request, _auth=Depends(role_required("editor"))):
    with engine.begin() as conn:
        ctx = _tenant(conn, _auth, request)
        row = nc_ops.create_nonconformity(
            conn, ctx, payload.audit_id, payload.checklist_item_id, payload.title, payload.description, payload.severity
        )
    return Nonconformity(**row)


@app.get("/nonconformities", response_model=List[Nonconformity], tags=["Nonconformities"], responses=ERRORS)
def list_nonconformities(request: Request, response: Response, audit_id: Optional[str] = None, status: Optional[NCStatus] = None, _auth=Depends(role_required("viewer"))):
    with engine.connect() as conn:
        ctx = _tenant(conn, _auth, request)
        rows = nc_ops.list_nonconformities(conn, ctx, audit_id, status)
    response.headers["X-Total-Count"] = str(len(rows))
    return [Nonconformity(**r) for r in rows]


@app.get("/nonconformities/{nc_id}", response_model=Nonconformity, tags=["Nonconformities"], responses=ERRORS)
def get_nonconformity(nc_id: str, request: Request, _auth=Depends(role_required("viewer"))):
    with engine.connect() as conn:
        ctx = _tenant(conn, _auth, request)
        return Nonconformity(**nc_ops.get_nonconformity(conn, ctx, nc_id))


@app.patch("/nonconformities/{nc_id}", response_model=Nonconformity, tags=["Nonconformities"], responses=ERRORS)
def update_nonconformity(nc_id: str, payload: NonconformityUpdate, request: Request, _auth=Depends(role_required("editor"))):
    with engine.begin() as conn:
        ctx = _tenant(conn, _auth, request)
        row = nc_ops.update_nonconformity(conn, ctx, nc_id, payload.title, payload.description, payload.severity, payload.status)
    return Nonconformity(**row)


@app.post("/nonconformities/{nc_id}/close", response_model=Nonconformity, tags=["Nonconformities"], responses=ERRORS)
def close_nonconformity(nc_id: str, request: Request, _auth=Depends(role_required("editor"))):
    with engine.begin() as conn:
        ctx = _tenant(conn, _auth, request)
        row = nc_ops.close_nonconformity(conn, ctx, nc_id)
    return Nonconformity(**row)


@app.post("/nonconformities/{nc_id}/analysis", response_model=NCAnalysis, tags=["Nonconformities"], responses=ERRORS)
def analyze_nonconformity(nc_id: str, request: Request, _auth=Depends(role_required("editor"))):
    with engine.connect() as conn:
        ctx = _tenant(conn, _auth, request)
        nc = nc_ops.get_nonconformity(conn, ctx, nc_id)
    # Engine call happens outside any transaction
    result = NCAnalysisClient().analyze(nc["title"], nc.get("description"), nc["severity"])
    if result is None:
        return NCAnalysis(available=False)
    return NCAnalysis(available=True, **result)


# --- Corrective actions ---
@app.post("/corrective-actions", response_model=CorrectiveAction, status_code=201, tags=["Corrective Actions"], responses=ERRORS)
def create_corrective_action(payload: CorrectiveActionCreate, request: Request, _auth=Depends(role_required("editor"))):
    with engine.begin() as conn:
        ctx = _tenant(conn, _auth, request)
        row = ca_ops.create_corrective_action(
            conn,
            ctx,
            payload.nonconformity_id,
            payload.description,
            root_cause=payload.root_cause,
            action_plan=payload.action_plan,
            responsible_person_name=payload.responsible_person_name,
            responsible_person_email=payload.responsible_person_email,
            target_completion_date=payload.target_completion_date,
        )
    return CorrectiveAction(**row)


@app.get("/corrective-actions", response_model=List[CorrectiveAction], tags=["Corrective Actions"], responses=ERRORS)
def list_corrective_actions(request: Request, response: Response, nonconformity_id: Optional[str] = None, audit_id: Optional[str] = None, _auth=Depends(role_required("viewer"))):
    with engine.connect() as conn:
        ctx = _tenant(conn, _auth, request)
        rows = ca_ops.list_corrective_actions(conn, ctx, nonconformity_id, audit_id)
    response.headers["X-Total-Count"] = str(len(rows))
    return [CorrectiveAction(**r) for r in rows]


@app.patch("/corrective-actions/{ca_id}", response_model=CorrectiveAction, tags=["Corrective Actions"], responses=ERRORS)
def update_corrective_action(ca_id: str, payload: CorrectiveActionUpdate, request: Request, _auth=Depends(role_required("editor"))):
    fields = payload.model_dump(exclude_unset=True, exclude_none=True)
    with engine.begin() as conn:
        ctx = _tenant(conn, _auth, request)
        row = ca_ops.update_corrective_action(conn, ctx, ca_id, **fields)
    return CorrectiveAction(**row)


@app.post("/corrective-actions/{ca_id}/complete", response_model=CorrectiveAction, tags=["Corrective Actions"], responses=ERRORS)
def complete_corrective_action(ca_id: str, request: Request, _auth=Depends(role_required("editor"))):
    with engine.begin() as conn:
        ctx = _tenant(conn, _auth, request)
        row = ca_ops.complete_corrective_action(conn, ctx, ca_id)
    return CorrectiveAction(**row)

