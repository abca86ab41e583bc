from datetime import date
from enum import Enum
from typing import Dict, Generic, List, Optional, TypeVar

from pydantic import BaseModel


class AuditStatus(str, Enum):
    Scheduled = "Scheduled"
    InProgress = "InProgress"
    Review = "Review"
    Closed = "Closed"

    @classmethod
    def coerce(cls, value) -> "AuditStatus":
        """Map both status vocabularies onto the canonical lifecycle."""
        if isinstance(value, cls):
            return value
        raw = str(value or "").strip()
        for member in cls:
            if member.value == raw:
                return member
        key = raw.lower().replace(" ", "_")
        legacy = {
            "planned": cls.Scheduled,
            "scheduled": cls.Scheduled,
            "in_progress": cls.InProgress,
            "inprogress": cls.InProgress,
            "completed": cls.Review,
            "review": cls.Review,
            "archived": cls.Closed,
            "closed": cls.Closed,
        }
        if key not in legacy:
            raise ValueError(f"Unknown audit status: {value!r}")
        return legacy[key]


class Outcome(str, Enum):
    compliant = "compliant"
    non_compliant = "non_compliant"
    not_applicable = "not_applicable"
    pending = "pending"


class Severity(str, Enum):
    minor = "minor"
    major = "major"
    critical = "critical"


class NCStatus(str, Enum):
    open = "open"
    in_progress = "in_progress"
    closed = "closed"
    on_hold = "on_hold"


class CAStatus(str, Enum):
    pending = "pending"
    in_progress = "in_progress"
    completed = "completed"
    overdue = "overdue"
    cancelled = "cancelled"


# --- API helpers ---
class ErrorResponse(BaseModel):
    detail: str


class ValidationErrorResponse(BaseModel):
    detail: str
    errors: Dict[str, str]


T = TypeVar("T")


class Envelope(BaseModel, Generic[T]):
    items: List[T]
    total: int
    limit: int
    offset: int


# --- Organizations ---
class OrganizationCreate(BaseModel):
    id: str
    name: str
    slug: str
    vat_number: Optional[str] = None
    model_config = {"json_schema_extra": {"examples": [{"id": "acme", "name": "Acme S.r.l.", "slug": "acme", "vat_number": "IT01234567890"}]}}


class OrganizationUpdate(BaseModel):
    name: str
    slug: str
    vat_number: Optional[str] = None
    model_config = {"json_schema_extra": {"examples": [{"name": "Acme S.p.A.", "slug": "acme-spa", "vat_number": ""}]}}


class Organization(BaseModel):
    id: str
    name: str
    vat_number: Optional[str] = None
    slug: str
    created_at: str
    updated_at: str


class ProfileLink(BaseModel):
    org_id: Optional[str] = None
    email: Optional[str] = None


class Profile(BaseModel):
    id: str
    email: Optional[str] = None
    org_id: Optional[str] = None
    created_at: str


# --- Templates ---
class TemplateCreate(BaseModel):
    title: str
    description: Optional[str] = None
    model_config = {"json_schema_extra": {"examples": [{"title": "Fire safety walkthrough", "description": "Quarterly site inspection"}]}}


class QuestionCreate(BaseModel):
    question: str
    model_config = {"json_schema_extra": {"examples": [{"question": "Fire extinguishers present?"}]}}


class TemplateQuestion(BaseModel):
    id: str
    template_id: str
    question: str
    sort_order: int
    created_at: str


class ChecklistTemplate(BaseModel):
    id: str
    title: str
    description: Optional[str] = None
    created_at: str
    updated_at: str
    questions: List[TemplateQuestion] = []


# --- Audits ---
class AuditCreate(BaseModel):
    title: str
    scheduled_date: date
    template_id: str
    model_config = {"json_schema_extra": {"examples": [{"title": "Internal audit Q1", "scheduled_date": "2026-01-15", "template_id": "3f0c..."}]}}


class AuditCreated(BaseModel):
    id: str


class ChecklistItem(BaseModel):
    id: str
    audit_id: str
    checklist_id: Optional[str] = None
    question: str
    outcome: Outcome
    notes: Optional[str] = None
    evidence_url: Optional[str] = None
    sort_order: int
    created_at: str
    updated_at: str


class ChecklistItemUpdate(BaseModel):
    outcome: Optional[Outcome] = None
    notes: Optional[str] = None
    evidence_url: Optional[str] = None
    model_config = {"json_schema_extra": {"examples": [{"outcome": "non_compliant", "notes": "Extinguisher missing in hall B"}]}}


class Checklist(BaseModel):
    id: str
    title: str
    template_id: Optional[str] = None
    items: List[ChecklistItem] = []


class ChecklistStats(BaseModel):
    total: int
    compliant: int
    non_compliant: int
    not_applicable: int
    pending: int
    completed: int
    progress_percentage: int
    compliance_percentage: int


class Audit(BaseModel):
    id: str
    title: str
    status: AuditStatus
    scheduled_date: Optional[date] = None
    template_id: Optional[str] = None
    created_at: str
    updated_at: str


class AuditDetail(Audit):
    checklists: List[Checklist] = []
    stats: ChecklistStats


class CompletionValidation(BaseModel):
    is_valid: bool
    errors: List[str]
    pending_items: int
    non_compliant_without_nc: int


class AuditSummary(BaseModel):
    total_items: int
    compliant: int
    non_compliant: int
    not_applicable: int
    pending: int
    compliance_percentage: int
    nonconformities_count: int
    open_nonconformities: int
    completed_actions: int
    pending_actions: int


class AuditTrailEntry(BaseModel):
    id: str
    audit_id: str
    old_status: Optional[str] = None
    new_status: str
    changed_by: Optional[str] = None
    changed_at: str


class AuditTrail(BaseModel):
    audit_id: str
    entries: List[AuditTrailEntry]
    total_count: int


class EvidenceItem(BaseModel):
    checklist_item_id: str
    question: str
    outcome: Outcome
    evidence_url: str
    uploaded_at: Optional[str] = None


class EvidencePresignRequest(BaseModel):
    filename: str
    content_type: Optional[str] = None
    size: Optional[int] = None


class EvidencePresignResponse(BaseModel):
    upload_url: str
    object_key: str
    public_url: str
    headers: Dict[str, str] = {}


# --- Non-conformities ---
class NonconformityCreate(BaseModel):
    audit_id: str
    checklist_item_id: str
    title: str
    description: Optional[str] = None
    severity: Severity = Severity.major
    model_config = {"json_schema_extra": {"examples": [{
        "audit_id": "9b1d...",
        "checklist_item_id": "c2a4...",
        "title": "Blocked emergency exit",
        "description": "Pallets stored in front of exit 3",
        "severity": "major",
    }]}}


class NonconformityUpdate(BaseModel):
    title: Optional[str] = None
    description: Optional[str] = None
    severity: Optional[Severity] = None
    status: Optional[NCStatus] = None
    model_config = {"json_schema_extra": {"examples": [{"status": "in_progress"}]}}


class Nonconformity(BaseModel):
    id: str
    audit_id: str
    checklist_item_id: str
    title: str
    description: Optional[str] = None
    severity: Severity
    status: NCStatus
    created_at: str
    updated_at: str
    closed_at: Optional[str] = None


class NCAnalysis(BaseModel):
    available: bool
    root_cause_analysis: Optional[str] = None
    suggested_action_plan: Optional[str] = None


# --- Corrective actions ---
class CorrectiveActionCreate(BaseModel):
    nonconformity_id: str
    description: str
    root_cause: Optional[str] = None
    action_plan: Optional[str] = None
    responsible_person_name: Optional[str] = None
    responsible_person_email: Optional[str] = None
    target_completion_date: Optional[date] = None
    model_config = {"json_schema_extra": {"examples": [{
        "nonconformity_id": "5e7f...",
        "description": "Clear and mark exit routes",
        "responsible_person_name": "Maria Rossi",
        "responsible_person_email": "maria.rossi@example.com",
        "target_completion_date": "2026-02-28",
    }]}}


class CorrectiveActionUpdate(BaseModel):
    description: Optional[str] = None
    root_cause: Optional[str] = None
    action_plan: Optional[str] = None
    responsible_person_name: Optional[str] = None
    responsible_person_email: Optional[str] = None
    target_completion_date: Optional[date] = None
    status: Optional[CAStatus] = None


class CorrectiveAction(BaseModel):
    id: str
    nonconformity_id: str
    description: str
    root_cause: Optional[str] = None
    action_plan: Optional[str] = None
    responsible_person_name: Optional[str] = None
    responsible_person_email: Optional[str] = None
    target_completion_date: Optional[date] = None
    status: CAStatus
    completed_at: Optional[str] = None
    created_at: str
    updated_at: str


# --- Setup (admin) ---
class SetupRequest(BaseModel):
    run_migrations: Optional[bool] = True
    verify_object_store: Optional[bool] = True
