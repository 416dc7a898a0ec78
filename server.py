"""
CogniLab Web Server

FastAPI-based web server for the CogniLab laboratory information system.
"""

import asyncio
import sys
from datetime import date
from pathlib import Path
from typing import AsyncIterator, Optional

from fastapi import Depends, FastAPI, HTTPException, Query, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, StreamingResponse
from pydantic import BaseModel, EmailStr, Field

# Setup paths
project_root = Path(__file__).parent
if str(project_root) not in sys.path:
    sys.path.insert(0, str(project_root))

from cognilab.auth import (
    AuthenticatedUser,
    AuthError,
    get_auth_provider,
    get_current_user,
    get_current_user_optional,
    get_faculty_user,
)
from cognilab.auth.middleware import client_ip
from cognilab.db.store import use_mock_data
from cognilab.engines import AuditTrail, LabEngine, LabError, classify, get_engine
from cognilab.models import AuditAction, BillingStatus, ResultStatus


# Create FastAPI app
app = FastAPI(
    title="CogniLab",
    description="CogniLab - Laboratory Information System API",
    version="0.1.0",
)

# Add CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


def lab() -> LabEngine:
    """Dependency returning the shared lab engine."""
    return get_engine()


@app.exception_handler(LabError)
async def lab_error_handler(request: Request, exc: LabError):
    return JSONResponse(
        status_code=exc.status_code,
        content={"detail": exc.message, "errors": exc.details},
    )


def _not_found(what: str) -> HTTPException:
    return HTTPException(status_code=404, detail=f"{what} not found")


@app.get("/api/health")
async def health_check(user: Optional[AuthenticatedUser] = Depends(get_current_user_optional)):
    """Health check endpoint."""
    return {
        "status": "healthy",
        "mock_data": use_mock_data(),
        "signed_in_as": user.email if user else None,
    }


# =============================================================================
# AUTH ENDPOINTS
# =============================================================================

class LoginRequest(BaseModel):
    """Request model for user login."""
    email: EmailStr
    password: str


class AuthResponse(BaseModel):
    """Response model for auth endpoints."""
    access_token: str
    user: dict


@app.post("/api/auth/login", response_model=AuthResponse)
async def login(request: LoginRequest, http_request: Request, engine: LabEngine = Depends(lab)):
    """
    Log in an existing user.

    Returns access token and user profile on success.
    """
    try:
        session = get_auth_provider().sign_in_with_password(request.email, request.password)
    except AuthError as e:
        raise HTTPException(status_code=401, detail=str(e))

    user = AuthenticatedUser.from_session(session, ip_address=client_ip(http_request))
    engine.users.record_login(user.id)
    engine.audit.append(
        AuditAction.LOGIN,
        resource="CogniLab",
        resource_type="auth",
        description=f"{user.full_name} logged in",
        actor=user.as_actor(),
    )
    return AuthResponse(
        access_token=session.access_token,
        user=session.user.model_dump(mode="json"),
    )


@app.post("/api/auth/logout")
async def logout(user: AuthenticatedUser = Depends(get_current_user), engine: LabEngine = Depends(lab)):
    """Log out the current user."""
    get_auth_provider().sign_out(user.access_token)
    engine.audit.append(
        AuditAction.LOGOUT,
        resource="CogniLab",
        resource_type="auth",
        description=f"{user.full_name} logged out",
        actor=user.as_actor(),
    )
    return {"status": "logged_out"}


@app.get("/api/auth/me")
async def get_me(user: AuthenticatedUser = Depends(get_current_user), engine: LabEngine = Depends(lab)):
    """Get the current user's profile."""
    profile = engine.users.get(user.id)
    if profile is None:
        raise _not_found("User")
    return profile.model_dump(mode="json")


# =============================================================================
# PATIENT ENDPOINTS
# =============================================================================

class PatientRequest(BaseModel):
    """Patient intake form. Required fields are checked by the registry."""
    patient_id_no: Optional[str] = None
    last_name: Optional[str] = None
    first_name: Optional[str] = None
    middle_name: Optional[str] = None
    age: Optional[int] = None
    birthdate: Optional[date] = None
    sex: Optional[str] = None
    contact_no: Optional[str] = None
    address_house_no: Optional[str] = None
    address_street: Optional[str] = None
    address_barangay: Optional[str] = None
    municipality: Optional[str] = None
    province: Optional[str] = None
    medical_history: Optional[str] = None
    medications: Optional[str] = None
    allergy: Optional[str] = None


@app.get("/api/patients")
async def list_patients(
    search: Optional[str] = Query(None, description="Name or patient ID"),
    user: AuthenticatedUser = Depends(get_current_user),
    engine: LabEngine = Depends(lab),
):
    """List registered patients, newest first."""
    return [p.model_dump(mode="json") for p in engine.patients.list(search)]


@app.post("/api/patients", status_code=201)
async def register_patient(
    request: PatientRequest,
    user: AuthenticatedUser = Depends(get_current_user),
    engine: LabEngine = Depends(lab),
):
    """Register a patient and bill the consultation fee."""
    patient = engine.patients.register(request.model_dump(exclude_none=True), actor=user.as_actor())
    if patient is None:
        raise HTTPException(status_code=500, detail="Failed to register patient")
    return patient.model_dump(mode="json")


@app.get("/api/patients/{patient_id}")
async def get_patient(
    patient_id: str,
    user: AuthenticatedUser = Depends(get_current_user),
    engine: LabEngine = Depends(lab),
):
    patient = engine.patients.get(patient_id)
    if patient is None:
        raise _not_found("Patient")
    return patient.model_dump(mode="json")


@app.patch("/api/patients/{patient_id}")
async def update_patient(
    patient_id: str,
    request: PatientRequest,
    user: AuthenticatedUser = Depends(get_current_user),
    engine: LabEngine = Depends(lab),
):
    patient = engine.patients.update(patient_id, request.model_dump(exclude_unset=True), actor=user.as_actor())
    if patient is None:
        raise _not_found("Patient")
    return patient.model_dump(mode="json")


@app.delete("/api/patients/{patient_id}")
async def delete_patient(
    patient_id: str,
    user: AuthenticatedUser = Depends(get_current_user),
    engine: LabEngine = Depends(lab),
):
    """Delete a patient together with their results and billing lines."""
    if not engine.patients.delete(patient_id, actor=user.as_actor()):
        raise _not_found("Patient")
    return {"status": "deleted"}


@app.get("/api/patients/{patient_id}/report")
async def get_patient_report(
    patient_id: str,
    download: bool = Query(False, description="Record the report as downloaded"),
    user: AuthenticatedUser = Depends(get_current_user),
    engine: LabEngine = Depends(lab),
):
    """Laboratory report with abnormal flags and overall billing status."""
    report = engine.reports.patient_report(patient_id, actor=user.as_actor(), download=download)
    if report is None:
        raise _not_found("Patient")
    return {
        **report.model_dump(mode="json"),
        "abnormal_count": report.abnormal_count,
    }


# =============================================================================
# TEST RESULT ENDPOINTS
# =============================================================================

class ResultRequest(BaseModel):
    """Request model for entering a test result."""
    patient_name: str = ""
    patient_id: Optional[str] = None
    section: str = ""
    test_name: str = ""
    result_value: str = ""
    reference_range: Optional[str] = None
    unit: Optional[str] = None


class PanelComponent(BaseModel):
    test_name: str
    value: str
    reference_range: Optional[str] = None
    unit: Optional[str] = None


class PanelRequest(BaseModel):
    """Request model for a consolidated test entered as its components."""
    patient_name: str
    patient_id: Optional[str] = None
    section: str
    parent_test: str
    components: list[PanelComponent] = Field(..., min_length=1)


class ResultUpdate(BaseModel):
    patient_name: Optional[str] = None
    section: Optional[str] = None
    test_name: Optional[str] = None
    result_value: Optional[str] = None
    reference_range: Optional[str] = None
    unit: Optional[str] = None
    status: Optional[ResultStatus] = None


@app.get("/api/results")
async def list_results(
    status: Optional[ResultStatus] = Query(None),
    patient_name: Optional[str] = Query(None),
    user: AuthenticatedUser = Depends(get_current_user),
    engine: LabEngine = Depends(lab),
):
    """List test results, newest first."""
    return [r.model_dump(mode="json") for r in engine.results.list(status, patient_name)]


@app.post("/api/results", status_code=201)
async def create_result(
    request: ResultRequest,
    user: AuthenticatedUser = Depends(get_current_user),
    engine: LabEngine = Depends(lab),
):
    """Enter a result; standalone tests are billed automatically."""
    result = engine.results.create(
        patient_name=request.patient_name,
        section=request.section,
        test_name=request.test_name,
        value=request.result_value,
        reference_range=request.reference_range,
        unit=request.unit,
        actor=user.as_actor(),
        patient_id=request.patient_id,
    )
    if result is None:
        raise HTTPException(status_code=500, detail="Failed to save result")
    return result.model_dump(mode="json")


@app.post("/api/results/panel", status_code=201)
async def create_result_panel(
    request: PanelRequest,
    user: AuthenticatedUser = Depends(get_current_user),
    engine: LabEngine = Depends(lab),
):
    """Enter a consolidated test; its parent is billed once."""
    results = engine.results.create_panel(
        patient_name=request.patient_name,
        section=request.section,
        parent_test=request.parent_test,
        components=[c.model_dump() for c in request.components],
        actor=user.as_actor(),
        patient_id=request.patient_id,
    )
    return [r.model_dump(mode="json") for r in results]


@app.get("/api/results/{result_id}")
async def get_result(
    result_id: str,
    user: AuthenticatedUser = Depends(get_current_user),
    engine: LabEngine = Depends(lab),
):
    result = engine.results.get(result_id)
    if result is None:
        raise _not_found("Result")
    return {
        **result.model_dump(mode="json"),
        "flag": classify(result.result_value, result.test_name, result.section, engine.catalog).value,
    }


@app.patch("/api/results/{result_id}")
async def update_result(
    result_id: str,
    request: ResultUpdate,
    user: AuthenticatedUser = Depends(get_current_user),
    engine: LabEngine = Depends(lab),
):
    result = engine.results.update(
        result_id,
        actor=user.as_actor(),
        **request.model_dump(exclude_unset=True, mode="json"),
    )
    if result is None:
        raise _not_found("Result")
    return result.model_dump(mode="json")


@app.post("/api/results/{result_id}/advance")
async def advance_result(
    result_id: str,
    user: AuthenticatedUser = Depends(get_current_user),
    engine: LabEngine = Depends(lab),
):
    """Move a result to its next stage."""
    result = engine.results.advance(result_id, actor=user.as_actor())
    if result is None:
        raise _not_found("Result")
    return result.model_dump(mode="json")


@app.delete("/api/results/{result_id}")
async def delete_result(
    result_id: str,
    user: AuthenticatedUser = Depends(get_current_user),
    engine: LabEngine = Depends(lab),
):
    if not engine.results.delete(result_id, actor=user.as_actor()):
        raise _not_found("Result")
    return {"status": "deleted"}


# =============================================================================
# BILLING ENDPOINTS
# =============================================================================

class BillingStatusRequest(BaseModel):
    status: BillingStatus
    or_number: Optional[str] = None
    date_paid: Optional[date] = None


@app.get("/api/billing")
async def list_billing(
    status: Optional[BillingStatus] = Query(None),
    patient_name: Optional[str] = Query(None),
    user: AuthenticatedUser = Depends(get_current_user),
    engine: LabEngine = Depends(lab),
):
    return [e.model_dump(mode="json") for e in engine.billing.list(status, patient_name)]


@app.get("/api/billing/summary")
async def billing_summary(
    user: AuthenticatedUser = Depends(get_current_user),
    engine: LabEngine = Depends(lab),
):
    """Paid/unpaid counts and totals."""
    summary = engine.billing.aggregate()
    return {
        **summary.model_dump(),
        "total_count": summary.total_count,
        "total_amount": summary.total_amount,
    }


@app.patch("/api/billing/{billing_id}/status")
async def set_billing_status(
    billing_id: str,
    request: BillingStatusRequest,
    user: AuthenticatedUser = Depends(get_current_user),
    engine: LabEngine = Depends(lab),
):
    """Mark a billing line paid or unpaid."""
    entry = engine.billing.set_status(
        billing_id,
        request.status,
        or_number=request.or_number,
        date_paid=request.date_paid,
        actor=user.as_actor(),
    )
    if entry is None:
        raise _not_found("Billing entry")
    return entry.model_dump(mode="json")


@app.delete("/api/billing/{billing_id}")
async def delete_billing(
    billing_id: str,
    user: AuthenticatedUser = Depends(get_current_user),
    engine: LabEngine = Depends(lab),
):
    if not engine.billing.delete(billing_id, actor=user.as_actor()):
        raise _not_found("Billing entry")
    return {"status": "deleted"}


# =============================================================================
# USER ENDPOINTS (faculty only)
# =============================================================================

class UserRequest(BaseModel):
    full_name: Optional[str] = None
    email: Optional[str] = None
    role: Optional[str] = None
    department: Optional[str] = None


@app.get("/api/users")
async def list_users(
    user: AuthenticatedUser = Depends(get_faculty_user),
    engine: LabEngine = Depends(lab),
):
    return {
        "users": [u.model_dump(mode="json") for u in engine.users.list()],
        "counts": engine.users.counts(),
    }


@app.post("/api/users", status_code=201)
async def create_user(
    request: UserRequest,
    user: AuthenticatedUser = Depends(get_faculty_user),
    engine: LabEngine = Depends(lab),
):
    created = engine.users.create(request.model_dump(exclude_none=True), actor=user.as_actor())
    if created is None:
        raise HTTPException(status_code=500, detail="Failed to create user")
    return created.model_dump(mode="json")


@app.patch("/api/users/{user_id}")
async def update_user(
    user_id: str,
    request: UserRequest,
    user: AuthenticatedUser = Depends(get_faculty_user),
    engine: LabEngine = Depends(lab),
):
    updated = engine.users.update(user_id, request.model_dump(exclude_none=True), actor=user.as_actor())
    if updated is None:
        raise _not_found("User")
    return updated.model_dump(mode="json")


@app.delete("/api/users/{user_id}")
async def delete_user(
    user_id: str,
    user: AuthenticatedUser = Depends(get_faculty_user),
    engine: LabEngine = Depends(lab),
):
    if not engine.users.delete(user_id, actor=user.as_actor()):
        raise _not_found("User")
    return {"status": "deleted"}


# =============================================================================
# AUDIT LOG ENDPOINTS (faculty only)
# =============================================================================

@app.get("/api/audit-logs")
async def list_audit_logs(
    action: Optional[AuditAction] = Query(None),
    user_name: Optional[str] = Query(None),
    search: Optional[str] = Query(None, description="User, resource or encryption key"),
    user: AuthenticatedUser = Depends(get_faculty_user),
    engine: LabEngine = Depends(lab),
):
    """Audit entries, most recent first."""
    return [e.model_dump(mode="json") for e in engine.audit.list(action, user_name, search)]


@app.get("/api/audit-logs/summary")
async def audit_log_summary(
    user: AuthenticatedUser = Depends(get_faculty_user),
    engine: LabEngine = Depends(lab),
):
    return engine.reports.audit_summary().model_dump()


async def audit_event_stream(audit: AuditTrail, limit: Optional[int] = None) -> AsyncIterator[str]:
    """
    Yield newly appended audit entries as SSE events.

    The subscription starts when the stream starts and is dropped when the
    stream ends, whether after `limit` events or because the client went
    away.
    """
    loop = asyncio.get_running_loop()
    queue: asyncio.Queue = asyncio.Queue()
    unsubscribe = audit.subscribe(lambda entry: loop.call_soon_threadsafe(queue.put_nowait, entry))
    sent = 0
    try:
        yield ": subscribed\n\n"
        while limit is None or sent < limit:
            entry = await queue.get()
            yield f"event: audit\ndata: {entry.model_dump_json()}\n\n"
            sent += 1
    finally:
        unsubscribe()


@app.get("/api/audit-logs/stream")
async def stream_audit_logs(
    limit: Optional[int] = Query(None, ge=1, description="Close after this many events"),
    user: AuthenticatedUser = Depends(get_faculty_user),
    engine: LabEngine = Depends(lab),
) -> StreamingResponse:
    """Live audit log as Server-Sent Events."""
    return StreamingResponse(
        audit_event_stream(engine.audit, limit),
        media_type="text/event-stream",
        headers={
            "Cache-Control": "no-cache",
            "X-Accel-Buffering": "no",
        },
    )


# =============================================================================
# CATALOG, CLASSIFICATION AND DASHBOARD
# =============================================================================

class ClassifyRequest(BaseModel):
    section: str
    test_name: str
    value: str


@app.get("/api/catalog")
async def get_catalog_sections(engine: LabEngine = Depends(lab)):
    """Sections and the tests offered in each."""
    return {
        section: [
            {
                "name": test.name,
                "price": test.price,
                "parent": test.parent,
                "reference_range": test.range.display() if test.range else None,
                "unit": test.range.unit if test.range else None,
            }
            for test in engine.catalog.tests(section)
        ]
        for section in engine.catalog.sections()
    }


@app.post("/api/classify")
async def classify_value(request: ClassifyRequest, engine: LabEngine = Depends(lab)):
    """Flag a value as normal, high or low."""
    flag = classify(request.value, request.test_name, request.section, engine.catalog)
    ref_range = engine.catalog.range(request.section, request.test_name)
    return {
        "flag": flag.value,
        "reference_range": ref_range.display() if ref_range else None,
    }


@app.get("/api/dashboard")
async def get_dashboard(
    user: AuthenticatedUser = Depends(get_current_user),
    engine: LabEngine = Depends(lab),
):
    dashboard = engine.reports.dashboard()
    return {
        **dashboard.model_dump(),
        "billing": {
            **dashboard.billing.model_dump(),
            "total_count": dashboard.billing.total_count,
            "total_amount": dashboard.billing.total_amount,
        },
    }


def run_server(host: str = "0.0.0.0", port: int = 8000):
    """Run the server."""
    import uvicorn
    uvicorn.run(app, host=host, port=port)


if __name__ == "__main__":
    run_server()
