import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import Depends, FastAPI, File, Query, Request, UploadFile, status
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pymongo.database import Database
from pymongo.errors import DuplicateKeyError

import beneficiaries
import categories
import reports
import users
from database import close_client, ensure_indexes, get_db, utcnow
from errors import Conflict, Internal, ServiceError, Unauthorized, ValidationFailed
from schemas import (
    ALL_ROLES,
    BeneficiaryCreate,
    BeneficiaryUpdate,
    CategoryCreate,
    CategoryUpdate,
    DeleteOutcome,
    FullProfileUpdate,
    LoginRequest,
    PasswordConfirm,
    ProfileUpdate,
    RegisterRequest,
    ReportCreate,
    ReportState,
    ReportUpdate,
    SignatureDataUrl,
    StateChange,
)
from security import Identity, RoleChecker, get_current_user, get_optional_user, issue_token, owner_path_guard
from settings import get_settings

settings = get_settings()

logging.basicConfig(
    level=settings.log_level,
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(_: FastAPI):
    """Create indexes and seed the default categories once per process."""
    db = get_db()
    ensure_indexes(db)
    categories.seed_defaults(db)
    logger.info("Rendiconti backend started (%s)", settings.environment)

    yield

    close_client()


# ----------------------
# App & CORS
# ----------------------
app = FastAPI(title="Rendiconti Backend", lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=[settings.frontend_url],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

any_role = RoleChecker(ALL_ROLES)
MAX_PAGE = 10_000


# ----------------------
# Error handling
# ----------------------
def error_response(exc: ServiceError) -> JSONResponse:
    headers = {"WWW-Authenticate": "Bearer"} if isinstance(exc, Unauthorized) else None
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict(), headers=headers)


@app.exception_handler(ServiceError)
async def service_error_handler(_: Request, exc: ServiceError):
    return error_response(exc)


@app.exception_handler(RequestValidationError)
async def request_validation_handler(_: Request, exc: RequestValidationError):
    details = []
    for err in exc.errors():
        loc = [str(part) for part in err.get("loc", ()) if part not in ("body", "query", "path")]
        details.append({"field": ".".join(loc), "message": err.get("msg")})
    return error_response(ValidationFailed(details=details))


@app.exception_handler(DuplicateKeyError)
async def duplicate_key_handler(_: Request, exc: DuplicateKeyError):
    logger.warning("Unique index violation: %s", exc)
    return error_response(Conflict())


@app.exception_handler(Exception)
async def unexpected_error_handler(request: Request, exc: Exception):
    logger.exception("Unhandled error on %s %s", request.method, request.url.path)
    message = None if settings.is_production else str(exc)
    return error_response(Internal(message))


def envelope(message: Optional[str] = None, data=None, **extra) -> dict:
    body = {}
    if message is not None:
        body["message"] = message
    if data is not None:
        body["data"] = data
    body.update(extra)
    return body


# ----------------------
# Auth Endpoints
# ----------------------
@app.post("/api/auth/register", status_code=status.HTTP_201_CREATED)
def register(payload: RegisterRequest, db: Database = Depends(get_db)):
    user = users.register_user(db, payload)
    token = issue_token(str(user["_id"]))
    return envelope("User registered successfully", users.user_out(user), token=token)


@app.post("/api/auth/login")
def login(payload: LoginRequest, db: Database = Depends(get_db)):
    user = users.login(db, payload.email, payload.password)
    token = issue_token(str(user["_id"]))
    return envelope("Login successful", users.user_out(user), token=token)


@app.post("/api/auth/logout")
def logout():
    # Tokens are stateless; the client just drops it.
    return envelope("Logout successful")


@app.get("/api/auth/me")
def me(identity: Identity = Depends(get_current_user)):
    return envelope(data=users.user_out(identity.user))


@app.put("/api/auth/profile")
def update_profile(payload: ProfileUpdate, identity: Identity = Depends(get_current_user), db: Database = Depends(get_db)):
    user = users.update_profile(db, identity.user, payload)
    return envelope("Profile updated successfully", users.user_out(user))


@app.put("/api/auth/profile/full")
def update_full_profile(
    payload: FullProfileUpdate, identity: Identity = Depends(get_current_user), db: Database = Depends(get_db)
):
    user = users.update_full_profile(db, identity.user, payload)
    return envelope("Full profile updated successfully", users.user_out(user))


@app.post("/api/auth/signature")
def upload_signature(
    payload: SignatureDataUrl, identity: Identity = Depends(get_current_user), db: Database = Depends(get_db)
):
    user = users.upload_signature_data_url(db, identity.user, payload.password, payload.signature)
    return envelope("Signature uploaded successfully", users.user_out(user))


@app.post("/api/auth/signature/file")
def upload_signature_file(
    signature: UploadFile = File(...),
    identity: Identity = Depends(get_current_user),
    db: Database = Depends(get_db),
):
    # Stop one byte past the ceiling; uploads.py rejects anything that long.
    data = signature.file.read(settings.max_signature_bytes + 1)
    user = users.upload_signature_file(db, identity.user, signature.content_type, signature.filename, data)
    return envelope("Signature uploaded successfully", users.user_out(user))


@app.delete("/api/auth/signature")
def delete_signature(
    payload: PasswordConfirm, identity: Identity = Depends(get_current_user), db: Database = Depends(get_db)
):
    user = users.delete_signature(db, identity.user, payload.password)
    return envelope("Signature deleted successfully", users.user_out(user))


@app.post("/api/auth/verify-password")
def verify_password(payload: PasswordConfirm, identity: Identity = Depends(get_current_user)):
    valid = users.verify_password_for(identity.user, payload.password)
    return envelope("Password correct" if valid else "Wrong password", {"valid": valid})


@app.get("/api/users/{user_id}")
def get_user(user_id: str, identity: Identity = Depends(owner_path_guard)):
    return envelope(data=users.user_out(identity.user))


# ----------------------
# Category Endpoints
# ----------------------
@app.get("/api/categories")
def list_categories(identity: Identity = Depends(get_current_user), db: Database = Depends(get_db)):
    items = [categories.category_out(c) for c in categories.list_for_user(db, identity.id)]
    return envelope(data=items, total=len(items))


@app.get("/api/categories/default")
def list_default_categories(identity: Identity = Depends(get_current_user), db: Database = Depends(get_db)):
    items = [categories.category_out(c) for c in categories.list_global(db)]
    return envelope(data=items, total=len(items))


@app.get("/api/categories/custom")
def list_custom_categories(identity: Identity = Depends(get_current_user), db: Database = Depends(get_db)):
    items = [categories.category_out(c) for c in categories.list_custom(db, identity.id)]
    return envelope(data=items, total=len(items))


@app.post("/api/categories", status_code=status.HTTP_201_CREATED)
def create_category(payload: CategoryCreate, identity: Identity = Depends(get_current_user), db: Database = Depends(get_db)):
    category = categories.create_category(db, identity.id, payload)
    return envelope("Category created successfully", categories.category_out(category))


@app.put("/api/categories/{category_id}")
def update_category(
    category_id: str,
    payload: CategoryUpdate,
    identity: Identity = Depends(get_current_user),
    db: Database = Depends(get_db),
):
    category = categories.update_category(db, category_id, identity.id, payload)
    return envelope("Category updated successfully", categories.category_out(category))


@app.delete("/api/categories/{category_id}")
def delete_category(category_id: str, identity: Identity = Depends(get_current_user), db: Database = Depends(get_db)):
    outcome, referencing = categories.delete_category(db, category_id, identity.id)
    if outcome is DeleteOutcome.DEACTIVATED:
        return envelope(
            "Category deactivated successfully",
            {"outcome": outcome.value, "referencing_reports": referencing},
            info=f"The category was deactivated because it is used in {referencing} report(s)",
        )
    return envelope("Category deleted successfully", {"outcome": outcome.value, "referencing_reports": 0})


@app.patch("/api/categories/{category_id}/activate")
def reactivate_category(category_id: str, identity: Identity = Depends(get_current_user), db: Database = Depends(get_db)):
    category = categories.reactivate_category(db, category_id, identity.id)
    return envelope("Category reactivated successfully", categories.category_out(category))


# ----------------------
# Beneficiary Endpoints
# ----------------------
@app.get("/api/beneficiaries")
def list_beneficiaries(
    page: int = Query(1, ge=1, le=MAX_PAGE),
    limit: int = Query(10, ge=1, le=100),
    search: Optional[str] = None,
    active: bool = True,
    identity: Identity = Depends(any_role),
    db: Database = Depends(get_db),
):
    docs, meta = beneficiaries.list_beneficiaries(db, identity.id, page, limit, search, active)
    return envelope(data=[beneficiaries.beneficiary_out(d) for d in docs], pagination=meta)


@app.get("/api/beneficiaries/{beneficiary_id}")
def get_beneficiary(beneficiary_id: str, identity: Identity = Depends(any_role), db: Database = Depends(get_db)):
    doc = beneficiaries.get_beneficiary(db, beneficiary_id, identity.id)
    return envelope(data=beneficiaries.beneficiary_out(doc))


@app.post("/api/beneficiaries", status_code=status.HTTP_201_CREATED)
def create_beneficiary(payload: BeneficiaryCreate, identity: Identity = Depends(any_role), db: Database = Depends(get_db)):
    doc = beneficiaries.create_beneficiary(db, identity.id, payload)
    return envelope("Beneficiary created successfully", beneficiaries.beneficiary_out(doc))


@app.put("/api/beneficiaries/{beneficiary_id}")
def update_beneficiary(
    beneficiary_id: str,
    payload: BeneficiaryUpdate,
    identity: Identity = Depends(any_role),
    db: Database = Depends(get_db),
):
    doc = beneficiaries.update_beneficiary(db, beneficiary_id, identity.id, payload)
    return envelope("Beneficiary updated successfully", beneficiaries.beneficiary_out(doc))


@app.delete("/api/beneficiaries/{beneficiary_id}")
def delete_beneficiary(beneficiary_id: str, identity: Identity = Depends(any_role), db: Database = Depends(get_db)):
    outcome = beneficiaries.delete_beneficiary(db, beneficiary_id, identity.id)
    if outcome is DeleteOutcome.SOFT_DELETED:
        return envelope("Beneficiary deactivated successfully (has reports)", {"outcome": outcome.value})
    return envelope("Beneficiary deleted successfully", {"outcome": outcome.value})


@app.put("/api/beneficiaries/{beneficiary_id}/activate")
def reactivate_beneficiary(beneficiary_id: str, identity: Identity = Depends(any_role), db: Database = Depends(get_db)):
    doc = beneficiaries.reactivate_beneficiary(db, beneficiary_id, identity.id)
    return envelope("Beneficiary reactivated successfully", beneficiaries.beneficiary_out(doc))


@app.get("/api/beneficiaries/{beneficiary_id}/reports")
def list_beneficiary_reports(
    beneficiary_id: str,
    page: int = Query(1, ge=1, le=MAX_PAGE),
    limit: int = Query(10, ge=1, le=100),
    identity: Identity = Depends(any_role),
    db: Database = Depends(get_db),
):
    beneficiary, docs, meta = reports.list_beneficiary_reports(db, beneficiary_id, identity.id, page, limit)
    return envelope(
        data=[reports.report_out(d) for d in docs],
        beneficiary=beneficiaries.beneficiary_out(beneficiary),
        pagination=meta,
    )


# ----------------------
# Report Endpoints
# ----------------------
@app.get("/api/reports")
def list_reports(
    page: int = Query(1, ge=1, le=MAX_PAGE),
    limit: int = Query(10, ge=1, le=100),
    state: Optional[ReportState] = None,
    year: Optional[int] = Query(None, ge=2000),
    search: Optional[str] = None,
    identity: Identity = Depends(any_role),
    db: Database = Depends(get_db),
):
    docs, meta = reports.list_reports(db, identity.id, page, limit, state, year, search)
    linked = reports.beneficiaries_by_id(db, docs)
    items = [reports.report_out(d, linked.get(d.get("beneficiary_id"))) for d in docs]
    return envelope(data=items, pagination=meta)


@app.get("/api/reports/{report_id}")
def get_report(report_id: str, identity: Identity = Depends(any_role), db: Database = Depends(get_db)):
    doc = reports.get_report(db, report_id, identity.id)
    return envelope(data=reports.report_out(doc, reports.load_beneficiary(db, doc)))


@app.post("/api/reports", status_code=status.HTTP_201_CREATED)
def create_report(payload: ReportCreate, identity: Identity = Depends(any_role), db: Database = Depends(get_db)):
    doc = reports.create_report(db, identity.id, payload)
    return envelope("Report created successfully", reports.report_out(doc, reports.load_beneficiary(db, doc)))


@app.put("/api/reports/{report_id}")
def update_report(
    report_id: str,
    payload: ReportUpdate,
    identity: Identity = Depends(any_role),
    db: Database = Depends(get_db),
):
    doc = reports.update_report(db, report_id, identity.id, payload)
    return envelope("Report updated successfully", reports.report_out(doc, reports.load_beneficiary(db, doc)))


@app.patch("/api/reports/{report_id}/state")
def set_report_state(
    report_id: str,
    payload: StateChange,
    identity: Identity = Depends(any_role),
    db: Database = Depends(get_db),
):
    doc = reports.set_state(db, report_id, identity.id, payload.state)
    return envelope("State updated successfully", {"id": str(doc["_id"]), "state": doc["state"]})


@app.get("/api/reports/{report_id}/completeness")
def report_completeness(report_id: str, identity: Identity = Depends(any_role), db: Database = Depends(get_db)):
    return envelope(data=reports.check_completeness(db, report_id, identity.id))


@app.post("/api/reports/{report_id}/signature")
def apply_report_signature(
    report_id: str,
    payload: PasswordConfirm,
    identity: Identity = Depends(any_role),
    db: Database = Depends(get_db),
):
    doc = reports.apply_signature(db, report_id, identity.user, payload.password)
    return envelope("Signature applied successfully", reports.report_out(doc))


@app.delete("/api/reports/{report_id}")
def delete_report(report_id: str, identity: Identity = Depends(any_role), db: Database = Depends(get_db)):
    reports.delete_report(db, report_id, identity.id)
    return envelope("Report deleted successfully")


# ----------------------
# Health
# ----------------------
@app.get("/")
def read_root():
    return {"message": "Rendiconti Backend Running"}


@app.get("/api/health")
def health(identity: Optional[Identity] = Depends(get_optional_user)):
    return {
        "status": "OK",
        "message": "Rendiconti server running",
        "timestamp": utcnow().isoformat(),
        "authenticated": identity is not None,
    }


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(app, host="0.0.0.0", port=settings.port)
