"""
Financial reports ("rendiconti").

A report covers one period for one beneficiary and moves through
draft -> completed -> submitted. Entering completed or submitted requires the
completeness check to pass; once submitted the report is locked.
"""

import logging
import re
from typing import Any, Dict, List, Optional, Tuple

from pymongo import DESCENDING
from pymongo.database import Database

from beneficiaries import find_active_beneficiary, get_beneficiary, net_worth_totals
from database import as_date, create_document, paginate, parse_object_id, serialize, to_mongo, utcnow
from errors import (
    BeneficiaryNotFound,
    IncompleteReport,
    NotFound,
    PeriodOverlap,
    ReportLocked,
    ValidationFailed,
)
from schemas import Ledger, Period, Report as ReportSchema, ReportCreate, ReportState, ReportUpdate, SignatureBlock
from users import check_password

logger = logging.getLogger(__name__)

COLLECTION = "report"

LOCKING_STATES = {ReportState.SUBMITTED.value}
GATED_STATES = {ReportState.COMPLETED, ReportState.SUBMITTED}


# ----------------------
# Derived values
# ----------------------
def compute_totals(report: Dict[str, Any]) -> Dict[str, float]:
    ledger = report.get("ledger") or {}
    income = sum(entry.get("amount") or 0 for entry in ledger.get("income") or [])
    expense = sum(entry.get("amount") or 0 for entry in ledger.get("expense") or [])
    return {"income": income, "expense": expense, "net": income - expense}


def completeness_of(report: Dict[str, Any], beneficiary: Optional[Dict[str, Any]]) -> Tuple[bool, List[str]]:
    """
    Check whether a report can leave the draft state.

    The personal-conditions narrative may be written on the report itself
    for the period; otherwise the beneficiary's narrative is used.
    """
    missing = []
    period = report.get("period") or {}
    signature = report.get("signature") or {}

    if not period.get("start"):
        missing.append("Start date missing")
    if not period.get("end"):
        missing.append("End date missing")
    if not (report.get("case_reference") or "").strip():
        missing.append("Case reference missing")
    if not report.get("beneficiary_id") or beneficiary is None:
        missing.append("Beneficiary not selected")

    narrative = report.get("personal_conditions") or (beneficiary or {}).get("personal_conditions") or ""
    if not narrative.strip():
        missing.append("Personal conditions missing")

    if not signature.get("truthfulness_declaration"):
        missing.append("Truthfulness declaration missing")
    if not signature.get("data_processing_consent"):
        missing.append("Data processing consent missing")
    if not (signature.get("place") or "").strip():
        missing.append("Signature place missing")
    if not signature.get("signing_date"):
        missing.append("Signature date missing")

    return len(missing) == 0, missing


def beneficiary_summary(doc: Optional[Dict[str, Any]]) -> Optional[Dict[str, Any]]:
    if doc is None:
        return None
    return {
        "id": str(doc["_id"]),
        "name": doc.get("name"),
        "surname": doc.get("surname"),
        "fiscal_code": doc.get("fiscal_code"),
        "full_name": f"{doc.get('name', '')} {doc.get('surname', '')}".strip(),
    }


def report_out(doc: Dict[str, Any], beneficiary: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
    out = serialize(doc)
    period = dict(doc.get("period") or {})
    out["period"] = {"start": as_date(period.get("start")), "end": as_date(period.get("end"))}
    signature = dict(doc.get("signature") or {})
    signature["signing_date"] = as_date(signature.get("signing_date"))
    out["signature"] = signature
    out["totals"] = compute_totals(doc)
    if beneficiary is not None:
        out["beneficiary"] = beneficiary_summary(beneficiary)
    return out


# ----------------------
# Cross-aggregate reads
# ----------------------
def count_referencing_category(db: Database, user_id: str, category_name: str) -> int:
    return db[COLLECTION].count_documents(
        {
            "user_id": user_id,
            "$or": [
                {"ledger.income.category": category_name},
                {"ledger.expense.category": category_name},
            ],
        }
    )


def count_for_beneficiary(db: Database, beneficiary_id: str) -> int:
    return db[COLLECTION].count_documents({"beneficiary_id": beneficiary_id})


def list_beneficiary_reports(
    db: Database, beneficiary_id: str, user_id: str, page: int = 1, page_size: int = 10
) -> Tuple[dict, List[dict], Dict[str, int]]:
    beneficiary = get_beneficiary(db, beneficiary_id, user_id)
    docs, meta = paginate(
        db[COLLECTION],
        {"beneficiary_id": str(beneficiary["_id"]), "user_id": user_id},
        [("period.start", DESCENDING)],
        page,
        page_size,
    )
    return beneficiary, docs, meta


# ----------------------
# Operations
# ----------------------
def _find_overlap(db: Database, user_id: str, beneficiary_id: str, period: Period, exclude_id=None) -> Optional[dict]:
    bounds = to_mongo({"start": period.start, "end": period.end})
    query: Dict[str, Any] = {
        "user_id": user_id,
        "beneficiary_id": beneficiary_id,
        "period.start": {"$lte": bounds["end"]},
        "period.end": {"$gte": bounds["start"]},
    }
    if exclude_id is not None:
        query["_id"] = {"$ne": exclude_id}
    return db[COLLECTION].find_one(query)


def _ensure_unlocked(doc: dict) -> None:
    if doc.get("state") in LOCKING_STATES:
        raise ReportLocked()


def get_report(db: Database, report_id: str, user_id: str) -> dict:
    doc = db[COLLECTION].find_one({"_id": parse_object_id(report_id), "user_id": user_id})
    if doc is None:
        raise NotFound("The requested report does not exist or you cannot access it")
    return doc


def load_beneficiary(db: Database, report: dict) -> Optional[dict]:
    try:
        oid = parse_object_id(report.get("beneficiary_id") or "", "beneficiary_id")
    except ValidationFailed:
        return None
    return db["beneficiary"].find_one({"_id": oid, "user_id": report["user_id"]})


def _client_signature(signature: Optional[SignatureBlock]) -> SignatureBlock:
    # The applied image only ever comes from apply_signature.
    if signature is None:
        return SignatureBlock()
    return signature.model_copy(update={"applied_signature": None})


def create_report(db: Database, user_id: str, payload: ReportCreate) -> dict:
    beneficiary = find_active_beneficiary(db, payload.beneficiary_id, user_id)
    if beneficiary is None:
        raise BeneficiaryNotFound()

    beneficiary_id = str(beneficiary["_id"])
    if _find_overlap(db, user_id, beneficiary_id, payload.period):
        raise PeriodOverlap()

    report = ReportSchema(
        user_id=user_id,
        beneficiary_id=beneficiary_id,
        period=payload.period,
        year=payload.period.start.year,
        case_reference=payload.case_reference,
        personal_conditions=payload.personal_conditions,
        ledger=payload.ledger or Ledger(),
        signature=_client_signature(payload.signature),
        state=ReportState.DRAFT,
        notes=payload.notes,
    )
    report_id = create_document(db, COLLECTION, report)
    logger.info("Report %s created for beneficiary %s", report_id, beneficiary_id)
    return db[COLLECTION].find_one({"_id": parse_object_id(report_id)})


def update_report(db: Database, report_id: str, user_id: str, payload: ReportUpdate) -> dict:
    doc = get_report(db, report_id, user_id)
    _ensure_unlocked(doc)

    changes: Dict[str, Any] = {}
    if payload.period is not None:
        if _find_overlap(db, user_id, doc["beneficiary_id"], payload.period, exclude_id=doc["_id"]):
            raise PeriodOverlap()
        changes["period"] = payload.period.model_dump()
        changes["year"] = payload.period.start.year
    if payload.case_reference is not None:
        changes["case_reference"] = payload.case_reference
    if payload.ledger is not None:
        changes["ledger"] = payload.ledger.model_dump()
    if payload.signature is not None:
        for key, value in payload.signature.model_dump(exclude_unset=True, exclude={"applied_signature"}).items():
            changes[f"signature.{key}"] = value
    for key in ("personal_conditions", "notes"):
        if key in payload.model_fields_set:
            changes[key] = getattr(payload, key)

    if changes:
        changes["updated_at"] = utcnow()
        db[COLLECTION].update_one({"_id": doc["_id"]}, {"$set": to_mongo(changes)})
    return db[COLLECTION].find_one({"_id": doc["_id"]})


def check_completeness(db: Database, report_id: str, user_id: str) -> Dict[str, Any]:
    doc = get_report(db, report_id, user_id)
    beneficiary = load_beneficiary(db, doc)
    complete, missing = completeness_of(doc, beneficiary)
    net_worth = net_worth_totals((beneficiary or {}).get("net_worth"))
    return {
        "complete": complete,
        "missing": missing,
        "totals": {**compute_totals(doc), "net_worth": net_worth["total_net_worth"]},
    }


def set_state(db: Database, report_id: str, user_id: str, target: ReportState) -> dict:
    doc = get_report(db, report_id, user_id)
    _ensure_unlocked(doc)

    target = ReportState(target)
    if target in GATED_STATES:
        complete, missing = completeness_of(doc, load_beneficiary(db, doc))
        if not complete:
            raise IncompleteReport(details=missing)

    db[COLLECTION].update_one(
        {"_id": doc["_id"]}, {"$set": {"state": target.value, "updated_at": utcnow()}}
    )
    logger.info("Report %s moved from %s to %s", doc["_id"], doc.get("state"), target.value)
    return db[COLLECTION].find_one({"_id": doc["_id"]})


def apply_signature(db: Database, report_id: str, user: dict, password: str) -> dict:
    """Copy the user's stored signature image onto the report."""
    user_id = str(user["_id"])
    doc = get_report(db, report_id, user_id)
    _ensure_unlocked(doc)
    check_password(user, password)
    if not user.get("signature_image"):
        raise NotFound("No signature uploaded for this user")

    applied = {"image": user["signature_image"], "applied_at": utcnow()}
    db[COLLECTION].update_one(
        {"_id": doc["_id"]},
        {"$set": {"signature.applied_signature": applied, "updated_at": utcnow()}},
    )
    return db[COLLECTION].find_one({"_id": doc["_id"]})


def delete_report(db: Database, report_id: str, user_id: str) -> None:
    doc = get_report(db, report_id, user_id)
    _ensure_unlocked(doc)
    db[COLLECTION].delete_one({"_id": doc["_id"]})
    logger.info("Report %s deleted", doc["_id"])


def list_reports(
    db: Database,
    user_id: str,
    page: int = 1,
    page_size: int = 10,
    state: Optional[ReportState] = None,
    year: Optional[int] = None,
    search: Optional[str] = None,
) -> Tuple[List[dict], Dict[str, int]]:
    filters: Dict[str, Any] = {"user_id": user_id}
    if state is not None:
        filters["state"] = ReportState(state).value
    if year is not None:
        filters["year"] = year
    if search:
        pattern = {"$regex": re.escape(search), "$options": "i"}
        matching = db["beneficiary"].find(
            {"user_id": user_id, "$or": [{"name": pattern}, {"surname": pattern}]}, {"_id": 1}
        )
        filters["$or"] = [
            {"beneficiary_id": {"$in": [str(b["_id"]) for b in matching]}},
            {"case_reference": pattern},
        ]
    return paginate(db[COLLECTION], filters, [("created_at", DESCENDING)], page, page_size)


def beneficiaries_by_id(db: Database, reports: List[dict]) -> Dict[str, dict]:
    ids = {r["beneficiary_id"] for r in reports if r.get("beneficiary_id")}
    oids = [parse_object_id(i, "beneficiary_id") for i in ids]
    return {str(b["_id"]): b for b in db["beneficiary"].find({"_id": {"$in": oids}})}
