"""
Beneficiary registry: the people an administrator manages, each with an
embedded net-worth declaration.
"""

import logging
import re
from datetime import date
from typing import Any, Dict, List, Optional, Tuple

from pymongo import ASCENDING
from pymongo.database import Database
from pymongo.errors import DuplicateKeyError

from database import as_date, create_document, paginate, parse_object_id, serialize, to_mongo, utcnow
from errors import DuplicateFiscalCode, NotFound
from schemas import Beneficiary as BeneficiarySchema, BeneficiaryCreate, BeneficiaryUpdate, DeleteOutcome

logger = logging.getLogger(__name__)

COLLECTION = "beneficiary"

NET_WORTH_SECTIONS = ("real_estate", "movable_assets", "financial_assets")


def section_total(net_worth: Optional[Dict[str, Any]], section: str) -> float:
    items = (net_worth or {}).get(section) or []
    return sum(item.get("value") or 0 for item in items)


def net_worth_totals(net_worth: Optional[Dict[str, Any]]) -> Dict[str, float]:
    totals = {f"total_{section}": section_total(net_worth, section) for section in NET_WORTH_SECTIONS}
    totals["total_net_worth"] = sum(totals.values())
    return totals


def format_address(address: Optional[Dict[str, Any]]) -> str:
    """Render "street, postal_code city, (PR)" skipping the missing parts."""
    if not address:
        return ""
    parts = []
    if address.get("street"):
        parts.append(address["street"])
    if address.get("postal_code") and address.get("city"):
        parts.append(f"{address['postal_code']} {address['city']}")
    elif address.get("city"):
        parts.append(address["city"])
    if address.get("province"):
        parts.append(f"({address['province']})")
    return ", ".join(parts)


def age_on(birth_date: Optional[date], today: Optional[date] = None) -> Optional[int]:
    if birth_date is None:
        return None
    today = today or date.today()
    age = today.year - birth_date.year
    if (today.month, today.day) < (birth_date.month, birth_date.day):
        age -= 1
    return age


def beneficiary_out(doc: Dict[str, Any]) -> Dict[str, Any]:
    out = serialize(doc)
    out["birth_date"] = as_date(doc.get("birth_date"))
    out["full_name"] = f"{doc.get('name', '')} {doc.get('surname', '')}".strip()
    out["full_address"] = format_address(doc.get("address"))
    out["age"] = age_on(out["birth_date"])
    out.update(net_worth_totals(doc.get("net_worth")))
    return out


def list_beneficiaries(
    db: Database,
    user_id: str,
    page: int = 1,
    page_size: int = 10,
    search: Optional[str] = None,
    active_only: bool = True,
) -> Tuple[List[dict], Dict[str, int]]:
    filters: Dict[str, Any] = {"user_id": user_id, "is_active": active_only}
    if search:
        pattern = {"$regex": re.escape(search), "$options": "i"}
        filters["$or"] = [{"name": pattern}, {"surname": pattern}, {"fiscal_code": pattern}]
    return paginate(
        db[COLLECTION], filters, [("surname", ASCENDING), ("name", ASCENDING)], page, page_size
    )


def get_beneficiary(db: Database, beneficiary_id: str, user_id: str) -> dict:
    doc = db[COLLECTION].find_one({"_id": parse_object_id(beneficiary_id), "user_id": user_id})
    if doc is None:
        raise NotFound("Beneficiary not found")
    return doc


def find_active_beneficiary(db: Database, beneficiary_id: str, user_id: str) -> Optional[dict]:
    return db[COLLECTION].find_one(
        {"_id": parse_object_id(beneficiary_id, "beneficiary_id"), "user_id": user_id, "is_active": True}
    )


def _fiscal_code_taken(db: Database, user_id: str, fiscal_code: str, exclude_id=None) -> bool:
    query: Dict[str, Any] = {"user_id": user_id, "fiscal_code": fiscal_code, "is_active": True}
    if exclude_id is not None:
        query["_id"] = {"$ne": exclude_id}
    return db[COLLECTION].find_one(query) is not None


def create_beneficiary(db: Database, user_id: str, payload: BeneficiaryCreate) -> dict:
    if _fiscal_code_taken(db, user_id, payload.fiscal_code):
        raise DuplicateFiscalCode()

    fields = payload.model_dump(exclude_none=True)
    beneficiary = BeneficiarySchema(user_id=user_id, **fields)
    try:
        beneficiary_id = create_document(db, COLLECTION, beneficiary)
    except DuplicateKeyError:
        raise DuplicateFiscalCode()
    logger.info("Beneficiary %s created for user %s", beneficiary_id, user_id)
    return db[COLLECTION].find_one({"_id": parse_object_id(beneficiary_id)})


def update_beneficiary(db: Database, beneficiary_id: str, user_id: str, payload: BeneficiaryUpdate) -> dict:
    doc = get_beneficiary(db, beneficiary_id, user_id)
    changes = payload.model_dump(exclude_unset=True)
    for required in ("name", "surname", "fiscal_code", "birth_date"):
        if changes.get(required) is None:
            changes.pop(required, None)

    # Inactive records are outside the uniqueness rule; the index guards reactivation.
    if doc.get("is_active", True) and "fiscal_code" in changes and changes["fiscal_code"] != doc["fiscal_code"]:
        if _fiscal_code_taken(db, user_id, changes["fiscal_code"], exclude_id=doc["_id"]):
            raise DuplicateFiscalCode()

    if changes:
        changes["updated_at"] = utcnow()
        try:
            db[COLLECTION].update_one({"_id": doc["_id"]}, {"$set": to_mongo(changes)})
        except DuplicateKeyError:
            raise DuplicateFiscalCode()
    return db[COLLECTION].find_one({"_id": doc["_id"]})


def delete_beneficiary(db: Database, beneficiary_id: str, user_id: str) -> DeleteOutcome:
    """Soft-delete when reports reference the beneficiary, hard-delete otherwise."""
    from reports import count_for_beneficiary

    doc = get_beneficiary(db, beneficiary_id, user_id)
    if count_for_beneficiary(db, str(doc["_id"])) > 0:
        db[COLLECTION].update_one(
            {"_id": doc["_id"]}, {"$set": {"is_active": False, "updated_at": utcnow()}}
        )
        logger.info("Beneficiary %s deactivated (has reports)", doc["_id"])
        return DeleteOutcome.SOFT_DELETED

    db[COLLECTION].delete_one({"_id": doc["_id"]})
    logger.info("Beneficiary %s deleted", doc["_id"])
    return DeleteOutcome.HARD_DELETED


def reactivate_beneficiary(db: Database, beneficiary_id: str, user_id: str) -> dict:
    doc = get_beneficiary(db, beneficiary_id, user_id)
    try:
        db[COLLECTION].update_one(
            {"_id": doc["_id"]}, {"$set": {"is_active": True, "updated_at": utcnow()}}
        )
    except DuplicateKeyError:
        raise DuplicateFiscalCode()
    return db[COLLECTION].find_one({"_id": doc["_id"]})
