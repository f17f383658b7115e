"""
Category catalog: global default categories plus per-user custom ones.

Names are stored uppercase. A category is global (is_default, no owner) or
private (exactly one owner); only private categories can be changed.
"""

import logging
from typing import Any, Dict, List, Tuple

from pymongo import ASCENDING, DESCENDING
from pymongo.database import Database
from pymongo.errors import DuplicateKeyError

from database import create_document, parse_object_id, serialize, utcnow
from errors import DuplicateName, NotFound
from schemas import DEFAULT_COLOR, Category as CategorySchema, CategoryCreate, CategoryUpdate, DeleteOutcome

logger = logging.getLogger(__name__)

COLLECTION = "category"

DEFAULT_CATEGORIES = [
    {"name": "SALUTE", "description": "Spese mediche, farmaci, visite specialistiche", "color": "#dc3545"},
    {"name": "CULTURA", "description": "Libri, corsi, eventi culturali", "color": "#6f42c1"},
    {"name": "RISTORANTI", "description": "Pasti fuori casa, ristoranti, bar", "color": "#fd7e14"},
    {"name": "VACANZE", "description": "Viaggi, soggiorni, attività ricreative", "color": "#20c997"},
    {"name": "BANCA", "description": "Commissioni bancarie, spese finanziarie", "color": "#0d6efd"},
    {"name": "UFFICIO", "description": "Spese amministrative, cancelleria, servizi", "color": "#6c757d"},
    {"name": "PERSONA", "description": "Cura della persona, parrucchiere, estetica", "color": "#e83e8c"},
    {"name": "ABBIGLIAMENTO", "description": "Vestiti, scarpe, accessori", "color": "#198754"},
    {"name": "AUTO", "description": "Carburante, manutenzione, assicurazione auto", "color": "#ffc107"},
]


def category_out(doc: Dict[str, Any]) -> Dict[str, Any]:
    out = serialize(doc)
    if out.get("is_default"):
        out.pop("user_id", None)
    return out


def list_global(db: Database) -> List[dict]:
    return list(
        db[COLLECTION].find({"is_default": True, "is_active": True}).sort("name", ASCENDING)
    )


def list_for_user(db: Database, user_id: str) -> List[dict]:
    """Active global categories followed by the user's own active ones."""
    query = {
        "$or": [
            {"is_default": True, "is_active": True},
            {"user_id": user_id, "is_default": False, "is_active": True},
        ]
    }
    return list(db[COLLECTION].find(query).sort([("is_default", DESCENDING), ("name", ASCENDING)]))


def list_custom(db: Database, user_id: str) -> List[dict]:
    return list(
        db[COLLECTION]
        .find({"user_id": user_id, "is_default": False, "is_active": True})
        .sort("name", ASCENDING)
    )


def _name_taken(db: Database, user_id: str, name: str, exclude_id=None) -> bool:
    query: Dict[str, Any] = {"user_id": user_id, "name": name, "is_default": False, "is_active": True}
    if exclude_id is not None:
        query["_id"] = {"$ne": exclude_id}
    return db[COLLECTION].find_one(query) is not None


def get_owned_category(db: Database, category_id: str, user_id: str) -> dict:
    doc = db[COLLECTION].find_one(
        {"_id": parse_object_id(category_id), "user_id": user_id, "is_default": False}
    )
    if doc is None:
        raise NotFound("The requested category does not exist or you cannot change it")
    return doc


def create_category(db: Database, user_id: str, payload: CategoryCreate) -> dict:
    if _name_taken(db, user_id, payload.name):
        raise DuplicateName()

    category = CategorySchema(
        name=payload.name,
        description=payload.description,
        color=payload.color or DEFAULT_COLOR,
        is_default=False,
        user_id=user_id,
    )
    try:
        category_id = create_document(db, COLLECTION, category)
    except DuplicateKeyError:
        raise DuplicateName()
    return db[COLLECTION].find_one({"_id": parse_object_id(category_id)})


def update_category(db: Database, category_id: str, user_id: str, payload: CategoryUpdate) -> dict:
    doc = get_owned_category(db, category_id, user_id)
    changes = payload.model_dump(exclude_unset=True)
    if changes.get("name") is None:
        changes.pop("name", None)
    if changes.get("color") is None:
        changes.pop("color", None)

    if "name" in changes and changes["name"] != doc["name"]:
        if _name_taken(db, user_id, changes["name"], exclude_id=doc["_id"]):
            raise DuplicateName()

    if changes:
        changes["updated_at"] = utcnow()
        try:
            db[COLLECTION].update_one({"_id": doc["_id"]}, {"$set": changes})
        except DuplicateKeyError:
            raise DuplicateName()
    return db[COLLECTION].find_one({"_id": doc["_id"]})


def delete_category(db: Database, category_id: str, user_id: str) -> Tuple[DeleteOutcome, int]:
    """
    Remove a custom category, or deactivate it when reports still use it.

    Returns the outcome and the number of the user's reports whose ledger
    references the category by name.
    """
    from reports import count_referencing_category

    doc = get_owned_category(db, category_id, user_id)
    referencing = count_referencing_category(db, user_id, doc["name"])
    if referencing > 0:
        db[COLLECTION].update_one(
            {"_id": doc["_id"]}, {"$set": {"is_active": False, "updated_at": utcnow()}}
        )
        logger.info("Category %s deactivated, used in %d report(s)", doc["_id"], referencing)
        return DeleteOutcome.DEACTIVATED, referencing

    db[COLLECTION].delete_one({"_id": doc["_id"]})
    logger.info("Category %s deleted", doc["_id"])
    return DeleteOutcome.DELETED, 0


def reactivate_category(db: Database, category_id: str, user_id: str) -> dict:
    # No name re-check here; the unique index still rejects a clash.
    doc = get_owned_category(db, category_id, user_id)
    try:
        db[COLLECTION].update_one(
            {"_id": doc["_id"]}, {"$set": {"is_active": True, "updated_at": utcnow()}}
        )
    except DuplicateKeyError:
        raise DuplicateName()
    return db[COLLECTION].find_one({"_id": doc["_id"]})


def _default_documents() -> List[CategorySchema]:
    return [CategorySchema(is_default=True, **entry) for entry in DEFAULT_CATEGORIES]


def seed_defaults(db: Database) -> int:
    """Insert the default categories unless a global category already exists."""
    if db[COLLECTION].count_documents({"is_default": True}) > 0:
        return 0
    for category in _default_documents():
        create_document(db, COLLECTION, category)
    logger.info("Created %d default categories", len(DEFAULT_CATEGORIES))
    return len(DEFAULT_CATEGORIES)


def reset_defaults(db: Database) -> int:
    """Drop every global category and insert the default set again."""
    removed = db[COLLECTION].delete_many({"is_default": True}).deleted_count
    logger.info("Removed %d default categories", removed)
    for category in _default_documents():
        create_document(db, COLLECTION, category)
    return len(DEFAULT_CATEGORIES)
