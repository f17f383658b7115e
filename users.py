"""
Credential store: user records, password hashing and the signature image.
"""

import logging
from functools import lru_cache
from typing import Any, Dict, Optional

from passlib.context import CryptContext
from pymongo.database import Database
from pymongo.errors import DuplicateKeyError

from database import create_document, parse_object_id, serialize, to_mongo, utcnow
from errors import DuplicateUser, InvalidLogin, NotFound, ValidationFailed
from schemas import FullProfileUpdate, ProfileUpdate, RegisterRequest, User as UserSchema
from settings import get_settings
from uploads import store_signature_file, validate_data_url

logger = logging.getLogger(__name__)

COLLECTION = "user"


@lru_cache
def get_pwd_context(rounds: int) -> CryptContext:
    return CryptContext(schemes=["bcrypt"], deprecated="auto", bcrypt__rounds=rounds)


def get_password_hash(password: str) -> str:
    return get_pwd_context(get_settings().bcrypt_rounds).hash(password)


def verify_password(plain_password: str, hashed_password: str) -> bool:
    if not hashed_password:
        return False
    return get_pwd_context(get_settings().bcrypt_rounds).verify(plain_password, hashed_password)


def get_user_by_id(db: Database, user_id: str) -> Optional[dict]:
    try:
        oid = parse_object_id(user_id)
    except ValidationFailed:
        return None
    return db[COLLECTION].find_one({"_id": oid})


def user_out(doc: Dict[str, Any]) -> Dict[str, Any]:
    out = serialize(doc)
    out["full_name"] = f"{doc.get('name', '')} {doc.get('surname', '')}".strip()
    return out


def register_user(db: Database, payload: RegisterRequest) -> dict:
    email = payload.email.lower()
    existing = db[COLLECTION].find_one(
        {"$or": [{"email": email}, {"fiscal_code": payload.fiscal_code}]}
    )
    if existing:
        raise DuplicateUser()

    user_doc = UserSchema(
        name=payload.name,
        surname=payload.surname,
        email=email,
        password_hash=get_password_hash(payload.password),
        fiscal_code=payload.fiscal_code,
        phone=payload.phone,
        address=payload.address,
        role=payload.role,
    )
    try:
        user_id = create_document(db, COLLECTION, user_doc)
    except DuplicateKeyError:
        raise DuplicateUser()
    logger.info("Registered user %s (%s)", user_id, payload.role.value)
    return db[COLLECTION].find_one({"_id": parse_object_id(user_id)})


def login(db: Database, email: str, password: str) -> dict:
    user = db[COLLECTION].find_one({"email": email.lower(), "is_active": True})
    if not user or not verify_password(password, user.get("password_hash", "")):
        logger.info("Failed login for %s", email)
        raise InvalidLogin()

    now = utcnow()
    db[COLLECTION].update_one({"_id": user["_id"]}, {"$set": {"last_login": now, "updated_at": now}})
    logger.info("User %s logged in", user["_id"])
    user["last_login"] = now
    return user


def _apply_update(db: Database, user: dict, changes: Dict[str, Any]) -> dict:
    if changes:
        changes["updated_at"] = utcnow()
        db[COLLECTION].update_one({"_id": user["_id"]}, {"$set": to_mongo(changes)})
    return db[COLLECTION].find_one({"_id": user["_id"]})


def update_profile(db: Database, user: dict, payload: ProfileUpdate) -> dict:
    return _apply_update(db, user, payload.model_dump(exclude_unset=True))


def update_full_profile(db: Database, user: dict, payload: FullProfileUpdate) -> dict:
    changes = payload.model_dump(exclude_unset=True)
    if changes.get("pec"):
        changes["pec"] = changes["pec"].lower()
    return _apply_update(db, user, changes)


def check_password(user: dict, password: str) -> None:
    """Re-confirm the caller's password before a sensitive change."""
    if not verify_password(password, user.get("password_hash", "")):
        raise ValidationFailed("Wrong password", details=[{"field": "password", "message": "Wrong password"}])


def verify_password_for(user: dict, password: str) -> bool:
    return verify_password(password, user.get("password_hash", ""))


def upload_signature_data_url(db: Database, user: dict, password: str, data_url: str) -> dict:
    check_password(user, password)
    validate_data_url(data_url)
    logger.info("Stored inline signature for user %s", user["_id"])
    return _apply_update(db, user, {"signature_image": data_url})


def upload_signature_file(db: Database, user: dict, content_type: str, filename: str, data: bytes) -> dict:
    path = store_signature_file(str(user["_id"]), content_type, filename, data)
    logger.info("Stored signature file %s for user %s", path, user["_id"])
    return _apply_update(db, user, {"signature_image": path})


def delete_signature(db: Database, user: dict, password: str) -> dict:
    check_password(user, password)
    if not user.get("signature_image"):
        raise NotFound("No signature to delete")
    return _apply_update(db, user, {"signature_image": None})
