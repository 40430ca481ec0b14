"""User registration, login and profile management."""

from typing import Any, Dict, List, Optional

from pymongo.database import Database
from pymongo.errors import DuplicateKeyError
from starlette.datastructures import UploadFile

from config import Settings
from database import create_document, now
from errors import Conflict, NotFound, ValidationError
from log import get_logger
from media import CloudinaryMediaHost, check_image
from payloads import LoginRequest, ProfileUpdate, RegisterRequest, RegisterWithRoleRequest
from schemas import User
from security import Role, create_access_token, hash_password, verify_password

logger = get_logger(__name__)


def public_user(doc: Dict[str, Any]) -> Dict[str, Any]:
    return User.from_doc(doc).to_api()


def issue_token(user_id: str, settings: Settings) -> str:
    return create_access_token(user_id, settings.jwt_secret, settings.token_ttl_seconds)


def _ensure_unique(db: Database, email: Optional[str], phone: Optional[str], exclude=None) -> None:
    clauses = []
    if email:
        clauses.append({"email": email})
    if phone:
        clauses.append({"phone": phone})
    if not clauses:
        return
    query: Dict[str, Any] = {"$or": clauses}
    if exclude is not None:
        query["_id"] = {"$ne": exclude}
    existing = db["user"].find_one(query)
    if existing:
        if email and existing.get("email") == email:
            raise Conflict("Email already registered")
        raise Conflict("Phone number already registered")


async def _upload_profile_image(files: List[UploadFile], media_host: Optional[CloudinaryMediaHost]) -> Optional[str]:
    if not files:
        return None
    if media_host is None:
        raise ValidationError("Image upload is not configured")
    upload = files[0]
    content = await upload.read()
    check_image(upload.filename, upload.content_type, len(content))
    return media_host.upload_image(content, folder=f"{media_host.folder}/profiles").secure_url


async def register(
    db: Database,
    settings: Settings,
    payload: RegisterRequest,
    files: List[UploadFile],
    media_host: Optional[CloudinaryMediaHost],
    role: Role = Role.USER,
) -> Dict[str, Any]:
    _ensure_unique(db, payload.email, payload.phone)
    profile_image = await _upload_profile_image(files, media_host)
    doc = {
        "username": payload.username,
        "email": payload.email,
        "password_hash": hash_password(payload.password),
        "phone": payload.phone,
        "profile_image": profile_image,
        "role": role.value,
    }
    try:
        doc["_id"] = create_document(db, "user", doc)
    except DuplicateKeyError:
        # lost a race with a concurrent registration
        _ensure_unique(db, payload.email, payload.phone)
        raise
    logger.info("user registered", user_id=str(doc["_id"]), role=role.value)
    return {"user": public_user(doc), "token": issue_token(str(doc["_id"]), settings)}


async def register_with_role(db, settings, payload: RegisterWithRoleRequest, files, media_host) -> Dict[str, Any]:
    return await register(db, settings, payload, files, media_host, role=Role(payload.role))


def login(db: Database, settings: Settings, payload: LoginRequest) -> Dict[str, Any]:
    user = db["user"].find_one({"email": payload.email})
    if not user or not verify_password(payload.password, user.get("password_hash", "")):
        raise ValidationError("Invalid email or password")
    return {"user": public_user(user), "token": issue_token(str(user["_id"]), settings)}


async def update_profile(
    db: Database,
    user: Dict[str, Any],
    payload: ProfileUpdate,
    files: List[UploadFile],
    media_host: Optional[CloudinaryMediaHost],
) -> Dict[str, Any]:
    update: Dict[str, Any] = {}
    if payload.username:
        update["username"] = payload.username
    if payload.phone and payload.phone != user.get("phone"):
        _ensure_unique(db, None, payload.phone, exclude=user["_id"])
        update["phone"] = payload.phone
    profile_image = await _upload_profile_image(files, media_host)
    if profile_image:
        update["profile_image"] = profile_image
    if update:
        update["updated_at"] = now()
        db["user"].update_one({"_id": user["_id"]}, {"$set": update})
    fresh = db["user"].find_one({"_id": user["_id"]}, {"password_hash": 0})
    if not fresh:
        raise NotFound("User not found")
    return public_user(fresh)
