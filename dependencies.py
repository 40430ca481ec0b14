"""FastAPI dependencies: database, configured services and the caller's identity."""

from typing import Any, Dict, List, Optional, Tuple

from fastapi import Depends, Request
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from pymongo.database import Database
from starlette.datastructures import UploadFile

from config import Settings
from database import object_id
from errors import ExternalServiceError, Forbidden, NotFound, Unauthorized, ValidationError
from media import CloudinaryMediaHost
from payments import StripeGateway
from security import Capability, TokenError, TokenExpired, has_capability, jwt_decode

bearer_scheme = HTTPBearer(auto_error=False)


def get_db(request: Request) -> Database:
    return request.app.state.db


def get_settings(request: Request) -> Settings:
    return request.app.state.settings


def get_payment_gateway(request: Request) -> StripeGateway:
    gateway = request.app.state.payment_gateway
    if gateway is None:
        raise ExternalServiceError("Payment gateway is not configured")
    return gateway


def get_media_host(request: Request) -> Optional[CloudinaryMediaHost]:
    return request.app.state.media_host


def require_media_host(request: Request) -> CloudinaryMediaHost:
    media_host = request.app.state.media_host
    if media_host is None:
        raise ExternalServiceError("Image upload is not configured")
    return media_host


def get_current_user(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer_scheme),
    db: Database = Depends(get_db),
    settings: Settings = Depends(get_settings),
) -> dict:
    if credentials is None or not credentials.credentials:
        raise Unauthorized("Access denied. No token provided.")
    try:
        payload = jwt_decode(credentials.credentials, settings.jwt_secret)
    except TokenExpired:
        raise Unauthorized("Token expired")
    except TokenError:
        raise Unauthorized("Invalid token")
    user_id = payload.get("sub")
    if not isinstance(user_id, str):
        raise Unauthorized("Invalid token")
    try:
        oid = object_id(user_id)
    except NotFound:
        raise Unauthorized("Invalid token")
    user = db["user"].find_one({"_id": oid}, {"password_hash": 0})
    if not user:
        raise Unauthorized("Invalid token. User not found.")
    return user


def require(capability: Capability):
    def checker(user: dict = Depends(get_current_user)) -> dict:
        if not has_capability(user.get("role", ""), capability):
            raise Forbidden("Access denied. Insufficient permissions.")
        return user

    return checker


async def read_payload(request: Request) -> Tuple[Dict[str, Any], List[UploadFile]]:
    """Read a JSON or multipart body; multipart files are returned separately."""
    content_type = request.headers.get("content-type", "")
    if content_type.startswith("multipart/form-data") or content_type.startswith("application/x-www-form-urlencoded"):
        form = await request.form()
        data: Dict[str, Any] = {}
        files: List[UploadFile] = []
        for key in form.keys():
            values = form.getlist(key)
            uploads = [v for v in values if isinstance(v, UploadFile)]
            if uploads:
                files.extend(u for u in uploads if u.filename)
                continue
            if key == "tags" or key == "images":
                data[key] = [t.strip() for v in values for t in str(v).split(",") if t.strip()]
            else:
                data[key] = values[-1]
        return data, files
    if not await request.body():
        return {}, []
    try:
        body = await request.json()
    except ValueError:
        raise ValidationError("Malformed JSON body")
    if not isinstance(body, dict):
        raise ValidationError("Request body must be a JSON object")
    return body, []
