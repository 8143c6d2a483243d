import logging
from typing import Any, Dict, List, Optional

from bson import ObjectId
from fastapi import HTTPException
from pymongo.database import Database
from pymongo.errors import DuplicateKeyError

from database import create_document, parse_object_id, utcnow
from schemas import LoginResponse, SignUpRequest, UpdatedUserOut, UpdateUserRequest, User as UserSchema, UserOut
from security import dummy_verify_password, hash_password, token_service, verify_password

logger = logging.getLogger(__name__)


def to_user_out(doc: Dict[str, Any]) -> UserOut:
    return UserOut(id=str(doc["_id"]), name=doc.get("name", ""), email=doc["email"])


def to_updated_user_out(doc: Dict[str, Any], previous_email: str) -> UpdatedUserOut:
    """Tokens are keyed on the email, so a changed email gets a new token."""
    token = None
    if doc["email"] != previous_email:
        token = token_service.issue(doc["email"], str(doc["_id"]))
        logger.info("Issued new token for user %s after email change", doc["_id"])
    return UpdatedUserOut(id=str(doc["_id"]), name=doc.get("name", ""), email=doc["email"], token=token)


def email_taken(db: Database, email: str) -> bool:
    return db["user"].count_documents({"email": email}, limit=1) > 0


def get_user(db: Database, user_id: str) -> Dict[str, Any]:
    user = db["user"].find_one({"_id": parse_object_id(user_id, "user")})
    if not user:
        raise HTTPException(status_code=404, detail=f"User not found with id {user_id}")
    return user


def list_users(db: Database) -> List[UserOut]:
    return [to_user_out(u) for u in db["user"].find().sort("name", 1)]


def create_user(db: Database, payload: SignUpRequest) -> Dict[str, Any]:
    if email_taken(db, payload.email):
        raise HTTPException(status_code=409, detail="Email address already in use.")
    user = UserSchema(name=payload.name, email=payload.email, password_hash=hash_password(payload.password))
    try:
        user_id = create_document(db, "user", user)
    except DuplicateKeyError:
        raise HTTPException(status_code=409, detail="Email address already in use.")
    logger.info("Created user %s", user_id)
    return db["user"].find_one({"_id": ObjectId(user_id)})


def authenticate_user(db: Database, email: str, password: str) -> Optional[Dict[str, Any]]:
    user = db["user"].find_one({"email": email})
    if not user:
        dummy_verify_password()
        return None
    if not verify_password(password, user.get("password_hash", "")):
        return None
    return user


def login(db: Database, username: str, password: str) -> LoginResponse:
    user = authenticate_user(db, username, password)
    if user is None:
        raise HTTPException(status_code=401, detail="Invalid credentials")
    user_id = str(user["_id"])
    token = token_service.issue(user["email"], user_id)
    logger.info("User %s logged in", user_id)
    return LoginResponse(user_id=user_id, name=user.get("name", ""), email=user["email"], token=token)


def update_user(db: Database, user_id: str, payload: UpdateUserRequest) -> Dict[str, Any]:
    user = get_user(db, user_id)
    changes: Dict[str, Any] = {}
    if payload.name is not None:
        changes["name"] = payload.name
    if payload.email is not None and payload.email != user["email"]:
        if email_taken(db, payload.email):
            raise HTTPException(status_code=409, detail="Email address already in use.")
        changes["email"] = payload.email
    if changes:
        changes["updated_at"] = utcnow()
        try:
            db["user"].update_one({"_id": user["_id"]}, {"$set": changes})
        except DuplicateKeyError:
            raise HTTPException(status_code=409, detail="Email address already in use.")
        user.update(changes)
    return user


def update_password(db: Database, user_id: str, current_password: str, new_password: str):
    user = get_user(db, user_id)
    if not verify_password(current_password, user.get("password_hash", "")):
        raise HTTPException(status_code=400, detail="Current password does not match.")
    db["user"].update_one(
        {"_id": user["_id"]},
        {"$set": {"password_hash": hash_password(new_password), "updated_at": utcnow()}},
    )
    logger.info("Password changed for user %s", user_id)


def delete_user(db: Database, user_id: str):
    user = get_user(db, user_id)
    oid = user["_id"]
    # owned aggregates go with the account
    for aggregate, items, key in (("cart", "cartitem", "cart_id"), ("wishlist", "wishlistitem", "wishlist_id")):
        owned = db[aggregate].find_one({"user_id": oid})
        if owned:
            db[items].delete_many({key: owned["_id"]})
            db[aggregate].delete_one({"_id": owned["_id"]})
    db["user"].delete_one({"_id": oid})
    logger.info("Deleted user %s", user_id)

