"""
User profiles, skill lists and discovery
"""
import logging
import os
import re
import uuid
from typing import Any, Dict, List, Optional

from bson import ObjectId
from pymongo import DESCENDING, ReturnDocument
from pymongo.database import Database
from pymongo.errors import DuplicateKeyError

from config import ALLOWED_IMAGE_EXTENSIONS, MAX_UPLOAD_BYTES, UPLOAD_DIR
from database import now, oid
from errors import AuthorizationError, NotFoundError, ValidationError
from ratings import rating_summary, recent_reviews
from schemas import Availability, ProfileUpdate, RegisterRequest, User
from security import hash_password, verify_password

logger = logging.getLogger(__name__)

SKILL_LISTS = {"offered": "skillsOffered", "wanted": "skillsWanted"}
AVAILABILITY_FLAGS = ("weekdays", "weekends", "evenings", "mornings")


def _skill_out(skill: Dict[str, Any]) -> Dict[str, Any]:
    out = {k: v for k, v in skill.items() if k != "_id"}
    out["id"] = str(skill["_id"])
    return out


def serialize_user(user: Dict[str, Any], private: bool = False) -> Dict[str, Any]:
    """Profile without secrets; ``private`` keeps the email for the owner's own view."""
    summary = rating_summary(user)
    out = {
        "id": str(user["_id"]),
        "name": user.get("name"),
        "location": user.get("location"),
        "bio": user.get("bio"),
        "profilePhoto": user.get("profilePhoto"),
        "isPublic": user.get("isPublic", True),
        "availability": user.get("availability") or Availability().model_dump(),
        "skillsOffered": [_skill_out(s) for s in user.get("skillsOffered") or []],
        "skillsWanted": [_skill_out(s) for s in user.get("skillsWanted") or []],
        "rating": summary,
        "ratingAverage": summary["average"],
        "ratingCount": summary["count"],
        "swapsCompleted": user.get("swapsCompleted", 0),
        "created_at": user.get("created_at"),
    }
    if private:
        out["email"] = user.get("email")
    return out


def public_profile(db: Database, user: Dict[str, Any]) -> Dict[str, Any]:
    out = serialize_user(user)
    out["recentReviews"] = recent_reviews(db, user)
    return out


# ---------- Accounts ----------

def register_user(db: Database, payload: RegisterRequest) -> Dict[str, Any]:
    email = str(payload.email).strip().lower()
    if db["user"].find_one({"email": email}):
        raise ValidationError("Email already registered")
    stamp = now()
    doc = User(
        name=payload.name,
        email=email,
        password_hash=hash_password(payload.password),
        location=payload.location,
    ).model_dump()
    doc.update(created_at=stamp, updated_at=stamp)
    try:
        doc["_id"] = db["user"].insert_one(doc).inserted_id
    except DuplicateKeyError:
        raise ValidationError("Email already registered")
    logger.info("Registered user %s", doc["_id"])
    return doc


def authenticate(db: Database, email: str, password: str) -> Dict[str, Any]:
    user = db["user"].find_one({"email": email.strip().lower()})
    if not user or not verify_password(password, user.get("password_hash", "")):
        raise ValidationError("Invalid email or password")
    return user


def get_user(db: Database, user_id: Any) -> Dict[str, Any]:
    user = db["user"].find_one({"_id": oid(user_id, "user ID")})
    if not user:
        raise NotFoundError("User not found")
    return user


def get_public_user(db: Database, user_id: Any) -> Dict[str, Any]:
    user = get_user(db, user_id)
    if not user.get("isPublic", True):
        raise AuthorizationError("Profile is private")
    return user


def update_profile(db: Database, user_id: ObjectId, payload: ProfileUpdate) -> Dict[str, Any]:
    changes = payload.model_dump(exclude_unset=True, exclude={"availability"})
    for key in ("name", "isPublic"):
        if key in changes and changes[key] is None:
            del changes[key]
    # availability is merged flag by flag, untouched flags keep their stored value
    if payload.availability is not None:
        for key, value in payload.availability.model_dump(exclude_unset=True).items():
            changes[f"availability.{key}"] = value
    changes["updated_at"] = now()
    user = db["user"].find_one_and_update({"_id": user_id}, {"$set": changes}, return_document=ReturnDocument.AFTER)
    if not user:
        raise NotFoundError("User not found")
    return user


def save_profile_photo(db: Database, user_id: ObjectId, filename: str, content_type: Optional[str],
                       data: bytes) -> Dict[str, Any]:
    ext = os.path.splitext(filename or "")[1].lower()
    if ext not in ALLOWED_IMAGE_EXTENSIONS or not (content_type or "").startswith("image/"):
        raise ValidationError("Only image files are allowed!")
    if not data:
        raise ValidationError("No file uploaded")
    if len(data) > MAX_UPLOAD_BYTES:
        raise ValidationError("File too large")

    os.makedirs(UPLOAD_DIR, exist_ok=True)
    stored = f"profile-{uuid.uuid4().hex}{ext}"
    with open(os.path.join(UPLOAD_DIR, stored), "wb") as fh:
        fh.write(data)
    photo_url = f"/uploads/{stored}"
    user = db["user"].find_one_and_update(
        {"_id": user_id},
        {"$set": {"profilePhoto": photo_url, "updated_at": now()}},
        return_document=ReturnDocument.AFTER,
    )
    return {"user": serialize_user(user, private=True), "photoUrl": photo_url}


# ---------- Skills ----------

def add_skill(db: Database, user_id: ObjectId, kind: str, skill: Dict[str, Any]) -> List[Dict[str, Any]]:
    field = SKILL_LISTS[kind]
    name = skill["name"].strip()
    entry = dict(skill, name=name, _id=ObjectId())
    same_name = {"name": {"$regex": f"^\\s*{re.escape(name)}\\s*$", "$options": "i"}}
    user = db["user"].find_one_and_update(
        {"_id": user_id, field: {"$not": {"$elemMatch": same_name}}},
        {"$push": {field: entry}, "$set": {"updated_at": now()}},
        return_document=ReturnDocument.AFTER,
    )
    if user is None:
        get_user(db, user_id)
        raise ValidationError("Skill already exists")
    return [_skill_out(s) for s in user.get(field) or []]


def remove_skill(db: Database, user_id: ObjectId, kind: str, skill_id: str) -> List[Dict[str, Any]]:
    field = SKILL_LISTS[kind]
    user = db["user"].find_one_and_update(
        {"_id": user_id},
        {"$pull": {field: {"_id": oid(skill_id, "skill ID")}}, "$set": {"updated_at": now()}},
        return_document=ReturnDocument.AFTER,
    )
    if user is None:
        raise NotFoundError("User not found")
    return [_skill_out(s) for s in user.get(field) or []]


# ---------- Discovery ----------

def _contains(text: str) -> Dict[str, Any]:
    return {"$regex": re.escape(text), "$options": "i"}


def browse_users(db: Database, skill: Optional[str] = None, location: Optional[str] = None,
                 availability: Optional[str] = None) -> List[Dict[str, Any]]:
    query: Dict[str, Any] = {"isPublic": True}
    if skill:
        query["$or"] = [{"skillsOffered.name": _contains(skill)}, {"skillsWanted.name": _contains(skill)}]
    if location:
        query["location"] = _contains(location)
    if availability:
        for flag in (a.strip() for a in availability.split(",") if a.strip()):
            if flag not in AVAILABILITY_FLAGS:
                raise ValidationError("availability must be a comma list of: " + ", ".join(AVAILABILITY_FLAGS))
            query[f"availability.{flag}"] = True
    users = db["user"].find(query).sort("created_at", DESCENDING)
    return [public_profile(db, u) for u in users]


def search_users(db: Database, q: Optional[str]) -> List[Dict[str, Any]]:
    if not q or not q.strip():
        raise ValidationError("Search query is required")
    q = q.strip()
    users = db["user"].find({
        "isPublic": True,
        "$or": [
            {"skillsOffered.name": _contains(q)},
            {"skillsWanted.name": _contains(q)},
            {"name": _contains(q)},
        ],
    }).sort("created_at", DESCENDING)
    return [serialize_user(u) for u in users]


def all_users(db: Database) -> List[Dict[str, Any]]:
    return [serialize_user(u, private=True) for u in db["user"].find({}).sort("created_at", DESCENDING)]


def popular_skills(db: Database, limit: int = 20) -> List[Dict[str, Any]]:
    counts: Dict[str, Dict[str, Any]] = {}
    for user in db["user"].find({"isPublic": True}, {"skillsOffered": 1, "skillsWanted": 1}):
        for field, key in (("skillsOffered", "offered"), ("skillsWanted", "wanted")):
            for skill in user.get(field) or []:
                name = (skill.get("name") or "").strip()
                if not name:
                    continue
                entry = counts.setdefault(name.lower(), {"name": name, "offered": 0, "wanted": 0})
                entry[key] += 1
    ranked = [dict(c, total=c["offered"] + c["wanted"]) for c in counts.values()]
    ranked.sort(key=lambda c: c["total"], reverse=True)
    return ranked[:limit]


def skill_suggestions(db: Database, q: Optional[str], limit: int = 10) -> List[str]:
    if not q or len(q.strip()) < 2:
        return []
    needle = q.strip().lower()
    found = set()
    for user in db["user"].find({"isPublic": True}, {"skillsOffered": 1, "skillsWanted": 1}):
        for skill in (user.get("skillsOffered") or []) + (user.get("skillsWanted") or []):
            name = skill.get("name") or ""
            if needle in name.lower():
                found.add(name)
    return sorted(found)[:limit]
