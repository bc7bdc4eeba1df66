"""
Swap lifecycle

    pending --accept--> accepted --complete--> completed --rate--> (rated)
    pending --reject--> rejected
    pending --cancel--> cancelled

Each transition is one conditional update that only matches while the swap
is still in the expected prior status, so two racing requests cannot both
move the same swap.
"""
import logging
from typing import Any, Dict, Iterable, List, Optional

from bson import ObjectId
from pymongo import DESCENDING, ReturnDocument
from pymongo.database import Database
from pymongo.errors import DuplicateKeyError, PyMongoError

from database import now, oid
from errors import (AuthorizationError, ConflictError, InvalidSkillError, InvalidStateError, NotFoundError,
                    ValidationError)
from ratings import apply_rating
from schemas import IN_FLIGHT_STATUSES, SWAP_STATUSES, Swap, SwapCreate, SwapRating

logger = logging.getLogger(__name__)

RECIPIENT = "recipient"
REQUESTER = "requester"
PARTICIPANT = "participant"
DUPLICATE_SWAP = "A swap request already exists between you and this user"

# action -> (required prior status, new status, who may do it, messages)
TRANSITIONS = {
    "accept": ("pending", "accepted", RECIPIENT,
               "Only the recipient can accept a swap", "Swap is not in pending status"),
    "reject": ("pending", "rejected", RECIPIENT,
               "Only the recipient can reject a swap", "Swap is not in pending status"),
    "cancel": ("pending", "cancelled", REQUESTER,
               "Only the requester can cancel a swap", "Can only cancel pending swaps"),
    "complete": ("accepted", "completed", PARTICIPANT,
                 "Not authorized to complete this swap", "Swap must be accepted before completion"),
}


def offers_skill(user: Dict[str, Any], skill_name: str) -> bool:
    wanted = skill_name.strip().lower()
    return any((s.get("name") or "").strip().lower() == wanted for s in user.get("skillsOffered") or [])


def _is_participant(swap: Dict[str, Any], user_id: Any) -> bool:
    return user_id in (swap.get("requester"), swap.get("recipient"))


def _may(role: str, swap: Dict[str, Any], user_id: Any) -> bool:
    if role == PARTICIPANT:
        return _is_participant(swap, user_id)
    return swap.get(role) == user_id


def pair_key(a: ObjectId, b: ObjectId) -> str:
    """Order-independent key of a user pair; set on a swap only while it is in flight."""
    return ":".join(sorted((str(a), str(b))))


def in_flight_between(db: Database, a: ObjectId, b: ObjectId) -> Optional[Dict[str, Any]]:
    return db["swap"].find_one({
        "$or": [{"requester": a, "recipient": b}, {"requester": b, "recipient": a}],
        "status": {"$in": list(IN_FLIGHT_STATUSES)},
    })


def load_swap(db: Database, swap_id: Any) -> Dict[str, Any]:
    swap = db["swap"].find_one({"_id": oid(swap_id, "swap ID")})
    if not swap:
        raise NotFoundError("Swap not found")
    return swap


def create_swap(db: Database, requester: Dict[str, Any], payload: SwapCreate) -> Dict[str, Any]:
    requester_id = requester["_id"]
    recipient_id = oid(payload.recipientId, "recipient ID")
    if recipient_id == requester_id:
        raise ValidationError("You cannot request a swap with yourself")

    recipient = db["user"].find_one({"_id": recipient_id})
    if not recipient:
        raise NotFoundError("Recipient not found")
    if not recipient.get("isPublic", True):
        raise AuthorizationError("Cannot send request to private profile")
    if not offers_skill(recipient, payload.requestedSkill.name):
        raise InvalidSkillError("Recipient does not offer this skill")
    if not offers_skill(requester, payload.offeredSkill.name):
        raise InvalidSkillError("You do not offer this skill")

    if in_flight_between(db, requester_id, recipient_id):
        raise ConflictError(DUPLICATE_SWAP)

    stamp = now()
    doc = Swap(
        requester=str(requester_id),
        recipient=str(recipient_id),
        requestedSkill=payload.requestedSkill,
        offeredSkill=payload.offeredSkill,
        message=payload.message,
        scheduledDate=payload.scheduledDate,
    ).model_dump()
    doc.update(requester=requester_id, recipient=recipient_id, activePair=pair_key(requester_id, recipient_id),
               created_at=stamp, updated_at=stamp)
    try:
        doc["_id"] = db["swap"].insert_one(doc).inserted_id
    except DuplicateKeyError:
        raise ConflictError(DUPLICATE_SWAP)
    logger.info("Swap %s requested by %s from %s", doc["_id"], requester_id, recipient_id)
    return doc


def transition(db: Database, swap_id: Any, caller_id: ObjectId, action: str) -> Dict[str, Any]:
    if action not in TRANSITIONS:
        raise ValidationError(f"Unknown swap action: {action}")
    prior, target, role, forbidden_msg, state_msg = TRANSITIONS[action]

    swap = load_swap(db, swap_id)
    if not _may(role, swap, caller_id):
        raise AuthorizationError(forbidden_msg)

    stamp = now()
    changes = {"status": target, "updated_at": stamp}
    if target == "completed":
        changes["completedDate"] = stamp
    update = {"$set": changes}
    if target not in IN_FLIGHT_STATUSES:
        update["$unset"] = {"activePair": ""}
    updated = db["swap"].find_one_and_update(
        {"_id": swap["_id"], "status": prior},
        update,
        return_document=ReturnDocument.AFTER,
    )
    if updated is None:
        raise InvalidStateError(state_msg)

    if target == "completed":
        db["user"].update_many(
            {"_id": {"$in": [updated["requester"], updated["recipient"]]}},
            {"$inc": {"swapsCompleted": 1}},
        )
    logger.info("Swap %s %s -> %s by %s", updated["_id"], prior, target, caller_id)
    return updated


def rate_swap(db: Database, swap_id: Any, caller_id: ObjectId, score: int, comment: Optional[str]) -> Dict[str, Any]:
    """Write the caller's one-shot rating and credit it to the other party."""
    swap = load_swap(db, swap_id)
    if not _is_participant(swap, caller_id):
        raise AuthorizationError("Not authorized to rate this swap")
    if swap.get("status") != "completed":
        raise InvalidStateError("Can only rate completed swaps")

    is_requester = swap["requester"] == caller_id
    slot = "requesterRating" if is_requester else "recipientRating"
    if swap.get(slot):
        raise ConflictError("You have already rated this swap")

    stamp = now()
    updated = db["swap"].find_one_and_update(
        {"_id": swap["_id"], "status": "completed", slot: None},
        {"$set": {slot: SwapRating(rating=score, comment=comment, date=stamp).model_dump(), "updated_at": stamp}},
        return_document=ReturnDocument.AFTER,
    )
    if updated is None:
        current = load_swap(db, swap["_id"])
        if current.get("status") != "completed":
            raise InvalidStateError("Can only rate completed swaps")
        raise ConflictError("You have already rated this swap")

    rated_user = swap["recipient"] if is_requester else swap["requester"]
    try:
        apply_rating(db, rated_user, caller_id, swap["_id"], score, comment, stamp)
    except (NotFoundError, PyMongoError):
        # release the slot so the rating can be retried
        db["swap"].update_one({"_id": swap["_id"]}, {"$set": {slot: None}})
        logger.error("Rating on swap %s was not credited to %s; slot released", swap["_id"], rated_user)
        raise
    return updated


def list_user_swaps(db: Database, user_id: ObjectId, status: Optional[str] = None) -> List[Dict[str, Any]]:
    query: Dict[str, Any] = {"$or": [{"requester": user_id}, {"recipient": user_id}]}
    if status:
        if status not in SWAP_STATUSES:
            raise ValidationError("status must be one of: " + ", ".join(SWAP_STATUSES))
        query["status"] = status
    return list(db["swap"].find(query).sort("created_at", DESCENDING))


def get_swap_for(db: Database, swap_id: Any, caller: Dict[str, Any]) -> Dict[str, Any]:
    swap = load_swap(db, swap_id)
    if not caller.get("isAdmin") and not _is_participant(swap, caller["_id"]):
        raise AuthorizationError("Not authorized to view this swap")
    return swap


# ---------- Serialization ----------

def _people(db: Database, ids: Iterable[ObjectId], with_email: bool) -> Dict[ObjectId, Dict[str, Any]]:
    projection = {"name": 1, "profilePhoto": 1}
    if with_email:
        projection["email"] = 1
    out = {}
    for person in db["user"].find({"_id": {"$in": list(set(ids))}}, projection):
        card = {"id": str(person["_id"]), "name": person.get("name"), "profilePhoto": person.get("profilePhoto")}
        if with_email:
            card["email"] = person.get("email")
        out[person["_id"]] = card
    return out


def _rating_out(slot: Optional[Dict[str, Any]]) -> Optional[Dict[str, Any]]:
    if not slot:
        return None
    return {"rating": slot.get("rating"), "comment": slot.get("comment"), "date": slot.get("date")}


def serialize_swaps(db: Database, swaps: List[Dict[str, Any]], with_email: bool = False) -> List[Dict[str, Any]]:
    people = _people(db, [s[k] for s in swaps for k in (REQUESTER, RECIPIENT)], with_email)
    out = []
    for s in swaps:
        out.append({
            "id": str(s["_id"]),
            "requester": people.get(s["requester"], {"id": str(s["requester"])}),
            "recipient": people.get(s["recipient"], {"id": str(s["recipient"])}),
            "requestedSkill": s.get("requestedSkill"),
            "offeredSkill": s.get("offeredSkill"),
            "status": s.get("status"),
            "message": s.get("message"),
            "scheduledDate": s.get("scheduledDate"),
            "completedDate": s.get("completedDate"),
            "requesterRating": _rating_out(s.get("requesterRating")),
            "recipientRating": _rating_out(s.get("recipientRating")),
            "created_at": s.get("created_at"),
            "updated_at": s.get("updated_at"),
        })
    return out


def serialize_swap(db: Database, swap: Dict[str, Any], with_email: bool = False) -> Dict[str, Any]:
    return serialize_swaps(db, [swap], with_email)[0]
