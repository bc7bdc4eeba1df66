"""
Rating aggregation and review moderation

Every rating a user receives is stored as an entry in that user's
``ratings`` array, next to a running ``rating`` summary of ``{total, count}``.
Both are written by one single-document update, so the summary can never
drift from the entries and concurrent raters cannot lose an increment.
The average is derived on read.

``rescan_rating_summary`` rebuilds the summary from the swap collection and
is kept for repairs.
"""
import csv
import io
import logging
from datetime import datetime
from typing import Any, Dict, List, Optional

from bson import ObjectId
from pymongo.database import Database

from database import now, oid
from errors import AuthorizationError, ConflictError, NotFoundError, ValidationError
from schemas import Rating

logger = logging.getLogger(__name__)

REVIEW_SORTS = ("date", "rating")


def rating_summary(user: Dict[str, Any]) -> Dict[str, Any]:
    summary = user.get("rating") or {}
    count = int(summary.get("count", 0))
    total = int(summary.get("total", 0))
    return {"average": total / count if count else 0, "count": count}


def received_slot(swap: Dict[str, Any], user_id: ObjectId) -> Optional[str]:
    """Name of the swap slot holding the rating addressed to ``user_id``."""
    if swap.get("recipient") == user_id:
        return "requesterRating"
    if swap.get("requester") == user_id:
        return "recipientRating"
    return None


def apply_rating(db: Database, rated_user_id: ObjectId, reviewer_id: ObjectId, swap_id: ObjectId,
                 score: int, comment: Optional[str], date: Optional[datetime] = None) -> Dict[str, Any]:
    entry = Rating(reviewer=str(reviewer_id), swap=str(swap_id), rating=score, comment=comment,
                   date=date or now()).model_dump()
    entry.update(_id=ObjectId(), reviewer=reviewer_id, swap=swap_id)
    result = db["user"].update_one(
        {"_id": rated_user_id},
        {
            "$push": {"ratings": entry},
            "$inc": {"rating.total": score, "rating.count": 1},
            "$set": {"updated_at": now()},
        },
    )
    if result.matched_count == 0:
        raise NotFoundError("Rated user not found")
    logger.info("User %s received rating %d on swap %s", rated_user_id, score, swap_id)
    return entry


def rescan_rating_summary(db: Database, user_id: Any) -> Dict[str, Any]:
    """Recompute a user's summary by scanning all of their completed swaps."""
    uid = oid(user_id, "user ID")
    if not db["user"].find_one({"_id": uid}, {"_id": 1}):
        raise NotFoundError("User not found")

    swaps = db["swap"].find({
        "status": "completed",
        "$or": [
            {"recipient": uid, "requesterRating": {"$ne": None}},
            {"requester": uid, "recipientRating": {"$ne": None}},
        ],
    })
    total = 0
    count = 0
    for swap in swaps:
        slot = swap.get(received_slot(swap, uid)) or {}
        if slot.get("rating") and not slot.get("removed"):
            total += int(slot["rating"])
            count += 1

    db["user"].update_one({"_id": uid}, {"$set": {"rating": {"total": total, "count": count}, "updated_at": now()}})
    logger.info("Rescanned rating summary for user %s: %d ratings", uid, count)
    return {"average": total / count if count else 0, "count": count}


# ---------- Review presentation ----------

def _reviewer_lookup(db: Database, reviews: List[Dict[str, Any]]) -> Dict[ObjectId, Dict[str, Any]]:
    ids = list({r["reviewer"] for r in reviews if isinstance(r.get("reviewer"), ObjectId)})
    if not ids:
        return {}
    people = db["user"].find({"_id": {"$in": ids}}, {"name": 1, "profilePhoto": 1})
    return {p["_id"]: {"id": str(p["_id"]), "name": p.get("name"), "profilePhoto": p.get("profilePhoto")} for p in people}


def serialize_review(review: Dict[str, Any], reviewers: Dict[ObjectId, Dict[str, Any]]) -> Dict[str, Any]:
    response = review.get("response")
    return {
        "id": str(review["_id"]),
        "reviewer": reviewers.get(review.get("reviewer")),
        "rating": review.get("rating"),
        "comment": review.get("comment"),
        "date": review.get("date"),
        "helpfulCount": review.get("helpfulCount", 0),
        "notHelpfulCount": review.get("notHelpfulCount", 0),
        "verified": review.get("verified", False),
        "response": {"text": response.get("text"), "date": response.get("date")} if response else None,
    }


def recent_reviews(db: Database, user: Dict[str, Any], limit: int = 3) -> List[Dict[str, Any]]:
    latest = list(reversed((user.get("ratings") or [])[-limit:]))
    reviewers = _reviewer_lookup(db, latest)
    return [serialize_review(r, reviewers) for r in latest]


def _load_rated_user(db: Database, user_id: Any) -> Dict[str, Any]:
    user = db["user"].find_one({"_id": oid(user_id, "user ID")})
    if not user:
        raise NotFoundError("User not found")
    return user


def _find_review(user: Dict[str, Any], review_id: Any) -> Dict[str, Any]:
    rid = oid(review_id, "review ID")
    for review in user.get("ratings") or []:
        if review.get("_id") == rid:
            return review
    raise NotFoundError("Review not found")


def list_reviews(db: Database, user_id: Any, page: int = 1, limit: int = 10, sort: str = "date",
                 verified_only: bool = False) -> Dict[str, Any]:
    if page < 1 or limit < 1:
        raise ValidationError("page and limit must be positive")
    if sort not in REVIEW_SORTS:
        raise ValidationError("sort must be one of: " + ", ".join(REVIEW_SORTS))
    user = _load_rated_user(db, user_id)
    reviews = [r for r in user.get("ratings") or [] if r.get("verified") or not verified_only]
    if sort == "date":
        reviews.sort(key=lambda r: (r.get("date") is not None, r.get("date") or 0), reverse=True)
    else:
        reviews.sort(key=lambda r: r.get("rating", 0), reverse=True)

    start = (page - 1) * limit
    end = page * limit
    chunk = reviews[start:end]
    reviewers = _reviewer_lookup(db, chunk)
    total = len(reviews)
    return {
        "reviews": [serialize_review(r, reviewers) for r in chunk],
        "pagination": {
            "currentPage": page,
            "totalPages": (total + limit - 1) // limit,
            "totalReviews": total,
            "hasNextPage": end < total,
            "hasPrevPage": page > 1,
        },
    }


# ---------- Analytics ----------

def _month_keys(reference: datetime, months: int = 12) -> List[str]:
    keys = []
    year, month = reference.year, reference.month
    for _ in range(months):
        keys.append(f"{year:04d}-{month:02d}")
        month -= 1
        if month == 0:
            year, month = year - 1, 12
    return list(reversed(keys))


def _aggregate(reviews: List[Dict[str, Any]]) -> Dict[str, Any]:
    distribution = {str(score): 0 for score in range(1, 6)}
    trends = {key: {"month": key, "count": 0, "total": 0, "average": 0} for key in _month_keys(now())}
    total = 0
    for review in reviews:
        score = int(review.get("rating", 0))
        if str(score) in distribution:
            distribution[str(score)] += 1
        total += score
        date = review.get("date")
        if date is not None:
            bucket = trends.get(date.strftime("%Y-%m"))
            if bucket:
                bucket["count"] += 1
                bucket["total"] += score
                bucket["average"] = bucket["total"] / bucket["count"]
    count = len(reviews)
    return {
        "totalRatings": count,
        "averageRating": total / count if count else 0,
        "distribution": distribution,
        "distributionPercentages": {k: (v / count) * 100 if count else 0 for k, v in distribution.items()},
        "monthlyTrends": list(trends.values()),
    }


def user_rating_analytics(db: Database, user_id: Any) -> Dict[str, Any]:
    user = _load_rated_user(db, user_id)
    reviews = user.get("ratings") or []
    out = _aggregate(reviews)
    out["recentActivity"] = [
        {"rating": r.get("rating"), "date": r.get("date"), "hasComment": bool(r.get("comment"))}
        for r in reviews[-10:]
    ]
    return out


def platform_rating_analytics(db: Database) -> Dict[str, Any]:
    users = list(db["user"].find({"ratings.0": {"$exists": True}}, {"name": 1, "ratings": 1, "rating": 1}))
    reviews = [r for u in users for r in u.get("ratings") or []]
    out = _aggregate(reviews)
    out["totalUsers"] = len(users)
    ranked = sorted(users, key=lambda u: (rating_summary(u)["average"], rating_summary(u)["count"]), reverse=True)
    out["topRatedUsers"] = [
        {"id": str(u["_id"]), "name": u.get("name"),
         "ratingAverage": rating_summary(u)["average"], "ratingCount": rating_summary(u)["count"]}
        for u in ranked[:10]
    ]
    return out


# ---------- Moderation ----------

def _set_review_fields(db: Database, user_id: ObjectId, review_id: ObjectId, fields: Dict[str, Any]) -> None:
    update = {"$set": {f"ratings.$.{k}": v for k, v in fields.items()}}
    result = db["user"].update_one({"_id": user_id, "ratings._id": review_id}, update)
    if result.matched_count == 0:
        raise NotFoundError("Review not found")


def flag_review(db: Database, user_id: Any, review_id: Any, flagged_by: ObjectId, reason: str) -> None:
    user = _load_rated_user(db, user_id)
    review = _find_review(user, review_id)
    if review.get("flagged"):
        raise ValidationError("Review already flagged")
    _set_review_fields(db, user["_id"], review["_id"], {
        "flagged": True,
        "flaggedBy": flagged_by,
        "flaggedReason": reason,
        "flaggedDate": now(),
    })
    logger.info("Review %s on user %s flagged by %s", review["_id"], user["_id"], flagged_by)


def unflag_review(db: Database, user_id: Any, review_id: Any) -> None:
    user = _load_rated_user(db, user_id)
    review = _find_review(user, review_id)
    _set_review_fields(db, user["_id"], review["_id"], {
        "flagged": False, "flaggedBy": None, "flaggedReason": None, "flaggedDate": None,
    })


def flagged_reviews(db: Database) -> List[Dict[str, Any]]:
    out = []
    for user in db["user"].find({"ratings.flagged": True}, {"name": 1, "ratings": 1}):
        flagged = [r for r in user.get("ratings") or [] if r.get("flagged")]
        reviewers = _reviewer_lookup(db, flagged)
        for review in flagged:
            item = serialize_review(review, reviewers)
            item.update({
                "userId": str(user["_id"]),
                "userName": user.get("name"),
                "flaggedReason": review.get("flaggedReason"),
                "flaggedDate": review.get("flaggedDate"),
                "flaggedBy": str(review["flaggedBy"]) if review.get("flaggedBy") else None,
            })
            out.append(item)
    return out


def delete_review(db: Database, user_id: Any, review_id: Any) -> None:
    """Remove a review and take it out of the running summary in the same update."""
    user = _load_rated_user(db, user_id)
    review = _find_review(user, review_id)
    result = db["user"].update_one(
        {"_id": user["_id"], "ratings._id": review["_id"]},
        {
            "$pull": {"ratings": {"_id": review["_id"]}},
            "$inc": {"rating.total": -int(review["rating"]), "rating.count": -1},
            "$set": {"updated_at": now()},
        },
    )
    if result.matched_count == 0:
        raise NotFoundError("Review not found")

    # keep the rescan in agreement: the swap slot stays written but no longer counts
    swap = db["swap"].find_one({"_id": review.get("swap")})
    if swap:
        slot = received_slot(swap, user["_id"])
        if slot:
            db["swap"].update_one({"_id": swap["_id"]}, {"$set": {f"{slot}.removed": True}})
    logger.info("Review %s removed from user %s", review["_id"], user["_id"])


def vote_review(db: Database, user_id: Any, review_id: Any, voter_id: ObjectId, is_helpful: bool) -> Dict[str, int]:
    user = _load_rated_user(db, user_id)
    review = _find_review(user, review_id)
    votes = list(review.get("helpfulVotes") or [])
    for vote in votes:
        if vote.get("voter") == voter_id:
            vote["isHelpful"] = is_helpful
            vote["date"] = now()
            break
    else:
        votes.append({"voter": voter_id, "isHelpful": is_helpful, "date": now()})

    helpful = sum(1 for v in votes if v["isHelpful"])
    counts = {"helpfulCount": helpful, "notHelpfulCount": len(votes) - helpful}
    _set_review_fields(db, user["_id"], review["_id"], dict(counts, helpfulVotes=votes))
    return counts


def review_helpfulness(db: Database, user_id: Any, review_id: Any, viewer_id: Optional[ObjectId] = None) -> Dict[str, Any]:
    review = _find_review(_load_rated_user(db, user_id), review_id)
    votes = review.get("helpfulVotes") or []
    mine = next((v["isHelpful"] for v in votes if viewer_id is not None and v.get("voter") == viewer_id), None)
    return {
        "helpfulCount": review.get("helpfulCount", 0),
        "notHelpfulCount": review.get("notHelpfulCount", 0),
        "totalVotes": len(votes),
        "userVote": mine,
    }


def respond_to_review(db: Database, user_id: Any, review_id: Any, caller_id: ObjectId, text: str,
                      replace: bool = False) -> Dict[str, Any]:
    user = _load_rated_user(db, user_id)
    if user["_id"] != caller_id:
        raise AuthorizationError("You can only respond to reviews about yourself")
    review = _find_review(user, review_id)
    if review.get("response") and not replace:
        raise ConflictError("You have already responded to this review")
    if replace and not review.get("response"):
        raise ValidationError("No response to update")
    response = {"text": text, "date": now()}
    _set_review_fields(db, user["_id"], review["_id"], {"response": response})
    return response


def remove_review_response(db: Database, user_id: Any, review_id: Any) -> None:
    user = _load_rated_user(db, user_id)
    review = _find_review(user, review_id)
    _set_review_fields(db, user["_id"], review["_id"], {"response": None})


def set_review_verified(db: Database, user_id: Any, review_id: Any, admin_id: Any, verified: bool) -> None:
    user = _load_rated_user(db, user_id)
    review = _find_review(user, review_id)
    if verified:
        _set_review_fields(db, user["_id"], review["_id"], {
            "verified": True,
            "verifiedSwapId": review.get("swap"),
            "verifiedBy": admin_id,
            "verifiedDate": now(),
        })
    else:
        _set_review_fields(db, user["_id"], review["_id"], {
            "verified": False, "verifiedSwapId": None, "verifiedBy": None, "verifiedDate": None,
        })


def export_reviews_csv(db: Database, user_id: Any) -> str:
    user = _load_rated_user(db, user_id)
    reviews = user.get("ratings") or []
    reviewers = _reviewer_lookup(db, reviews)
    buf = io.StringIO()
    writer = csv.writer(buf)
    writer.writerow(["Date", "Reviewer", "Rating", "Comment", "Verified", "Helpful", "Not Helpful", "Response"])
    for review in reviews:
        reviewer = reviewers.get(review.get("reviewer")) or {}
        date = review.get("date")
        writer.writerow([
            date.strftime("%Y-%m-%d") if date else "",
            reviewer.get("name", "Anonymous"),
            review.get("rating"),
            review.get("comment") or "",
            "Yes" if review.get("verified") else "No",
            review.get("helpfulCount", 0),
            review.get("notHelpfulCount", 0),
            (review.get("response") or {}).get("text", ""),
        ])
    return buf.getvalue()
