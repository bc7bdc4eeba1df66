import logging
import os
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import Depends, FastAPI, File, Query, UploadFile, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import Response
from fastapi.staticfiles import StaticFiles
from pymongo.database import Database
from pymongo.errors import PyMongoError

import profiles
import ratings
import swaps
from config import DATABASE_URL, LOG_LEVEL, MAX_UPLOAD_BYTES, PORT, UPLOAD_DIR
from database import ensure_indexes, get_db
from errors import AuthorizationError, ValidationError, register_error_handlers
from schemas import (AdminLoginRequest, FlagRequest, LoginRequest, ProfileUpdate, RateRequest, RegisterRequest,
                     RespondRequest, SkillOfferedIn, SkillWantedIn, SwapCreate, VoteRequest)
from security import (admin_identity, check_admin_credentials, create_user_token, get_current_user, require_admin,
                      require_member)

logging.basicConfig(level=LOG_LEVEL, format="%(asctime)s %(levelname)s %(name)s: %(message)s")
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    database = app.dependency_overrides.get(get_db, get_db)()
    try:
        ensure_indexes(database)
    except PyMongoError as e:
        # keep serving; /test reports the database state
        logger.error("Could not ensure indexes: %s", e)
    yield


# App setup
app = FastAPI(title="SkillSwap API", lifespan=lifespan)
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)
register_error_handlers(app)
app.mount("/uploads", StaticFiles(directory=UPLOAD_DIR, check_dir=False), name="uploads")


def auth_payload(user: dict) -> dict:
    return {"token": create_user_token(user["_id"]), "user": profiles.serialize_user(user, private=True)}


# Routes
@app.get("/")
def root():
    return {"message": "SkillSwap API"}


@app.get("/test")
def test_database(db: Database = Depends(get_db)):
    response = {
        "backend": "ok",
        "database": "not available",
        "database_url": "set" if os.getenv("DATABASE_URL") else f"default ({DATABASE_URL})",
        "database_name": None,
        "collections": [],
    }
    try:
        response["collections"] = db.list_collection_names()
        response["database_name"] = db.name
        response["database"] = "ok"
    except Exception as e:
        logger.warning("Database check failed: %s", e)
        response["database"] = f"error: {str(e)[:80]}"
    return response


# Auth
@app.post("/api/auth/register", status_code=status.HTTP_201_CREATED)
def register(payload: RegisterRequest, db: Database = Depends(get_db)):
    user = profiles.register_user(db, payload)
    return auth_payload(user)


@app.post("/api/auth/login")
def login(payload: LoginRequest, db: Database = Depends(get_db)):
    user = profiles.authenticate(db, str(payload.email), payload.password)
    return auth_payload(user)


@app.post("/api/auth/admin-login")
def admin_login(payload: AdminLoginRequest):
    token = check_admin_credentials(payload.adminId, payload.password)
    admin = admin_identity()
    return {"token": token, "user": {k: v for k, v in admin.items() if k != "_id"}}


@app.get("/api/auth/me")
def me(user=Depends(get_current_user)):
    if user.get("isAdmin"):
        return {k: v for k, v in user.items() if k != "_id"}
    return profiles.serialize_user(user, private=True)


# Users: own profile and skills
@app.get("/api/users/profile")
def get_profile(user=Depends(require_member)):
    return profiles.serialize_user(user, private=True)


@app.put("/api/users/profile")
def update_profile(payload: ProfileUpdate, user=Depends(require_member), db: Database = Depends(get_db)):
    updated = profiles.update_profile(db, user["_id"], payload)
    return profiles.serialize_user(updated, private=True)


@app.post("/api/users/profile-photo")
async def upload_profile_photo(photo: UploadFile = File(...), user=Depends(require_member),
                               db: Database = Depends(get_db)):
    data = await photo.read(MAX_UPLOAD_BYTES + 1)
    return profiles.save_profile_photo(db, user["_id"], photo.filename, photo.content_type, data)


@app.post("/api/users/skills-offered")
def add_skill_offered(payload: SkillOfferedIn, user=Depends(require_member), db: Database = Depends(get_db)):
    return profiles.add_skill(db, user["_id"], "offered", payload.model_dump())


@app.post("/api/users/skills-wanted")
def add_skill_wanted(payload: SkillWantedIn, user=Depends(require_member), db: Database = Depends(get_db)):
    return profiles.add_skill(db, user["_id"], "wanted", payload.model_dump())


@app.delete("/api/users/skills-offered/{skill_id}")
def remove_skill_offered(skill_id: str, user=Depends(require_member), db: Database = Depends(get_db)):
    return profiles.remove_skill(db, user["_id"], "offered", skill_id)


@app.delete("/api/users/skills-wanted/{skill_id}")
def remove_skill_wanted(skill_id: str, user=Depends(require_member), db: Database = Depends(get_db)):
    return profiles.remove_skill(db, user["_id"], "wanted", skill_id)


# Users: discovery
@app.get("/api/users/browse")
def browse(skill: Optional[str] = None, location: Optional[str] = None, availability: Optional[str] = None,
           db: Database = Depends(get_db)):
    return profiles.browse_users(db, skill=skill, location=location, availability=availability)


@app.get("/api/users/search")
def search(q: Optional[str] = None, db: Database = Depends(get_db)):
    return profiles.search_users(db, q)


# Admin endpoints
@app.get("/api/users/all")
def admin_all_users(admin=Depends(require_admin), db: Database = Depends(get_db)):
    return profiles.all_users(db)


@app.get("/api/users/admin/flagged-reviews")
def admin_flagged_reviews(admin=Depends(require_admin), db: Database = Depends(get_db)):
    return ratings.flagged_reviews(db)


@app.get("/api/users/admin/rating-analytics")
def admin_rating_analytics(admin=Depends(require_admin), db: Database = Depends(get_db)):
    return ratings.platform_rating_analytics(db)


@app.post("/api/users/{user_id}/rating/recompute")
def admin_recompute_rating(user_id: str, admin=Depends(require_admin), db: Database = Depends(get_db)):
    return ratings.rescan_rating_summary(db, user_id)


# Users: public profiles and reviews
@app.get("/api/users/{user_id}")
def get_user(user_id: str, db: Database = Depends(get_db)):
    user = profiles.get_public_user(db, user_id)
    return profiles.public_profile(db, user)


@app.get("/api/users/{user_id}/reviews")
def user_reviews(user_id: str, page: int = Query(1, ge=1), limit: int = Query(10, ge=1, le=100),
                 sort: str = "date", db: Database = Depends(get_db)):
    return ratings.list_reviews(db, user_id, page=page, limit=limit, sort=sort)


@app.get("/api/users/{user_id}/reviews/verified")
def user_verified_reviews(user_id: str, page: int = Query(1, ge=1), limit: int = Query(10, ge=1, le=100),
                          db: Database = Depends(get_db)):
    return ratings.list_reviews(db, user_id, page=page, limit=limit, verified_only=True)


@app.get("/api/users/{user_id}/reviews/export")
def export_reviews(user_id: str, user=Depends(get_current_user), db: Database = Depends(get_db)):
    if not user.get("isAdmin") and user["id"] != user_id:
        raise AuthorizationError("Not authorized to export these reviews")
    body = ratings.export_reviews_csv(db, user_id)
    return Response(content=body, media_type="text/csv",
                    headers={"Content-Disposition": f'attachment; filename="reviews-{user_id}.csv"'})


@app.get("/api/users/{user_id}/rating-analytics")
def user_rating_analytics(user_id: str, db: Database = Depends(get_db)):
    return ratings.user_rating_analytics(db, user_id)


@app.post("/api/users/{user_id}/reviews/{review_id}/flag")
def flag_review(user_id: str, review_id: str, payload: FlagRequest, user=Depends(get_current_user),
                db: Database = Depends(get_db)):
    ratings.flag_review(db, user_id, review_id, user["_id"], payload.reason)
    return {"message": "Review flagged successfully"}


@app.put("/api/users/{user_id}/reviews/{review_id}/unflag")
def unflag_review(user_id: str, review_id: str, admin=Depends(require_admin), db: Database = Depends(get_db)):
    ratings.unflag_review(db, user_id, review_id)
    return {"message": "Review unflagged successfully"}


@app.delete("/api/users/{user_id}/reviews/{review_id}")
def delete_review(user_id: str, review_id: str, admin=Depends(require_admin), db: Database = Depends(get_db)):
    ratings.delete_review(db, user_id, review_id)
    return {"message": "Review deleted successfully"}


@app.post("/api/users/{user_id}/reviews/{review_id}/vote")
def vote_review(user_id: str, review_id: str, payload: VoteRequest, user=Depends(require_member),
                db: Database = Depends(get_db)):
    counts = ratings.vote_review(db, user_id, review_id, user["_id"], payload.isHelpful)
    return dict(counts, message="Vote recorded successfully")


@app.get("/api/users/{user_id}/reviews/{review_id}/helpfulness")
def review_helpfulness(user_id: str, review_id: str, db: Database = Depends(get_db)):
    return ratings.review_helpfulness(db, user_id, review_id)


@app.post("/api/users/{user_id}/reviews/{review_id}/respond")
def respond_review(user_id: str, review_id: str, payload: RespondRequest, user=Depends(require_member),
                   db: Database = Depends(get_db)):
    response = ratings.respond_to_review(db, user_id, review_id, user["_id"], payload.text)
    return {"message": "Response added successfully", "response": response}


@app.put("/api/users/{user_id}/reviews/{review_id}/respond")
def update_review_response(user_id: str, review_id: str, payload: RespondRequest, user=Depends(require_member),
                           db: Database = Depends(get_db)):
    response = ratings.respond_to_review(db, user_id, review_id, user["_id"], payload.text, replace=True)
    return {"message": "Response updated successfully", "response": response}


@app.delete("/api/users/{user_id}/reviews/{review_id}/respond")
def delete_review_response(user_id: str, review_id: str, admin=Depends(require_admin),
                           db: Database = Depends(get_db)):
    ratings.remove_review_response(db, user_id, review_id)
    return {"message": "Response deleted successfully"}


@app.put("/api/users/{user_id}/reviews/{review_id}/verify")
def verify_review(user_id: str, review_id: str, admin=Depends(require_admin), db: Database = Depends(get_db)):
    ratings.set_review_verified(db, user_id, review_id, admin["id"], True)
    return {"message": "Review verified successfully"}


@app.put("/api/users/{user_id}/reviews/{review_id}/unverify")
def unverify_review(user_id: str, review_id: str, admin=Depends(require_admin), db: Database = Depends(get_db)):
    ratings.set_review_verified(db, user_id, review_id, admin["id"], False)
    return {"message": "Review unverified successfully"}


# Skills
@app.get("/api/skills/popular")
def popular_skills(db: Database = Depends(get_db)):
    return profiles.popular_skills(db)


@app.get("/api/skills/suggestions")
def skill_suggestions(q: Optional[str] = None, db: Database = Depends(get_db)):
    return profiles.skill_suggestions(db, q)


# Swaps
@app.post("/api/swaps", status_code=status.HTTP_201_CREATED)
def create_swap(payload: SwapCreate, user=Depends(require_member), db: Database = Depends(get_db)):
    swap = swaps.create_swap(db, user, payload)
    return swaps.serialize_swap(db, swap)


@app.get("/api/swaps/my-swaps")
def my_swaps(status: Optional[str] = None, user=Depends(require_member), db: Database = Depends(get_db)):
    return swaps.serialize_swaps(db, swaps.list_user_swaps(db, user["_id"], status))


@app.get("/api/swaps/{swap_id}")
def get_swap(swap_id: str, user=Depends(get_current_user), db: Database = Depends(get_db)):
    swap = swaps.get_swap_for(db, swap_id, user)
    return swaps.serialize_swap(db, swap, with_email=True)


@app.put("/api/swaps/{swap_id}/{action}")
def swap_action(swap_id: str, action: str, user=Depends(require_member), db: Database = Depends(get_db)):
    if action not in swaps.TRANSITIONS:
        raise ValidationError(f"Unknown swap action: {action}")
    swap = swaps.transition(db, swap_id, user["_id"], action)
    return swaps.serialize_swap(db, swap)


@app.post("/api/swaps/{swap_id}/rate")
def rate_swap(swap_id: str, payload: RateRequest, user=Depends(require_member), db: Database = Depends(get_db)):
    swap = swaps.rate_swap(db, swap_id, user["_id"], payload.rating, payload.comment)
    return swaps.serialize_swap(db, swap)


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=PORT)
