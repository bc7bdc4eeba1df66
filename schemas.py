"""
Database Schemas for SkillSwap

Each Pydantic model represents a MongoDB collection or an embedded
sub-document. Collection name is lowercase of the class name.
- User -> "user"
- Swap -> "swap"

Request bodies accepted by the API are defined at the bottom.
"""

from datetime import datetime
from typing import List, Literal, Optional

from pydantic import BaseModel, EmailStr, Field, field_validator

SwapStatus = Literal["pending", "accepted", "rejected", "cancelled", "completed"]
Proficiency = Literal["Beginner", "Intermediate", "Advanced", "Expert"]
Priority = Literal["Low", "Medium", "High"]

SWAP_STATUSES = ("pending", "accepted", "rejected", "cancelled", "completed")
IN_FLIGHT_STATUSES = ("pending", "accepted")


def _strip(value):
    return value.strip() if isinstance(value, str) else value


class Availability(BaseModel):
    weekdays: bool = False
    weekends: bool = False
    evenings: bool = False
    mornings: bool = False
    customSchedule: Optional[str] = Field(None, description="Free-form schedule")


class SkillOffered(BaseModel):
    name: str = Field(..., description="Skill name, unique per user (case-insensitive)")
    description: Optional[str] = None
    proficiency: Proficiency = "Intermediate"


class SkillWanted(BaseModel):
    name: str = Field(..., description="Skill name, unique per user (case-insensitive)")
    description: Optional[str] = None
    priority: Priority = "Medium"


class HelpfulVote(BaseModel):
    voter: str
    isHelpful: bool
    date: Optional[datetime] = None


class ReviewResponse(BaseModel):
    text: str = Field(..., max_length=1000)
    date: Optional[datetime] = None


class Rating(BaseModel):
    """A rating one swap participant left about the other, stored on the rated user"""
    reviewer: str = Field(..., description="Reviewer user _id (string)")
    swap: str = Field(..., description="Swap _id (string)")
    rating: int = Field(..., ge=1, le=5)
    comment: Optional[str] = Field(None, max_length=500)
    date: Optional[datetime] = None
    flagged: bool = False
    flaggedBy: Optional[str] = None
    flaggedReason: Optional[str] = None
    flaggedDate: Optional[datetime] = None
    helpfulVotes: List[HelpfulVote] = Field(default_factory=list)
    helpfulCount: int = 0
    notHelpfulCount: int = 0
    response: Optional[ReviewResponse] = None
    verified: bool = False
    verifiedSwapId: Optional[str] = None
    verifiedBy: Optional[str] = None
    verifiedDate: Optional[datetime] = None


class RatingSummary(BaseModel):
    """Running totals; average is total / count, computed on read"""
    total: int = Field(0, ge=0)
    count: int = Field(0, ge=0)


class User(BaseModel):
    name: str = Field(..., description="Full name")
    email: EmailStr = Field(..., description="Unique email address, lowercased")
    password_hash: str = Field(..., description="Hashed password")
    location: Optional[str] = None
    bio: Optional[str] = Field(None, max_length=500)
    profilePhoto: Optional[str] = Field(None, description="URL path of the uploaded photo")
    isPublic: bool = Field(True, description="Visible in browse; private users reject swap requests")
    availability: Availability = Field(default_factory=Availability)
    skillsOffered: List[SkillOffered] = Field(default_factory=list)
    skillsWanted: List[SkillWanted] = Field(default_factory=list)
    ratings: List[Rating] = Field(default_factory=list)
    rating: RatingSummary = Field(default_factory=RatingSummary)
    swapsCompleted: int = Field(0, ge=0)


class SkillSnapshot(BaseModel):
    """Skill as agreed when the swap was requested; later profile edits do not touch it"""
    name: str = Field(..., min_length=1)
    description: Optional[str] = None

    strip_fields = field_validator("name", "description", mode="before")(_strip)


class SwapRating(BaseModel):
    rating: int = Field(..., ge=1, le=5)
    comment: Optional[str] = Field(None, max_length=500)
    date: Optional[datetime] = None


class Swap(BaseModel):
    requester: str = Field(..., description="Requester user _id (string)")
    recipient: str = Field(..., description="Recipient user _id (string)")
    requestedSkill: SkillSnapshot
    offeredSkill: SkillSnapshot
    status: SwapStatus = "pending"
    message: Optional[str] = Field(None, max_length=1000)
    scheduledDate: Optional[datetime] = None
    completedDate: Optional[datetime] = None
    requesterRating: Optional[SwapRating] = None
    recipientRating: Optional[SwapRating] = None


# ---------- Request bodies ----------

class RegisterRequest(BaseModel):
    name: str = Field(..., min_length=2)
    email: EmailStr
    password: str = Field(..., min_length=6)
    location: Optional[str] = None

    strip_fields = field_validator("name", "location", mode="before")(_strip)


class LoginRequest(BaseModel):
    email: EmailStr
    password: str


class AdminLoginRequest(BaseModel):
    adminId: str
    password: str


class ProfileUpdate(BaseModel):
    name: Optional[str] = Field(None, min_length=2)
    location: Optional[str] = None
    bio: Optional[str] = Field(None, max_length=500)
    isPublic: Optional[bool] = None
    availability: Optional[Availability] = None

    strip_fields = field_validator("name", "location", "bio", mode="before")(_strip)


class SkillOfferedIn(BaseModel):
    name: str = Field(..., min_length=1)
    description: Optional[str] = None
    proficiency: Proficiency = "Intermediate"

    strip_fields = field_validator("name", "description", mode="before")(_strip)


class SkillWantedIn(BaseModel):
    name: str = Field(..., min_length=1)
    description: Optional[str] = None
    priority: Priority = "Medium"

    strip_fields = field_validator("name", "description", mode="before")(_strip)


class SwapCreate(BaseModel):
    recipientId: str = Field(..., pattern=r"^[0-9a-fA-F]{24}$")
    requestedSkill: SkillSnapshot
    offeredSkill: SkillSnapshot
    message: Optional[str] = Field(None, max_length=1000)
    scheduledDate: Optional[datetime] = None

    strip_fields = field_validator("message", mode="before")(_strip)


class RateRequest(BaseModel):
    rating: int = Field(..., ge=1, le=5, strict=True)
    comment: Optional[str] = Field(None, max_length=500)

    strip_fields = field_validator("comment", mode="before")(_strip)


class FlagRequest(BaseModel):
    reason: str = Field(..., min_length=1)

    strip_fields = field_validator("reason", mode="before")(_strip)


class VoteRequest(BaseModel):
    isHelpful: bool


class RespondRequest(BaseModel):
    text: str = Field(..., min_length=1, max_length=1000)

    strip_fields = field_validator("text", mode="before")(_strip)
