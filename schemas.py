"""
Database Schemas for Session Sync

Each record model corresponds to a MongoDB collection:

- users: students, tutors and admins, keyed by email
- sessions: study sessions offered by tutors and moderated by admins
- bookedSessions: one record per (sessionId, studentEmail)
- notes: private student notes
- materials: tutor uploads attached to a session
- reviews: session and tutor reviews
- announcements: admin notices

Field names follow the JSON the web client sends (camelCase). Records accept
extra descriptive fields.
"""
from datetime import datetime
from typing import Any, Literal, Optional

from pydantic import BaseModel, ConfigDict, EmailStr, Field, StrictBool

Role = Literal["Student", "Tutor", "Admin"]
SessionStatus = Literal["pending", "approved", "rejected"]


class User(BaseModel):
    model_config = ConfigDict(extra="allow")

    email: EmailStr = Field(..., description="Email address, unique")
    name: Optional[str] = Field(None, description="Display name")
    photo: Optional[str] = Field(None, description="Avatar URL")
    role: Role = Field("Student", description="User role")
    timestamp: Optional[int] = Field(None, description="Creation time, epoch milliseconds")


class StudySession(BaseModel):
    model_config = ConfigDict(extra="allow")

    tutorEmail: EmailStr
    tutorName: Optional[str] = None
    sessionTitle: str = Field(..., min_length=1)
    sessionDescription: Optional[str] = None
    registrationStartDate: Optional[str] = None
    registrationEndDate: Optional[str] = None
    classStartDate: Optional[str] = None
    classEndDate: Optional[str] = None
    sessionDuration: Optional[str] = None
    registrationFee: float = Field(0, ge=0)
    isPaid: bool = False
    status: SessionStatus = "pending"


class BookedSession(BaseModel):
    sessionId: str
    sessionTitle: Optional[str] = None
    registrationFee: float = 0
    studentEmail: EmailStr
    tutorEmail: Optional[str] = None
    paymentIntentId: Optional[str] = None
    bookedAt: Optional[datetime] = None


class NoteOwner(BaseModel):
    model_config = ConfigDict(extra="allow")

    studentEmail: EmailStr
    studentName: Optional[str] = None


class Note(BaseModel):
    model_config = ConfigDict(extra="allow")

    title: str = Field(..., min_length=1)
    description: Optional[str] = None
    student: NoteOwner


class Material(BaseModel):
    model_config = ConfigDict(extra="allow")

    sessionId: str
    tutorEmail: EmailStr
    title: Optional[str] = None
    imageUrl: Optional[str] = None
    driveLink: Optional[str] = None


class Review(BaseModel):
    sessionId: str
    studentEmail: EmailStr
    comment: Optional[str] = None
    rating: int = Field(..., ge=1, le=5)


class TutorReview(BaseModel):
    tutorId: str
    studentEmail: EmailStr
    comment: Optional[str] = None
    rating: int = Field(..., ge=1, le=5)


class Announcement(BaseModel):
    title: Optional[str] = None
    description: Optional[str] = None


# ----------------------
# Request bodies
# ----------------------
class UserUpsertRequest(BaseModel):
    model_config = ConfigDict(extra="allow")

    email: EmailStr
    name: Optional[str] = None
    photo: Optional[str] = None


class RoleUpdateRequest(BaseModel):
    role: Role


class BookSessionRequest(BaseModel):
    sessionId: str
    sessionTitle: Optional[str] = None
    registrationFee: float = Field(0, ge=0)
    studentEmail: EmailStr
    tutorEmail: Optional[EmailStr] = None


class PaymentIntentRequest(BaseModel):
    # checked against the session fee, never charged as sent
    amount: Optional[float] = None
    sessionId: str


class ConfirmPaymentRequest(BaseModel):
    sessionId: str
    studentEmail: EmailStr
    paymentIntentId: str = Field(..., min_length=1)
    # accepted for compatibility; the stored session is authoritative
    registrationFee: Optional[float] = None
    sessionTitle: Optional[str] = None
    tutorEmail: Optional[str] = None


class ApproveSessionRequest(BaseModel):
    isPaid: Optional[StrictBool] = None
    # validated by the lifecycle rules rather than coerced here
    amount: Optional[Any] = None
    registrationFee: Optional[Any] = None


class NoteUpdate(BaseModel):
    title: Optional[str] = None
    description: Optional[str] = None
