import logging
import os
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from fastapi import Body, Depends, FastAPI, Query, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pymongo import DESCENDING
from pymongo.database import Database
from pymongo.errors import PyMongoError

import booking
import config
import sessions
import users
from auth import require_role, verify_token
from database import (
    ANNOUNCEMENTS,
    MATERIALS,
    NOTES,
    REVIEWS,
    close_client,
    get_database,
    get_db,
    oid,
    prepare_database,
    serialize_doc,
)
from errors import DomainError, NotFoundError, ValidationError
from payments import PaymentGateway, get_payment_gateway
from schemas import (
    Announcement,
    ApproveSessionRequest,
    BookSessionRequest,
    ConfirmPaymentRequest,
    Material,
    Note,
    NoteUpdate,
    PaymentIntentRequest,
    Review,
    RoleUpdateRequest,
    StudySession,
    TutorReview,
    UserUpsertRequest,
)

logging.basicConfig(
    level=config.LOG_LEVEL,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)

app = FastAPI(title="Session Sync API")

app.add_middleware(
    CORSMiddleware,
    allow_origins=config.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

require_admin = require_role("Admin")


# ----------------------
# Error handling
# ----------------------
@app.exception_handler(DomainError)
async def domain_error_handler(request: Request, exc: DomainError):
    if exc.status_code >= 500:
        logger.error("%s %s failed: %s", request.method, request.url.path, exc.message)
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


@app.exception_handler(PyMongoError)
async def store_error_handler(request: Request, exc: PyMongoError):
    logger.error("Database error on %s %s: %s", request.method, request.url.path, exc)
    return JSONResponse(
        status_code=500,
        content={"success": False, "message": "Internal server error", "code": "DependencyError"},
    )


@app.exception_handler(RequestValidationError)
async def request_validation_handler(request: Request, exc: RequestValidationError):
    logger.warning("Rejected request body on %s %s", request.method, request.url.path)
    return JSONResponse(
        status_code=400,
        content={
            "success": False,
            "message": "Required fields are missing or invalid.",
            "code": "ValidationError",
            "details": jsonable_encoder(exc.errors()),
        },
    )


def _require(value: Optional[str], message: str) -> str:
    if not value:
        raise ValidationError(message)
    return value


def _clean_patch(patch: Dict[str, Any]) -> Dict[str, Any]:
    fields = {k: v for k, v in patch.items() if k not in ("_id", "id")}
    if not fields:
        raise ValidationError("No fields to update.")
    return fields


# ----------------------
# Startup
# ----------------------
@app.on_event("startup")
def create_indexes():
    # If DB is not configured, skip so the app can start; index failures abort startup
    db = get_database()
    if db is None:
        logger.warning("DATABASE_URL not set; running without a database")
        return
    prepare_database(db)


@app.on_event("shutdown")
def close_database():
    close_client()


# ----------------------
# Basic routes
# ----------------------
@app.get("/")
def root():
    return {"message": "Welcome to the Session Sync API!"}


@app.get("/test")
def test_database():
    response = {
        "backend": "✅ Running",
        "database": "❌ Not Available",
        "database_url": "✅ Set" if os.getenv("DATABASE_URL") else "❌ Not Set",
        "database_name": config.DATABASE_NAME,
        "connection_status": "Not Connected",
        "collections": [],
    }
    try:
        db = get_database()
        if db is not None:
            db.command("ping")
            response["database"] = "✅ Connected & Working"
            response["connection_status"] = "Connected"
            response["collections"] = db.list_collection_names()
    except PyMongoError as e:
        response["database"] = f"⚠️ Connected but error: {str(e)[:80]}"
    return response


@app.get("/verify-token/{token}")
def verify(token: str):
    user = verify_token(token)
    if user is None:
        return {"isValid": False}
    return {"isValid": True, "user": user}


# ----------------------
# Users
# ----------------------
@app.post("/users")
def save_user(payload: UserUpsertRequest, db: Database = Depends(get_db)):
    return users.upsert_user(db, payload.model_dump())


@app.get("/all-users/{email}")
def all_users(email: str, db: Database = Depends(get_db), admin=Depends(require_admin)):
    return users.list_users_except(db, email)


@app.patch("/update-user-role/{user_id}")
def update_user_role(
    user_id: str, body: RoleUpdateRequest, db: Database = Depends(get_db), admin=Depends(require_admin)
):
    users.update_role(db, user_id, body.role)
    return {"message": "User role updated successfully."}


@app.get("/get-tutors")
def get_tutors(db: Database = Depends(get_db)):
    return users.list_tutors(db)


@app.get("/tutor-details/{tutor_id}")
def tutor_details(tutor_id: str, db: Database = Depends(get_db)):
    return users.get_tutor(db, tutor_id)


# ----------------------
# Tutor endpoints
# ----------------------
@app.post("/create-session", status_code=201)
def create_session(body: StudySession, db: Database = Depends(get_db)):
    inserted_id = sessions.create_session(db, body.model_dump())
    return {"acknowledged": True, "insertedId": inserted_id}


@app.get("/get-sessions")
def get_sessions(db: Database = Depends(get_db)):
    return sessions.list_approved(db, limit=sessions.HOME_PAGE_LIMIT)


@app.get("/get-all-sessions")
def get_all_sessions(db: Database = Depends(get_db)):
    return sessions.list_approved(db)


@app.get("/session-details/{session_id}")
def session_details(session_id: str, db: Database = Depends(get_db)):
    return serialize_doc(sessions.get_session(db, session_id))


@app.get("/get-tutor-sessions")
def get_tutor_sessions(tutorEmail: Optional[str] = None, db: Database = Depends(get_db)):
    _require(tutorEmail, "Tutor email is required.")
    return sessions.list_for_tutor(db, tutorEmail)


@app.get("/select-study-sessions")
def select_study_sessions(
    tutorEmail: Optional[str] = None, status: Optional[str] = None, db: Database = Depends(get_db)
):
    if not tutorEmail or not status:
        raise ValidationError("Tutor email and status are required.")
    return sessions.list_for_tutor(db, tutorEmail, status)


@app.get("/study-sessions")
def study_sessions(page: int = Query(1, ge=1), limit: int = Query(10, ge=1, le=100), db: Database = Depends(get_db)):
    return sessions.paginate(db, page, limit)


@app.patch("/re-request-approval/{session_id}")
def re_request_approval(session_id: str, db: Database = Depends(get_db)):
    sessions.rerequest_approval(db, session_id)
    return {"message": "Approval request sent successfully."}


# ----------------------
# Admin session moderation
# ----------------------
@app.get("/manage-sessions")
def manage_sessions(db: Database = Depends(get_db), admin=Depends(require_admin)):
    return sessions.list_all(db)


@app.get("/sessions/{session_id}")
def admin_session(session_id: str, db: Database = Depends(get_db), admin=Depends(require_admin)):
    return serialize_doc(sessions.get_session(db, session_id))


@app.patch("/update-study-session/{session_id}")
def update_study_session(
    session_id: str,
    patch: Dict[str, Any] = Body(...),
    db: Database = Depends(get_db),
    admin=Depends(require_admin),
):
    sessions.update_session(db, session_id, patch)
    return {"message": "Session updated successfully."}


@app.patch("/session-approve/{session_id}")
def approve_session(
    session_id: str, body: ApproveSessionRequest, db: Database = Depends(get_db), admin=Depends(require_admin)
):
    fee = body.amount if body.amount is not None else body.registrationFee
    sessions.approve_session(db, session_id, body.isPaid, fee)
    return {"message": "Session approved successfully."}


@app.patch("/reject-session/{session_id}")
def reject_session(session_id: str, db: Database = Depends(get_db), admin=Depends(require_admin)):
    sessions.reject_session(db, session_id)
    return {"message": "Session rejected successfully."}


@app.delete("/delete-session/{session_id}")
def delete_session(session_id: str, db: Database = Depends(get_db), admin=Depends(require_admin)):
    sessions.delete_session(db, session_id)
    return {"message": "Session deleted successfully."}


# ----------------------
# Booking & payments
# ----------------------
@app.post("/book-session", status_code=201)
def book_session(body: BookSessionRequest, db: Database = Depends(get_db)):
    booking.book_session(
        db, body.sessionId, body.sessionTitle, body.registrationFee, body.studentEmail, body.tutorEmail
    )
    return {"success": True, "message": "Session booked successfully."}


@app.post("/create-payment-intent")
def create_payment_intent(
    body: PaymentIntentRequest,
    db: Database = Depends(get_db),
    gateway: PaymentGateway = Depends(get_payment_gateway),
):
    client_secret = booking.create_payment_intent(db, gateway, body.sessionId, body.amount)
    return {"clientSecret": client_secret}


@app.post("/confirm-payment")
def confirm_payment(
    body: ConfirmPaymentRequest,
    db: Database = Depends(get_db),
    gateway: PaymentGateway = Depends(get_payment_gateway),
):
    booking.confirm_payment(db, gateway, body.sessionId, body.studentEmail, body.paymentIntentId)
    return {"success": True, "message": "Session booked successfully."}


@app.get("/get-booked-sessions")
def get_booked_sessions(studentEmail: Optional[str] = None, db: Database = Depends(get_db)):
    _require(studentEmail, "Student email is required.")
    return booking.list_booked_sessions(db, studentEmail)


# ----------------------
# Reviews
# ----------------------
def _insert_review(db: Database, doc: Dict[str, Any]) -> None:
    doc["reviewedAt"] = datetime.now(timezone.utc)
    db[REVIEWS].insert_one(doc)


@app.post("/post-review", status_code=201)
def post_review(body: Review, db: Database = Depends(get_db)):
    _insert_review(db, body.model_dump())
    return {"success": True, "message": "Review posted successfully."}


@app.post("/post-tutor-review", status_code=201)
def post_tutor_review(body: TutorReview, db: Database = Depends(get_db)):
    _insert_review(db, body.model_dump())
    return {"success": True, "message": "Review posted successfully."}


@app.get("/get-reviews")
@app.get("/reviews")
def get_reviews(sessionId: Optional[str] = None, db: Database = Depends(get_db)):
    _require(sessionId, "Session ID is required.")
    return [serialize_doc(r) for r in db[REVIEWS].find({"sessionId": sessionId})]


@app.get("/get-tutor-reviews")
def get_tutor_reviews(tutorId: Optional[str] = None, db: Database = Depends(get_db)):
    _require(tutorId, "Tutor ID is required.")
    return [serialize_doc(r) for r in db[REVIEWS].find({"tutorId": tutorId})]


# ----------------------
# Student notes
# ----------------------
@app.post("/create-note", status_code=201)
def create_note(body: Note, db: Database = Depends(get_db)):
    res = db[NOTES].insert_one(body.model_dump())
    return {"acknowledged": True, "insertedId": str(res.inserted_id)}


@app.get("/get-notes")
def get_notes(studentEmail: Optional[str] = None, db: Database = Depends(get_db)):
    _require(studentEmail, "studentEmail is required.")
    return [serialize_doc(n) for n in db[NOTES].find({"student.studentEmail": studentEmail})]


@app.put("/update-note/{note_id}")
def update_note(note_id: str, body: NoteUpdate, db: Database = Depends(get_db)):
    _id = oid(note_id, "note ID")
    data = {k: v for k, v in body.model_dump().items() if v is not None}
    if data:
        res = db[NOTES].update_one({"_id": _id}, {"$set": data})
        if res.matched_count == 0:
            raise NotFoundError("Note not found.")
    note = db[NOTES].find_one({"_id": _id})
    if not note:
        raise NotFoundError("Note not found.")
    return serialize_doc(note)


@app.delete("/delete-note/{note_id}")
def delete_note(note_id: str, db: Database = Depends(get_db)):
    res = db[NOTES].delete_one({"_id": oid(note_id, "note ID")})
    if res.deleted_count == 0:
        raise NotFoundError("Note not found.")
    return {"message": "Note deleted successfully."}


# ----------------------
# Materials
# ----------------------
@app.post("/upload-material", status_code=201)
def upload_material(body: Material, db: Database = Depends(get_db)):
    res = db[MATERIALS].insert_one(body.model_dump())
    return {"acknowledged": True, "insertedId": str(res.inserted_id)}


@app.get("/materials")
def list_materials(sessionId: Optional[str] = None, tutorEmail: Optional[str] = None, db: Database = Depends(get_db)):
    if sessionId:
        q = {"sessionId": sessionId}
    elif tutorEmail:
        q = {"tutorEmail": tutorEmail}
    else:
        raise ValidationError("Session ID or tutor email is required.")
    return [serialize_doc(m) for m in db[MATERIALS].find(q)]


@app.get("/sessionId-material")
def session_materials(id: Optional[str] = None, db: Database = Depends(get_db)):
    _require(id, "Study session ID is required")
    return [serialize_doc(m) for m in db[MATERIALS].find({"sessionId": id})]


@app.get("/single-material/{material_id}")
def single_material(material_id: str, db: Database = Depends(get_db)):
    material = db[MATERIALS].find_one({"_id": oid(material_id, "Material ID")})
    if not material:
        raise NotFoundError("Material not found.")
    return serialize_doc(material)


@app.put("/update-material/{material_id}")
def update_material(material_id: str, patch: Dict[str, Any] = Body(...), db: Database = Depends(get_db)):
    _id = oid(material_id, "Material ID")
    res = db[MATERIALS].update_one({"_id": _id}, {"$set": _clean_patch(patch)})
    if res.matched_count == 0:
        raise NotFoundError("Material not found.")
    return {"message": "Material updated successfully."}


@app.delete("/delete-material/{material_id}")
def delete_material(material_id: str, db: Database = Depends(get_db)):
    res = db[MATERIALS].delete_one({"_id": oid(material_id, "Material ID")})
    if res.deleted_count == 0:
        raise NotFoundError("Material not found.")
    return {"message": "Material deleted successfully."}


@app.get("/all-materials")
def all_materials(db: Database = Depends(get_db), admin=Depends(require_admin)):
    return [serialize_doc(m) for m in db[MATERIALS].find()]


# ----------------------
# Announcements
# ----------------------
@app.post("/create-announcement", status_code=201)
def create_announcement(body: Announcement, db: Database = Depends(get_db), admin=Depends(require_admin)):
    if not body.title or not body.description:
        raise ValidationError("Title and Description are required")
    doc = {"title": body.title, "description": body.description, "createdAt": datetime.now(timezone.utc)}
    res = db[ANNOUNCEMENTS].insert_one(doc)
    return {
        "message": "Announcement created successfully",
        "announcement": {"acknowledged": True, "insertedId": str(res.inserted_id)},
    }


@app.get("/public-announcements")
def public_announcements(db: Database = Depends(get_db)):
    return [serialize_doc(a) for a in db[ANNOUNCEMENTS].find({}).sort("createdAt", DESCENDING)]


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(app, host="0.0.0.0", port=config.PORT)
