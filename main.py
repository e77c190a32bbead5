import logging
import re
from contextlib import asynccontextmanager
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional

import stripe
from fastapi import FastAPI, Depends, Request
from fastapi.concurrency import run_in_threadpool
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, PlainTextResponse
from motor.motor_asyncio import AsyncIOMotorDatabase
from pymongo import DESCENDING
from pymongo.errors import DuplicateKeyError, PyMongoError
from starlette.exceptions import HTTPException as StarletteHTTPException

from auth import require_admin, verify_token
from config import ALLOWED_ORIGINS, LOG_LEVEL, PORT, PREMIUM_PRICE
from database import (
    FAVORITES, LESSONS, REPORTS, USERS,
    aggregate, close_db, create_document, ensure_indexes, get_db,
    get_documents, get_documents_by_ids, now_iso, serialize, to_object_id,
)
from errors import ApiError
from payments import StripeGateway, get_payments, premium_checkout_params, session_email
from schemas import (
    AccessUpdate, CheckoutRequest, FavoriteCreate, FeaturedUpdate, LessonCreate,
    LessonUpdate, ReportCreate, RoleUpdate, User, UserLogin, VisibilityUpdate,
)

logging.basicConfig(
    level=getattr(logging, LOG_LEVEL, logging.INFO),
    format="%(asctime)s %(levelname)s %(name)s %(message)s",
)
logger = logging.getLogger(__name__)

NEWEST_FIRST = [("createdAt", DESCENDING)]
RECENT_LIMIT = 5
RECOMMENDED_LIMIT = 6
MOST_SAVED_LIMIT = 6
TOP_CONTRIBUTORS_LIMIT = 5
ACTIVE_WINDOW_DAYS = 30
# Server-managed fields a partial lesson update may not overwrite
PROTECTED_LESSON_FIELDS = {"_id", "id", "createdAt", "isFeatured", "creator"}


@asynccontextmanager
async def lifespan(app: FastAPI):
    db = get_db()
    try:
        await db.command("ping")
        logger.info("Pinged your deployment. Connected to MongoDB database %s", db.name)
        await ensure_indexes(db)
    except PyMongoError as e:
        logger.error("MongoDB not reachable at startup: %s", e)
    yield
    close_db()
    logger.info("MongoDB client closed")


app = FastAPI(title="Digital Life Lessons API", version="1.0.0", lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=ALLOWED_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# ---------- Error envelopes ----------

@app.exception_handler(StarletteHTTPException)
async def http_error_handler(request: Request, exc: StarletteHTTPException):
    flag = getattr(exc, "flag", "success")
    return JSONResponse(
        status_code=exc.status_code,
        content={flag: False, "message": exc.detail},
        headers=getattr(exc, "headers", None),
    )


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError):
    errors = exc.errors()
    message = errors[0].get("msg", "Invalid request") if errors else "Invalid request"
    return JSONResponse(status_code=422, content={"success": False, "message": message})


@app.exception_handler(Exception)
async def unhandled_error_handler(request: Request, exc: Exception):
    logger.error("Unhandled error on %s %s", request.method, request.url.path, exc_info=exc)
    return JSONResponse(
        status_code=500,
        content={"success": False, "message": "Internal server error", "error": str(exc)},
    )


# ---------- Helpers ----------

def lesson_not_found(flag: str = "success") -> ApiError:
    return ApiError(404, "Lesson not found", flag=flag)


def start_of_today() -> str:
    return datetime.now(timezone.utc).replace(hour=0, minute=0, second=0, microsecond=0).isoformat()


async def set_lesson_field(db: AsyncIOMotorDatabase, lesson_id: str, field: str, value: Any) -> int:
    oid = to_object_id(lesson_id)
    if oid is None:
        raise lesson_not_found()
    result = await db[LESSONS].update_one(
        {"_id": oid},
        {"$set": {field: value, "updatedAt": now_iso()}},
    )
    # Rewriting the same value still bumps updatedAt, so zero modified means no match
    if result.modified_count == 0:
        raise ApiError(404, "Lesson not found or no changes made")
    logger.info("Lesson %s %s set to %r", lesson_id, field, value)
    return result.modified_count


# ---------- Health ----------

@app.get("/", response_class=PlainTextResponse)
async def read_root():
    return "Hello from Server.."


# ---------- Lessons ----------

@app.post("/lessons")
async def create_lesson(lesson: LessonCreate, db: AsyncIOMotorDatabase = Depends(get_db)):
    now = now_iso()
    data = {**lesson.model_dump(), "isFeatured": False, "createdAt": now, "updatedAt": now}
    inserted_id = await create_document(db, LESSONS, data)
    return {"success": True, "message": "Lesson data inserted successfully", "insertedId": inserted_id}


@app.get("/lessons")
async def list_public_lessons(
    category: Optional[str] = None,
    emotionalTone: Optional[str] = None,
    search: Optional[str] = None,
    db: AsyncIOMotorDatabase = Depends(get_db),
):
    query: Dict[str, Any] = {"privacy": "public"}
    if category:
        query["category"] = category
    if emotionalTone:
        query["emotionalTone"] = emotionalTone
    if search:
        query["title"] = {"$regex": re.escape(search), "$options": "i"}
    lessons = await get_documents(db, LESSONS, query, sort=NEWEST_FIRST)
    return {"success": True, "message": "Lessons data retrieved successfully", "lessons": lessons}


@app.get("/all-lessons")
async def list_all_lessons(token_email: str = Depends(verify_token), db: AsyncIOMotorDatabase = Depends(get_db)):
    lessons = await get_documents(db, LESSONS, sort=NEWEST_FIRST)
    return {"success": True, "message": "All lessons retrieved successfully", "lessons": lessons}


@app.get("/lessons/featured")
async def list_featured_lessons(db: AsyncIOMotorDatabase = Depends(get_db)):
    lessons = await get_documents(db, LESSONS, {"isFeatured": True, "privacy": "public"}, sort=NEWEST_FIRST)
    return {"success": True, "lessons": lessons}


@app.get("/lessons/most-saved")
async def list_most_saved_lessons(db: AsyncIOMotorDatabase = Depends(get_db)):
    ranked = await aggregate(db, FAVORITES, [
        {"$group": {"_id": "$lessonId", "saveCount": {"$sum": 1}}},
        {"$sort": {"saveCount": -1, "_id": 1}},
        {"$limit": MOST_SAVED_LIMIT},
    ])
    by_id = await get_documents_by_ids(db, LESSONS, [row["_id"] for row in ranked])
    lessons = []
    for row in ranked:
        lesson = by_id.get(row["_id"])
        if lesson and lesson.get("privacy") == "public":
            lessons.append({**lesson, "saveCount": row["saveCount"]})
    return {"success": True, "lessons": lessons}


# Analytics

@app.get("/lessons/analytics/today")
async def count_lessons_today(token_email: str = Depends(verify_token), db: AsyncIOMotorDatabase = Depends(get_db)):
    count = await db[LESSONS].count_documents({"createdAt": {"$gte": start_of_today()}})
    return {"success": True, "count": count}


@app.get("/lessons/analytics/active-contributors")
async def count_active_contributors(token_email: str = Depends(verify_token), db: AsyncIOMotorDatabase = Depends(get_db)):
    since = (datetime.now(timezone.utc) - timedelta(days=ACTIVE_WINDOW_DAYS)).isoformat()
    emails = await db[LESSONS].distinct("creator.email", {"createdAt": {"$gte": since}})
    return {"success": True, "count": len(emails), "days": ACTIVE_WINDOW_DAYS}


@app.get("/lessons/analytics/top-contributors")
async def list_top_contributors(token_email: str = Depends(verify_token), db: AsyncIOMotorDatabase = Depends(get_db)):
    ranked = await aggregate(db, LESSONS, [
        {"$group": {"_id": "$creator.email", "lessonCount": {"$sum": 1}}},
        {"$sort": {"lessonCount": -1, "_id": 1}},
        {"$limit": TOP_CONTRIBUTORS_LIMIT},
    ])
    emails = [row["_id"] for row in ranked]
    users = await get_documents(db, USERS, {"email": {"$in": emails}}, projection={"name": 1, "photo": 1, "email": 1})
    by_email = {u["email"]: u for u in users}
    contributors = []
    for row in ranked:
        user = by_email.get(row["_id"], {})
        contributors.append({
            "email": row["_id"],
            "name": user.get("name"),
            "photo": user.get("photo"),
            "lessonCount": row["lessonCount"],
        })
    return {"success": True, "contributors": contributors}


@app.get("/lessons/analytics/visibility")
async def count_lessons_by_visibility(token_email: str = Depends(verify_token), db: AsyncIOMotorDatabase = Depends(get_db)):
    public = await db[LESSONS].count_documents({"privacy": "public"})
    private = await db[LESSONS].count_documents({"privacy": "private"})
    total = await db[LESSONS].count_documents({})
    return {"success": True, "public": public, "private": private, "total": total}


# Owner-scoped

@app.get("/lessons/user/{email}")
async def list_user_lessons(email: str, db: AsyncIOMotorDatabase = Depends(get_db)):
    lessons = await get_documents(db, LESSONS, {"creator.email": email}, sort=NEWEST_FIRST)
    return {"success": True, "lessons": lessons}


@app.get("/lessons/public/{email}")
async def list_user_public_lessons(email: str, db: AsyncIOMotorDatabase = Depends(get_db)):
    lessons = await get_documents(db, LESSONS, {"creator.email": email, "privacy": "public"}, sort=NEWEST_FIRST)
    return {"success": True, "lessons": lessons}


@app.get("/lessons/recent/{email}")
async def list_user_recent_lessons(email: str, db: AsyncIOMotorDatabase = Depends(get_db)):
    lessons = await get_documents(db, LESSONS, {"creator.email": email}, sort=NEWEST_FIRST, limit=RECENT_LIMIT)
    return {"success": True, "lessons": lessons}


@app.get("/lessons/count/{email}")
async def count_user_lessons(email: str, db: AsyncIOMotorDatabase = Depends(get_db)):
    count = await db[LESSONS].count_documents({"creator.email": email})
    return {"success": True, "count": count}


@app.get("/lessons/recommended/{lesson_id}")
async def list_recommended_lessons(lesson_id: str, db: AsyncIOMotorDatabase = Depends(get_db)):
    oid = to_object_id(lesson_id)
    source = await db[LESSONS].find_one({"_id": oid}) if oid else None
    if not source:
        raise lesson_not_found()
    similar = [{key: source[key]} for key in ("category", "emotionalTone") if source.get(key)]
    if not similar:
        return {"success": True, "lessons": []}
    lessons = await get_documents(
        db, LESSONS,
        {"_id": {"$ne": oid}, "privacy": "public", "$or": similar},
        sort=NEWEST_FIRST,
        limit=RECOMMENDED_LIMIT,
    )
    return {"success": True, "lessons": lessons}


# Single lesson

@app.get("/lessons/{lesson_id}")
async def get_lesson(lesson_id: str, db: AsyncIOMotorDatabase = Depends(get_db)):
    oid = to_object_id(lesson_id)
    lesson = await db[LESSONS].find_one({"_id": oid}) if oid else None
    if not lesson:
        raise lesson_not_found(flag="status")
    return {"status": True, "lesson": serialize(lesson)}


@app.patch("/lessons/{lesson_id}")
async def update_lesson(lesson_id: str, lesson: LessonUpdate, db: AsyncIOMotorDatabase = Depends(get_db)):
    oid = to_object_id(lesson_id)
    if oid is None:
        raise lesson_not_found()
    updates = {
        k: v for k, v in lesson.model_dump(exclude_unset=True).items()
        if v is not None and k not in PROTECTED_LESSON_FIELDS
    }
    updates["updatedAt"] = now_iso()
    result = await db[LESSONS].update_one({"_id": oid}, {"$set": updates})
    if result.matched_count == 0:
        raise lesson_not_found()
    logger.info("Lesson %s updated: %s", lesson_id, sorted(updates))
    return {"success": True, "message": "Lesson updated successfully", "modifiedCount": result.modified_count}


@app.put("/lessons/visibility/{lesson_id}")
async def update_lesson_visibility(
    lesson_id: str,
    body: VisibilityUpdate,
    token_email: str = Depends(verify_token),
    db: AsyncIOMotorDatabase = Depends(get_db),
):
    modified = await set_lesson_field(db, lesson_id, "privacy", body.privacy)
    return {"success": True, "message": "Lesson visibility updated", "modifiedCount": modified}


@app.put("/lessons/access/{lesson_id}")
async def update_lesson_access(
    lesson_id: str,
    body: AccessUpdate,
    token_email: str = Depends(verify_token),
    db: AsyncIOMotorDatabase = Depends(get_db),
):
    modified = await set_lesson_field(db, lesson_id, "accessLevel", body.accessLevel)
    return {"success": True, "message": "Lesson access level updated", "modifiedCount": modified}


@app.put("/lessons/featured/{lesson_id}")
async def update_lesson_featured(
    lesson_id: str,
    body: FeaturedUpdate,
    admin_email: str = Depends(require_admin),
    db: AsyncIOMotorDatabase = Depends(get_db),
):
    modified = await set_lesson_field(db, lesson_id, "isFeatured", body.isFeatured)
    return {"success": True, "message": "Lesson featured flag updated", "modifiedCount": modified}


@app.delete("/lessons/{lesson_id}")
async def delete_lesson(lesson_id: str, db: AsyncIOMotorDatabase = Depends(get_db)):
    oid = to_object_id(lesson_id)
    if oid is None:
        raise lesson_not_found()
    result = await db[LESSONS].delete_one({"_id": oid})
    if result.deleted_count == 0:
        raise lesson_not_found()
    logger.info("Lesson %s deleted", lesson_id)
    return {"success": True, "message": "Lesson deleted successfully", "deletedCount": result.deleted_count}


# ---------- Favorites ----------

@app.post("/favorites")
async def save_favorite(favorite: FavoriteCreate, db: AsyncIOMotorDatabase = Depends(get_db)):
    query = {"userEmail": favorite.userEmail, "lessonId": favorite.lessonId}
    if await db[FAVORITES].find_one(query):
        raise ApiError(409, "Lesson already saved")
    try:
        inserted_id = await create_document(db, FAVORITES, {**query, "savedAt": now_iso()})
    except DuplicateKeyError:
        raise ApiError(409, "Lesson already saved")
    return {"success": True, "message": "Lesson saved to favorites", "insertedId": inserted_id}


@app.get("/favorites")
async def list_favorites(email: str, db: AsyncIOMotorDatabase = Depends(get_db)):
    favorites = await get_documents(db, FAVORITES, {"userEmail": email}, sort=[("savedAt", DESCENDING)])
    by_id = await get_documents_by_ids(db, LESSONS, [f["lessonId"] for f in favorites])
    for favorite in favorites:
        favorite["lesson"] = by_id.get(favorite["lessonId"])
    return {"success": True, "favorites": favorites}


@app.delete("/favorites/{favorite_id}")
async def delete_favorite(favorite_id: str, db: AsyncIOMotorDatabase = Depends(get_db)):
    oid = to_object_id(favorite_id)
    result = await db[FAVORITES].delete_one({"_id": oid}) if oid else None
    if result is None or result.deleted_count == 0:
        raise ApiError(404, "Favorite not found")
    return {"success": True, "message": "Favorite removed", "deletedCount": result.deleted_count}


# ---------- Reports ----------

@app.post("/reportes")
async def create_report(
    report: ReportCreate,
    token_email: str = Depends(verify_token),
    db: AsyncIOMotorDatabase = Depends(get_db),
):
    if not report.lessonId or not report.reporterUserId or not report.reason:
        raise ApiError(400, "Missing required fields")
    data = {**report.model_dump(), "reporterEmail": token_email, "timestamp": now_iso()}
    inserted_id = await create_document(db, REPORTS, data)
    return {"success": True, "message": "Report submitted successfully", "insertedId": inserted_id}


@app.get("/reportes")
async def list_reported_lessons(token_email: str = Depends(verify_token), db: AsyncIOMotorDatabase = Depends(get_db)):
    grouped = await aggregate(db, REPORTS, [
        {"$group": {
            "_id": "$lessonId",
            "reportCount": {"$sum": 1},
            "reasons": {"$push": "$reason"},
            "lastReportedAt": {"$max": "$timestamp"},
        }},
        {"$sort": {"reportCount": -1, "_id": 1}},
    ])
    by_id = await get_documents_by_ids(db, LESSONS, [row["_id"] for row in grouped])
    reports: List[Dict[str, Any]] = []
    for row in grouped:
        lesson = by_id.get(row["_id"]) or {}
        reports.append({
            "lessonId": row.pop("_id"),
            "title": lesson.get("title"),
            "creator": lesson.get("creator"),
            **row,
        })
    return {"success": True, "reports": reports}


@app.get("/reportes/count")
async def count_reports(token_email: str = Depends(verify_token), db: AsyncIOMotorDatabase = Depends(get_db)):
    total = await db[REPORTS].count_documents({})
    lesson_ids = await db[REPORTS].distinct("lessonId")
    return {"success": True, "totalReports": total, "reportedLessons": len(lesson_ids)}


# ---------- Users ----------

@app.post("/user")
async def save_user(payload: UserLogin, db: AsyncIOMotorDatabase = Depends(get_db)):
    now = now_iso()
    defaults = User(
        email=payload.email,
        name=payload.name,
        photo=payload.photo,
        created_at=now,
        last_loggedIn=now,
    ).model_dump(exclude={"email", "last_loggedIn"})
    query = {"email": payload.email}
    update = {"$set": {"last_loggedIn": now}, "$setOnInsert": defaults}
    try:
        result = await db[USERS].update_one(query, update, upsert=True)
    except DuplicateKeyError:
        # A concurrent login inserted first; this one only bumps the timestamp
        result = await db[USERS].update_one(query, {"$set": {"last_loggedIn": now}})
    if result.upserted_id is not None:
        logger.info("Saving new user info for %s", payload.email)
        message = "User data inserted successfully"
    else:
        logger.info("Updating user info for %s", payload.email)
        message = "User login time updated"
    return {
        "success": True,
        "message": message,
        "matchedCount": result.matched_count,
        "upsertedId": str(result.upserted_id) if result.upserted_id is not None else None,
    }


@app.get("/user")
async def list_users(db: AsyncIOMotorDatabase = Depends(get_db)):
    users = await get_documents(db, USERS, sort=[("created_at", DESCENDING)])
    return {"success": True, "users": users}


@app.get("/user/count")
async def count_users(db: AsyncIOMotorDatabase = Depends(get_db)):
    count = await db[USERS].count_documents({})
    return {"success": True, "count": count}


@app.get("/user/role/{email}")
async def get_user_role(email: str, db: AsyncIOMotorDatabase = Depends(get_db)):
    user = await db[USERS].find_one({"email": email}, {"role": 1})
    if not user:
        raise ApiError(404, "User not found", flag="status")
    return {"status": True, "role": user.get("role", "user")}


@app.patch("/user/role/{user_id}")
async def update_user_role(
    user_id: str,
    body: RoleUpdate,
    admin_email: str = Depends(require_admin),
    db: AsyncIOMotorDatabase = Depends(get_db),
):
    oid = to_object_id(user_id)
    result = await db[USERS].update_one({"_id": oid}, {"$set": {"role": body.role}}) if oid else None
    if result is None or result.matched_count == 0:
        raise ApiError(404, "User not found")
    logger.info("User %s role set to %s by %s", user_id, body.role, admin_email)
    return {"success": True, "message": "User role updated", "modifiedCount": result.modified_count}


@app.get("/user/premium/{email}")
async def get_user_premium(email: str, db: AsyncIOMotorDatabase = Depends(get_db)):
    user = await db[USERS].find_one({"email": email}, {"isPremium": 1})
    if not user:
        raise ApiError(404, "User not found")
    return {"success": True, "isPremium": bool(user.get("isPremium", False))}


@app.get("/user/{email}")
async def get_user(email: str, db: AsyncIOMotorDatabase = Depends(get_db)):
    user = await db[USERS].find_one({"email": email})
    if not user:
        raise ApiError(404, "User not found")
    return {"success": True, "user": serialize(user)}


# ---------- Payments ----------

@app.post("/create-checkout-session")
async def create_checkout_session(payload: CheckoutRequest, payments: StripeGateway = Depends(get_payments)):
    params = premium_checkout_params(payload.email, payload.name, payload.price or PREMIUM_PRICE)
    try:
        session = await run_in_threadpool(payments.create_checkout_session, params)
    except stripe.StripeError as e:
        logger.exception("Stripe checkout error for %s: %s", payload.email, e)
        raise ApiError(500, f"Failed to create checkout session: {e}")
    logger.info("Checkout session %s created for %s", session.id, payload.email)
    return {"success": True, "url": session.url, "sessionId": session.id}


@app.get("/verify-payment/{session_id}")
async def verify_payment(
    session_id: str,
    payments: StripeGateway = Depends(get_payments),
    db: AsyncIOMotorDatabase = Depends(get_db),
):
    try:
        session = await run_in_threadpool(payments.retrieve_session, session_id)
    except stripe.StripeError as e:
        logger.exception("Stripe session lookup failed for %s: %s", session_id, e)
        raise ApiError(500, f"Failed to verify payment: {e}", flag="status")
    if getattr(session, "payment_status", None) != "paid":
        raise ApiError(400, "Payment not completed", flag="status")
    email = session_email(session)
    if not email:
        raise ApiError(400, "Checkout session has no customer email", flag="status")
    result = await db[USERS].update_one({"email": email}, {"$set": {"isPremium": True}})
    if result.matched_count == 0:
        raise ApiError(404, "User not found", flag="status")
    logger.info("Premium activated for %s via session %s", email, session_id)
    return {"status": True, "message": "Payment verified, premium access activated", "email": email}


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=PORT)
