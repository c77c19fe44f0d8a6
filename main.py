import logging
import os

from bson import ObjectId
from fastapi import FastAPI, HTTPException, Depends, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from fastapi.middleware.cors import CORSMiddleware
from fastapi.staticfiles import StaticFiles
from pymongo.errors import DuplicateKeyError

import config
import database
from database import create_document, get_collection, to_public
from errors import InvalidInput, NotFound, Unauthenticated, internal_error
from posts import legacy_router, router as posts_router
from schemas import LoginRequest, RegisterRequest, User
from security import create_access_token, get_current_user, hash_password, verify_password

logging.basicConfig(
    level=getattr(logging, config.LOG_LEVEL, logging.INFO),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)

app = FastAPI(title="Captions API")

app.add_middleware(
    CORSMiddleware,
    allow_origins=config.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Uploaded post images
os.makedirs(config.IMAGES_DIR, exist_ok=True)
app.mount("/images", StaticFiles(directory=config.IMAGES_DIR), name="images")

app.include_router(posts_router)
app.include_router(legacy_router)


@app.on_event("startup")
def create_indexes():
    try:
        database.ensure_indexes()
    except Exception:
        logger.exception("Could not create database indexes")


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError):
    # Malformed or mistyped request input is always a 400
    error = exc.errors()[0] if exc.errors() else {}
    field = ".".join(str(p) for p in error.get("loc", ()) if p != "body")
    message = error.get("msg", "Invalid input")
    detail = f"Invalid input: {field}: {message}" if field else f"Invalid input: {message}"
    return JSONResponse(status_code=InvalidInput().status_code, content={"detail": detail})


@app.get("/")
def read_root():
    return {"message": "Captions API is running"}


@app.get("/test")
def test_database():
    """Ping the database and list a few collections."""
    try:
        collections = get_collection("user").database.list_collection_names()
        return {"backend": "running", "connection_status": "Connected", "collections": collections[:10]}
    except Exception as e:
        logger.warning("Database ping failed: %s", e)
        return {"backend": "running", "connection_status": "Not Connected", "collections": []}


# ----------------- Auth -----------------
@app.post("/api/auth/register", status_code=201)
def register(req: RegisterRequest):
    try:
        users = get_collection("user")
        email = str(req.email).lower()
        if users.find_one({"email": email}, {"_id": 1}):
            raise InvalidInput("Email already registered")
        user = User(
            name=req.name,
            username=req.username,
            email=email,
            password_hash=hash_password(req.password),
        )
        try:
            uid = create_document("user", user)
        except DuplicateKeyError:
            # lost a race with a concurrent registration
            raise InvalidInput("Email already registered")
        logger.info("Registered user %s", uid)
        created = users.find_one({"_id": ObjectId(uid)})
        return {
            "message": "User registered successfully",
            "token": create_access_token(uid),
            "user": to_public(created),
        }
    except HTTPException:
        raise
    except Exception as e:
        logger.exception("Error registering user")
        raise internal_error("Server error while registering user", e)


@app.post("/api/auth/login")
def login(req: LoginRequest):
    try:
        user = get_collection("user").find_one({"email": str(req.email).lower()})
        if not user or not verify_password(req.password, user.get("password_hash", "")):
            raise Unauthenticated("Invalid credentials")
        return {"token": create_access_token(str(user["_id"])), "user": to_public(user)}
    except HTTPException:
        raise
    except Exception as e:
        logger.exception("Error logging in")
        raise internal_error("Server error while logging in", e)


@app.get("/api/auth/me")
def me(claims: dict = Depends(get_current_user)):
    try:
        user = get_collection("user").find_one({"_id": ObjectId(claims["id"])})
        if not user:
            raise NotFound("User not found")
        return to_public(user)
    except HTTPException:
        raise
    except Exception as e:
        logger.exception("Error fetching current user")
        raise internal_error("Server error while fetching user", e)


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=config.PORT)
