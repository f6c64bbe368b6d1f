import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import APIRouter, Depends, FastAPI, File, HTTPException, UploadFile
from fastapi.concurrency import run_in_threadpool
from fastapi.middleware.cors import CORSMiddleware
from sqlalchemy.orm import Session

from facelogin.activity import ActivityLog, entry_to_dict
from facelogin.auth import (
    face_login_user,
    get_current_user,
    login_user,
    register_user,
    user_payload,
)
from facelogin.config import CORS_ALLOW_ORIGINS, LOG_LEVEL
from facelogin.dependencies import engine, get_db
from facelogin.face_recognition import NoUsableFace, get_descriptor_extractor, load_image
from facelogin.models import Base, User
from facelogin.schemas import (
    ActivityLogCreate,
    ActivityLogOut,
    ActivitySummary,
    AuthResponse,
    DescriptorResponse,
    FaceLoginRequest,
    LoginRequest,
    MeResponse,
    RegisterRequest,
)

logging.basicConfig(level=LOG_LEVEL, format='%(asctime)s - %(name)s - %(levelname)s - %(message)s')
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    Base.metadata.create_all(bind=engine)
    logger.info("Database tables ready")
    yield


def get_activity_log(db: Session = Depends(get_db)) -> ActivityLog:
    return ActivityLog(db)


# ── Auth ──────────────────────────────────────────────────────────────

auth_router = APIRouter(prefix="/api/auth", tags=["auth"])


@auth_router.post("/register", response_model=AuthResponse, status_code=201)
def register(
    body: RegisterRequest,
    db: Session = Depends(get_db),
    activity: ActivityLog = Depends(get_activity_log),
):
    return register_user(body, db, activity)


@auth_router.post("/login", response_model=AuthResponse)
def login(
    body: LoginRequest,
    db: Session = Depends(get_db),
    activity: ActivityLog = Depends(get_activity_log),
):
    return login_user(body, db, activity)


@auth_router.post("/face-login", response_model=AuthResponse)
def face_login(
    body: FaceLoginRequest,
    db: Session = Depends(get_db),
    activity: ActivityLog = Depends(get_activity_log),
):
    return face_login_user(body, db, activity)


@auth_router.get("/me", response_model=MeResponse)
def me(user: User = Depends(get_current_user)):
    return {"user": user_payload(user)}


# ── Activity ──────────────────────────────────────────────────────────

activity_router = APIRouter(prefix="/api/activity", tags=["activity"])


@activity_router.post("", response_model=ActivityLogOut, status_code=201)
def record_activity(
    body: ActivityLogCreate,
    user: User = Depends(get_current_user),
    activity: ActivityLog = Depends(get_activity_log),
):
    entry = activity.record(user.username, body.action, page=body.page, details=body.details)
    return entry_to_dict(entry)


@activity_router.get("", response_model=list[ActivityLogOut])
def list_activity(
    action: Optional[str] = None,
    search: Optional[str] = None,
    user: User = Depends(get_current_user),
    activity: ActivityLog = Depends(get_activity_log),
):
    return [entry_to_dict(entry) for entry in activity.recent(action=action, search=search)]


@activity_router.get("/summary", response_model=ActivitySummary)
def activity_summary(
    user: User = Depends(get_current_user),
    activity: ActivityLog = Depends(get_activity_log),
):
    return activity.summary()


# ── Face descriptor extraction ────────────────────────────────────────

face_router = APIRouter(prefix="/api/face", tags=["face"])


@face_router.post("/descriptor", response_model=DescriptorResponse)
async def extract_descriptor(
    file: UploadFile = File(...),
    extractor=Depends(get_descriptor_extractor),
):
    try:
        image = load_image(await file.read())
    except ValueError:
        raise HTTPException(status_code=400, detail="Uploaded file is not a valid image")

    try:
        descriptor = await run_in_threadpool(extractor.extract, image)
    except NoUsableFace:
        raise HTTPException(status_code=422, detail="No usable face detected")

    return {"face_descriptor": descriptor}


app = FastAPI(title="Face Login API", version="1.0.0", lifespan=lifespan)

# Add CORS middleware to allow frontend to communicate with backend
app.add_middleware(
    CORSMiddleware,
    allow_origins=CORS_ALLOW_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(auth_router)
app.include_router(activity_router)
app.include_router(face_router)


@app.get("/health")
def health():
    return {"status": "ok"}
