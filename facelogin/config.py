import os

from dotenv import load_dotenv

load_dotenv()

# Database
DATABASE_URL = os.getenv("DATABASE_URL", "sqlite:///./facelogin.db")

# JWT (override SECRET_KEY in any real deployment)
SECRET_KEY = os.getenv("SECRET_KEY", "supersecretkey")
ALGORITHM = os.getenv("ALGORITHM", "HS256")
ACCESS_TOKEN_EXPIRE_HOURS = int(os.getenv("ACCESS_TOKEN_EXPIRE_HOURS", "24"))

# Face matching. Both values are tied to the embedding model that produces
# the descriptors; recalibrate them when the model changes.
FACE_MATCH_THRESHOLD = float(os.getenv("FACE_MATCH_THRESHOLD", "0.3"))
FACE_DESCRIPTOR_MIN_LENGTH = int(os.getenv("FACE_DESCRIPTOR_MIN_LENGTH", "128"))

# Server-side descriptor extraction
FACE_MODEL_PRETRAINED = os.getenv("FACE_MODEL_PRETRAINED", "vggface2")

# Activity feed keeps only the newest entries
ACTIVITY_LOG_LIMIT = int(os.getenv("ACTIVITY_LOG_LIMIT", "50"))

CORS_ALLOW_ORIGINS = [
    origin.strip()
    for origin in os.getenv("CORS_ALLOW_ORIGINS", "*").split(",")
    if origin.strip()
]

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")
