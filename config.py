import os
from pathlib import Path

from dotenv import load_dotenv

load_dotenv()

# Base directory of the project
BASE_DIR = Path(__file__).resolve().parent

# Which storage backend the composition root wires up: "server" or "local"
STORAGE_MODE = os.getenv("STORAGE_MODE", "server")

# Relational store for server mode
DATABASE_URL = os.getenv("DATABASE_URL", f"sqlite:///{BASE_DIR / 'photo_critique.db'}")

# Client-local key-value store for embedded mode
LOCAL_STORAGE_DIR = Path(os.getenv("LOCAL_STORAGE_DIR", str(BASE_DIR / "local_data")))
# Roughly what a browser grants one origin; 0 disables the quota.
LOCAL_STORAGE_QUOTA_BYTES = int(os.getenv("LOCAL_STORAGE_QUOTA_BYTES", str(5 * 1024 * 1024)))

# Password hashing configuration (passlib pbkdf2_sha256)
PASSWORD_HASH_ROUNDS = int(os.getenv("PASSWORD_HASH_ROUNDS", "29000"))

# Account rules
USERNAME_MIN_LENGTH = 3
USERNAME_MAX_LENGTH = 20
PASSWORD_MIN_LENGTH = 6

# History limits. The two capacities are independent product settings.
SERVER_HISTORY_CAPACITY = int(os.getenv("SERVER_HISTORY_CAPACITY", "50"))
LOCAL_HISTORY_CAPACITY = int(os.getenv("LOCAL_HISTORY_CAPACITY", "5"))
HISTORY_RETURN_LIMIT = 50
HISTORY_MAX_AGE_HOURS = 24
# Records kept when the embedded store runs out of quota
QUOTA_RETRY_KEEP = 3

# Thumbnail settings for embedded-mode history images
THUMBNAIL_MAX_WIDTH = 400
THUMBNAIL_JPEG_QUALITY = 60

# Client settings
API_BASE_URL = os.getenv("API_BASE_URL", "http://localhost:3000")
HTTP_TIMEOUT = float(os.getenv("HTTP_TIMEOUT", "30"))

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")
