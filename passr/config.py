from dotenv import load_dotenv
import os

load_dotenv()

MONGO_URI = os.getenv("MONGO_URI")
MONGO_DB_NAME = os.getenv("MONGO_DB_NAME", "passr")

JWT_SECRET_KEY = os.getenv("JWT_SECRET_KEY")
JWT_ALGORITHM = os.getenv("JWT_ALGORITHM", "HS256")

CLOUDINARY_CLOUD_NAME = os.getenv("CLOUDINARY_CLOUD_NAME")
CLOUDINARY_API_KEY = os.getenv("CLOUDINARY_API_KEY")
CLOUDINARY_API_SECRET = os.getenv("CLOUDINARY_API_SECRET")

EXPO_PUSH_URL = os.getenv("EXPO_PUSH_URL", "https://exp.host/--/api/v2/push/send")

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")

# Default to false unless explicitly set to 'true'
ENABLE_EXPIRED_LISTING_CLEANUP = os.getenv("ENABLE_EXPIRED_LISTING_CLEANUP") == "true"

LISTING_TTL_HOURS = int(os.getenv("LISTING_TTL_HOURS", "24"))
CLEANUP_INTERVAL_SECONDS = int(os.getenv("CLEANUP_INTERVAL_SECONDS", "30"))
WARNING_INTERVAL_SECONDS = int(os.getenv("WARNING_INTERVAL_SECONDS", "3600"))
# The warning window must end at or before LISTING_TTL_HOURS or some listings are never warned;
# with the 24h default TTL, set e.g. WARNING_WINDOW_START_HOURS=2 and WARNING_WINDOW_END_HOURS=3
WARNING_WINDOW_START_HOURS = int(os.getenv("WARNING_WINDOW_START_HOURS", "24"))
WARNING_WINDOW_END_HOURS = int(os.getenv("WARNING_WINDOW_END_HOURS", "25"))
