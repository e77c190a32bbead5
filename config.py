import os

from dotenv import load_dotenv

load_dotenv()

DATABASE_URL = os.getenv("DATABASE_URL") or os.getenv("MONGODB_URI", "mongodb://localhost:27017")
DATABASE_NAME = os.getenv("DATABASE_NAME", "DigitalLifeLessonsDB")

CLIENT_DOMAIN = os.getenv("CLIENT_DOMAIN", "http://localhost:5173").rstrip("/")
ALLOWED_ORIGINS = ["http://localhost:5173", "http://localhost:5174"]
if CLIENT_DOMAIN not in ALLOWED_ORIGINS:
    ALLOWED_ORIGINS.append(CLIENT_DOMAIN)

# Base64-encoded service account JSON; falls back to a file on disk
FB_SERVICE_KEY = os.getenv("FB_SERVICE_KEY")
FIREBASE_SERVICE_ACCOUNT = os.getenv("FIREBASE_SERVICE_ACCOUNT", "firebase-service-account.json")

STRIPE_SECRET_KEY = os.getenv("STRIPE_SECRET_KEY")
PREMIUM_PRICE = int(os.getenv("PREMIUM_PRICE", "1500"))
PREMIUM_CURRENCY = os.getenv("PREMIUM_CURRENCY", "bdt")

LOG_LEVEL = (os.getenv("LOG_LEVEL", "INFO") or "INFO").strip().upper()
PORT = int(os.getenv("PORT", 8000))
