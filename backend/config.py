"""
Configuration et utilitaires partagés
"""

import os
import hashlib
import logging
import secrets
import uuid
from datetime import datetime, timezone
from motor.motor_asyncio import AsyncIOMotorClient
from dotenv import load_dotenv
from pathlib import Path

# Charger .env
ROOT_DIR = Path(__file__).parent
load_dotenv(ROOT_DIR / '.env')

logger = logging.getLogger("config")

# MongoDB
MONGO_URL = os.environ.get('MONGO_URL', 'mongodb://localhost:27017')
DB_NAME = os.environ.get('DB_NAME', 'ugc_portal')

client = AsyncIOMotorClient(MONGO_URL)
db = client[DB_NAME]

logger.info(f"[CONFIG] Using database: {DB_NAME}")

CORS_ORIGINS = os.environ.get('CORS_ORIGINS', '*').split(',')
LOG_LEVEL = os.environ.get('LOG_LEVEL', 'INFO').upper()
SESSION_TTL_DAYS = int(os.environ.get('SESSION_TTL_DAYS', '7'))
DEFAULT_TENANT = os.environ.get('DEFAULT_TENANT', 'UGC')

# SLA tickets (heures) par priorité
TICKET_SLA_FIRST_RESPONSE_HOURS = {
    "critical": int(os.environ.get('SLA_FIRST_RESPONSE_CRITICAL_HOURS', '1')),
    "high": int(os.environ.get('SLA_FIRST_RESPONSE_HIGH_HOURS', '4')),
    "medium": int(os.environ.get('SLA_FIRST_RESPONSE_MEDIUM_HOURS', '8')),
    "low": int(os.environ.get('SLA_FIRST_RESPONSE_LOW_HOURS', '24')),
}
TICKET_SLA_RESOLUTION_HOURS = {
    "critical": int(os.environ.get('SLA_RESOLUTION_CRITICAL_HOURS', '24')),
    "high": int(os.environ.get('SLA_RESOLUTION_HIGH_HOURS', '48')),
    "medium": int(os.environ.get('SLA_RESOLUTION_MEDIUM_HOURS', '72')),
    "low": int(os.environ.get('SLA_RESOLUTION_LOW_HOURS', '120')),
}


def get_db():
    """FastAPI dependency: base MongoDB courante (surchargée dans les tests)"""
    return db


# ==================== HELPERS ====================

def hash_password(password: str) -> str:
    """Hash un mot de passe avec SHA256"""
    return hashlib.sha256(password.encode()).hexdigest()

def generate_token() -> str:
    """Génère un token de session sécurisé"""
    return secrets.token_urlsafe(32)

def new_id() -> str:
    return str(uuid.uuid4())

def now_iso() -> str:
    """Retourne la date/heure actuelle en ISO"""
    return datetime.now(timezone.utc).isoformat()

def parse_iso(value: str) -> datetime:
    """Parse une date ISO (les dates sans fuseau sont considérées UTC)"""
    parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed
