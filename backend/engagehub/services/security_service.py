# /engagehub/services/security_service.py

import hmac
import hashlib
import re
import secrets
import bcrypt

from engagehub.services.cache_service import cache_service

# Password hashing, webhook signature checks, phone normalisation, OTP
# generation and Redis-backed login lockouts.

class SecurityService:
    @staticmethod
    def verify_webhook_signature(payload: bytes, signature: str, secret: str) -> bool:
        if not signature or not signature.startswith('sha256=') or not secret:
            return False
        expected_signature = hmac.new(secret.encode('utf-8'), payload, hashlib.sha256).hexdigest()
        return hmac.compare_digest(expected_signature, signature[7:])

    @staticmethod
    def hash_password(password: str) -> str:
        return bcrypt.hashpw(password.encode('utf-8'), bcrypt.gensalt()).decode('utf-8')

    @staticmethod
    def verify_password(password: str, hashed: str) -> bool:
        # A missing or malformed hash counts as a mismatch
        try:
            return bcrypt.checkpw(password.encode('utf-8'), hashed.encode('utf-8'))
        except (ValueError, TypeError, AttributeError):
            return False

    @staticmethod
    def generate_otp() -> str:
        return f"{secrets.randbelow(900000) + 100000}"


class EnhancedSecurityService(SecurityService):
    @staticmethod
    def sanitize_phone_number(phone: str) -> str:
        """
        Returns an E.164-style number (e.g. +919876543210), or "" when the
        input has fewer than 10 or more than 15 digits.
        """
        if not phone or not isinstance(phone, str):
            return ""

        clean_phone = re.sub(r"[^\d+]", "", phone.strip())
        if not clean_phone.startswith("+"):
            clean_phone = "+" + clean_phone.lstrip("+")

        if not re.match(r"^\+\d{10,15}$", clean_phone):
            return ""
        return clean_phone

    @staticmethod
    def mask_identifier(value: str, visible: int = 4) -> str:
        """Mask all but the last `visible` characters (Aadhaar, account numbers)."""
        if not value:
            return ""
        if len(value) <= visible:
            return "*" * len(value)
        return "*" * (len(value) - visible) + value[-visible:]


# --- Login Tracking ---
class RedisLoginAttemptTracker:
    def __init__(self, redis_client):
        self.redis = redis_client
        self.lockout_duration = 900
        self.max_attempts = 5

    async def is_locked_out(self, key: str) -> bool:
        if not self.redis:
            return False
        attempts = await self.redis.get(f"login_attempts:{key}")
        return bool(attempts) and int(attempts) >= self.max_attempts

    async def record_attempt(self, key: str):
        if not self.redis:
            return
        redis_key = f"login_attempts:{key}"
        current = await self.redis.incr(redis_key)
        if current == 1:
            await self.redis.expire(redis_key, self.lockout_duration)

    async def reset(self, key: str):
        if self.redis:
            await self.redis.delete(f"login_attempts:{key}")

# Globally accessible instance
login_tracker = RedisLoginAttemptTracker(cache_service.redis)
