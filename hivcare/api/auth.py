"""
Session tokens, the `token_required` middleware and the OTP login flow.
"""

import logging
from datetime import timedelta
from functools import wraps
from typing import Any, Dict, Optional, Tuple

import jwt
from flask import current_app, jsonify, request
from sqlalchemy import or_, select, update
from sqlalchemy.orm import Session

from hivcare.api.serializers import user_to_dict
from hivcare.audit import RequestInfo
from hivcare.config import (
    ALLOW_LOGIN_ON_DELIVERY_FAILURE,
    AUTH_RATE_LIMIT,
    JWT_ALGORITHM,
    OTP_EXPIRY_MINUTES,
    OTP_FALLBACK_CODE,
    OTP_LENGTH,
    OTP_MAX_ATTEMPTS,
    SECRET_KEY,
    SESSION_COOKIE,
    SESSION_EXPIRY_DAYS,
)
from hivcare.constants import OtpType, Role
from hivcare.database import session_scope, utcnow
from hivcare.entities import AuthSession, OtpCode, User
from hivcare.errors import RateLimitExceeded, RecordNotFound, ValidationFailed
from hivcare.models import SessionData
from hivcare.otp import generate_otp, hash_otp, is_otp_expired, otp_expiry_time, verify_otp
from hivcare.rate_limit import is_allowed

logger = logging.getLogger(__name__)


# ── Tokens ───────────────────────────────────────────────────────────

def generate_token(user: User, auth_session: AuthSession) -> str:
    """Sign a JWT describing *user*, bound to the stored *auth_session*."""
    now = utcnow()
    payload = {
        "user_id": user.id,
        "email": user.email,
        "roles": user.role_names,
        "facility_id": user.facility_id,
        "session_id": auth_session.id,
        "iat": now,
        "exp": auth_session.expires_at,
    }
    return jwt.encode(payload, SECRET_KEY, algorithm=JWT_ALGORITHM)


def verify_token(token: str) -> Optional[Dict[str, Any]]:
    """Verify a JWT and return the decoded payload (or None)."""
    try:
        return jwt.decode(token, SECRET_KEY, algorithms=[JWT_ALGORITHM])
    except jwt.ExpiredSignatureError:
        return None
    except jwt.InvalidTokenError:
        return None


def create_session(db: Session, user: User) -> Tuple[str, AuthSession]:
    auth_session = AuthSession(
        user_id=user.id,
        expires_at=utcnow() + timedelta(days=SESSION_EXPIRY_DAYS),
    )
    db.add(auth_session)
    db.flush()
    return generate_token(user, auth_session), auth_session


def resolve_session(db: Session, token: str) -> Optional[SessionData]:
    """Turn a token into the caller's session, or None if it is not live."""
    payload = verify_token(token)
    if not payload:
        return None

    stored = db.get(AuthSession, payload.get("session_id"))
    if (
        stored is None
        or stored.user_id != payload.get("user_id")
        or stored.revoked_at is not None
        or stored.expires_at <= utcnow()
    ):
        return None

    roles = []
    for name in payload.get("roles") or []:
        try:
            roles.append(Role(name))
        except ValueError:
            logger.warning("Ignoring unknown role '%s' in session %s", name, stored.id)

    return SessionData(
        user_id=payload["user_id"],
        email=payload.get("email", ""),
        roles=tuple(roles),
        facility_id=payload.get("facility_id"),
        session_id=stored.id,
    )


def revoke_user_sessions(db: Session, user_id: str) -> int:
    result = db.execute(
        update(AuthSession)
        .where(AuthSession.user_id == user_id, AuthSession.revoked_at.is_(None))
        .values(revoked_at=utcnow())
    )
    return result.rowcount


# ── Request helpers ──────────────────────────────────────────────────

def request_token() -> Optional[str]:
    auth_header = request.headers.get("Authorization", "")
    if auth_header:
        parts = auth_header.split(" ")
        if len(parts) == 2 and parts[0].lower() == "bearer":
            return parts[1]
        return None
    return request.cookies.get(SESSION_COOKIE)


def client_ip() -> str:
    forwarded = request.headers.get("X-Forwarded-For")
    if forwarded:
        return forwarded.split(",")[0].strip() or "unknown"
    return request.headers.get("X-Real-IP") or request.remote_addr or "unknown"


def request_info() -> RequestInfo:
    return RequestInfo(ip=client_ip(), user_agent=request.headers.get("User-Agent"))


def token_required(f):
    """Decorator that protects endpoints with session-token authentication."""
    @wraps(f)
    def decorated(*args, **kwargs):
        token = request_token()
        if not token:
            return jsonify({"error": "Authentication required"}), 401

        with session_scope(current_app.config["SESSION_FACTORY"]) as db:
            session = resolve_session(db, token)
        if session is None:
            return jsonify({"error": "Invalid or expired session"}), 401

        request.session_data = session
        request.token = token
        return f(*args, **kwargs)

    return decorated


def mask_destination(sent_to: str) -> str:
    if "@" in sent_to:
        local, domain = sent_to.split("@", 1)
        return f"{local[:2]}***@{domain}"
    if len(sent_to) <= 6:
        return "***"
    return f"{sent_to[:2]}***{sent_to[-4:]}"


# ── OTP flow ─────────────────────────────────────────────────────────

def _parse_otp_request(data: dict) -> Tuple[OtpType, Optional[str], Optional[str]]:
    try:
        otp_type = OtpType(data.get("type"))
    except ValueError:
        raise ValidationFailed("Invalid request", {"type": "must be EMAIL or SMS"})
    email = (data.get("email") or "").strip() or None
    phone = (data.get("phone") or "").strip() or None
    if otp_type == OtpType.EMAIL and not email:
        raise ValidationFailed("Invalid request", {"email": "Email required for EMAIL type"})
    if otp_type == OtpType.SMS and not phone:
        raise ValidationFailed("Invalid request", {"phone": "Phone required for SMS type"})
    return otp_type, email, phone


def _find_user(db: Session, email: Optional[str], phone: Optional[str]) -> User:
    conditions = []
    if email:
        conditions.append(User.email == email)
    if phone:
        conditions.append(User.phone == phone)
    user = db.scalars(
        select(User).where(or_(*conditions), User.is_active.is_(True))
    ).first()
    if user is None:
        raise RecordNotFound("User not found")
    return user


def _destination(user: User, otp_type: OtpType, email, phone) -> str:
    if otp_type == OtpType.EMAIL:
        return email or user.email
    return phone or user.phone or ""


def register_auth_routes(app, session_factory, notifier, audit):
    """Register the login, logout and current-user routes on *app*."""

    @app.route("/api/auth/otp/request", methods=["POST"])
    def request_otp():
        limit, window = AUTH_RATE_LIMIT
        verdict = is_allowed(f"{client_ip()}:{request.headers.get('User-Agent', 'unknown')}",
                             limit, window)
        if not verdict.allowed:
            raise RateLimitExceeded(verdict.reset_time)

        otp_type, email, phone = _parse_otp_request(request.get_json(silent=True) or {})

        with session_scope(session_factory) as db:
            user = _find_user(db, email, phone)
            sent_to = _destination(user, otp_type, email, phone)

            code = generate_otp(OTP_LENGTH)
            if otp_type == OtpType.EMAIL:
                result = notifier.send_email_otp(sent_to, code)
            else:
                result = notifier.send_sms_otp(sent_to, code)

            if not result.success:
                if not ALLOW_LOGIN_ON_DELIVERY_FAILURE:
                    logger.error("OTP delivery to user %s failed: %s", user.id, result.error)
                    return jsonify({"error": "Failed to send OTP"}), 500
                logger.warning(
                    "OTP delivery to user %s failed (%s); login allowed by "
                    "ALLOW_LOGIN_ON_DELIVERY_FAILURE%s",
                    user.id, result.error,
                    " with the fallback code" if OTP_FALLBACK_CODE else "",
                )
                if OTP_FALLBACK_CODE:
                    code = OTP_FALLBACK_CODE

            expires_at = otp_expiry_time(OTP_EXPIRY_MINUTES)
            db.add(OtpCode(
                user_id=user.id,
                type=otp_type.value,
                code_hash=hash_otp(code),
                sent_to=sent_to,
                expires_at=expires_at,
            ))

        return jsonify({
            "success": True,
            "sent_to": mask_destination(sent_to),
            "delivered": result.success,
            "expires_at": expires_at.isoformat(),
        }), 200

    @app.route("/api/auth/otp/verify", methods=["POST"])
    def verify_otp_code():
        data = request.get_json(silent=True) or {}
        otp_type, email, phone = _parse_otp_request(data)
        code = str(data.get("code") or "")
        if len(code) != OTP_LENGTH:
            raise ValidationFailed("Invalid request", {"code": f"must be {OTP_LENGTH} digits"})

        with session_scope(session_factory) as db:
            user = _find_user(db, email, phone)
            sent_to = _destination(user, otp_type, email, phone)
            now = utcnow()

            record = db.scalars(
                select(OtpCode)
                .where(
                    OtpCode.user_id == user.id,
                    OtpCode.type == otp_type.value,
                    OtpCode.sent_to == sent_to,
                    OtpCode.consumed_at.is_(None),
                    OtpCode.expires_at > now,
                )
                .order_by(OtpCode.created_at.desc())
            ).first()

            if record is None or is_otp_expired(record.expires_at, now):
                return jsonify({"error": "Invalid or expired OTP"}), 400
            if record.attempts >= OTP_MAX_ATTEMPTS:
                return jsonify({"error": "Too many attempts. Please request a new code."}), 429

            # Counted before checking so failed guesses are persisted.
            record.attempts += 1
            if not verify_otp(code, record.code_hash):
                return jsonify({"error": "Invalid OTP"}), 400

            record.consumed_at = now
            token, auth_session = create_session(db, user)
            profile = user_to_dict(user)

        audit.log_login(user.id, request_info())

        response = jsonify({
            "success": True,
            "token": token,
            "user": profile,
            "expires_at": auth_session.expires_at.isoformat(),
        })
        response.set_cookie(
            SESSION_COOKIE, token,
            max_age=SESSION_EXPIRY_DAYS * 24 * 3600,
            httponly=True,
            secure=request.is_secure,
            samesite="Lax",
            path="/",
        )
        return response, 200

    @app.route("/api/auth/logout", methods=["POST"])
    @token_required
    def logout():
        with session_scope(session_factory) as db:
            revoked = revoke_user_sessions(db, request.session_data.user_id)
        logger.info("Revoked %d session(s) for user %s", revoked, request.session_data.user_id)

        response = jsonify({"success": True, "message": "Logged out successfully"})
        response.delete_cookie(SESSION_COOKIE, path="/")
        return response, 200

    @app.route("/api/auth/me", methods=["GET"])
    @token_required
    def current_user():
        session = request.session_data
        with session_scope(session_factory) as db:
            user = db.get(User, session.user_id)
            display_name = user.display_name if user else None
        return jsonify({
            "success": True,
            "user": {
                "id": session.user_id,
                "email": session.email,
                "display_name": display_name,
                "roles": [r.value for r in session.roles],
                "facility_id": session.facility_id,
            },
        }), 200
