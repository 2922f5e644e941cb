#!/usr/bin/env python3
"""
Authentication helpers - user model for Flask-Login, password hashing and
the admin guard used by the CMS routes
"""

import hashlib
import hmac
import secrets
from functools import wraps

from flask import jsonify
from flask_login import UserMixin, current_user

PBKDF2_ITERATIONS = 260000


class User(UserMixin):
    """Logged-in user, built from a storage row"""

    def __init__(self, user_id, username, email=None, google_id=None, avatar_url=None,
                 is_admin=False, created_at=None, last_login=None):
        self.id = user_id
        self.username = username
        self.email = email
        self.google_id = google_id
        self.avatar_url = avatar_url
        self.is_admin = is_admin
        self.created_at = created_at
        self.last_login = last_login

    @classmethod
    def from_row(cls, row):
        if not row:
            return None
        return cls(
            user_id=row['id'],
            username=row['username'],
            email=row.get('email'),
            google_id=row.get('googleId'),
            avatar_url=row.get('avatarUrl'),
            is_admin=row.get('isAdmin', False),
            created_at=row.get('createdAt'),
            last_login=row.get('lastLogin')
        )

    def get_id(self):
        # Flask-Login keeps the id as a string in the session
        return str(self.id)


def hash_password(password):
    """Hash a password using PBKDF2-SHA256 with a random salt"""
    salt = secrets.token_hex(16)
    password_hash = hashlib.pbkdf2_hmac('sha256', password.encode(), salt.encode(), PBKDF2_ITERATIONS).hex()
    return f"{salt}:{password_hash}"


def verify_password(password, hashed_password):
    """Verify a password against its hash"""
    if not password or not hashed_password or ':' not in hashed_password:
        return False
    salt, password_hash = hashed_password.split(':', 1)
    candidate = hashlib.pbkdf2_hmac('sha256', password.encode(), salt.encode(), PBKDF2_ITERATIONS).hex()
    return hmac.compare_digest(candidate, password_hash)


def hash_otp(otp):
    """One-time codes are short lived, a plain digest is enough at rest"""
    return hashlib.sha256(otp.encode()).hexdigest()


def admin_required(view):
    """Reject anonymous users with 401 and non-admins with 403"""
    @wraps(view)
    def wrapped(*args, **kwargs):
        if not current_user.is_authenticated:
            return jsonify({'message': 'Not authenticated'}), 401
        if not getattr(current_user, 'is_admin', False):
            return jsonify({'message': 'Admin access required'}), 403
        return view(*args, **kwargs)
    return wrapped
