"""Symmetric encryption for router credentials stored in the database."""
import base64
import hashlib

from cryptography.fernet import Fernet, InvalidToken
from flask import current_app


def _fernet() -> Fernet:
    key = current_app.config.get('ENCRYPTION_KEY')
    if not key:
        # Development fallback; ProductionConfig.validate() requires a real key.
        digest = hashlib.sha256(current_app.config['SECRET_KEY'].encode('utf-8')).digest()
        key = base64.urlsafe_b64encode(digest)
    return Fernet(key)


def encrypt(value: str) -> str:
    if value is None:
        return None
    return _fernet().encrypt(value.encode('utf-8')).decode('utf-8')


def decrypt(token: str) -> str:
    if token is None:
        return None
    try:
        return _fernet().decrypt(token.encode('utf-8')).decode('utf-8')
    except InvalidToken as exc:
        raise ValueError('Stored credential cannot be decrypted with the configured key') from exc
