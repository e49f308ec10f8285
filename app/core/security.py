from cryptography.fernet import Fernet
from app.core.config import settings
import logging

logger = logging.getLogger(__name__)

SECRET_SETTING_SUFFIX = "_secret_key"


def get_cipher():
    """Get Fernet cipher instance for encryption/decryption"""
    key = settings.encryption_key.encode()
    return Fernet(key)


def is_secret_setting(key: str) -> bool:
    """Site settings whose name ends in _secret_key are stored encrypted"""
    return key.endswith(SECRET_SETTING_SUFFIX)


def encrypt_secret(value: str) -> str:
    """Encrypt a secret site setting before storing it in the database"""
    logger.info("encrypt_secret: Entry")

    try:
        encrypted = get_cipher().encrypt(value.encode())
        logger.info("encrypt_secret: Success")
        return encrypted.decode()
    except Exception as e:
        logger.error(f"encrypt_secret: Failure - {e}")
        raise


def decrypt_secret(encrypted_value: str) -> str:
    """Decrypt a secret site setting read from the database"""
    logger.info("decrypt_secret: Entry")

    try:
        decrypted = get_cipher().decrypt(encrypted_value.encode())
        logger.info("decrypt_secret: Success")
        return decrypted.decode()
    except Exception as e:
        logger.error(f"decrypt_secret: Failure - {e}")
        raise
