"""
config.py - Cấu hình tập trung cho DID core
"""
import logging

from pydantic_settings import BaseSettings


class IdentitySettings(BaseSettings):
    # DID format: did:<method>:<namespace>:<identifier>
    DID_METHOD: str = "ssi"
    DEFAULT_NAMESPACE: str = "mem"

    # Key derivation
    DEFAULT_KEY_TYPE: str = "ed25519"
    MNEMONIC_WORDS: int = 24
    MNEMONIC_LANGUAGE: str = "english"

    # Revocation bitmap size in bits (16Kb)
    REVOCATION_BITS_SIZE: int = 131072

    LOG_LEVEL: str = "INFO"

    class Config:
        env_prefix = "DID_CORE_"
        env_file = ".env"  # Có thể load từ file .env


settings = IdentitySettings()


def configure_logging(level: str = None):
    """Apply LOG_LEVEL to the did_core logger tree"""
    logger = logging.getLogger("did_core")
    logger.setLevel((level or settings.LOG_LEVEL).upper())
    if not logger.handlers:
        handler = logging.StreamHandler()
        handler.setFormatter(logging.Formatter(
            "%(asctime)s %(levelname)s %(name)s: %(message)s"
        ))
        logger.addHandler(handler)
    return logger
