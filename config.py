"""
Application configuration.
This module defines the configuration settings for the Flask application, including database connection, secret key,
operation delays and upload storage. It uses environment variables for sensitive information and defaults for
development. In production, make sure to set the appropriate environment variables and secure the secret key.
"""

import os
from pathlib import Path

BASE_DIR = Path(__file__).resolve().parent


class Config:
    """Base configuration shared by all environments."""

    # IMPORTANT: change this in production
    SECRET_KEY = os.environ.get("SECRET_KEY", "dev-change-me-please")

    # Database: SQLite for development (simple file in project folder)
    SQLALCHEMY_DATABASE_URI = os.environ.get(
        "DATABASE_URL",
        f"sqlite:///{BASE_DIR / 'procurement.db'}"
    )
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    # CSRF protection for mutating JSON calls (X-CSRFToken header)
    WTF_CSRF_ENABLED = True

    APP_NAME = "Procurement Request Tracker"

    # Entity stamped on requests created by clients
    DEFAULT_ENTITY = os.environ.get("DEFAULT_ENTITY", "MGP Investments")

    # Blob storage for request attachments
    UPLOAD_FOLDER = os.environ.get("UPLOAD_FOLDER", str(BASE_DIR / "uploads"))
    MAX_CONTENT_LENGTH = 50 * 1024 * 1024

    # Seconds each store operation waits before it applies (per operation name).
    OPERATION_DELAYS = {
        "create": 1.0,
        "upload": 1.5,
        "default": 0.8,
    }

    LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO")


class TestingConfig(Config):
    """In-memory database, no delays, no CSRF."""

    TESTING = True
    SQLALCHEMY_DATABASE_URI = "sqlite://"
    WTF_CSRF_ENABLED = False
    OPERATION_DELAYS = {"default": 0.0}
    LOG_LEVEL = "DEBUG"
