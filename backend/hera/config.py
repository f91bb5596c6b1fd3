# backend/hera/config.py
from __future__ import annotations
import os


class Config:
    SECRET_KEY = os.environ.get("SECRET_KEY", "dev-secret-key-change-me")

    SQLALCHEMY_DATABASE_URI = os.environ.get(
        "DATABASE_URL",  # optional alternative location
        "sqlite:///hera.sqlite3",  # default local location
    )
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    LOG_LEVEL = os.environ.get("HERA_LOG_LEVEL", "INFO")

    # Currency units; lines must reconcile to within this amount
    BALANCE_TOLERANCE = os.environ.get("HERA_BALANCE_TOLERANCE", "0.01")

    DEFAULT_QUERY_LIMIT = int(os.environ.get("HERA_DEFAULT_QUERY_LIMIT", "100"))
    MAX_QUERY_LIMIT = int(os.environ.get("HERA_MAX_QUERY_LIMIT", "1000"))
