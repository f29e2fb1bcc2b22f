# backend/posledger/config.py
from __future__ import annotations
import os


class Config:
    # Optional "SECRET_KEY", with default dev key
    SECRET_KEY = os.environ.get("SECRET_KEY", "dev-secret-key-change-me")

    # SQLite DB stored in backend/instance/posledger.sqlite3
    SQLALCHEMY_DATABASE_URI = os.environ.get(
        "DATABASE_URL", #optional alternative location
        "sqlite:///posledger.sqlite3", #default local location
    )
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    # Customer balances and lifetime purchases are held in this currency.
    # Sales in any other currency must carry an exchange rate
    # (base units per one unit of the sale currency).
    BASE_CURRENCY = os.environ.get("BASE_CURRENCY", "LYD")
    SUPPORTED_CURRENCIES = ("USD", "LYD")

    DEFAULT_CASHBOX_NAME = os.environ.get("DEFAULT_CASHBOX_NAME", "Main Cashbox")

    SALE_NUMBER_PREFIX = os.environ.get("SALE_NUMBER_PREFIX", "MD")
    EXPENSE_NUMBER_PREFIX = os.environ.get("EXPENSE_NUMBER_PREFIX", "EXP")
    REVENUE_NUMBER_PREFIX = os.environ.get("REVENUE_NUMBER_PREFIX", "REV")

    LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO")
