#!/usr/bin/env python

"""
    Configurations for Bookloop

    :copyright: (c) 2025 by AUTHORS
    :license: see LICENSE for more details
"""

import os


# Determine environment
TESTING = os.getenv("TESTING", "false").lower() == "true"

# API server configuration
SCHEME = 'http'
HOST = os.environ.get('BOOKLOOP_HOST', 'localhost')
PORT = int(os.environ.get('BOOKLOOP_PORT', 8080))
WORKERS = int(os.environ.get('BOOKLOOP_WORKERS', 1))
DEBUG = bool(int(os.environ.get('BOOKLOOP_DEBUG', 0)))
LOG_LEVEL = os.environ.get('BOOKLOOP_LOG_LEVEL', 'info')
SSL_CRT = os.environ.get('BOOKLOOP_SSL_CRT')
SSL_KEY = os.environ.get('BOOKLOOP_SSL_KEY')

OPTIONS = {
    'host': HOST,
    'port': PORT,
    'log_level': LOG_LEVEL,
    'reload': DEBUG,
    'workers': WORKERS,
}
if SSL_CRT and SSL_KEY:
    OPTIONS['ssl_keyfile'] = SSL_KEY
    OPTIONS['ssl_certfile'] = SSL_CRT
    SCHEME = 'https'

DB_CONFIG = {
    'user': os.environ.get('DB_USER', 'postgres'),
    'password': os.environ.get('DB_PASSWORD'),
    'host': os.environ.get('DB_HOST', 'localhost'),
    'port': int(os.environ.get('DB_PORT', '5432')),
    'dbname': os.environ.get('DB_NAME', 'bookloop'),
}

# Database configuration
DB_URI = os.environ.get('BOOKLOOP_DB_URI') or (
    "sqlite:///:memory:" if TESTING else
    'postgresql+psycopg2://{user}:{password}@{host}:{port}/{dbname}'.format(**DB_CONFIG)
)

# Circulation policy
LOAN_PERIOD_DAYS = int(os.environ.get('BOOKLOOP_LOAN_PERIOD_DAYS', 30))
REISSUE_LOCK_DAYS = int(os.environ.get('BOOKLOOP_REISSUE_LOCK_DAYS', 30))
REJECTION_COOLDOWN_DAYS = int(os.environ.get('BOOKLOOP_REJECTION_COOLDOWN_DAYS', 12))
FINE_PER_WEEK = int(os.environ.get('BOOKLOOP_FINE_PER_WEEK', 80))

__all__ = [
    'SCHEME', 'HOST', 'PORT', 'DEBUG', 'LOG_LEVEL', 'OPTIONS', 'DB_URI', 'DB_CONFIG', 'TESTING',
    'LOAN_PERIOD_DAYS', 'REISSUE_LOCK_DAYS', 'REJECTION_COOLDOWN_DAYS', 'FINE_PER_WEEK',
]
