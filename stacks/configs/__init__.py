#!/usr/bin/env python

"""
    Configurations for Stacks

    :copyright: (c) 2025 by AUTHORS
    :license: see LICENSE for more details
"""

import os


# Determine environment
TESTING = os.getenv("TESTING", "false").lower() == "true"

# API server configuration
SCHEME = 'http'
HOST = os.environ.get('STACKS_HOST', 'localhost')
PORT = int(os.environ.get('STACKS_PORT', 8080))
WORKERS = int(os.environ.get('STACKS_WORKERS', 1))
DEBUG = bool(int(os.environ.get('STACKS_DEBUG', 0)))
LOG_LEVEL = os.environ.get('STACKS_LOG_LEVEL', 'info')
SSL_CRT = os.environ.get('STACKS_SSL_CRT')
SSL_KEY = os.environ.get('STACKS_SSL_KEY')
CORS_ORIGINS = os.environ.get('STACKS_CORS_ORIGINS', 'http://localhost:3000').split(',')

# Circulation rules
LOAN_PERIOD_DAYS = int(os.environ.get('STACKS_LOAN_PERIOD_DAYS', 14))
MAX_CAPACITY = int(os.environ.get('STACKS_MAX_CAPACITY', 50))

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
    'dbname': os.environ.get('DB_NAME', 'stacks'),
}

# Database configuration
DB_URI = os.environ.get('STACKS_DB_URI') or (
    "sqlite:///:memory:" if TESTING else
    'postgresql+psycopg2://{user}:{password}@{host}:{port}/{dbname}'.format(**DB_CONFIG)
)

__all__ = [
    'SCHEME', 'HOST', 'PORT', 'DEBUG', 'OPTIONS', 'DB_URI', 'DB_CONFIG',
    'TESTING', 'LOAN_PERIOD_DAYS', 'MAX_CAPACITY', 'CORS_ORIGINS'
]
