import os
from dotenv import load_dotenv

load_dotenv()


def normalize_database_url(url):
    """Point postgres URLs at the psycopg2 driver."""
    if url.startswith('postgres://'):
        return url.replace('postgres://', 'postgresql+psycopg2://', 1)
    elif url.startswith('postgresql://') and '+psycopg2' not in url:
        return url.replace('postgresql://', 'postgresql+psycopg2://', 1)
    return url


def _int_env(name, default):
    value = os.getenv(name)
    if value is None or value == '':
        return default
    return int(value)


class Config:
    # Database
    _db_url = os.getenv('DATABASE_URL', 'sqlite:///flowforge.db')
    SQLALCHEMY_DATABASE_URI = normalize_database_url(_db_url)
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    # Security
    SECRET_KEY = os.getenv('SECRET_KEY', 'dev-secret-key-change-in-production')

    # Flask
    FLASK_ENV = os.getenv('FLASK_ENV', 'development')
    DEBUG = os.getenv('FLASK_ENV') == 'development'
    CORS_ORIGINS = os.getenv('CORS_ORIGINS', '')

    # History (undo/redo)
    HISTORY_MAX_SIZE = _int_env('HISTORY_MAX_SIZE', 50)
    HISTORY_DEBOUNCE_MS = _int_env('HISTORY_DEBOUNCE_MS', 500)
    HISTORY_SETTLE_MS = _int_env('HISTORY_SETTLE_MS', 100)

    # Loops
    LOOP_MAX_ITERATIONS = _int_env('LOOP_MAX_ITERATIONS', 500)
    LOOP_BATCH_SIZE = _int_env('LOOP_BATCH_SIZE', 5)

    # Layout
    LAYOUT_DIRECTION = os.getenv('LAYOUT_DIRECTION', 'TB')
    LAYOUT_NODE_SEP = _int_env('LAYOUT_NODE_SEP', 80)
    LAYOUT_RANK_SEP = _int_env('LAYOUT_RANK_SEP', 140)
    LAYOUT_NODE_WIDTH = _int_env('LAYOUT_NODE_WIDTH', 250)
    LAYOUT_NODE_HEIGHT = _int_env('LAYOUT_NODE_HEIGHT', 100)

    # Remote function proxy
    PROXY_BASE_URL = os.getenv('PROXY_BASE_URL', 'http://localhost:54321/functions/v1')
    PROXY_API_KEY = os.getenv('PROXY_API_KEY', '')
    HTTP_TIMEOUT_SECONDS = _int_env('HTTP_TIMEOUT_SECONDS', 30)

    # Process env vars with this prefix are exposed to runs as {{env.NAME}}
    FLOW_ENV_PREFIX = os.getenv('FLOW_ENV_PREFIX', 'FLOW_ENV_')


class TestConfig(Config):
    TESTING = True
    SQLALCHEMY_DATABASE_URI = 'sqlite:///:memory:'
    HISTORY_DEBOUNCE_MS = 0
