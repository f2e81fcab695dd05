import os

from dotenv import load_dotenv

load_dotenv()

MAX_FILE_SIZE = 5 * 1024 * 1024  # 5MB


def _timeout(raw):
    if raw is None or not raw.strip():
        return None
    return float(raw)


class Config:
    API_BASE_URL = os.getenv('API_BASE_URL', 'http://localhost:8086')
    SECRET_KEY = os.getenv('SECRET_KEY', 'devsecret')
    # None waits forever; requests are never retried
    API_TIMEOUT = _timeout(os.getenv('API_TIMEOUT'))
    MAX_CONTENT_LENGTH = int(os.getenv('MAX_CONTENT_LENGTH', str(MAX_FILE_SIZE)))
    LOG_LEVEL = os.getenv('LOG_LEVEL', 'INFO')
