import os
from pathlib import Path
BASE_DIR = Path(__file__).resolve().parent

class Config:
    SECRET_KEY = os.getenv("SECRET_KEY", "dev-secret")
    SQLALCHEMY_DATABASE_URI = os.getenv(
        "DATABASE_URL", f"sqlite:///{(BASE_DIR / 'records.db').as_posix()}"
    )
    SQLALCHEMY_TRACK_MODIFICATIONS = False
    LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")

    # Enroll imported students into the core offerings of their semester.
    IMPORT_AUTO_ENROLL = os.getenv("IMPORT_AUTO_ENROLL", "true").lower() == "true"
    # Max ids per IN (...) clause when deleting a layer.
    DELETE_CHUNK_SIZE = int(os.getenv("DELETE_CHUNK_SIZE", "500"))

class TestConfig(Config):
    TESTING = True
    SECRET_KEY = "test-secret"
    SQLALCHEMY_DATABASE_URI = "sqlite://"
    LOG_LEVEL = "DEBUG"
    IMPORT_AUTO_ENROLL = True
    DELETE_CHUNK_SIZE = 2
