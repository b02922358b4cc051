# ==========================================================================================================
# -------------- Configuration file for the MLM Flask application ------------------------------------------
# ==========================================================================================================
import os
from dotenv import load_dotenv


if os.environ.get("FLASK_ENV") != "production":
    load_dotenv()

basedir = os.path.abspath(os.path.dirname(__file__))


def normalize_database_url(url):
    """Heroku/Render style postgres:// URLs need the pg8000 dialect name."""
    if url.startswith("postgres://"):
        return url.replace("postgres://", "postgresql+pg8000://", 1)
    if url.startswith("postgresql://"):
        return url.replace("postgresql://", "postgresql+pg8000://", 1)
    return url


class Config:

    SECRET_KEY = os.getenv("SECRET_KEY")

    FLASK_ENV = os.getenv("FLASK_ENV", "production")
    DEBUG = os.getenv("DEBUG", "False").lower() in ("true", "1", "t")
    TESTING = False

    _database_url = os.getenv("DATABASE_URL")
    if not _database_url:
        _database_url = f"sqlite:///{os.path.join(basedir, 'instance', 'mlm.db')}"

    SQLALCHEMY_DATABASE_URI = normalize_database_url(_database_url)
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    # sqlite uses a single-connection pool, pool sizing only applies to postgres
    if SQLALCHEMY_DATABASE_URI.startswith("sqlite"):
        SQLALCHEMY_ENGINE_OPTIONS = {}
    else:
        SQLALCHEMY_ENGINE_OPTIONS = {
            "pool_size": 10,
            "max_overflow": 20,
            "pool_pre_ping": True,
            "pool_recycle": 300,
        }

    APP_BASE_URL = os.getenv("APP_BASE_URL", "http://localhost:3000")
    LOG_DIR = os.getenv("LOG_DIR", "logs")

    MLM_TREE_DEFAULT_DEPTH = int(os.getenv("MLM_TREE_DEFAULT_DEPTH", "3"))
    MLM_TREE_MAX_DEPTH = int(os.getenv("MLM_TREE_MAX_DEPTH", "5"))
    MLM_PAGE_SIZE = int(os.getenv("MLM_PAGE_SIZE", "20"))
