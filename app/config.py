import os
from pathlib import Path


BASE_DIR = Path(__file__).resolve().parent.parent

DEFAULT_SCREENSHOT_SERVICE_URL = (
    "https://shot.screenshotapi.net/screenshot?token=demo&url={url}"
    "&width=1200&height=800&output=image&file_type=png&wait_for_event=load"
)


class Config:
    SECRET_KEY = os.environ.get("SECRET_KEY", "default-secret-key")
    SQLALCHEMY_DATABASE_URI = os.environ.get(
        "DATABASE_URL", f"sqlite:///{BASE_DIR / 'markshelf.db'}"
    )
    SQLALCHEMY_TRACK_MODIFICATIONS = False
    LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO")
    SCHEDULER_ENABLED = os.environ.get("SCHEDULER_ENABLED", "1") == "1"
    SEED_DEFAULTS = os.environ.get("SEED_DEFAULTS", "1") == "1"
    TITLE_FETCH_TIMEOUT = float(os.environ.get("TITLE_FETCH_TIMEOUT", "5"))
    META_FETCH_TIMEOUT = float(os.environ.get("META_FETCH_TIMEOUT", "7"))
    IMAGE_PROXY_TIMEOUT = float(os.environ.get("IMAGE_PROXY_TIMEOUT", "7"))
    SCREENSHOT_TIMEOUT = float(os.environ.get("SCREENSHOT_TIMEOUT", "10"))
    SCREENSHOT_SERVICE_URL = os.environ.get(
        "SCREENSHOT_SERVICE_URL", DEFAULT_SCREENSHOT_SERVICE_URL
    )
    CONTENT_MAX_BYTES = int(os.environ.get("CONTENT_MAX_BYTES", "2500000"))
    ENHANCEMENT_WORKERS = int(os.environ.get("ENHANCEMENT_WORKERS", "8"))
    ENHANCEMENT_FETCH_REMOTE = os.environ.get("ENHANCEMENT_FETCH_REMOTE", "1") == "1"
    ENHANCEMENT_SWEEP_INTERVAL_MINUTES = int(
        os.environ.get("ENHANCEMENT_SWEEP_INTERVAL_MINUTES", "1440")
    )
    ENHANCEMENT_SWEEP_LIMIT = int(os.environ.get("ENHANCEMENT_SWEEP_LIMIT", "50"))
    PRESET_DESCRIPTIONS_PATH = os.environ.get("PRESET_DESCRIPTIONS_PATH", "")


class TestConfig(Config):
    TESTING = True
    SQLALCHEMY_DATABASE_URI = "sqlite:///:memory:"
    SCHEDULER_ENABLED = False
    SEED_DEFAULTS = False
    ENHANCEMENT_FETCH_REMOTE = False
    PRESET_DESCRIPTIONS_PATH = ""
    SCREENSHOT_SERVICE_URL = ""
