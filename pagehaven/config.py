import os


class Config:
    """Base configuration. Shared across all environments."""

    # --- Required ---
    SECRET_KEY = os.environ.get("SECRET_KEY")

    # Handle DATABASE_URL: some PaaS providers use "postgres://"
    # which SQLAlchemy 1.4+ doesn't accept.
    _db_url = os.environ.get("DATABASE_URL", "")
    if _db_url.startswith("postgres://"):
        _db_url = _db_url.replace("postgres://", "postgresql://", 1)
    SQLALCHEMY_DATABASE_URI = _db_url or None

    # --- Hosting ---
    # Web app (dashboard, gate pages). Every other host is a hosted site.
    WEB_BASE_URL = os.environ.get("WEB_BASE_URL", "http://localhost:5001")
    # Sites are served from <subdomain>.<SITES_DOMAIN>
    SITES_DOMAIN = os.environ.get("SITES_DOMAIN", "localhost")
    STATIC_CACHE_CONTROL = os.environ.get(
        "STATIC_CACHE_CONTROL", "public, max-age=3600"
    )
    PASSWORD_COOKIE_MAX_AGE = int(
        os.environ.get("PASSWORD_COOKIE_MAX_AGE", 30 * 24 * 60 * 60)
    )

    # --- Object storage (Supabase) ---
    # Without SUPABASE_URL + SUPABASE_SERVICE_KEY, files live under
    # instance/storage/ on local disk.
    SUPABASE_URL = os.environ.get("SUPABASE_URL")                # e.g. https://xyz.supabase.co
    SUPABASE_SERVICE_KEY = os.environ.get("SUPABASE_SERVICE_KEY") # service_role key for storage
    SUPABASE_STORAGE_BUCKET = os.environ.get("SUPABASE_STORAGE_BUCKET", "sites")
    LOCAL_STORAGE_DIR = os.environ.get("LOCAL_STORAGE_DIR")      # defaults to instance/storage

    # --- SQLAlchemy ---
    SQLALCHEMY_TRACK_MODIFICATIONS = False
    SQLALCHEMY_ENGINE_OPTIONS = {
        "pool_pre_ping": True,
        "pool_recycle": 300,
    }

    # --- Session / cookies ---
    # Set to SITES_DOMAIN (e.g. "pagehaven.io") so the login session reaches site subdomains.
    SESSION_COOKIE_DOMAIN = os.environ.get("SESSION_COOKIE_DOMAIN") or None
    SESSION_COOKIE_HTTPONLY = True
    SESSION_COOKIE_SAMESITE = "Lax"
    REMEMBER_COOKIE_DOMAIN = SESSION_COOKIE_DOMAIN
    REMEMBER_COOKIE_HTTPONLY = True
    REMEMBER_COOKIE_SAMESITE = "Lax"

    # --- WTF / CSRF ---
    WTF_CSRF_ENABLED = True

    @staticmethod
    def validate():
        """Fail fast if required env vars are missing."""
        required = [
            "SECRET_KEY",
            "DATABASE_URL",
            "WEB_BASE_URL",
            "SITES_DOMAIN",
        ]
        missing = [v for v in required if not os.environ.get(v)]
        if missing:
            raise RuntimeError(
                f"Missing required environment variables: {', '.join(missing)}"
            )


class DevConfig(Config):
    """Local development."""

    DEBUG = True
    SESSION_COOKIE_SECURE = False
    REMEMBER_COOKIE_SECURE = False


class TestConfig(Config):
    """Testing — in-memory SQLite, CSRF disabled, local storage."""

    TESTING = True
    DEBUG = True
    SECRET_KEY = "test-secret-key-not-for-production"
    SQLALCHEMY_DATABASE_URI = "sqlite:///:memory:"
    SQLALCHEMY_ENGINE_OPTIONS = {}
    WEB_BASE_URL = "https://app.example.com"
    SITES_DOMAIN = "example.com"
    STATIC_CACHE_CONTROL = "public, max-age=3600"
    SUPABASE_URL = None
    SUPABASE_SERVICE_KEY = None
    WTF_CSRF_ENABLED = False  # disable CSRF for test forms
    RATELIMIT_ENABLED = False  # disable rate limiting in tests
    # Shared by app.example.com and every <site>.example.com
    SESSION_COOKIE_DOMAIN = "example.com"
    REMEMBER_COOKIE_DOMAIN = "example.com"
    SESSION_COOKIE_SECURE = False
    REMEMBER_COOKIE_SECURE = False

    @staticmethod
    def validate():
        """Skip validation in test mode — everything is hardcoded."""
        pass


class ProdConfig(Config):
    """Production."""

    DEBUG = False
    SESSION_COOKIE_SECURE = True
    REMEMBER_COOKIE_SECURE = True


config_by_name = {
    "development": DevConfig,
    "production": ProdConfig,
    "testing": TestConfig,
}
