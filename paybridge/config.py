import os


def _env_flag(name, default=""):
    return os.environ.get(name, default).lower() in ("1", "true", "yes")


class Config:
    """Base configuration. Shared across all environments."""

    # --- Payment platform (hosted checkout + settlement webhooks) ---
    PAYMENT_API_KEY = os.environ.get("PAYMENT_API_KEY")
    PAYMENT_API_BASE_URL = os.environ.get(
        "PAYMENT_API_BASE_URL", "https://api.whop.com/v2"
    )
    PAYMENT_DEFAULT_PLAN_ID = os.environ.get("PAYMENT_DEFAULT_PLAN_ID")
    PAYMENT_DEFAULT_PLAN_NAME = os.environ.get(
        "PAYMENT_DEFAULT_PLAN_NAME", "Standard"
    )
    SUCCESS_REDIRECT_URL = os.environ.get("SUCCESS_REDIRECT_URL")
    CANCEL_REDIRECT_URL = os.environ.get("CANCEL_REDIRECT_URL")

    # --- Price bands ---
    # PLAN_BANDS overrides the built-in table with a JSON list of
    # {"min_price": 0, "plan_id": "plan_x", "plan_name": "Starter"}.
    PLAN_BANDS = os.environ.get("PLAN_BANDS")
    PLAN_ID_STARTER = os.environ.get("PLAN_ID_STARTER")
    PLAN_ID_STANDARD = os.environ.get("PLAN_ID_STANDARD")
    PLAN_ID_PREMIUM = os.environ.get("PLAN_ID_PREMIUM")
    PLAN_ID_VIP = os.environ.get("PLAN_ID_VIP")

    # --- Order platform (non-critical: relay is skipped when unset) ---
    ORDER_API_KEY = os.environ.get("ORDER_API_KEY")
    ORDER_ACCOUNT_NAME = os.environ.get("ORDER_ACCOUNT_NAME")
    ORDER_API_BASE_URL = os.environ.get(
        "ORDER_API_BASE_URL", "https://{account}.getcourse.ru/pl/api"
    )

    # --- Webhooks ---
    WEBHOOK_SECRET = os.environ.get("WEBHOOK_SECRET")
    # Accepting unsigned webhooks must be switched on deliberately.
    WEBHOOK_ALLOW_UNVERIFIED = _env_flag("WEBHOOK_ALLOW_UNVERIFIED")
    WEBHOOK_TOLERANCE_SECONDS = int(os.environ.get("WEBHOOK_TOLERANCE_SECONDS", 300))

    # --- Checkout sessions ---
    CHECKOUT_SESSION_TTL_MINUTES = int(os.environ.get("CHECKOUT_SESSION_TTL_MINUTES", 20))
    SESSION_SWEEP_INTERVAL_SECONDS = int(
        os.environ.get("SESSION_SWEEP_INTERVAL_SECONDS", 600)
    )
    SESSION_STORE_BACKEND = os.environ.get("SESSION_STORE_BACKEND", "memory")
    # When False, a missing amount is read as 0 (lowest band).
    CHECKOUT_REQUIRE_AMOUNT = _env_flag("CHECKOUT_REQUIRE_AMOUNT", "true")

    # --- Outbound HTTP ---
    HTTP_TIMEOUT_SECONDS = float(os.environ.get("HTTP_TIMEOUT_SECONDS", 15))

    # Handle DATABASE_URL: some PaaS providers (Render, Heroku) use
    # "postgres://" which SQLAlchemy 1.4+ doesn't accept.
    _db_url = os.environ.get("DATABASE_URL", "")
    if _db_url.startswith("postgres://"):
        _db_url = _db_url.replace("postgres://", "postgresql://", 1)
    SQLALCHEMY_DATABASE_URI = _db_url or "sqlite:///paybridge.db"
    SQLALCHEMY_TRACK_MODIFICATIONS = False
    SQLALCHEMY_ENGINE_OPTIONS = {
        "pool_pre_ping": True,
    }

    # --- Rate limiting ---
    RATELIMIT_ENABLED = True

    SERVICE_NAME = "paybridge"
    SERVICE_VERSION = "1.0.0"

    @staticmethod
    def validate():
        """Fail fast if critical env vars are missing.

        Order-platform credentials are deliberately not listed: without
        them the settlement relay is skipped and logged.
        """
        required = [
            "PAYMENT_API_KEY",
            "PAYMENT_DEFAULT_PLAN_ID",
        ]
        missing = [v for v in required if not os.environ.get(v)]
        if not os.environ.get("WEBHOOK_SECRET") and not _env_flag("WEBHOOK_ALLOW_UNVERIFIED"):
            missing.append("WEBHOOK_SECRET")
        if missing:
            raise RuntimeError(
                f"Missing required environment variables: {', '.join(missing)}"
            )


class DevConfig(Config):
    """Local development."""

    DEBUG = True


class TestConfig(Config):
    """Testing — in-memory SQLite, fake credentials, no background sweeper."""

    TESTING = True
    DEBUG = True
    SQLALCHEMY_DATABASE_URI = "sqlite:///:memory:"
    PAYMENT_API_KEY = "pay_test_fake"
    PAYMENT_API_BASE_URL = "https://payments.test/v2"
    PAYMENT_DEFAULT_PLAN_ID = "plan_default_test"
    PAYMENT_DEFAULT_PLAN_NAME = "Standard"
    PLAN_BANDS = None
    PLAN_ID_STARTER = "plan_starter_test"
    PLAN_ID_STANDARD = "plan_standard_test"
    PLAN_ID_PREMIUM = "plan_premium_test"
    PLAN_ID_VIP = "plan_vip_test"
    ORDER_API_KEY = "order_test_fake"
    ORDER_ACCOUNT_NAME = "testschool"
    ORDER_API_BASE_URL = "https://{account}.orders.test/pl/api"
    # base64 of "test-webhook-secret"
    WEBHOOK_SECRET = "whsec_dGVzdC13ZWJob29rLXNlY3JldA=="
    WEBHOOK_ALLOW_UNVERIFIED = False
    WEBHOOK_TOLERANCE_SECONDS = 300
    SUCCESS_REDIRECT_URL = "https://shop.test/success"
    CANCEL_REDIRECT_URL = "https://shop.test/cancel"
    CHECKOUT_SESSION_TTL_MINUTES = 20
    SESSION_SWEEP_INTERVAL_SECONDS = 0  # sweeps are driven explicitly in tests
    SESSION_STORE_BACKEND = "memory"
    RATELIMIT_ENABLED = False  # disable rate limiting in tests

    @staticmethod
    def validate():
        """Skip validation in test mode — everything is hardcoded."""
        pass


class ProdConfig(Config):
    """Production."""

    DEBUG = False


config_by_name = {
    "development": DevConfig,
    "production": ProdConfig,
    "testing": TestConfig,
}
