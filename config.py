import os

from dotenv import load_dotenv

load_dotenv()

DEFAULT_SECRET_KEY = "supersecretkey-change"


def _csv(value: str):
    return [item.strip() for item in value.split(",") if item.strip()]


class Settings:
    def __init__(self):
        self.ENVIRONMENT = os.getenv("ENVIRONMENT", "development")
        self.LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")

        self.DATABASE_URL = os.getenv("DATABASE_URL", "sqlite:///./marketplace.db")

        self.SECRET_KEY = os.getenv("SECRET_KEY", DEFAULT_SECRET_KEY)
        self.ALGORITHM = os.getenv("ALGORITHM", "HS256")
        self.ACCESS_TOKEN_EXPIRE_MINUTES = int(os.getenv("ACCESS_TOKEN_EXPIRE_MINUTES", 60 * 24))
        self.BCRYPT_ROUNDS = int(os.getenv("BCRYPT_ROUNDS", 12))
        self.EMAIL_TOKEN_EXPIRE_HOURS = int(os.getenv("EMAIL_TOKEN_EXPIRE_HOURS", 24))
        self.RESET_TOKEN_EXPIRE_MINUTES = int(os.getenv("RESET_TOKEN_EXPIRE_MINUTES", 60))

        self.CORS_ORIGINS = _csv(os.getenv("CORS_ORIGINS", "http://localhost:3000"))
        self.FRONTEND_URL = os.getenv("FRONTEND_URL", "http://localhost:3000")

        self.SMTP_HOST = os.getenv("SMTP_HOST", "smtp.gmail.com")
        self.SMTP_PORT = int(os.getenv("SMTP_PORT", 587))
        self.SMTP_USER = os.getenv("SMTP_USER", "")
        self.SMTP_PASSWORD = os.getenv("SMTP_PASSWORD", "")
        self.EMAIL_FROM = os.getenv("EMAIL_FROM", "Marketplace <noreply@marketplace.local>")

        self.CURRENCY = os.getenv("CURRENCY", "GHS")
        self.PAYSTACK_SECRET_KEY = os.getenv("PAYSTACK_SECRET_KEY", "")
        self.PAYSTACK_PUBLIC_KEY = os.getenv("PAYSTACK_PUBLIC_KEY", "")
        self.PAYSTACK_BASE_URL = os.getenv("PAYSTACK_BASE_URL", "https://api.paystack.co")
        self.MOMO_API_URL = os.getenv("MOMO_API_URL", "https://sandbox.momodeveloper.mtn.com")
        self.MOMO_SUBSCRIPTION_KEY = os.getenv("MOMO_SUBSCRIPTION_KEY", "")
        self.MOMO_API_USER = os.getenv("MOMO_API_USER", "")
        self.MOMO_API_KEY = os.getenv("MOMO_API_KEY", "")
        self.MOMO_TARGET_ENVIRONMENT = os.getenv("MOMO_TARGET_ENVIRONMENT", "sandbox")
        self.MOMO_SANDBOX_DELAY_SECONDS = float(os.getenv("MOMO_SANDBOX_DELAY_SECONDS", 5))
        self.GATEWAY_TIMEOUT_SECONDS = float(os.getenv("GATEWAY_TIMEOUT_SECONDS", 15))
        self.SHIPPING_FEE_PESEWAS = int(os.getenv("SHIPPING_FEE_PESEWAS", 1000))

        self.UPLOAD_DIR = os.getenv("UPLOAD_DIR", os.path.join(os.getcwd(), "uploads"))
        self.MAX_UPLOAD_BYTES = int(os.getenv("MAX_UPLOAD_BYTES", 5 * 1024 * 1024))
        self.MAX_UPLOAD_FILES = int(os.getenv("MAX_UPLOAD_FILES", 5))

        self.RATE_LIMIT_ENABLED = os.getenv("RATE_LIMIT_ENABLED", "true").lower() == "true"
        self.GENERAL_RATE_LIMIT = os.getenv("GENERAL_RATE_LIMIT", "100/minute")
        self.AUTH_RATE_LIMIT = os.getenv("AUTH_RATE_LIMIT", "30/15minutes")
        self.LOGIN_RATE_LIMIT = os.getenv("LOGIN_RATE_LIMIT", "5/15minutes")
        self.PASSWORD_RESET_RATE_LIMIT = os.getenv("PASSWORD_RESET_RATE_LIMIT", "3/15minutes")
        self.EMAIL_VERIFY_RATE_LIMIT = os.getenv("EMAIL_VERIFY_RATE_LIMIT", "3/5minutes")
        self.SEARCH_RATE_LIMIT = os.getenv("SEARCH_RATE_LIMIT", "30/minute")
        self.PAYMENT_RATE_LIMIT = os.getenv("PAYMENT_RATE_LIMIT", "10/minute")
        self.UPLOAD_RATE_LIMIT = os.getenv("UPLOAD_RATE_LIMIT", "20/minute")

        self.PRODUCTS_CACHE_TTL = float(os.getenv("PRODUCTS_CACHE_TTL", 2 * 60))
        self.CATEGORIES_CACHE_TTL = float(os.getenv("CATEGORIES_CACHE_TTL", 10 * 60))
        self.SEARCH_CACHE_TTL = float(os.getenv("SEARCH_CACHE_TTL", 60))

    @property
    def is_production(self) -> bool:
        return self.ENVIRONMENT == "production"

    def validate(self):
        if self.is_production and self.SECRET_KEY == DEFAULT_SECRET_KEY:
            raise RuntimeError("SECRET_KEY must be set in production")


settings = Settings()
