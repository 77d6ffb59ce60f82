import os

# ✅ Database
DATABASE_URL = os.getenv("DATABASE_URL", "sqlite:///./saffron.db")

# ✅ Security
SECRET_KEY = os.getenv("SECRET_KEY", "change-me")
ALGORITHM = os.getenv("ALGORITHM", "HS256")
ACCESS_TOKEN_EXPIRE_MINUTES = int(os.getenv("ACCESS_TOKEN_EXPIRE_MINUTES", "60"))

# ✅ Logging
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")

# ✅ Frontend
APP_URL = os.getenv("NEXT_PUBLIC_APP_URL", "http://localhost:3000")

# ✅ Stripe
STRIPE_SECRET_KEY = os.getenv("STRIPE_SECRET_KEY")
STRIPE_WEBHOOK_SECRET = os.getenv("STRIPE_WEBHOOK_SECRET")

# Individual plans
STRIPE_PRICE_PRO_MONTHLY = os.getenv("STRIPE_PRICE_PRO_MONTHLY", "")
STRIPE_PRICE_PRO_ANNUAL = os.getenv("STRIPE_PRICE_PRO_ANNUAL", "")
STRIPE_PRICE_POWER_MONTHLY = os.getenv("STRIPE_PRICE_POWER_MONTHLY", "")
STRIPE_PRICE_POWER_ANNUAL = os.getenv("STRIPE_PRICE_POWER_ANNUAL", "")

# Business plans
STRIPE_PRICE_BUSINESS_STARTER_MONTHLY = os.getenv("STRIPE_PRICE_BUSINESS_STARTER_MONTHLY", "")
STRIPE_PRICE_BUSINESS_STARTER_ANNUAL = os.getenv("STRIPE_PRICE_BUSINESS_STARTER_ANNUAL", "")
STRIPE_PRICE_BUSINESS_PRO_MONTHLY = os.getenv("STRIPE_PRICE_BUSINESS_PRO_MONTHLY", "")
STRIPE_PRICE_BUSINESS_PRO_ANNUAL = os.getenv("STRIPE_PRICE_BUSINESS_PRO_ANNUAL", "")

# ✅ Credit top-ups
CREDITS_PER_DOLLAR = int(os.getenv("CREDITS_PER_DOLLAR", "100"))
MIN_TOPUP_AMOUNT = int(os.getenv("MIN_TOPUP_AMOUNT", "5"))
TOPUP_CURRENCY = os.getenv("TOPUP_CURRENCY", "usd")

# ✅ Avatar storage (S3-compatible)
AVATAR_BUCKET = os.getenv("AVATAR_BUCKET", "")
AVATAR_ENDPOINT_URL = os.getenv("AVATAR_ENDPOINT_URL")
AVATAR_ACCESS_KEY_ID = os.getenv("AVATAR_ACCESS_KEY_ID")
AVATAR_SECRET_ACCESS_KEY = os.getenv("AVATAR_SECRET_ACCESS_KEY")
AVATAR_PUBLIC_BASE_URL = os.getenv("AVATAR_PUBLIC_BASE_URL", "")
AVATAR_MAX_BYTES = 5 * 1024 * 1024
