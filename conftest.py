import os

# Point settings at an in-memory database before any app module is imported
os.environ.setdefault("ENVIRONMENT", "test")
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite://")
os.environ.setdefault("STRIPE_SECRET_KEY", "sk_test_dummy")
os.environ.setdefault("STRIPE_WEBHOOK_SECRET", "whsec_test")
os.environ.setdefault("SHOPIFY_API_SECRET", "shpss_test")
os.environ.setdefault("FRONTEND_URL", "https://shop.example.com")

from dotenv import load_dotenv  # noqa: E402

# Optional local overrides (never committed)
env_test_path = os.path.join(os.path.dirname(__file__), ".env.test")
if os.path.exists(env_test_path):
    load_dotenv(env_test_path, override=True)

from libs.common.config import get_settings  # noqa: E402

# Clear cached settings to reload with new env vars
get_settings.cache_clear()
