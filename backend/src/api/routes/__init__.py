# API routes
from src.api.routes import health
from src.api.routes import auth
from src.api.routes import forums
from src.api.routes import groups
from src.api.routes import zoom_calls
from src.api.routes import billing
from src.api.routes import webhooks_stripe
from src.api.routes import admin

__all__ = ["health", "auth", "forums", "groups", "zoom_calls", "billing", "webhooks_stripe", "admin"]
