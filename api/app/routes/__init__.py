from fastapi import APIRouter, FastAPI

from .activities import router as activities_router, scaffold_router as activities_scaffold_router
from .admin import router as admin_router, scaffold_router as admin_scaffold_router
from .auth import router as auth_router, scaffold_router as auth_scaffold_router
from .cron import router as cron_router, scaffold_router as cron_scaffold_router
from .match import router as match_router, scaffold_router as match_scaffold_router
from .meetings import router as meetings_router, scaffold_router as meetings_scaffold_router
from .messages import router as messages_router, scaffold_router as messages_scaffold_router
from .notifications import router as notifications_router, scaffold_router as notifications_scaffold_router
from .payments import router as payments_router, scaffold_router as payments_scaffold_router
from .profile import router as profile_router, scaffold_router as profile_scaffold_router
from .reactivation import router as reactivation_router, scaffold_router as reactivation_scaffold_router
from .safety import router as safety_router, scaffold_router as safety_scaffold_router
from .wallet import router as wallet_router, scaffold_router as wallet_scaffold_router


def include_modular_routers(app: FastAPI) -> None:
    app.include_router(auth_router, prefix="/api/auth", tags=["auth"])
    app.include_router(reactivation_router, prefix="/api", tags=["reactivation"])
    app.include_router(profile_router, prefix="/api", tags=["users"])
    app.include_router(match_router, prefix="/api", tags=["matches"])
    app.include_router(activities_router, prefix="/api", tags=["activities"])
    app.include_router(safety_router, prefix="/api", tags=["safety"])
    app.include_router(wallet_router, prefix="/api", tags=["wallet"])
    app.include_router(payments_router, prefix="/api", tags=["payments"])
    app.include_router(meetings_router, prefix="/api", tags=["meetings"])
    app.include_router(messages_router, prefix="/api", tags=["messages"])
    app.include_router(notifications_router, prefix="/api", tags=["notifications"])
    app.include_router(cron_router, prefix="/api", tags=["cron"])
    app.include_router(admin_router, prefix="/api", tags=["admin"])

    app.include_router(auth_scaffold_router, prefix="/_scaffold/auth", tags=["scaffold-auth"])
    app.include_router(profile_scaffold_router, prefix="/_scaffold/profile", tags=["scaffold-profile"])
    app.include_router(reactivation_scaffold_router, prefix="/_scaffold/reactivation", tags=["scaffold-reactivation"])
    app.include_router(match_scaffold_router, prefix="/_scaffold/match", tags=["scaffold-match"])
    app.include_router(activities_scaffold_router, prefix="/_scaffold/activities", tags=["scaffold-activities"])
    app.include_router(safety_scaffold_router, prefix="/_scaffold/safety", tags=["scaffold-safety"])
    app.include_router(wallet_scaffold_router, prefix="/_scaffold/wallet", tags=["scaffold-wallet"])
    app.include_router(payments_scaffold_router, prefix="/_scaffold/payments", tags=["scaffold-payments"])
    app.include_router(meetings_scaffold_router, prefix="/_scaffold/meetings", tags=["scaffold-meetings"])
    app.include_router(messages_scaffold_router, prefix="/_scaffold/messages", tags=["scaffold-messages"])
    app.include_router(notifications_scaffold_router, prefix="/_scaffold/notifications", tags=["scaffold-notifications"])
    app.include_router(cron_scaffold_router, prefix="/_scaffold/cron", tags=["scaffold-cron"])
    app.include_router(admin_scaffold_router, prefix="/_scaffold/admin", tags=["scaffold-admin"])


__all__ = ["include_modular_routers", "APIRouter"]
