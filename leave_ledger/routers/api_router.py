from fastapi import APIRouter
from leave_ledger.routers import leave, workflows, notifications

# Centralized API router hub
# Routers are aggregated here, and main.py only imports this single hub.
api_router = APIRouter()

api_router.include_router(leave.router, tags=["Leave"])
api_router.include_router(workflows.router, tags=["Approval Workflows"])
api_router.include_router(notifications.router, tags=["Notifications"])
