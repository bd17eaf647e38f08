from fastapi import APIRouter

from interview_scheduling.api.routes import calendar
from interview_scheduling.api.routes import scheduling_links

api_router = APIRouter()
api_router.include_router(scheduling_links.router)
api_router.include_router(scheduling_links.public_router)
api_router.include_router(calendar.router)
