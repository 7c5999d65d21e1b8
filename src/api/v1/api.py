from fastapi import APIRouter, Depends

from dependencies.auth import get_current_user_id

from .ai import router as ai_router
from .health import router as health_router


# Public API router (health)
api_router = APIRouter()

api_router.include_router(health_router, tags=["health"])

# Protected routers: the router-level dependency requires a bearer token on
# every route and surfaces the bearer security scheme in OpenAPI.
protected_deps = [Depends(get_current_user_id)]
api_router.include_router(ai_router, dependencies=protected_deps)
