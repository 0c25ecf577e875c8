from fastapi import APIRouter

from estimator.app.api.v1 import estimates, imports, jobs

router = APIRouter(prefix="/api/v1")

router.include_router(estimates.router, prefix="/estimates", tags=["estimates"])
router.include_router(imports.router, tags=["imports"])
router.include_router(jobs.router, prefix="/jobs", tags=["jobs"])

__all__ = ["router"]
