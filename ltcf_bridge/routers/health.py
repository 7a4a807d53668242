"""Health check endpoint."""

from fastapi import APIRouter

from ltcf_bridge.routers.deps import ClarityGatewayDep, ElementCatalogDep
from ltcf_bridge.schemas.health import HealthResponse

router = APIRouter(tags=["Health"])


@router.get("/health", response_model=HealthResponse)
async def health_check(
    gateway: ClarityGatewayDep,
    catalog: ElementCatalogDep,
) -> HealthResponse:
    """Check service health including Clarity connectivity."""
    database_healthy = await gateway.ping()

    return HealthResponse(
        status="healthy" if database_healthy else "degraded",
        database=database_healthy,
        catalog_entries=len(catalog),
    )
