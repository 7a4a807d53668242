"""Dependency provider for the IRRS submission client."""

from ltcf_bridge.services.irrs_service import IRRSService
from ltcf_bridge.services.token_service import TokenService

_irrs_service: IRRSService | None = None


def get_irrs_service() -> IRRSService:
    """Get or create the IRRSService singleton."""
    global _irrs_service
    if _irrs_service is None:
        _irrs_service = IRRSService(token_service=TokenService())
    return _irrs_service


async def close_irrs_service() -> None:
    """Close the IRRSService singleton, if one was created."""
    global _irrs_service
    if _irrs_service is not None:
        await _irrs_service.close()
        _irrs_service = None
