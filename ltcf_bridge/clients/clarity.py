"""Dependency provider for the Clarity write-back gateway."""

from ltcf_bridge.services.clarity_gateway import ClarityGateway, LoggingGateway

_gateway: ClarityGateway | None = None


def get_clarity_gateway() -> ClarityGateway:
    """Get the gateway singleton; the logging gateway until a database is wired."""
    global _gateway
    if _gateway is None:
        _gateway = LoggingGateway()
    return _gateway
