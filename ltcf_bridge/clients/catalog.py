"""Dependency provider for the element catalog."""

import logging
from functools import lru_cache

from ltcf_bridge.outcome.catalog import ElementCatalog
from ltcf_bridge.settings import settings

logger = logging.getLogger(__name__)


@lru_cache(maxsize=1)
def get_element_catalog() -> ElementCatalog:
    """Get the singleton ElementCatalog, loaded from ELEMENT_MAPPING_PATH."""
    if not settings.element_mapping_path:
        logger.warning("ELEMENT_MAPPING_PATH not set, using an empty element catalog")
        return ElementCatalog()
    return ElementCatalog.load(settings.element_mapping_path)
