"""Shared dependencies for routers."""

import asyncio
from typing import Annotated

from fastapi import Depends

from ltcf_bridge.clients.catalog import get_element_catalog
from ltcf_bridge.clients.clarity import get_clarity_gateway
from ltcf_bridge.clients.identity import get_identity_resolver, get_submission_lock
from ltcf_bridge.clients.irrs import get_irrs_service
from ltcf_bridge.outcome.catalog import ElementCatalog
from ltcf_bridge.outcome.reconciler import ErrorReconciler
from ltcf_bridge.pipeline import SubmissionPipeline
from ltcf_bridge.services.clarity_gateway import ClarityGateway, WriteBackService
from ltcf_bridge.services.irrs_service import IRRSService
from ltcf_bridge.submission.identity import IdentityResolver

# Typed dependency aliases for use in endpoint signatures
ElementCatalogDep = Annotated[ElementCatalog, Depends(get_element_catalog)]
ClarityGatewayDep = Annotated[ClarityGateway, Depends(get_clarity_gateway)]
IdentityResolverDep = Annotated[IdentityResolver, Depends(get_identity_resolver)]
IRRSServiceDep = Annotated[IRRSService, Depends(get_irrs_service)]
SubmissionLockDep = Annotated[asyncio.Lock, Depends(get_submission_lock)]


def get_submission_pipeline(
    catalog: ElementCatalogDep,
    gateway: ClarityGatewayDep,
    resolver: IdentityResolverDep,
    irrs: IRRSServiceDep,
) -> SubmissionPipeline:
    """Assemble a pipeline over the shared services."""
    return SubmissionPipeline(
        resolver=resolver,
        reconciler=ErrorReconciler(catalog),
        write_back=WriteBackService(gateway),
        irrs=irrs,
    )


SubmissionPipelineDep = Annotated[SubmissionPipeline, Depends(get_submission_pipeline)]
