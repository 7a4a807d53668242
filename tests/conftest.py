"""Test configuration and fixtures."""

import asyncio
from typing import AsyncGenerator, Generator, Protocol
from unittest.mock import AsyncMock

import pytest
from httpx import ASGITransport, AsyncClient

from ltcf_bridge.clients.catalog import get_element_catalog
from ltcf_bridge.clients.clarity import get_clarity_gateway
from ltcf_bridge.clients.identity import get_identity_resolver, get_submission_lock
from ltcf_bridge.clients.irrs import get_irrs_service
from ltcf_bridge.main import app
from ltcf_bridge.outcome.catalog import ElementCatalog
from ltcf_bridge.parsers.flat_file import parse_flat_text
from ltcf_bridge.pipeline import SubmissionPipeline
from ltcf_bridge.routers.deps import get_submission_pipeline
from ltcf_bridge.services.clarity_gateway import ClarityGateway
from ltcf_bridge.services.irrs_service import IRRSService
from ltcf_bridge.submission.identity import IdentityResolver
from ltcf_bridge.submission.metadata import ParsedRecord

ICODE_SYSTEM = "http://cihi.ca/fhir/irrs/CodeSystem/interrai-icode"
ERROR_SYSTEM = "http://cihi.ca/fhir/irrs/CodeSystem/irrs-error-code"

# Rows as exported from the elementMap sheet (header removed)
CATALOG_ROWS = [
    ("iA5a", "Health Card Number", "A5a", ""),
    ("iA5", "Identification Numbers", "A5", ""),
    ("iA9", "Marital Status", "A9", ""),
    ("iB5a", "Admitted From", "B5a", ""),
    ("iS2", "Discharge Status", "S2", ""),
    ("iR2", "Discharged To", "R2", ""),
    ("B1", "Date of Entry", "B1", ""),
    ("iZ1", "Signature", "", "Z1"),
]


@pytest.fixture(scope="session")
def anyio_backend() -> str:
    """Configure pytest-anyio to use asyncio."""
    return "asyncio"


@pytest.fixture
def catalog() -> ElementCatalog:
    """Element catalog with a handful of LTCF items."""
    return ElementCatalog.from_rows(CATALOG_ROWS)


SAMPLE_FLAT_FILE = """\
[ADMIN]
fhirPatID=
fhirPatKey=PK-1001
patOper=CREATE
fhirEncID=
fhirEncKey=EK-2001
encOper=CREATE
fhirAsmID=
rec_id=5001
asmOper=CREATE
asmType=First Assessment
isReturn=0
fiscal=2025
quarter=Q2

[PATIENT]
A2A=F
A3=1940-05-12
A4=2
A5A=1234567890
A5B=ON
A5C=MR-77
B4=eng
B6=K1A0B1
OrgID=54321

[ENCOUNTER]
B2=2025-07-01
B5A=3
B5B=9876
A7a=1
A7c=1
A7d=0
OrgID=54321

[A]
A8=1
A12=2025-07-10

[B]
B3a=1
B3b=0
B1=2025-07-01
"""


@pytest.fixture
def sample_flat_text() -> str:
    """Flat file for a first assessment creating all three resources."""
    return SAMPLE_FLAT_FILE


@pytest.fixture
def sample_record() -> ParsedRecord:
    """Parsed sample flat file."""
    return parse_flat_text(SAMPLE_FLAT_FILE)


TRANSACTION_RESPONSE_XML = """\
<?xml version="1.0" encoding="UTF-8"?>
<Bundle xmlns="http://hl7.org/fhir">
  <id value="resp-1"/>
  <type value="transaction-response"/>
  <entry>
    <response>
      <status value="201"/>
      <location value="Encounter/enc-900/_history/1"/>
    </response>
  </entry>
  <entry>
    <response>
      <status value="201"/>
      <location value="QuestionnaireResponse/qr-900/_history/1"/>
    </response>
  </entry>
  <entry>
    <response>
      <status value="200"/>
      <location value="Patient/pat-900/_history/1"/>
    </response>
  </entry>
</Bundle>
"""

OPERATION_OUTCOME_XML = f"""\
<?xml version="1.0" encoding="UTF-8"?>
<OperationOutcome xmlns="http://hl7.org/fhir">
  <issue>
    <severity value="error"/>
    <code value="invalid"/>
    <details>
      <coding>
        <system value="{ICODE_SYSTEM}"/>
        <code value="iA9"/>
      </coding>
      <coding>
        <system value="{ERROR_SYSTEM}"/>
        <code value="E2041"/>
        <display value="Invalid iA9 value"/>
      </coding>
    </details>
    <diagnostics value="Invalid iA9 value"/>
  </issue>
</OperationOutcome>
"""


@pytest.fixture
def transaction_response_xml() -> str:
    """Successful transaction-response issuing ids for all three resources."""
    return TRANSACTION_RESPONSE_XML


@pytest.fixture
def operation_outcome_xml() -> str:
    """Failed submission with one interRAI-coded issue."""
    return OPERATION_OUTCOME_XML


@pytest.fixture
def mock_gateway() -> AsyncMock:
    """Mock Clarity gateway for testing."""
    mock = AsyncMock(spec=ClarityGateway)
    mock.ping.return_value = True
    return mock


@pytest.fixture
def mock_irrs_service() -> AsyncMock:
    """Mock IRRS submission client for testing."""
    return AsyncMock(spec=IRRSService)


@pytest.fixture
def mock_pipeline() -> AsyncMock:
    """Mock submission pipeline for route tests."""
    return AsyncMock(spec=SubmissionPipeline)


@pytest.fixture
def identity_resolver() -> IdentityResolver:
    """Resolver shared by the requests of one test."""
    return IdentityResolver()


class ClientFactory(Protocol):
    """Protocol for client factory fixture."""

    def __call__(self) -> AsyncClient: ...


@pytest.fixture
def client_factory(
    catalog: ElementCatalog,
    mock_gateway: AsyncMock,
    mock_irrs_service: AsyncMock,
    mock_pipeline: AsyncMock,
    identity_resolver: IdentityResolver,
) -> Generator[ClientFactory, None, None]:
    """Factory for creating test clients with mocked dependencies."""
    lock = asyncio.Lock()

    def _create_client() -> AsyncClient:
        app.dependency_overrides[get_element_catalog] = lambda: catalog
        app.dependency_overrides[get_clarity_gateway] = lambda: mock_gateway
        app.dependency_overrides[get_irrs_service] = lambda: mock_irrs_service
        app.dependency_overrides[get_identity_resolver] = lambda: identity_resolver
        app.dependency_overrides[get_submission_lock] = lambda: lock
        app.dependency_overrides[get_submission_pipeline] = lambda: mock_pipeline

        transport = ASGITransport(app=app)
        return AsyncClient(transport=transport, base_url="http://testserver")

    yield _create_client

    app.dependency_overrides.clear()


@pytest.fixture
async def client(
    client_factory: ClientFactory,
) -> AsyncGenerator[AsyncClient, None]:
    """Async client for testing endpoints."""
    async with client_factory() as c:
        yield c
