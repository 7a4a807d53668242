"""
CIHI IRRS submission client.

Posts a FHIR XML transaction bundle to the IRRS endpoint. HTTP error
statuses are returned to the caller rather than raised: the response body
carries the OperationOutcome that outcome evaluation and reconciliation
need.
"""

import logging
from dataclasses import dataclass

import httpx

from ltcf_bridge.exceptions import AuthError, SubmissionError
from ltcf_bridge.services.token_service import TokenService
from ltcf_bridge.settings import settings

logger = logging.getLogger(__name__)

FHIR_XML = "application/fhir+xml"
TRANSACTION_ID_HEADER = "x-cihi-transaction-id"


@dataclass
class SubmissionResponse:
    """Raw IRRS response for one bundle."""

    status_code: int
    text: str
    transaction_id: str | None = None

    @property
    def is_success(self) -> bool:
        return 200 <= self.status_code < 300


class IRRSService:
    """HTTP client for the IRRS transaction endpoint."""

    def __init__(
        self,
        token_service: TokenService,
        submission_url: str | None = None,
        timeout: float | None = None,
    ):
        self.token_service = token_service
        self.submission_url = submission_url or settings.irrs_submission_url
        self.timeout = timeout or settings.irrs_timeout
        self._client: httpx.AsyncClient | None = None

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create the HTTP client."""
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=httpx.Timeout(self.timeout))
        return self._client

    async def close(self) -> None:
        """Close the HTTP client and the token client."""
        if self._client is not None:
            await self._client.aclose()
            self._client = None
        await self.token_service.close()

    async def submit_xml(self, xml_content: str) -> SubmissionResponse:
        """
        Submit a transaction bundle.

        Args:
            xml_content: Serialized FHIR XML bundle

        Returns:
            Status code, body and transaction id of the response

        Raises:
            SubmissionError: If no token could be obtained or the request
                did not complete.
        """
        if not xml_content.lstrip().startswith("<?xml"):
            xml_content = '<?xml version="1.0" encoding="UTF-8"?>\n' + xml_content

        try:
            token = await self.token_service.get_access_token()
        except AuthError as e:
            raise SubmissionError(f"Could not authenticate with IRRS: {e}") from e

        client = await self._get_client()
        try:
            response = await client.post(
                self.submission_url,
                content=xml_content.encode("utf-8"),
                headers={
                    "Authorization": f"Bearer {token}",
                    "Content-Type": f"{FHIR_XML}; charset=utf-8",
                    "Accept": FHIR_XML,
                },
            )
        except httpx.HTTPError as e:
            raise SubmissionError(f"IRRS submission failed: {e}") from e

        result = SubmissionResponse(
            status_code=response.status_code,
            text=response.text,
            transaction_id=response.headers.get(TRANSACTION_ID_HEADER),
        )
        if result.is_success:
            logger.info(
                "IRRS accepted submission (status %d, transaction %s)",
                result.status_code,
                result.transaction_id or "N/A",
            )
        else:
            logger.error(
                "IRRS rejected submission (status %d, transaction %s)",
                result.status_code,
                result.transaction_id or "N/A",
            )
        return result
