"""
Jobs API Client for the import service.

Provides job submission, snapshot retrieval, the server-push progress stream
and report downloads, all authenticated through the session manager.
"""

import logging
import uuid
from contextlib import asynccontextmanager
from pathlib import Path
from typing import Any, AsyncIterator, Dict, Optional

import httpx
from pydantic import ValidationError as ModelValidationError

from ..tracking.models import Job, JobDelta, JobReceipt
from .base_client import AuthenticatedAPIClient, CredentialProvider
from .errors import APIClientError
from .sse_parser import SseParseError, SseParser

logger = logging.getLogger(__name__)

# Seconds a progress stream may stay silent before it counts as dropped
DEFAULT_STREAM_READ_TIMEOUT = 300.0
XLSX_MEDIA_TYPE = "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet"
DEFAULT_DATE_FORMAT = "YYYY-MM-DD"


class JobsAPIClient(AuthenticatedAPIClient):
    """Client for job operations with the import service."""

    def __init__(
        self,
        server_url: str,
        credentials: CredentialProvider,
        stream_read_timeout: float = DEFAULT_STREAM_READ_TIMEOUT,
        **kwargs,
    ):
        super().__init__(server_url, credentials, **kwargs)
        self.stream_read_timeout = stream_read_timeout

    async def submit_job(
        self,
        file_path: Path,
        file_type: Optional[str] = None,
        delimiter: Optional[str] = None,
        date_format: str = DEFAULT_DATE_FORMAT,
        webhook_url: Optional[str] = None,
        idempotency_key: Optional[str] = None,
    ) -> JobReceipt:
        """Upload a file and create a job.

        The same idempotency key is reused if the upload is retried, so the
        service creates at most one job per call.

        Args:
            file_path: CSV or XLSX file to import
            file_type: ``csv`` or ``xlsx``; inferred from the suffix if omitted
            delimiter: Column delimiter for CSV files
            date_format: Date format used in the file
            webhook_url: URL the service calls when the job finishes
            idempotency_key: Explicit key; a random UUID by default

        Raises:
            ValidationError: If the service rejects the file
            APIClientError: For any other failure
        """
        file_path = Path(file_path)
        if file_type is None:
            file_type = "xlsx" if file_path.suffix.lower() == ".xlsx" else "csv"
        media_type = XLSX_MEDIA_TYPE if file_type == "xlsx" else "text/csv"

        content = file_path.read_bytes()
        form: Dict[str, str] = {"fileType": file_type, "dateFormat": date_format}
        if delimiter:
            form["delimiter"] = delimiter
        if webhook_url:
            form["webhookUrl"] = webhook_url

        key = idempotency_key or str(uuid.uuid4())
        response = await self._authenticated_request(
            "POST",
            "/jobs",
            headers={"Idempotency-Key": key},
            data=form,
            files={"file": (file_path.name, content, media_type)},
        )

        receipt = self._parse(JobReceipt, response, "job receipt")
        logger.info(f"Submitted {file_path.name} as job {receipt.job_id}")
        return receipt

    async def get_job(self, job_id: str) -> Job:
        """Fetch the full snapshot of a job.

        Raises:
            NotFoundError: If the job does not exist (never retried)
            APIClientError: For any other failure after one retry
        """
        response = await self._authenticated_request("GET", f"/jobs/{job_id}")
        return self._parse(Job, response, "job snapshot")

    @asynccontextmanager
    async def stream_job_events(
        self, job_id: str
    ) -> AsyncIterator[AsyncIterator[JobDelta]]:
        """Open the job's progress event stream.

        Usage::

            async with client.stream_job_events(job_id) as deltas:
                async for delta in deltas:
                    ...

        Raises (on open or while iterating):
            NetworkError: If the connection fails or drops
            AuthError: If the session cannot be renewed
            NotFoundError, ServerError, RateLimitedError: For error statuses
        """
        async with self._authenticated_stream(
            "GET",
            f"/jobs/{job_id}/events",
            headers={"Accept": "text/event-stream", "Cache-Control": "no-cache"},
            read_timeout=self.stream_read_timeout,
        ) as response:
            yield self._iter_deltas(job_id, response)

    async def _iter_deltas(
        self, job_id: str, response: httpx.Response
    ) -> AsyncIterator[JobDelta]:
        parser = SseParser()
        try:
            async for line in response.aiter_lines():
                try:
                    payload = parser.feed_line(line)
                except SseParseError as e:
                    logger.warning(f"Skipping malformed event for job {job_id}: {e}")
                    continue
                delta = self._to_delta(job_id, payload)
                if delta is not None:
                    yield delta

            try:
                delta = self._to_delta(job_id, parser.flush())
            except SseParseError as e:
                logger.warning(f"Skipping malformed event for job {job_id}: {e}")
                delta = None
            if delta is not None:
                yield delta
        except httpx.TransportError as e:
            raise self._network_error_handler.classify_transport_error(e) from e

    @staticmethod
    def _to_delta(job_id: str, payload: Optional[Dict[str, Any]]) -> Optional[JobDelta]:
        if payload is None:
            return None
        if payload.get("event") not in (None, "progress", "status"):
            logger.debug(f"Ignoring {payload['event']} event for job {job_id}")
            return None
        try:
            return JobDelta.model_validate(payload)
        except ModelValidationError as e:
            logger.warning(f"Skipping invalid progress event for job {job_id}: {e}")
            return None

    async def download_results(self, job_id: str) -> bytes:
        """Download the results report (CSV) of a finished job."""
        response = await self._authenticated_request("GET", f"/jobs/{job_id}/results")
        return response.content

    async def download_errors(self, job_id: str) -> bytes:
        """Download the row errors report (CSV) of a finished job."""
        response = await self._authenticated_request("GET", f"/jobs/{job_id}/errors")
        return response.content

    @staticmethod
    def _parse(model: Any, response: httpx.Response, what: str) -> Any:
        try:
            return model.model_validate(response.json())
        except ValueError as e:
            # pydantic's ValidationError is a ValueError too
            raise APIClientError(
                f"Invalid {what} in response: {e}", response.status_code
            ) from e
