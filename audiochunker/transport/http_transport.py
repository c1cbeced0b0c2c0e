"""HTTP transport posting segments to the collector with aiohttp."""

import asyncio
import json
import logging
from typing import Any, Optional

import aiohttp

from ..errors import DeliveryError, FinalizeError
from ..models.segment import Segment
from .base import AbstractTransport, FinalizeRequest, participant_field

logger = logging.getLogger(__name__)


def parse_response_body(text: str) -> Any:
    """Interpret a response body as empty (None), JSON or plain text."""
    if not text.strip():
        return None
    try:
        return json.loads(text)
    except ValueError:
        return text


class HttpTransport(AbstractTransport):
    """Collector client: multipart chunk uploads and a JSON finalize call."""

    def __init__(self,
                 base_url: str = "http://localhost:3000",
                 upload_path: str = "/upload-chunk",
                 finalize_path: str = "/finalize",
                 timeout_seconds: Optional[float] = None):
        """Initialize HTTP transport.

        Args:
            base_url: Collector base URL
            upload_path: Path of the chunk upload endpoint
            finalize_path: Path of the finalize endpoint
            timeout_seconds: Total timeout per request; None waits indefinitely
        """
        self.base_url = base_url.rstrip("/")
        self.upload_url = f"{self.base_url}{upload_path}"
        self.finalize_url = f"{self.base_url}{finalize_path}"
        self.timeout = aiohttp.ClientTimeout(total=timeout_seconds)

        logger.info(f"HttpTransport initialized: upload={self.upload_url} finalize={self.finalize_url}")

    def _build_form(self, segment: Segment) -> aiohttp.FormData:
        form = aiohttp.FormData()
        form.add_field("file", segment.payload,
                       filename=f"chunk-{segment.seq}.{segment.file_extension}",
                       content_type=segment.mime_type)
        form.add_field("mimeType", segment.mime_type)
        form.add_field("sessionId", segment.session_id)
        form.add_field("seq", str(segment.seq))
        form.add_field("startMs", str(segment.start_ms))
        form.add_field("endMs", str(segment.end_ms))
        for role, ref in segment.participant_refs.items():
            if ref:
                form.add_field(participant_field(role), ref)
        return form

    async def upload(self, segment: Segment) -> None:
        try:
            async with aiohttp.ClientSession(timeout=self.timeout) as session:
                async with session.post(self.upload_url, data=self._build_form(segment)) as response:
                    if response.status >= 300:
                        error_text = await response.text()
                        raise DeliveryError(f"Server responded with {response.status}: {error_text}",
                                            seq=segment.seq)
        except aiohttp.ClientError as e:
            raise DeliveryError(f"Upload of seq={segment.seq} failed: {e}", seq=segment.seq) from e
        except asyncio.TimeoutError as e:
            raise DeliveryError(f"Upload of seq={segment.seq} timed out", seq=segment.seq) from e

    async def finalize(self, request: FinalizeRequest) -> Any:
        payload = {"sessionId": request.session_id}
        for role, ref in request.participant_refs.items():
            if ref:
                payload[participant_field(role)] = ref
        payload.update(request.extra_metadata)

        try:
            async with aiohttp.ClientSession(timeout=self.timeout) as session:
                async with session.post(self.finalize_url, json=payload) as response:
                    text = await response.text()
                    if response.status >= 300:
                        raise FinalizeError(f"Server responded with {response.status}: {text}")
        except aiohttp.ClientError as e:
            raise FinalizeError(f"Finalize of {request.session_id} failed: {e}") from e
        except asyncio.TimeoutError as e:
            raise FinalizeError(f"Finalize of {request.session_id} timed out") from e

        # Some collectors return an empty body on success
        return parse_response_body(text)
