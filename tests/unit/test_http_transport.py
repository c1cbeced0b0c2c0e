"""Unit tests for HttpTransport against an in-process collector."""

import asyncio
import pytest

from audiochunker.errors import DeliveryError, FinalizeError
from audiochunker.models.segment import Segment
from audiochunker.transport.base import FinalizeRequest, participant_field
from audiochunker.transport.http_transport import HttpTransport, parse_response_body


def make_segment(seq: int = 3) -> Segment:
    return Segment(
        session_id="s1",
        seq=seq,
        start_ms=seq * 1000,
        end_ms=(seq + 1) * 1000,
        payload=b"RIFF-fake-wav",
        mime_type="audio/wav",
        participant_refs={"therapist": "150", "patient": "151", "organization": ""},
    )


def run_against(collector, scenario):
    """Start the collector, run scenario(transport) and shut the collector down."""
    async def runner():
        base_url = await collector.start()
        try:
            return await scenario(HttpTransport(base_url=base_url, timeout_seconds=5))
        finally:
            await collector.close()

    return asyncio.run(runner())


@pytest.mark.unit
class TestHttpTransport:
    """Test cases for HttpTransport class."""

    def test_upload_sends_multipart_form(self, collector):
        """Test the upload request layout."""
        run_against(collector, lambda transport: transport.upload(make_segment()))

        upload = collector.uploads[0]
        assert upload["filename"] == "chunk-3.wav"
        assert upload["content_type"] == "audio/wav"
        assert upload["payload"] == b"RIFF-fake-wav"
        assert upload["fields"] == {
            "mimeType": "audio/wav",
            "sessionId": "s1",
            "seq": "3",
            "startMs": "3000",
            "endMs": "4000",
            "therapistId": "150",
            "patientId": "151",
        }

    def test_upload_error_status_raises(self, collector):
        """Test that a non-2xx response is a delivery failure."""
        collector.upload_status = 503

        with pytest.raises(DeliveryError, match="503") as exc_info:
            run_against(collector, lambda transport: transport.upload(make_segment(seq=7)))

        assert exc_info.value.seq == 7
        assert "collector unavailable" in str(exc_info.value)

    def test_upload_connection_error_raises(self):
        """Test that an unreachable collector is a delivery failure."""
        async def scenario():
            # Bind and release a port so nothing is listening on it
            server = await asyncio.start_server(lambda reader, writer: None, "127.0.0.1", 0)
            port = server.sockets[0].getsockname()[1]
            server.close()
            await server.wait_closed()
            transport = HttpTransport(base_url=f"http://127.0.0.1:{port}", timeout_seconds=5)
            await transport.upload(make_segment())

        with pytest.raises(DeliveryError):
            asyncio.run(scenario())

    def test_finalize_sends_json(self, collector):
        """Test the finalize request body."""
        request = FinalizeRequest(
            session_id="s1",
            participant_refs={"therapist": "150", "appointmentId": "153", "patient": ""},
            extra_metadata={"methodType": "GENERAL"},
        )

        result = run_against(collector, lambda transport: transport.finalize(request))

        assert result is None
        assert collector.finalized == [{
            "sessionId": "s1",
            "therapistId": "150",
            "appointmentId": "153",
            "methodType": "GENERAL",
        }]

    @pytest.mark.parametrize("body,expected", [
        ('{"status": "ok", "chunks": 4}', {"status": "ok", "chunks": 4}),
        ("finalized", "finalized"),
        ("", None),
    ])
    def test_finalize_response_bodies(self, collector, body, expected):
        """Test that JSON, text and empty responses are all accepted."""
        collector.finalize_body = body

        result = run_against(collector, lambda transport: transport.finalize(FinalizeRequest(session_id="s1")))

        assert result == expected

    def test_finalize_error_status_raises(self, collector):
        """Test that a rejected finalize raises FinalizeError."""
        collector.finalize_status = 500
        collector.finalize_body = "boom"

        with pytest.raises(FinalizeError, match="500: boom"):
            run_against(collector, lambda transport: transport.finalize(FinalizeRequest(session_id="s1")))

    def test_urls(self):
        """Test endpoint URL construction."""
        transport = HttpTransport(base_url="http://collector:3000/", upload_path="/v2/chunks",
                                  finalize_path="/v2/done")

        assert transport.upload_url == "http://collector:3000/v2/chunks"
        assert transport.finalize_url == "http://collector:3000/v2/done"


@pytest.mark.unit
def test_participant_field():
    assert participant_field("therapist") == "therapistId"
    assert participant_field("appointmentId") == "appointmentId"


@pytest.mark.unit
def test_parse_response_body():
    assert parse_response_body("  ") is None
    assert parse_response_body("[1, 2]") == [1, 2]
    assert parse_response_body("not json") == "not json"
