import base64
import threading

import pytest
import requests

from liquidity_relayer.core.attestation import CircleAttestationClient, GuardianAttestationClient, VaaKey
from liquidity_relayer.core.errors import AttestationTimeout


NO_JSON = object()


class FakeResponse:
    def __init__(self, status_code=200, payload=NO_JSON):
        self.status_code = status_code
        self._payload = payload

    def json(self):
        if self._payload is NO_JSON:
            raise ValueError("no json")
        return self._payload


class FakeSession:
    """Replays queued responses (or exceptions) and records requested URLs."""

    def __init__(self, responses):
        self.responses = list(responses)
        self.urls = []

    def get(self, url, timeout=None):
        self.urls.append(url)
        response = self.responses.pop(0) if self.responses else FakeResponse(404)
        if isinstance(response, Exception):
            raise response
        return response


class FakeClock:
    def __init__(self):
        self.now = 0.0

    def __call__(self):
        self.now += 1.0
        return self.now


KEY = VaaKey(chain=2, emitter=bytes(12) + b"\x42" * 20, sequence=17)
VAA = b"\x01signed-vaa"


class TestGuardianAttestationClient:
    def test_fetches_from_first_host(self):
        session = FakeSession([FakeResponse(200, {"vaaBytes": base64.b64encode(VAA).decode()})])
        client = GuardianAttestationClient(["https://g1.example/"], session=session, poll_interval=0)

        assert client.fetch(KEY) == VAA
        assert session.urls == [f"https://g1.example/v1/signed_vaa/2/{KEY.emitter_hex}/17"]

    def test_falls_through_hosts_and_retries(self):
        session = FakeSession(
            [
                requests.ConnectionError("down"),
                FakeResponse(404),
                FakeResponse(500),
                FakeResponse(200, {"vaaBytes": base64.b64encode(VAA).decode()}),
            ]
        )
        client = GuardianAttestationClient(["https://g1.example", "https://g2.example"], session=session, poll_interval=0)

        assert client.fetch(KEY) == VAA
        assert [url.split("/v1")[0] for url in session.urls] == [
            "https://g1.example",
            "https://g2.example",
            "https://g1.example",
            "https://g2.example",
        ]

    def test_malformed_response_is_retried(self):
        session = FakeSession(
            [
                FakeResponse(200, {"vaaBytes": "not base64!"}),
                FakeResponse(200, {"vaaBytes": base64.b64encode(VAA).decode()}),
            ]
        )
        client = GuardianAttestationClient(["https://g1.example"], session=session, poll_interval=0)

        assert client.fetch(KEY) == VAA

    @pytest.mark.parametrize("body", [[], None, "vaa", {"vaaBytes": 7}])
    def test_unexpected_json_falls_through_to_next_host(self, body):
        session = FakeSession(
            [
                FakeResponse(200, body),
                FakeResponse(200, {"vaaBytes": base64.b64encode(VAA).decode()}),
            ]
        )
        client = GuardianAttestationClient(["https://g1.example", "https://g2.example"], session=session, poll_interval=0)

        assert client.fetch(KEY) == VAA
        assert len(session.urls) == 2

    def test_deadline(self):
        client = GuardianAttestationClient(
            ["https://g1.example"], session=FakeSession([]), poll_interval=0, timeout=3, clock=FakeClock()
        )

        with pytest.raises(AttestationTimeout):
            client.fetch(KEY)

    def test_cancellation(self):
        cancel = threading.Event()
        cancel.set()
        client = GuardianAttestationClient(["https://g1.example"], session=FakeSession([]), poll_interval=0)

        with pytest.raises(AttestationTimeout):
            client.fetch(KEY, cancel)

    def test_requires_hosts(self):
        with pytest.raises(ValueError):
            GuardianAttestationClient([])


class TestCircleAttestationClient:
    def test_waits_for_complete_status(self):
        session = FakeSession(
            [
                FakeResponse(404),
                FakeResponse(200, {"status": "pending_confirmations", "attestation": "PENDING"}),
                FakeResponse(200, {"status": "complete", "attestation": "0x" + "ab" * 65}),
            ]
        )
        client = CircleAttestationClient("https://iris.example/", session=session, poll_interval=0)

        attestation = client.fetch(b"\x01" * 32)

        assert attestation == b"\xab" * 65
        assert session.urls[0] == "https://iris.example/attestations/0x" + "01" * 32
        assert len(session.urls) == 3

    def test_cancelled_while_waiting(self):
        cancel = threading.Event()
        session = FakeSession([FakeResponse(200, {"status": "pending_confirmations"})])
        client = CircleAttestationClient("https://iris.example", session=session, poll_interval=0.01)
        threading.Timer(0.05, cancel.set).start()

        with pytest.raises(AttestationTimeout):
            client.fetch(b"\x02" * 32, cancel)

    @pytest.mark.parametrize(
        "body",
        [
            [],
            None,
            {"status": "complete", "attestation": 123},
            {"status": "complete", "attestation": None},
            {"status": "complete", "attestation": "0xnothex"},
        ],
    )
    def test_unusable_response_is_retried(self, body):
        session = FakeSession(
            [
                FakeResponse(200, body),
                FakeResponse(200, {"status": "complete", "attestation": "0x" + "cd" * 65}),
            ]
        )
        client = CircleAttestationClient("https://iris.example", session=session, poll_interval=0)

        assert client.fetch(b"\x03" * 32) == b"\xcd" * 65
        assert len(session.urls) == 2
