"""Tests for the HTTP adapter, run in-process over ASGI."""

import pytest

API = "/api/v1"


def sign_in_payload(student, n: int, device: int = None) -> dict:
    device = device or n
    payload = dict(student(n))
    payload["device_id"] = f"device-{device}"
    payload["browser_signature"] = f"browser-{device}"
    return payload


@pytest.mark.asyncio
class TestVotingAPI:
    """Sign-in, voting and result endpoints."""

    async def test_full_flow(self, api_client_factory, student):
        """Test: A student signs in, votes every position, completes and sees results.

        Flow:
        1. POST sign-in, receive a session token and four remaining positions
        2. POST vote for each position
        3. POST complete-voting
        4. GET public/votes shows one vote per chosen candidate
        """
        client = api_client_factory("10.0.0.1")
        payload = sign_in_payload(student, 1)

        response = await client.post(f"{API}/sign-in", json=payload)
        assert response.status_code == 200
        data = response.json()
        assert data["institutional_email"] == payload["institutional_email"]
        assert data["remaining_positions"] == [
            "President", "Vice President", "Senate President", "Treasurer"
        ]
        assert data["continue_voting"] is False
        session = {
            "session_token": data["session_token"],
            "institutional_email": payload["institutional_email"],
            "device_id": "device-1",
            "browser_signature": "browser-1",
        }

        for candidate_id, position in [
            ("c1", "President"), ("c3", "Vice President"), ("c5", "Senate President"), ("c7", "Treasurer")
        ]:
            response = await client.post(
                f"{API}/vote", json={**session, "candidate_id": candidate_id, "position": position}
            )
            assert response.status_code == 200
            assert response.json()["position"] == position

        response = await client.post(f"{API}/complete-voting", json=session)
        assert response.status_code == 200
        assert response.json()["completed"] is True

        response = await client.get(f"{API}/public/votes")
        assert response.status_code == 200
        results = response.json()
        assert results["total_valid_votes"] == 4
        assert results["vote_counts"]["President"][0] == {
            "candidate_id": "c1", "name": "Ada Bello", "votes": 1
        }

    async def test_duplicate_vote(self, api_client_factory, student):
        client = api_client_factory("10.0.0.1")
        payload = sign_in_payload(student, 1)
        token = (await client.post(f"{API}/sign-in", json=payload)).json()["session_token"]
        vote = {
            "session_token": token,
            "institutional_email": payload["institutional_email"],
            "candidate_id": "c1",
            "position": "President",
            "device_id": "device-1",
            "browser_signature": "browser-1",
        }

        assert (await client.post(f"{API}/vote", json=vote)).status_code == 200
        response = await client.post(f"{API}/vote", json={**vote, "candidate_id": "c2"})

        assert response.status_code == 409
        assert response.json()["error"] == "already_voted"

    async def test_invalid_credentials(self, api_client_factory, student):
        client = api_client_factory("10.0.0.1")
        payload = sign_in_payload(student, 1)
        payload["matric_number"] = "22/03cyb001"

        response = await client.post(f"{API}/sign-in", json=payload)

        assert response.status_code == 400
        body = response.json()
        assert body["error"] == "validation_error"
        assert body["details"]["field"] == "matric_number"

    async def test_missing_field(self, api_client_factory, student):
        client = api_client_factory("10.0.0.1")
        payload = sign_in_payload(student, 1)
        del payload["full_name"]

        response = await client.post(f"{API}/sign-in", json=payload)

        assert response.status_code == 422

    async def test_same_device_other_network(self, api_client_factory, student):
        """Test: Second student on the first student's device is rejected with 403."""
        first = api_client_factory("10.0.0.1")
        second = api_client_factory("10.0.0.2")

        assert (await first.post(f"{API}/sign-in", json=sign_in_payload(student, 1))).status_code == 200
        response = await second.post(
            f"{API}/sign-in", json=sign_in_payload(student, 2, device=1)
        )

        assert response.status_code == 403
        assert response.json()["error"] == "duplicate_device"
        assert response.json()["details"]["signal"] == "device"

    async def test_same_network_blocked(self, api_client_factory, student):
        client = api_client_factory("10.0.0.1")

        assert (await client.post(f"{API}/sign-in", json=sign_in_payload(student, 1))).status_code == 200
        response = await client.post(f"{API}/sign-in", json=sign_in_payload(student, 2))

        assert response.status_code == 403
        assert response.json()["error"] == "duplicate_network"

    async def test_bad_session(self, api_client_factory, student):
        client = api_client_factory("10.0.0.1")
        payload = sign_in_payload(student, 1)
        await client.post(f"{API}/sign-in", json=payload)

        response = await client.post(f"{API}/vote", json={
            "session_token": "forged",
            "institutional_email": payload["institutional_email"],
            "candidate_id": "c1",
            "position": "President",
        })

        assert response.status_code == 401
        assert response.json()["error"] == "session_expired"

    async def test_unknown_candidate(self, api_client_factory, student):
        client = api_client_factory("10.0.0.1")
        payload = sign_in_payload(student, 1)
        token = (await client.post(f"{API}/sign-in", json=payload)).json()["session_token"]

        response = await client.post(f"{API}/vote", json={
            "session_token": token,
            "institutional_email": payload["institutional_email"],
            "candidate_id": "c42",
            "position": "President",
            "device_id": "device-1",
            "browser_signature": "browser-1",
        })

        assert response.status_code == 404
        assert response.json()["error"] == "candidate_not_found"

    async def test_vote_from_other_device(self, api_client_factory, student):
        """Test: A vote carrying another device's fingerprint is rejected with 403."""
        client = api_client_factory("10.0.0.1")
        payload = sign_in_payload(student, 1)
        token = (await client.post(f"{API}/sign-in", json=payload)).json()["session_token"]

        response = await client.post(f"{API}/vote", json={
            "session_token": token,
            "institutional_email": payload["institutional_email"],
            "candidate_id": "c1",
            "position": "President",
            "device_id": "device-2",
            "browser_signature": "browser-2",
        })

        assert response.status_code == 403
        assert response.json()["error"] == "device_mismatch"

    async def test_complete_incomplete_ballot(self, api_client_factory, student):
        client = api_client_factory("10.0.0.1")
        payload = sign_in_payload(student, 1)
        token = (await client.post(f"{API}/sign-in", json=payload)).json()["session_token"]

        response = await client.post(f"{API}/complete-voting", json={
            "session_token": token,
            "institutional_email": payload["institutional_email"],
            "device_id": "device-1",
            "browser_signature": "browser-1",
        })

        assert response.status_code == 400
        assert response.json()["error"] == "incomplete_ballot"

    async def test_positions_and_candidates(self, api_client_factory):
        client = api_client_factory()

        positions = (await client.get(f"{API}/positions")).json()
        candidates = (await client.get(f"{API}/candidates/Treasurer")).json()
        unknown = (await client.get(f"{API}/candidates/Chaplain")).json()

        assert positions == ["President", "Vice President", "Senate President", "Treasurer"]
        assert candidates == [
            {"id": "c7", "name": "Chioma Obi", "position": "Treasurer"},
            {"id": "c8", "name": "Bayo Ojo", "position": "Treasurer"},
        ]
        assert unknown == []

    async def test_health_metrics_root(self, api_client_factory):
        client = api_client_factory()

        health = await client.get(f"{API}/health")
        assert health.status_code == 200
        assert health.json()["status"] == "healthy"
        assert health.json()["services"] == {"store": "connected", "redis": "connected"}

        metrics = await client.get("/metrics")
        assert metrics.status_code == 200
        assert "http_request_duration_seconds" in metrics.text

        root = (await client.get("/")).json()
        assert root["service"] == "voting-api"
        assert root["endpoints"]["vote"] == f"{API}/vote"
