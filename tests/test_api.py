import pytest
from httpx import AsyncClient

from access_core.service.exceptions import StorageUnavailable


async def _generate(api_client: AsyncClient, **body) -> list:
    response = await api_client.post("management/tokens", json=body)
    assert response.status_code == 201, response.text
    return response.json()


async def test_health(api_client):
    response = await api_client.get("public/health")
    assert response.status_code == 200
    assert response.json() == {"status": "ok", "token_store": "TinyTokenStore"}


async def test_health_without_token_store(app, api_client, mocker):
    mocker.patch.object(app.state.coordinator.store, "ping", side_effect=StorageUnavailable("connection refused"))
    response = await api_client.get("public/health")
    assert response.status_code == 503


async def test_generate_unique(api_client):
    tokens = await _generate(api_client, kind="unique", count=3, start_sequence=7, created_by="admin")
    assert [t["code"][-4:] for t in tokens] == ["0007", "0008", "0009"]
    assert all(t["code"].startswith("EA-") for t in tokens)
    assert all(t["max_redemptions"] == 1 and t["created_by"] == "admin" for t in tokens)


async def test_generate_shared_uses_configured_default(api_client):
    tokens = await _generate(api_client, kind="shared", count=2, custom_prefix="launch")
    assert len(tokens) == 2
    for t in tokens:
        assert t["code"].startswith("LAUNCH")
        assert t["max_redemptions"] == 25


async def test_generate_shared_with_quota(api_client):
    (token,) = await _generate(api_client, kind="shared", max_redemptions=500)
    assert token["max_redemptions"] == 500


@pytest.mark.parametrize("body", [
    {"kind": "lottery", "count": 1},
    {"count": 1},
    {"kind": "unique", "count": 0},
    {"kind": "unique", "custom_prefix": "no spaces"},
])
async def test_generate_invalid_request(api_client, body):
    response = await api_client.post("management/tokens", json=body)
    assert response.status_code == 422


@pytest.mark.config_override({"tokens": {
    "shared_default_max_redemptions": 25, "max_batch_size": 5, "default_query_limit": 50,
}})
async def test_generate_too_many(api_client):
    response = await api_client.post("management/tokens", json={"kind": "unique", "count": 6})
    assert response.status_code == 400


async def test_generate_sequence_out_of_range(api_client):
    response = await api_client.post("management/tokens", json={"kind": "unique", "count": 2, "start_sequence": 9999})
    assert response.status_code == 400


async def test_validate(api_client):
    (token,) = await _generate(api_client, kind="unique")

    response = await api_client.post("public/tokens/validate", json={"code": f" {token['code']} "})
    assert response.status_code == 200
    assert response.json()["valid"] is True
    assert response.json()["token"]["code"] == token["code"]


@pytest.mark.parametrize("code, reason", [
    ("EA-A1B2C3D4-0001", "not-found"),
    ("ea-a1b2c3d4-0001", "bad-format"),
])
async def test_validate_invalid(api_client, code, reason):
    response = await api_client.post("public/tokens/validate", json={"code": code})
    assert response.status_code == 200
    assert response.json() == {"valid": False, "token": None, "reason": reason}


async def test_validate_empty_code(api_client):
    response = await api_client.post("public/tokens/validate", json={"code": "  "})
    assert response.status_code == 422


async def test_redeem(api_client):
    (token,) = await _generate(api_client, kind="shared", max_redemptions=2)
    code = token["code"]

    response = await api_client.post("public/tokens/redeem", json={"code": code, "identity": "user-1"})
    assert response.status_code == 200
    body = response.json()
    assert body["redeemed"] is True
    assert body["token"]["current_redemptions"] == 1
    assert body["token"]["redeemed_users"] == ["user-1"]

    response = await api_client.post("public/tokens/redeem", json={"code": code, "identity": "user-1"})
    assert response.status_code == 409
    assert response.json() == {"redeemed": False, "token": None, "reason": "already-redeemed"}

    response = await api_client.post("public/tokens/redeem", json={"code": code, "identity": "user-2"})
    assert response.status_code == 200

    response = await api_client.post("public/tokens/redeem", json={"code": code, "identity": "user-3"})
    assert response.status_code == 409
    assert response.json()["reason"] == "exhausted"


@pytest.mark.parametrize("code, status_code, reason", [
    ("EA-A1B2C3D4-0001", 404, "not-found"),
    ("EA-A1B2C3D4", 400, "bad-format"),
])
async def test_redeem_invalid(api_client, code, status_code, reason):
    response = await api_client.post("public/tokens/redeem", json={"code": code, "identity": "user-1"})
    assert response.status_code == status_code
    assert response.json()["reason"] == reason


async def test_redeem_deactivated(api_client):
    (token,) = await _generate(api_client, kind="unique")
    response = await api_client.delete(f"management/tokens/{token['code']}")
    assert response.status_code == 204

    response = await api_client.post("public/tokens/redeem", json={"code": token["code"], "identity": "user-1"})
    assert response.status_code == 409
    assert response.json()["reason"] == "inactive"


async def test_deactivate_unknown(api_client):
    response = await api_client.delete("management/tokens/EA-A1B2C3D4-0001")
    assert response.status_code == 404


async def test_get_token(api_client):
    (token,) = await _generate(api_client, kind="unique", metadata={"cohort": "a"})

    response = await api_client.get(f"management/tokens/{token['code']}")
    assert response.status_code == 200
    assert response.json()["metadata"] == {"cohort": "a"}

    response = await api_client.get("management/tokens/EA-A1B2C3D4-0001")
    assert response.status_code == 404


async def test_list_tokens(api_client):
    unique = await _generate(api_client, kind="unique", count=3, created_by="alice")
    await _generate(api_client, kind="shared", count=2, created_by="bob")
    await api_client.post("public/tokens/redeem", json={"code": unique[0]["code"], "identity": "user-1"})

    response = await api_client.get("management/tokens")
    assert response.status_code == 200
    assert len(response.json()) == 5

    response = await api_client.get("management/tokens", params={"created_by": "alice"})
    assert {t["code"] for t in response.json()} == {t["code"] for t in unique}

    response = await api_client.get("management/tokens", params={"status": "exhausted"})
    assert [t["code"] for t in response.json()] == [unique[0]["code"]]

    response = await api_client.get("management/tokens", params={"limit": 2, "offset": 1})
    assert len(response.json()) == 2

    response = await api_client.get("management/tokens", params={"status": "sold-out"})
    assert response.status_code == 422


async def test_stats(api_client):
    await _generate(api_client, kind="unique", count=2)
    (shared,) = await _generate(api_client, kind="shared", max_redemptions=10)
    await api_client.post("public/tokens/redeem", json={"code": shared["code"], "identity": "user-1"})

    response = await api_client.get("management/tokens/stats")
    assert response.status_code == 200
    assert response.json() == {
        "total_created": 3,
        "total_redeemed": 1,
        "total_available": 12,
        "total_active": 3,
        "total_expired": 0,
    }


@pytest.mark.config_override({"rate_limit": {"max_requests": 3, "window_seconds": 900, "max_tracked_clients": 10000}})
async def test_public_endpoints_are_rate_limited(api_client):
    for _ in range(3):
        response = await api_client.post("public/tokens/validate", json={"code": "EA-A1B2C3D4-0001"})
        assert response.status_code == 200

    response = await api_client.post("public/tokens/redeem", json={"code": "EA-A1B2C3D4-0001", "identity": "u"})
    assert response.status_code == 429
    assert 0 < int(response.headers["Retry-After"]) <= 900

    assert (await api_client.get("public/health")).status_code == 200
    assert (await api_client.get("management/tokens/stats")).status_code == 200


async def test_storage_unavailable(app, api_client, mocker):
    mocker.patch.object(
        app.state.coordinator.store, "get_by_code", side_effect=StorageUnavailable("connection refused")
    )
    response = await api_client.post("public/tokens/validate", json={"code": "EA-A1B2C3D4-0001"})
    assert response.status_code == 503


@pytest.mark.config_override({"rate_limit": {
    "max_requests": 3, "window_seconds": 900, "max_tracked_clients": 10000, "trusted_proxies": [],
}})
async def test_forwarded_for_from_untrusted_peer_is_ignored(api_client):
    statuses = []
    for i in range(20):
        response = await api_client.post(
            "public/tokens/validate",
            json={"code": "EA-A1B2C3D4-0001"},
            headers={"X-Forwarded-For": f"10.0.0.{i}"},
        )
        statuses.append(response.status_code)

    assert statuses[:3] == [200, 200, 200]
    assert set(statuses[3:]) == {429}


@pytest.mark.config_override({"rate_limit": {
    "max_requests": 3, "window_seconds": 900, "max_tracked_clients": 10000, "trusted_proxies": ["127.0.0.1"],
}})
async def test_forwarded_for_from_trusted_proxy(api_client):
    for _ in range(3):
        response = await api_client.post(
            "public/tokens/validate",
            json={"code": "EA-A1B2C3D4-0001"},
            headers={"X-Forwarded-For": "203.0.113.7, 127.0.0.1"},
        )
        assert response.status_code == 200

    response = await api_client.post(
        "public/tokens/validate",
        json={"code": "EA-A1B2C3D4-0001"},
        headers={"X-Forwarded-For": "203.0.113.7"},
    )
    assert response.status_code == 429

    response = await api_client.post(
        "public/tokens/validate",
        json={"code": "EA-A1B2C3D4-0001"},
        headers={"X-Forwarded-For": "203.0.113.8"},
    )
    assert response.status_code == 200


async def test_redeem_identity_too_long(api_client):
    (token,) = await _generate(api_client, kind="unique")
    response = await api_client.post("public/tokens/redeem", json={"code": token["code"], "identity": "u" * 256})
    assert response.status_code == 422

    response = await api_client.post("public/tokens/redeem", json={"code": token["code"], "identity": "u" * 255})
    assert response.status_code == 200
    assert response.json()["token"]["redeemed_by"] == "u" * 255


async def test_generate_created_by_too_long(api_client):
    response = await api_client.post("management/tokens", json={"kind": "unique", "created_by": "a" * 256})
    assert response.status_code == 422
