"""
tests/test_api_routes.py -- Integration tests for the /v1 REST API.

Uses the api_client fixture from conftest.py: real route handlers, isolated
in-memory stores, three pre-made users (editor, reader, inactive).

Covers:
  - registration, activation and login flow, including failure shapes
  - the auth gate at the HTTP boundary: 401 / 403 codes and WWW-Authenticate
  - toy create / read / patch / delete, JSON field aliases, validation errors
  - toy listing filters, sorting, pagination metadata, bad query params
  - comments with textual ratings
"""

from __future__ import annotations

import pytest

from conftest import PASSWORD, bearer

from auth import store as auth_store
from core.errors import PersistenceError


def _toy_payload(**overrides) -> dict:
    payload = {
        "title": "Lego Classic",
        "desc": "Bricks",
        "details": ["500 pieces"],
        "skills": ["logic", "motor"],
        "categories": ["blocks"],
        "images": ["https://img.oynas.kz/lego.png"],
        "recAge": "6+",
        "manufacturer": "LEGO",
        "value": 12000,
    }
    payload.update(overrides)
    return payload


def _create_toy(session, **overrides) -> dict:
    resp = session.client.post("/v1/toy", json=_toy_payload(**overrides), headers=bearer(session.tokens["editor"]))
    assert resp.status_code == 201, resp.text
    return resp.json()["toy"]


def _error_code(resp) -> str:
    return resp.json()["error"]["code"]


# ---------------------------------------------------------------------------
# Users and tokens
# ---------------------------------------------------------------------------


def test_register_activate_login_flow(api_client):
    client = api_client.client
    resp = client.post("/v1/users", json={"name": "Aru", "email": "aru@oynas.kz", "password": PASSWORD})
    assert resp.status_code == 202, resp.text
    user = resp.json()["user"]
    assert user["activated"] is False
    assert "password" not in user and "password_hash" not in user

    activation = api_client.outbox.last_token_for("aru@oynas.kz")
    assert len(activation) == 26

    resp = client.put("/v1/users/activated", json={"token": activation})
    assert resp.status_code == 200, resp.text
    assert resp.json()["user"]["activated"] is True

    # Activation tokens are single use.
    resp = client.put("/v1/users/activated", json={"token": activation})
    assert resp.status_code == 422
    assert _error_code(resp) == "validation_error"

    resp = client.post("/v1/tokens/authentication", json={"email": "aru@oynas.kz", "password": PASSWORD})
    assert resp.status_code == 201, resp.text
    assert resp.headers["Cache-Control"] == "no-store"
    body = resp.json()["authentication_token"]
    assert len(body["token"]) == 26
    assert body["expiry"]

    # New accounts can read and comment, not write.
    assert client.get("/v1/toys", headers=bearer(body["token"])).status_code == 200
    resp = client.post("/v1/toy", json=_toy_payload(), headers=bearer(body["token"]))
    assert resp.status_code == 403
    assert _error_code(resp) == "forbidden"


def test_register_duplicate_email(api_client):
    resp = api_client.client.post(
        "/v1/users", json={"name": "Again", "email": "editor@oynas.kz", "password": PASSWORD}
    )
    assert resp.status_code == 422
    assert _error_code(resp) == "duplicate_email"


@pytest.mark.parametrize(
    "payload",
    [
        {"name": "", "email": "x@oynas.kz", "password": PASSWORD},
        {"name": "X", "email": "not-an-email", "password": PASSWORD},
        {"name": "X", "email": "x@oynas.kz", "password": "short"},
        {"name": "X", "email": "x@oynas.kz", "password": "я" * 37},  # 74 bytes
        {"name": "X", "email": "x@oynas.kz"},
    ],
)
def test_register_validation(api_client, payload):
    resp = api_client.client.post("/v1/users", json=payload)
    assert resp.status_code == 422
    assert _error_code(resp) == "validation_error"


def test_activate_with_garbage_token(api_client):
    resp = api_client.client.put("/v1/users/activated", json={"token": "not-a-token"})
    assert resp.status_code == 422
    assert "token" in resp.json()["error"]["detail"]


@pytest.mark.parametrize(
    "email, password",
    [("editor@oynas.kz", "wrong-password"), ("ghost@oynas.kz", PASSWORD)],
)
def test_login_failures_look_the_same(api_client, email, password):
    resp = api_client.client.post("/v1/tokens/authentication", json={"email": email, "password": password})
    assert resp.status_code == 401
    assert resp.json()["error"] == {
        "code": "invalid_credentials",
        "message": "Invalid authentication credentials.",
        "detail": None,
    }


def test_password_whitespace_is_kept(api_client):
    client = api_client.client
    resp = client.post("/v1/users", json={"name": "Spaces", "email": "spaces@oynas.kz", "password": "  pa55word-x  "})
    assert resp.status_code == 202, resp.text
    activation = api_client.outbox.last_token_for("spaces@oynas.kz")
    assert client.put("/v1/users/activated", json={"token": activation}).status_code == 200

    resp = client.post("/v1/tokens/authentication", json={"email": "spaces@oynas.kz", "password": "pa55word-x"})
    assert resp.status_code == 401
    resp = client.post("/v1/tokens/authentication", json={"email": "spaces@oynas.kz", "password": "  pa55word-x  "})
    assert resp.status_code == 201


def test_password_of_leading_spaces_counts_every_byte(api_client):
    resp = api_client.client.post("/v1/users", json={"name": "Pad", "email": "pad@oynas.kz", "password": "      ab"})
    assert resp.status_code == 202, resp.text


def test_failed_registration_leaves_email_free(api_client, monkeypatch):
    def broken(*args, **kwargs):
        raise PersistenceError("insert token failed")

    payload = {"name": "Retry", "email": "retry@oynas.kz", "password": PASSWORD}
    monkeypatch.setattr(auth_store, "generate_token", broken)
    resp = api_client.client.post("/v1/users", json=payload)
    assert resp.status_code == 500
    assert _error_code(resp) == "internal_error"

    monkeypatch.undo()
    resp = api_client.client.post("/v1/users", json=payload)
    assert resp.status_code == 202, resp.text
    user_id = resp.json()["user"]["id"]
    assert api_client.user_store.get_permissions(user_id) == {"toys:read", "toys:comment"}


# ---------------------------------------------------------------------------
# Auth gate at the boundary
# ---------------------------------------------------------------------------


def test_anonymous_request_needs_authentication(api_client):
    resp = api_client.client.get("/v1/toys")
    assert resp.status_code == 401
    assert _error_code(resp) == "authentication_required"


def test_non_bearer_header_is_anonymous(api_client):
    resp = api_client.client.get("/v1/toys", headers={"Authorization": "Basic dXNlcjpwYXNz"})
    assert resp.status_code == 401
    assert _error_code(resp) == "authentication_required"


def test_invalid_token(api_client):
    resp = api_client.client.get("/v1/toys", headers=bearer("Z" * 26))
    assert resp.status_code == 401
    assert _error_code(resp) == "invalid_token"
    assert resp.headers["WWW-Authenticate"] == "Bearer"


def test_inactive_account(api_client):
    resp = api_client.client.get("/v1/toys", headers=bearer(api_client.tokens["inactive"]))
    assert resp.status_code == 403
    assert _error_code(resp) == "inactive_account"


def test_missing_permission(api_client):
    resp = api_client.client.post("/v1/toy", json=_toy_payload(), headers=bearer(api_client.tokens["reader"]))
    assert resp.status_code == 403
    assert _error_code(resp) == "forbidden"


# ---------------------------------------------------------------------------
# Toys
# ---------------------------------------------------------------------------


def test_create_toy(api_client):
    resp = api_client.client.post("/v1/toy", json=_toy_payload(), headers=bearer(api_client.tokens["editor"]))
    assert resp.status_code == 201
    toy = resp.json()["toy"]
    assert resp.headers["Location"] == f"/v1/toy/{toy['id']}"
    assert toy["version"] == 1
    assert toy["desc"] == "Bricks"
    assert toy["recAge"] == "6+"
    assert toy["isAvailable"] is True
    assert toy["waitList"] == []


@pytest.mark.parametrize(
    "overrides",
    [
        {"title": ""},
        {"title": "ж" * 251},  # 502 bytes
        {"value": 999},
        {"value": 150001},
        {"skills": []},
        {"skills": ["logic", "logic"]},
        {"categories": [f"c{i}" for i in range(8)]},
        {"details": ["d"] * 6},
        {"images": ["ftp://img.oynas.kz/a.png"]},
        {"images": ["not a url"]},
        {"recAge": ""},
        {"manufacturer": ""},
    ],
)
def test_create_toy_validation(api_client, overrides):
    resp = api_client.client.post(
        "/v1/toy", json=_toy_payload(**overrides), headers=bearer(api_client.tokens["editor"])
    )
    assert resp.status_code == 422
    assert _error_code(resp) == "validation_error"


def test_get_toy_with_comments(api_client):
    toy = _create_toy(api_client, title="Toy With Comments")
    headers = bearer(api_client.tokens["reader"])
    resp = api_client.client.post(
        f"/v1/toy/{toy['id']}/comment", json={"text": "Love it", "rating": "4 из 5"}, headers=headers
    )
    assert resp.status_code == 201, resp.text
    comment = resp.json()["comment"]
    assert comment["rating"] == "4 из 5"
    assert comment["user_name"] == "Reader"

    resp = api_client.client.get(f"/v1/toy/{toy['id']}", headers=headers)
    assert resp.status_code == 200
    data = resp.json()
    assert data["toy"]["title"] == "Toy With Comments"
    assert [c["text"] for c in data["comments"]] == ["Love it"]


@pytest.mark.parametrize("toy_id", [0, 999999])
def test_get_missing_toy(api_client, toy_id):
    resp = api_client.client.get(f"/v1/toy/{toy_id}", headers=bearer(api_client.tokens["reader"]))
    assert resp.status_code == 404
    assert _error_code(resp) == "not_found"


def test_patch_toy(api_client):
    toy = _create_toy(api_client, title="Before Patch")
    headers = bearer(api_client.tokens["editor"])
    resp = api_client.client.patch(
        f"/v1/toy/{toy['id']}", json={"title": "After Patch", "isAvailable": False}, headers=headers
    )
    assert resp.status_code == 200, resp.text
    patched = resp.json()["toy"]
    assert patched["title"] == "After Patch"
    assert patched["isAvailable"] is False
    assert patched["version"] == 2
    assert patched["skills"] == toy["skills"]
    assert patched["value"] == toy["value"]


def test_patch_revalidates_merged_toy(api_client):
    toy = _create_toy(api_client, title="Patch Validation")
    headers = bearer(api_client.tokens["editor"])
    resp = api_client.client.patch(f"/v1/toy/{toy['id']}", json={"value": 10}, headers=headers)
    assert resp.status_code == 422
    resp = api_client.client.patch(f"/v1/toy/{toy['id']}", json={"title": None}, headers=headers)
    assert resp.status_code == 422
    unchanged = api_client.client.get(f"/v1/toy/{toy['id']}", headers=headers).json()["toy"]
    assert unchanged["version"] == 1
    assert unchanged["value"] == toy["value"]


def test_patch_missing_toy(api_client):
    resp = api_client.client.patch(
        "/v1/toy/999999", json={"title": "x"}, headers=bearer(api_client.tokens["editor"])
    )
    assert resp.status_code == 404


def test_delete_toy(api_client):
    toy = _create_toy(api_client, title="To Delete")
    headers = bearer(api_client.tokens["editor"])
    resp = api_client.client.delete(f"/v1/toy/{toy['id']}", headers=headers)
    assert resp.status_code == 200
    assert api_client.client.get(f"/v1/toy/{toy['id']}", headers=headers).status_code == 404
    assert api_client.client.delete(f"/v1/toy/{toy['id']}", headers=headers).status_code == 404


def test_reader_cannot_delete(api_client):
    toy = _create_toy(api_client, title="Protected")
    resp = api_client.client.delete(f"/v1/toy/{toy['id']}", headers=bearer(api_client.tokens["reader"]))
    assert resp.status_code == 403


# ---------------------------------------------------------------------------
# Listing
# ---------------------------------------------------------------------------


@pytest.fixture(scope="module")
def listed(api_client):
    """Three toys sharing a skill nobody else uses, so filters isolate them."""
    return [
        _create_toy(api_client, title="Listed Alpha", value=3000, skills=["listing", "logic"]),
        _create_toy(api_client, title="Listed Beta", value=7000, skills=["listing"], categories=["dolls"]),
        _create_toy(api_client, title="Listed Gamma", value=5000, skills=["listing", "logic"]),
    ]


def _list(api_client, **params):
    return api_client.client.get("/v1/toys", params=params, headers=bearer(api_client.tokens["reader"]))


def test_list_filters_and_sort(api_client, listed):
    resp = _list(api_client, skills="listing,logic", sort="-value")
    assert resp.status_code == 200
    data = resp.json()
    assert [t["title"] for t in data["toys"]] == ["Listed Gamma", "Listed Alpha"]
    assert data["metadata"]["total_records"] == 2


def test_list_title_and_value_range(api_client, listed):
    resp = _list(api_client, title="listed", **{"from": 4000, "to": 8000})
    titles = [t["title"] for t in resp.json()["toys"]]
    assert titles == ["Listed Beta", "Listed Gamma"]


def test_list_categories(api_client, listed):
    resp = _list(api_client, skills="listing", categories="dolls")
    assert [t["title"] for t in resp.json()["toys"]] == ["Listed Beta"]


def test_list_pagination_metadata(api_client, listed):
    data = _list(api_client, skills="listing", page=2, page_size=2).json()
    assert [t["title"] for t in data["toys"]] == ["Listed Gamma"]
    assert data["metadata"] == {
        "current_page": 2,
        "page_size": 2,
        "first_page": 1,
        "last_page": 2,
        "total_records": 3,
    }


def test_list_no_match_has_empty_metadata(api_client):
    data = _list(api_client, title="no such toy anywhere").json()
    assert data == {"toys": [], "metadata": {}}


@pytest.mark.parametrize(
    "params",
    [{"sort": "manufacturer"}, {"sort": "-skills"}, {"page": 0}, {"page_size": 101}, {"page": 10_000_001}],
)
def test_list_bad_params(api_client, params):
    resp = _list(api_client, **params)
    assert resp.status_code == 422
    assert _error_code(resp) == "validation_error"


# ---------------------------------------------------------------------------
# Comments
# ---------------------------------------------------------------------------


@pytest.mark.parametrize(
    "payload",
    [
        {"text": "ok", "rating": "7 из 5"},
        {"text": "ok", "rating": "3 of 5"},
        {"text": "ok", "rating": "3"},
        {"text": "ok", "rating": 3},
        {"text": "", "rating": "3 из 5"},
        {"text": "a" * 1001, "rating": "3 из 5"},
    ],
)
def test_comment_validation(api_client, payload):
    toy = _create_toy(api_client, title="Comment Validation")
    resp = api_client.client.post(
        f"/v1/toy/{toy['id']}/comment", json=payload, headers=bearer(api_client.tokens["reader"])
    )
    assert resp.status_code == 422


def test_comment_on_missing_toy(api_client):
    resp = api_client.client.post(
        "/v1/toy/999999/comment", json={"text": "hi", "rating": "3 из 5"}, headers=bearer(api_client.tokens["reader"])
    )
    assert resp.status_code == 404
