# backend/tests/test_error_contract.py

from fastapi import APIRouter, FastAPI, HTTPException
from fastapi.exceptions import RequestValidationError
from fastapi.testclient import TestClient

from portal.core.errors import CodeSpaceExhausted, InvalidFormat, PortalError
from portal.main import http_exception_handler, portal_error_handler, validation_exception_handler


def _app() -> FastAPI:
    app = FastAPI()
    app.add_exception_handler(HTTPException, http_exception_handler)
    app.add_exception_handler(RequestValidationError, validation_exception_handler)
    app.add_exception_handler(PortalError, portal_error_handler)

    r = APIRouter()

    @r.get("/boom")
    def boom():
        raise HTTPException(
            status_code=400,
            detail={"code": "BAD_THING", "message": "Bad thing", "field": "name"},
        )

    @r.get("/moved")
    def moved():
        raise HTTPException(status_code=307, detail="Moved.", headers={"Location": "/elsewhere"})

    @r.get("/invalid-code")
    def invalid_code():
        raise InvalidFormat()

    @r.get("/exhausted")
    def exhausted():
        raise CodeSpaceExhausted(project_id="p1")

    @r.get("/typed")
    def typed(n: int):
        return {"n": n}

    app.include_router(r, prefix="/api/v1")
    return app


def test_http_exception_detail_dict_is_preserved_and_merged():
    resp = TestClient(_app()).get("/api/v1/boom")
    assert resp.status_code == 400

    body = resp.json()
    assert body["code"] == "HTTP_400"
    assert body["message"] == "Bad thing"
    assert body["detail"] == {"code": "BAD_THING", "message": "Bad thing", "field": "name"}
    assert isinstance(body["request_id"], str) and body["request_id"]
    assert resp.headers["X-Request-ID"] == body["request_id"]


def test_http_exception_headers_survive():
    resp = TestClient(_app()).get("/api/v1/moved", follow_redirects=False)
    assert resp.status_code == 307
    assert resp.headers["location"] == "/elsewhere"


def test_portal_errors_use_their_code_and_status():
    client = TestClient(_app())

    r = client.get("/api/v1/invalid-code")
    assert r.status_code == 400
    assert r.json()["code"] == "INVALID_CLIENT_CODE"
    assert r.json()["detail"] == {"code": "INVALID_CLIENT_CODE", "message": "Invalid client code"}

    r = client.get("/api/v1/exhausted")
    assert r.status_code == 503
    assert r.json()["code"] == "CODE_SPACE_EXHAUSTED"


def test_validation_errors_are_wrapped():
    r = TestClient(_app()).get("/api/v1/typed", params={"n": "x"})
    assert r.status_code == 422
    body = r.json()
    assert body["code"] == "VALIDATION_ERROR"
    assert body["errors"]


def test_request_id_is_echoed_by_the_real_app(client):
    r = client.get("/api/v1/health", headers={"X-Request-ID": "abc123"})
    assert r.headers["X-Request-ID"] == "abc123"

    r = client.get("/api/v1/auth/me")
    assert r.status_code == 401
    assert r.json()["request_id"] == r.headers["X-Request-ID"]
