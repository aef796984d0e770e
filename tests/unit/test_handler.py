"""
HTTP-level tests for the upload proxy handler.

Each test drives the FastAPI app through TestClient. Storage is the
in-memory mock and the upstream API is the FakeUpstream from conftest,
so every outbound call can be inspected.
"""

import asyncio
import hashlib
import json

import httpx
import pytest

from upload_router.config.settings import Settings


def assert_cors(response, origin="*"):
    assert response.headers["access-control-allow-origin"] == origin
    assert "PUT" in response.headers["access-control-allow-methods"]
    assert "Procore-Fas-User-Id" in response.headers["access-control-allow-headers"]


# ---------------------------------------------------------------------------
# Routing and CORS
# ---------------------------------------------------------------------------

class TestRouting:
    """Method and action dispatch, including every error branch."""

    def test_options_returns_204_with_cors(self, client):
        """Preflight gets 204 and a max-age whatever the query says."""
        response = client.options("/any/key?action=nonsense&uploadId=1")

        assert response.status_code == 204
        assert response.content == b""
        assert_cors(response)
        assert response.headers["access-control-max-age"] == "86400"

    def test_missing_action_returns_400(self, client):
        response = client.post("/some/key")

        assert response.status_code == 400
        assert response.text == "Missing action type"
        assert_cors(response)

    def test_unknown_action_names_action_and_method(self, client):
        response = client.post("/some/key?action=mpu-abort")

        assert response.status_code == 400
        assert response.text == "Unknown action mpu-abort for POST"
        assert_cors(response)

    def test_unknown_get_action(self, client):
        response = client.get("/some/key?action=list")

        assert response.status_code == 400
        assert response.text == "Unknown action list for GET"

    def test_unsupported_method_returns_405_with_allow(self, client):
        response = client.patch("/some/key?action=get")

        assert response.status_code == 405
        assert response.headers["allow"] == "PUT, POST, GET, DELETE"
        assert_cors(response)

    def test_missing_key_for_storage_action(self, client):
        response = client.post("/?action=mpu-create")

        assert response.status_code == 400
        assert response.text == "Missing object key"

    def test_expose_headers_include_etag(self, client):
        response = client.delete("/k?action=delete")

        assert response.headers["access-control-expose-headers"] == "etag"
        assert "access-control-allow-credentials" not in response.headers

    def test_health_route_is_not_shadowed(self, client):
        response = client.get("/health")

        assert response.status_code == 200
        assert response.json()["status"] == "ok"


# ---------------------------------------------------------------------------
# Direct storage actions
# ---------------------------------------------------------------------------

class TestDirectStorage:
    """Create / uploadPart / complete / abort / get / delete against mock storage."""

    def create_upload(self, client, key="videos/clip.mp4"):
        response = client.post(f"/{key}?action=mpu-create")
        assert response.status_code == 200
        return response.json()["uploadId"]

    def test_create_returns_key_and_upload_id(self, client):
        response = client.post("/videos/clip.mp4?action=mpu-create")

        assert response.status_code == 200
        body = response.json()
        assert body["key"] == "videos/clip.mp4"
        assert body["uploadId"]
        assert_cors(response)

    def test_upload_part_returns_part_number_and_etag(self, client):
        upload_id = self.create_upload(client)

        response = client.put(
            f"/videos/clip.mp4?action=mpu-uploadpart&uploadId={upload_id}&partNumber=3",
            content=b"part three",
        )

        assert response.status_code == 200
        assert response.json() == {
            "partNumber": 3,
            "etag": hashlib.md5(b"part three").hexdigest(),
        }

    def test_upload_part_storage_failure_is_400_with_message(self, client):
        response = client.put(
            "/videos/clip.mp4?action=mpu-uploadpart&uploadId=abc&partNumber=3",
            content=b"bytes",
        )

        assert response.status_code == 400
        assert response.text == "Multipart upload does not exist: abc"
        assert_cors(response)

    def test_upload_part_requires_part_number_and_upload_id(self, client):
        response = client.put("/k?action=mpu-uploadpart&uploadId=abc", content=b"x")

        assert response.status_code == 400
        assert response.text == "Missing partNumber or uploadId"

    def test_upload_part_rejects_non_numeric_part_number(self, client):
        response = client.put("/k?action=mpu-uploadpart&uploadId=abc&partNumber=two", content=b"x")

        assert response.status_code == 400
        assert response.text == "Invalid partNumber"

    def test_upload_part_rejects_signed_part_number(self, client):
        response = client.put(
            "/k?action=mpu-uploadpart&uploadId=abc&partNumber=%20%2B3%20", content=b"x"
        )

        assert response.status_code == 400
        assert response.text == "Invalid partNumber"

    def test_upload_part_requires_body(self, client):
        response = client.put("/k?action=mpu-uploadpart&uploadId=abc&partNumber=1")

        assert response.status_code == 400
        assert response.text == "Missing request body"

    def test_complete_sets_etag_and_object_is_readable(self, client):
        upload_id = self.create_upload(client)
        parts = []
        for number, data in ((1, b"hello "), (2, b"world")):
            response = client.put(
                f"/videos/clip.mp4?action=mpu-uploadpart&uploadId={upload_id}&partNumber={number}",
                content=data,
            )
            parts.append(response.json())

        response = client.post(
            f"/videos/clip.mp4?action=mpu-complete&uploadId={upload_id}",
            json={"parts": parts},
        )

        assert response.status_code == 200
        assert response.headers["etag"].startswith('"')
        assert response.headers["etag"].endswith('-2"')
        assert_cors(response)

        fetched = client.get("/videos/clip.mp4?action=get")
        assert fetched.status_code == 200
        assert fetched.content == b"hello world"
        assert fetched.headers["etag"] == response.headers["etag"]
        assert fetched.headers["content-type"] == "application/octet-stream"

    def test_complete_twice_is_400(self, client):
        upload_id = self.create_upload(client)
        part = client.put(
            f"/videos/clip.mp4?action=mpu-uploadpart&uploadId={upload_id}&partNumber=1",
            content=b"data",
        ).json()
        url = f"/videos/clip.mp4?action=mpu-complete&uploadId={upload_id}"
        assert client.post(url, json={"parts": [part]}).status_code == 200

        response = client.post(url, json={"parts": [part]})

        assert response.status_code == 400
        assert "does not exist" in response.text

    @pytest.mark.parametrize("body", [b"", b"null", b"{}", b'{"parts": "nope"}', b"not json"])
    def test_complete_rejects_missing_or_bad_body(self, client, body):
        response = client.post("/k?action=mpu-complete&uploadId=abc", content=body)

        assert response.status_code == 400
        assert response.text == "Missing or incomplete body"

    def test_complete_requires_upload_id(self, client):
        response = client.post("/k?action=mpu-complete", json={"parts": []})

        assert response.status_code == 400
        assert response.text == "Missing uploadId"

    def test_abort_returns_204(self, client):
        upload_id = self.create_upload(client)

        response = client.delete(f"/videos/clip.mp4?action=mpu-abort&uploadId={upload_id}")

        assert response.status_code == 204
        assert response.content == b""
        assert_cors(response)

    def test_abort_unknown_upload_is_400(self, client):
        response = client.delete("/videos/clip.mp4?action=mpu-abort&uploadId=gone")

        assert response.status_code == 400
        assert "gone" in response.text

    def test_delete_missing_key_is_204(self, client):
        response = client.delete("/never/existed?action=delete")

        assert response.status_code == 204

    def test_delete_removes_object(self, client, storage):
        asyncio.run(storage.put_object("doc.txt", b"text"))

        assert client.delete("/doc.txt?action=delete").status_code == 204
        assert client.get("/doc.txt?action=get").status_code == 404

    def test_get_missing_object_is_404(self, client):
        response = client.get("/missing.bin?action=get")

        assert response.status_code == 404
        assert response.text == "Object Not Found"
        assert_cors(response)


# ---------------------------------------------------------------------------
# Proxied part upload
# ---------------------------------------------------------------------------

PROXY_URL = "/ignored?action=s3-put&uploadId=u-42&partNumber=3"


class TestProxyPartUpload:
    """The GET -> PUT -> PATCH chain."""

    def test_success_returns_composed_result(self, client, upstream):
        response = client.put(
            PROXY_URL,
            content=b"part bytes",
            headers={"Procore-Fas-User-Id": "789"},
        )

        assert response.status_code == 200
        assert response.json() == {
            "id": "p1",
            "partNumber": 3,
            "status": "success",
            "etag": "xyz",
        }
        assert_cors(response)
        assert upstream.methods == ["GET", "PUT", "PATCH"]

    def test_get_step_targets_part_url_with_user_id(self, client, settings, upstream):
        client.put(PROXY_URL, content=b"part bytes", headers={"Procore-Fas-User-Id": "789"})

        get_request = upstream.request_for("GET")
        assert str(get_request.url) == (
            f"{settings.upstream_api_base_url}/companies/8/projects/9/file_uploads/u-42/parts/3"
        )
        assert get_request.headers["procore-fas-user-id"] == "789"

    def test_put_step_uses_descriptor_headers_minus_md5(self, client, upstream):
        client.put(PROXY_URL, content=b"part bytes", headers={"Procore-Fas-User-Id": "789"})

        put_request = upstream.request_for("PUT")
        assert str(put_request.url) == upstream.destination_url
        assert put_request.content == b"part bytes"
        assert put_request.headers["content-type"] == "application/octet-stream"
        assert "content-md5" not in put_request.headers
        assert "procore-fas-user-id" not in put_request.headers

    def test_put_step_forwards_inbound_content_length(self, client, upstream):
        client.put(PROXY_URL, content=b"part bytes")

        put_request = upstream.request_for("PUT")
        assert put_request.headers["content-length"] == "10"
        assert "transfer-encoding" not in put_request.headers

    def test_put_step_keeps_descriptor_content_length(self, client, upstream):
        upstream.respond("GET", httpx.Response(200, json={
            "id": "p1",
            "url": upstream.destination_url,
            "headers": {"Content-Length": "10"},
        }))

        client.put(PROXY_URL, content=b"part bytes")

        put_request = upstream.request_for("PUT")
        assert put_request.headers.get_list("content-length") == ["10"]
        assert put_request.content == b"part bytes"

    def test_patch_step_sends_segment(self, client, settings, upstream):
        client.put(PROXY_URL, content=b"part bytes", headers={"Procore-Fas-User-Id": "789"})

        patch_request = upstream.request_for("PATCH")
        assert str(patch_request.url) == f"{settings.upstream_api_base_url}/companies/8/projects/9/file_uploads/u-42"
        assert patch_request.headers["procore-fas-user-id"] == "789"
        assert json.loads(patch_request.content) == {
            "segments": [{"etag": "xyz", "part_number": 3}]
        }

    def test_get_failure_stops_chain(self, client, upstream):
        upstream.respond("GET", httpx.Response(403))

        response = client.put(PROXY_URL, content=b"part bytes")

        assert response.status_code == 403
        assert response.text == "Failed to fetch part: Forbidden"
        assert_cors(response)
        assert upstream.methods == ["GET"]

    def test_put_failure_skips_patch(self, client, upstream):
        upstream.respond("PUT", httpx.Response(500))

        response = client.put(PROXY_URL, content=b"part bytes")

        assert response.status_code == 500
        assert response.text == "Failed to upload part: Internal Server Error"
        assert upstream.methods == ["GET", "PUT"]

    def test_patch_failure_is_propagated(self, client, upstream):
        upstream.respond("PATCH", httpx.Response(409))

        response = client.put(PROXY_URL, content=b"part bytes")

        assert response.status_code == 409
        assert response.text == "Failed to update segments: Conflict"

    def test_missing_etag_is_502(self, client, upstream):
        upstream.respond("PUT", httpx.Response(200))

        response = client.put(PROXY_URL, content=b"part bytes")

        assert response.status_code == 502
        assert response.text == "Destination response missing ETag"
        assert upstream.methods == ["GET", "PUT"]

    def test_upper_case_etag_header_is_found(self, client, upstream):
        upstream.respond("PUT", httpx.Response(200, headers={"ETag": '"abc"'}))

        response = client.put(PROXY_URL, content=b"part bytes")

        assert response.json()["etag"] == '"abc"'

    def test_invalid_descriptor_is_502(self, client, upstream):
        upstream.respond("GET", httpx.Response(200, json={"id": "p1"}))

        response = client.put(PROXY_URL, content=b"part bytes")

        assert response.status_code == 502
        assert response.text.startswith("Invalid part descriptor:")
        assert upstream.methods == ["GET"]

    def test_descriptor_without_id_stops_chain(self, make_client, settings, upstream):
        upstream.respond("GET", httpx.Response(200, json={"url": upstream.destination_url}))
        client = make_client(settings.model_copy(update={"segment_part_field": "part_id"}))

        response = client.put(PROXY_URL, content=b"part bytes")

        assert response.status_code == 502
        assert response.text == "Invalid part descriptor: missing part id"
        assert upstream.methods == ["GET"]

    def test_unreachable_upstream_is_502(self, client, upstream):
        upstream.error = httpx.ConnectError("connection refused")

        response = client.put(PROXY_URL, content=b"part bytes")

        assert response.status_code == 502
        assert response.text == "Failed to fetch part: connection refused"

    def test_missing_part_number_is_400_without_calls(self, client, upstream):
        response = client.put("/x?action=s3-put&uploadId=u-42", content=b"part bytes")

        assert response.status_code == 400
        assert response.text == "Missing partNumber or uploadId"
        assert upstream.requests == []

    def test_empty_body_is_400_without_calls(self, client, upstream):
        response = client.put(PROXY_URL)

        assert response.status_code == 400
        assert response.text == "Missing request body"
        assert upstream.requests == []

    def test_default_user_id_used_when_header_absent(self, make_client, settings, upstream):
        client = make_client(settings.model_copy(update={"default_user_id": "42"}))

        client.put(PROXY_URL, content=b"part bytes")

        assert upstream.request_for("GET").headers["procore-fas-user-id"] == "42"

    def test_buffered_body_is_forwarded(self, make_client, settings, upstream):
        client = make_client(settings.model_copy(update={"stream_part_body": False}))

        response = client.put(PROXY_URL, content=b"buffered bytes")

        assert response.status_code == 200
        assert upstream.request_for("PUT").content == b"buffered bytes"

    def test_part_id_segment_field(self, make_client, settings, upstream):
        client = make_client(settings.model_copy(update={"segment_part_field": "part_id"}))

        client.put(PROXY_URL, content=b"part bytes")

        assert json.loads(upstream.request_for("PATCH").content) == {
            "segments": [{"etag": "xyz", "part_id": "p1"}]
        }


class TestDeploymentVariants:
    """Cookie auth and path-based identifiers."""

    @pytest.fixture
    def cookie_settings(self, settings) -> Settings:
        return settings.model_copy(update={
            "auth_mode": "cookie",
            "cors_origin": "https://app.example.com",
        })

    def test_cookie_mode_forwards_cookie_to_api_only(self, make_client, cookie_settings, upstream):
        client = make_client(cookie_settings)

        response = client.put(
            PROXY_URL,
            content=b"part bytes",
            headers={"Cookie": "session=abc", "Procore-Fas-User-Id": "789"},
        )

        assert response.status_code == 200
        assert upstream.request_for("GET").headers["cookie"] == "session=abc"
        assert upstream.request_for("PATCH").headers["cookie"] == "session=abc"
        assert "cookie" not in upstream.request_for("PUT").headers

    def test_cookie_mode_cors_allows_credentials(self, make_client, cookie_settings):
        client = make_client(cookie_settings)

        response = client.options("/anything")

        assert_cors(response, origin="https://app.example.com")
        assert response.headers["access-control-allow-credentials"] == "true"
        assert response.headers["vary"] == "Origin"

    def test_header_mode_does_not_forward_cookie(self, client, upstream):
        client.put(PROXY_URL, content=b"part bytes", headers={"Cookie": "session=abc"})

        assert "cookie" not in upstream.request_for("GET").headers

    def test_path_mode_routes_without_action(self, make_client, settings, upstream):
        client = make_client(settings.model_copy(update={"id_extraction": "path"}))

        response = client.put(
            "/companies/c1/projects/p7/uploads/u1/parts/2",
            content=b"part bytes",
        )

        assert response.status_code == 200
        assert response.json()["partNumber"] == 2
        assert str(upstream.request_for("GET").url) == (
            f"{settings.upstream_api_base_url}/companies/c1/projects/p7/file_uploads/u1/parts/2"
        )
        assert str(upstream.request_for("PATCH").url) == (
            f"{settings.upstream_api_base_url}/companies/c1/projects/p7/file_uploads/u1"
        )

    def test_path_mode_other_paths_still_need_action(self, make_client, settings):
        client = make_client(settings.model_copy(update={"id_extraction": "path"}))

        response = client.put("/companies/c1/projects/p7", content=b"x")

        assert response.status_code == 400
        assert response.text == "Missing action type"

    def test_query_mode_ignores_path_shape(self, client, upstream):
        response = client.put("/companies/c1/projects/p7/uploads/u1/parts/2", content=b"x")

        assert response.status_code == 400
        assert response.text == "Missing action type"
        assert upstream.requests == []
