from __future__ import annotations

from pathlib import Path

import pytest
from fastapi.testclient import TestClient

from pmd_gemini.modules.api import create_app
from pmd_gemini.modules.fix_advisor import FixAdvisor


def _reply(text):
    return {"choices": [{"message": {"content": text}}]}


@pytest.fixture()
def json_analyzer(make_analyzer):
    return make_analyzer(
        """
        print(json.dumps([{"ruleName": "ApexDoc", "severity": 3, "line": 1,
                           "message": "Missing doc", "fileName": "Foo.cls"}]))
        """
    )


@pytest.fixture()
def client(make_config, json_analyzer):
    app = create_app(make_config(analyzer_command=json_analyzer), fix_advisor=None)
    with TestClient(app) as c:
        yield c


def _advisor_client(make_config, provider_call) -> TestClient:
    advisor = FixAdvisor(model="gemini/gemini-1.5-flash", provider_call=provider_call)
    return TestClient(create_app(make_config(), fix_advisor=advisor))


# ---------------------------------------------------------------------------
# /health
# ---------------------------------------------------------------------------


def test_health_reports_collaborators(client: TestClient) -> None:
    r = client.get("/health")
    assert r.status_code == 200
    body = r.json()
    assert body["status"] == "ok"
    assert body["message"] == "PMD-Gemini Service is running"
    assert body["geminiAvailable"] is False
    assert body["analyzer"].startswith("available")
    assert body["timestamp"]


def test_health_with_advisor(make_config) -> None:
    async def provider_call(_messages):
        return _reply("x")

    with _advisor_client(make_config, provider_call) as c:
        assert c.get("/health").json()["geminiAvailable"] is True


# ---------------------------------------------------------------------------
# /run
# ---------------------------------------------------------------------------


def test_run_scenario_single_violation(client: TestClient, artifact_dir: Path) -> None:
    r = client.post("/run", json={"filename": "Foo.cls", "source": "public class Foo {}"})

    assert r.status_code == 200, r.text
    assert r.json() == [
        {"ruleName": "ApexDoc", "severity": 3, "line": 1, "message": "Missing doc", "fileName": "Foo.cls"}
    ]
    assert list(artifact_dir.iterdir()) == []


@pytest.mark.parametrize(
    "body",
    [
        {},
        {"filename": "Foo.cls"},
        {"source": "public class Foo {}"},
        {"filename": "", "source": "x"},
        {"filename": "Foo.cls", "source": ""},
        {"filename": 12, "source": "x"},
    ],
)
def test_run_missing_fields_is_400(client: TestClient, body, artifact_dir: Path) -> None:
    r = client.post("/run", json=body)
    assert r.status_code == 400
    assert r.json()["error"] == "Both 'filename' and 'source' fields are required"
    assert list(artifact_dir.iterdir()) == []


def test_run_malformed_json_is_400(client: TestClient) -> None:
    r = client.post("/run", content=b"{not json", headers={"Content-Type": "application/json"})
    assert r.status_code == 400
    assert "error" in r.json()


def test_run_oversized_source_is_400_without_artifact(client: TestClient, artifact_dir: Path) -> None:
    r = client.post("/run", json={"filename": "Foo.cls", "source": "x" * 150_000})

    assert r.status_code == 400
    assert "100000" in r.json()["error"]
    assert list(artifact_dir.iterdir()) == []


def test_run_timeout_is_500_and_artifact_removed(make_config, make_analyzer, artifact_dir: Path) -> None:
    command = make_analyzer("time.sleep(10)")
    app = create_app(make_config(analyzer_command=command, scan_timeout_seconds=0.5), fix_advisor=None)

    with TestClient(app) as c:
        r = c.post("/run", json={"filename": "Foo.cls", "source": "public class Foo {}"})

    assert r.status_code == 500
    body = r.json()
    assert "timed out" in body["error"]
    assert "too large or complex" in body["error"]
    assert body["details"]
    assert list(artifact_dir.iterdir()) == []


def test_run_analyzer_failure_is_500(make_config, make_analyzer, artifact_dir: Path) -> None:
    command = make_analyzer(
        """
        sys.stderr.write("Error: Unknown rule selector\\n")
        sys.exit(1)
        """
    )
    with TestClient(create_app(make_config(analyzer_command=command), fix_advisor=None)) as c:
        r = c.post("/run", json={"filename": "Foo.cls", "source": "x"})

    assert r.status_code == 500
    assert r.json() == {
        "error": "PMD scan failed: Error: Unknown rule selector",
        "details": "Error: Unknown rule selector",
    }
    assert list(artifact_dir.iterdir()) == []


def test_run_missing_tool_is_500_with_classified_message(make_config) -> None:
    config = make_config(analyzer_command=("definitely-not-a-real-analyzer-binary", "run"))
    with TestClient(create_app(config, fix_advisor=None)) as c:
        r = c.post("/run", json={"filename": "Foo.cls", "source": "x"})

    assert r.status_code == 500
    assert r.json()["error"] == "Static analysis tool not found: definitely-not-a-real-analyzer-binary"


def test_run_unparseable_output_is_empty_list(make_config, make_analyzer) -> None:
    command = make_analyzer('print("{ broken json")')
    with TestClient(create_app(make_config(analyzer_command=command), fix_advisor=None)) as c:
        r = c.post("/run", json={"filename": "Foo.cls", "source": "x"})

    assert r.status_code == 200
    assert r.json() == []


def test_run_unexpected_error_is_500(client: TestClient, monkeypatch: pytest.MonkeyPatch) -> None:
    import pmd_gemini.modules.api as api_module

    async def exploding_scan(*_args, **_kwargs):
        raise KeyError("surprise")

    monkeypatch.setattr(api_module, "run_scan", exploding_scan)
    r = client.post("/run", json={"filename": "Foo.cls", "source": "x"})

    assert r.status_code == 500
    assert r.json()["error"].startswith("PMD scan failed:")


# ---------------------------------------------------------------------------
# /fix
# ---------------------------------------------------------------------------


@pytest.mark.parametrize("body", [{}, {"prompt": "p", "code": "c"}, {"prompt": "p"}])
def test_fix_without_credential_is_503(client: TestClient, body) -> None:
    r = client.post("/fix", json=body)
    assert r.status_code == 503
    assert "GEMINI_API_KEY" in r.json()["error"]


def test_fix_without_credential_ignores_malformed_body(client: TestClient) -> None:
    r = client.post("/fix", content=b"not json at all", headers={"Content-Type": "application/json"})
    assert r.status_code == 503


def test_fix_success(make_config) -> None:
    async def provider_call(messages):
        assert "Missing doc" in messages[1]["content"]
        return _reply("**Fixed Code:** ...")

    with _advisor_client(make_config, provider_call) as c:
        r = c.post("/fix", json={"prompt": "Missing doc", "code": "public class Foo {}"})

    assert r.status_code == 200, r.text
    body = r.json()
    assert body["patch"] == "**Fixed Code:** ..."
    assert body["model"] == "gemini-1.5-flash"
    assert body["timestamp"]


@pytest.mark.parametrize("body", [{}, {"prompt": "p"}, {"code": "c"}, {"prompt": "", "code": "c"}, [1, 2]])
def test_fix_missing_fields_is_400(make_config, body) -> None:
    async def provider_call(_messages):
        raise AssertionError("must not be called")

    with _advisor_client(make_config, provider_call) as c:
        r = c.post("/fix", json=body)

    assert r.status_code == 400
    assert r.json()["error"] == "Both 'prompt' and 'code' fields are required"


def test_fix_upstream_failure_is_500(make_config) -> None:
    async def provider_call(_messages):
        raise RuntimeError("API_KEY_INVALID")

    with _advisor_client(make_config, provider_call) as c:
        r = c.post("/fix", json={"prompt": "p", "code": "c"})

    assert r.status_code == 500
    assert r.json() == {"error": "Invalid Gemini API key", "details": "API_KEY_INVALID"}


# ---------------------------------------------------------------------------
# CORS
# ---------------------------------------------------------------------------


def test_cors_headers_on_responses(client: TestClient) -> None:
    r = client.get("/health", headers={"Origin": "https://example.my.salesforce.com"})
    assert r.headers["access-control-allow-origin"] == "*"


def test_plain_options_short_circuits(client: TestClient) -> None:
    r = client.options("/run")
    assert r.status_code == 200
    assert r.content == b""


def test_preflight_is_answered(client: TestClient) -> None:
    r = client.options(
        "/run",
        headers={
            "Origin": "https://example.my.salesforce.com",
            "Access-Control-Request-Method": "POST",
            "Access-Control-Request-Headers": "Content-Type",
        },
    )
    assert r.status_code == 200
    assert r.headers["access-control-allow-origin"] == "*"
    assert "POST" in r.headers["access-control-allow-methods"]


def test_cors_headers_without_origin(client: TestClient) -> None:
    r = client.get("/health")
    assert r.headers["access-control-allow-origin"] == "*"
    assert "POST" in r.headers["access-control-allow-methods"]


def test_cors_headers_on_error_responses(client: TestClient) -> None:
    r = client.post("/run", json={})
    assert r.status_code == 400
    assert r.headers["access-control-allow-origin"] == "*"


def test_plain_options_carries_cors_headers(client: TestClient) -> None:
    r = client.options("/fix")
    assert r.status_code == 200
    assert r.headers["access-control-allow-origin"] == "*"


def test_preflight_with_custom_request_header(client: TestClient) -> None:
    r = client.options(
        "/run",
        headers={
            "Origin": "https://example.my.salesforce.com",
            "Access-Control-Request-Method": "POST",
            "Access-Control-Request-Headers": "x-sfdc-session",
        },
    )
    assert r.status_code == 200
    assert r.headers["access-control-allow-origin"] == "*"
    assert "x-sfdc-session" in r.headers["access-control-allow-headers"].lower()


def test_timestamps_are_utc(client: TestClient) -> None:
    assert client.get("/health").json()["timestamp"].endswith("+00:00")
