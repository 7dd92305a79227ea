from pathlib import Path

from fastapi.testclient import TestClient

from libs.tools.email_service import ChannelConfig, DeliveryError, MockChannel, resolve_channel
from services.cv.app.main import create_app
from services.cv.cv_core import CVServerSettings, DispatcherHandle, initialize_dispatcher

CV_TEXT = """Ada Lovelace
Analyst
ada@example.com

Experience
Programmer | Analytical Engines Ltd | London
1842 - 1843
- Wrote the first published algorithm
- Designed loops in Rust

Education
Mathematics | University of London
1830 - 1835

Skills
Go, Rust, Trust building
"""


def _client(
    tmp_path: Path,
    transport: str = "mock",
    initialize: bool = True,
    channel_factory=resolve_channel,
    **settings_overrides,
) -> TestClient:
    cv_path = tmp_path / "cv.txt"
    cv_path.write_text(CV_TEXT, encoding="utf-8")
    channel = ChannelConfig(transport=transport)
    settings = CVServerSettings(cv_path=cv_path, channel=channel, **settings_overrides)
    handle = DispatcherHandle(
        lambda: initialize_dispatcher(cv_path, channel, channel_factory=channel_factory)
    )
    return TestClient(
        create_app(handle=handle, settings=settings, initialize_on_startup=initialize)
    )


def test_server_info_and_health(tmp_path):
    with _client(tmp_path) as client:
        info = client.get("/").json()
        assert info["status"] == "running"
        assert info["initialized"] is True
        for path in ("/health", "/api/health"):
            response = client.get(path)
            assert response.status_code == 200
            assert response.json()["state"] == "ready"


def test_status_reports_components(tmp_path):
    with _client(tmp_path) as client:
        data = client.get("/api/status").json()
        assert data["initialized"] is True
        assert data["cv_loaded"] is True
        assert data["email_configured"] is True
        assert data["tool_count"] == 6
        assert data["email"]["transport"] == "mock"


def test_list_tools(tmp_path):
    with _client(tmp_path) as client:
        response = client.get("/api/tools")
        assert response.status_code == 200
        data = response.json()
        assert data["count"] == 6
        assert data["names"][0] == "get_personal_info"
        assert data["tools"][4]["parameters"]["required"] == ["query"]
        assert "send_email" in data["descriptions"]


def test_read_routes(tmp_path):
    with _client(tmp_path) as client:
        personal = client.get("/api/personal").json()
        assert personal["success"] is True
        assert personal["data"]["name"] == "Ada Lovelace"
        assert personal["data"]["email"] == "ada@example.com"

        experience = client.get("/api/experience").json()
        assert experience["data"][0]["company"] == "Analytical Engines Ltd"

        education = client.get("/api/education").json()
        assert education["data"][0]["institution"] == "University of London"

        skills = client.get("/api/skills").json()
        assert skills["data"] == ["Go", "Rust", "Trust building"]
        assert skills["tool"] == "get_skills"
        assert "timestamp" in skills


def test_generic_tool_call(tmp_path):
    with _client(tmp_path) as client:
        response = client.post(
            "/api/tools/call", json={"tool": "search_cv", "arguments": {"query": "rust"}}
        )
        assert response.status_code == 200
        sections = [match["section"] for match in response.json()["data"]]
        assert sections[:3] == ["experience", "skills", "skills"]

        by_path = client.post("/api/tools/get_skills")
        assert by_path.status_code == 200
        assert by_path.json()["data"] == ["Go", "Rust", "Trust building"]


def test_tool_call_errors(tmp_path):
    with _client(tmp_path) as client:
        missing = client.post("/api/tools/call", json={"arguments": {}})
        assert missing.status_code == 400
        assert missing.json()["error"] == "Tool name is required"

        unknown = client.post("/api/tools/call", json={"tool": "get_hobbies"})
        assert unknown.status_code == 500
        assert unknown.json()["error_kind"] == "UnknownTool"

        malformed = client.post(
            "/api/tools/call",
            content="not json",
            headers={"content-type": "application/json"},
        )
        assert malformed.status_code == 400
        assert malformed.json()["error"] == "Invalid request body"


def test_search_route_validation(tmp_path):
    with _client(tmp_path) as client:
        blank = client.post("/api/search", json={"query": "   "})
        assert blank.status_code == 400
        assert blank.json()["error_kind"] == "InvalidArguments"

        missing = client.post("/api/search", json={})
        assert missing.status_code == 400

        empty = client.post("/api/search", json={"query": "cobol"})
        assert empty.status_code == 200
        assert empty.json()["data"] == []


def test_email_route(tmp_path):
    with _client(tmp_path) as client:
        sent = client.post(
            "/api/email",
            json={"recipient": " hr@example.com ", "subject": "Hello", "body": "Hi Ada"},
        )
        assert sent.status_code == 200
        receipt = sent.json()["data"]
        assert receipt["recipient"] == "hr@example.com"
        assert receipt["transport"] == "mock"

        incomplete = client.post("/api/email", json={"recipient": "hr@example.com"})
        assert incomplete.status_code == 400
        assert incomplete.json()["error_kind"] == "InvalidArguments"

        injected = client.post(
            "/api/email",
            json={"recipient": "hr@example.com", "subject": "Hi\nBcc: x@y.com", "body": "Hi"},
        )
        assert injected.status_code == 400
        assert injected.json()["error_kind"] == "InvalidArguments"


def test_email_route_without_channel(tmp_path):
    with _client(tmp_path, transport="disabled") as client:
        response = client.post(
            "/api/email",
            json={"recipient": "hr@example.com", "subject": "Hello", "body": "Hi"},
        )
        assert response.status_code == 500
        assert response.json()["error_kind"] == "ChannelUnavailable"


class _RejectingChannel(MockChannel):
    async def send_email(self, recipient, subject, body):
        raise DeliveryError("550 mailbox unavailable")


def test_email_route_delivery_failure(tmp_path):
    with _client(tmp_path, channel_factory=lambda _config: _RejectingChannel()) as client:
        response = client.post(
            "/api/email",
            json={"recipient": "hr@example.com", "subject": "Hello", "body": "Hi"},
        )
        assert response.status_code == 500
        data = response.json()
        assert data["success"] is False
        assert data["error_kind"] == "DeliveryFailed"
        assert "550 mailbox unavailable" in data["error"]
        assert data["tool"] == "send_email"


def test_routes_before_initialization(tmp_path):
    with _client(tmp_path, initialize=False) as client:
        assert client.get("/health").json()["initialized"] is False
        response = client.get("/api/skills")
        assert response.status_code == 503
        assert response.json()["error"] == "Server not properly initialized"
        assert client.get("/api/tools").status_code == 503


def test_reinitialize_per_request_rereads_document(tmp_path):
    with _client(tmp_path, reinitialize_per_request=True) as client:
        assert client.get("/api/skills").json()["data"][0] == "Go"
        (tmp_path / "cv.txt").write_text("Ada\n\nSkills\nCOBOL\n", encoding="utf-8")
        assert client.get("/api/skills").json()["data"] == ["COBOL"]


def test_unknown_route(tmp_path):
    with _client(tmp_path) as client:
        response = client.get("/api/hobbies")
        assert response.status_code == 404
        data = response.json()
        assert data["error"] == "Route not found"
        assert data["path"] == "/api/hobbies"


def test_metrics_exposed(tmp_path):
    with _client(tmp_path) as client:
        client.get("/api/skills")
        response = client.get("/metrics/")
        assert response.status_code == 200
        assert "cv_tool_calls_total" in response.text


def test_console_entry_point_is_importable():
    from services.cv.app import main as web_main

    assert callable(web_main.run)
    assert web_main.app.state.settings.port > 0
