"""
In-process test client.

Drives an Application without sockets: builds an HTTPRequest, runs the
chain against a fresh ServerResponse, and waits for it to be emitted.

    client = TestClient(app)
    result = client.get("/")
    assert result.status_code == 200
    assert result.text == "Hello World!"

A chain that never emits does not raise; the result comes back with
``completed`` set to False once the timeout expires.
"""

from dataclasses import dataclass, field
from typing import Dict, Optional, Union
from urllib.parse import parse_qs, urlparse, unquote
import json

from .app import Application
from .http.request import HTTPRequest
from .http.response import ServerResponse


@dataclass
class TestResponse:
    """What the chain emitted (or had produced so far, if it never did)."""

    __test__ = False

    status_code: int
    headers: Dict[str, str] = field(default_factory=dict)
    body: bytes = b""
    completed: bool = True
    response: Optional[ServerResponse] = field(default=None, repr=False)

    @property
    def text(self) -> str:
        return self.body.decode("utf-8")

    def json(self):
        return json.loads(self.body)

    def get_header(self, name: str, default: Optional[str] = None) -> Optional[str]:
        for key, value in self.headers.items():
            if key.lower() == name.lower():
                return value
        return default


class TestClient:
    """
    Runs requests through an Application in the calling thread.

    Args:
        app: The application under test.
        timeout: Default seconds to wait for the response to be emitted.
    """

    __test__ = False

    def __init__(self, app: Application, timeout: float = 5.0):
        self.app = app
        self.timeout = timeout

    def request(
        self,
        method: str,
        url: str,
        headers: Optional[Dict[str, str]] = None,
        body: Union[str, bytes] = b"",
        timeout: Optional[float] = None,
    ) -> TestResponse:
        parsed = urlparse(url)
        if isinstance(body, str):
            body = body.encode("utf-8")

        request_headers = {name.lower(): value for name, value in (headers or {}).items()}
        if body:
            request_headers.setdefault("content-length", str(len(body)))

        request = HTTPRequest(
            method=method.upper(),
            path=unquote(parsed.path) or "/",
            url=url,
            headers=request_headers,
            query_params=parse_qs(parsed.query, keep_blank_values=True),
            body=body,
            client_address=("127.0.0.1", 0),
        )
        response = ServerResponse(version=request.version)

        self.app.handle(request, response)
        completed = response.wait(self.timeout if timeout is None else timeout)

        return TestResponse(
            status_code=int(response.status_code),
            headers=response.headers,
            body=response.body,
            completed=completed,
            response=response,
        )

    def get(self, url: str, **kwargs) -> TestResponse:
        return self.request("GET", url, **kwargs)

    def post(self, url: str, **kwargs) -> TestResponse:
        return self.request("POST", url, **kwargs)
