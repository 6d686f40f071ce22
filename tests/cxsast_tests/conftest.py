# Shared fixtures: a CxConfig pointed at a fake server, a logged-in REST client
# and a `responses`-backed SOAP server that answers by SOAPAction.
# The repository root goes on sys.path so tests run without installing the package.

import os
import sys
import pytest

PROJECT_ROOT = os.getenv("PROJECT_ROOT") or os.path.abspath(os.path.join(os.path.dirname(__file__), "..", ".."))
if PROJECT_ROOT not in sys.path:
    sys.path.insert(0, PROJECT_ROOT)

from cxsast.config import CxConfig  # noqa: E402

SDK_URL = "https://cx.test/CxWebInterface/SDK/CxSDKWebService.asmx"


@pytest.fixture(autouse=True)
def _clean_env(monkeypatch):
    for name in ("CX_URL", "CX_USERNAME", "CX_PASSWORD", "CX_VERIFY_SSL", "CX_POLL_INTERVAL"):
        monkeypatch.delenv(name, raising=False)


@pytest.fixture()
def cx_base_url():
    return "https://cx.test"


@pytest.fixture()
def cx_config(cx_base_url):
    return CxConfig(url=cx_base_url, username="admin", password="secret", verify_ssl=False,
                    poll_interval=0, timeout=5)


@pytest.fixture()
def rest_base(cx_base_url):
    return f"{cx_base_url}/cxrestapi"


@pytest.fixture()
def logged_in_rest(cx_config):
    from cxsast.rest_client import CxRestClient

    client = CxRestClient(cx_config)
    client.session.cookies.set("CxCookie", "cookie-value", domain="cx.test", path="/")
    client.session.cookies.set("CXCSRFToken", "csrf-value", domain="cx.test", path="/")
    return client


def soap_envelope(operation, result_xml, ns="http://Checkmarx.com/v7"):
    """Build a response envelope the way the SDK service returns it."""
    return (
        '<?xml version="1.0" encoding="utf-8"?>'
        '<soap:Envelope xmlns:soap="http://schemas.xmlsoap.org/soap/envelope/">'
        "<soap:Body>"
        f'<{operation}Response xmlns="{ns}"><{operation}Result>{result_xml}</{operation}Result></{operation}Response>'
        "</soap:Body></soap:Envelope>"
    )


def resolver_envelope(service_url=SDK_URL):
    return soap_envelope(
        "GetWebServiceUrl",
        f"<IsSuccesfull>true</IsSuccesfull><ServiceURL>{service_url}</ServiceURL>",
        ns="http://Checkmarx.com",
    )


class SoapServer:
    """Dispatch SDK calls registered with ``responses`` by their SOAPAction header."""

    def __init__(self):
        self.handlers = {}
        self.calls = []

    def on(self, operation, result_xml, status=200):
        self.handlers[operation] = (status, soap_envelope(operation, result_xml))

    def fault(self, operation, message):
        body = (
            '<soap:Envelope xmlns:soap="http://schemas.xmlsoap.org/soap/envelope/"><soap:Body>'
            f"<soap:Fault><faultcode>soap:Server</faultcode><faultstring>{message}</faultstring></soap:Fault>"
            "</soap:Body></soap:Envelope>"
        )
        self.handlers[operation] = (500, body)

    def __call__(self, request):
        operation = request.headers["SOAPAction"].strip('"').rsplit("/", 1)[-1]
        body = request.body.decode("utf-8") if isinstance(request.body, bytes) else request.body
        self.calls.append((operation, body))
        status, payload = self.handlers[operation]
        return status, {"Content-Type": "text/xml; charset=utf-8"}, payload


@pytest.fixture()
def mocked_http():
    import responses

    responses.start()
    yield responses
    responses.stop()
    responses.reset()


@pytest.fixture()
def soap_server(cx_base_url, mocked_http):
    responses = mocked_http
    server = SoapServer()
    responses.add(responses.POST, f"{cx_base_url}/CxWebInterface/CxWsResolver.asmx",
                  body=resolver_envelope(), status=200, content_type="text/xml")
    responses.add_callback(responses.POST, SDK_URL, callback=server)
    server.on("Login", "<IsSuccesfull>true</IsSuccesfull><SessionId>sess-1</SessionId>")
    server.on("Logout", "<IsSuccesfull>true</IsSuccesfull>")
    return server
