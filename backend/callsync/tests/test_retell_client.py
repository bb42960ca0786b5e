import json

import httpx
import pytest

from callsync.services.retell_client import (
    RetellAuthError,
    RetellClient,
    RetellConfigurationError,
    RetellRejectedError,
    RetellTransientError,
    parse_call_page,
)

BASE_URL = "https://retell.test/v2"


def _client(handler, **kwargs):
    http_client = httpx.Client(transport=httpx.MockTransport(handler))
    return RetellClient("secret", base_url=BASE_URL, http_client=http_client, **kwargs)


def test_fetch_page_sends_filter_token_and_limit():
    requests = []

    def handler(request):
        requests.append(request)
        return httpx.Response(
            200,
            json={
                "calls": [{"call_id": "c1"}, {"call_id": "c2"}],
                "has_more": True,
                "next_page_token": "tok-2",
            },
        )

    page = _client(handler).fetch_page("ag_1", "tok-1", 50)

    assert [call["call_id"] for call in page.records] == ["c1", "c2"]
    assert page.has_more is True
    assert page.next_token == "tok-2"
    request = requests[0]
    assert request.method == "POST"
    assert str(request.url) == f"{BASE_URL}/list-calls"
    assert request.headers["Authorization"] == "Bearer secret"
    assert json.loads(request.content) == {"limit": 50, "agent_id": "ag_1", "page_token": "tok-1"}


def test_first_page_omits_token_and_filter():
    bodies = []

    def handler(request):
        bodies.append(json.loads(request.content))
        return httpx.Response(200, json={"calls": []})

    _client(handler).fetch_page(page_size=100)

    assert bodies == [{"limit": 100}]


def test_page_size_clamped_to_upstream_maximum():
    bodies = []

    def handler(request):
        bodies.append(json.loads(request.content))
        return httpx.Response(200, json={"calls": []})

    _client(handler, max_page_size=200).fetch_page(page_size=5000)

    assert bodies[0]["limit"] == 200


def test_missing_has_more_means_last_page():
    page = parse_call_page({"calls": [{"call_id": "c1"}], "next_page_token": "tok-2"})

    assert page.has_more is False


def test_bare_list_payload_is_one_final_page():
    page = parse_call_page([{"call_id": "c1"}, "garbage"])

    assert len(page.records) == 2
    assert page.has_more is False
    assert page.next_token is None


@pytest.mark.parametrize("status_code", [401, 403])
def test_credential_errors_are_fatal(status_code):
    def handler(request):
        return httpx.Response(status_code, json={"error_message": "Invalid API key"})

    with pytest.raises(RetellAuthError) as excinfo:
        _client(handler).fetch_page()

    assert excinfo.value.status_code == status_code
    assert "Invalid API key" in str(excinfo.value)


@pytest.mark.parametrize("status_code", [400, 404, 422])
def test_other_client_errors_are_rejections(status_code):
    def handler(request):
        return httpx.Response(status_code, json={"error_message": "agent not found"})

    with pytest.raises(RetellRejectedError) as excinfo:
        _client(handler).fetch_page("ag_stale")

    assert not isinstance(excinfo.value, RetellAuthError)
    assert excinfo.value.status_code == status_code


@pytest.mark.parametrize("status_code", [408, 429, 500, 503])
def test_server_errors_and_throttling_are_transient(status_code):
    def handler(request):
        return httpx.Response(status_code, text="upstream unavailable")

    with pytest.raises(RetellTransientError) as excinfo:
        _client(handler).fetch_page()

    assert excinfo.value.status_code == status_code


def test_timeouts_are_transient():
    def handler(request):
        raise httpx.ReadTimeout("timed out", request=request)

    with pytest.raises(RetellTransientError):
        _client(handler).fetch_page()


def test_network_errors_are_transient():
    def handler(request):
        raise httpx.ConnectError("connection refused", request=request)

    with pytest.raises(RetellTransientError):
        _client(handler).fetch_page()


def test_invalid_json_is_transient():
    def handler(request):
        return httpx.Response(200, text="<html>oops</html>")

    with pytest.raises(RetellTransientError):
        _client(handler).fetch_page()


def test_fetch_details_unwraps_call_object():
    def handler(request):
        assert str(request.url) == f"{BASE_URL}/get-call"
        assert json.loads(request.content) == {"call_id": "c1"}
        return httpx.Response(200, json={"call": {"call_id": "c1", "transcript": "hi"}})

    assert _client(handler).fetch_details("c1") == {"call_id": "c1", "transcript": "hi"}


def test_connectivity_test_reports_sample():
    def handler(request):
        assert json.loads(request.content) == {"limit": 1}
        return httpx.Response(200, json={"calls": [{"call_id": "c1"}], "has_more": True})

    result = _client(handler).test_connectivity()

    assert result.reachable is True
    assert result.sample_count == 1
    assert result.has_more is True


def test_connectivity_test_does_not_raise_on_failure():
    def handler(request):
        return httpx.Response(401, json={"message": "bad key"})

    result = _client(handler).test_connectivity()

    assert result.reachable is False
    assert result.sample_count == 0
    assert "bad key" in result.error


def test_missing_api_key_is_a_configuration_error():
    with pytest.raises(RetellConfigurationError):
        RetellClient("")


def test_injected_http_client_is_not_closed():
    http_client = httpx.Client(transport=httpx.MockTransport(lambda request: httpx.Response(200, json={})))
    with RetellClient("secret", base_url=BASE_URL, http_client=http_client):
        pass

    assert http_client.is_closed is False
