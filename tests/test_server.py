import requests


def _get(server, headers=None, path=None):
    url = server.url if path is None else server.url.rsplit("/", 1)[0] + path
    return requests.get(url, headers=headers or {}, timeout=10)


def test_returns_requested_length(fct_server, fct_config):
    resp = _get(fct_server, {fct_config.flow_length_header: "100000"})
    assert resp.status_code == 200
    assert len(resp.content) == 100000
    assert resp.headers["Content-Length"] == "100000"


def test_zero_length(fct_server, fct_config):
    resp = _get(fct_server, {fct_config.flow_length_header: "0"})
    assert resp.status_code == 200
    assert resp.content == b""


def test_missing_length_header(fct_server):
    resp = _get(fct_server)
    assert resp.status_code == 400
    assert "missing 'FCT-Flow-Length' header" in resp.text


def test_invalid_length_header(fct_server, fct_config):
    for value in ("abc", "-5", "1.5"):
        resp = _get(fct_server, {fct_config.flow_length_header: value})
        assert resp.status_code == 400
        assert f"invalid FCT-Flow-Length: '{value}'" in resp.text


def test_unknown_cca(fct_server, fct_config):
    resp = _get(
        fct_server,
        {fct_config.flow_length_header: "10", fct_config.cca_header: "no-such-cca"},
    )
    assert resp.status_code == 400
    assert "unable to use selected CCA: 'no-such-cca'" in resp.text


def test_unknown_path(fct_server, fct_config):
    resp = _get(fct_server, {fct_config.flow_length_header: "10"}, path="/other")
    assert resp.status_code == 404


def test_keep_alive_session_serves_several_flows(fct_server, fct_config):
    with requests.Session() as session:
        for length in (1, 5000, 70000):
            resp = session.get(
                fct_server.url, headers={fct_config.flow_length_header: str(length)}, timeout=10
            )
            assert len(resp.content) == length
