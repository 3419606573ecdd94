# tests/core/broker/test_params.py
import re
import ssl

import pytest

from mqtt_tail.core.broker.params import (
    CONNECT_TIMEOUT,
    RECONNECT_INTERVAL,
    build_broker_url,
    build_connection_parameters,
    build_tls_context,
)
from mqtt_tail.core.config import TailOptions
from mqtt_tail.core.errors import SetupError


@pytest.mark.parametrize(
    "options, url",
    [
        (TailOptions(), "mqtt://localhost:1883"),
        (TailOptions(host="broker", port=1999), "mqtt://broker:1999"),
        (TailOptions(host="broker", tls=True), "mqtts://broker:8883"),
        (TailOptions(host="broker", ca="/tmp/ca.pem", port=443), "mqtts://broker:443"),
    ],
)
def test_broker_url(options, url):
    assert build_broker_url(options) == url


def test_generated_client_id():
    params = build_connection_parameters(TailOptions())

    assert re.fullmatch(r"mqtt-tail-[0-9a-f]{6}", params.client_id)
    assert params.clean_session is True
    assert params.reconnect_interval == RECONNECT_INTERVAL == 2.0
    assert params.connect_timeout == CONNECT_TIMEOUT == 10.0
    assert params.tls_context is None


def test_explicit_client_id_and_credentials():
    params = build_connection_parameters(TailOptions(client_id="me", username="alice", password="pw"))

    assert params.client_id == "me"
    assert params.username == "alice"
    assert params.password == "pw"


def test_tls_flag_builds_verifying_context():
    params = build_connection_parameters(TailOptions(tls=True))

    assert isinstance(params.tls_context, ssl.SSLContext)
    assert params.tls_context.verify_mode == ssl.CERT_REQUIRED
    assert params.uses_tls


def test_missing_ca_file_is_a_setup_error(tmp_path):
    with pytest.raises(SetupError, match="Cannot load TLS material"):
        build_tls_context(ca=str(tmp_path / "nope.pem"))


def test_garbage_certificate_is_a_setup_error(tmp_path):
    cert = tmp_path / "client.pem"
    cert.write_text("not a certificate")

    with pytest.raises(SetupError, match="Cannot load TLS material"):
        build_tls_context(cert=str(cert))


def test_key_without_cert_is_a_setup_error():
    with pytest.raises(SetupError, match="--key requires --cert"):
        build_tls_context(key="/tmp/client.key")
