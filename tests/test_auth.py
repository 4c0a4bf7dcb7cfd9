import hashlib
import json

import pytest

from shelly_exporter.auth import HA2, AuthChallenge, DigestAuthenticator, sha256_hex


def _sha(text):
    return hashlib.sha256(text.encode()).hexdigest()


def test_ha2_is_the_fixed_dummy_digest():
    assert HA2 == "6370ec69915103833b5222b368555393393f098bfbfbb59f47e0590af135f062"
    assert sha256_hex("dummy_method:dummy_uri") == HA2


def test_cnonce_increments_and_responses_differ():
    auth = DigestAuthenticator("secret", AuthChallenge(realm="shelly", nonce=12345, nc=1))
    first = auth.next_credential()
    second = auth.next_credential()

    assert first.cnonce == 1
    assert second.cnonce == first.cnonce + 1
    assert first.response != second.response
    assert len(first.response) == 64


def test_response_matches_digest_formula():
    auth = DigestAuthenticator("secret", AuthChallenge(realm="shellypro3em-a1", nonce=1700000000, nc=1))
    cred = auth.next_credential()

    ha1 = _sha("admin:shellypro3em-a1:secret")
    expected = _sha(f"{ha1}:1700000000:1:1:auth:{HA2}")
    assert cred.response == expected
    assert cred.username == "admin"
    assert cred.algorithm == "SHA-256"


def test_wire_form_leaves_out_nc():
    cred = DigestAuthenticator("pw", AuthChallenge("shelly", 5, 3)).next_credential()
    wire = cred.to_wire()
    assert set(wire) == {"realm", "username", "nonce", "cnonce", "response", "algorithm"}
    assert cred.nc == 3


def test_credentials_are_immutable():
    cred = DigestAuthenticator("pw", AuthChallenge("shelly", 5)).next_credential()
    with pytest.raises(AttributeError):
        cred.cnonce = 10


def test_challenge_from_error_message():
    error = {"code": 401, "message": json.dumps({"realm": "shelly", "nonce": 42, "nc": 2})}
    assert AuthChallenge.from_error(error) == AuthChallenge("shelly", 42, 2)


def test_challenge_nc_defaults_to_one():
    error = {"code": 401, "message": json.dumps({"realm": "shelly", "nonce": 42})}
    assert AuthChallenge.from_error(error).nc == 1


@pytest.mark.parametrize("message", [
    "not json",
    json.dumps(["realm", "nonce"]),
    json.dumps({"realm": "shelly"}),
    json.dumps({"nonce": 1}),
    json.dumps({"realm": "shelly", "nonce": "abc"}),
])
def test_malformed_challenges_raise(message):
    with pytest.raises(ValueError):
        AuthChallenge.from_error({"code": 401, "message": message})


def test_missing_message_raises():
    with pytest.raises(ValueError):
        AuthChallenge.from_error({"code": 401})


def test_password_required():
    with pytest.raises(ValueError):
        DigestAuthenticator("", AuthChallenge("shelly", 1))
