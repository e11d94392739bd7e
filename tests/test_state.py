"""
Tests for the signed, time-bounded OAuth state parameter.
"""

import time

import pytest

from integrations.errors import AuthStateError
from integrations.state import AuthorizationState, decode_state, encode_state
from utils.signing import sign_payload

SECRET = "state-secret"


class TestStateRoundTrip:
    def test_tool_state(self):
        state = AuthorizationState.new("user-1", tool_type="github")
        decoded = decode_state(encode_state(state, SECRET), SECRET)
        assert decoded == state
        assert decoded.target == "github"

    def test_group_state(self):
        state = AuthorizationState.new("user-1", group_id="microsoft")
        decoded = decode_state(encode_state(state, SECRET), SECRET)
        assert decoded.group_id == "microsoft"
        assert decoded.tool_type is None
        assert decoded.target == "microsoft"

    def test_nonces_are_unique(self):
        a = AuthorizationState.new("user-1", tool_type="github")
        b = AuthorizationState.new("user-1", tool_type="github")
        assert a.nonce != b.nonce

    def test_encoded_state_is_url_safe(self):
        encoded = encode_state(AuthorizationState.new("user-1", tool_type="github"), SECRET)
        assert "+" not in encoded and "/" not in encoded


class TestStateAge:
    def test_one_minute_old_is_accepted(self):
        state = AuthorizationState.new("u", tool_type="github", issued_at=time.time() - 60)
        assert decode_state(encode_state(state, SECRET), SECRET).user_id == "u"

    def test_eleven_minutes_old_is_rejected(self):
        state = AuthorizationState.new("u", tool_type="github", issued_at=time.time() - 11 * 60)
        with pytest.raises(AuthStateError) as exc_info:
            decode_state(encode_state(state, SECRET), SECRET)
        assert exc_info.value.code == "state_expired"

    def test_far_future_is_rejected(self):
        state = AuthorizationState.new("u", tool_type="github", issued_at=time.time() + 3600)
        with pytest.raises(AuthStateError):
            decode_state(encode_state(state, SECRET), SECRET)


class TestStateRejection:
    def test_missing_timestamp_is_rejected(self):
        legacy = sign_payload({"user_id": "u", "tool_type": "github", "nonce": "n"}, SECRET)
        with pytest.raises(AuthStateError) as exc_info:
            decode_state(legacy, SECRET)
        assert exc_info.value.code == "state_missing_timestamp"

    def test_wrong_secret_is_rejected(self):
        encoded = encode_state(AuthorizationState.new("u", tool_type="github"), SECRET)
        with pytest.raises(AuthStateError) as exc_info:
            decode_state(encoded, "other-secret")
        assert exc_info.value.code == "state_invalid"

    def test_tampered_payload_is_rejected(self):
        encoded = encode_state(AuthorizationState.new("u", tool_type="github"), SECRET)
        forged = sign_payload(
            {"user_id": "attacker", "tool_type": "github", "nonce": "n", "issued_at": time.time()},
            "guessed-secret",
        )
        tampered = forged.split(".")[0] + "." + encoded.split(".")[1]
        with pytest.raises(AuthStateError):
            decode_state(tampered, SECRET)

    @pytest.mark.parametrize("value", ["", "garbage", "a.b", "!!!.deadbeef"])
    def test_malformed_is_rejected(self, value):
        with pytest.raises(AuthStateError):
            decode_state(value, SECRET)

    def test_missing_target_is_rejected(self):
        value = sign_payload({"user_id": "u", "nonce": "n", "issued_at": time.time()}, SECRET)
        with pytest.raises(AuthStateError):
            decode_state(value, SECRET)

    def test_non_numeric_timestamp_is_rejected(self):
        value = sign_payload(
            {"user_id": "u", "tool_type": "github", "nonce": "n", "issued_at": "yesterday"},
            SECRET,
        )
        with pytest.raises(AuthStateError):
            decode_state(value, SECRET)

    def test_non_ascii_signature_is_rejected(self):
        encoded = encode_state(AuthorizationState.new("u", tool_type="github"), SECRET)
        forged = encoded.split(".")[0] + ".é"
        with pytest.raises(AuthStateError) as exc_info:
            decode_state(forged, SECRET)
        assert exc_info.value.code == "state_invalid"
