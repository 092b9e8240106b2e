import hmac, hashlib

from verify import sign, verify_signature

BODY = b'{"run_id":"run-abc","stage":"pre_plan"}'


def test_sign_is_lowercase_hex_sha512():
    expected = hmac.new(b"k3y", BODY, hashlib.sha512).hexdigest()
    assert sign("k3y", BODY) == expected
    assert expected == expected.lower()
    assert len(expected) == 128


def test_matching_signature_passes():
    assert verify_signature(BODY, sign("k3y", BODY), "k3y") is True


def test_wrong_or_missing_signature_fails_when_key_set():
    assert verify_signature(BODY, sign("other", BODY), "k3y") is False
    assert verify_signature(BODY + b" ", sign("k3y", BODY), "k3y") is False
    assert verify_signature(BODY, "", "k3y") is False
    assert verify_signature(BODY, None, "k3y") is False
    assert verify_signature(BODY, "zzzé", "k3y") is False


def test_empty_key_disables_verification():
    assert verify_signature(BODY, "", "") is True
    assert verify_signature(BODY, "anything", "") is True
