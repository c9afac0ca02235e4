import hashlib
import hmac

from storefront.services.webhook_service import sign_payload, verify_signature


SECRET = "whsk_unit"
BODY = b'{"data":{"id":"evt_1"}}'


def test_signed_test_mode_header_verifies():
    header = sign_payload(BODY, SECRET, timestamp=1700000000)
    assert header.startswith("t=1700000000,te=")
    assert verify_signature(BODY, header, SECRET) is True


def test_signed_live_mode_header_verifies():
    header = sign_payload(BODY, SECRET, timestamp=1700000000, live=True)
    assert ",li=" in header and ",te=," in header
    assert verify_signature(BODY, header, SECRET) is True


def test_bare_hex_signature_over_body():
    digest = hmac.new(SECRET.encode(), BODY, hashlib.sha256).hexdigest()
    assert verify_signature(BODY, digest, SECRET) is True
    assert verify_signature(BODY, digest.upper(), SECRET) is True


def test_tampered_body_rejected():
    header = sign_payload(BODY, SECRET)
    assert verify_signature(BODY + b" ", header, SECRET) is False


def test_wrong_secret_rejected():
    header = sign_payload(BODY, "other-secret")
    assert verify_signature(BODY, header, SECRET) is False


def test_missing_header_or_secret_rejected():
    header = sign_payload(BODY, SECRET)
    assert verify_signature(BODY, None, SECRET) is False
    assert verify_signature(BODY, "", SECRET) is False
    assert verify_signature(BODY, header, "") is False


def test_timestamp_tolerance():
    header = sign_payload(BODY, SECRET, timestamp=1700000000)
    assert verify_signature(BODY, header, SECRET, tolerance_seconds=300, now=1700000100) is True
    assert verify_signature(BODY, header, SECRET, tolerance_seconds=300, now=1700000301) is False
    # tolerance 0 disables the freshness check
    assert verify_signature(BODY, header, SECRET, tolerance_seconds=0, now=1800000000) is True


def test_changing_timestamp_invalidates_signature():
    header = sign_payload(BODY, SECRET, timestamp=1700000000)
    forged = header.replace("t=1700000000", "t=1700000999")
    assert verify_signature(BODY, forged, SECRET) is False
