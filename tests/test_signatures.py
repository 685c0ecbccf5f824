import hashlib
import hmac

import pytest

from paygate.services.signatures import (
    EnvelopeSigner,
    HmacBodySigner,
    SortedParamsSigner,
    decode_envelope,
    encode_envelope,
    sorted_params_string,
    verify_hmac_sha256,
    verify_x_verify,
    x_verify,
)

HMAC_BODY = b'{"event":"payment.captured","amount":45000}'
CHECKSUM_PARAMS = {"MID": "M1", "ORDERID": "MM_1", "TXNAMOUNT": "450.00"}
ENVELOPE = encode_envelope({"code": "PAYMENT_SUCCESS", "amount": 45000})


def _flip(value: bytes, index: int) -> bytes:
    return value[:index] + bytes([value[index] ^ 0x01]) + value[index + 1 :]


def _swap_char(value: str, index: int) -> str:
    replacement = "B" if value[index] == "A" else "A"
    return value[:index] + replacement + value[index + 1 :]


def test_hmac_body_signature_matches_reference():
    body = b'{"event":"payment.captured"}'
    expected = hmac.new(b"secret", body, hashlib.sha256).hexdigest()
    assert HmacBodySigner().sign(body, "secret") == expected
    assert verify_hmac_sha256("secret", body, expected)
    assert not verify_hmac_sha256("secret", body + b" ", expected)
    assert not verify_hmac_sha256("secret", body, None)


@pytest.mark.parametrize("index", range(len(HMAC_BODY)))
def test_hmac_rejects_any_flipped_body_byte(index):
    signer = HmacBodySigner()
    signature = signer.sign(HMAC_BODY, "secret")

    assert not signer.verify(_flip(HMAC_BODY, index), "secret", signature)


def test_sorted_params_string_orders_keys():
    params = {"TXNID": "T1", "MID": "M1", "BANKNAME": None}
    assert sorted_params_string(params) == "BANKNAME=&MID=M1&TXNID=T1"


def test_sorted_params_checksum():
    params = {"ORDERID": "MM_1", "MID": "M1"}
    expected = hashlib.sha256(b"MID=M1&ORDERID=MM_1key").hexdigest()
    signer = SortedParamsSigner()
    assert signer.sign(params, "key") == expected
    assert signer.verify(params, "key", expected)
    assert not signer.verify({**params, "ORDERID": "MM_2"}, "key", expected)


@pytest.mark.parametrize(
    "key, index",
    [(key, index) for key, value in CHECKSUM_PARAMS.items() for index in range(len(value))],
)
def test_checksum_rejects_any_changed_param_character(key, index):
    signer = SortedParamsSigner()
    checksum = signer.sign(CHECKSUM_PARAMS, "key")
    tampered = {**CHECKSUM_PARAMS, key: _swap_char(CHECKSUM_PARAMS[key], index)}

    assert not signer.verify(tampered, "key", checksum)


def test_x_verify_format_and_salt_index():
    payload = encode_envelope({"code": "PAYMENT_SUCCESS"})
    signature = x_verify(payload + "/pg/v1/pay", "salt", 1)
    digest = hashlib.sha256((payload + "/pg/v1/pay" + "salt").encode()).hexdigest()
    assert signature == f"{digest}###1"

    signer = EnvelopeSigner(path="/pg/v1/pay", salt_index="1")
    assert signer.sign(payload, "salt") == signature
    assert signer.verify(payload, "salt", signature)
    assert not verify_x_verify(payload + "/pg/v1/pay", "salt", "2", signature)
    assert not verify_x_verify(payload + "/pg/v1/pay", "salt", "1", digest)


@pytest.mark.parametrize("index", range(len(ENVELOPE)))
def test_envelope_rejects_any_changed_payload_character(index):
    signer = EnvelopeSigner(path="/pg/v1/status", salt_index="1")
    signature = signer.sign(ENVELOPE, "salt")

    assert not signer.verify(_swap_char(ENVELOPE, index), "salt", signature)


def test_envelope_round_trip_and_malformed_input():
    assert decode_envelope(encode_envelope({"a": 1})) == {"a": 1}
    for bad in ("not base64!", encode_envelope({"a": 1})[:-2]):
        try:
            decode_envelope(bad)
        except ValueError:
            continue
        raise AssertionError(f"{bad!r} should not decode")
