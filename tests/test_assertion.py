import pytest

from asserts_core.assertion import (
    Assertion, assemble, assemble_content, decode, decode_stream, encode, encode_stream,
)
from asserts_core.crypto import ed25519_generate, ed25519_sign, encode_public_key, key_id
from asserts_core.errors import ParseError, UnknownType
from asserts_core.keymgr import sign_assertion

from conftest import Authority, TS


def _resign(content, priv):
    return assemble(content, ed25519_sign(priv, content))


@pytest.fixture
def acme():
    return Authority("acme")


def test_encode_decode_roundtrip(acme):
    a = acme.model("widget", **{"required-snaps": ["core", "widget-app"], "revision": 3})
    data = encode(a)
    b = decode(data)
    assert b == a
    assert b.type == "model"
    assert b.revision == 3
    assert b.header("required-snaps") == ("core", "widget-app")
    assert b.signature == a.signature
    assert encode(b) == data


def test_roundtrip_with_body():
    device = Authority("device")
    body = b"serial: details\n\nwith a blank line inside"
    a = device.sign("serial-request", {
        "authority-id": "acme",
        "brand-id": "acme",
        "model": "widget",
        "request-id": "REQ-1",
        "device-key": encode_public_key(device.pub),
    }, body)
    data = encode(a)
    assert a.header("body-length") == len(body)
    b = decode(data)
    assert b.body == body
    assert encode(b) == data


def test_canonical_header_order(acme):
    text = encode(acme.model("widget")).decode("utf-8")
    names = [line.split(":")[0] for line in text.split("\n\n")[0].split("\n")]
    assert names[0] == "type"
    assert names[1:] == sorted(names[1:])


def test_primary_key_and_ref(acme):
    a = acme.model("widget")
    assert a.primary_key == ("acme", "widget")
    assert a.ref == ("model", "acme", "widget")
    assert a.authority_id == "acme"
    assert a.sign_key_id == acme.key_id
    assert a.revision == 0


def test_decode_rejects_missing_mandatory_header(acme):
    content = assemble_content({
        "type": "model",
        "authority-id": "acme",
        "brand-id": "acme",
        "model": "widget",
        "timestamp": TS,
        "sign-key-sha3-384": acme.key_id,
    })
    with pytest.raises(ParseError) as exc:
        decode(_resign(content, acme.priv))
    assert exc.value.field == "architecture"


def test_decode_rejects_non_integer_revision(acme):
    data = encode(acme.model("widget", revision=2)).replace(b"revision: 2", b"revision: two")
    with pytest.raises(ParseError) as exc:
        decode(data)
    assert exc.value.field == "revision"


def test_decode_rejects_leading_zero_integer(acme):
    data = encode(acme.model("widget", revision=2)).replace(b"revision: 2", b"revision: 02")
    with pytest.raises(ParseError):
        decode(data)


def test_decode_rejects_list_where_string_expected(acme):
    data = encode(acme.model("widget")).replace(b"architecture: amd64", b"architecture:\n  - amd64")
    with pytest.raises(ParseError) as exc:
        decode(data)
    assert exc.value.field == "architecture"


def test_decode_rejects_body_length_mismatch():
    device = Authority("device")
    a = device.sign("serial-request", {
        "authority-id": "acme",
        "brand-id": "acme",
        "model": "widget",
        "request-id": "REQ-1",
        "device-key": encode_public_key(device.pub),
    }, b"0123456789")
    data = encode(a).replace(b"body-length: 10", b"body-length: 99")
    with pytest.raises(ParseError) as exc:
        decode(data)
    assert exc.value.field == "body-length"


def test_decode_rejects_missing_signature(acme):
    data = encode(acme.model("widget"))
    truncated = data[:data.rindex(b"\n\n")]
    with pytest.raises(ParseError):
        decode(truncated)
    with pytest.raises(ParseError) as exc:
        decode(truncated + b"\n\n")
    assert exc.value.field == "signature"


def test_decode_rejects_unterminated_signature(acme):
    data = encode(acme.model("widget"))
    with pytest.raises(ParseError) as exc:
        decode(data[:-1])
    assert exc.value.field == "signature"


def test_constructed_assertion_encodes_like_decoded():
    device = Authority("device")
    a = device.sign("serial-request", {
        "authority-id": "acme",
        "brand-id": "acme",
        "model": "widget",
        "request-id": "REQ-1",
        "device-key": encode_public_key(device.pub),
    }, b"hw: rev-b\n")
    b = Assertion(headers=a.headers, body=a.body, signature=a.signature)
    assert b == a
    assert encode(b) == encode(a)
    assert decode(encode(b)) == a


def test_decode_rejects_trailing_garbage(acme):
    with pytest.raises(ParseError):
        decode(encode(acme.model("widget")) + b"junk")


def test_decode_rejects_out_of_order_headers(acme):
    content = (
        "type: model\n"
        "model: widget\n"
        "authority-id: acme\n"
        "architecture: amd64\n"
        "brand-id: acme\n"
        f"sign-key-sha3-384: {acme.key_id}\n"
        f"timestamp: {TS}"
    ).encode()
    with pytest.raises(ParseError):
        decode(_resign(content, acme.priv))


def test_decode_rejects_unknown_type(acme):
    content = f"type: bogus\nauthority-id: acme\nsign-key-sha3-384: {acme.key_id}".encode()
    with pytest.raises(UnknownType):
        decode(_resign(content, acme.priv))


def test_decode_rejects_body_on_bodiless_type(acme):
    content = assemble_content({
        "type": "account",
        "authority-id": "canonical",
        "account-id": "acme",
        "display-name": "Acme",
        "validation": "verified",
        "timestamp": TS,
        "sign-key-sha3-384": acme.key_id,
    }, b"unexpected")
    with pytest.raises(ParseError) as exc:
        decode(_resign(content, acme.priv))
    assert exc.value.field == "body"


def test_decode_rejects_bad_timestamp(acme):
    data = encode(acme.model("widget")).replace(TS.encode(), b"yesterday")
    with pytest.raises(ParseError) as exc:
        decode(data)
    assert exc.value.field == "timestamp"


def test_account_key_body_must_match_key_id(acme):
    _, other_pub = ed25519_generate()
    with pytest.raises(ParseError) as exc:
        acme.sign("account-key", {
            "account-id": "acme",
            "name": "default",
            "public-key-sha3-384": key_id(acme.pub),
            "since": TS,
        }, encode_public_key(other_pub).encode())
    assert exc.value.field == "public-key-sha3-384"


def test_serial_request_must_be_signed_by_device_key(acme):
    _, device_pub = ed25519_generate()
    with pytest.raises(ParseError) as exc:
        acme.sign("serial-request", {
            "brand-id": "acme",
            "model": "widget",
            "request-id": "REQ-1",
            "device-key": encode_public_key(device_pub),
        })
    assert exc.value.field == "sign-key-sha3-384"


def test_sign_assertion_rejects_bad_values(acme):
    with pytest.raises(ParseError) as exc:
        sign_assertion("model", {
            "authority-id": "acme",
            "brand-id": "acme",
            "model": "two\nlines",
            "architecture": "amd64",
            "timestamp": TS,
        }, b"", acme.priv)
    assert exc.value.field == "model"


def test_stream_roundtrip(acme):
    items = [acme.model("widget"), acme.model("gadget"), acme.validation_set("base", 1)]
    data = encode_stream(items)
    assert decode_stream(data) == items


def test_validation_set_typed_headers(acme):
    vs = decode(encode(acme.validation_set("base", 7)))
    assert vs.header("sequence") == 7
    assert vs.header("snaps") == ("core", "widget-app")
    assert vs.primary_key == ("16", "acme", "base", 7)


def test_empty_list_header(acme):
    a = acme.model("widget", **{"required-snaps": []})
    assert decode(encode(a)).header("required-snaps") == ()
