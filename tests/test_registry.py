import pytest

from asserts_core.errors import ParseError, UnknownType
from asserts_core.registry import BODY_REQUIRED, TYPES, describe


def test_describe_known_types():
    for name in ("account", "account-key", "model", "serial", "serial-request", "validation-set"):
        assert describe(name).name == name


def test_describe_unknown_type():
    with pytest.raises(UnknownType) as exc:
        describe("snap-declaration-ish")
    assert isinstance(exc.value, ParseError)
    assert exc.value.field == "type"


def test_table_is_read_only():
    with pytest.raises(TypeError):
        TYPES["bogus"] = describe("model")
    with pytest.raises(AttributeError):
        describe("model").primary_key = ("model",)


def test_primary_keys():
    assert describe("model").primary_key == ("brand-id", "model")
    assert describe("serial").primary_key == ("brand-id", "model", "serial")
    assert describe("account-key").primary_key == ("public-key-sha3-384",)


def test_sequence_forming():
    vs = describe("validation-set")
    assert vs.sequence_forming
    assert vs.subject_key == ("series", "account-id", "name")
    assert vs.header_kind("sequence") == "int"
    assert not describe("model").sequence_forming
    assert describe("model").subject_key == describe("model").primary_key


def test_mandatory_headers_include_common_ones():
    mandatory = describe("serial").all_mandatory()
    for name in ("type", "authority-id", "sign-key-sha3-384", "brand-id", "device-key"):
        assert name in mandatory


def test_flags():
    assert describe("account-key").body == BODY_REQUIRED
    assert describe("serial-request").self_signed_key == "device-key"
    assert not describe("serial-request").storable
