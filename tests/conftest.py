import pytest

from asserts_core.crypto import ed25519_generate, encode_public_key, key_id
from asserts_core.database import TrustDatabase
from asserts_core.keymgr import sign_assertion
from asserts_core.storage import InMemoryStorage
from asserts_core.trust import TrustedRoots

TS = "2026-01-01T00:00:00Z"


class Authority:
    """An account holding one signing key, able to sign assertions."""

    def __init__(self, account_id):
        self.account_id = account_id
        self.priv, self.pub = ed25519_generate()
        self.key_id = key_id(self.pub)

    def sign(self, assert_type, headers, body=b""):
        headers = dict(headers)
        headers.setdefault("authority-id", self.account_id)
        return sign_assertion(assert_type, headers, body, self.priv)

    def account(self, account_id, **extra):
        headers = {
            "account-id": account_id,
            "display-name": account_id.title(),
            "validation": "verified",
            "timestamp": TS,
        }
        headers.update(extra)
        return self.sign("account", headers)

    def account_key(self, owner, pub, since=TS, **extra):
        headers = {
            "account-id": owner,
            "name": "default",
            "public-key-sha3-384": key_id(pub),
            "since": since,
        }
        headers.update(extra)
        return self.sign("account-key", headers, encode_public_key(pub).encode("ascii"))

    def model(self, model="widget", **extra):
        headers = {
            "brand-id": self.account_id,
            "model": model,
            "architecture": "amd64",
            "timestamp": TS,
        }
        headers.update(extra)
        return self.sign("model", headers)

    def serial(self, device_pub, serial="10001", model="widget", brand_id=None, **extra):
        headers = {
            "brand-id": brand_id or self.account_id,
            "model": model,
            "serial": serial,
            "device-key": encode_public_key(device_pub),
            "device-key-sha3-384": key_id(device_pub),
            "timestamp": TS,
        }
        headers.update(extra)
        return self.sign("serial", headers)

    def validation_set(self, name, sequence, **extra):
        headers = {
            "series": "16",
            "account-id": self.account_id,
            "name": name,
            "sequence": sequence,
            "timestamp": TS,
            "snaps": ["core", "widget-app"],
        }
        headers.update(extra)
        return self.sign("validation-set", headers)


@pytest.fixture
def root():
    return Authority("canonical")


@pytest.fixture
def roots(root):
    return TrustedRoots.from_public_keys([(root.account_id, root.pub)])


@pytest.fixture
def db(roots):
    return TrustDatabase(InMemoryStorage(), roots)


@pytest.fixture
def brand(root, db):
    """acme: account and account-key signed by the root, already stored."""
    acme = Authority("acme")
    db.add(root.account("acme"))
    db.add(root.account_key("acme", acme.pub))
    return acme


@pytest.fixture
def model(brand, db):
    m = brand.model("widget")
    db.add(m)
    return m
