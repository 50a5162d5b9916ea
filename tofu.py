#!/usr/bin/env python3
# Trust On First Use certificate store.
#
# The first certificate seen for a Common Name is remembered. Later
# certificates for the same name are only accepted if they carry the same
# public key. An expired record is replaced by a new certificate with the
# same key, never by a different key.

import collections
import datetime
import enum
import hashlib
import os
import os.path
import tempfile
import threading
import urllib.parse
import weakref

from cryptography import x509
from cryptography.exceptions import UnsupportedAlgorithm
from cryptography.hazmat.primitives import serialization
from cryptography.x509.oid import NameOID

from dioutils import debug


class AcceptKind(enum.Enum):
    NEW_TRUST = "new trust"
    CONFIRMED = "confirmed"
    RENEWED = "renewed"


class RejectReason(enum.Enum):
    INVALID_CERTIFICATE = "invalid certificate"
    EXPIRED_AT_PRESENTATION = "expired at presentation"
    NO_COMMON_NAME = "no common name"
    KEY_MISMATCH = "key mismatch"
    KEY_MISMATCH_ON_RENEWAL = "key mismatch on renewal"
    CORRUPT_RECORD = "corrupt record"


_DESCRIPTIONS = {
    AcceptKind.NEW_TRUST: "Blindly trusting first ever certificate for {}.",
    AcceptKind.CONFIRMED: "Certificate for {} matches the one on file.",
    AcceptKind.RENEWED: "Certificate on file for {} expired, renewed with the same public key.",
    RejectReason.INVALID_CERTIFICATE: "Certificate from server is invalid.",
    RejectReason.EXPIRED_AT_PRESENTATION: "Certificate presented for {} is not currently valid.",
    RejectReason.NO_COMMON_NAME: "Certificate has no Common Name.",
    RejectReason.KEY_MISMATCH: "Public key for {} differs from the still valid "
                               "certificate on file. This MIGHT be a Man-in-the-Middle attack.",
    RejectReason.KEY_MISMATCH_ON_RENEWAL: "Certificate on file for {} expired "
                               "and the new one has a different public key.",
    RejectReason.CORRUPT_RECORD: "Certificate on file for {} cannot be read.",
}


class TrustDecision(collections.namedtuple("TrustDecision", ["kind", "domain"])):
    __slots__ = ()

    @property
    def accepted(self):
        return isinstance(self.kind, AcceptKind)

    def describe(self):
        return _DESCRIPTIONS[self.kind].format(self.domain or "unknown host")


class TrustRecord(collections.namedtuple("TrustRecord",
                    ["domain", "der", "not_before", "not_after", "public_key"])):
    __slots__ = ()

    @classmethod
    def from_certificate(cls, domain, der, cert):
        return cls(domain, der, cert.not_valid_before_utc, cert.not_valid_after_utc,
                   _public_key_bytes(cert))

    @property
    def fingerprint(self):
        return hashlib.sha256(self.der).hexdigest()

    def is_valid(self, now=None):
        if now is None:
            now = datetime.datetime.now(datetime.timezone.utc)
        return self.not_before <= now <= self.not_after


def _public_key_bytes(cert):
    return cert.public_key().public_bytes(
        serialization.Encoding.DER,
        serialization.PublicFormat.SubjectPublicKeyInfo)

def _load(der):
    """Parse DER bytes, returning None for anything unusable."""
    try:
        cert = x509.load_der_x509_certificate(der)
        # Unknown key types only fail once the key is asked for
        _public_key_bytes(cert)
    except (ValueError, TypeError, UnsupportedAlgorithm):
        return None
    return cert

def _common_name(cert):
    try:
        common_name = cert.subject.get_attributes_for_oid(NameOID.COMMON_NAME)
    except ValueError:
        return None
    if not common_name or not common_name[0].value:
        return None
    value = common_name[0].value
    if isinstance(value, bytes):
        value = value.decode("UTF-8", errors="replace")
    return value

def _filename(domain):
    name = urllib.parse.quote(domain, safe="")
    # no hidden files, no "." or ".."
    if name.startswith("."):
        name = "%2E" + name[1:]
    return name + ".der"


# Locks are shared by every TrustStore of the process pointing to the
# same directory. Entries go away once nobody references their lock.
_LOCKS = weakref.WeakValueDictionary()
_LOCKS_GUARD = threading.Lock()

def _domain_lock(root, domain):
    key = (os.path.realpath(root), domain)
    with _LOCKS_GUARD:
        lock = _LOCKS.get(key)
        if lock is None:
            lock = _LOCKS[key] = threading.Lock()
        return lock


class TrustStore:
    """
    A directory of trusted certificates, one DER file per Common Name.

    The directory is created the first time a certificate is evaluated.
    `evaluate` is safe to call from several threads: for a given domain,
    lookups and updates happen one at a time.
    """

    def __init__(self, root):
        self.root = root

    def path_for(self, domain):
        return os.path.join(self.root, _filename(domain))

    def get(self, domain):
        path = self.path_for(domain)
        if not os.path.exists(path):
            return None
        with open(path, "rb") as fp:
            der = fp.read()
        cert = _load(der)
        if cert is None:
            return None
        return TrustRecord.from_certificate(domain, der, cert)

    def records(self):
        if not os.path.isdir(self.root):
            return []
        records = []
        for filename in sorted(os.listdir(self.root)):
            if not filename.endswith(".der") or filename.startswith("."):
                continue
            domain = urllib.parse.unquote(filename[:-4])
            record = self.get(domain)
            if record:
                records.append(record)
        return records

    def _write(self, domain, der):
        fd, tmp_path = tempfile.mkstemp(dir=self.root, prefix=".", suffix=".tmp")
        try:
            with os.fdopen(fd, "wb") as fp:
                fp.write(der)
            os.replace(tmp_path, self.path_for(domain))
        except OSError:
            if os.path.exists(tmp_path):
                os.remove(tmp_path)
            raise

    def evaluate(self, der, now=None):
        """
        Decide whether the DER encoded certificate can be trusted.
        Returns a TrustDecision telling what was decided and why.
        """
        if now is None:
            now = datetime.datetime.now(datetime.timezone.utc)
        cert = _load(der)
        if cert is None:
            debug("TOFU: Error: Certificate from server is invalid.")
            return TrustDecision(RejectReason.INVALID_CERTIFICATE, None)
        domain = _common_name(cert)
        # Check certificate validity dates
        if not cert.not_valid_before_utc <= now <= cert.not_valid_after_utc:
            debug("TOFU: Certificate valid from {} to {}, refusing it.".format(
                  cert.not_valid_before_utc, cert.not_valid_after_utc))
            return TrustDecision(RejectReason.EXPIRED_AT_PRESENTATION, domain)
        if not domain:
            return TrustDecision(RejectReason.NO_COMMON_NAME, None)

        incoming = TrustRecord.from_certificate(domain, der, cert)
        os.makedirs(self.root, mode=0o700, exist_ok=True)
        with _domain_lock(self.root, domain):
            decision = self._decide(incoming, now)
        debug("TOFU: " + decision.describe())
        return decision

    def _decide(self, incoming, now):
        domain = incoming.domain
        path = self.path_for(domain)
        # Have we been here before?
        if not os.path.exists(path):
            self._write(domain, incoming.der)
            return TrustDecision(AcceptKind.NEW_TRUST, domain)

        stored = self.get(domain)
        if stored is None:
            return TrustDecision(RejectReason.CORRUPT_RECORD, domain)
        same_key = stored.public_key == incoming.public_key
        if stored.is_valid(now):
            if same_key:
                return TrustDecision(AcceptKind.CONFIRMED, domain)
            return TrustDecision(RejectReason.KEY_MISMATCH, domain)
        if same_key:
            self._write(domain, incoming.der)
            return TrustDecision(AcceptKind.RENEWED, domain)
        return TrustDecision(RejectReason.KEY_MISMATCH_ON_RENEWAL, domain)
