# tests/fakes.py
import datetime
import queue
import socket
import ssl
import threading
import time

from cryptography import x509
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import ec
from cryptography.x509.oid import NameOID

from dioerrors import CertRejected
from tofu import AcceptKind, TrustDecision

NOW = datetime.datetime.now(datetime.timezone.utc)
DAY = datetime.timedelta(days=1)


def new_key():
    return ec.generate_private_key(ec.SECP256R1())


def make_cert(cn="example.org", key=None, not_before=None, not_after=None):
    """Self-signed DER certificate, valid around now unless told otherwise."""
    key = key or new_key()
    if cn is None:
        name = x509.Name([x509.NameAttribute(NameOID.ORGANIZATION_NAME, "No CN")])
    else:
        name = x509.Name([x509.NameAttribute(NameOID.COMMON_NAME, cn)])
    cert = (
        x509.CertificateBuilder()
        .subject_name(name)
        .issuer_name(name)
        .public_key(key.public_key())
        .serial_number(x509.random_serial_number())
        .not_valid_before(not_before or NOW - DAY)
        .not_valid_after(not_after or NOW + 30 * DAY)
        .sign(key, hashes.SHA256())
    )
    return cert.public_bytes(serialization.Encoding.DER)


def write_cert_chain(directory, cn="localhost", key=None):
    """Write a self-signed PEM certificate and its key, for ssl servers."""
    key = key or new_key()
    der = make_cert(cn, key)
    certfile = directory / ("%s-%s.crt" % (cn, der[-8:].hex()))
    keyfile = certfile.with_suffix(".key")
    certfile.write_bytes(x509.load_der_x509_certificate(der).public_bytes(
        serialization.Encoding.PEM))
    keyfile.write_bytes(key.private_bytes(
        serialization.Encoding.PEM,
        serialization.PrivateFormat.PKCS8,
        serialization.NoEncryption()))
    return der, str(certfile), str(keyfile)


class LoopbackServer(threading.Thread):
    """
    A TLS server on 127.0.0.1 answering a single connection with
    `response`. What it read from the client, up to the first CRLF, is put
    on `requests` (b"" when the client went away without sending).
    Without certfile it is a plain TCP server that answers garbage to
    whatever comes in.
    """

    def __init__(self, certfile=None, keyfile=None, response=b"20 text/gemini\r\nhello"):
        super().__init__(daemon=True)
        self.context = None
        if certfile:
            self.context = ssl.SSLContext(ssl.PROTOCOL_TLS_SERVER)
            self.context.load_cert_chain(certfile, keyfile)
        self.response = response
        self.requests = queue.Queue()
        self.listener = socket.create_server(("127.0.0.1", 0))
        self.listener.settimeout(10)
        self.port = self.listener.getsockname()[1]
        self.start()

    def run(self):
        with self.listener:
            conn, _ = self.listener.accept()
        conn.settimeout(10)
        if self.context is None:
            with conn:
                conn.recv(4096)
                conn.sendall(b"this is not TLS\r\n")
            return
        data = b""
        try:
            with self.context.wrap_socket(conn, server_side=True) as tls:
                while not data.endswith(b"\r\n"):
                    chunk = tls.recv(1024)
                    if not chunk:
                        break
                    data += chunk
                if data:
                    tls.sendall(self.response)
        except OSError:
            pass
        finally:
            conn.close()
            self.requests.put(data)


class FakeSocket:
    """
    Stands for a connected TLS socket. `chunks` is what recv() hands out
    in order: bytes are returned, exceptions are raised. An exhausted
    list means the peer closed the connection.
    """

    def __init__(self, chunks=(), cert=b"fake-der", delay=0):
        self.chunks = list(chunks)
        self.cert = cert
        self.delay = delay
        self.sent = []
        self.timeouts = []
        self.closed = False

    def getpeercert(self, binary_form=False):
        return self.cert

    def sendall(self, data):
        self.sent.append(data)

    def settimeout(self, timeout):
        self.timeouts.append(timeout)

    def recv(self, size):
        if self.delay:
            time.sleep(self.delay)
        if not self.chunks:
            return b""
        chunk = self.chunks.pop(0)
        if isinstance(chunk, Exception):
            raise chunk
        return chunk

    def close(self):
        self.closed = True


class FakeVerifier:
    def __init__(self, kind=AcceptKind.CONFIRMED, domain="example.org"):
        self.kind = kind
        self.domain = domain
        self.seen = []

    def evaluate(self, der):
        self.seen.append(der)
        return TrustDecision(self.kind, self.domain)


class FakeServer:
    """
    Session factory for GeminiClient. `responses` maps scheme-less URLs
    to raw response bytes. `certs` maps hosts to the DER certificate they
    present; hosts without one are not checked.
    """

    def __init__(self, responses, certs=None):
        self.responses = responses
        self.certs = certs or {}
        self.sessions = []

    def __call__(self, host, verifier, port=1965, **kwargs):
        session = FakeSession(self, host, verifier, port, kwargs)
        self.sessions.append(session)
        return session

    @property
    def connections(self):
        return [s.host for s in self.sessions]

    @property
    def requests(self):
        return [line for s in self.sessions for line in s.sent]


class FakeSession:
    def __init__(self, server, host, verifier, port, options):
        self.server = server
        self.host = host
        self.verifier = verifier
        self.port = port
        self.options = options
        self.sent = []
        self.url = None
        self.closed = False

    def __enter__(self):
        return self

    def __exit__(self, *exc_info):
        self.closed = True

    def connect(self):
        cert = self.server.certs.get(self.host)
        if cert is not None:
            decision = self.verifier.evaluate(cert)
            if not decision.accepted:
                raise CertRejected(decision, host=self.host)
        return self

    def send(self, url):
        self.url = url
        self.sent.append(url.request_line())

    def receive(self):
        return self.server.responses[str(self.url)]
