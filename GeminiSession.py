import hashlib
import socket
import ssl
import time

from dioerrors import (CertRejected, MalformedURL, ResponseTooLarge, TlsFailure,
                       TransportFailure)
from dioutils import DEFAULT_OPTIONS, debug
from geminiurl import GEMINI_PORT

_CIPHERS = "AESGCM+ECDHE:AESGCM+DHE:CHACHA20+ECDHE:CHACHA20+DHE:!DSS:!SHA1:!MD5:@STRENGTH"
_CHUNK_SIZE = 4096


def tls_context():
    """
    TLS context for TOFU: the handshake accepts any certificate and the
    decision is left to the session verifier.
    """
    context = ssl.SSLContext(ssl.PROTOCOL_TLS_CLIENT)
    context.check_hostname = False
    context.verify_mode = ssl.CERT_NONE
    # Impose minimum TLS version
    context.minimum_version = ssl.TLSVersion.TLSv1_2
    # Try to enforce sensible ciphers
    try:
        context.set_ciphers(_CIPHERS)
    except ssl.SSLError:
        # Rely on the server to only support sensible things, I guess...
        pass
    return context


def get_addresses(host, port, ipv6=True):
    # DNS lookup - will get IPv4 and IPv6 records if IPv6 is enabled
    if ":" in host:
        # This is likely a literal IPv6 address, so we can *only* ask for
        # IPv6 addresses or getaddrinfo will complain
        family_mask = socket.AF_INET6
    elif socket.has_ipv6 and ipv6:
        # Accept either IPv4 or IPv6 addresses
        family_mask = 0
    else:
        # IPv4 only
        family_mask = socket.AF_INET
    addresses = socket.getaddrinfo(host, port, family=family_mask,
            type=socket.SOCK_STREAM)
    # Sort addresses so IPv6 ones come first
    addresses.sort(key=lambda add: add[0] == socket.AF_INET6, reverse=True)
    return addresses


class GeminiSession:
    """
    One TLS connection to a Gemini server, good for a single request.

    `verifier` decides whether the certificate presented by the server is
    trusted: it needs an `evaluate(der_bytes)` method returning a decision
    with an `accepted` attribute (tofu.TrustStore provides one). It is
    called right after the handshake, before anything is sent.
    """
    sock: ssl.SSLSocket

    def __init__(self, host, verifier, port=GEMINI_PORT,
                 timeout=DEFAULT_OPTIONS["timeout"],
                 deadline=DEFAULT_OPTIONS["deadline"],
                 max_size=DEFAULT_OPTIONS["max_size_download"]*1000000,
                 ipv6=True):
        self.host = host
        self.port = port
        self.verifier = verifier
        self.timeout = timeout
        self.deadline = deadline
        self.max_size = max_size
        self.ipv6 = ipv6
        self.sock = None
        self.address = None
        self.decision = None

    def __enter__(self):
        return self

    def __exit__(self, *exc_info):
        self.close()

    def _open(self):
        host = self.host.encode("idna").decode()
        context = tls_context()
        # Connect to remote host by any address possible
        err = None
        for address in get_addresses(host, self.port, ipv6=self.ipv6):
            debug("Connecting to: " + str(address[4]))
            s = socket.socket(address[0], address[1])
            s.settimeout(self.timeout)
            s = context.wrap_socket(s, server_hostname = host)
            try:
                s.connect(address[4])
                break
            except OSError as e:
                s.close()
                err = e
        else:
            # If we couldn't connect to *any* of the addresses, just
            # bubble up the exception from the last attempt and deny
            # knowledge of earlier failures.
            raise err
        self.address = address
        debug("Established {} connection.".format(s.version()))
        debug("Cipher is: {}.".format(s.cipher()))
        return s

    def connect(self):
        try:
            self.sock = self._open()
        except UnicodeError as err:
            raise MalformedURL(self.host, "Invalid host name (%s)" % err) from err
        except ssl.SSLError as err:
            raise TlsFailure(self.host, str(err)) from err
        except OSError as err:
            raise TransportFailure(self.host, str(err) or type(err).__name__) from err

        # Do TOFU
        cert = self.sock.getpeercert(binary_form=True)
        if not cert:
            self.close()
            raise TlsFailure(self.host, "no certificate presented")
        self.decision = self.verifier.evaluate(cert)
        if not self.decision.accepted:
            self.close()
            raise CertRejected(self.decision, host=self.host,
                               fingerprint=hashlib.sha256(cert).hexdigest())
        return self

    def send(self, url):
        """Send the request line for url, the one and only write."""
        request = url.request_line()
        debug("Sending %s<CRLF>" % request.rstrip())
        try:
            self.sock.sendall(request.encode("UTF-8"))
        except OSError as err:
            raise TransportFailure(self.host, str(err) or type(err).__name__) from err

    def receive(self):
        """
        Read the response until the server closes the connection.
        A read error after some data was received ends the response
        instead of failing. Timeouts and oversized responses always fail.
        """
        chunks = []
        size = 0
        started = time.monotonic()
        while True:
            timeout = self.timeout
            if self.deadline:
                remaining = self.deadline - (time.monotonic() - started)
                if remaining <= 0:
                    self.close()
                    raise TransportFailure(self.host,
                        "no complete response after %s seconds" % self.deadline)
                if not timeout or remaining < timeout:
                    timeout = remaining
            self.sock.settimeout(timeout)
            try:
                chunk = self.sock.recv(_CHUNK_SIZE)
            except TimeoutError as err:
                self.close()
                raise TransportFailure(self.host, "Connection timed out") from err
            except OSError as err:
                if not chunks:
                    raise TransportFailure(self.host, str(err) or type(err).__name__) from err
                debug("Read error after %d bytes, keeping them: %s" % (size, err))
                break
            if not chunk:
                break
            size += len(chunk)
            if self.max_size and size > self.max_size:
                self.close()
                raise ResponseTooLarge(self.host, self.max_size)
            chunks.append(chunk)
        debug("Received %d bytes from %s" % (size, self.host))
        return b"".join(chunks)

    def close(self):
        if self.sock is not None:
            self.sock.close()
            self.sock = None
