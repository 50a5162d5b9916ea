"""
Exceptions raised by the Dioscuri Gemini client.

Protocol statuses travel in GeminiResponse. Everything that stops a fetch
before a usable response exists is raised as one of these.
"""

from geminiresponse import GeminiResponse, GeminiStatus


class GeminiError(Exception):
    """Base Dioscuri error."""

    def as_response(self):
        """
        Render the error the way older consumers expect it: a FAILURE_CLIENT
        pseudo status carrying the message in meta.
        """
        return GeminiResponse(GeminiStatus.FAILURE_CLIENT, str(self), b"", None)


class MalformedURL(GeminiError):
    def __init__(self, url, reason="Malformed URL"):
        self.url = url
        self.reason = reason
        super().__init__("%s: %s" % (reason, url))


class TransportFailure(GeminiError):
    """Could not talk to the host at the socket level."""

    def __init__(self, host, reason="", message=None):
        self.host = host
        self.reason = reason
        if not message:
            message = "Could not connect to %s" % host
            if reason:
                message += ": %s" % reason
        super().__init__(message)


class TlsFailure(TransportFailure):
    """The TLS handshake with the host failed."""

    def __init__(self, host, reason=""):
        super().__init__(host, reason,
                         message="TLS handshake with %s failed: %s" % (host, reason))


class CertRejected(GeminiError):
    """The trust store refused the certificate presented by the server."""

    def __init__(self, decision, host=None, fingerprint=None):
        self.decision = decision
        self.reason = decision.kind
        self.host = host
        self.fingerprint = fingerprint
        super().__init__("TOFU Failure! %s" % decision.describe())


class ResponseFormatError(GeminiError):
    """The response header was not terminated by CRLF."""

    def __init__(self, message="Received invalid header from server!"):
        super().__init__(message)


class UnknownStatus(GeminiError):
    def __init__(self, message="Server returned invalid status code!"):
        super().__init__(message)


class ResponseTooLarge(GeminiError):
    def __init__(self, host, max_size):
        self.host = host
        self.max_size = max_size
        super().__init__("Response from %s exceeds %d bytes" % (host, max_size))


class TooManyRedirects(GeminiError):
    """
    A redirect chain was cut short. This is raised once max_hops redirects
    were followed, or earlier through RedirectLoop when the chain comes back
    to a URL it already visited.
    """

    def __init__(self, max_hops=None, message=None):
        self.max_hops = max_hops
        if not message:
            message = "Refusing to follow more than %d consecutive redirects!" % max_hops
        super().__init__(message)


class RedirectLoop(TooManyRedirects):
    def __init__(self, url):
        self.url = url
        super().__init__(message="Caught in redirect loop! (%s)" % url)
