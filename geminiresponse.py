#!/usr/bin/env python3
# Gemini response header parsing and status codes.

import codecs
import collections
import enum
import re

CRLF = b"\r\n"
INVALID_STATUS_MESSAGE = "Server returned invalid status code!"
MISSING_TERMINATOR_MESSAGE = "missing terminator"


class GeminiStatus(enum.Enum):
    INPUT_EXPECTED = "input"
    INPUT_SENSITIVE = "sensitive input"
    SUCCESS = "success"
    REDIRECT_TEMP = "temporary redirect"
    REDIRECT_PERM = "permanent redirect"
    FAILURE_SERVER_TEMP = "temporary failure"
    FAILURE_SERVER_UNAVAILABLE = "server unavailable"
    FAILURE_SERVER_CGI_ERROR = "CGI error"
    FAILURE_SERVER_PROXY_ERROR = "proxy error"
    FAILURE_SERVER_SLOWDOWN = "slow down"
    FAILURE_SERVER = "permanent failure"
    FAILURE_SERVER_NOTFOUND = "not found"
    FAILURE_SERVER_GONE = "gone"
    FAILURE_SERVER_PROXYREFUSED = "proxy request refused"
    FAILURE_SERVER_BAD_REQ = "bad request"
    FAILURE_CERT_NEEDED = "client certificate required"
    FAILURE_CERT_UNAUTHORIZED = "certificate not authorised"
    FAILURE_CERT_INVALID = "certificate not valid"
    STATUS_UNKNOWN = "unknown status"
    # Client side only, never sent by a server
    RESPONSE_ERROR = "invalid response"
    FAILURE_CLIENT = "client failure"

    def is_input(self):
        return self in (GeminiStatus.INPUT_EXPECTED, GeminiStatus.INPUT_SENSITIVE)

    def is_redirect(self):
        return self in (GeminiStatus.REDIRECT_TEMP, GeminiStatus.REDIRECT_PERM)


# (first, end) are half-open: first <= code < end
_STATUS_TABLE = (
    (10, 11, GeminiStatus.INPUT_EXPECTED),
    (11, 12, GeminiStatus.INPUT_SENSITIVE),
    (12, 20, GeminiStatus.INPUT_EXPECTED),
    (20, 30, GeminiStatus.SUCCESS),
    (30, 31, GeminiStatus.REDIRECT_TEMP),
    (31, 40, GeminiStatus.REDIRECT_PERM),
    (40, 41, GeminiStatus.FAILURE_SERVER_TEMP),
    (41, 42, GeminiStatus.FAILURE_SERVER_UNAVAILABLE),
    (42, 43, GeminiStatus.FAILURE_SERVER_CGI_ERROR),
    (43, 44, GeminiStatus.FAILURE_SERVER_PROXY_ERROR),
    (44, 45, GeminiStatus.FAILURE_SERVER_SLOWDOWN),
    (45, 50, GeminiStatus.FAILURE_SERVER_TEMP),
    (50, 51, GeminiStatus.FAILURE_SERVER),
    (51, 52, GeminiStatus.FAILURE_SERVER_NOTFOUND),
    (52, 53, GeminiStatus.FAILURE_SERVER_GONE),
    (53, 54, GeminiStatus.FAILURE_SERVER_PROXYREFUSED),
    (54, 59, GeminiStatus.FAILURE_SERVER),
    (59, 60, GeminiStatus.FAILURE_SERVER_BAD_REQ),
    (60, 61, GeminiStatus.FAILURE_CERT_NEEDED),
    (61, 62, GeminiStatus.FAILURE_CERT_UNAUTHORIZED),
    (62, 63, GeminiStatus.FAILURE_CERT_INVALID),
    (63, 70, GeminiStatus.FAILURE_CERT_NEEDED),
)

_TWO_DIGITS = re.compile(rb"[0-9]{2}")


def status_from_code(code):
    """Map any integer to a GeminiStatus. Never raises."""
    for first, end, status in _STATUS_TABLE:
        if first <= code < end:
            return status
    return GeminiStatus.STATUS_UNKNOWN

def parse_response(data):
    """
    Split a raw response into (status, meta, body).

    The body is everything after the first CRLF and is returned untouched,
    whatever the status. A header with no CRLF gives RESPONSE_ERROR and
    an invalid or out of range code gives STATUS_UNKNOWN; both come with
    an empty body.
    """
    header, sep, body = data.partition(CRLF)
    if not sep:
        return GeminiStatus.RESPONSE_ERROR, MISSING_TERMINATOR_MESSAGE, b""
    code, _, meta = header.partition(b" ")
    if not _TWO_DIGITS.fullmatch(code):
        return GeminiStatus.STATUS_UNKNOWN, INVALID_STATUS_MESSAGE, b""
    code = int(code)
    if not 10 <= code <= 69:
        return GeminiStatus.STATUS_UNKNOWN, INVALID_STATUS_MESSAGE, b""
    return status_from_code(code), meta.decode("UTF-8", errors="replace"), body

def parse_mime(mime):
    options = {}
    if mime:
        if ";" in mime:
            splited = mime.split(";",maxsplit=1)
            mime = splited[0].strip()
            options_list = splited[1].replace(";", " ").split()
            for o in options_list:
                spl = o.split("=",maxsplit=1)
                if len(spl) == 2:
                    options[spl[0].lower()] = spl[1].strip('"')
    return mime, options


class GeminiResponse(collections.namedtuple("GeminiResponse",
                                            ["status", "meta", "body", "url"],
                                            defaults=(None,))):
    __slots__ = ()

    def is_success(self):
        return self.status == GeminiStatus.SUCCESS

    def is_redirect(self):
        return self.status.is_redirect()

    def is_input(self):
        return self.status.is_input()

    def mime(self):
        """The MIME type and its options. Only meaningful on success."""
        mime = self.meta
        # DEFAULT GEMINI MIME
        if not mime:
            mime = "text/gemini; charset=utf-8"
        return parse_mime(mime)

    def text(self):
        """Decode a text/* body using the charset announced in meta."""
        shortmime, mime_options = self.mime()
        encoding = mime_options.get("charset", "UTF-8")
        try:
            codecs.lookup(encoding)
        except LookupError:
            #If the encoding is wrong, there’s a high probably it’s UTF-8 with a bad header
            encoding = "UTF-8"
        return self.body.decode(encoding, errors="replace")
