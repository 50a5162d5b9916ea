#!/usr/bin/env python3
# URL handling for gemini:// addresses.
# Internally, Dioscuri keeps URLs without their "gemini://" prefix:
# it is added back only when a request line is built.

import collections
import re
import urllib.parse

from dioerrors import MalformedURL

GEMINI_PORT = 1965
GEMINI_SCHEME = "gemini://"

# monkey-patch Gemini support in urllib.parse
# see https://github.com/python/cpython/blob/master/Lib/urllib/parse.py
if "gemini" not in urllib.parse.uses_relative:
    urllib.parse.uses_relative.append("gemini")
if "gemini" not in urllib.parse.uses_netloc:
    urllib.parse.uses_netloc.append("gemini")

_SCHEME_PREFIX = re.compile(r"^[A-Za-z][A-Za-z0-9+.-]*://")
_SCHEME_PREFIXES = re.compile(r"^(?:[A-Za-z][A-Za-z0-9+.-]*://)+")


def has_scheme(raw):
    return bool(_SCHEME_PREFIX.match(raw))

def strip_scheme(raw):
    """
    Remove the leading "<scheme>://" prefix. Stacked prefixes such as
    "gemini://gemini://" all go at once so that stripping twice changes
    nothing.
    """
    return _SCHEME_PREFIXES.sub("", raw, count=1)

def extract_host(raw):
    """Everything before the first "/" once the scheme is gone."""
    return strip_scheme(raw).split("/", 1)[0]

def normalize_url(url):
    url = url.strip()
    if url.startswith("//"):
        return "gemini:" + url
    if not has_scheme(url):
        url = GEMINI_SCHEME + url
    return url

#An IPV6 URL should be put between []
#We try to detect them has location with more than 2 ":"
def fix_ipv6_url(url):
    if not url:
        return url
    if "://" in url:
        schema, schemaless = url.split("://",maxsplit=1)
    else:
        schema, schemaless = None, url
    if "/" in schemaless:
        netloc, rest = schemaless.split("/",1)
        if netloc.count(":") > 2 and "[" not in netloc and "]" not in netloc:
            schemaless = "[" + netloc + "]" + "/" + rest
    elif schemaless.count(":") > 2 and "[" not in schemaless:
        schemaless = "[" + schemaless + "]/"
    if schema:
        return schema + "://" + schemaless
    return schemaless

def _split(raw):
    url = fix_ipv6_url(normalize_url(raw))
    try:
        parsed = urllib.parse.urlsplit(url)
        # urllib only validates the port when it is asked for it
        parsed.port
    except ValueError as err:
        raise MalformedURL(raw, str(err))
    if not parsed.hostname:
        raise MalformedURL(raw, "Missing host")
    return url, parsed


class GeminiURL(collections.namedtuple("GeminiURL", ["host", "port", "path"])):
    """
    A parsed gemini URL. `path` holds the path and the "?query" part, if
    any. Fragments are never sent to servers and are dropped.
    """
    __slots__ = ()

    @classmethod
    def parse(cls, raw):
        url, parsed = _split(raw)
        if parsed.scheme != "gemini":
            raise MalformedURL(raw, "Unsupported scheme %s" % parsed.scheme)
        try:
            parsed.hostname.encode("idna")
        except UnicodeError as err:
            raise MalformedURL(raw, "Invalid host name (%s)" % err)
        path = parsed.path
        if parsed.query:
            path += "?" + parsed.query
        return cls(parsed.hostname, parsed.port or GEMINI_PORT, path)

    def netloc(self):
        host = self.host
        if ":" in host:
            host = "[" + host + "]"
        if self.port != GEMINI_PORT:
            host += ":" + str(self.port)
        return host

    def request_line(self):
        return GEMINI_SCHEME + self.netloc() + self.path + "\r\n"

    def __str__(self):
        return self.netloc() + self.path


def join(base_url, target):
    """Like resolve, but the result always keeps its scheme."""
    base = _split(base_url)[0]
    return urllib.parse.urljoin(base, target.strip())

def resolve(base_url, redirect_target):
    """
    Resolve a (possibly relative) redirect target against base_url.
    Gemini results are returned without their scheme. Other schemes are
    kept so that callers can refuse cross-protocol redirects.
    """
    joined = join(base_url, redirect_target)
    if joined.startswith(GEMINI_SCHEME):
        return strip_scheme(joined)
    return joined

def add_query(url, query):
    """Answer an input request: url with its query replaced by query."""
    gurl = GeminiURL.parse(url)
    path = gurl.path.split("?", 1)[0]
    return str(gurl._replace(path=path + "?" + urllib.parse.quote(query)))
