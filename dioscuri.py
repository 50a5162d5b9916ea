#!/usr/bin/env python3
# Dioscuri Gemini client
# Fetches gemini:// resources over TLS, trusting server certificates
# on first use, and follows redirects.

_VERSION = "0.2"

import argparse
import datetime
import getpass
import os
import socket
import sys

import dioutils
from dioerrors import (CertRejected, GeminiError, MalformedURL, ResponseFormatError,
                       TooManyRedirects, RedirectLoop, TransportFailure, UnknownStatus)
from dioutils import debug
from geminiresponse import GeminiResponse, GeminiStatus, parse_response
from geminiurl import GEMINI_SCHEME, GeminiURL, add_query, join
from GeminiSession import GeminiSession
from tofu import RejectReason, TrustStore

try:
    import setproctitle
    _HAS_SETPROCTITLE = True
except ModuleNotFoundError:
    _HAS_SETPROCTITLE = False


class GeminiClient:
    """
    Fetch gemini resources.

    Every request, including each redirect hop, uses its own GeminiSession
    and thus its own certificate check against `trust_store`. A client
    keeps no state between fetches, so one instance can serve several
    threads.
    """

    def __init__(self, trust_store=None, options=None, session_factory=GeminiSession):
        self.options = dioutils.default_options()
        if options:
            self.options.update(options)
        if trust_store is None:
            trust_store = TrustStore(dioutils._CERT_DIR)
        self.trust_store = trust_store
        self.session_factory = session_factory

    def _open_session(self, gurl):
        max_size = self.options["max_size_download"]
        return self.session_factory(gurl.host, self.trust_store, port=gurl.port,
                                    timeout=self.options["timeout"],
                                    deadline=self.options["deadline"],
                                    max_size=int(max_size*1000000) if max_size else None,
                                    ipv6=self.options["ipv6"])

    def _fetch_once(self, gurl):
        """One request, one response. Redirects are not followed."""
        with self._open_session(gurl) as session:
            session.connect()
            session.send(gurl)
            data = session.receive()
        status, meta, body = parse_response(data)
        debug("Response header: %s %s." % (status.name, meta))
        if status == GeminiStatus.RESPONSE_ERROR:
            raise ResponseFormatError()
        elif status == GeminiStatus.STATUS_UNKNOWN:
            raise UnknownStatus(meta)
        return GeminiResponse(status, meta, body, str(gurl))

    def follow_redirects(self, url, response, max_hops=None):
        """
        Follow the redirect in response, which was received for url, until
        a response that is not a redirect comes back. At most max_hops
        redirects are followed.
        """
        if max_hops is None:
            max_hops = self.options["max_redirects"]
        hops_remaining = max_hops
        current = url
        visited = {current}
        while response.is_redirect() and hops_remaining > 0:
            target = join(current, response.meta)
            if not target.startswith(GEMINI_SCHEME):
                raise MalformedURL(target, "Refusing cross-protocol redirect")
            gurl = GeminiURL.parse(target)
            if str(gurl) in visited:
                raise RedirectLoop(str(gurl))
            debug("Following redirect to %s." % str(gurl))
            debug("This is consecutive redirect number %d." % (max_hops - hops_remaining + 1))
            response = self._fetch_once(gurl)
            hops_remaining -= 1
            current = str(gurl)
            visited.add(current)
        if response.is_redirect():
            raise TooManyRedirects(max_hops)
        return response

    def resolve_chain(self, url, max_hops=None):
        gurl = GeminiURL.parse(url)
        return self.follow_redirects(str(gurl), self._fetch_once(gurl), max_hops)

    def fetch(self, url):
        """
        Fetch url and return a GeminiResponse. Redirects are followed.
        Anything preventing a response, from DNS failures to refused
        certificates, raises a dioerrors.GeminiError.
        """
        gurl = GeminiURL.parse(url)
        response = self._fetch_once(gurl)
        if response.is_redirect():
            return self.follow_redirects(str(gurl), response)
        return response


def fetch(url, store=None, **options):
    """Fetch url with a one-off client. store is the trust store directory."""
    trust_store = TrustStore(store) if store else None
    return GeminiClient(trust_store, options).fetch(url)


def print_security_warning(err, trust_store):
    print("****************************************")
    if err.reason in (RejectReason.KEY_MISMATCH, RejectReason.KEY_MISMATCH_ON_RENEWAL):
        print("[SECURITY WARNING] Unrecognised certificate!")
    else:
        print("[SECURITY WARNING] Certificate refused!")
    print(err.decision.describe())
    previous = err.decision.domain and trust_store.get(err.decision.domain)
    if previous:
        previous_ttl = previous.not_after - datetime.datetime.now(datetime.timezone.utc)
        if previous_ttl < datetime.timedelta():
            print("The certificate on file has expired, which reduces suspicion somewhat.")
        else:
            print("The certificate on file is still valid for: {}".format(previous_ttl))
        print("Fingerprint on file: {}".format(previous.fingerprint))
    print("****************************************")
    if err.fingerprint:
        print("Attempt to verify the new certificate fingerprint out-of-band:")
        print(err.fingerprint)
    print("Remove {} to trust a new certificate.".format(
          trust_store.path_for(err.decision.domain) if err.decision.domain else "it from the store"))


def print_error(err, trust_store):
    cause = err.__cause__
    if isinstance(err, CertRejected):
        print_security_warning(err, trust_store)
    elif isinstance(cause, socket.gaierror):
        print("ERROR: DNS error!")
    elif isinstance(cause, ConnectionRefusedError):
        print("ERROR1: Connection refused!")
    elif isinstance(cause, ConnectionResetError):
        print("ERROR2: Connection reset!")
    elif isinstance(cause, TimeoutError):
        print("""ERROR3: Connection timed out!
    Slow internet connection?  Use 'set timeout' to be more patient.""")
    elif isinstance(err, TransportFailure):
        print("ERROR5: " + str(err))
    else:
        print("ERROR4: " + str(err))


def go(client, url):
    """Fetch url and show it. Returns True when a document was shown."""
    try:
        response = client.fetch(url)
        # Inputs
        while response.is_input():
            print(response.meta)
            if response.status == GeminiStatus.INPUT_SENSITIVE:
                user_input = getpass.getpass("> ")
            else:
                user_input = input("> ")
            response = client.fetch(add_query(response.url, user_input))
    except GeminiError as err:
        print_error(err, client.trust_store)
        return False
    if response.is_success():
        shortmime, mime_options = response.mime()
        if shortmime.startswith("text/"):
            print(response.text())
        else:
            sys.stdout.buffer.write(response.body)
            sys.stdout.buffer.flush()
        return True
    # Errors, client certificates: there is no body to show
    print("SERVER SAYS: %s (%s)" % (response.meta, response.status.value))
    return False


def main():

    # Parse args
    parser = argparse.ArgumentParser(description='A command line gemini client.')
    parser.add_argument('--debug', action='store_true',
                        help='print what happens on the wire')
    parser.add_argument('--timeout', type=float,
                        help='seconds to wait for each network operation')
    parser.add_argument('--max-size', type=float,
                        help='cancel downloads above that size (value in MB)')
    parser.add_argument('--store', metavar='DIR',
                        help='trusted certificates directory (default: %s)' % dioutils._CERT_DIR)
    parser.add_argument('--config', metavar='FILE',
                        help='configuration file (default: %s)' % dioutils._RC_FILE)
    parser.add_argument('--known-hosts', action='store_true',
                        help='list trusted certificates then quit')
    parser.add_argument('--version', action='store_true',
                        help='display version information and quit')
    parser.add_argument('url', metavar='URL', nargs='*',
                        help='fetch this URL')
    args = parser.parse_args()

    # Handle --version
    if args.version:
        print("Dioscuri " + _VERSION)
        sys.exit()
    if _HAS_SETPROCTITLE:
        setproctitle.setproctitle("dioscuri")

    # Set umask so that nothing we create can be read by anybody else.
    # The trust store contains "browser history" type sensitive information.
    os.umask(0o077)

    options = dioutils.read_config(dioutils.default_options(), args.config)
    if args.debug:
        options["debug"] = True
    if args.timeout is not None:
        options["timeout"] = args.timeout
    if args.max_size is not None:
        options["max_size_download"] = args.max_size
    dioutils.set_debug(options["debug"])

    trust_store = TrustStore(args.store or dioutils._CERT_DIR)
    if args.known_hosts:
        for record in trust_store.records():
            print("%s   %s   valid until %s" % (record.domain, record.fingerprint,
                                                record.not_after))
        sys.exit()
    if not args.url:
        parser.print_help()
        sys.exit(2)

    client = GeminiClient(trust_store, options)
    failed = False
    for url in args.url:
        try:
            if not go(client, url):
                failed = True
        except KeyboardInterrupt:
            print("")
            sys.exit(130)
    sys.exit(1 if failed else 0)

if __name__ == '__main__':
    main()
