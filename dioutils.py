#!/usr/bin/env python3
# Shared configuration and debugging helpers for Dioscuri.
# They are kept outside dioscuri.py so that the protocol modules
# (tofu, GeminiSession) can use them without importing the client.

import os
import os.path

## Config directories
## We implement our own python-xdg to avoid conflict with existing libraries.
_home = os.path.expanduser('~')
config_home = os.environ.get('XDG_CONFIG_HOME') or \
                os.path.join(_home,'.config')
_CONFIG_DIR = os.path.join(config_home,"dioscuri/")
_old_config = os.path.expanduser("~/.dioscuri/")
## Look for pre-existing config directory, if any
if os.path.exists(_old_config):
    _CONFIG_DIR = _old_config
_CERT_DIR = os.path.join(_CONFIG_DIR,"cert")
_RC_FILE = os.path.join(_CONFIG_DIR,"dioscurirc")

_MAX_REDIRECTS = 5

DEFAULT_OPTIONS = {
    "debug" : False,
    "ipv6" : True,
    # seconds allowed for each blocking socket operation
    "timeout" : 10,
    # seconds allowed to read a whole response
    "deadline" : 60,
    # in MB
    "max_size_download" : 10,
    "max_redirects" : _MAX_REDIRECTS,
}

global _DEBUG
_DEBUG = False

def set_debug(flag):
    global _DEBUG
    _DEBUG = bool(flag)

def debug(debug_text):
    if not _DEBUG:
        return
    debug_text = "\x1b[0;32m[DEBUG] " + debug_text + "\x1b[0m"
    print(debug_text)

def parse_option_value(value):
    """Convert a textual option value the same way `set` does."""
    if value.isnumeric():
        return int(value)
    elif value.lower() == "false":
        return False
    elif value.lower() == "true":
        return True
    else:
        try:
            return float(value)
        except ValueError:
            return value

def set_option(options, line):
    """Apply one "option value" pair to options.
    Returns False if the line could not be used."""
    splitted = line.strip().split(" ", 1)
    if len(splitted) != 2:
        print("Usage: set <option> <value>")
        return False
    option, value = splitted
    if option not in DEFAULT_OPTIONS:
        print("Unrecognised option %s" % option)
        return False
    value = parse_option_value(value.strip())
    if option in ("timeout", "deadline", "max_size_download", "max_redirects"):
        if isinstance(value, bool) or not isinstance(value, (int, float)) or value < 0:
            print("%s requires a positive number, got %s" % (option, value))
            return False
    options[option] = value
    if option == "debug":
        set_debug(value)
    return True

def read_config(options, rcfile=None):
    """Read `set` lines from the rc file into options.
    Other lines and comments are ignored."""
    if not rcfile:
        rcfile = _RC_FILE
    if not os.path.exists(rcfile):
        return options
    debug("Using config %s" % rcfile)
    with open(rcfile, "r") as fp:
        for line in fp:
            line = line.strip()
            if not line or line.startswith("#"):
                continue
            if line.startswith("set "):
                set_option(options, line[4:])
            else:
                print("Skipping unknown rc command \"%s\"" % line)
    return options

def default_options():
    return dict(DEFAULT_OPTIONS)
