# tests/test_dioutils.py
import pytest

import dioutils


@pytest.fixture(autouse=True)
def no_debug():
    yield
    dioutils.set_debug(False)


def test_read_config(tmp_path, capsys):
    rcfile = tmp_path / "dioscurirc"
    rcfile.write_text("# my settings\n"
                      "set timeout 5\n"
                      "set deadline 2.5\n"
                      "set debug true\n"
                      "set bogus 1\n"
                      "set max_redirects lots\n"
                      "go example.org\n")
    options = dioutils.read_config(dioutils.default_options(), str(rcfile))
    assert options["timeout"] == 5
    assert options["deadline"] == 2.5
    assert options["debug"] is True
    assert options["max_redirects"] == dioutils._MAX_REDIRECTS
    assert "bogus" not in options
    out = capsys.readouterr().out
    assert "Unrecognised option bogus" in out
    assert "Skipping unknown rc command" in out


def test_missing_config_keeps_defaults(tmp_path):
    options = dioutils.read_config(dioutils.default_options(), str(tmp_path / "none"))
    assert options == dioutils.DEFAULT_OPTIONS


def test_default_options_are_a_copy():
    options = dioutils.default_options()
    options["timeout"] = 1
    assert dioutils.DEFAULT_OPTIONS["timeout"] == 10


def test_debug_output(capsys):
    dioutils.debug("hidden")
    assert capsys.readouterr().out == ""
    dioutils.set_debug(True)
    dioutils.debug("shown")
    assert "[DEBUG] shown" in capsys.readouterr().out


@pytest.mark.parametrize("value, expected", [
    ("12", 12), ("True", True), ("false", False), ("0.5", 0.5), ("text", "text"),
])
def test_parse_option_value(value, expected):
    assert dioutils.parse_option_value(value) == expected
