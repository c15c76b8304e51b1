import sys

import pytest

from burnlink.core.exceptions import ConversionError
from burnlink.services.notebook import html_filename, render_notebook_html

ECHO_AS_HTML = (
    sys.executable,
    "-c",
    "import sys; sys.stdout.write('<html>' + open(sys.argv[-1]).read() + '</html>')",
)


def test_render_returns_converter_stdout():
    html = render_notebook_html(b'{"cells": []}', command=ECHO_AS_HTML)
    assert html == b'<html>{"cells": []}</html>'


@pytest.mark.parametrize(
    "command,timeout",
    [
        ((sys.executable, "-c", "import sys; sys.exit(3)"), 5),
        ((sys.executable, "-c", "import time; time.sleep(5)"), 0.2),
        (("burnlink-no-such-converter",), 5),
    ],
)
def test_render_failures_become_conversion_errors(command, timeout):
    with pytest.raises(ConversionError):
        render_notebook_html(b"{}", timeout=timeout, command=command)


def test_html_filename():
    assert html_filename("analysis.ipynb") == "analysis.html"
    assert html_filename("README") == "README.html"
