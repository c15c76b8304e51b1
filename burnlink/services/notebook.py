from __future__ import annotations

import logging
import os
import subprocess
import tempfile

from burnlink.config import CONVERSION_TIMEOUT_SECONDS
from burnlink.core.exceptions import ConversionError

logger = logging.getLogger("burnlink.notebook")


def render_notebook_html(
    notebook: bytes,
    timeout: float = CONVERSION_TIMEOUT_SECONDS,
    command: tuple[str, ...] = ("jupyter", "nbconvert"),
) -> bytes:
    """Render an .ipynb document to standalone HTML with ``jupyter nbconvert``."""
    with tempfile.TemporaryDirectory(prefix="ipynb-conversion-") as temp_dir:
        notebook_path = os.path.join(temp_dir, "notebook.ipynb")
        with open(notebook_path, "wb") as f:
            f.write(notebook)
        try:
            completed = subprocess.run(
                [*command, "--to", "html", "--stdout", notebook_path],
                capture_output=True,
                timeout=timeout,
                check=True,
            )
        except subprocess.TimeoutExpired as exc:
            logger.error("event=conversion_timeout timeout_seconds=%s", timeout)
            raise ConversionError() from exc
        except subprocess.CalledProcessError as exc:
            logger.error(
                "event=conversion_failure exit_code=%s stderr=%s",
                exc.returncode,
                exc.stderr.decode("utf-8", "replace")[-500:] if exc.stderr else "",
            )
            raise ConversionError() from exc
        except OSError as exc:
            logger.error("event=conversion_unavailable error=%s", exc)
            raise ConversionError() from exc
    return completed.stdout


def html_filename(filename: str) -> str:
    return os.path.splitext(filename)[0] + ".html"
