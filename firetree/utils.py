import json
import logging
import logging.config
from pathlib import Path
from urllib.parse import parse_qsl, urlencode, urlsplit, urlunsplit

from colorama import just_fix_windows_console


def jformat(value):
    return json.dumps(value, indent=4, default=str)


## Never log tokens
REDACTED_PARAMS = ("auth", "access_token")

def redact_url(url):
    parts = urlsplit(url)
    if not parts.query:
        return url
    query = [(k, "***" if k in REDACTED_PARAMS else v) for k, v in parse_qsl(parts.query, keep_blank_values=True)]
    return urlunsplit(parts._replace(query=urlencode(query, safe="*")))


class ColorFormatter(logging.Formatter):
    """
    Wraps each formatted record in an ANSI color picked by its level, so stream
    failures (ERROR) and skipped frames (WARNING) stand out from request
    tracing (DEBUG). Referenced by logconfig.json and used by setup_logging()
    when no config file is found.
    """
    # Define ANSI escape codes for colors
    COLORS = {
        logging.INFO: "\033[97m",    # Default (gray)
        logging.WARNING: "\033[93m",  # Yellow
        logging.ERROR: "\033[31m",    # Red
        logging.CRITICAL: "\033[1;31m",  # Bright Red
        logging.DEBUG: "\033[37m",    # Grey
    }
    RESET = "\033[0m"

    def format(self, record):
        color = self.COLORS.get(record.levelno, self.RESET)
        message = super().format(record)
        return f"{color}{message}{self.RESET}"


def setup_logging(path="logconfig.json", level=None):
    """
    Configure logging from a dictConfig JSON file, e.g. the logconfig.json
    shipped with the package. Falls back to a colored stream handler if the
    file does not exist.
    """
    just_fix_windows_console()
    path = Path(path)
    if path.is_file():
        with path.open("r", encoding="utf-8") as f:
            logconfig = json.load(f)
        logging.config.dictConfig(logconfig)
    else:
        handler = logging.StreamHandler()
        handler.setFormatter(ColorFormatter("%(asctime)s %(name)s %(levelname)s: %(message)s"))
        root = logging.getLogger()
        root.addHandler(handler)
    if level is not None:
        logging.getLogger().setLevel(level)
    return logging.getLogger("firetree")
