"""Request debug log — raw-HTTP-style dumps of every injected request."""

import json
from urllib.parse import urlsplit

from injectscan.core.errors import LoggingError
from injectscan.core.models import RequestDebugInfo

# written first, in this order
_LEADING_HDRS = ("Content-Type", "Cookie", "Content-Length", "User-Agent")
_SEPARATOR = "__________"


def format_entry(info: RequestDebugInfo) -> str:
    lines = [f"{info.method} {info.url} HTTP/1.1"]

    host = urlsplit(info.url).netloc
    if host:
        lines.append(f"Host: {host}")

    for name in _LEADING_HDRS:
        if name in info.headers:
            lines.append(f"{name}: {info.headers[name]}")
    for name, value in info.headers.items():
        if name in _LEADING_HDRS or name.lower() == "host":
            continue
        lines.append(f"{name}: {value}")

    entry = "\n".join(lines) + "\n"
    if info.body is not None:
        entry += "\n" + _pretty_body(info.body)
    return entry + f"\n{_SEPARATOR}\n\n"


def _pretty_body(body: str) -> str:
    try:
        return json.dumps(json.loads(body), indent=2)
    except ValueError:
        return body


class RequestLogger:
    def __init__(self, debug_file: str, enabled: bool = True):
        self.debug_file = str(debug_file)
        self.enabled = enabled

    def log_request(self, info: RequestDebugInfo) -> None:
        if not self.enabled:
            return
        entry = format_entry(info)
        try:
            with open(self.debug_file, 'a', encoding='utf-8') as f:
                f.write(entry)
        except OSError as exc:
            raise LoggingError(
                f"Failed to write to debug log file {self.debug_file}: {exc}") from exc

    def clear(self) -> None:
        if not self.enabled:
            return
        try:
            with open(self.debug_file, 'w', encoding='utf-8'):
                pass
        except OSError as exc:
            raise LoggingError(
                f"Failed to clear debug log file {self.debug_file}: {exc}") from exc
