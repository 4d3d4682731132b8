"""
Parser for raw HTTP requests, as exported from an intercepting proxy.

    POST /api/user?id=1 HTTP/1.1
    Host: example.com
    Content-Type: application/json

    {"name": "x"}
"""

import re
from pathlib import Path
from typing import Dict, List, Optional, Union
from urllib.parse import urlsplit

from .exceptions import RequestParseError
from .models import Request

_HEAD_SEPARATOR = re.compile(r"\r?\n\r?\n")


def parse_raw_request(raw: str, tls: bool = True, port: Optional[int] = None) -> Request:
    """
    Parse a raw HTTP/1.x request into a :class:`Request`.

    The body is kept byte-for-byte (line endings included) so multipart
    boundaries survive. The port defaults to the one in the Host header,
    else 443/80 depending on ``tls``.
    """
    match = _HEAD_SEPARATOR.search(raw)
    if match:
        head, body = raw[:match.start()], raw[match.end():]
    else:
        head, body = raw, ""

    lines = [line for line in re.split(r"\r?\n", head) if line.strip()]
    if not lines:
        raise RequestParseError("Request is empty.")

    parts = lines[0].split()
    if len(parts) < 2:
        raise RequestParseError(f"Invalid request line: {lines[0]!r}")
    method, target = parts[0].upper(), parts[1]

    # Absolute-form targets (proxy style) carry their own scheme and host
    url_parts = urlsplit(target)
    if url_parts.scheme:
        tls = url_parts.scheme == "https"

    headers: Dict[str, List[str]] = {}
    for line in lines[1:]:
        if ":" not in line:
            raise RequestParseError(f"Invalid header line: {line!r}")
        name, value = line.split(":", 1)
        headers.setdefault(name.strip(), []).append(value.strip())

    host_header = next(
        (values[0] for name, values in headers.items() if name.lower() == "host"),
        url_parts.netloc,
    )
    if not host_header:
        raise RequestParseError("Host is not defined in the request.")

    host, _, host_port = host_header.partition(":")
    if port is None:
        port = int(host_port) if host_port.isdigit() else (443 if tls else 80)

    return Request(
        host=host,
        port=port,
        tls=tls,
        method=method,
        path=url_parts.path or "/",
        query=url_parts.query,
        headers=headers,
        body=body,
    )


def load_raw_request(path: Union[str, Path], tls: bool = True,
                     port: Optional[int] = None) -> Request:
    """Read and parse a raw request file."""
    with open(path, "r", encoding="utf-8", errors="ignore", newline="") as f:
        raw = f.read()
    return parse_raw_request(raw, tls=tls, port=port)
