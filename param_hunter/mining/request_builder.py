"""
Request variant builder.

Produces a new request with a batch of parameters injected into the query
string, the header set or the body. The target is never modified.
"""

import json
import re
from enum import Enum
from typing import Dict, List, Optional, Sequence, Tuple

from ..core.exceptions import UnsupportedBodyError
from ..core.helpers import encode_component
from ..core.models import AttackLocation, Parameter, Request, RequestContext


class BodyEncoding(str, Enum):
    """Body formats parameters can be merged into."""
    JSON = "json"
    URLENCODED = "urlencoded"
    MULTIPART = "multipart"


_BOUNDARY_PARAM = re.compile(r'boundary=(?:"([^"]+)"|([^;\s]+))', re.IGNORECASE)

# Fixed overhead of one injected parameter, per format
_QUERY_PARAM_OVERHEAD = 2  # "&" and "="
_JSON_PARAM_OVERHEAD = 6  # quotes, colon and comma
_MULTIPART_PARAM_OVERHEAD = 46  # boundary line framing and Content-Disposition
_DEFAULT_BOUNDARY_LENGTH = 40


def _is_json_object(body: str) -> bool:
    try:
        return isinstance(json.loads(body), dict)
    except ValueError:
        return False


def _is_urlencoded(body: str) -> bool:
    """True for `name=value` pairs joined by `&`, allowing one trailing `&`."""
    pairs = body.split("&")
    if len(pairs) > 1 and pairs[-1] == "":
        pairs.pop()
    return all(pair.count("=") == 1 for pair in pairs)


def _sniff_boundary(body: str) -> Optional[str]:
    first_line = body.lstrip("\r\n").split("\n", 1)[0].rstrip("\r")
    if first_line.startswith("--") and "content-disposition: form-data" in body.lower():
        return first_line[2:]
    return None


def detect_body_encoding(target: Request) -> Tuple[BodyEncoding, Optional[str]]:
    """
    Classify the target's body.

    The declared content type wins and must be JSON, URL-encoded or multipart;
    without one the body is sniffed. An empty body is treated as an empty
    JSON object.

    Returns:
        The encoding and, for multipart bodies, the boundary.

    Raises:
        UnsupportedBodyError: if the body fits none of the supported formats.
    """
    declared = (target.header("content-type") or [""])[0]
    content_type = declared.lower()
    body = target.body or ""

    if "multipart/form-data" in content_type:
        match = _BOUNDARY_PARAM.search(declared)
        boundary = (match.group(1) or match.group(2)) if match else _sniff_boundary(body)
        if not boundary:
            raise UnsupportedBodyError("Multipart body without a boundary")
        return BodyEncoding.MULTIPART, boundary

    if "json" in content_type:
        if body.strip() and not _is_json_object(body):
            raise UnsupportedBodyError("JSON body must be an object to add parameters")
        return BodyEncoding.JSON, None

    if "x-www-form-urlencoded" in content_type:
        return BodyEncoding.URLENCODED, None

    if content_type:
        raise UnsupportedBodyError(f"Unsupported body content type: {declared}")

    if not body.strip() or _is_json_object(body):
        return BodyEncoding.JSON, None

    boundary = _sniff_boundary(body)
    if boundary:
        return BodyEncoding.MULTIPART, boundary

    if _is_urlencoded(body):
        return BodyEncoding.URLENCODED, None

    raise UnsupportedBodyError("Body must be either JSON, URL-encoded or multipart form data")


def encode_name(parameter: Parameter) -> str:
    return parameter.name if parameter.verbatim else encode_component(parameter.name)


def _urlencode(parameters: Sequence[Parameter]) -> str:
    return "&".join(
        f"{encode_name(p)}={encode_component(p.value)}" for p in parameters
    )


def _without_header(headers: Dict[str, List[str]], name: str) -> Dict[str, List[str]]:
    wanted = name.lower()
    return {key: list(values) for key, values in headers.items() if key.lower() != wanted}


def _header_key(headers: Dict[str, List[str]], name: str, default: str) -> str:
    wanted = name.lower()
    return next((key for key in headers if key.lower() == wanted), default)


class RequestBuilder:
    """
    Builds probes for one target and attack location.

    The body classification is computed once and reused for every probe, so
    an unsupported body fails the first build rather than a random later one.
    """

    def __init__(self, target: Request, location: AttackLocation,
                 update_content_length: bool = True):
        self.target = target
        self.location = AttackLocation(location)
        self.update_content_length = update_content_length
        self._body_format: Optional[Tuple[BodyEncoding, Optional[str]]] = None

    @property
    def body_encoding(self) -> BodyEncoding:
        return self._detect()[0]

    @property
    def multipart_boundary(self) -> Optional[str]:
        return self._detect()[1]

    def _detect(self) -> Tuple[BodyEncoding, Optional[str]]:
        if self._body_format is None:
            self._body_format = detect_body_encoding(self.target)
        return self._body_format

    def build(self, parameters: Sequence[Parameter],
              context: RequestContext = RequestContext.DISCOVERY) -> Request:
        """Return a new request carrying ``parameters``."""
        headers = {key: list(values) for key, values in self.target.headers.items()}
        query = self.target.query
        body = self.target.body or ""

        if self.location == AttackLocation.QUERY:
            if parameters:
                injected = _urlencode(parameters)
                query = f"{query}&{injected}" if query else injected

        elif self.location == AttackLocation.HEADERS:
            for parameter in parameters:
                headers = _without_header(headers, parameter.name)
                headers[parameter.name] = [parameter.value]

        elif self.location == AttackLocation.BODY:
            body, headers = self._inject_body(body, headers, parameters)

        if self.update_content_length:
            key = _header_key(headers, "content-length", "Content-Length")
            headers = _without_header(headers, "content-length")
            if body:
                headers[key] = [str(len(body.encode("utf-8")))]

        return self.target.replace(query=query, headers=headers, body=body, context=context)

    def _inject_body(self, body: str, headers: Dict[str, List[str]],
                     parameters: Sequence[Parameter]) -> Tuple[str, Dict[str, List[str]]]:
        encoding, boundary = self._detect()

        if encoding == BodyEncoding.JSON:
            try:
                document = json.loads(body) if body.strip() else {}
            except ValueError as e:
                raise UnsupportedBodyError(f"Invalid JSON body: {e}") from e
            for parameter in parameters:
                document[parameter.name] = parameter.value
            body = json.dumps(document, separators=(",", ":"), ensure_ascii=False)
            if self.target.header("content-type") is None:
                headers["Content-Type"] = ["application/json"]

        elif encoding == BodyEncoding.URLENCODED:
            if parameters:
                injected = _urlencode(parameters)
                body = f"{body}&{injected}" if body else injected
            if self.target.header("content-type") is None:
                headers["Content-Type"] = ["application/x-www-form-urlencoded"]

        else:
            body = self._inject_multipart(body, boundary, parameters)

        return body, headers

    @staticmethod
    def _inject_multipart(body: str, boundary: str, parameters: Sequence[Parameter]) -> str:
        newline = "\r\n" if "\r\n" in body or not body else "\n"
        parts = []
        for parameter in parameters:
            name = parameter.name.replace('"', "%22")
            parts.append(
                f"--{boundary}{newline}"
                f'Content-Disposition: form-data; name="{name}"{newline}'
                f"{newline}{parameter.value}{newline}"
            )
        injected = "".join(parts)

        terminator = f"--{boundary}--"
        index = body.rfind(terminator)
        if index == -1:
            return f"{body}{injected}{terminator}{newline}"
        return body[:index] + injected + body[index:]

    def base_cost(self) -> int:
        """Size already used before any parameter is added."""
        if self.location == AttackLocation.QUERY:
            return len(self.target.url)
        return 2

    def parameter_cost(self, parameter: Parameter) -> int:
        """Approximate serialized size one parameter adds to a probe."""
        if self.location == AttackLocation.HEADERS:
            return 1

        size = len(encode_name(parameter)) + len(encode_component(parameter.value))
        if self.location == AttackLocation.QUERY:
            return _QUERY_PARAM_OVERHEAD + size

        encoding = self.body_encoding
        if encoding == BodyEncoding.MULTIPART:
            boundary = len(self.multipart_boundary or "") or _DEFAULT_BOUNDARY_LENGTH
            return _MULTIPART_PARAM_OVERHEAD + boundary + size
        if encoding == BodyEncoding.URLENCODED:
            return _QUERY_PARAM_OVERHEAD + size
        return _JSON_PARAM_OVERHEAD + size


def build_request(target: Request, parameters: Sequence[Parameter],
                  location: AttackLocation, update_content_length: bool = True,
                  context: RequestContext = RequestContext.DISCOVERY) -> Request:
    """Build a single probe without keeping a builder around."""
    builder = RequestBuilder(target, location, update_content_length)
    return builder.build(parameters, context)
