"""
DevTools endpoint discovery.

Pure parsers that turn launch arguments and captured process output into a
remote-debugging endpoint for attach fallback. The patterns are versioned
separately from the orchestrator so changes to them can be tracked on their
own.
"""

import re
from typing import Iterable, Optional, Sequence

from pydantic import BaseModel

ENDPOINT_PATTERNS_VERSION = 1

REMOTE_DEBUGGING_PORT_FLAG = "--remote-debugging-port="
DEFAULT_DEBUG_HOST = "127.0.0.1"

# Known fragility: any log line that looks like a banner or a local URL is taken as the endpoint.
DEVTOOLS_BANNER_PATTERN = re.compile(r"DevTools listening on (ws://[^\s]+)", re.IGNORECASE)
LOCAL_CDP_URL_PATTERN = re.compile(r"(https?://(127\.0\.0\.1|localhost):\d+)", re.IGNORECASE)


class AttachEndpoint(BaseModel):
    """Endpoint candidate for a CDP attach."""

    cdp_url: Optional[str] = None
    ws_endpoint: Optional[str] = None

    def is_empty(self) -> bool:
        return not (self.cdp_url or self.ws_endpoint)


def parse_remote_debugging_port(args: Sequence[str]) -> Optional[int]:
    """Port from the first ``--remote-debugging-port=<n>`` argument, if valid."""
    for arg in args:
        if arg.startswith(REMOTE_DEBUGGING_PORT_FLAG):
            port_text = arg[len(REMOTE_DEBUGGING_PORT_FLAG):]
            try:
                port = int(port_text)
            except ValueError:
                return None
            return port if port > 0 else None
    return None


def cdp_url_for_port(port: int, host: str = DEFAULT_DEBUG_HOST) -> str:
    return f"http://{host}:{port}"


def cdp_url_from_args(args: Sequence[str]) -> Optional[str]:
    port = parse_remote_debugging_port(args)
    return None if port is None else cdp_url_for_port(port)


def parse_devtools_endpoint(text: str) -> AttachEndpoint:
    """
    Scan process output for a DevTools endpoint.

    A ``DevTools listening on ws://...`` banner wins over a bare local
    http URL. Returns an empty endpoint when nothing matches.
    """
    banner = DEVTOOLS_BANNER_PATTERN.search(text)
    if banner:
        return AttachEndpoint(ws_endpoint=banner.group(1))

    local_url = LOCAL_CDP_URL_PATTERN.search(text)
    if local_url:
        return AttachEndpoint(cdp_url=local_url.group(1))

    return AttachEndpoint()


def _join_lines(line_groups: Sequence[Iterable[str]]) -> str:
    return "\n".join(line for group in line_groups for line in group if isinstance(line, str))


def parse_endpoint_from_lines(*line_groups: Iterable[str]) -> AttachEndpoint:
    """Join line groups in order and scan them with parse_devtools_endpoint."""
    return parse_devtools_endpoint(_join_lines(line_groups))


def parse_banner_from_lines(*line_groups: Iterable[str]) -> Optional[str]:
    """Websocket endpoint from a DevTools banner only; local http URLs are ignored."""
    banner = DEVTOOLS_BANNER_PATTERN.search(_join_lines(line_groups))
    return banner.group(1) if banner else None


def derive_attach_endpoint(
    explicit_cdp_url: Optional[str] = None,
    explicit_ws_endpoint: Optional[str] = None,
    launch_args: Sequence[str] = (),
    output_lines: Iterable[str] = (),
    banner_lines: Iterable[str] = (),
) -> AttachEndpoint:
    """
    Resolve the attach endpoint in priority order.

    cdp_url: explicit override, then the remote-debugging-port argument,
    then a local URL found in ``output_lines``. ws_endpoint: explicit
    override, then a DevTools banner found in ``output_lines``, then one found
    in ``banner_lines``. Output of other processes (a dev server printing its
    own localhost URL) belongs in ``banner_lines``.

    Args:
        explicit_cdp_url: Caller-provided cdp URL
        explicit_ws_endpoint: Caller-provided websocket endpoint
        launch_args: Composed launch arguments
        output_lines: Stdout/stderr captured from the application launch
        banner_lines: Other captured output, scanned for the banner only
    """
    scanned = parse_endpoint_from_lines(output_lines)
    return AttachEndpoint(
        cdp_url=explicit_cdp_url or cdp_url_from_args(launch_args) or scanned.cdp_url,
        ws_endpoint=explicit_ws_endpoint or scanned.ws_endpoint or parse_banner_from_lines(banner_lines),
    )
