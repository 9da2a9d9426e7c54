"""Fetching readable text for runs whose source is a URL."""

from __future__ import annotations

import asyncio
import logging
import re
import socket
from html import unescape
from html.parser import HTMLParser
from ipaddress import ip_address
from typing import List, Optional
from urllib.parse import urlparse

import httpx
from pydantic import BaseModel

logger = logging.getLogger(__name__)

_SKIPPED_TAGS = {"script", "style", "noscript", "nav", "header", "footer", "aside", "form", "svg"}
_BLOCK_TAGS = {
    "p", "h1", "h2", "h3", "h4", "h5", "h6",
    "li", "blockquote", "pre", "article", "section", "div", "br",
}


class ReadableContent(BaseModel):
    title: Optional[str] = None
    content: str = ""


class SourceFetchError(Exception):
    """The URL could not be fetched or yielded no readable text."""


class _ReadableTextParser(HTMLParser):
    def __init__(self) -> None:
        super().__init__(convert_charrefs=True)
        self.title: Optional[str] = None
        self.blocks: List[str] = []
        self._current: List[str] = []
        self._skip_depth = 0
        self._in_title = False

    def _flush(self) -> None:
        text = re.sub(r"\s+", " ", "".join(self._current)).strip()
        if text:
            self.blocks.append(text)
        self._current = []

    def handle_starttag(self, tag, attrs):
        if tag in _SKIPPED_TAGS:
            self._skip_depth += 1
        elif tag == "title":
            self._in_title = True
        elif tag in _BLOCK_TAGS:
            self._flush()

    def handle_endtag(self, tag):
        if tag in _SKIPPED_TAGS:
            self._skip_depth = max(0, self._skip_depth - 1)
        elif tag == "title":
            self._in_title = False
        elif tag in _BLOCK_TAGS:
            self._flush()

    def handle_data(self, data):
        if self._in_title:
            self.title = ((self.title or "") + data).strip() or None
        elif not self._skip_depth:
            self._current.append(data)

    def close(self):
        super().close()
        self._flush()


def extract_readable_text(html: str) -> ReadableContent:
    """Reduce an HTML page to its title and paragraph text."""
    parser = _ReadableTextParser()
    parser.feed(html)
    parser.close()
    return ReadableContent(title=parser.title, content="\n\n".join(parser.blocks))


_MAX_REDIRECTS = 5


def _is_blocked_ip(ip_str: str) -> bool:
    ip = ip_address(ip_str.split("%", 1)[0])
    mapped = getattr(ip, "ipv4_mapped", None)
    if mapped is not None:
        ip = mapped
    return (
        ip.is_loopback or ip.is_private or ip.is_link_local
        or ip.is_multicast or ip.is_reserved or ip.is_unspecified
    )


async def _resolve_dns(hostname: str) -> List[str]:
    loop = asyncio.get_running_loop()
    infos = await loop.getaddrinfo(
        hostname, None, family=socket.AF_UNSPEC, type=socket.SOCK_STREAM
    )
    return [sockaddr[0] for _family, _type, _proto, _name, sockaddr in infos]


async def ensure_public_url(url: str) -> str:
    """Validate ``url`` and return its hostname.

    Only http(s) URLs without embedded credentials whose host resolves
    exclusively to public addresses are accepted.

    Raises:
        SourceFetchError: If any check fails.
    """
    parsed = urlparse(url)
    if parsed.scheme not in {"http", "https"} or not parsed.hostname:
        raise SourceFetchError(f"Unsupported source URL scheme '{parsed.scheme}'")
    if parsed.username or parsed.password:
        raise SourceFetchError("Source URLs with embedded credentials are not allowed")

    hostname = parsed.hostname
    try:
        addresses = [str(ip_address(hostname))]
    except ValueError:
        if hostname.lower() == "localhost" or hostname.lower().endswith(".localhost"):
            raise SourceFetchError("Source URL points at a local host")
        try:
            addresses = await _resolve_dns(hostname)
        except socket.gaierror as exc:
            raise SourceFetchError(f"DNS resolution failed for '{hostname}'") from exc

    for address in addresses:
        if _is_blocked_ip(address):
            logger.warning(f"Blocked source URL host {hostname} resolving to {address}")
            raise SourceFetchError("Source URL resolves to a private or reserved address")
    return hostname


def _verify_peer_ip(resp: httpx.Response) -> None:
    """Re-check the connected peer, which catches DNS rebinding."""
    stream = resp.extensions.get("network_stream")
    if stream is None:
        return
    peername = stream.get_extra_info("peername")
    if peername and _is_blocked_ip(peername[0]):
        raise SourceFetchError("Source URL connected to a private or reserved address")


async def fetch_readable_content(
    url: str,
    timeout: float = 15.0,
    max_bytes: int = 2 * 1024 * 1024,
    client: Optional[httpx.AsyncClient] = None,
) -> ReadableContent:
    """Download ``url`` and return its readable text.

    Redirects are followed by hand so every hop passes
    :func:`ensure_public_url`.

    Raises:
        SourceFetchError: If the URL is not a public http(s) URL, the request
            fails, the body exceeds ``max_bytes`` or no text was extracted.
    """
    owns_client = client is None
    client = client or httpx.AsyncClient(timeout=timeout)
    current = url
    try:
        for _ in range(_MAX_REDIRECTS + 1):
            hostname = await ensure_public_url(current)
            async with client.stream("GET", current, follow_redirects=False) as resp:
                if resp.is_redirect and resp.headers.get("location"):
                    current = str(resp.url.join(resp.headers["location"]))
                    continue
                _verify_peer_ip(resp)
                resp.raise_for_status()
                body = bytearray()
                async for chunk in resp.aiter_bytes():
                    body.extend(chunk)
                    if len(body) > max_bytes:
                        raise SourceFetchError(
                            f"Response exceeds size limit ({max_bytes} bytes)"
                        )
                content_type = resp.headers.get("content-type", "")
                encoding = resp.encoding or "utf-8"
                break
        else:
            raise SourceFetchError("Too many redirects for source URL")
    except httpx.HTTPError as exc:
        raise SourceFetchError(f"Request for source URL failed: {type(exc).__name__}") from exc
    finally:
        if owns_client:
            await client.aclose()

    text = body.decode(encoding, errors="replace")
    if "html" in content_type or text.lstrip().startswith("<"):
        readable = extract_readable_text(text)
    else:
        readable = ReadableContent(content=unescape(text).strip())

    if not readable.content.strip():
        raise SourceFetchError("Source URL returned no readable text")
    logger.info(f"Fetched {len(body)} bytes of source content from {hostname}")
    return readable
