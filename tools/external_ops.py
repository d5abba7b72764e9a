"""Network tools: webfetch, websearch, codesearch, imagefetch.

Each call carries its own timeout; failures raise ToolExecutionError so the
model sees them as tool errors.
"""

import base64
import json
import logging
import re
import urllib.error
import urllib.request
from datetime import datetime
from typing import Any, Dict, Optional

from config import tool_config
from tools._common import ToolExecutionError

logger = logging.getLogger(__name__)

_BROWSER_UA = (
    "Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/131.0.0.0 Safari/537.36"
)


def _normalize_url(url: str) -> str:
    url = (url or "").strip()
    if not url:
        raise ToolExecutionError("url is required")
    if not url.startswith(("http://", "https://")):
        url = "https://" + url
    return url


def _is_timeout(exc: BaseException) -> bool:
    if isinstance(exc, TimeoutError):
        return True
    return isinstance(exc, urllib.error.URLError) and isinstance(exc.reason, TimeoutError)


def _read_capped(resp: Any, max_bytes: int, label: str) -> bytes:
    length = resp.headers.get("Content-Length")
    if length and length.isdigit() and int(length) > max_bytes:
        raise ToolExecutionError(f"{label} too large (exceeds {max_bytes // (1024 * 1024)}MB limit)")
    body = resp.read(max_bytes + 1)
    if len(body) > max_bytes:
        raise ToolExecutionError(f"{label} too large (exceeds {max_bytes // (1024 * 1024)}MB limit)")
    return body


# --- HTML cleanup ---

_STRIP_BLOCKS = [
    re.compile(r"<script[\s\S]*?</script>", re.IGNORECASE),
    re.compile(r"<style[\s\S]*?</style>", re.IGNORECASE),
    re.compile(r"<noscript[\s\S]*?</noscript>", re.IGNORECASE),
    re.compile(r"<nav[\s\S]*?</nav>", re.IGNORECASE),
    re.compile(r"<footer[\s\S]*?</footer>", re.IGNORECASE),
    re.compile(r"<!--[\s\S]*?-->"),
]

_ENTITIES = [
    ("&lt;", "<"), ("&gt;", ">"), ("&quot;", '"'), ("&#39;", "'"), ("&nbsp;", " "), ("&amp;", "&"),
]


def _strip_noise(html: str) -> str:
    for pat in _STRIP_BLOCKS:
        html = pat.sub("", html)
    return html


def _decode_entities(text: str) -> str:
    for entity, char in _ENTITIES:
        text = text.replace(entity, char)
    return text


def html_to_text(html: str) -> str:
    text = _strip_noise(html)
    text = re.sub(r"<[^>]+>", " ", text)
    text = _decode_entities(text)
    return re.sub(r"\s+", " ", text).strip()


def html_to_markdown(html: str) -> str:
    """Minimal HTML to markdown: headings, code, links, emphasis, lists."""
    md = _strip_noise(html)
    for level in range(1, 7):
        md = re.sub(rf"<h{level}[^>]*>([\s\S]*?)</h{level}>",
                    lambda m, lv=level: f"\n{'#' * lv} {m.group(1)}\n", md, flags=re.IGNORECASE)
    md = re.sub(r"<pre[^>]*><code[^>]*>([\s\S]*?)</code></pre>", r"\n```\n\1\n```\n", md, flags=re.IGNORECASE)
    md = re.sub(r"<pre[^>]*>([\s\S]*?)</pre>", r"\n```\n\1\n```\n", md, flags=re.IGNORECASE)
    md = re.sub(r"<code[^>]*>([\s\S]*?)</code>", r"`\1`", md, flags=re.IGNORECASE)
    md = re.sub(r'<a[^>]+href="([^"]*)"[^>]*>([\s\S]*?)</a>', r"[\2](\1)", md, flags=re.IGNORECASE)
    md = re.sub(r"<(strong|b)[^>]*>([\s\S]*?)</\1>", r"**\2**", md, flags=re.IGNORECASE)
    md = re.sub(r"<(em|i)[^>]*>([\s\S]*?)</\1>", r"*\2*", md, flags=re.IGNORECASE)
    md = re.sub(r"<li[^>]*>([\s\S]*?)</li>", r"- \1\n", md, flags=re.IGNORECASE)
    md = re.sub(r"<br\s*/?>", "\n", md, flags=re.IGNORECASE)
    md = re.sub(r"</p>", "\n\n", md, flags=re.IGNORECASE)
    md = re.sub(r"<p[^>]*>", "", md, flags=re.IGNORECASE)
    md = re.sub(r"<[^>]+>", "", md)
    md = _decode_entities(md)
    return re.sub(r"\n{3,}", "\n\n", md).strip()


# --- WebFetch ---

def web_fetch(url: str, format: str = "markdown", timeout: Optional[float] = None) -> str:
    """Fetch a URL and return cleaned markdown or plain text."""
    url = _normalize_url(url)
    to = min(timeout or tool_config.webfetch_timeout, tool_config.webfetch_max_timeout)
    req = urllib.request.Request(url, headers={
        "User-Agent": _BROWSER_UA,
        "Accept": "text/html,application/xhtml+xml,application/xml;q=0.9,*/*;q=0.8",
        "Accept-Language": "en-US,en;q=0.9",
    })
    try:
        with urllib.request.urlopen(req, timeout=to) as resp:
            body = _read_capped(resp, tool_config.webfetch_max_bytes, "Response")
            charset = resp.headers.get_content_charset() or "utf-8"
    except urllib.error.HTTPError as e:
        raise ToolExecutionError(f"Request failed with status {e.code}") from e
    except (urllib.error.URLError, TimeoutError) as e:
        if _is_timeout(e):
            raise ToolExecutionError(f"Fetch timed out after {to:g}s") from e
        raise ToolExecutionError(f"Fetch failed: {getattr(e, 'reason', e)}") from e

    html = body.decode(charset, errors="replace")
    content = html_to_text(html) if format == "text" else html_to_markdown(html)
    return f"Content from {url}:\n\n{content}"


# --- Exa MCP (websearch / codesearch) ---

def _exa_call(tool_name: str, arguments: Dict[str, Any], timeout: float, label: str) -> Optional[str]:
    """JSON-RPC tools/call against the Exa MCP endpoint; returns first text content."""
    payload = {
        "jsonrpc": "2.0",
        "id": 1,
        "method": "tools/call",
        "params": {"name": tool_name, "arguments": arguments},
    }
    req = urllib.request.Request(
        tool_config.exa_mcp_url,
        data=json.dumps(payload).encode("utf-8"),
        method="POST",
        headers={
            "accept": "application/json, text/event-stream",
            "content-type": "application/json",
        },
    )
    try:
        with urllib.request.urlopen(req, timeout=timeout) as resp:
            text = resp.read().decode("utf-8", errors="replace")
    except urllib.error.HTTPError as e:
        detail = e.read().decode("utf-8", errors="replace") if e.fp else ""
        raise ToolExecutionError(f"{label} error ({e.code}): {detail}") from e
    except (urllib.error.URLError, TimeoutError) as e:
        if _is_timeout(e):
            raise ToolExecutionError(f"{label} request timed out") from e
        raise ToolExecutionError(f"{label} failed: {getattr(e, 'reason', e)}") from e

    for line in text.split("\n"):
        if not line.startswith("data: "):
            continue
        try:
            data = json.loads(line[6:])
        except ValueError:
            logger.debug(f"{label}: skipping malformed SSE line")
            continue
        content = (data.get("result") or {}).get("content") or []
        if content and content[0].get("text"):
            return content[0]["text"]
    return None


def web_search(query: str) -> str:
    """Search the web through Exa."""
    if not (query or "").strip():
        raise ToolExecutionError("query is required")
    result = _exa_call(
        "web_search_exa",
        {"query": query, "type": "auto", "numResults": 8, "livecrawl": "fallback"},
        tool_config.websearch_timeout,
        "Web search",
    )
    return result or "No search results found. Please try a different query."


def code_search(query: str, tokensNum: Optional[int] = None) -> str:
    """Fetch code context for libraries/SDKs through Exa."""
    if not (query or "").strip():
        raise ToolExecutionError("query is required")
    result = _exa_call(
        "get_code_context_exa",
        {"query": query, "tokensNum": tokensNum or 5000},
        tool_config.codesearch_timeout,
        "Code search",
    )
    return result or (
        "No code snippets or documentation found. Please try a different query, be more "
        "specific about the library or programming concept, or check the spelling of framework names."
    )


def websearch_description() -> str:
    return (
        "Search the web for information using Exa AI. "
        "Returns content from the most relevant websites. "
        "Use for current events, recent data, or anything beyond your knowledge cutoff. "
        "To read a specific URL, use the webfetch tool instead. "
        f"The current year is {datetime.now().year}."
    )


# --- ImageFetch ---

def image_fetch(url: str) -> Dict[str, Any]:
    """Download an image. Returns {base64, mime, url, sizeKB}."""
    url = _normalize_url(url)
    to = tool_config.imagefetch_timeout
    req = urllib.request.Request(url, headers={"User-Agent": _BROWSER_UA, "Accept": "image/*,*/*"})
    try:
        with urllib.request.urlopen(req, timeout=to) as resp:
            content_type = resp.headers.get("Content-Type") or ""
            if not content_type.startswith("image/"):
                raise ToolExecutionError(f"URL did not return an image (content-type: {content_type})")
            body = _read_capped(resp, tool_config.imagefetch_max_bytes, "Image")
    except urllib.error.HTTPError as e:
        raise ToolExecutionError(f"Request failed with status {e.code}") from e
    except (urllib.error.URLError, TimeoutError) as e:
        if _is_timeout(e):
            raise ToolExecutionError(f"Image fetch timed out after {to:g}s") from e
        raise ToolExecutionError(f"Image fetch failed: {getattr(e, 'reason', e)}") from e

    return {
        "base64": base64.b64encode(body).decode("ascii"),
        "mime": content_type.split(";")[0].strip(),
        "url": url,
        "sizeKB": round(len(body) / 1024),
    }


def image_model_output(supports_vision: bool):
    """Build the imagefetch output transform for the active model."""

    def _transform(output: Dict[str, Any]) -> Any:
        if supports_vision:
            return [
                {"type": "image", "media_type": output["mime"], "data": output["base64"]},
                {"type": "text", "text": f"Image fetched from {output['url']}"},
            ]
        return (
            f"Image fetched from {output['url']} ({output['mime']}, {output['sizeKB']}KB). "
            "This model does not support vision; the image is available in the chat UI "
            "for the user to view."
        )

    return _transform
