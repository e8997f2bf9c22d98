"""Built-in tool definitions."""

from __future__ import annotations

import asyncio
import json
import shutil
from pathlib import Path
from urllib import error as urllib_error
from urllib import parse as urllib_parse
from urllib.request import Request, urlopen

import html2markdown
from loguru import logger

from testsmith.config import Settings
from testsmith.errors import ToolError
from testsmith.tools.catalog import (
    EditFileInput,
    ListFilesInput,
    ReadFileInput,
    RunCommandInput,
    SearchFilesInput,
    UrlExtractInput,
    WebSearchInput,
    WriteFileInput,
)
from testsmith.tools.registry import ToolRegistry

DEFAULT_OLLAMA_WEB_API_BASE = "https://ollama.com/api"
WEB_REQUEST_TIMEOUT_SECONDS = 20
MAX_FETCH_BYTES = 1_000_000
MAX_LISTED_FILES = 500
MAX_SEARCH_ROWS = 200
WEB_USER_AGENT = "testsmith-web-tools/1.0"
SKIPPED_DIRS = frozenset({".git", "node_modules", "vendor", "__pycache__", ".venv"})


def resolve_path(workspace: Path, raw: str) -> Path:
    path = Path(raw).expanduser()
    if path.is_absolute():
        return path
    return workspace / path


def _normalize_url(raw_url: str) -> str | None:
    normalized = raw_url.strip()
    if not normalized:
        return None

    parsed = urllib_parse.urlparse(normalized)
    if parsed.scheme and parsed.netloc:
        if parsed.scheme not in {"http", "https"}:
            return None
        return normalized

    if parsed.scheme == "" and parsed.netloc == "" and parsed.path:
        with_scheme = f"https://{normalized}"
        parsed = urllib_parse.urlparse(with_scheme)
        if parsed.netloc:
            return with_scheme

    return None


def _normalize_api_base(raw_api_base: str) -> str | None:
    normalized = raw_api_base.strip().rstrip("/")
    if not normalized:
        return None

    parsed = urllib_parse.urlparse(normalized)
    if parsed.scheme in {"http", "https"} and parsed.netloc:
        return normalized
    return None


def _html_to_markdown(content: str) -> str:
    rendered = html2markdown.convert(content)
    lines = [line.rstrip() for line in rendered.splitlines()]
    return "\n".join(line for line in lines if line.strip())


def _format_search_results(results: list[object]) -> str:
    lines: list[str] = []
    for idx, item in enumerate(results, start=1):
        if not isinstance(item, dict):
            continue
        title = str(item.get("title") or "(untitled)")
        url = str(item.get("url") or "")
        content = str(item.get("content") or "")
        lines.append(f"{idx}. {title}")
        if url:
            lines.append(f"   {url}")
        if content:
            lines.append(f"   {content}")
    return "\n".join(lines) if lines else "none"


def _walk_files(base: Path, *, recursive: bool) -> list[Path]:
    if not recursive:
        return sorted(path for path in base.iterdir() if not path.name.startswith(".git"))
    found: list[Path] = []
    for path in sorted(base.rglob("*")):
        if any(part in SKIPPED_DIRS for part in path.relative_to(base).parts):
            continue
        found.append(path)
    return found


def fetch_url(raw_url: str) -> tuple[str, str]:
    """Fetch a page and return ``(final_url, decoded body)``."""
    url = _normalize_url(raw_url)
    if not url:
        raise ToolError(f"invalid url: {raw_url}")

    request = Request(  # noqa: S310
        url,
        headers={
            "User-Agent": WEB_USER_AGENT,
            "Accept": "text/html,application/xhtml+xml,application/xml;q=0.9,*/*;q=0.8",
        },
    )
    try:
        with urlopen(request, timeout=WEB_REQUEST_TIMEOUT_SECONDS) as response:  # noqa: S310
            body_bytes = response.read(MAX_FETCH_BYTES + 1)
            charset = response.headers.get_content_charset() or "utf-8"
    except (urllib_error.URLError, OSError) as exc:
        raise ToolError(f"fetch failed for {url}: {exc!s}") from exc

    body = body_bytes[:MAX_FETCH_BYTES].decode(charset, errors="replace")
    if len(body_bytes) > MAX_FETCH_BYTES:
        body += "\n\n[truncated: response exceeded byte limit]"
    return url, body


def register_builtin_tools(registry: ToolRegistry, *, workspace: Path, settings: Settings) -> None:
    """Register file, shell and web tools bound to one working root."""

    register = registry.register

    @register("read_file")
    def read_file(params: ReadFileInput) -> str:
        """Read UTF-8 text with optional offset and limit."""
        file_path = resolve_path(workspace, params.file_path)
        if not file_path.is_file():
            raise ToolError(f"file not found: {params.file_path}")
        lines = file_path.read_text(encoding="utf-8").splitlines()
        start = min(params.offset, len(lines))
        end = len(lines) if params.limit is None else min(len(lines), start + params.limit)
        return "\n".join(lines[start:end])

    @register("write_file")
    def write_file(params: WriteFileInput) -> str:
        """Write UTF-8 text to path, creating parent directory if needed."""
        file_path = resolve_path(workspace, params.file_path)
        file_path.parent.mkdir(parents=True, exist_ok=True)
        file_path.write_text(params.content, encoding="utf-8")
        return f"wrote: {params.file_path} ({len(params.content)} chars)"

    @register("edit_file")
    def edit_file(params: EditFileInput) -> str:
        """Replace one or all occurrences of old text in file."""
        file_path = resolve_path(workspace, params.file_path)
        if not file_path.is_file():
            raise ToolError(f"file not found: {params.file_path}")
        text = file_path.read_text(encoding="utf-8")
        count = text.count(params.old)
        if count == 0:
            raise ToolError("old text not found")
        if params.replace_all:
            updated = text.replace(params.old, params.new)
        else:
            updated = text.replace(params.old, params.new, 1)
            count = 1
        file_path.write_text(updated, encoding="utf-8")
        return f"updated: {params.file_path} occurrences={count}"

    @register("list_files")
    def list_files(params: ListFilesInput) -> str:
        """List directory entries relative to the working root."""
        base = resolve_path(workspace, params.dir_path)
        if not base.is_dir():
            raise ToolError(f"directory not found: {params.dir_path}")
        rows: list[str] = []
        for path in _walk_files(base, recursive=params.recursive):
            relative = path.relative_to(base).as_posix()
            rows.append(f"{relative}/" if path.is_dir() else relative)
            if len(rows) >= MAX_LISTED_FILES:
                rows.append(f"[truncated at {MAX_LISTED_FILES} entries]")
                break
        return "\n".join(rows) or "(empty)"

    @register("search_files")
    def search_files(params: SearchFilesInput) -> str:
        """Scan files recursively and return matching lines."""
        base = resolve_path(workspace, params.directory)
        if not base.is_dir():
            raise ToolError(f"directory not found: {params.directory}")
        rows: list[str] = []
        for path in _walk_files(base, recursive=True):
            if not path.is_file():
                continue
            try:
                content = path.read_text(encoding="utf-8")
            except (OSError, UnicodeDecodeError):
                continue
            for idx, line in enumerate(content.splitlines(), start=1):
                if params.pattern in line:
                    rows.append(f"{path.relative_to(base).as_posix()}:{idx}:{line}")
            if len(rows) >= MAX_SEARCH_ROWS:
                rows = rows[:MAX_SEARCH_ROWS]
                rows.append(f"[truncated at {MAX_SEARCH_ROWS} matches]")
                break
        return "\n".join(rows) if rows else "(no matches)"

    @register("run_command")
    async def run_command(params: RunCommandInput) -> str:
        """Execute bash in the working root. Non-zero exit raises an error."""
        executable = shutil.which("bash") or "bash"
        process = await asyncio.create_subprocess_exec(
            executable,
            "-lc",
            params.command,
            cwd=str(workspace),
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
        )
        try:
            async with asyncio.timeout(params.timeout_seconds):
                stdout_bytes, stderr_bytes = await process.communicate()
        except TimeoutError as exc:
            process.kill()
            await process.wait()
            raise ToolError(f"timeout after {params.timeout_seconds}s: {params.command}") from exc
        stdout_text = (stdout_bytes or b"").decode("utf-8", errors="replace").strip()
        stderr_text = (stderr_bytes or b"").decode("utf-8", errors="replace").strip()
        if process.returncode != 0:
            message = stderr_text or stdout_text or "(no output)"
            raise ToolError(f"exit={process.returncode}: {message}")
        return stdout_text or "(no output)"

    @register("url_extract")
    async def url_extract(params: UrlExtractInput) -> str:
        """Fetch URL and return it in the requested formats."""
        url, body = await asyncio.to_thread(fetch_url, params.url)
        sections: list[str] = []
        for output_format in params.formats:
            if output_format == "html":
                sections.append(body)
                continue
            rendered = _html_to_markdown(body).strip()
            sections.append(rendered or "(empty response body)")
        logger.info("web.fetch url={} formats={}", url, ",".join(params.formats))
        if len(sections) == 1:
            return sections[0]
        return "\n\n".join(f"## {fmt}\n{text}" for fmt, text in zip(params.formats, sections, strict=True))

    def _ollama_search(query: str, limit: int) -> list[object]:
        api_base = _normalize_api_base(settings.ollama_api_base or DEFAULT_OLLAMA_WEB_API_BASE)
        if not api_base:
            raise ToolError("invalid ollama api base url")

        request = Request(  # noqa: S310
            f"{api_base}/web_search",
            data=json.dumps({"query": query, "max_results": limit}).encode("utf-8"),
            headers={
                "Content-Type": "application/json",
                "Authorization": f"Bearer {settings.ollama_api_key}",
                "User-Agent": WEB_USER_AGENT,
            },
            method="POST",
        )
        try:
            with urlopen(request, timeout=WEB_REQUEST_TIMEOUT_SECONDS) as response:  # noqa: S310
                response_body = response.read().decode("utf-8", errors="replace")
        except urllib_error.HTTPError as exc:
            detail = exc.read().decode("utf-8", errors="replace").strip()
            raise ToolError(f"http {exc.code}: {detail}" if detail else f"http {exc.code}") from exc
        except (urllib_error.URLError, OSError) as exc:
            raise ToolError(f"web search failed: {exc!s}") from exc

        try:
            data = json.loads(response_body)
        except json.JSONDecodeError as exc:
            raise ToolError(f"invalid json response: {exc!s}") from exc
        results = data.get("results") if isinstance(data, dict) else None
        return results if isinstance(results, list) else []

    @register("web_search")
    async def web_search(params: WebSearchInput) -> str:
        """Search through Ollama when keyed, otherwise hand back a DuckDuckGo URL."""
        if not settings.ollama_api_key:
            return f"https://duckduckgo.com/?q={urllib_parse.quote_plus(params.query)}"

        results = await asyncio.to_thread(_ollama_search, params.query, params.limit)
        if not results:
            return "none"
        rendered = _format_search_results(results[: params.limit])
        if not params.scrape:
            return rendered

        pages: list[str] = [rendered]
        for item in results[: params.limit]:
            url = item.get("url") if isinstance(item, dict) else None
            if not url:
                continue
            try:
                _, body = await asyncio.to_thread(fetch_url, str(url))
            except ToolError as exc:
                pages.append(f"## {url}\nerror: {exc}")
                continue
            pages.append(f"## {url}\n{_html_to_markdown(body)}")
        return "\n\n".join(pages)
