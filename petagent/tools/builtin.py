"""Built-in tools available to every AgentRuntime."""
from __future__ import annotations

import asyncio
import webbrowser
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, List, Optional
from urllib.parse import urlparse

from petagent.tools.base import ParameterKind, ParameterSpec, Tool, define_tool

MAX_READ_CHARS = 20000


def _current_time(timezone: Optional[str] = None) -> Dict[str, Any]:
    now = datetime.now().astimezone()
    return {
        "iso": now.isoformat(timespec="seconds"),
        "weekday": now.strftime("%A"),
        "timezone": timezone or str(now.tzinfo),
    }


async def _file_read(path: str) -> Dict[str, Any]:
    target = Path(path).expanduser()
    if not target.is_file():
        raise FileNotFoundError(f"File not found: {path}")
    content = await asyncio.to_thread(target.read_text, encoding="utf-8")
    truncated = len(content) > MAX_READ_CHARS
    return {
        "path": str(target),
        "content": content[:MAX_READ_CHARS],
        "truncated": truncated,
    }


async def _file_write(path: str, content: str, append: Optional[bool] = False) -> Dict[str, Any]:
    target = Path(path).expanduser()
    target.parent.mkdir(parents=True, exist_ok=True)

    def write() -> int:
        mode = "a" if append else "w"
        with target.open(mode, encoding="utf-8") as handle:
            return handle.write(content)

    written = await asyncio.to_thread(write)
    return {"path": str(target), "written": written}


def _file_exists(path: str) -> Dict[str, Any]:
    target = Path(path).expanduser()
    return {"path": str(target), "exists": target.exists(), "is_dir": target.is_dir()}


async def _open_url(url: str) -> Dict[str, Any]:
    scheme = urlparse(url).scheme
    if scheme not in {"http", "https"}:
        raise ValueError(f"Unsupported URL scheme: {scheme or '<none>'}")
    opened = await asyncio.to_thread(webbrowser.open, url)
    return {"url": url, "opened": bool(opened)}


def create_builtin_tools() -> List[Tool]:
    """Return fresh instances of the built-in tool set."""
    return [
        define_tool(
            "current_time",
            "Get the current local date and time",
            {
                "timezone": ParameterSpec(ParameterKind.STRING, "Optional timezone label"),
            },
            _current_time,
        ),
        define_tool(
            "file_read",
            "Read a UTF-8 text file from the local disk",
            {"path": ParameterSpec(ParameterKind.STRING, "Path of the file", required=True)},
            _file_read,
        ),
        define_tool(
            "file_write",
            "Write text to a local file",
            {
                "path": ParameterSpec(ParameterKind.STRING, "Path of the file", required=True),
                "content": ParameterSpec(ParameterKind.STRING, "Text to write", required=True),
                "append": ParameterSpec(ParameterKind.BOOLEAN, "Append instead of overwrite", default=False),
            },
            _file_write,
            requires_confirmation=True,
        ),
        define_tool(
            "file_exists",
            "Check whether a local path exists",
            {"path": ParameterSpec(ParameterKind.STRING, "Path to check", required=True)},
            _file_exists,
        ),
        define_tool(
            "open_url",
            "Open an http(s) URL in the default browser",
            {"url": ParameterSpec(ParameterKind.STRING, "URL to open", required=True)},
            _open_url,
            requires_confirmation=True,
        ),
    ]
