"""
Async file helpers.

Writes go to a temporary sibling first and are renamed over the target
only once complete, so a crash or cancellation never leaves a truncated
file under the final name.
"""

import os
import uuid
from pathlib import Path
from typing import Optional

import aiofiles


def _temp_sibling(path: Path) -> Path:
    return path.with_name(f".{path.name}.{uuid.uuid4().hex[:8]}.part")


async def write_bytes_atomic(path: Path, data: bytes) -> None:
    """Write bytes to ``path`` atomically, creating parent directories."""
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    temp = _temp_sibling(path)
    try:
        async with aiofiles.open(temp, "wb") as f:
            await f.write(data)
        os.replace(temp, path)
    except BaseException:
        try:
            temp.unlink()
        except FileNotFoundError:
            pass
        raise


async def write_text_atomic(path: Path, text: str) -> None:
    """Write UTF-8 text to ``path`` atomically."""
    await write_bytes_atomic(path, text.encode("utf-8"))


async def read_text(path: Path) -> Optional[str]:
    """Read a UTF-8 file, or None if it does not exist."""
    try:
        async with aiofiles.open(path, "r", encoding="utf-8") as f:
            return await f.read()
    except FileNotFoundError:
        return None


def short_asset_name(url: str) -> str:
    """Condensed asset name for status lines."""
    name = url
    if len(url) > 50:
        name = url[url.rfind("/") + 1:].split("?")[0]
    if len(name) > 40:
        name = name[:37] + "..."
    return name
