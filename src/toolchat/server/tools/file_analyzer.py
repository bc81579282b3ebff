"""Directory analysis tool."""

import asyncio
import logging
from collections import Counter
from pathlib import Path
from typing import Any

from toolchat.server.tools.base import ServerTool, ToolExecutionError
from toolchat.tools.types import ParameterSpec

logger = logging.getLogger(__name__)

LARGEST_FILES = 5


class FileAnalyzerTool(ServerTool):
    """Reports size, file count and extension statistics for a directory."""

    name = "file_analyzer"
    description = (
        "Analyze the files under a directory: total size, file count, "
        "counts per extension and the largest files"
    )
    parameters = {
        "path": ParameterSpec(
            type="string", required=True, description="Directory (or file) to analyze"
        ),
        "recursive": ParameterSpec(
            type="boolean", description="Descend into subdirectories (default false)"
        ),
    }

    async def execute(self, arguments: dict[str, Any]) -> dict[str, Any]:
        path = Path(arguments["path"]).expanduser()
        recursive = bool(arguments.get("recursive") or False)
        logger.info(f"Analyzing {path} (recursive={recursive})")

        if not path.exists():
            raise ToolExecutionError(f"Path does not exist: {path}")

        return await asyncio.to_thread(analyze_path, path, recursive)


def analyze_path(path: Path, recursive: bool) -> dict[str, Any]:
    """Collect file statistics for a path.

    Args:
        path: File or directory to analyze
        recursive: Whether to include files in subdirectories

    Returns:
        dict with total_size, file_count, extension_stats and largest_files
    """
    if path.is_file():
        files = [path]
    else:
        candidates = path.rglob("*") if recursive else path.iterdir()
        files = [p for p in candidates if p.is_file()]

    total_size = 0
    extensions: Counter[str] = Counter()
    sizes: list[tuple[str, int]] = []

    for file in files:
        try:
            size = file.stat().st_size
        except OSError as e:
            logger.debug(f"Skipping unreadable file {file}: {e}")
            continue
        total_size += size
        if file.suffix:
            extensions[file.suffix.lstrip(".")] += 1
        sizes.append((str(file), size))

    sizes.sort(key=lambda item: item[1], reverse=True)

    return {
        "path": str(path),
        "total_size": total_size,
        "file_count": len(sizes),
        "extension_stats": dict(extensions.most_common()),
        "largest_files": [
            {"path": name, "size": size} for name, size in sizes[:LARGEST_FILES]
        ],
    }
