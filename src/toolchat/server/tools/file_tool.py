"""File transformation tool.

Conversions shell out to the usual command-line converters, picked by the
input and output extensions. Only `convert` is implemented; the remaining
operations are advertised so the model can ask for them and gets a clear
tool error back.
"""

import asyncio
import logging
import shutil
from pathlib import Path
from typing import Any

from toolchat.server.tools.base import ServerTool, ToolExecutionError
from toolchat.tools.types import ParameterSpec

logger = logging.getLogger(__name__)

OPERATIONS = ("convert", "compress", "decompress", "rename", "organize")

DOCUMENT_FORMATS = {"doc", "docx", "odt", "rtf", "txt", "html", "xls", "xlsx", "ods", "ppt", "pptx"}
IMAGE_FORMATS = {"png", "jpg", "jpeg", "gif", "bmp", "tiff", "webp"}
MEDIA_FORMATS = {"mp3", "wav", "ogg", "flac", "mp4", "mkv", "avi", "mov", "webm"}


class FileToolError(ToolExecutionError):
    """A file operation could not be carried out."""


class FileTool(ServerTool):
    """Converts files between formats using external converters."""

    name = "file_tool"
    description = (
        "Perform file operations: convert (documents, images, audio/video, PDF), "
        "compress, decompress, rename, organize"
    )
    parameters = {
        "operation": ParameterSpec(
            type="string",
            required=True,
            description=f"One of: {', '.join(OPERATIONS)}",
        ),
        "input": ParameterSpec(type="string", required=True, description="Input file path"),
        "output": ParameterSpec(type="string", description="Output file path"),
        "options": ParameterSpec(type="object", description="Operation-specific options"),
    }
    # Writes files, so a repeated call may clobber or duplicate output
    idempotent = False

    def __init__(self, command_timeout: float = 300.0) -> None:
        self.command_timeout = command_timeout

    async def execute(self, arguments: dict[str, Any]) -> dict[str, Any]:
        operation = arguments["operation"].strip().lower()
        source = Path(arguments["input"]).expanduser()
        output = arguments.get("output")
        options = arguments.get("options") or {}

        if operation not in OPERATIONS:
            raise FileToolError(
                f"Unknown operation '{operation}'. Supported: {', '.join(OPERATIONS)}"
            )
        if operation != "convert":
            raise FileToolError(f"Operation '{operation}' is not implemented yet")
        if not output:
            raise FileToolError("The convert operation requires an output path")

        return await self.convert(source, Path(output).expanduser(), options)

    async def convert(
        self, source: Path, target: Path, options: dict[str, Any]
    ) -> dict[str, Any]:
        """Convert `source` into `target`, choosing the converter by extension.

        Args:
            source: Existing input file
            target: Output file; its extension selects the target format
            options: Extra converter options (currently only "quality" for images)

        Returns:
            dict describing the produced file

        Raises:
            FileToolError: If the input is missing, the formats are not
                           supported or the converter fails
        """
        if not source.is_file():
            raise FileToolError(f"Input file does not exist: {source}")

        command = build_convert_command(source, target, options)
        logger.info(f"Converting {source} -> {target} with {command[0]}")
        await self._run(command)

        produced = produced_path(source, target, command)
        if produced != target and produced.exists():
            produced.replace(target)

        if not target.exists():
            raise FileToolError(f"Converter finished but {target} was not created")

        return {
            "operation": "convert",
            "input": str(source),
            "output": str(target),
            "size": target.stat().st_size,
        }

    async def _run(self, command: list[str]) -> None:
        process = await asyncio.create_subprocess_exec(
            *command,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
        )
        try:
            async with asyncio.timeout(self.command_timeout):
                _, stderr = await process.communicate()
        except TimeoutError:
            process.kill()
            await process.wait()
            raise FileToolError(
                f"{command[0]} did not finish within {self.command_timeout:.0f}s"
            ) from None

        if process.returncode != 0:
            message = stderr.decode(errors="replace").strip()
            raise FileToolError(
                f"{command[0]} failed with exit code {process.returncode}: {message}"
            )


def build_convert_command(source: Path, target: Path, options: dict[str, Any]) -> list[str]:
    """Pick the converter for a source/target pair and build its argv."""
    src = source.suffix.lstrip(".").lower()
    dst = target.suffix.lstrip(".").lower()
    if not dst:
        raise FileToolError(f"Cannot infer the target format from {target}")

    if src in DOCUMENT_FORMATS and (dst in DOCUMENT_FORMATS or dst == "pdf"):
        office = _require("soffice")
        return [
            office, "--headless", "--convert-to", dst,
            "--outdir", str(target.parent or Path(".")), str(source),
        ]
    if src in IMAGE_FORMATS and dst in IMAGE_FORMATS | {"pdf"}:
        command = [_require("convert"), str(source)]
        if "quality" in options:
            command += ["-quality", str(options["quality"])]
        return [*command, str(target)]
    if src in MEDIA_FORMATS and dst in MEDIA_FORMATS:
        return [_require("ffmpeg"), "-y", "-i", str(source), str(target)]
    if src == "pdf" and dst in IMAGE_FORMATS:
        return [
            _require("gs"), "-dNOPAUSE", "-dBATCH", "-sDEVICE=png16m",
            f"-sOutputFile={target}", str(source),
        ]

    raise FileToolError(f"Conversion from '{src or 'unknown'}' to '{dst}' is not supported")


def produced_path(source: Path, target: Path, command: list[str]) -> Path:
    """Where the converter in `command` writes its result.

    soffice only takes an output directory and names the file after the
    source; every other converter writes to `target` directly.
    """
    if Path(command[0]).name == "soffice":
        return target.parent / f"{source.stem}.{target.suffix.lstrip('.').lower()}"
    return target


def _require(executable: str) -> str:
    path = shutil.which(executable)
    if path is None:
        raise FileToolError(f"Required converter '{executable}' is not installed")
    return path
