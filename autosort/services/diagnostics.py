"""
Diagnostics for condition evaluation failures.

When the engine fails to evaluate a ``version("<file>.exe", ...)``
condition, the report is more useful with some facts about that file.
Each probe is independent and bounded by a timeout; whatever fails is
left at its default so a report can always be produced.
"""

from __future__ import annotations

import asyncio
import hashlib
from dataclasses import asdict, dataclass
from pathlib import Path
from typing import Any

import aiofiles.os
import pefile

from autosort.infra.telemetry import get_logger

logger = get_logger(__name__)

UNKNOWN_VERSION = "unknown"
_CHUNK = 1024 * 1024


@dataclass
class FileProbe:
    path: str
    exists: bool = False
    size: int = 0
    md5: str = ""
    version: str = ""

    def to_report(self) -> dict[str, Any]:
        fields = asdict(self)
        return {
            "File": fields["path"],
            "Exists": fields["exists"],
            "Size": fields["size"],
            "MD5": fields["md5"],
            "Version": fields["version"],
        }


def _md5(path: str) -> str:
    digest = hashlib.md5()
    with open(path, "rb") as f:
        for chunk in iter(lambda: f.read(_CHUNK), b""):
            digest.update(chunk)
    return digest.hexdigest()


def _pe_version(path: str) -> str:
    """File version from the PE version resource, '' if there is none."""
    pe = pefile.PE(path, fast_load=True)
    try:
        pe.parse_data_directories(
            directories=[pefile.DIRECTORY_ENTRY["IMAGE_DIRECTORY_ENTRY_RESOURCE"]]
        )
        for info in getattr(pe, "VS_FIXEDFILEINFO", None) or []:
            ms, ls = info.FileVersionMS, info.FileVersionLS
            return f"{ms >> 16}.{ms & 0xFFFF}.{ls >> 16}.{ls & 0xFFFF}"
        return ""
    finally:
        pe.close()


async def probe_file(path: str | Path, timeout_s: float = 10.0) -> FileProbe:
    """Collect existence, size, md5 and version of ``path``. Never raises."""
    probe = FileProbe(path=str(path))
    try:
        stats = await asyncio.wait_for(aiofiles.os.stat(probe.path), timeout=timeout_s)
    except (OSError, TimeoutError):
        return probe
    probe.exists = True
    probe.size = stats.st_size

    try:
        probe.version = await asyncio.wait_for(
            asyncio.to_thread(_pe_version, probe.path), timeout=timeout_s,
        ) or UNKNOWN_VERSION
    except (OSError, TimeoutError, pefile.PEFormatError) as e:
        logger.debug("probe_version_failed", path=probe.path, error=str(e))
        probe.version = UNKNOWN_VERSION

    try:
        probe.md5 = await asyncio.wait_for(asyncio.to_thread(_md5, probe.path), timeout=timeout_s)
    except (OSError, TimeoutError) as e:
        logger.debug("probe_hash_failed", path=probe.path, error=str(e))

    return probe
