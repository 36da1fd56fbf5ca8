# === NAVMAP v1 ===
# {
#   "module": "Piton.RuntimeSetup.extraction",
#   "purpose": "Unpack verified runtime archives while refusing entries that escape the destination",
#   "sections": [
#     {"id": "results", "name": "Extraction Results", "anchor": "RES", "kind": "api"},
#     {"id": "sanitisation", "name": "Member Path Sanitisation", "anchor": "SAN", "kind": "helpers"},
#     {"id": "targz", "name": "Streaming TAR+GZ Extraction", "anchor": "TGZ", "kind": "api"},
#     {"id": "zip", "name": "Random-Access ZIP Extraction", "anchor": "ZIP", "kind": "api"},
#     {"id": "dispatch", "name": "Format Dispatch", "anchor": "DSP", "kind": "api"}
#   ]
# }
# === /NAVMAP ===

"""Archive extraction for runtime payloads.

Both extractors work on the in-memory payload that already passed hash
verification.  Every entry name is sanitised before anything is written for
it: absolute paths, drive-qualified paths and ``..`` components raise
:class:`~Piton.RuntimeSetup.errors.PathTraversalError` and abort the whole
extraction.  Cancellation is checked after each entry and leaves whatever was
written in place; the caller's directory wipe on the next run takes care of
it, since no identity marker exists yet.
"""

from __future__ import annotations

import io
import logging
import os
import re
import shutil
import stat
import tarfile
import zipfile
import zlib
from dataclasses import dataclass, field
from pathlib import Path, PurePosixPath
from typing import List, Optional

from .descriptors import ArchiveFormat
from .errors import DecompressionError, FinalizationError, PathTraversalError, RuntimeSetupError
from .progress import ProgressSink
from .settings import LOGGER_NAME, get_settings

__all__ = [
    "ExtractionResult",
    "enclosed_path",
    "extract_targz",
    "extract_zip",
    "extract_runtime",
]

_DRIVE_PATTERN = re.compile(r"^[A-Za-z]:")
_COPY_BUFFER = 1 << 20


@dataclass(slots=True)
class ExtractionResult:
    """Summary of an extraction run.

    Attributes:
        entries_total: Number of archive entries, or ``None`` when a tar
            archive was unpacked without a pre-scan.
        entries_processed: Entries handled before completion or cancellation.
        extracted: Regular files written, in archive order.
        cancelled: ``True`` when the user aborted between entries.
    """

    entries_total: Optional[int]
    entries_processed: int = 0
    extracted: List[Path] = field(default_factory=list)
    cancelled: bool = False


def enclosed_path(destination: Path, member_name: str) -> Optional[Path]:
    """Return where ``member_name`` lands inside ``destination``, or ``None`` if unsafe.

    ``.`` components are dropped so the ``./`` prefix used by many tarballs
    is accepted; an entry naming the archive root maps to ``destination``.
    """

    normalized = member_name.replace("\\", "/")
    if _DRIVE_PATTERN.match(normalized):
        return None
    relative = PurePosixPath(normalized)
    if relative.is_absolute():
        return None
    parts = [part for part in relative.parts if part not in ("", ".")]
    if any(part == ".." for part in parts):
        return None
    return destination.joinpath(*parts)


def _ensure_within(root: Path, candidate: Path, member_name: str) -> None:
    # Catches paths that escape through a symlink written by an earlier entry.
    real_root = os.path.realpath(root)
    real_candidate = os.path.realpath(candidate)
    if real_candidate != real_root and not real_candidate.startswith(real_root + os.sep):
        raise PathTraversalError(member_name)


def _prepare_destination(destination: Path) -> None:
    try:
        destination.mkdir(parents=True, exist_ok=True)
    except OSError as exc:
        raise FinalizationError(
            f"Failed to create the runtime directory '{destination}': {exc}"
        ) from exc


def _replace_existing(target: Path) -> None:
    # Never write through a link left behind by an earlier entry.
    if target.is_symlink():
        target.unlink()


def _apply_mode(target: Path, mode: int) -> None:
    permissions = mode & 0o777
    if permissions:
        os.chmod(target, permissions)


def _report(sink: ProgressSink, processed: int, total: Optional[int]) -> None:
    if total is None:
        sink.report_progress(f"Unpacking archive: {processed} entries", 0.0)
    elif total == 0:
        sink.report_progress("Unpacking archive: 0/0", 1.0)
    else:
        sink.report_progress(f"Unpacking archive: {processed}/{total}", processed / total)


# --- TAR+GZ -----------------------------------------------------------------


def _open_targz(payload: bytes) -> tarfile.TarFile:
    return tarfile.open(fileobj=io.BytesIO(payload), mode="r|gz")


def _count_tar_entries(payload: bytes) -> int:
    with _open_targz(payload) as archive:
        return sum(1 for _ in archive)


def _unpack_tar_member(
    archive: tarfile.TarFile, member: tarfile.TarInfo, destination: Path
) -> Optional[Path]:
    target = enclosed_path(destination, member.name)
    if target is None:
        raise PathTraversalError(member.name)
    if target == destination:
        return None
    _ensure_within(destination, target.parent, member.name)

    if member.isdir():
        target.mkdir(parents=True, exist_ok=True)
        return None

    target.parent.mkdir(parents=True, exist_ok=True)
    _replace_existing(target)

    if member.isfile():
        source = archive.extractfile(member)
        if source is None:
            raise DecompressionError(f"Failed to read archive member '{member.name}'")
        with source, target.open("wb") as out:
            shutil.copyfileobj(source, out, _COPY_BUFFER)
        _apply_mode(target, member.mode)
        return target

    if member.issym():
        link = member.linkname.replace("\\", "/")
        if _DRIVE_PATTERN.match(link) or PurePosixPath(link).is_absolute():
            raise PathTraversalError(member.name)
        # ``..`` must apply after resolving links written by earlier entries.
        _ensure_within(destination, Path(os.path.join(target.parent, link)), member.name)
        if target.exists():
            if target.is_dir():
                shutil.rmtree(target)
            else:
                target.unlink()
        os.symlink(member.linkname, target)
        return None

    if member.islnk():
        source_path = enclosed_path(destination, member.linkname)
        if source_path is None:
            raise PathTraversalError(member.name)
        _ensure_within(destination, source_path, member.name)
        shutil.copy2(source_path, target)
        return target

    raise DecompressionError(
        f"Unsupported special file detected in archive: '{member.name}'"
    )


def extract_targz(
    payload: bytes,
    destination: Path,
    sink: ProgressSink,
    *,
    prescan: bool = True,
    logger: Optional[logging.Logger] = None,
) -> ExtractionResult:
    """Unpack a gzip-compressed tar payload into ``destination`` in one streaming pass.

    When ``prescan`` is set the payload is decompressed once beforehand to
    count entries, so progress can be reported as a fraction.
    """

    log = logger or logging.getLogger(LOGGER_NAME)
    _prepare_destination(destination)

    try:
        total: Optional[int] = None
        if prescan:
            sink.report_progress("Determining archive size", 0.0)
            total = _count_tar_entries(payload)
            sink.log(f"Unpacking TAR ({total} entries)...")
        else:
            sink.log("Unpacking TAR...")
        result = ExtractionResult(entries_total=total)
        _report(sink, 0, total)

        with _open_targz(payload) as archive:
            for member in archive:
                written = _unpack_tar_member(archive, member, destination)
                if written is not None:
                    result.extracted.append(written)
                result.entries_processed += 1
                _report(sink, result.entries_processed, total)
                if sink.is_cancelled():
                    result.cancelled = True
                    log.info(
                        "extraction cancelled",
                        extra={"stage": "extract", "entries": result.entries_processed},
                    )
                    return result
    except RuntimeSetupError:
        raise
    except (tarfile.TarError, EOFError, zlib.error, OSError) as exc:
        log.error(
            "failed to unpack tar archive",
            extra={"stage": "extract", "destination": str(destination), "error": str(exc)},
        )
        raise DecompressionError(f"Failed to decompress the runtime: {exc}") from exc

    log.info(
        "extracted tar archive",
        extra={
            "stage": "extract",
            "destination": str(destination),
            "entries": result.entries_processed,
            "files": len(result.extracted),
        },
    )
    return result


# --- ZIP --------------------------------------------------------------------


def extract_zip(
    payload: bytes,
    destination: Path,
    sink: ProgressSink,
    *,
    logger: Optional[logging.Logger] = None,
) -> ExtractionResult:
    """Unpack a ZIP payload into ``destination`` entry by entry."""

    log = logger or logging.getLogger(LOGGER_NAME)
    _prepare_destination(destination)

    try:
        with zipfile.ZipFile(io.BytesIO(payload)) as archive:
            members = archive.infolist()
            total = len(members)
            result = ExtractionResult(entries_total=total)
            sink.log(f"Unpacking ZIP ({total} entries)...")
            _report(sink, 0, total)

            for member in members:
                target = enclosed_path(destination, member.filename)
                if target is None:
                    raise PathTraversalError(member.filename)
                if target != destination:
                    _ensure_within(destination, target.parent, member.filename)
                mode = (member.external_attr >> 16) & 0xFFFF

                if member.is_dir():
                    target.mkdir(parents=True, exist_ok=True)
                elif stat.S_ISLNK(mode):
                    raise DecompressionError(
                        f"Unsupported symbolic link detected in archive: '{member.filename}'"
                    )
                else:
                    target.parent.mkdir(parents=True, exist_ok=True)
                    _replace_existing(target)
                    with archive.open(member, "r") as source, target.open("wb") as out:
                        shutil.copyfileobj(source, out, _COPY_BUFFER)
                    if stat.S_ISREG(mode):
                        _apply_mode(target, mode)
                    result.extracted.append(target)

                result.entries_processed += 1
                _report(sink, result.entries_processed, total)
                if sink.is_cancelled():
                    result.cancelled = True
                    log.info(
                        "extraction cancelled",
                        extra={"stage": "extract", "entries": result.entries_processed},
                    )
                    return result
    except RuntimeSetupError:
        raise
    except (zipfile.BadZipFile, zipfile.LargeZipFile, zlib.error, EOFError, OSError) as exc:
        log.error(
            "failed to unpack zip archive",
            extra={"stage": "extract", "destination": str(destination), "error": str(exc)},
        )
        raise DecompressionError(f"Failed to decompress the runtime: {exc}") from exc
    except (NotImplementedError, RuntimeError) as exc:
        # zipfile signals encrypted or unsupported compression this way
        raise DecompressionError(f"Failed to decompress the runtime: {exc}") from exc

    log.info(
        "extracted zip archive",
        extra={
            "stage": "extract",
            "destination": str(destination),
            "entries": result.entries_processed,
            "files": len(result.extracted),
        },
    )
    return result


# --- Dispatch ---------------------------------------------------------------


def extract_runtime(
    archive_format: ArchiveFormat,
    payload: bytes,
    destination: Path,
    sink: ProgressSink,
    *,
    prescan: Optional[bool] = None,
    logger: Optional[logging.Logger] = None,
) -> ExtractionResult:
    """Unpack ``payload`` with the algorithm matching ``archive_format``."""

    if archive_format is ArchiveFormat.TARGZ:
        if prescan is None:
            prescan = get_settings().prescan_tar
        return extract_targz(payload, destination, sink, prescan=prescan, logger=logger)
    if archive_format is ArchiveFormat.ZIP:
        return extract_zip(payload, destination, sink, logger=logger)
    raise DecompressionError(f"Unsupported archive format: {archive_format!r}")
