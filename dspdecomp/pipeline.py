"""Drive one decompilation run with persistent local names.

:class:`DecompilationRun` ties the pieces together around an external engine:

1. build a :class:`~dspdecomp.identity.MethodIdentity` for every method,
2. read the name map fragments of the previous run and seed a fresh
   :class:`~dspdecomp.naming_hook.RecordNamesHook`,
3. let the engine decompile the project while the hook is installed,
4. write one fragment and one reconciled disassembly listing per emitted
   source file, in parallel.

A failure while writing the output of one source file is logged and reported;
the remaining files are still processed.  Only an unsupported method
signature aborts the run, before anything on disk is touched.
"""

from __future__ import annotations

import logging
import os
import threading
import time
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence

from .debug_info import DebugInfoProvider, WrappedDebugInfoProvider
from .identity import MethodIdentity, build_method_identities
from .layout import (
    files_to_decompile,
    listing_directory,
    listing_path,
    methods_in_file,
    name_map_directory,
)
from .metadata import MethodHandle, ModuleMetadata, TypeHandle
from .name_store import clear_directory, load_name_store, write_fragment
from .naming_hook import RecordNamesHook
from .sequence_points import MissingSourceLineError, reconcile
from .settings import DecompilerSettings

logger = logging.getLogger(__name__)

PROGRESS_INTERVAL = 0.1


class DecompilerEngine:
    """The operations this package needs from the decompilation engine."""

    def decompile_project(
        self,
        metadata: ModuleMetadata,
        project_dir: Path,
        settings: DecompilerSettings,
        debug_info: WrappedDebugInfoProvider,
    ) -> Any:
        """Write the decompiled sources below ``project_dir``.

        The engine must call ``debug_info.pre_generate_name`` and
        ``debug_info.post_generate_name`` from its local naming step.
        """

        raise NotImplementedError

    def disassemble_types(
        self,
        metadata: ModuleMetadata,
        types: Sequence[TypeHandle],
        debug_info: WrappedDebugInfoProvider,
    ) -> str:
        """Return the disassembly of ``types`` with sequence point comments."""

        raise NotImplementedError


@dataclass
class FileResult:
    """Outcome of the post-processing of one emitted source file."""

    source_file: str
    fragment: Optional[Path] = None
    listing: Optional[Path] = None
    errors: List[str] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.errors


@dataclass
class RunReport:
    project: Any
    files: List[FileResult]
    seeded_methods: int = 0
    stale_methods: int = 0
    applied_overrides: int = 0
    conflicts: int = 0

    @property
    def failures(self) -> List[FileResult]:
        return [result for result in self.files if not result.ok]

    def summary_lines(self) -> List[str]:
        lines = [
            f"files processed: {len(self.files)}",
            f"fragments written: {sum(1 for result in self.files if result.fragment)}",
            f"listings written: {sum(1 for result in self.files if result.listing)}",
            f"methods seeded from name maps: {self.seeded_methods}",
            f"stale name maps: {self.stale_methods}",
            f"names applied: {self.applied_overrides}",
            f"naming conflicts: {self.conflicts}",
        ]
        for result in self.failures:
            for error in result.errors:
                lines.append(f"failed: {result.source_file}: {error}")
        return lines


class _Progress:
    """Thread-safe progress counter that logs at most every 100 ms."""

    def __init__(self, title: str, total: int) -> None:
        self.title = title
        self.total = total
        self.completed = 0
        self._lock = threading.Lock()
        self._last_report = time.perf_counter()

    def advance(self, status: str) -> None:
        with self._lock:
            self.completed += 1
            now = time.perf_counter()
            if now - self._last_report <= PROGRESS_INTERVAL and self.completed < self.total:
                return
            self._last_report = now
            percentage = self.completed / self.total if self.total else 1.0
            logger.info(
                "%s... %.2f%% (%d / %d) : %s",
                self.title,
                percentage * 100,
                self.completed,
                self.total,
                status,
            )


def default_worker_count() -> int:
    return os.cpu_count() or 1


class DecompilationRun:
    """One decompilation of ``metadata`` into ``output_dir/project_name``."""

    def __init__(
        self,
        engine: DecompilerEngine,
        metadata: ModuleMetadata,
        output_dir: Path,
        *,
        project_name: Optional[str] = None,
        settings: Optional[DecompilerSettings] = None,
        debug_info: Optional[DebugInfoProvider] = None,
        max_workers: Optional[int] = None,
    ) -> None:
        self.engine = engine
        self.metadata = metadata
        self.settings = settings or DecompilerSettings()
        self.base_debug_info = debug_info
        self.max_workers = max_workers if max_workers and max_workers > 0 else default_worker_count()
        name = project_name or metadata.name
        if not name:
            raise ValueError("a project name is required when the metadata has no name")
        self.project_dir = output_dir / name
        self.name_map_dir = name_map_directory(self.project_dir)
        self.listing_dir = listing_directory(self.project_dir)

    def run(self) -> RunReport:
        logger.info("generating method identities")
        identities = build_method_identities(self.metadata)

        logger.info("collecting name maps from %s", self.name_map_dir)
        records = load_name_store(self.name_map_dir)
        hook = RecordNamesHook(identities)
        seeded = hook.seed(records)
        logger.info("seeded persisted names for %d methods", seeded)

        debug_info = WrappedDebugInfoProvider(self.base_debug_info, hook)

        logger.info("decompiling into %s", self.project_dir)
        clear_directory(self.project_dir)
        project = self.engine.decompile_project(
            self.metadata, self.project_dir, self.settings, debug_info
        )
        hook.finalize()

        clear_directory(self.name_map_dir)
        clear_directory(self.listing_dir)
        files = files_to_decompile(self.metadata, self.settings)
        results = self._process_files(files, hook, debug_info)

        report = RunReport(
            project=project,
            files=results,
            seeded_methods=seeded,
            stale_methods=hook.stale_methods,
            applied_overrides=hook.applied_overrides,
            conflicts=hook.conflicts,
        )
        if report.failures:
            logger.warning("%d of %d files failed", len(report.failures), len(results))
        return report

    # ------------------------------------------------------------------
    # per-file output
    # ------------------------------------------------------------------
    def _process_files(
        self,
        files: Dict[str, List[TypeHandle]],
        hook: RecordNamesHook,
        debug_info: WrappedDebugInfoProvider,
    ) -> List[FileResult]:
        progress = _Progress("Writing name maps and disassembly", len(files))
        results: List[FileResult] = []
        with ThreadPoolExecutor(max_workers=self.max_workers) as executor:
            futures = {
                executor.submit(self._process_file, source_file, types, hook, debug_info): source_file
                for source_file, types in files.items()
            }
            for future in as_completed(futures):
                result = future.result()
                results.append(result)
                progress.advance(futures[future])
        results.sort(key=lambda result: result.source_file)
        return results

    def _process_file(
        self,
        source_file: str,
        types: List[TypeHandle],
        hook: RecordNamesHook,
        debug_info: WrappedDebugInfoProvider,
    ) -> FileResult:
        result = FileResult(source_file)
        methods: List[MethodHandle] = methods_in_file(self.metadata, types)

        try:
            result.fragment = write_fragment(
                self.name_map_dir, source_file, hook.local_name_maps_for(methods)
            )
        except OSError as exc:
            logger.warning("failed to write the name map of %s: %s", source_file, exc)
            result.errors.append(f"name map: {exc}")

        try:
            listing = self.engine.disassemble_types(self.metadata, types, debug_info)
            text = reconcile(listing, self.project_dir / source_file)
            path = listing_path(self.project_dir, source_file)
            path.parent.mkdir(parents=True, exist_ok=True)
            path.write_text(text, "utf-8")
            result.listing = path
        except (OSError, ValueError, MissingSourceLineError) as exc:
            logger.warning("failed to write the disassembly of %s: %s", source_file, exc)
            result.errors.append(f"listing: {exc}")
        except Exception as exc:
            logger.exception("disassembly of %s failed", source_file)
            result.errors.append(f"listing: {type(exc).__name__}: {exc}")

        return result


def identities_by_file(
    metadata: ModuleMetadata,
    settings: DecompilerSettings,
    identities: Dict[MethodHandle, MethodIdentity],
) -> Dict[str, List[MethodIdentity]]:
    """Return the method identities persisted in each source file's fragment."""

    return {
        source_file: [identities[method] for method in methods_in_file(metadata, types)]
        for source_file, types in files_to_decompile(metadata, settings).items()
    }


__all__ = [
    "DecompilationRun",
    "DecompilerEngine",
    "FileResult",
    "RunReport",
    "default_worker_count",
    "identities_by_file",
]
