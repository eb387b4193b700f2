"""
ScanRestore - Batch Processing Module

Runs an ordered list of restoration commands over every image of a folder.
Pages are processed in a thread pool (OpenCV releases the GIL, so threads
scale without duplicating memory); each worker owns its ImageProcessor.
Results are written as TIFF into ``<folder>/Processed``.
"""

import os
import threading
import time
from collections.abc import Callable
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass, field
from typing import Any

from scanrestore.constants import BATCH_ERRORS_FILE, PROCESSED_SUBFOLDER, SUPPORTED_IMAGE_EXTENSIONS
from scanrestore.services.config import ProcessorCommand, TiffCompression, parse_command, parse_enum
from scanrestore.services.image_io import save_image
from scanrestore.services.processor import ImageProcessor, resolve_parameters
from scanrestore.services.resource_manager import compute_worker_count, detect_resources
from scanrestore.utils.cancellation import CancellationToken
from scanrestore.utils.exceptions import OperationCancelledError, ScanRestoreError
from scanrestore.utils.logger import logger

Step = tuple[ProcessorCommand | str, Any]


@dataclass
class BatchReport:
    """Summary of one batch run."""

    total: int = 0
    processed: int = 0
    skipped: int = 0
    failed: list[tuple[str, str]] = field(default_factory=list)
    outputs: list[str] = field(default_factory=list)
    cancelled: bool = False
    elapsed: float = 0.0

    @property
    def success(self) -> bool:
        return not self.failed and not self.cancelled


def list_images(folder: str) -> list[str]:
    """Supported image files directly inside ``folder``, sorted by name."""
    names = sorted(os.listdir(folder), key=str.lower)
    return [
        os.path.join(folder, name)
        for name in names
        if os.path.isfile(os.path.join(folder, name))
        and os.path.splitext(name)[1].lower() in SUPPORTED_IMAGE_EXTENSIONS
    ]


def output_path(out_dir: str, source: str, part: int | None = None) -> str:
    """``<out_dir>/<base>.tif``, or ``<base>_<part>.tif`` for split pages."""
    base = os.path.splitext(os.path.basename(source))[0]
    if part is not None:
        base = f"{base}_{part}"
    return os.path.join(out_dir, f"{base}.tif")


class BatchRunner:
    """Apply a command pipeline to every image of a folder.

    Args:
        steps: Ordered ``(command, params)`` pairs; params may be typed
            parameters, a flat parameter map or None
        compression: TIFF compression of the written files
        overwrite: Re-process files whose output already exists
        workers: Worker count; 0 sizes the pool from available resources
        renumber_split: After a splitting run, rename the outputs to
            ``001.tif``, ``002.tif``... in name order
        token: Shared cancellation token
        on_progress: Called as ``on_progress(done, total, path)``
    """

    def __init__(
        self,
        steps: list[Step],
        compression: TiffCompression | str = TiffCompression.LZW,
        overwrite: bool = False,
        workers: int = 0,
        renumber_split: bool = False,
        token: CancellationToken | None = None,
        on_progress: Callable[[int, int, str], None] | None = None,
    ) -> None:
        # Parse every step up front so a bad map fails before any file is touched
        self.steps = []
        for command, params in steps:
            command = parse_command(command)
            self.steps.append((command, resolve_parameters(command, params)))
        self.compression = parse_enum(TiffCompression, compression, "compression")
        self.overwrite = overwrite
        self.workers = workers
        self.renumber_split = renumber_split
        self.token = token or CancellationToken()
        self.on_progress = on_progress

        self._report_lock = threading.Lock()
        self._errors_path: str | None = None

    @property
    def splits_pages(self) -> bool:
        return any(command == ProcessorCommand.SPLIT_PAGES for command, _ in self.steps)

    def cancel(self) -> None:
        self.token.cancel()

    def run(self, folder: str) -> BatchReport:
        """Process every supported image in ``folder``.

        Per-file failures are logged, appended to ``_batch_errors.txt`` in
        the output folder and reported; they never stop the batch.

        Returns:
            BatchReport of the run
        """
        start = time.time()
        out_dir = os.path.join(folder, PROCESSED_SUBFOLDER)
        os.makedirs(out_dir, exist_ok=True)
        self._errors_path = os.path.join(out_dir, BATCH_ERRORS_FILE)

        files = list_images(folder)
        report = BatchReport(total=len(files))
        if not files:
            logger.info(f"No supported images in {folder}")
            return report

        workers = compute_worker_count(detect_resources(), self.workers)
        workers = max(1, min(workers, len(files)))
        logger.info(f"Batch: {len(files)} file(s) from {folder} with {workers} worker(s)")

        done = 0
        with ThreadPoolExecutor(max_workers=workers) as pool:
            futures = {pool.submit(self._process_file, path, out_dir, report): path for path in files}
            for future in as_completed(futures):
                path = futures[future]
                try:
                    future.result()
                except OperationCancelledError:
                    report.cancelled = True
                done += 1
                if self.on_progress:
                    self.on_progress(done, len(files), path)

        if self.token.is_cancelled:
            report.cancelled = True
            logger.warning(f"Batch cancelled after {report.processed} of {report.total} file(s)")
        elif self.renumber_split and self.splits_pages:
            report.outputs = self._renumber_outputs(out_dir, report.outputs)

        if not report.failed and os.path.exists(self._errors_path):
            os.remove(self._errors_path)

        report.elapsed = time.time() - start
        logger.info(
            f"Batch finished: {report.processed} processed, {report.skipped} skipped, "
            f"{len(report.failed)} failed in {report.elapsed:.1f}s"
        )
        return report

    def _process_file(self, path: str, out_dir: str, report: BatchReport) -> None:
        self.token.raise_if_cancelled("batch")

        targets = [output_path(out_dir, path)]
        if self.splits_pages:
            targets += [output_path(out_dir, path, 1), output_path(out_dir, path, 2)]
        if not self.overwrite and any(os.path.exists(t) for t in targets):
            logger.debug(f"Skipping {path}: output exists")
            with self._report_lock:
                report.skipped += 1
            return

        processor = ImageProcessor(self.token)
        try:
            processor.load(path)
            split_pages = None
            for command, params in self.steps:
                self.token.raise_if_cancelled("batch")
                processor.apply_command(command, params)
                if command == ProcessorCommand.SPLIT_PAGES:
                    result = processor.split_results
                    if result is not None and result.success:
                        split_pages = [result.left, result.right]

            written = []
            if split_pages:
                for part, page in enumerate(split_pages, start=1):
                    target = output_path(out_dir, path, part)
                    save_image(page, target, self.compression)
                    written.append(target)
            else:
                target = output_path(out_dir, path)
                save_image(processor.image, target, self.compression)
                written.append(target)
        except OperationCancelledError:
            raise
        except (ScanRestoreError, OSError, ValueError) as e:
            self._register_error(path, str(e), report)
            return
        except Exception as e:
            logger.debug(f"Unexpected failure on {path}", exc_info=True)
            self._register_error(path, f"{type(e).__name__}: {e}", report)
            return

        with self._report_lock:
            report.processed += 1
            report.outputs.extend(written)
        logger.debug(f"Processed {path} → {', '.join(written)}")

    def _register_error(self, path: str, message: str, report: BatchReport) -> None:
        logger.error(f"Batch error on {path}: {message}")
        with self._report_lock:
            report.failed.append((path, message))
            with open(self._errors_path, "a", encoding="utf-8") as f:
                f.write(f"{path}: {message}\n")

    def _renumber_outputs(self, out_dir: str, written: list[str]) -> list[str]:
        """Rename this run's TIFF outputs to a 001, 002... sequence in name order.

        Files left by earlier runs keep their names; numbering continues
        after the highest number already present.
        """
        ours = {os.path.basename(p) for p in written}
        taken = [
            int(os.path.splitext(n)[0])
            for n in os.listdir(out_dir)
            if n not in ours and n.lower().endswith(".tif") and os.path.splitext(n)[0].isdigit()
        ]
        first = max(taken, default=0) + 1

        pending = []
        for index, name in enumerate(sorted(ours, key=str.lower), start=first):
            temp = os.path.join(out_dir, name + ".renaming")
            os.replace(os.path.join(out_dir, name), temp)
            pending.append((temp, os.path.join(out_dir, f"{index:03d}.tif")))
        for temp, final in pending:
            os.replace(temp, final)
        logger.info(f"Renumbered {len(pending)} split output(s)")
        return [final for _, final in pending]
