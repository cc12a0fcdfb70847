"""
portal_sdk.tier2_reliability.storage
────────────────────────────────────────
Resilient attachment uploads to the blob store.

1. Validate locally (presence, size floor and ceiling, content type); a
   rejected file costs no network call.
2. Name the object ``<timestamp_ms>_<sanitized stem>.<ext>`` unless a name
   is supplied.
3. Race the store write against a fixed latency budget.
4. On a name collision only, retry once under a randomized name with a
   shorter budget.
5. Resolve the public URL; no URL means the upload failed.

A lost race stops the wait, not the write: the abandoned store call keeps
running and its late result is logged and ignored.
"""
from __future__ import annotations

import asyncio
import mimetypes
import re
from dataclasses import dataclass
from typing import Any, Iterable

from portal_sdk.tier0_core.config import PortalConfig
from portal_sdk.tier0_core.errors import (
    CollisionError,
    DatabaseError,
    OperationTimeoutError,
    PortalError,
    ValidationError,
)
from portal_sdk.tier0_core.gateway import GatewayClient
from portal_sdk.tier0_core.ids import short_token
from portal_sdk.tier0_core.logging import get_logger
from portal_sdk.tier0_core.metrics import upload_duration, uploads
from portal_sdk.tier1_runtime.clock import Clock, get_clock
from portal_sdk.tier1_runtime.retry import retry_policy

logger = get_logger("portal_sdk.storage")

_UNSAFE_CHARS = re.compile(r"[^a-zA-Z0-9.-]")


@dataclass
class UploadFile:
    data: bytes | None
    filename: str
    content_type: str | None = None

    @property
    def size(self) -> int:
        return len(self.data) if self.data is not None else 0

    @property
    def resolved_content_type(self) -> str:
        if self.content_type:
            return self.content_type.split(";", 1)[0].strip().lower()
        guessed, _ = mimetypes.guess_type(self.filename)
        return guessed or "application/octet-stream"


@dataclass
class UploadResult:
    success: bool
    public_url: str | None = None
    final_name: str | None = None
    path: str | None = None
    error: PortalError | None = None

    @property
    def message(self) -> str | None:
        return self.error.user_message if self.error is not None else None


# ── helpers ───────────────────────────────────────────────────────────────────

def file_extension(filename: str) -> str:
    if "." not in filename:
        return ""
    return filename.rsplit(".", 1)[1].lower()


def is_allowed_file(filename: str, allowed_extensions: Iterable[str]) -> bool:
    return file_extension(filename) in {ext.lower().lstrip(".") for ext in allowed_extensions}


def format_file_size(size: int) -> str:
    if size <= 0:
        return "0 Bytes"
    units = ["Bytes", "KB", "MB", "GB"]
    value = float(size)
    unit = 0
    while value >= 1024 and unit < len(units) - 1:
        value /= 1024
        unit += 1
    return f"{round(value, 2):g} {units[unit]}"


def _with_extension(stem: str, ext: str) -> str:
    return f"{stem}.{ext}" if ext else stem


# ── pipeline ──────────────────────────────────────────────────────────────────

class UploadPipeline:
    def __init__(
        self,
        gateway: GatewayClient | None,
        *,
        bucket: str = "documents",
        max_bytes: int = 10 * 1024 * 1024,
        min_bytes: int = 64,
        allowed_types: Iterable[str] = ("application/pdf",),
        timeout: float = 15.0,
        retry_timeout: float = 8.0,
        mock_base_url: str = "https://mock-storage.local",
        clock: Clock | None = None,
    ) -> None:
        self._gateway = gateway
        self._bucket = bucket
        self._max_bytes = max_bytes
        self._min_bytes = min_bytes
        self._allowed_types = frozenset(t.lower() for t in allowed_types)
        self._timeout = timeout
        self._retry_timeout = retry_timeout
        self._mock_base_url = mock_base_url.rstrip("/")
        self._clock = clock or get_clock()
        self._abandoned: set[asyncio.Task[Any]] = set()

    @classmethod
    def from_config(
        cls, gateway: GatewayClient | None, config: PortalConfig, clock: Clock | None = None
    ) -> "UploadPipeline":
        return cls(
            gateway,
            bucket=config.storage_bucket,
            max_bytes=config.upload_max_bytes,
            min_bytes=config.upload_min_bytes,
            allowed_types=config.upload_allowed_types,
            timeout=config.upload_timeout,
            retry_timeout=config.upload_retry_timeout,
            mock_base_url=config.mock_storage_base_url,
            clock=clock,
        )

    @property
    def abandoned(self) -> int:
        """Store calls still running after their caller stopped waiting."""
        return len(self._abandoned)

    # ── naming ───────────────────────────────────────────────────────────────

    def generated_name(self, filename: str) -> str:
        ext = file_extension(filename)
        stem = filename[: -(len(ext) + 1)] if ext else filename
        safe = _UNSAFE_CHARS.sub("_", stem)[:20] or "file"
        return _with_extension(f"{self._clock.timestamp_ms()}_{safe}", ext)

    def retry_name(self, filename: str, previous: str) -> str:
        ext = file_extension(filename)
        candidate = previous
        while candidate == previous:
            candidate = _with_extension(f"{self._clock.timestamp_ms()}_{short_token(4)}", ext)
        return candidate

    # ── validation ───────────────────────────────────────────────────────────

    def validate(self, file: UploadFile | None) -> UploadFile:
        """Return *file* if it may be sent, else raise ``ValidationError``."""
        if file is None or file.data is None:
            raise ValidationError("no_file", "No file provided.", fields={"file": "required"})
        if file.size < self._min_bytes:
            raise ValidationError(
                "file_too_small",
                "The file is empty or appears to be corrupt.",
                fields={"file": f"at least {self._min_bytes} bytes"},
                size=file.size,
            )
        if file.size > self._max_bytes:
            raise ValidationError(
                "file_too_large",
                f"File size exceeds the {format_file_size(self._max_bytes)} limit.",
                fields={"file": f"at most {self._max_bytes} bytes"},
                size=file.size,
            )
        if file.resolved_content_type not in self._allowed_types:
            raise ValidationError(
                "file_type_not_allowed",
                "This file type is not supported.",
                fields={"file": file.resolved_content_type},
            )
        return file

    # ── upload ───────────────────────────────────────────────────────────────

    async def upload(
        self, file: UploadFile | None, folder: str = "reports", name: str | None = None
    ) -> UploadResult:
        """Upload *file* under *folder*; never raises for expected failures."""
        try:
            file = self.validate(file)
        except ValidationError as exc:
            uploads(outcome="rejected").inc()
            logger.info("upload.rejected", folder=folder, code=exc.code)
            return UploadResult(success=False, error=exc)

        folder = folder.strip("/")
        final_name = name or self.generated_name(file.filename)
        gateway = self._gateway
        if gateway is None:
            uploads(outcome="simulated").inc()
            path = f"{folder}/{final_name}"
            return UploadResult(
                success=True,
                public_url=f"{self._mock_base_url}/{path}",
                final_name=final_name,
                path=path,
            )

        started = self._clock.monotonic()
        path = f"{folder}/{final_name}"
        try:
            async for attempt in retry_policy(max_attempts=2, on=[CollisionError]):
                with attempt:
                    if attempt.retry_state.attempt_number == 1:
                        budget = self._timeout
                    else:
                        budget = self._retry_timeout
                        final_name = self.retry_name(file.filename, final_name)
                        logger.info("upload.collision_retry", folder=folder, final_name=final_name)
                    path = f"{folder}/{final_name}"
                    await self._put_within(gateway, path, file, budget)

            public_url = await gateway.public_url(self._bucket, path)
            if not public_url:
                raise DatabaseError(
                    "no_public_url",
                    "The file was stored but no link could be generated.",
                    path=path,
                )
        except PortalError as exc:
            elapsed = self._clock.monotonic() - started
            uploads(outcome=exc.kind).inc()
            upload_duration(outcome=exc.kind).observe(elapsed)
            logger.warning(
                "upload.failed", path=path, code=exc.code, kind=exc.kind, elapsed=round(elapsed, 3)
            )
            return UploadResult(success=False, final_name=final_name, path=path, error=exc)

        elapsed = self._clock.monotonic() - started
        uploads(outcome="success").inc()
        upload_duration(outcome="success").observe(elapsed)
        logger.info("upload.completed", path=path, size=file.size, elapsed=round(elapsed, 3))
        return UploadResult(success=True, public_url=public_url, final_name=final_name, path=path)

    async def _put_within(
        self, gateway: GatewayClient, path: str, file: UploadFile, budget: float
    ) -> None:
        task = asyncio.ensure_future(
            gateway.upload(
                self._bucket, path, file.data or b"",
                content_type=file.resolved_content_type, upsert=False,
            )
        )
        try:
            done, _ = await asyncio.wait({task}, timeout=budget)
        except asyncio.CancelledError:
            task.cancel()
            raise
        if task in done:
            task.result()
            return
        self._abandon(task, path)
        logger.warning("upload.timeout", path=path, budget=budget)
        raise OperationTimeoutError(
            "upload_timeout",
            "Upload too slow. Try a smaller file or a better connection.",
            timeout=budget,
            path=path,
        )

    def _abandon(self, task: asyncio.Task[Any], path: str) -> None:
        self._abandoned.add(task)

        def _late(done: asyncio.Task[Any]) -> None:
            self._abandoned.discard(done)
            if done.cancelled():
                return
            exc = done.exception()
            logger.info(
                "upload.late_result_ignored",
                path=path,
                succeeded=exc is None,
                error=str(exc) if exc else None,
            )

        task.add_done_callback(_late)

    async def aclose(self) -> None:
        """Cancel store calls nobody is waiting for any more."""
        tasks = list(self._abandoned)
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        self._abandoned.clear()


__all__ = [
    "UploadFile", "UploadResult", "UploadPipeline",
    "file_extension", "is_allowed_file", "format_file_size",
]
