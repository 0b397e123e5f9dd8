"""Recording cache: writes captured audio to temporary WAV files and exports them."""

from __future__ import annotations

import logging
import queue
import shutil
import struct
import sys
import threading
import wave
from array import array
from dataclasses import dataclass
from datetime import timedelta
from enum import Enum
from pathlib import Path
from typing import Any, Iterable, List, Optional, Tuple

from ribble.worker import ConsoleMessage, RibbleError, WorkRequest, spawn

logger = logging.getLogger(__name__)

TMP_FILE = "tmp_recording"
FILE_EXTENSION = "wav"
_F32_SIZE = 4

_PCM_TAG = 1
_FLOAT_TAG = 3
_EXTENSIBLE_TAG = 0xFFFE
_BIG_ENDIAN = sys.byteorder == "big"


class ExportFormat(Enum):
    """Sample format used when exporting a recording."""

    F32 = "f32"
    I16 = "i16"

    @property
    def bits_per_sample(self) -> int:
        return 32 if self is ExportFormat.F32 else 16


@dataclass(frozen=True)
class RecordingSpec:
    """The shape of captured audio: sample rate and interleaved channel count."""

    sample_rate: int
    channels: int

    def __post_init__(self) -> None:
        if self.sample_rate <= 0 or self.sample_rate > 0xFFFFFFFF:
            raise ValueError(f"Invalid sample rate: {self.sample_rate}")
        if self.channels <= 0 or self.channels > 0xFFFF:
            raise ValueError(f"Invalid channel count: {self.channels}")


@dataclass(frozen=True)
class CompletedRecording:
    """Metadata for a finished recording held in the cache."""

    total_duration: timedelta
    file_size_estimate: int
    sample_rate: int
    channels: int

    def format_duration(self) -> str:
        """Return the duration as HH:MM:SS."""
        secs = int(self.total_duration.total_seconds())
        seconds = secs % 60
        minutes = (secs // 60) % 60
        hours = secs // 3600
        return f"{hours:02}:{minutes:02}:{seconds:02}"


@dataclass(frozen=True)
class WriteJob:
    """A request to record: chunks of samples arrive on receiver, ended by None."""

    receiver: "queue.Queue[Optional[Iterable[float]]]"
    spec: RecordingSpec


def f32_to_s16(sample: float) -> int:
    """Convert a float sample in [-1, 1] to a signed 16-bit integer, clamping."""
    value = max(-1.0, min(1.0, float(sample)))
    return int(round(value * 32767.0))


def _float_header(channels: int, sample_rate: int, data_bytes: int) -> bytes:
    block_align = channels * _F32_SIZE
    fmt = struct.pack(
        "<HHIIHHH",
        _FLOAT_TAG,
        channels,
        sample_rate,
        sample_rate * block_align,
        block_align,
        32,
        0,
    )
    frames = data_bytes // block_align
    riff_size = 4 + (8 + len(fmt)) + (8 + 4) + (8 + data_bytes)
    return b"".join(
        [
            b"RIFF",
            struct.pack("<I", riff_size),
            b"WAVE",
            b"fmt ",
            struct.pack("<I", len(fmt)),
            fmt,
            b"fact",
            struct.pack("<II", 4, frames),
            b"data",
            struct.pack("<I", data_bytes),
        ]
    )


class _FloatWavWriter:
    """Streams interleaved 32-bit float samples into a WAV file."""

    def __init__(self, path: Path, channels: int, sample_rate: int) -> None:
        self._channels = channels
        self._sample_rate = sample_rate
        self.samples_written = 0
        self._file = open(path, "wb")
        self._file.write(_float_header(channels, sample_rate, 0))

    def write(self, samples: Iterable[float]) -> None:
        data = array("f", samples)
        if _BIG_ENDIAN:
            data.byteswap()
        self._file.write(data.tobytes())
        self.samples_written += len(data)

    @property
    def frames(self) -> int:
        return self.samples_written // self._channels

    def finalize(self) -> None:
        if self._file.closed:
            return
        self._file.seek(0)
        self._file.write(
            _float_header(
                self._channels, self._sample_rate, self.samples_written * _F32_SIZE
            )
        )
        self._file.close()

    def __enter__(self) -> "_FloatWavWriter":
        return self

    def __exit__(self, *args: Any) -> None:
        self.finalize()


def _read_float_wav(path: Path) -> Tuple[int, int, List[float]]:
    """Read a 32-bit float WAV file; return (channels, sample_rate, samples)."""
    data = path.read_bytes()
    if len(data) < 12 or data[:4] != b"RIFF" or data[8:12] != b"WAVE":
        raise RibbleError(f"{path} is not a WAV file.", "io")
    fmt: Optional[bytes] = None
    payload: Optional[bytes] = None
    pos = 12
    while pos + 8 <= len(data):
        chunk_id = data[pos : pos + 4]
        (size,) = struct.unpack_from("<I", data, pos + 4)
        body = data[pos + 8 : pos + 8 + size]
        if chunk_id == b"fmt ":
            fmt = body
        elif chunk_id == b"data":
            payload = body
        pos += 8 + size + (size & 1)
    if fmt is None or payload is None or len(fmt) < 16:
        raise RibbleError(f"{path} is missing WAV chunks.", "io")
    tag, channels, sample_rate, _, _, bits = struct.unpack_from("<HHIIHH", fmt)
    if tag == _EXTENSIBLE_TAG and len(fmt) >= 26:
        (tag,) = struct.unpack_from("<H", fmt, 24)
    if tag != _FLOAT_TAG or bits != 32:
        raise RibbleError(f"{path} does not hold 32-bit float samples.", "io")
    samples = array("f")
    samples.frombytes(payload[: len(payload) // _F32_SIZE * _F32_SIZE])
    if _BIG_ENDIAN:
        samples.byteswap()
    return channels, sample_rate, list(samples)


def _write_s16_wav(
    path: Path, channels: int, sample_rate: int, samples: Iterable[int]
) -> None:
    data = array("h", samples)
    if _BIG_ENDIAN:
        data.byteswap()
    with wave.open(str(path), "wb") as out:
        out.setnchannels(channels)
        out.setsampwidth(2)
        out.setframerate(sample_rate)
        out.writeframes(data.tobytes())


class WriterEngine:
    """Receives recording jobs, writes them to the cache and serves exports.

    Jobs arrive on incoming_jobs as WriteJob objects; None stops the engine.
    Work is handed to the worker engine as WorkRequest objects on work_sender.
    """

    def __init__(
        self,
        data_directory,
        incoming_jobs: "queue.Queue[Optional[WriteJob]]",
        work_sender: "queue.Queue[WorkRequest]",
    ) -> None:
        self._data_directory = Path(data_directory)
        self._incoming = incoming_jobs
        self._work_sender = work_sender
        self._ticket = 0
        self._ticket_lock = threading.Lock()
        self._clearing = threading.Event()
        self._latest_exists = threading.Event()
        self._completed: "dict[str, CompletedRecording]" = {}
        self._lock = threading.RLock()
        self._closed = False
        self._thread = threading.Thread(target=self._poll, name="writer", daemon=True)
        self._thread.start()

    def _poll(self) -> None:
        while True:
            request = self._incoming.get()
            if request is None:
                break
            job = spawn(self.handle_new_request, request.receiver, request.spec)
            self._work_sender.put(WorkRequest.short(job))

    def _next_ticket(self) -> int:
        with self._ticket_lock:
            ticket = self._ticket
            self._ticket += 1
            return ticket

    def handle_new_request(
        self,
        receiver: "queue.Queue[Optional[Iterable[float]]]",
        spec: RecordingSpec,
    ) -> ConsoleMessage:
        """Write incoming chunks to a new cache file until None arrives."""
        file_name = f"{TMP_FILE}_{self._next_ticket()}.{FILE_EXTENSION}"
        path = self._data_directory / file_name
        num_floats = 0
        try:
            with _FloatWavWriter(path, spec.channels, spec.sample_rate) as writer:
                while (chunk := receiver.get()) is not None:
                    writer.write(chunk)
                num_floats = writer.samples_written
                frames = writer.frames
        except OSError as exc:
            raise RibbleError(str(exc), "io") from exc

        recording = CompletedRecording(
            total_duration=timedelta(seconds=frames // spec.sample_rate),
            file_size_estimate=num_floats * _F32_SIZE,
            sample_rate=spec.sample_rate,
            channels=spec.channels,
        )
        with self._lock:
            self._completed[file_name] = recording
        self._latest_exists.set()
        return ConsoleMessage.status(
            f"Total recording duration: {recording.format_duration()}"
        )

    def _export(
        self, out_path: Path, file_name: str, output_format: ExportFormat
    ) -> ConsoleMessage:
        tmp_path = self._data_directory / file_name
        if not tmp_path.is_file():
            raise RibbleError(f"Recording not found: {tmp_path}", "io")
        try:
            if output_format is ExportFormat.F32:
                shutil.copyfile(tmp_path, out_path)
            else:
                with self._lock:
                    job = self._completed.get(file_name)
                if job is None:
                    raise RibbleError("Temp recording metadata not found.")
                _, _, samples = _read_float_wav(tmp_path)
                _write_s16_wav(
                    out_path,
                    job.channels,
                    job.sample_rate,
                    (f32_to_s16(s) for s in samples),
                )
        except (OSError, wave.Error) as exc:
            raise RibbleError(str(exc), "io") from exc
        return ConsoleMessage.status(f"Saved recording to {out_path}!")

    def export_recording(self, out_path, file_name: str, output_format: ExportFormat) -> None:
        """Schedule an export of a cached recording to out_path."""
        job = spawn(self._export, Path(out_path), file_name, output_format)
        self._work_sender.put(WorkRequest.short(job))

    def recording_metadata(self) -> List[Tuple[str, CompletedRecording]]:
        """Return cached recordings, most recent first."""
        with self._lock:
            items = list(self._completed.items())
        items.reverse()
        return items

    def latest_exists(self) -> bool:
        return self._latest_exists.is_set()

    def latest(self) -> Optional[Path]:
        """Return the path of the most recent recording, if any."""
        with self._lock:
            name = next(reversed(self._completed), None) if self._completed else None
        if name is None:
            self._latest_exists.clear()
            return None
        return self._data_directory / name

    def num_completed(self) -> int:
        with self._lock:
            return len(self._completed)

    def recording_path(self, file_name: str) -> Optional[Path]:
        """Return the path of a cached recording, pruning it if its file is gone."""
        with self._lock:
            if file_name not in self._completed:
                return None
            path = self._data_directory / file_name
            if path.is_file():
                return path
            del self._completed[file_name]
            if not self._completed:
                self._latest_exists.clear()
            return None

    def is_clearing(self) -> bool:
        return self._clearing.is_set()

    def _clear_cache(self) -> ConsoleMessage:
        self._clearing.set()
        try:
            with self._lock:
                for name in self._completed:
                    try:
                        (self._data_directory / name).unlink(missing_ok=True)
                    except OSError:
                        pass
                self._latest_exists.clear()
                self._completed.clear()
                with self._ticket_lock:
                    self._ticket = 0
        finally:
            self._clearing.clear()
        return ConsoleMessage.status("Recording cache cleared.")

    def clear_cache(self) -> None:
        """Schedule removal of every cached recording."""
        if self.is_clearing():
            return
        job = spawn(self._clear_cache)
        try:
            self._work_sender.put_nowait(WorkRequest.short(job))
        except queue.Full:
            logger.warning("Cannot send new work request. Channel may be too small.")

    def close(self) -> None:
        """Stop the polling thread and clear the cache."""
        if self._closed:
            return
        self._closed = True
        if self._thread.is_alive():
            self._incoming.put(None)
        self._thread.join()
        self._clear_cache()

    def __enter__(self) -> "WriterEngine":
        return self

    def __exit__(self, *args: Any) -> None:
        self.close()