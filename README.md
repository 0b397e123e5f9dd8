# ribble

Building blocks for a desktop audio transcription tool. The package has three modules:

- **`ribble.visualizer`** turns a block of audio samples into a fixed number of
  buckets for display. `AnalysisType` names the four analyses:
  - `waveform`: the peak absolute amplitude of each frame.
  - `amplitude_envelope`: the RMS of each frame, with frames overlapping by 25%.
  - `power_spectral_density`: a Welch-averaged FFT power spectrum, normalised
    into [0, 1].
  - `log_spectrum_normalized`: FFT power summed into log-spaced frequency
    buckets and scaled by the peak.

  The spectral analyses use 512-sample Hann-windowed frames with 50% overlap.
  `run_analysis` picks the analysis from an `AnalysisType`. `VisualizerEngine`
  runs the analyses on a background thread. It reads `VisualizerSample` packets
  from a queue, and a `None` packet stops it. Packets are skipped unless
  `set_visibility(True)` has been called. `read_buffer()` returns a copy of the
  latest result.
- **`ribble.worker`** holds `WorkerEngine`. It takes `WorkRequest`s from a queue:
  `WorkRequest.short(job)`, `WorkRequest.long(job)` or `WorkRequest.shutdown()`.
  A job is a future, usually made with `spawn(func, *args)`, which runs the
  function on a new thread. Short and long jobs are waited on in separate queues.
  Each outcome goes to a console queue:
  - A returned `ConsoleMessage` is passed on as it is.
  - A returned or raised `RibbleError` is passed on as `ConsoleMessage.error(...)`.
  - Any other exception is reported as a `RibbleError` with category
    `"thread_panic"`.
- **`ribble.writer`** holds `WriterEngine`, which keeps a cache of 32-bit float
  WAV files in a data directory. `WriteJob`s arrive on a queue. Each job's
  chunks of interleaved samples are written to `tmp_recording_<n>.wav` until a
  `None` chunk arrives. Metadata for each recording is kept as a
  `CompletedRecording`. You can ask the engine for:
  - `recording_metadata()`: the cached recordings, most recent first.
  - `latest()`: the path of the most recent recording.
  - `recording_path(name)`: the path of a recording. An entry whose file is gone
    is pruned.
  - `num_completed()`: how many recordings are cached.

  `export_recording` copies a recording as float or converts it to 16-bit
  integer WAV (`ExportFormat.F32` / `ExportFormat.I16`). `clear_cache` deletes
  the cached files. Recording, export and clearing run as work requests sent to
  a `WorkerEngine`'s request queue.

## Installation

```
pip install .
```

With the test dependencies:

```
pip install .[test]
```

## Examples

Analysing a block of samples directly:

```python
import numpy as np

from ribble.visualizer import AnalysisType, run_analysis

samples = np.sin(np.linspace(0, 200 * np.pi, 4096)).astype(np.float32)
buckets = run_analysis(AnalysisType.WAVEFORM, samples, 16000.0, 32)
print(buckets)  # 32 peak values
```

The engines are context managers. Leaving the `with` block stops their threads.
The writer also clears its recording cache when it closes.

```python
import queue

from ribble.worker import ConsoleMessage, WorkerEngine, WorkRequest, spawn

requests = queue.Queue()
console = queue.Queue()
with WorkerEngine(requests, console):
    requests.put(WorkRequest.short(spawn(lambda: ConsoleMessage.status("done"))))
print(console.get().content)  # "done"
```

Recording into the cache:

```python
import queue
import tempfile

from ribble.worker import WorkerEngine
from ribble.writer import RecordingSpec, WriteJob, WriterEngine

requests, console, jobs = queue.Queue(), queue.Queue(), queue.Queue()
with tempfile.TemporaryDirectory() as data_dir:
    with WorkerEngine(requests, console), WriterEngine(data_dir, jobs, requests) as writer:
        chunks = queue.Queue()
        jobs.put(WriteJob(chunks, RecordingSpec(sample_rate=16000, channels=1)))
        chunks.put([0.0] * 32000)
        chunks.put(None)
        print(console.get().content)  # "Total recording duration: 00:00:02"
        print(writer.latest())
```

## What it does not do

The package does not capture audio from a microphone and has no window or user
interface. It installs no command. Samples must be supplied by the caller.

## Tests

```
pytest
```