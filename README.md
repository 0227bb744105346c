# frameout

`frameout` takes frames from a camera pipeline and sends them somewhere
useful. It is a library; it has no command-line program.

It has three parts:

- **Video outputs** (`frameout.output`, `frameout.file_output`,
  `frameout.circular_output`, `frameout.net_output`, `frameout.factory`).
  They receive encoded frames, wait for the first keyframe, keep timestamps
  continuous across pauses, and write the frames to a sink.
- **Still-image writers** (`frameout.bmp`, `frameout.png`, `frameout.yuv`,
  `frameout.dng`, `frameout.jpeg`). They take raw frame buffers described by a
  `StreamInfo` from `frameout.formats`.
- **Encoders** (`frameout.encoder`). `NullEncoder` passes frames through
  unchanged; `MjpegEncoder` compresses YUV420 frames to JPEG on four worker
  threads and delivers the results in order.

## Installation

```
pip install frameout
```

The `test` extra adds what the tests need:

```
pip install "frameout[test]"
```

## Frame descriptions

```python
from frameout.formats import PixelFormat, StreamInfo

info = StreamInfo(width=640, height=480, stride=1920, pixel_format=PixelFormat.RGB888)
```

`PixelFormat` covers `RGB888`, `BGR888`, `YUV420`, `YUYV` and the packed
10- and 12-bit Bayer formats (`SRGGB10_CSI2P` and the like). Buffers are
passed as a list of planes; every writer uses the first plane, laid out with
the given `stride`.

## Writing video

`create_output` picks an output from an `OutputOptions`:

```python
from frameout.factory import create_output
from frameout.output import OutputOptions

options = OutputOptions(output="clip.h264", save_pts="timestamps.txt")
with create_output(options) as out:
    for data, timestamp_us, keyframe in frames:
        out.output_ready(data, timestamp_us, keyframe)
```

| Options | Output |
| --- | --- |
| `codec == "libav"` | `Output`, which writes nothing |
| `output` starts with `udp://` or `tcp://` | `NetOutput` |
| `circular` is set | `CircularOutput` |
| `output` is set to anything else | `FileOutput` |
| none of the above | `Output`, which writes nothing |

Behaviour common to all outputs:

- Nothing is written before the first keyframe.
- `signal()` pauses the output; calling it again resumes it. A resumed output
  waits for the next keyframe, and timestamps carry on from where they
  stopped. `pause=True` starts the output paused.
- `save_pts` names a timestamp file. It starts with `# timecode format v2`
  and gets one line per frame, in milliseconds with three decimals.
- `metadata` names a file (or `-` for stdout) for per-frame metadata.
  Pass each frame's metadata mapping to `metadata_ready()` before the frame;
  it is written when the frame is. `metadata_format` is `"json"` (a JSON
  array of objects) or `"txt"` (`name=value` lines, a blank line per frame).
  The helpers `start_metadata_output`, `write_metadata` and
  `stop_metadata_output` are available on their own.
- `close()`, or leaving the `with` block, finishes every file.

### FileOutput

`output` is a file name, or `-` for stdout. The name may hold a printf-style
`%d`, which is filled with a counter for each new file. A new file is started:

- when `segment` is set (milliseconds) and that much time has passed, at the
  next keyframe;
- when `split` is set and recording resumes after a pause.

`wrap` makes the counter go back to 0 after that many files. `flush` flushes
after every write.

### CircularOutput

`circular` is the buffer size in megabytes. Frames are kept in a
`CircularBuffer`, the oldest dropped to make room. On `close()` the frames are
written to `output` (a file name or `-`), starting at the first keyframe left
in the buffer; timestamps, if requested, are written then too. A frame bigger
than the buffer raises `RuntimeError`.

### NetOutput

`output` is `udp://a.b.c.d:port` or `tcp://a.b.c.d:port`
(`parse_network_address` splits it). UDP sends datagrams of at most 65507
bytes. TCP connects to the address, or with `listen=True` waits for one
client on the port.

## Saving still images

```python
from frameout.bmp import bmp_save

bmp_save([rgb_bytes], info, "frame.bmp")
```

All writers accept `-` as the file name for stdout, except `dng_save`.

- `bmp_save(mem, info, filename)`: RGB888 frames as 24-bit BMP.
- `png_save(mem, info, filename)`: BGR888 frames as PNG.
- `yuv_save(mem, info, filename, encoding)`: YUV420 or YUYV frames as planar
  YUV420 (`encoding="yuv420"`), or RGB888/BGR888 frames as packed RGB
  (`encoding="rgb"`), with row padding removed.
- `dng_save(mem, info, metadata, filename, cam_name)`: packed Bayer frames as
  a DNG with a small greyscale thumbnail. The metadata mapping may hold
  `SensorBlackLevels`, `ExposureTime`, `AnalogueGain`, `ColourGains` and
  `ColourCorrectionMatrix`; defaults are used for whatever is missing.
  `unpack_10bit`, `unpack_12bit` and the 3x3 `Matrix` class are public too.
- `jpeg_save(mem, info, metadata, filename, cam_name, options)`: YUV420 or
  YUYV frames with even dimensions as JPEG with EXIF data. `JpegOptions` sets
  `quality`, `restart`, the thumbnail (`thumb_width`, `thumb_height`,
  `thumb_quality`; 0 means none) and extra EXIF tags in `exif`, each written
  as `"IFD.TagName=value[,value...]"`, for example `"EXIF.FNumber=28/10"`.
  `ExposureTime`, `AnalogueGain` and `DigitalGain` in the metadata fill in the
  exposure and ISO tags. `ExifBuilder` and `yuv_to_jpeg` can be used
  directly.

Bad formats and arguments raise `ValueError`; files that cannot be opened or
written raise `RuntimeError`.

## Encoding frames

```python
from frameout.encoder import create_encoder

received = []
with create_encoder("mjpeg", quality=90) as encoder:
    encoder.output_ready_callback = lambda data, ts, keyframe: received.append((data, ts))
    encoder.encode_buffer(yuv420_bytes, info, timestamp_us)
```

`create_encoder` accepts `yuv420` (a `NullEncoder`) and `mjpeg` (a
`MjpegEncoder`), in any case; any other name raises `ValueError`. Every
delivered buffer is marked as a keyframe. `input_done_callback` is called
with no arguments once the encoder is done with an input buffer. Callbacks
run on the encoder's threads; an exception raised in one is re-raised by
`close()`, which first waits for every queued frame to be delivered.

## What this package does not do

It does not capture from a camera, and it has no H.264 encoder and no
audio/container muxing: the only encoders are `NullEncoder` and
`MjpegEncoder`. There is no command-line program; everything is used from
Python.