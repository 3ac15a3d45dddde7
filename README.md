# gigecap

Tools for GigE Vision cameras and camera-like frame streams:

- find cameras on the local network with the GVCP discovery broadcast
  (`gigecap.discovery`);
- build and decode GVCP control packets (`gigecap.gvcp`) and read and write
  camera registers over a control channel (`gigecap.camera`);
- decode GVSP stream packets and reassemble them into frames (`gigecap.gvsp`);
- stream length-prefixed frames over TCP between a generator and a collector
  (`gigecap.frames`);
- read a JSON description of a processing pipeline (`gigecap.config`);
- queue and execute text commands with a worker thread (`gigecap.commands`);
- turn raw frame dumps into image files (`gigecap.imaging`).

## Installation

```
pip install .
```

For the test suite:

```
pip install ".[test]"
pytest
```

## Commands

### Find cameras

```
gigecap-discover [--wait SECONDS]
```

Broadcasts a discovery packet to UDP port 3956 from every IPv4 interface that
is up and not point-to-point, waits `--wait` seconds (default 1) and prints,
for each answer, the interface it came in on and a summary of the camera:
IP and port, vendor, model, serial number, user-defined name and MAC address.
It ends with the number of devices found.

### Capture frames

```
gigecap-capture [--device IP] [--port PORT] [--duration SECONDS]
                [--output-dir DIR] [--wait SECONDS]
```

Without `--device` the cameras are discovered first and the first one is used.
The command takes control of the camera, points stream channel 0 at a local
UDP socket, starts acquisition and keeps it running for `--duration` seconds
(default 15). Every frame that is replaced by a newer one is written to
`DIR/out_<frame_id>.raw` (default directory `data`). Acquisition is then
stopped and control released. It prints the number of frames saved and exits
with status 1 if no camera was found or the capture failed.

### Convert a raw frame

```
gigecap-raw2bmp in.raw out.bmp [--rows N] [--cols N] [--channels N]
```

Reads raw 8-bit pixel bytes (default 960 rows, 1920 columns, 1 channel) and
writes them as an image; the format follows the target file's extension. Three
channels are read as BGR; any channel count other than 1 or 3 is read as BGRA.
Run without two file arguments it prints a usage line.

### Stream test frames

```
gigecap-frame-server PORT [--source DIR] [--count N] [--interval SECONDS]
gigecap-frame-client HOST PORT
```

The server loads `0.jpg`, `1.jpg`, … up to `--count` images (default 873)
from `--source`, or from the directory named by the `TEST_SOURCE_PATH`
environment variable, as 1920×960 BGR frames. To every client that connects
it sends them in an endless cycle, one every `--interval` seconds
(default 0.0625, 16 frames per second).

Each chunk on the wire is a 12-byte header — total chunk size as a
little-endian unsigned 64-bit integer, including the header, then the frame id
as a little-endian signed 32-bit integer — followed by the image bytes.

The client connects and reads frames until the stream ends.

## Library use

Building and decoding control packets:

```python
from gigecap.gvcp import build_read_register_packet, parse_register_ack, next_packet_id

packet_id = 0xF000
request = build_read_register_packet(0x0934, packet_id)
packet_id = next_packet_id(packet_id)   # stays within 0xf000..0xffff
# value = parse_register_ack(answer)    # raises ValueError on an error status
```

Register access on a known camera:

```python
from gigecap.camera import ControlChannel

with ControlChannel("192.0.2.10") as channel:
    capability = channel.read_register(0x0934)
    channel.write_register(0x0A00, 0x02)
```

`read_register` and `write_register` raise `TimeoutError` when no matching
acknowledgement arrives and `ValueError` when the camera reports an error.
`capture(device, duration, output_dir)` runs the whole acquisition and returns
the paths of the saved frames.

Reassembling stream packets into frames:

```python
from gigecap.gvsp import GvspPacket, FrameAssembler

assembler = FrameAssembler(tick_frequency=125_000_000)
for datagram in datagrams:
    finished = assembler.feed(GvspPacket.parse(datagram))
    if finished is not None:
        print(finished.frame_id, finished.size, finished.leader)
```

A packet with a frame id larger than any seen before starts a new frame, and
`feed` returns the frame it replaces.

Reading a pipeline description:

```python
from gigecap.config import read_configuration, ConfigError, ModuleType

try:
    modules = read_configuration("pipeline.json")
except ConfigError as error:
    print(error)
else:
    first = next(m for m in modules if m.type is ModuleType.FIRST)
    print(first.argv, first.next)
```

The file holds a JSON list (or an object whose values are taken in order) of
modules, each with `id`, `name`, `parameters` (a list of strings), `type`
(`FIRST`, `MIDDLE` or `LAST`) and `next_id`. A module's `argv` is its name
followed by its parameters. A module without `next_id` must be `LAST`, one
with `next_id` must not be; exactly one module may be `FIRST`, and there must
be one.

Queueing commands:

```python
from gigecap.commands import CommandExecutor, CommandServer, put_command

executor = CommandExecutor(init_pipeline=lambda filename: object())
with CommandServer(executor) as server:
    reply = put_command(server, fd=5, request="INIT\n")
```

The executor understands `STOP`/`S`, `INIT`/`I` and `CONFIG`/`C` (which asks
for a configuration file name), in any case. `put_command` also raises the
server's stop flag for `STOP`, `S`, `QUIT`, `Q` and `EXIT`.

Framing payloads and tracking objects:

```python
import io
from gigecap.frames import pack_frame, read_frames, FrameCollector

stream = io.BytesIO(pack_frame(0, payload))
for header, data in read_frames(stream):
    ...

collector = FrameCollector(("localhost", 5000), measure=my_radius,
                           on_object=lambda index: print("object", index))
collector.run()
```

Given a `measure` function that returns a radius for an image, the collector
feeds the radii to an `ObjectTracker`, which reports an object once at least
16 frames with a radius of 150 or more have been followed by at least 8 frames
with a radius below 135.

## What the package does not do

- It has no image-analysis routine of its own: `FrameCollector` measures
  objects only through a `measure` function you supply, and
  `gigecap-frame-client`, which supplies none, only counts frames.
- The command queue has no network front end; requests reach it only through
  `CommandServer.push` or `put_command`. `CommandExecutor` starts and stops a
  pipeline only through the `init_pipeline` and `destroy_pipeline` callables
  it is given.
- `read_configuration` does not check that the `next_id` links form a single
  chain without loops.
- The acquisition sequence in `gigecap.camera` writes a fixed set of
  vendor-specific registers; it does not read a camera's feature description.