"""Choose the output implementation that suits the options."""

from __future__ import annotations

from .circular_output import CircularOutput
from .file_output import FileOutput
from .net_output import NetOutput
from .output import Output, OutputOptions


def create_output(options: OutputOptions) -> Output:
    """Return a network, circular, file or discarding output."""
    if options.codec == "libav":
        return Output(options)
    if options.output.startswith(("udp://", "tcp://")):
        return NetOutput(options)
    if options.circular:
        return CircularOutput(options)
    if options.output:
        return FileOutput(options)
    return Output(options)