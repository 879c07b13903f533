"""Error taxonomy for clipplan.

InputError is the only failure a render pass is expected to recover from at
the process boundary: the template is malformed or inconsistent, the current
render is aborted and nothing partial is returned. ProbeError is raised for
unreadable sources and is reported the same way. CommandError means ffmpeg
itself failed.
"""


class InputError(ValueError):
    """Malformed or inconsistent template input."""


class ProbeError(InputError):
    """A source file is unreadable or lacks an expected stream."""


class CommandError(RuntimeError):
    """An external command (ffmpeg) exited unsuccessfully."""
