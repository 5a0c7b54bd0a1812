"""
Domain exceptions raised by the processing and distribution core.
"""


class DuplicateJobError(Exception):
    """A job for this video is already queued or running."""

    def __init__(self, video_id: str, state: str):
        self.video_id = video_id
        self.state = state
        super().__init__(f"Video {video_id} is already {state}")


class TranscodeError(Exception):
    """The media transcoder could not produce outputs."""


class EdgeSyncError(Exception):
    """A push to a single edge server failed."""

    def __init__(self, server_name: str, step: str, message: str):
        self.server_name = server_name
        self.step = step
        super().__init__(f"Failed to {step} on {server_name}: {message}")


class InvalidRangeError(Exception):
    """A Range header that cannot be satisfied for the file."""

    def __init__(self, header: str, file_size: int):
        self.header = header
        self.file_size = file_size
        super().__init__(f"Range '{header}' not satisfiable for {file_size} bytes")


class UploadRejected(Exception):
    """An uploaded file failed validation."""


class EdgeServerConflict(Exception):
    """An edge server with the same address or api key is already registered."""
