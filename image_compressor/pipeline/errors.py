"""Exception types raised by the asset pipeline."""


class PipelineError(Exception):
    """Base class for pipeline failures."""


class HydrationError(PipelineError):
    """Reading an asset's size/preview failed."""


class ProcessingError(PipelineError):
    """A compression job failed. The message is shown to the user verbatim."""


class ExportError(PipelineError):
    """Writing results out failed. Never changes record status."""


class ServiceUnavailableError(PipelineError):
    """The processing service cannot be used at all; fatal to a running batch."""


class BatchAlreadyRunningError(PipelineError):
    """run_batch was called while another batch is still in flight."""


class InvalidTransitionError(PipelineError):
    def __init__(self, asset_id: str, current: object, requested: object) -> None:
        super().__init__(f"{asset_id}: illegal status transition {current} -> {requested}")
        self.asset_id = asset_id
        self.current = current
        self.requested = requested
