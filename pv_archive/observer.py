class PipelineObserver:
    """Base class for observers. Inherit from this to listen to pipeline events."""

    def on_fetch_start(self, pvs: list, binning) -> None:
        """Called once per fetch, before any request is dispatched."""
        pass

    def on_pv_error(self, pv: str, error) -> None:
        """Called for every PV whose request failed or returned a malformed body."""
        pass

    def on_fetch_complete(self, result) -> None:
        """Called with the PipelineResult of every completed fetch."""
        pass


class LastResultObserver(PipelineObserver):
    """Keeps the most recent result and per-PV errors, e.g. for a debug panel."""

    def __init__(self) -> None:
        self.last_result = None
        self.errors = {}

    def on_fetch_start(self, pvs, binning):
        self.errors = {}

    def on_pv_error(self, pv, error):
        self.errors[pv] = error

    def on_fetch_complete(self, result):
        self.last_result = result
