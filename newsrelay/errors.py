"""Exception types shared across the pipeline."""


class NewsRelayError(Exception):
    """Base class for newsrelay errors"""


class SourceFetchError(NewsRelayError):
    """A source adapter could not produce items (non-2xx, bad payload, transport)"""

    def __init__(self, source: str, message: str):
        super().__init__(f"{source}: {message}")
        self.source = source


class EnrichmentError(NewsRelayError):
    """An enrichment service call failed or returned a malformed body"""

    def __init__(self, service: str, message: str):
        super().__init__(f"{service}: {message}")
        self.service = service


class JobNotFoundError(NewsRelayError):
    pass


class AuthError(NewsRelayError):
    """Socket handshake rejected; message is sent to the client verbatim"""
