"""Project error hierarchy."""


class MetaGateError(Exception):
    """Base error."""


class RouteConfigError(MetaGateError):
    """Raised when the route/policy file cannot be turned into a registry."""


class MetadataUnavailableError(MetaGateError):
    """Raised when the metadata API cannot supply a usable record.

    Never leaves the resolver: callers see ``None`` instead.
    """


class OriginUnavailableError(MetaGateError):
    """Raised when the origin application cannot be reached."""

    def __init__(self, url: str, detail: str) -> None:
        super().__init__(f"origin_unreachable: {detail}")
        self.url = url
        self.detail = detail
