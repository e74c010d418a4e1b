from .exceptions import (ArchiveError, ConfigError, FetchError, HttpError,
                         InvalidRange, MalformedResponse, Timeout,
                         TransportError)
