"""
Error taxonomy shared by the importer, the store and the HTTP layer.
"""


class GreenwoodError(Exception):
    """Base class for all greenwood errors."""


class FetchError(GreenwoodError):
    """A registry request failed (network, timeout or non-2xx status)."""


class ParseError(GreenwoodError):
    """A registry response could not be decoded into the expected shape."""


class NormalizationRejected(GreenwoodError):
    """A payload could not be turned into a PackageRecord."""


class DuplicateKeyError(GreenwoodError):
    """The natural key of a record is already stored."""


class StoreUnavailableError(GreenwoodError):
    """The record store cannot be opened or used."""


class InvalidFilterError(GreenwoodError):
    """A query filter is malformed."""
