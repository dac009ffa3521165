"""
Exception hierarchy for geoipd
"""


class GeoIPError(Exception):
    """Base class for all geoipd errors"""


class ConfigError(GeoIPError):
    """Invalid configuration value"""


class InvalidAddressError(GeoIPError):
    """Address could not be parsed as an IPv4/IPv6 address"""


# Lookup path

class LookupFailure(GeoIPError):
    """A single lookup failed; other lookups are unaffected"""


class NotReadyError(LookupFailure):
    def __init__(self, message: str = "GeoIP database not open"):
        super().__init__(message)


class DecodeError(LookupFailure):
    """The decoder failed for one address"""


# Refresh path

class RefreshError(GeoIPError):
    """A refresh failed; the previously installed database keeps serving"""


class TransferError(RefreshError):
    """Network transfer failed"""


class ChecksumMismatchError(RefreshError):
    def __init__(self, computed: str, expected: str):
        super().__init__(f"GeoIP database checksum mismatch: {computed} != {expected}")
        self.computed = computed
        self.expected = expected


class EntryNotFoundError(RefreshError):
    def __init__(self, entry: str):
        super().__init__(f"GeoIP database {entry} not found in downloaded archive")
        self.entry = entry


class ArchiveError(RefreshError):
    """Downloaded archive is not a readable gzip tarball"""


class StorageError(RefreshError):
    """Filesystem operation on the data directory failed"""


class OpenError(RefreshError):
    """Installed database file could not be opened by the decoder"""
