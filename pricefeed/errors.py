class PriceFeedError(Exception):
    """Base error for the price feed gateway."""


class SnapshotFetchError(PriceFeedError):
    """Bulk ticker snapshot could not be fetched or decoded."""
