from .samples import AggregateBucket, Gap, Sample

__all__ = [
    "AggregateBucket",
    "Gap",
    "Sample",
]
