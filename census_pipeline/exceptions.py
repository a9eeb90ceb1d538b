"""
Exceptions raised by the census pipeline.

Row-level problems (unparsable numbers, zero denominators) never raise; they
are absorbed by the stages and counted. Only structural violations that must
abort a run are modelled here.
"""

from typing import Iterable, List, Tuple


class PipelineError(Exception):
    """Base class for errors that abort a pipeline run."""


class IngestionError(PipelineError):
    """Raised when raw input cannot be loaded into the bronze layer."""


class DuplicateKeyError(PipelineError):
    """Raised when the silver composite key is not unique."""

    def __init__(self, keys: Iterable[Tuple]):
        self.keys: List[Tuple] = list(keys)
        preview = ", ".join(str(k) for k in self.keys[:10])
        more = f" (and {len(self.keys) - 10} more)" if len(self.keys) > 10 else ""
        super().__init__(
            f"Duplicate (geography_id, sex, race_or_color) keys: {preview}{more}"
        )


class ReferentialIntegrityError(PipelineError):
    """Raised when a fact row cannot be resolved against its dimensions."""

    def __init__(self, dimension: str, keys: Iterable[Tuple]):
        self.dimension = dimension
        self.keys: List[Tuple] = list(keys)
        preview = ", ".join(str(k) for k in self.keys[:10])
        super().__init__(f"Unresolved {dimension} keys in fact table: {preview}")
