"""Failure taxonomy for the hazard recognition pipeline."""

from __future__ import annotations


class HazardPipelineError(Exception):
    """Base class for recoverable pipeline failures."""


class DetectorUnavailable(HazardPipelineError):
    """The external detector failed for a frame."""


class EmbeddingUnavailable(HazardPipelineError):
    """No usable vector: the embedder produced nothing or the region is too small."""


class RemoteBackendError(HazardPipelineError):
    pass


class RemoteReadFailure(RemoteBackendError):
    pass


class RemoteWriteFailure(RemoteBackendError):
    pass


class LocalStorageFailure(HazardPipelineError):
    """The local mirror could not be read or written."""


class StoreClosed(HazardPipelineError):
    """A mutation was requested after the store accepted teardown."""
