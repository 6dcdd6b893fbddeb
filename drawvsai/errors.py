"""Exceptions raised by the Draw vs AI modules."""


class DrawVsAIError(Exception):
    """Base class for application errors."""


class ModelLoadError(DrawVsAIError):
    """
    A model (hand landmarker or sketch classifier) could not be loaded.

    Fatal for the affected pipeline: the caller has to rebuild it from
    scratch, there is no partial recovery.
    """
