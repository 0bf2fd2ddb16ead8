"""vocalstrip: HTTP service that turns uploaded songs into instrumentals.

Two strategies are offered: a one-pass ffmpeg phase-cancellation filter and
an external demucs separation run.
"""

__version__ = "0.1.0"
