"""PixelSynth Stage: admission-controlled AI pixel-art generation service."""

__version__ = "0.1.0"
