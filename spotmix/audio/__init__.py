"""Audio decoding, rendering and loudness helpers."""
