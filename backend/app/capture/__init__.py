"""
capture — Exclusive camera / microphone access and live media capture.

Sub-modules:
    models          — MediaSession, state and kind enums
    platform        — boundary to the platform media service (+ simulation)
    stream_manager  — single-owner device slots, handle hand-out
    channel         — ordered chunk → finalize event channel
    artifacts       — in-memory finalized recordings and stills
    recorder        — video / audio RecorderController
    photo           — PhotoCaptureController
"""
