from __future__ import annotations

"""Hard limits for render settings.

Enforced by config validation before the engine is configured.
"""

MAX_BLOCK_SIZE = 65536

MIN_SAMPLE_RATE = 1
MAX_SAMPLE_RATE = 768_000

OVERSAMPLING_FACTORS = {"x1": 1, "x2": 2, "x4": 4, "x8": 8}

MAX_POLYPHONY = 64
