"""Audio buffers and output.

Planar blocks are owned by the scheduler and reused in place; the WAV writer
streams interleaved 16-bit PCM through the stdlib wave module.
"""
