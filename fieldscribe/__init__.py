"""
Fieldscribe package.

Design intent:
- Turn long recordings into one transcript through a size-limited remote transcription service.
- Keep segmentation, packing, scheduling and merge logic independent from transport layers.
"""
