"""
Transcription pipeline for long recordings.

Design intent:
- Split arbitrarily long audio into request-sized chunks at speech boundaries.
- Keep provider-specific complexity out of API handlers and scripts.
- Return one ordered, de-duplicated transcript per recording.
"""
