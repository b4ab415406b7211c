"""
API orchestration boundary for the transcription service.

Design intent:
- Expose thin, typed endpoints over the chunked transcription pipeline.
- Keep request validation explicit and failure modes predictable.
"""
