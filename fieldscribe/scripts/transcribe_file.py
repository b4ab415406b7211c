from __future__ import annotations

import argparse
import asyncio
import json
import logging
import sys
from dataclasses import replace
from pathlib import Path

from fieldscribe.asr.models import ChunkResult
from fieldscribe.asr.service import TranscriptionSetupError, transcribe_audio_file
from fieldscribe.internal_core import load_config
from fieldscribe.internal_core.errors import TranscriptionPipelineError


def _print_progress(result: ChunkResult) -> None:
    status = "ok" if result.ok else (result.error_code or "failed")
    print(
        f"chunk {result.index}: {result.start_ms}-{result.end_ms}ms {status}",
        file=sys.stderr,
    )


def main() -> None:
    parser = argparse.ArgumentParser(
        description="Transcribe one audio file through the chunked transcription pipeline"
    )
    parser.add_argument("audio_path", help="Path to the recording (wav, mp3, m4a, ...)")
    parser.add_argument("--language", default=None, help="ISO language hint, e.g. en")
    parser.add_argument(
        "--provider",
        default=None,
        help="Transcription provider override: openai or mock (default: STT_PROVIDER)",
    )
    parser.add_argument(
        "--no-vad",
        action="store_true",
        help="Skip the neural speech classifier and use the energy heuristic only.",
    )
    parser.add_argument(
        "--report-json",
        action="store_true",
        help="Print the full run report as JSON instead of the transcript text.",
    )
    parser.add_argument("--progress", action="store_true", help="Print per-chunk progress to stderr.")
    parser.add_argument("--log-level", default=None, help="Override STT_LOG_LEVEL.")
    args = parser.parse_args()

    cfg = load_config()
    if args.no_vad:
        cfg = replace(cfg, STT_VAD_ENABLED=False)
    logging.basicConfig(
        level=(args.log_level or cfg.STT_LOG_LEVEL).upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    path = Path(args.audio_path).expanduser()
    if not path.exists():
        raise SystemExit(f"audio file not found: {path}")

    try:
        report = asyncio.run(
            transcribe_audio_file(
                path,
                language=args.language,
                cfg=cfg,
                provider=args.provider,
                on_result=_print_progress if args.progress else None,
            )
        )
    except (TranscriptionSetupError, ValueError) as exc:
        raise SystemExit(str(exc))
    except TranscriptionPipelineError as exc:
        raise SystemExit(f"transcription failed: {exc} ({', '.join(exc.errors)})")

    if args.report_json:
        print(json.dumps(report.model_dump(mode="json"), indent=2, ensure_ascii=False))
    else:
        print(report.text)


if __name__ == "__main__":
    main()
