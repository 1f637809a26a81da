"""CLI interface with subcommand routing and pipeline orchestration."""

import argparse
import asyncio
import logging
import os
import shutil
import sys

from narrate.artifacts import (
    get_project_status,
    init_output_dir,
    invalidate_downstream,
    list_projects,
    load_artifact,
    slug_from_path,
    write_artifact,
)
from narrate.assembly import Assembler
from narrate.chunker import build_segments, clean_text, estimate_duration_minutes, validate_chunks
from narrate.constants import (
    DEFAULT_MAX_CONCURRENCY,
    GENERATION_TIMEOUT_S,
    MAX_CHUNK_LENGTH,
    OUTPUT_DIR,
    VERSION,
)
from narrate.errors import ChunkingError, NarrateError, SourceError, TranscriptError
from narrate.exporter import export
from narrate.models import JobStatus, ProgressEvent, VoiceParameters
from narrate.pipeline import run_job
from narrate.provider import HttpSpeechGenerator
from narrate.scheduler import Scheduler
from narrate.sources import read_source
from narrate.transcript import OpenRouterTranscriptSource
from narrate.tts import EdgeTTSGenerator, synthesize_to_file
from narrate.voices import VOICE_POOL, filter_voices, list_edge_voices, load_voice_config, resolve_voice

QUALITIES = ("draft", "low", "medium", "high", "premium")
PROVIDERS = ("edge", "http")
SAMPLE_TEXT = "The quick brown fox jumps over the lazy dog."


def _check_ffmpeg():
    """Verify ffmpeg is installed."""
    if not shutil.which("ffmpeg"):
        print("Error: ffmpeg is required for --verify but not found.", file=sys.stderr)
        print("Install with: brew install ffmpeg", file=sys.stderr)
        raise SystemExit(1)


def _fail(message: str):
    print(f"Error: {message}", file=sys.stderr)
    raise SystemExit(1)


def _get_project_dir(slug: str) -> str:
    """Get project directory path, verify it exists."""
    project_dir = os.path.join(OUTPUT_DIR, slug)
    if not os.path.isdir(project_dir):
        print(f"Error: Project '{slug}' not found.", file=sys.stderr)
        print("Run 'narrate new <file>' to create a project.", file=sys.stderr)
        raise SystemExit(1)
    if not os.path.exists(os.path.join(project_dir, "script.json")):
        _fail(f"Project '{slug}' is incomplete (no script.json).")
    return project_dir


def _script_data(text: str, source: str, max_length: int) -> dict:
    segments = build_segments(text, max_length)
    validate_chunks([s.text for s in segments], max_length=max_length)
    return {
        "source": source,
        "text": text,
        "max_length": max_length,
        "estimated_minutes": estimate_duration_minutes(text),
        "segments": [{"index": s.index, "text": s.text} for s in segments],
    }


def cmd_new(args):
    """Create a new project from a text, Markdown, PDF or DOCX file."""
    file_path = args.file

    if not os.path.exists(file_path):
        _fail(f"File not found: {file_path}")

    try:
        text = read_source(file_path)
    except SourceError as e:
        _fail(str(e))

    if not text.strip():
        _fail(f"File is empty: {file_path}")

    slug = slug_from_path(file_path)
    project_dir = os.path.join(OUTPUT_DIR, slug)
    if os.path.exists(os.path.join(project_dir, "script.json")):
        print(f"Error: Project '{slug}' already exists.", file=sys.stderr)
        print(f"Use 'narrate run {slug}' to generate audio, or 'narrate set {slug} ...' to adjust.", file=sys.stderr)
        raise SystemExit(1)

    if args.audience:
        print(f"Writing transcript for a {args.audience} audience...")
        try:
            source = OpenRouterTranscriptSource.from_env()
            text = asyncio.run(source.generate(text, args.audience))
        except TranscriptError as e:
            _fail(str(e))

    text = clean_text(text)
    max_length = args.max_length
    try:
        script = _script_data(text, os.path.abspath(file_path), max_length)
    except ChunkingError as e:
        _fail(f"Could not segment {file_path}: {e}")

    project_dir = init_output_dir(file_path, output_base=OUTPUT_DIR)
    write_artifact(project_dir, "script.json", script)

    voice = load_voice_config(file_path)
    settings = {
        "provider": "edge",
        "voice": voice.voice,
        "quality": voice.quality,
        "speed": voice.speed,
        "concurrency": DEFAULT_MAX_CONCURRENCY,
        "max_length": max_length,
        "timeout": GENERATION_TIMEOUT_S,
        "allow_partial": False,
    }
    write_artifact(project_dir, "settings.json", settings)

    print(f"Created project: {slug}")
    print(f"Chunked into {len(script['segments'])} segments (~{script['estimated_minutes']} min of audio)")
    print(f"Run 'narrate status {slug}' to review, or 'narrate run {slug}' to generate audio.")


class _ProgressPrinter:
    """Prints one line per phase each time the whole percentage changes."""

    def __init__(self):
        self.last = None

    def __call__(self, event: ProgressEvent):
        key = (event.phase, int(event.percentage))
        if key == self.last:
            return
        self.last = key
        print(f"  [{event.phase.value:<10}] {int(event.percentage):3d}%")


def _build_generator(settings: dict):
    if settings.get("provider", "edge") == "http":
        base_url = os.environ.get("NARRATE_TTS_URL", "")
        if not base_url:
            _fail("NARRATE_TTS_URL must be set for the http provider.")
        try:
            return HttpSpeechGenerator(
                base_url,
                os.environ.get("NARRATE_TTS_KEY", ""),
                user_id=os.environ.get("NARRATE_TTS_USER", ""),
            )
        except ValueError as e:
            _fail(str(e))
    return EdgeTTSGenerator()


def cmd_run(args):
    """Run the generation pipeline."""
    if args.verbose:
        logging.getLogger("narrate").setLevel(logging.INFO)
    if args.verify:
        _check_ffmpeg()

    slug = args.slug
    project_dir = _get_project_dir(slug)

    script = load_artifact(project_dir, "script.json")
    settings = load_artifact(project_dir, "settings.json")
    if not script or not settings:
        _fail(f"Project '{slug}' is missing required artifacts.")

    final_dir = os.path.join(project_dir, "final")
    if args.force and os.path.exists(final_dir):
        shutil.rmtree(final_dir)
    os.makedirs(final_dir, exist_ok=True)
    if os.path.exists(os.path.join(final_dir, "output.json")):
        print(f"[skip] {slug} is already exported (use --force to regenerate)")
        return

    voice = VoiceParameters(
        voice=settings["voice"],
        quality=settings.get("quality", "premium"),
        speed=settings.get("speed", 1.0),
    )
    allow_partial = args.partial or settings.get("allow_partial", False)
    segment_count = len(script["segments"])
    print(f"Generating {segment_count} segments with {settings['concurrency']} workers ({voice.voice})...")

    try:
        result = asyncio.run(run_job(
            script["text"],
            _build_generator(settings),
            voice,
            max_length=settings.get("max_length", MAX_CHUNK_LENGTH),
            scheduler=Scheduler(
                max_concurrency=settings["concurrency"],
                timeout=settings.get("timeout", GENERATION_TIMEOUT_S),
            ),
            assembler=Assembler(verify=args.verify),
            allow_partial=allow_partial,
            on_progress=_ProgressPrinter(),
        ))
    except NarrateError as e:
        _fail(str(e))

    if result.status == JobStatus.FAILED_BEFORE_GENERATION:
        _fail(result.summary())

    if result.failed_segments:
        print(f"Job {result.summary()}", file=sys.stderr)
        for index in result.failed_segments:
            print(f"  segment {index}: {result.errors.get(index, 'unknown error')}", file=sys.stderr)

    if result.artifact is not None:
        output_path = export(
            result, project_dir, slug,
            {"source": script.get("source", "")},
            {**settings, "allow_partial": allow_partial},
        )
        print(f"Done: {output_path}")

    if result.failed_segments:
        if not allow_partial:
            print(f"Re-run with 'narrate run {slug} --partial' to export the segments that succeeded.", file=sys.stderr)
        raise SystemExit(1)


def cmd_status(args):
    """Show project status."""
    slug = args.slug
    project_dir = _get_project_dir(slug)

    script = load_artifact(project_dir, "script.json")
    settings = load_artifact(project_dir, "settings.json") or {}
    status = get_project_status(project_dir)

    print(f"Project: {slug}")
    print(f"Source:  {script.get('source', 'unknown')}")
    segments = script.get("segments", [])
    longest = max((len(s["text"]) for s in segments), default=0)
    print(f"Segments: {len(segments)} (longest {longest} chars, ~{script.get('estimated_minutes', '?')} min)")
    print("Settings:")
    for key in ("provider", "voice", "quality", "speed", "concurrency", "max_length", "timeout", "allow_partial"):
        if key in settings:
            print(f"  {key:<14} {settings[key]}")

    print("Steps:")
    for step in ("chunk", "generate", "export"):
        info = status.get(step, {"state": "pending"})
        state = info["state"]
        marker = "[done]" if state == "done" else "[part]" if state == "partial" else "[----]"
        details = ""
        if step == "chunk" and state == "done":
            details = f" ({info['segments']} segments)"
        elif step == "generate" and state == "partial":
            details = f" ({info['failed']}/{info['segments']} failed)"
        elif step == "export" and state == "done":
            details = f" ({info['file']})"
        print(f"  {marker} {step:<10}{details}")


def _parse_float(value: str) -> float:
    try:
        return float(value)
    except ValueError:
        _fail(f"Invalid value: {value}")


def _parse_positive_int(value: str) -> int:
    try:
        number = int(value)
    except ValueError:
        _fail(f"Invalid value: {value}")
    if number < 1:
        _fail(f"Value must be at least 1: {value}")
    return number


def cmd_set(args):
    """Update project settings."""
    slug = args.slug
    project_dir = _get_project_dir(slug)

    key = args.key
    values = args.values

    valid_keys = {"voice", "speed", "quality", "concurrency", "max-length", "timeout", "partial", "provider"}
    if key not in valid_keys:
        print(f"Error: Invalid setting key: {key}", file=sys.stderr)
        print(f"Valid keys: {', '.join(sorted(valid_keys))}", file=sys.stderr)
        raise SystemExit(1)
    if not values:
        _fail(f"'set {key}' requires a value")

    settings = load_artifact(project_dir, "settings.json") or {}
    value = values[0]

    if key == "voice":
        settings["voice"] = resolve_voice(value)
    elif key == "speed":
        speed = _parse_float(value)
        if not 0.5 <= speed <= 2.0:
            _fail("speed must be between 0.5 and 2.0")
        settings["speed"] = speed
    elif key == "quality":
        if value not in QUALITIES:
            _fail(f"quality must be one of: {', '.join(QUALITIES)}")
        settings["quality"] = value
    elif key == "concurrency":
        settings["concurrency"] = _parse_positive_int(value)
    elif key == "timeout":
        settings["timeout"] = _parse_float(value)
    elif key == "partial":
        if value not in ("on", "off"):
            _fail("'set partial' requires 'on' or 'off'")
        settings["allow_partial"] = value == "on"
    elif key == "provider":
        if value not in PROVIDERS:
            _fail(f"provider must be one of: {', '.join(PROVIDERS)}")
        settings["provider"] = value
    elif key == "max-length":
        max_length = _parse_positive_int(value)
        script = load_artifact(project_dir, "script.json")
        try:
            script = _script_data(script["text"], script.get("source", ""), max_length)
        except ChunkingError as e:
            _fail(str(e))
        write_artifact(project_dir, "script.json", script)
        settings["max_length"] = max_length
        print(f"Re-chunked into {len(script['segments'])} segments")

    write_artifact(project_dir, "settings.json", settings)
    print(f"Updated: {key} → {value}")

    deleted = invalidate_downstream(project_dir, key)
    if deleted:
        print(f"Invalidated: {', '.join(deleted)} (will regenerate on next run)")


def cmd_list(args):
    """List all projects."""
    projects = list_projects(output_base=OUTPUT_DIR)
    if not projects:
        print("No projects found.")
        return
    print("Projects:")
    for name in projects:
        status = get_project_status(os.path.join(OUTPUT_DIR, name))
        export_state = status.get("export", {}).get("state", "pending")
        marker = "[done]" if export_state == "done" else "[----]"
        print(f"  {marker} {name}")


def cmd_voices(args):
    """List available voices."""
    if args.all:
        voices = [v.id for v in asyncio.run(list_edge_voices())]
    else:
        voices = VOICE_POOL
    voices = filter_voices(voices, args.filter)
    if not voices:
        print("No matching voices found.")
        return
    print("Available voices:")
    for v in voices:
        print(f"  {v}")


def cmd_sample(args):
    """Render a short sample clip in one voice."""
    voice = resolve_voice(args.voice)
    speed = VoiceParameters(voice=voice, speed=args.speed)
    try:
        synthesize_to_file(args.text, voice, args.output, rate=speed.rate)
    except Exception as e:
        _fail(f"Could not generate sample: {e}")
    print(f"Wrote {args.output}")


def main():
    """CLI entry point."""
    logging.basicConfig(
        level=logging.WARNING,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )

    parser = argparse.ArgumentParser(
        prog="narrate",
        description="narrate: turn long-form text into one narrated audio file",
    )
    parser.add_argument("--version", action="version", version=f"%(prog)s {VERSION}")

    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    # new
    new_parser = subparsers.add_parser("new", help="Create a new project from a document")
    new_parser.add_argument("file", help="Path to the input document (.txt, .md, .pdf or .docx)")
    new_parser.add_argument("--audience", help="Write a transcript for this audience first (needs OPENROUTER_API_KEY)")
    new_parser.add_argument("--max-length", type=int, default=MAX_CHUNK_LENGTH, help="Maximum characters per segment")
    new_parser.set_defaults(func=cmd_new)

    # run
    run_parser = subparsers.add_parser("run", help="Generate and assemble the narration")
    run_parser.add_argument("slug", help="Project slug (from filename)")
    run_parser.add_argument("-v", "--verbose", action="store_true", help="Log pipeline details")
    run_parser.add_argument("--force", action="store_true", help="Force re-run (delete exported output)")
    run_parser.add_argument("--partial", action="store_true", help="Export the segments that succeeded if some fail")
    run_parser.add_argument("--verify", action="store_true", help="Decode the combined audio before export (needs ffmpeg)")
    run_parser.set_defaults(func=cmd_run)

    # status
    status_parser = subparsers.add_parser("status", help="Show project status")
    status_parser.add_argument("slug", help="Project slug")
    status_parser.set_defaults(func=cmd_status)

    # set
    set_parser = subparsers.add_parser("set", help="Update project settings")
    set_parser.add_argument("slug", help="Project slug")
    set_parser.add_argument("key", help="Setting key")
    set_parser.add_argument("values", nargs="*", help="Setting value(s)")
    set_parser.set_defaults(func=cmd_set)

    # list
    list_parser = subparsers.add_parser("list", help="List all projects")
    list_parser.set_defaults(func=cmd_list)

    # voices
    voices_parser = subparsers.add_parser("voices", help="List available voices")
    voices_parser.add_argument("--filter", help="Filter voices by substring")
    voices_parser.add_argument("--all", action="store_true", help="Fetch the full edge-tts voice list")
    voices_parser.set_defaults(func=cmd_voices)

    # sample
    sample_parser = subparsers.add_parser("sample", help="Render a short sample in one voice")
    sample_parser.add_argument("voice", help="Voice id")
    sample_parser.add_argument("output", help="Output MP3 path")
    sample_parser.add_argument("--text", default=SAMPLE_TEXT, help="Text to speak")
    sample_parser.add_argument("--speed", type=float, default=1.0, help="Speaking speed (1.0 = normal)")
    sample_parser.set_defaults(func=cmd_sample)

    args = parser.parse_args()

    if not args.command:
        parser.print_help()
        return

    args.func(args)
