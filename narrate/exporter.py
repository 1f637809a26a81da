"""Export the assembled artifact with a provenance manifest."""

import os
from datetime import datetime, timezone

from narrate.artifacts import write_artifact, write_bytes
from narrate.constants import VERSION
from narrate.models import JobResult

EXTENSIONS = {
    "audio/mpeg": "mp3",
    "audio/aac": "aac",
    "audio/ogg": "ogg",
    "audio/wav": "wav",
    "audio/flac": "flac",
}


def export(
    result: JobResult,
    project_dir: str,
    slug: str,
    metadata: dict,
    settings: dict,
) -> str:
    """Write the job's artifact bytes as-is plus an output.json manifest.

    Creates:
      - output/<slug>/final/<slug>.<ext> (the narration)
      - output/<slug>/final/output.json (provenance manifest)

    Returns path to the audio file.
    """
    artifact = result.artifact
    if artifact is None:
        raise ValueError(f"job has no artifact to export ({result.summary()})")

    final_dir = os.path.join(project_dir, "final")
    os.makedirs(final_dir, exist_ok=True)

    ext = EXTENSIONS.get(artifact.media_type, "bin")
    output_path = os.path.join(final_dir, f"{slug}.{ext}")
    write_bytes(output_path, artifact.data)

    manifest = {
        "project": slug,
        "file": os.path.basename(output_path),
        "source": metadata.get("source", ""),
        "generated_at": datetime.now(timezone.utc).isoformat(),
        "narrate_version": VERSION,
        "media_type": artifact.media_type,
        "status": result.status.value,
        "settings": settings,
        "stats": {
            "segments": result.total_segments,
            "assembled_segments": artifact.segment_count,
            "failed_segments": result.failed_segments,
            "bytes": len(artifact.data),
            "duration_seconds": round(artifact.duration_ms / 1000, 1) if artifact.duration_ms else None,
        },
    }
    write_artifact(final_dir, "output.json", manifest)

    return output_path
