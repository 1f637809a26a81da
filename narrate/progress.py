"""Progress accounting: per-segment percentages to one overall figure."""

from narrate.models import Phase, ProgressSnapshot

# Share of the job-wide scale given to each phase: (start, end)
PHASE_SPANS = {
    Phase.PROCESSING: (0.0, 5.0),
    Phase.GENERATING: (5.0, 90.0),
    Phase.ASSEMBLING: (90.0, 100.0),
}


def clamp(percentage: float) -> float:
    return max(0.0, min(100.0, float(percentage)))


def aggregate(per_segment: dict[int, float], total_segments: int) -> float:
    """Unweighted mean over all segments; segments with no entry count as 0.

    A job with no segments has nothing left to do and reports 100.
    """
    if total_segments <= 0:
        return 100.0
    # Copy first: workers may insert while we sum
    values = list(per_segment.values())
    return clamp(sum(clamp(v) for v in values) / total_segments)


def snapshot(per_segment: dict[int, float], total_segments: int) -> ProgressSnapshot:
    """Build a ProgressSnapshot from the current per-segment values."""
    current = dict(per_segment)
    return ProgressSnapshot(per_segment=current, overall=aggregate(current, total_segments))


def phase_progress(phase: Phase, percentage: float) -> float:
    """Map a phase-local percentage onto the job-wide 0-100 scale."""
    start, end = PHASE_SPANS[phase]
    return start + (end - start) * clamp(percentage) / 100.0
