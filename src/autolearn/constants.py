"""Loop defaults and shared naming conventions."""

from __future__ import annotations

# Repair cycles allowed per step; the next verification failure fails the mission.
MAX_FIX_ATTEMPTS = 2

# Throttle between step iterations, in seconds.
STEP_DELAY_SECONDS = 1.5

# Wait used when the step index has not been materialized yet.
IDLE_POLL_SECONDS = 0.2

# Repaired artifacts are appended under a prefixed name, never replacing the original.
REVISION_PREFIX = "REVISED_"

REPAIR_TRACE_HEADER = "[REPAIR LOG]"

EXPORT_SEPARATOR = "------------------"

# Shared goal templates offered by the CLI (name -> goal).
MISSION_TEMPLATES: dict[str, tuple[str, str]] = {
	"ai-basics": (
		"AI Fundamentals (Hinglish)",
		"Explain AI and Machine Learning basics for everyone in easy Hindi/English mixed language.",
	),
	"eco-living": (
		"Eco-Friendly Living",
		"Complete guide on how a common person can live sustainably today.",
	),
	"coding-roadmap": (
		"Beginner Coding Roadmap",
		"Build a roadmap for an absolute beginner to get their first job in tech.",
	),
	"well-being": (
		"Mental Well-being Tips",
		"Practical daily habits for mental health that anyone can follow.",
	),
}
