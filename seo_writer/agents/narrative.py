import re
from typing import Dict, Any, List

from seo_writer.agents.schemas import (
    ContentCoverage, NarrativeContext, Outline, PendingTransitions, SectionResult,
)
from seo_writer.utils.text import extract_key_points, extract_statistics

MAX_CONCEPTS = 5
TRANSITION_WORDS = [
    "however", "therefore", "furthermore", "additionally", "moreover",
    "building on", "following", "next", "subsequently", "as established",
]
STOP_WORDS = {"the", "and", "but", "for", "with", "this", "that", "their", "which", "about", "research"}


def narrative_phase(position: int, total: int) -> str:
    """Phase for a 1-based section position. The opening section is always the introduction."""
    ratio = position / total if total else 1.0
    if position <= 1 or ratio <= 0.2:
        return "introduction"
    if ratio <= 0.7:
        return "development"
    if ratio <= 0.9:
        return "climax"
    return "conclusion"


def key_themes(outline: Outline) -> List[str]:
    themes: List[str] = []
    for keyword in outline.keywords:
        themes.append(keyword.lower())
    for source_text, min_length, take in ((outline.content_strategy, 6, 3), (outline.summary, 7, 2)):
        words = [w.strip(".,;:!?()\"'").lower() for w in (source_text or "").split()]
        significant = [w for w in words if len(w) >= min_length and w not in STOP_WORDS]
        themes.extend(significant[:take])
    unique: List[str] = []
    for theme in themes:
        if theme and theme not in unique:
            unique.append(theme)
    return unique[:5]


def _transition_from(section: SectionResult) -> str:
    sentences = [s.strip() for s in re.split(r"[.!?]+", section.content) if len(s.strip()) > 10]
    heading = section.heading.lower()
    if not sentences:
        return f"Building on the discussion of {heading}..."
    last = sentences[-1].lower()
    if "however" in last or " but " in last:
        return "This complexity leads us to consider..."
    if "therefore" in last or "thus" in last:
        return "Given this foundation, we can now explore..."
    return f"Having established {heading}, the next consideration is..."


def advance(prior_sections: List[SectionResult], outline: Outline) -> NarrativeContext:
    """Narrative state for the section that follows ``prior_sections``.

    Derived only from the accepted sections passed in, so callers recompute it
    from whatever set is current (including sections replaced by later fixes).
    """
    total = len(outline.sections)
    position = min(len(prior_sections) + 1, max(total, 1))
    next_spec = outline.sections[position - 1] if position - 1 < total else None

    concepts: List[str] = []
    topics: List[str] = []
    statistics: List[str] = []
    for section in prior_sections:
        for point in extract_key_points(section.content, limit=1):
            if point not in concepts:
                concepts.append(point)
        for keyword in section.keywords_used[:3]:
            if keyword not in topics:
                topics.append(keyword)
        for stat in extract_statistics(section.content):
            if stat not in statistics:
                statistics.append(stat)

    if prior_sections:
        last = prior_sections[-1]
        transitions = PendingTransitions(
            from_previous_section=_transition_from(last),
            to_next_section=(
                f"The discussion of {last.heading.lower()} naturally leads us to examine "
                f"{next_spec.label.lower()}." if next_spec else None
            ),
        )
        thread = " -> ".join(s.heading for s in prior_sections)
    else:
        transitions = PendingTransitions(from_previous_section="This is the opening section of the article.")
        thread = outline.content_strategy or outline.summary

    return NarrativeContext(
        current_position=position,
        total_sections=total,
        phase=narrative_phase(position, total),
        introduced_concepts=concepts[-MAX_CONCEPTS:],
        key_themes=key_themes(outline),
        narrative_thread=thread,
        pending_transitions=transitions,
        content_coverage=ContentCoverage(topics_covered=topics, statistics_used=statistics),
    )


def render(context: NarrativeContext) -> str:
    """Prompt block describing where the next section sits in the article."""
    concepts = "\n".join(f"- {c}" for c in context.introduced_concepts) or "- None yet"
    lines = [
        "<narrative_context>",
        f"<position>Section {context.current_position} of {context.total_sections} ({context.phase} phase)</position>",
        f"<key_themes>{', '.join(context.key_themes)}</key_themes>",
        f"<narrative_thread>{context.narrative_thread}</narrative_thread>",
        f"<already_covered>\n{concepts}\n</already_covered>",
    ]
    if context.content_coverage.statistics_used:
        lines.append(
            f"<statistics_used>{', '.join(context.content_coverage.statistics_used)}</statistics_used>"
        )
    lines.append(f"<transition_from_previous>{context.pending_transitions.from_previous_section}</transition_from_previous>")
    if context.pending_transitions.to_next_section:
        lines.append(f"<transition_hint>{context.pending_transitions.to_next_section}</transition_hint>")
    lines.append("Do not repeat points listed under already_covered; build on them instead.")
    lines.append("</narrative_context>")
    return "\n".join(lines)


def _repeated_words(sections: List[SectionResult]) -> List[str]:
    counts: Dict[str, int] = {}
    for section in sections:
        for word in section.content.lower().split():
            clean = re.sub(r"[^a-z]", "", word)
            if len(clean) > 6:
                counts[clean] = counts.get(clean, 0) + 1
    return [word for word, count in counts.items() if count > 5][:5]


def _flow_score(sections: List[SectionResult]) -> float:
    if len(sections) < 2:
        return 1.0
    total = 0.0
    for previous, current in zip(sections, sections[1:]):
        content = current.content.lower()
        score = 0.5 if any(word in content for word in TRANSITION_WORDS) else 0.0
        if set(previous.keywords_used) & set(current.keywords_used):
            score += 0.5
        total += score
    return total / (len(sections) - 1)


def _theme_score(sections: List[SectionResult], themes: List[str]) -> float:
    if not themes or not sections:
        return 1.0
    total = 0.0
    for section in sections:
        content = section.content.lower()
        total += len([t for t in themes if t.lower() in content]) / len(themes)
    return total / len(sections)


def check_consistency(sections: List[SectionResult], context: NarrativeContext) -> Dict[str, Any]:
    """Advisory findings on repetition, flow and theme drift. Never blocks a run."""
    issues: List[str] = []
    recommendations: List[str] = []

    repeated = _repeated_words(sections)
    if repeated:
        issues.append(f"Repeated concepts detected: {', '.join(repeated)}")
        recommendations.append("Review sections for content overlap and consolidate duplicate information")

    if _flow_score(sections) < 0.7:
        issues.append("Poor narrative flow between sections")
        recommendations.append("Add transition sentences to improve section connectivity")

    if _theme_score(sections, context.key_themes) < 0.8:
        issues.append("Inconsistent theme development across sections")
        recommendations.append("Ensure all sections support the main themes identified in the outline")

    return {"is_consistent": not issues, "issues": issues, "recommendations": recommendations}
