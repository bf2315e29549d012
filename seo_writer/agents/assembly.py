import re
from typing import List, Optional
from slugify import slugify

from seo_writer.config import settings
from seo_writer.agents.artifacts import WriteArtifact
from seo_writer.agents.schemas import Outline, SectionResult
from seo_writer.utils.text import count_words, split_sentences, strip_leading_heading

SLUG_MAX_LENGTH = 60
MAX_TAGS = 8


def build_meta_description(sections: List[SectionResult], keywords: List[str],
                           limit: Optional[int] = None) -> str:
    """First sentences of the opening prose, trimmed to ``limit`` on a word boundary."""
    limit = limit or settings.META_DESCRIPTION_MAX
    sentences: List[str] = []
    for section in sections:
        prose = re.sub(r"^\s*[-*|>].*$", "", section.content, flags=re.MULTILINE)
        sentences.extend(split_sentences(prose))
        if sentences:
            break

    text = " ".join(sentences)
    text = re.sub(r"\[([^\]]+)\]\([^)]+\)", r"\1", text)
    text = re.sub(r"[*_`#]", "", text)
    text = re.sub(r"\s+", " ", text).strip()
    if keywords and keywords[0].lower() not in text.lower():
        text = f"{keywords[0].capitalize()}: {text}" if text else keywords[0].capitalize()

    if len(text) <= limit:
        return text
    cut = text[:limit - 3].rsplit(" ", 1)[0].rstrip(",;:")
    return cut + "..."


def build_tags(keywords: List[str], outline: Outline) -> List[str]:
    tags: List[str] = []
    for value in list(keywords) + [t for s in outline.sections for t in s.keyword_targets]:
        tag = value.strip().lower()
        if tag and tag not in tags:
            tags.append(tag)
    return tags[:MAX_TAGS]


def assemble_markdown(title: str, sections: List[SectionResult]) -> str:
    parts = [f"# {title}"]
    for section in sections:
        parts.append(f"## {section.heading}\n\n{strip_leading_heading(section.content)}")
    return "\n\n".join(parts) + "\n"


def assemble(outline: Outline, sections: List[SectionResult], title: Optional[str] = None) -> WriteArtifact:
    """Join accepted sections in outline order into the write artifact."""
    order = {spec.id: index for index, spec in enumerate(outline.sections)}
    ordered = sorted(sections, key=lambda s: order.get(s.section_id, len(order)))
    title = title or outline.title
    content = assemble_markdown(title, ordered)
    return WriteArtifact(
        sections=ordered,
        complete=len(ordered) == len(outline.sections),
        content=content,
        slug=slugify(title, max_length=SLUG_MAX_LENGTH, word_boundary=True),
        meta_description=build_meta_description(ordered, outline.keywords),
        tags=build_tags(outline.keywords, outline),
        word_count=count_words(content),
    )
