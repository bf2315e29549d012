"""Markdown and text helpers shared by the writer, critic and quality gate."""
import re
from typing import Dict, List, Tuple

WORD_RE = re.compile(r"\b[\w'’-]+\b", re.UNICODE)
H2_RE = re.compile(r"^##\s+(.+?)\s*$", re.MULTILINE)
LEADING_HEADING_RE = re.compile(r"^\s*#{1,2}\s+[^\n]*\n+")
INNER_HEADING_RE = re.compile(r"^#{1,2}(?=[ \t])")
LINK_RE = re.compile(r"(?<!!)\[([^\]]+)\]\(([^)\s]+)(?:\s+\"[^\"]*\")?\)")
IMAGE_RE = re.compile(r"!\[([^\]]*)\]\(([^)\s]+)(?:\s+\"[^\"]*\")?\)")
SENTENCE_SPLIT_RE = re.compile(r"(?<=[.!?])\s+")
STATISTIC_RE = re.compile(
    r"\b\d+(?:[.,]\d+)?\s*(?:%|percent|million|billion|thousand|times|fold)\b|\$\d[\d,.]*|\b\d+(?:\.\d+)?%",
    re.IGNORECASE,
)
TLDR_RE = re.compile(r"^(?:#{2,3}\s*)?(?:\*\*)?\s*TL;?DR\b", re.IGNORECASE | re.MULTILINE)

NUMERIC_RE = re.compile(r"\d")
IMPORTANCE_WORDS = ("important", "significant", "key", "major", "critical", "essential")
ACTION_VERBS = ("shows", "demonstrates", "indicates", "reveals", "suggests")


def count_words(text: str) -> int:
    return len(WORD_RE.findall(text or ""))


def split_sentences(text: str) -> List[str]:
    plain = re.sub(r"^#+\s+.*$", "", text or "", flags=re.MULTILINE)
    return [s.strip() for s in SENTENCE_SPLIT_RE.split(plain) if len(s.strip()) > 10]


def score_relevance(sentence: str) -> int:
    """Score a sentence for how much it is worth carrying into later prompts."""
    lowered = sentence.lower()
    score = 0
    if NUMERIC_RE.search(sentence) or "%" in sentence:
        score += 3
    if any(re.search(rf"\b{word}\b", lowered) for word in IMPORTANCE_WORDS):
        score += 2
    if any(re.search(rf"\b{word}\b", lowered) for word in ACTION_VERBS):
        score += 1
    return score


def extract_key_points(text: str, limit: int = 3) -> List[str]:
    """Highest scoring sentences, kept in reading order."""
    sentences = split_sentences(text)
    ranked = sorted(
        enumerate(sentences), key=lambda pair: (-score_relevance(pair[1]), pair[0])
    )[:limit]
    return [sentence for _, sentence in sorted(ranked)]


def extract_statistics(text: str, limit: int = 3) -> List[str]:
    found: List[str] = []
    for match in STATISTIC_RE.findall(text or ""):
        value = match.strip()
        if value not in found:
            found.append(value)
    return found[:limit]


def extract_links(text: str) -> List[Tuple[str, str]]:
    return LINK_RE.findall(text or "")


def extract_images(text: str) -> List[Tuple[str, str]]:
    return IMAGE_RE.findall(text or "")


def keywords_present(text: str, keywords: List[str]) -> List[str]:
    lowered = (text or "").lower()
    return [kw for kw in keywords if kw and kw.lower() in lowered]


def strip_leading_heading(content: str) -> str:
    """Drop a heading the model repeated at the start of a section body."""
    return LEADING_HEADING_RE.sub("", content or "", count=1).strip()


def markdown_headings(markdown: str, level: int) -> List[str]:
    """Text of the headings of exactly ``level`` that sit outside fenced code."""
    marker = "#" * level + " "
    headings: List[str] = []
    in_fence = False
    for line in (markdown or "").splitlines():
        if line.strip().startswith("```"):
            in_fence = not in_fence
            continue
        if not in_fence and line.startswith(marker):
            headings.append(line[len(marker):].strip())
    return headings


def demote_headings(content: str) -> str:
    """Turn H1 and H2 lines of a section body into H3. Fenced code is left as is."""
    lines: List[str] = []
    in_fence = False
    for line in (content or "").splitlines():
        if line.strip().startswith("```"):
            in_fence = not in_fence
        elif not in_fence:
            line = INNER_HEADING_RE.sub("###", line)
        lines.append(line)
    return "\n".join(lines)


def template_skeleton(structure_template: str) -> List[str]:
    """Section labels declared by a structure template.

    Templates are either markdown with H2 headings or a plain list, one section
    per line.
    """
    headings = H2_RE.findall(structure_template or "")
    if headings:
        return [h.strip() for h in headings]
    labels = []
    for line in (structure_template or "").splitlines():
        line = re.sub(r"^\s*(?:[-*+]|\d+[.)])\s*", "", line).strip()
        if line and not line.startswith("#"):
            labels.append(line)
    return labels


def parse_markdown_sections(markdown: str) -> List[Dict[str, str]]:
    """Best-effort split of free-form markdown into H2 sections.

    Only used for model output that did not come back as structured data.
    Text before the first H2 is returned under an empty heading when it has
    anything besides an H1.
    """
    sections: List[Dict[str, str]] = []
    heading = ""
    buffer: List[str] = []
    in_fence = False

    def flush():
        body = "\n".join(buffer).strip()
        if heading or body:
            sections.append({"heading": heading, "content": body})

    for line in (markdown or "").splitlines():
        if line.strip().startswith("```"):
            in_fence = not in_fence
        if not in_fence and line.startswith("## ") and not line.startswith("###"):
            flush()
            heading = line[3:].strip()
            buffer = []
            continue
        if not in_fence and not heading and line.startswith("# "):
            continue
        buffer.append(line)
    flush()
    return sections
