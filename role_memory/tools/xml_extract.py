"""
Tolerant tag extraction for memory tool payloads.

Upstream models emit loosely formed XML, so nothing here runs a real XML
parser. Each tag is matched case-insensitively and non-greedily, its text is
trimmed, CDATA is unwrapped and the five standard entities are decoded.

Recognised tags:
- memory: content, keywords, priority, is_constant, tags, source,
  emotional_context, related_topics, perspective, context_type,
  memory_tone, game_state, ua_info
- wrappers: args, xml_memory, memory, xml_traits, traits, xml_goals, goals,
  user_message
- trait blocks: name, value, confidence, priority, is_constant, keywords
- goal blocks: id, value, status, priority, is_constant, keywords
- query tools: search_text, memory_types, max_results, limit,
  max_age_days, dry_run

A tag that is absent yields the default documented on its extractor.
"""

import re
from functools import lru_cache
from typing import Any, Callable, Dict, List, Optional, Tuple
from xml.sax.saxutils import unescape

from role_memory.memory.schemas import split_list


_CDATA = re.compile(r"<!\[CDATA\[(.*?)\]\]>", re.DOTALL)
_ATTR = re.compile(r"""([A-Za-z_][\w\-]*)\s*=\s*(?:"([^"]*)"|'([^']*)')""")

QUERY_TAGS = ("search_text", "memory_types", "max_results", "limit", "max_age_days", "dry_run")


@lru_cache(maxsize=64)
def _tag_pattern(tag: str) -> "re.Pattern[str]":
    name = re.escape(tag)
    return re.compile(
        rf"<{name}(?P<attrs>\s[^>]*?)?(?:/>|>(?P<body>.*?)</{name}\s*>)",
        re.IGNORECASE | re.DOTALL,
    )


def _clean(text: str) -> str:
    text = _CDATA.sub(lambda m: m.group(1), text)
    return unescape(text, {"&quot;": '"', "&apos;": "'"}).strip()


# ============================================================================
# Generic extraction
# ============================================================================

def has_tag(xml: str, tag: str) -> bool:
    return _tag_pattern(tag).search(xml) is not None


def extract_tag(xml: str, tag: str, default: Optional[str] = None) -> Optional[str]:
    """
    Text of the first `<tag>` element.

    Args:
        xml: Source text
        tag: Tag name, matched case-insensitively
        default: Returned when the tag is absent

    Returns:
        Trimmed text ("" for a self-closing tag), or default
    """
    match = _tag_pattern(tag).search(xml)
    if match is None:
        return default
    return _clean(match.group("body") or "")


def extract_inner(xml: str, tag: str) -> Optional[str]:
    """Raw inner markup of the first `<tag>` element, untrimmed of child tags."""
    match = _tag_pattern(tag).search(xml)
    if match is None:
        return None
    return match.group("body") or ""


def extract_blocks(xml: str, tag: str) -> List[Tuple[Dict[str, str], str]]:
    """
    Every `<tag>` element as (attributes, inner markup).

    Self-closing elements yield an empty body.
    """
    blocks = []
    for match in _tag_pattern(tag).finditer(xml):
        attrs = {}
        for attr in _ATTR.finditer(match.group("attrs") or ""):
            value = attr.group(2) if attr.group(2) is not None else attr.group(3)
            attrs[attr.group(1).lower()] = _clean(value)
        blocks.append((attrs, match.group("body") or ""))
    return blocks


def extract_list(xml: str, tag: str) -> List[str]:
    """Comma separated tag text as a list; [] when absent."""
    return split_list(extract_tag(xml, tag))


def extract_bool(xml: str, tag: str, default: bool = False) -> bool:
    """True only when the tag text reads "true" (any case)."""
    text = extract_tag(xml, tag)
    if not text:
        return default
    return text.lower() == "true"


# ============================================================================
# Memory tags
# ============================================================================

def extract_content(xml: str) -> Optional[str]:
    """Memory text. Default: None (required by add tools)."""
    return extract_tag(xml, "content")


def extract_keywords(xml: str) -> List[str]:
    """Default: [] (keywords are then derived from content)."""
    return extract_list(xml, "keywords")


def extract_priority(xml: str) -> Optional[str]:
    """Raw priority text, coerced later. Default: None (configured default priority)."""
    return extract_tag(xml, "priority")


def extract_is_constant(xml: str) -> bool:
    """Default: False."""
    return extract_bool(xml, "is_constant", default=False)


def extract_tags(xml: str) -> List[str]:
    """Default: []."""
    return extract_list(xml, "tags")


def extract_source(xml: str) -> Optional[str]:
    """Default: None (configured default source)."""
    return extract_tag(xml, "source")


def extract_emotional_context(xml: str) -> List[str]:
    """Default: []."""
    return extract_list(xml, "emotional_context")


def extract_related_topics(xml: str) -> List[str]:
    """Default: [] (semantic memories then fall back to their tags)."""
    return extract_list(xml, "related_topics")


def extract_perspective(xml: str) -> Optional[str]:
    """Default: None."""
    return extract_tag(xml, "perspective")


def extract_context_type(xml: str) -> Optional[str]:
    """Default: None."""
    return extract_tag(xml, "context_type")


def extract_memory_tone(xml: str) -> Optional[str]:
    """Default: None."""
    return extract_tag(xml, "memory_tone")


def extract_game_state(xml: str) -> Optional[str]:
    """Default: None."""
    return extract_tag(xml, "game_state")


def extract_ua_info(xml: str) -> List[str]:
    """Default: []."""
    return extract_list(xml, "ua_info")


MEMORY_EXTRACTORS: Dict[str, Callable[[str], Any]] = {
    "content": extract_content,
    "keywords": extract_keywords,
    "priority": extract_priority,
    "is_constant": extract_is_constant,
    "tags": extract_tags,
    "source": extract_source,
    "emotional_context": extract_emotional_context,
    "related_topics": extract_related_topics,
    "perspective": extract_perspective,
    "context_type": extract_context_type,
    "memory_tone": extract_memory_tone,
    "game_state": extract_game_state,
    "ua_info": extract_ua_info,
}


def parse_memory_xml(xml: str) -> Dict[str, Any]:
    """
    Memory fields present in an XML payload.

    The `<memory>` element is used when there is one, otherwise the whole
    text. Absent tags are left out so callers can tell them from defaults.
    """
    scope = extract_inner(xml, "memory")
    if scope is None:
        scope = xml

    return {
        field: extractor(scope)
        for field, extractor in MEMORY_EXTRACTORS.items()
        if has_tag(scope, field)
    }


# ============================================================================
# Trait and goal blocks
# ============================================================================

def _block_field(attrs: Dict[str, str], body: str, tag: str) -> Optional[str]:
    value = extract_tag(body, tag)
    if value is None:
        value = attrs.get(tag)
    return value


def parse_traits_xml(xml: str) -> List[Dict[str, Any]]:
    """
    Every `<trait>` block as a raw field dict.

    name and value may also be given as attributes. Blocks missing either
    are kept so the caller can report them; priority defaults to 70 and
    is_constant to True.
    """
    traits = []
    for attrs, body in extract_blocks(xml, "trait"):
        trait: Dict[str, Any] = {
            "name": _block_field(attrs, body, "name"),
            "value": _block_field(attrs, body, "value"),
            "priority": _block_field(attrs, body, "priority"),
            "is_constant": extract_bool(body, "is_constant", default=True),
            "keywords": extract_list(body, "keywords"),
        }
        confidence = _block_field(attrs, body, "confidence")
        if confidence:
            trait["confidence"] = confidence
        traits.append(trait)
    return traits


def parse_goals_xml(xml: str) -> List[Dict[str, Any]]:
    """
    Every `<goal>` block as a raw field dict.

    is_constant defaults to False and status to "active".
    """
    goals = []
    for attrs, body in extract_blocks(xml, "goal"):
        goal: Dict[str, Any] = {
            "id": _block_field(attrs, body, "id") or "",
            "value": _block_field(attrs, body, "value"),
            "status": _block_field(attrs, body, "status") or "active",
            "priority": _block_field(attrs, body, "priority"),
            "is_constant": extract_bool(body, "is_constant", default=False),
            "keywords": extract_list(body, "keywords"),
        }
        goals.append(goal)
    return goals


def parse_payload_xml(xml: str) -> Dict[str, Any]:
    """
    Every recognised field in an XML tool payload, flattened.

    Handles `<args>` envelopes, `xml_memory` / `xml_traits` / `xml_goals`
    wrappers, bare memory tags and the query tool tags.
    """
    scope = extract_inner(xml, "args")
    if scope is None:
        scope = xml

    fields: Dict[str, Any] = {}

    user_message = extract_tag(scope, "user_message")
    if user_message is not None:
        fields["user_message"] = user_message

    if has_tag(scope, "trait"):
        fields["traits"] = parse_traits_xml(scope)
    if has_tag(scope, "goal"):
        fields["goals"] = parse_goals_xml(scope)

    for tag in QUERY_TAGS:
        value = extract_tag(scope, tag)
        if value is not None:
            fields[tag] = value

    # trait and goal blocks reuse priority / keywords tags
    if "traits" not in fields and "goals" not in fields:
        memory_scope = extract_inner(scope, "xml_memory")
        fields.update(parse_memory_xml(scope if memory_scope is None else memory_scope))
    return fields
