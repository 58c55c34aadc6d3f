"""
Argument normalizer for memory tool calls.

Tool payloads reach us in three shapes:
- direct fields: {"xml_memory": "...", "user_message": "..."} or {"content": ...}
- wrapped object: {"args": {...same fields...}} or {"args": "<JSON object>"}
- wrapped XML string: {"args": "<memory><content>...</content></memory>"}

Each shape is a strategy. Strategies run in that order; a later one only
fills fields the earlier ones left missing. The resulting field dict is then
validated into one typed request.
"""

import json
import logging
import math
from typing import Any, Callable, Dict, List, Optional

from pydantic import ValidationError

from role_memory.config import NormalizerConfig
from role_memory.errors import (
    MalformedPayload,
    MemoryValidationError,
    MissingRequiredField,
    OutOfRangeValue,
)
from role_memory.memory.schemas import (
    GoalRecord,
    MemoryType,
    TraitRecord,
    coerce_bool,
    coerce_priority,
    split_list,
)
from .requests import (
    AddEpisodic,
    AddSemantic,
    CleanupMemories,
    GetRecentMemories,
    GetStats,
    NormalizeResult,
    SearchMemories,
    ToolCall,
    ToolName,
    UpdateGoals,
    UpdateTraits,
)
from .xml_extract import MEMORY_EXTRACTORS, parse_goals_xml, parse_memory_xml, parse_payload_xml, parse_traits_xml


logger = logging.getLogger(__name__)

MEMORY_WRAPPERS = ("xml_memory", "memory")
TRAIT_WRAPPERS = ("xml_traits", "traits")
GOAL_WRAPPERS = ("xml_goals", "goals")


# ============================================================================
# Shape strategies
# ============================================================================

class ShapeStrategy:
    """Extracts the fields one payload shape carries. Returns {} when the shape does not apply."""

    name = "base"

    def extract(self, params: Dict[str, Any]) -> Dict[str, Any]:
        raise NotImplementedError


class DirectFields(ShapeStrategy):
    """Named parameters at the top level of the payload."""

    name = "direct"

    def extract(self, params: Dict[str, Any]) -> Dict[str, Any]:
        return expand_fields({k: v for k, v in params.items() if k != "args"})


class WrappedObject(ShapeStrategy):
    """Named parameters nested under `args`, as a mapping or a JSON object string."""

    name = "wrapped_object"

    def extract(self, params: Dict[str, Any]) -> Dict[str, Any]:
        args = params.get("args")
        if isinstance(args, str):
            args = _parse_json_object(args)
        if not isinstance(args, dict):
            return {}
        return expand_fields(args)


class WrappedXmlString(ShapeStrategy):
    """An XML string under `args`."""

    name = "wrapped_xml"

    def extract(self, params: Dict[str, Any]) -> Dict[str, Any]:
        args = params.get("args")
        if not isinstance(args, str) or "<" not in args:
            return {}
        return parse_payload_xml(args)


STRATEGIES: List[ShapeStrategy] = [DirectFields(), WrappedObject(), WrappedXmlString()]


def _parse_json_object(text: str) -> Optional[Dict[str, Any]]:
    text = text.strip()
    if not (text.startswith("{") and text.endswith("}")):
        return None
    try:
        value = json.loads(text)
    except json.JSONDecodeError:
        return None
    return value if isinstance(value, dict) else None


def _is_blank(value: Any) -> bool:
    return value is None or (isinstance(value, str) and not value.strip())


def _unwrap_records(value: Any, item_key: str) -> Optional[List[Any]]:
    """Trait / goal mappings as {"traits": {"trait": [...]}} or {"trait": {...}} or a list."""
    if isinstance(value, list):
        return value
    if isinstance(value, dict):
        for key in (item_key + "s", item_key):
            if key in value:
                return _unwrap_records(value[key], item_key)
        return [value]
    return None


def expand_fields(raw: Dict[str, Any]) -> Dict[str, Any]:
    """
    Flatten wrapper fields into plain request fields.

    `xml_memory`, `xml_traits` and `xml_goals` may be XML strings or
    mappings. Fields given explicitly win over fields found inside a wrapper.
    """
    explicit: Dict[str, Any] = {}
    nested: Dict[str, Any] = {}

    for key, value in raw.items():
        if _is_blank(value):
            continue

        if key in MEMORY_WRAPPERS:
            if isinstance(value, str):
                nested.update(parse_memory_xml(value))
            elif isinstance(value, dict):
                inner = value.get("memory", value)
                if isinstance(inner, dict):
                    nested.update({k: v for k, v in inner.items() if k in MEMORY_EXTRACTORS and not _is_blank(v)})
        elif key in TRAIT_WRAPPERS:
            records = parse_traits_xml(value) if isinstance(value, str) else _unwrap_records(value, "trait")
            if records is not None:
                nested["traits"] = records
        elif key in GOAL_WRAPPERS:
            records = parse_goals_xml(value) if isinstance(value, str) else _unwrap_records(value, "goal")
            if records is not None:
                nested["goals"] = records
        else:
            explicit[key] = value

    return {**nested, **explicit}


# ============================================================================
# Coercion
# ============================================================================

def _coerce_int(value: Any, field: str, default: int, minimum: int = 1) -> int:
    if _is_blank(value):
        return default
    if isinstance(value, bool):
        raise OutOfRangeValue(field, value, "expected an integer")
    try:
        number = float(value)
    except (TypeError, ValueError):
        raise OutOfRangeValue(field, value, "expected an integer") from None
    if not math.isfinite(number) or number < minimum:
        raise OutOfRangeValue(field, value, f"expected an integer >= {minimum}")
    return int(number)


def _coerce_float(value: Any, field: str, default: Optional[float]) -> Optional[float]:
    if _is_blank(value):
        return default
    if isinstance(value, bool):
        raise OutOfRangeValue(field, value, "expected a number")
    try:
        number = float(value)
    except (TypeError, ValueError):
        raise OutOfRangeValue(field, value, "expected a number") from None
    if not math.isfinite(number) or number < 0:
        raise OutOfRangeValue(field, value, "expected a non-negative number")
    return number


def _coerce_types(value: Any) -> List[MemoryType]:
    types = []
    for item in split_list(value):
        try:
            types.append(MemoryType(item.lower()))
        except ValueError:
            raise OutOfRangeValue("memory_types", item, "unknown memory type") from None
    return types


def _text(value: Any) -> Optional[str]:
    if _is_blank(value):
        return None
    return str(value).strip()


# ============================================================================
# Normalizer
# ============================================================================

class ArgumentNormalizer:
    """
    Turns a ToolCall into a NormalizeResult. Never raises for bad payloads.

    Partial calls always yield `pending` and are never executed; missing
    required fields on a complete call yield `invalid` with MissingRequiredField.
    """

    def __init__(self, config: Optional[NormalizerConfig] = None, strategies: Optional[List[ShapeStrategy]] = None):
        self.config = config or NormalizerConfig()
        self.strategies = strategies or STRATEGIES
        self._builders: Dict[ToolName, Callable[[Dict[str, Any]], Any]] = {
            ToolName.ADD_EPISODIC: lambda f: self._memory_write(AddEpisodic, f),
            ToolName.ADD_SEMANTIC: lambda f: self._memory_write(AddSemantic, f),
            ToolName.UPDATE_TRAITS: self._update_traits,
            ToolName.UPDATE_GOALS: self._update_goals,
            ToolName.SEARCH_MEMORIES: self._search,
            ToolName.GET_STATS: lambda f: GetStats(),
            ToolName.GET_RECENT: self._recent,
            ToolName.CLEANUP: self._cleanup,
        }

    def collect_fields(self, params: Any) -> Dict[str, Any]:
        """
        Merge the fields every strategy finds, earlier strategies first.

        Raises:
            MalformedPayload: params is neither a mapping nor a string
        """
        if params is None:
            params = {}
        elif isinstance(params, str):
            params = {"args": params}
        elif not isinstance(params, dict):
            raise MalformedPayload(f"unsupported payload type: {type(params).__name__}")

        fields: Dict[str, Any] = {}
        for strategy in self.strategies:
            for key, value in strategy.extract(params).items():
                if key not in fields or _is_blank(fields[key]):
                    fields[key] = value
        return fields

    def normalize(self, call: ToolCall) -> NormalizeResult:
        """
        Normalize one tool call.

        Args:
            call: Raw call from the agent loop

        Returns:
            NormalizeResult with status ok, pending or invalid
        """
        try:
            name = ToolName(call.name)
        except ValueError:
            return NormalizeResult.failure(MalformedPayload(f"unknown tool: {call.name}"))

        try:
            fields = self.collect_fields(call.params)
            if call.partial:
                return NormalizeResult.waiting(self._missing(name, fields))
            request = self._builders[name](fields)
        except MissingRequiredField as exc:
            if self._unreadable(call.params):
                return NormalizeResult.failure(MalformedPayload(f"{name.value}: payload matched no accepted shape"))
            return NormalizeResult.failure(exc)
        except MalformedPayload as exc:
            if call.partial:
                return NormalizeResult.waiting()
            return NormalizeResult.failure(exc)
        except MemoryValidationError as exc:
            return NormalizeResult.failure(exc)

        return NormalizeResult.success(request)

    def _missing(self, name: ToolName, fields: Dict[str, Any]) -> List[str]:
        """Required fields a streamed call still lacks. Any request built here is discarded."""
        if not fields:
            return []
        try:
            self._builders[name](fields)
        except MissingRequiredField as exc:
            return exc.fields
        except MemoryValidationError:
            pass
        return []

    def _unreadable(self, params: Any) -> bool:
        """A non-empty string envelope from which no strategy recovered any field."""
        if isinstance(params, str):
            args = params
        elif isinstance(params, dict) and isinstance(params.get("args"), str):
            args = params["args"]
        else:
            return False
        if not args.strip():
            return False
        envelope = {"args": args}
        return not any(strategy.extract(envelope) for strategy in self.strategies[1:])

    # ========================================================================
    # Request builders
    # ========================================================================

    def user_message(self, value: Any) -> Optional[str]:
        """Trim the acknowledgement and cut it past the configured length."""
        text = _text(value)
        if text is None:
            return None
        limit = self.config.max_user_message_chars
        if len(text) > limit:
            text = text[:limit - 3] + "..."
        return text

    def _memory_write(self, model: type, fields: Dict[str, Any]) -> Any:
        content = _text(fields.get("content"))
        if content is None:
            raise MissingRequiredField(["content"])

        original_length = len(content)
        truncated = original_length > self.config.max_content_chars
        if truncated:
            content = content[:self.config.max_content_chars].rstrip()

        return model(
            content=content,
            keywords=split_list(fields.get("keywords")),
            priority=coerce_priority(fields.get("priority"), default=self.config.default_priority),
            is_constant=coerce_bool(fields.get("is_constant"), default=False),
            tags=split_list(fields.get("tags")),
            source=_text(fields.get("source")) or self.config.default_source,
            emotional_context=split_list(fields.get("emotional_context")),
            related_topics=split_list(fields.get("related_topics")),
            perspective=_text(fields.get("perspective")),
            context_type=_text(fields.get("context_type")),
            memory_tone=_text(fields.get("memory_tone")),
            game_state=_text(fields.get("game_state")),
            ua_info=split_list(fields.get("ua_info")),
            original_length=original_length,
            truncated=truncated,
            user_message=self.user_message(fields.get("user_message")),
        )

    def _update_traits(self, fields: Dict[str, Any]) -> UpdateTraits:
        traits = []
        for raw in fields.get("traits") or []:
            if not isinstance(raw, dict):
                continue
            name, value = _text(raw.get("name")), _text(raw.get("value"))
            if name is None or value is None:
                logger.debug(f"Skipping incomplete trait: {raw}")
                continue
            traits.append(self._record(TraitRecord, {
                "name": name,
                "value": value,
                "confidence": _coerce_float(raw.get("confidence"), "confidence", None),
                "priority": coerce_priority(raw.get("priority"), default=70),
                "is_constant": coerce_bool(raw.get("is_constant"), default=True),
                "keywords": split_list(raw.get("keywords")),
            }))

        if not traits:
            raise MissingRequiredField(["traits"])
        return UpdateTraits(traits=traits, user_message=self.user_message(fields.get("user_message")))

    def _update_goals(self, fields: Dict[str, Any]) -> UpdateGoals:
        goals = []
        for raw in fields.get("goals") or []:
            if not isinstance(raw, dict):
                continue
            value = _text(raw.get("value") or raw.get("description"))
            if value is None:
                logger.debug(f"Skipping incomplete goal: {raw}")
                continue
            goals.append(self._record(GoalRecord, {
                "id": _text(raw.get("id")) or "",
                "value": value,
                "status": (_text(raw.get("status")) or "active").lower(),
                "priority": coerce_priority(raw.get("priority"), default=60),
                "is_constant": coerce_bool(raw.get("is_constant"), default=False),
                "keywords": split_list(raw.get("keywords")),
            }))

        if not goals:
            raise MissingRequiredField(["goals"])
        return UpdateGoals(goals=goals, user_message=self.user_message(fields.get("user_message")))

    @staticmethod
    def _record(model: type, data: Dict[str, Any]) -> Any:
        try:
            return model.model_validate(data)
        except ValidationError as exc:
            error = exc.errors()[0]
            field = str(error["loc"][0]) if error["loc"] else model.__name__
            raise OutOfRangeValue(field, data.get(field), error["msg"]) from None

    def _search(self, fields: Dict[str, Any]) -> SearchMemories:
        text = _text(fields.get("search_text") or fields.get("query"))
        if text is None:
            raise MissingRequiredField(["search_text"])
        return SearchMemories(
            search_text=text,
            memory_types=_coerce_types(fields.get("memory_types")),
            max_results=_coerce_int(fields.get("max_results"), "max_results", 10),
        )

    def _recent(self, fields: Dict[str, Any]) -> GetRecentMemories:
        return GetRecentMemories(
            limit=_coerce_int(fields.get("limit"), "limit", 10),
            memory_types=_coerce_types(fields.get("memory_types")),
        )

    def _cleanup(self, fields: Dict[str, Any]) -> CleanupMemories:
        return CleanupMemories(
            max_age_days=_coerce_float(fields.get("max_age_days"), "max_age_days", 30.0),
            dry_run=coerce_bool(fields.get("dry_run"), default=False),
        )
