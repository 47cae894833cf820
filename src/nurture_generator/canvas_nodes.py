"""Typed attribute payloads for canvas nodes.

Every node type has its own attribute class. Documents use the camelCase keys
the canvas has always written (``sequencePosition``, ``variantA``...), and
keys a class does not know about are carried in ``extra`` so a load/save
cycle does not drop them.
"""

from dataclasses import dataclass, field, fields, replace
from typing import Any, Dict, List, Mapping, Optional, Tuple, Type, Union

NODE_EMAIL = "email"
NODE_WAIT = "wait"
NODE_TRIGGER = "trigger"
NODE_AB_TEST = "ab-test"
NODE_CONDITION = "condition"
NODE_SPLIT = "split"

NODE_TYPES = (NODE_EMAIL, NODE_WAIT, NODE_TRIGGER, NODE_AB_TEST, NODE_CONDITION, NODE_SPLIT)

WAIT_UNITS = ("minutes", "hours", "days", "weeks")


@dataclass(frozen=True)
class SubjectContent:
    subject: str = ""
    content: str = ""


@dataclass(frozen=True)
class EmailAttributes:
    subject: str = "New Email"
    content: str = ""
    template: str = "default"
    sequence_position: Optional[int] = None
    variants: Optional[Tuple[str, str]] = None
    extra: Dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class WaitAttributes:
    duration: float = 1
    unit: str = "days"
    extra: Dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class TriggerAttributes:
    event: str = "signup"
    label: str = ""
    conditions: Tuple[Dict[str, str], ...] = ()
    extra: Dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class ABTestAttributes:
    variant_a: SubjectContent = SubjectContent("Variant A", "")
    variant_b: SubjectContent = SubjectContent("Variant B", "")
    split: float = 50
    extra: Dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class ConditionAttributes:
    field_name: str = ""
    operator: str = "equals"
    value: str = ""
    true_path: str = ""
    false_path: str = ""
    extra: Dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class SplitAttributes:
    percentage: float = 50
    path_a: str = ""
    path_b: str = ""
    extra: Dict[str, Any] = field(default_factory=dict)


NodeAttributes = Union[
    EmailAttributes,
    WaitAttributes,
    TriggerAttributes,
    ABTestAttributes,
    ConditionAttributes,
    SplitAttributes,
]

ATTRIBUTE_TYPES: Dict[str, Type[Any]] = {
    NODE_EMAIL: EmailAttributes,
    NODE_WAIT: WaitAttributes,
    NODE_TRIGGER: TriggerAttributes,
    NODE_AB_TEST: ABTestAttributes,
    NODE_CONDITION: ConditionAttributes,
    NODE_SPLIT: SplitAttributes,
}

# python attribute name -> document key, per type
_DOCUMENT_KEYS: Dict[str, Dict[str, str]] = {
    NODE_EMAIL: {
        "subject": "subject",
        "content": "content",
        "template": "template",
        "sequence_position": "sequencePosition",
        "variants": "abVariants",
    },
    NODE_WAIT: {"duration": "duration", "unit": "unit"},
    NODE_TRIGGER: {"event": "event", "label": "label", "conditions": "conditions"},
    NODE_AB_TEST: {"variant_a": "variantA", "variant_b": "variantB", "split": "split"},
    NODE_CONDITION: {
        "field_name": "field",
        "operator": "operator",
        "value": "value",
        "true_path": "truePath",
        "false_path": "falsePath",
    },
    NODE_SPLIT: {"percentage": "percentage", "path_a": "pathA", "path_b": "pathB"},
}


def is_node_type(value: str) -> bool:
    return value in ATTRIBUTE_TYPES


def default_attributes(node_type: str) -> NodeAttributes:
    return _attribute_class(node_type)()


def attributes_to_dict(node_type: str, attributes: NodeAttributes) -> Dict[str, Any]:
    keys = _DOCUMENT_KEYS[node_type]
    data: Dict[str, Any] = dict(attributes.extra)
    for name, key in keys.items():
        value = getattr(attributes, name)
        if value is None:
            continue
        data[key] = _encode_value(name, value)
    return data


def attributes_from_dict(node_type: str, raw: Optional[Mapping[str, Any]]) -> NodeAttributes:
    cls = _attribute_class(node_type)
    keys = _DOCUMENT_KEYS[node_type]
    source = dict(raw) if isinstance(raw, Mapping) else {}
    defaults = cls()
    values: Dict[str, Any] = {}
    for name, key in keys.items():
        if key not in source:
            continue
        values[name] = _decode_value(name, source.pop(key), getattr(defaults, name))
    values["extra"] = source
    return cls(**values)


def merge_attributes(
    node_type: str, attributes: NodeAttributes, updates: Mapping[str, Any]
) -> NodeAttributes:
    """Apply a partial update given with document keys or attribute names."""
    keys = _DOCUMENT_KEYS[node_type]
    by_key = {key: name for name, key in keys.items()}
    known = {item.name for item in fields(attributes)} - {"extra"}
    changes: Dict[str, Any] = {}
    extra = dict(attributes.extra)
    for key, value in updates.items():
        name = by_key.get(key, key)
        if name in known:
            changes[name] = _decode_value(name, value, getattr(attributes, name))
        else:
            extra[key] = value
    return replace(attributes, extra=extra, **changes)


def _attribute_class(node_type: str) -> Type[Any]:
    try:
        return ATTRIBUTE_TYPES[node_type]
    except KeyError:
        raise ValueError(f"Unknown node type: {node_type}") from None


def _encode_value(name: str, value: Any) -> Any:
    if isinstance(value, SubjectContent):
        return {"subject": value.subject, "content": value.content}
    if name == "variants":
        return {"variantA": value[0], "variantB": value[1]}
    if name == "conditions":
        return [dict(item) for item in value]
    return value


def _decode_value(name: str, value: Any, default: Any) -> Any:
    if isinstance(default, SubjectContent) or name in {"variant_a", "variant_b"}:
        if isinstance(value, SubjectContent):
            return value
        if isinstance(value, Mapping):
            return SubjectContent(str(value.get("subject", "") or ""), str(value.get("content", "") or ""))
        return default
    if name == "variants":
        if isinstance(value, Mapping):
            return (str(value.get("variantA", "") or ""), str(value.get("variantB", "") or ""))
        if isinstance(value, (list, tuple)) and len(value) == 2:
            return (str(value[0]), str(value[1]))
        return None
    if name == "conditions":
        if not isinstance(value, (list, tuple)):
            return ()
        items: List[Dict[str, str]] = []
        for item in value:
            if isinstance(item, Mapping):
                items.append({str(k): str(v) for k, v in item.items()})
        return tuple(items)
    if name == "sequence_position":
        try:
            return int(value) if value is not None else None
        except (TypeError, ValueError):
            return None
    if isinstance(default, (int, float)) and not isinstance(default, bool):
        return _to_number(value, default)
    if isinstance(default, str):
        return "" if value is None else str(value)
    return value


def _to_number(value: Any, default: Any) -> Any:
    try:
        number = float(value)
    except (TypeError, ValueError):
        return default
    if number.is_integer():
        return int(number)
    return number
