"""
Mongo-like filter evaluation over plain catalog documents.

Filters are ``{"field", "operator", "value"}`` dicts with operators
``in eq ne lt lte gt gte``. Dotted fields descend into nested objects and
arrays. Conditions on sub-fields of the same array (``pricing.price`` and
``pricing.billingPeriod``) must hold for one element together, the way
``$elemMatch`` does.
"""
from typing import Any, Dict, Iterable, List, Sequence

OPERATORS = ("in", "eq", "ne", "lt", "lte", "gt", "gte")


def _values(obj: Any, path: Sequence[str]) -> List[Any]:
    """Every value reachable at ``path``; arrays are flattened."""
    if not path:
        if isinstance(obj, list):
            return list(obj)
        return [obj]
    if isinstance(obj, list):
        found: List[Any] = []
        for item in obj:
            found.extend(_values(item, path))
        return found
    if isinstance(obj, dict) and path[0] in obj:
        return _values(obj[path[0]], path[1:])
    return []


def _key(value: Any) -> Any:
    return value.casefold() if isinstance(value, str) else value


def _compare(actual: Any, operator: str, expected: Any) -> bool:
    if operator == "eq":
        return _key(actual) == _key(expected)
    if operator == "ne":
        return _key(actual) != _key(expected)
    if operator == "in":
        options = expected if isinstance(expected, (list, tuple, set)) else [expected]
        return _key(actual) in {_key(o) for o in options}
    try:
        a, e = float(actual), float(expected)
    except (TypeError, ValueError):
        return False
    if operator == "lt":
        return a < e
    if operator == "lte":
        return a <= e
    if operator == "gt":
        return a > e
    if operator == "gte":
        return a >= e
    raise ValueError(f"unsupported filter operator: {operator}")


def match_condition(doc: Dict[str, Any], field: str, operator: str, value: Any) -> bool:
    actual = _values(doc, field.split("."))
    if operator == "ne":
        # Mongo semantics: no element equals the value.
        return all(_compare(a, "eq", value) is False for a in actual)
    return any(_compare(a, operator, value) for a in actual)


def _array_groups(doc: Dict[str, Any], filters: Iterable[Dict[str, Any]]) -> Dict[str, List[Dict[str, Any]]]:
    groups: Dict[str, List[Dict[str, Any]]] = {}
    for f in filters:
        head, _, rest = f["field"].partition(".")
        if rest and isinstance(doc.get(head), list):
            groups.setdefault(head, []).append({**f, "field": rest})
    return groups


def matches(doc: Dict[str, Any], filters: Sequence[Dict[str, Any]]) -> bool:
    """True when ``doc`` satisfies every filter."""
    for f in filters:
        if f.get("operator") not in OPERATORS:
            raise ValueError(f"unsupported filter operator: {f.get('operator')}")

    groups = _array_groups(doc, filters)
    grouped_fields = {f"{head}.{g['field']}" for head, items in groups.items() for g in items}

    for f in filters:
        if f["field"] in grouped_fields:
            continue
        if not match_condition(doc, f["field"], f["operator"], f.get("value")):
            return False

    for head, conditions in groups.items():
        elements = [e for e in doc.get(head) or [] if isinstance(e, dict)]
        if not any(
            all(match_condition(e, c["field"], c["operator"], c.get("value")) for c in conditions)
            for e in elements
        ):
            return False
    return True
