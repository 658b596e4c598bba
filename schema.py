# schema.py
"""Attribute schema, resource data and diffing for resources and data sources."""

import copy
import json
import logging
from typing import Any, Callable, Dict, List, Optional, Tuple

logger = logging.getLogger('vsprov.schema')

TYPE_STRING = "string"
TYPE_INT = "int"
TYPE_FLOAT = "float"
TYPE_BOOL = "bool"
TYPE_LIST = "list"
TYPE_SET = "set"
TYPE_MAP = "map"

_ZERO_VALUES = {
    TYPE_STRING: "",
    TYPE_INT: 0,
    TYPE_FLOAT: 0.0,
    TYPE_BOOL: False,
}


class _Unknown:
    """Placeholder for a value that is only known once a dependency is applied."""

    def __repr__(self):
        return "(known after apply)"

    def __deepcopy__(self, memo):
        return self


UNKNOWN = _Unknown()


class Attribute:
    """Declarative description of one attribute of a resource or a nested block."""

    def __init__(self, type, required=False, optional=False, computed=False, default=None,
                 force_new=False, sensitive=False, description="", conflicts_with=None,
                 exactly_one_of=None, at_least_one_of=None, validate=None, elem=None,
                 max_items=0, min_items=0, diff_suppress=None, state_func=None):
        self.type = type
        self.required = required
        self.optional = optional
        self.computed = computed
        self.default = default
        self.force_new = force_new
        self.sensitive = sensitive
        self.description = description
        self.conflicts_with = conflicts_with or []
        self.exactly_one_of = exactly_one_of or []
        self.at_least_one_of = at_least_one_of or []
        self.validate = validate
        self.elem = elem
        self.max_items = max_items
        self.min_items = min_items
        self.diff_suppress = diff_suppress
        self.state_func = state_func

    @property
    def computed_only(self):
        return self.computed and not self.optional and not self.required

    @property
    def is_block(self):
        return self.type in (TYPE_LIST, TYPE_SET) and isinstance(self.elem, dict)

    def __repr__(self):
        return f"Attribute({self.type})"


class Resource:
    """A managed resource type: schema plus CRUD callbacks."""

    def __init__(self, schema, create, read, delete, update=None, importer=None, description=""):
        self.schema = schema
        self.create = create
        self.read = read
        self.update = update
        self.delete = delete
        self.importer = importer
        self.description = description


class DataSource:
    """A read-only query type: schema plus a read callback."""

    def __init__(self, schema, read, description=""):
        self.schema = schema
        self.read = read
        self.description = description


# --- Validators ---

def string_in_slice(valid, ignore_case=False):
    def _validate(value, key):
        candidates = [v.lower() for v in valid] if ignore_case else valid
        probe = value.lower() if ignore_case and isinstance(value, str) else value
        if probe not in candidates:
            return [f"{key}: expected one of {list(valid)}, got {value!r}"]
        return []
    return _validate


def int_between(low, high):
    def _validate(value, key):
        if not low <= value <= high:
            return [f"{key}: expected to be in the range ({low} - {high}), got {value}"]
        return []
    return _validate


def int_at_least(low):
    def _validate(value, key):
        if value < low:
            return [f"{key}: expected to be at least ({low}), got {value}"]
        return []
    return _validate


def no_zero_values(value, key):
    if value in (None, "", 0):
        return [f"{key}: must not be empty"]
    return []


def valid_json(value, key):
    try:
        json.loads(value)
    except (TypeError, ValueError) as e:
        return [f"{key}: contains an invalid JSON: {e}"]
    return []


# --- Helpers ---

def is_set(value) -> bool:
    """True when a raw configuration value counts as present."""
    if value is None:
        return False
    if isinstance(value, (list, dict)) and not value:
        return False
    return True


def _type_ok(attr_type, value) -> bool:
    if value is UNKNOWN:
        return True
    if attr_type == TYPE_STRING:
        return isinstance(value, str)
    if attr_type == TYPE_INT:
        return isinstance(value, int) and not isinstance(value, bool)
    if attr_type == TYPE_FLOAT:
        return isinstance(value, (int, float)) and not isinstance(value, bool)
    if attr_type == TYPE_BOOL:
        return isinstance(value, bool)
    if attr_type in (TYPE_LIST, TYPE_SET):
        return isinstance(value, list)
    if attr_type == TYPE_MAP:
        return isinstance(value, dict)
    return False


def _check_groups(schema, config, path, errors):
    seen = set()
    for key, attr in schema.items():
        for group, label in ((attr.exactly_one_of, "exactly one"), (attr.at_least_one_of, "at least one")):
            if not group:
                continue
            members = tuple(sorted(set(group) | {key}))
            if (members, label) in seen:
                continue
            seen.add((members, label))
            present = [m for m in members if is_set(config.get(m))]
            if label == "exactly one" and len(present) != 1:
                errors.append(f"{path}{key}: {label} of {list(members)} must be specified, got {present}")
            elif label == "at least one" and not present:
                errors.append(f"{path}{key}: {label} of {list(members)} must be specified")


def validate_config(schema: Dict[str, Attribute], config: Dict[str, Any], path: str = "") -> List[str]:
    """
    Validates a raw configuration map against a schema.

    :param schema: Mapping of attribute name to Attribute.
    :param config: Raw configuration values (before defaults).
    :param path: Prefix used in messages for nested blocks.
    :return: A list of error messages, empty when the configuration is valid.
    """
    errors = []
    for key in config:
        if key not in schema:
            errors.append(f"{path}{key}: unknown attribute")

    for key, attr in schema.items():
        value = config.get(key)
        label = f"{path}{key}"
        if value is None:
            if attr.required:
                errors.append(f"{label}: required attribute is missing")
            continue
        if attr.computed_only:
            errors.append(f"{label}: computed attribute cannot be set")
            continue
        if value is UNKNOWN:
            continue
        if not _type_ok(attr.type, value):
            errors.append(f"{label}: expected {attr.type}, got {type(value).__name__}")
            continue

        for other in attr.conflicts_with:
            if is_set(config.get(other)) and is_set(value):
                errors.append(f"{label}: conflicts with {other}")

        if attr.type in (TYPE_LIST, TYPE_SET):
            if attr.max_items and len(value) > attr.max_items:
                errors.append(f"{label}: attribute supports {attr.max_items} item(s) maximum, got {len(value)}")
            if attr.min_items and len(value) < attr.min_items:
                errors.append(f"{label}: attribute requires {attr.min_items} item(s) minimum, got {len(value)}")
            for index, item in enumerate(value):
                item_label = f"{label}.{index}"
                if attr.is_block:
                    if not isinstance(item, dict):
                        errors.append(f"{item_label}: expected a block")
                        continue
                    errors.extend(validate_config(attr.elem, item, f"{item_label}."))
                elif isinstance(attr.elem, Attribute) and item is not UNKNOWN:
                    if not _type_ok(attr.elem.type, item):
                        errors.append(f"{item_label}: expected {attr.elem.type}, got {type(item).__name__}")
                    elif attr.elem.validate:
                        errors.extend(attr.elem.validate(item, item_label))
        elif attr.type == TYPE_MAP and isinstance(attr.elem, Attribute):
            for map_key, item in value.items():
                if not _type_ok(attr.elem.type, item):
                    errors.append(f"{label}.{map_key}: expected {attr.elem.type}")

        if attr.validate:
            errors.extend(attr.validate(value, label))

    _check_groups(schema, config, path, errors)
    return errors


def apply_defaults(schema: Dict[str, Attribute], config: Dict[str, Any]) -> Dict[str, Any]:
    """
    Returns a copy of config with defaults and state functions applied.

    Optional+computed attributes missing from config are left out so that the
    recorded state keeps their remote value.
    """
    result = {}
    for key, attr in schema.items():
        value = copy.deepcopy(config.get(key))
        if value is None:
            if attr.computed:
                continue
            if attr.default is not None:
                value = copy.deepcopy(attr.default)
            elif attr.type in (TYPE_LIST, TYPE_SET):
                value = []
            elif attr.type == TYPE_MAP:
                value = {}
        elif attr.is_block and isinstance(value, list):
            value = [apply_defaults(attr.elem, item) if isinstance(item, dict) else item for item in value]
        if value is not None and value is not UNKNOWN and attr.state_func:
            value = attr.state_func(value)
        result[key] = value
    return result


def _normalize(attr: Attribute, value):
    if value is UNKNOWN:
        return value
    if attr.type in _ZERO_VALUES:
        return _ZERO_VALUES[attr.type] if value is None else value
    if attr.type == TYPE_MAP:
        return dict(value or {})
    items = list(value or [])
    if attr.is_block:
        items = [
            {k: _normalize(sub, (item or {}).get(k)) for k, sub in attr.elem.items() if not sub.computed_only}
            for item in items
        ]
    elif isinstance(attr.elem, Attribute):
        items = [_normalize(attr.elem, item) for item in items]
    if attr.type == TYPE_SET:
        items = sorted(items, key=lambda item: json.dumps(item, sort_keys=True, default=str))
    return items


def values_equal(attr: Attribute, old, new) -> bool:
    return _normalize(attr, old) == _normalize(attr, new)


def diff(schema: Dict[str, Attribute], config: Dict[str, Any],
         state: Dict[str, Any]) -> Dict[str, Tuple[Any, Any]]:
    """
    Computes the attribute changes between a desired configuration and recorded state.

    :param schema: Attribute schema of the resource.
    :param config: Raw desired configuration.
    :param state: Attributes recorded in state after refresh.
    :return: Mapping of attribute name to (old, new).
    """
    desired = apply_defaults(schema, config)
    changes = {}
    for key, attr in schema.items():
        if attr.computed_only or key not in desired:
            continue
        old, new = state.get(key), desired[key]
        if new is UNKNOWN:
            changes[key] = (old, new)
            continue
        if values_equal(attr, old, new):
            continue
        if attr.diff_suppress and attr.diff_suppress(old, new):
            continue
        changes[key] = (old, new)
    return changes


def requires_replacement(schema: Dict[str, Attribute], changes: Dict[str, Tuple[Any, Any]]) -> List[str]:
    return [key for key in changes if schema[key].force_new]


class ResourceData:
    """
    View over a resource's desired configuration and recorded state.

    Reads resolve, in order, values set during the current operation, values
    from configuration, then values from recorded state.
    """

    def __init__(self, schema: Dict[str, Attribute], config: Optional[Dict[str, Any]] = None,
                 state: Optional[Dict[str, Any]] = None, resource_id: Optional[str] = None):
        self.schema = schema
        self._config = apply_defaults(schema, config) if config is not None else {}
        self._state = copy.deepcopy(state or {})
        self._set = {}
        self._id = resource_id if resource_id is not None else self._state.get("id", "") or ""
        self._new_resource = False

    @property
    def id(self):
        return self._id

    def set_id(self, value):
        self._id = value or ""

    def mark_new_resource(self):
        self._new_resource = True

    def is_new_resource(self):
        return self._new_resource

    def _top(self, key):
        if key in self._set:
            return self._set[key]
        if key in self._config:
            return self._config[key]
        return self._state.get(key)

    @staticmethod
    def _walk(value, parts):
        for part in parts:
            if isinstance(value, list):
                try:
                    value = value[int(part)]
                except (ValueError, IndexError):
                    return None
            elif isinstance(value, dict):
                value = value.get(part)
            else:
                return None
        return value

    def get(self, path: str):
        parts = path.split(".")
        return self._walk(self._top(parts[0]), parts[1:])

    def get_ok(self, path: str):
        value = self.get(path)
        return value, value not in (None, "", 0, False, [], {}) and value is not UNKNOWN

    def get_change(self, path: str):
        """Recorded and desired value at `path`; the desired value falls back to the recorded one."""
        parts = path.split(".")
        old = self._walk(self._state.get(parts[0]), parts[1:])
        if parts[0] not in self._config:
            return old, old
        return old, self._walk(self._config[parts[0]], parts[1:])

    def has_change(self, path: str) -> bool:
        old, new = self.get_change(path)
        attr = self.schema.get(path)
        if attr is None:
            return old != new
        if values_equal(attr, old, new):
            return False
        if attr.diff_suppress and attr.diff_suppress(old, new):
            return False
        return True

    def has_changes(self, *keys) -> bool:
        return any(self.has_change(key) for key in keys)

    def set(self, key: str, value):
        if key not in self.schema:
            raise KeyError(f"{key} is not an attribute of this resource")
        self._set[key] = value

    def state(self) -> Dict[str, Any]:
        """Attribute map to record for this resource."""
        merged = copy.deepcopy(self._state)
        merged.update(copy.deepcopy(self._config))
        merged.update(copy.deepcopy(self._set))
        merged["id"] = self._id
        return merged

    def applied_state(self) -> Dict[str, Any]:
        """Recorded state plus values set during the current operation, without pending configuration."""
        merged = copy.deepcopy(self._state)
        merged.update(copy.deepcopy(self._set))
        merged["id"] = self._id
        return merged
