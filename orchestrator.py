"""
Plans and applies configuration changes.

A plan walks the configuration in dependency order, reads data sources,
refreshes recorded resources and diffs them against the resolved
configuration. Applying a plan runs the resource callbacks one change at a
time and saves state after every successful step.
"""

import logging
from graphlib import TopologicalSorter
from typing import Any, Dict, List, Optional

from tqdm import tqdm

from config_utils import Configuration, ordered_addresses, resolve
from errors import ProviderError, ResourceNotFoundError, ValidationError, wrap
from provider import get_data_source, get_resource
from schema import UNKNOWN, ResourceData, diff, requires_replacement, validate_config

logger = logging.getLogger('vsprov.orchestrator')

ACTION_CREATE = "create"
ACTION_UPDATE = "update"
ACTION_REPLACE = "replace"
ACTION_DELETE = "delete"
ACTION_READ = "read"
ACTION_NOOP = "noop"


class PlannedChange:
    """One step of a plan."""

    def __init__(self, address, action, changes=None, type_name=None, name=None, kind="resource",
                 result=None):
        self.address = address
        self.action = action
        self.changes = changes or {}
        self.type = type_name
        self.name = name
        self.kind = kind
        # Attributes of a data source already read at plan time.
        self.result = result

    def __repr__(self):
        return f"PlannedChange({self.address}, {self.action})"


class Plan:
    def __init__(self, changes=None):
        self.changes: List[PlannedChange] = list(changes or [])

    def __iter__(self):
        return iter(self.changes)

    def __len__(self):
        return len(self.changes)

    def add(self, change):
        self.changes.append(change)

    def actionable(self):
        """Changes that call the remote API when applied."""
        return [c for c in self.changes if c.action not in (ACTION_NOOP, ACTION_READ) or
                (c.action == ACTION_READ and c.result is None)]

    def has_changes(self):
        return any(c.action in (ACTION_CREATE, ACTION_UPDATE, ACTION_REPLACE, ACTION_DELETE) for c in self.changes)

    def summary(self):
        counts = {}
        for change in self.changes:
            counts[change.action] = counts.get(change.action, 0) + 1
        return counts


def _contains_unknown(value):
    if value is UNKNOWN:
        return True
    if isinstance(value, list):
        return any(_contains_unknown(item) for item in value)
    if isinstance(value, dict):
        return any(_contains_unknown(item) for item in value.values())
    return False


def _pending_attributes(schema, config):
    """Attribute map of a resource that is about to be created: unknown until applied."""
    values = {key: UNKNOWN for key in schema}
    values.update({key: value for key, value in config.items() if value is not None})
    values["id"] = UNKNOWN
    return values


def _state_entry(change, d, dependencies):
    return {
        "type": change.type,
        "name": change.name,
        "id": d.id,
        "attributes": d.state(),
        "dependencies": dependencies,
    }


def _definition(change):
    if change.kind == "data":
        return get_data_source(change.type)
    return get_resource(change.type)


def _validation_messages(address, schema, config):
    return [f"{address}: {message}" for message in validate_config(schema, config)]


def validate_configuration(configuration: Configuration) -> List[str]:
    """
    Schema validation without a connection. References resolve to unknown values.

    :return: Every validation message, prefixed with the block address.
    """
    messages = []
    try:
        ordered_addresses(configuration)
    except ProviderError as e:
        messages.append(str(e))
    for address in configuration.addresses():
        block = configuration[address]
        try:
            definition = get_data_source(block.type) if block.is_data else get_resource(block.type)
            resolved = resolve(block.attributes, lambda target: UNKNOWN)
        except ProviderError as e:
            messages.append(f"{address}: {e}")
            continue
        messages.extend(_validation_messages(address, definition.schema, resolved))
    return messages


def read_data_source(type_name, attributes, client):
    """Runs a data source read and returns its attributes."""
    data_source = get_data_source(type_name)
    messages = validate_config(data_source.schema, attributes)
    if messages:
        raise ValidationError(messages)
    d = ResourceData(data_source.schema, attributes)
    try:
        data_source.read(d, client)
    except Exception as e:
        raise wrap(e, type_name, ACTION_READ) from e
    return d.state()


def refresh_resource(resource, entry, client):
    """
    Reads a recorded resource again.

    :return: The refreshed ResourceData; its id is empty when the remote object is gone.
    """
    d = ResourceData(resource.schema, None, entry.get("attributes") or {}, entry.get("id"))
    resource.read(d, client)
    return d


def _state_order(state):
    """State addresses in dependency order, dependencies first."""
    sorter = TopologicalSorter()
    addresses = set(state.addresses())
    for address in addresses:
        entry = state.get(address)
        sorter.add(address, *[dep for dep in entry.get("dependencies") or [] if dep in addresses])
    return list(sorter.static_order())


def build_plan(configuration: Configuration, state, client, refresh=True) -> Plan:
    """
    Computes the changes needed to bring remote objects in line with the configuration.

    :param configuration: Parsed configuration.
    :param state: Loaded StateStore. Refreshed entries are updated in memory.
    :param client: ProviderClient used for data source reads and refreshes.
    :param refresh: Read recorded resources before diffing.
    :raises ValidationError: With every validation message of the configuration.
    """
    plan = Plan()
    values: Dict[str, Any] = {}
    messages: List[str] = []

    def lookup(target):
        return values.get(target)

    for address in ordered_addresses(configuration):
        block = configuration[address]
        try:
            definition = get_data_source(block.type) if block.is_data else get_resource(block.type)
        except ProviderError as e:
            messages.append(f"{address}: {e}")
            values[address] = UNKNOWN
            continue

        resolved = resolve(block.attributes, lookup)
        block_messages = _validation_messages(address, definition.schema, resolved)
        if block_messages:
            messages.extend(block_messages)
            values[address] = UNKNOWN
            continue

        if block.is_data:
            if _contains_unknown(resolved):
                logger.debug(f"{address}: read deferred until apply")
                plan.add(PlannedChange(address, ACTION_READ, type_name=block.type, name=block.name, kind="data"))
                values[address] = UNKNOWN
                continue
            d = ResourceData(definition.schema, resolved)
            try:
                definition.read(d, client)
            except Exception as e:
                raise wrap(e, address, ACTION_READ) from e
            values[address] = d.state()
            plan.add(PlannedChange(address, ACTION_READ, type_name=block.type, name=block.name,
                                   kind="data", result=d.state()))
            continue

        entry = state.get(address)
        if entry is not None and refresh:
            try:
                d = refresh_resource(definition, entry, client)
            except Exception as e:
                raise wrap(e, entry.get("id") or address, "refresh") from e
            if d.id:
                entry["attributes"] = d.state()
                entry["id"] = d.id
                state.put(address, entry)
            else:
                logger.info(f"{address}: remote object no longer exists, it will be created again.")
                entry = None

        if entry is None:
            plan.add(PlannedChange(address, ACTION_CREATE, {key: (None, value) for key, value in resolved.items()},
                                   type_name=block.type, name=block.name))
            values[address] = _pending_attributes(definition.schema, resolved)
            continue

        current = entry.get("attributes") or {}
        changes = diff(definition.schema, resolved, current)
        if entry.get("tainted"):
            logger.info(f"{address}: {entry.get('id')} is tainted and will be replaced.")
            action = ACTION_REPLACE
            values[address] = _pending_attributes(definition.schema, resolved)
        elif requires_replacement(definition.schema, changes):
            action = ACTION_REPLACE
            values[address] = _pending_attributes(definition.schema, resolved)
        elif changes:
            action = ACTION_UPDATE
            values[address] = {**current, **{key: new for key, (_, new) in changes.items()}}
        else:
            action = ACTION_NOOP
            values[address] = current
        plan.add(PlannedChange(address, action, changes, type_name=block.type, name=block.name))

    if messages:
        raise ValidationError(messages)

    for address in reversed(_state_order(state)):
        if address in configuration:
            continue
        entry = state.get(address)
        plan.add(PlannedChange(address, ACTION_DELETE, type_name=entry["type"], name=entry["name"]))
    return plan


def build_destroy_plan(state) -> Plan:
    """Deletes every recorded resource, dependents first."""
    plan = Plan()
    for address in reversed(_state_order(state)):
        entry = state.get(address)
        plan.add(PlannedChange(address, ACTION_DELETE, type_name=entry["type"], name=entry["name"]))
    return plan


def _record_failed_update(change, definition, d, entry, state, client):
    """
    Records what a failed update left behind.

    The remote object is read again so state holds its real values. If that
    read fails too, the values set before the failure are recorded on top of
    the previous state.
    """
    recorded = {**entry, "attributes": d.applied_state()}
    try:
        refreshed = refresh_resource(definition, recorded, client)
    except Exception as e:
        logger.warning(f"{change.address}: could not read {d.id} after the failed update: {e}")
    else:
        if not refreshed.id:
            logger.info(f"{change.address}: remote object no longer exists, it will be created again.")
            state.remove(change.address)
            state.save()
            return
        recorded["attributes"] = refreshed.state()
    state.put(change.address, recorded)
    state.save()


def _apply_change(change, configuration, state, client, data_results):
    definition = _definition(change)

    def lookup(target):
        if target in data_results:
            return data_results[target]
        entry = state.get(target)
        return entry.get("attributes") if entry else None

    def config():
        return resolve(configuration[change.address].attributes, lookup)

    def dependencies():
        return configuration.dependencies(change.address)

    if change.action == ACTION_READ:
        if change.result is not None:
            data_results[change.address] = change.result
            return None
        d = ResourceData(definition.schema, config())
        definition.read(d, client)
        data_results[change.address] = d.state()
        return d

    entry = state.get(change.address)
    if change.action in (ACTION_DELETE, ACTION_REPLACE) and entry is not None:
        d = ResourceData(definition.schema, None, entry.get("attributes") or {}, entry.get("id"))
        definition.delete(d, client)
        state.remove(change.address)
        state.save()
        if change.action == ACTION_DELETE:
            return d

    if change.action in (ACTION_CREATE, ACTION_REPLACE):
        d = ResourceData(definition.schema, config(), {})
        d.mark_new_resource()
        try:
            definition.create(d, client)
        except Exception:
            if d.id:
                logger.warning(f"{change.address}: {d.id} was created but not fully configured, "
                               "it is recorded as tainted and will be replaced")
                state.put(change.address, {**_state_entry(change, d, dependencies()), "tainted": True})
                state.save()
            raise
        if not d.id:
            raise ResourceNotFoundError("remote object not found right after creation")
        state.put(change.address, _state_entry(change, d, dependencies()))
        return d

    if change.action == ACTION_UPDATE:
        if definition.update is None:
            raise ProviderError(f"{change.type} does not support in-place updates")
        d = ResourceData(definition.schema, config(), entry.get("attributes") or {}, entry.get("id"))
        try:
            definition.update(d, client)
        except Exception:
            _record_failed_update(change, definition, d, entry, state, client)
            raise
        state.put(change.address, _state_entry(change, d, dependencies()))
        return d
    return None


def apply_plan(plan: Plan, configuration: Configuration, state, client, op_logger=None) -> List[Dict[str, Any]]:
    """
    Applies a plan change by change.

    State is saved after every successful step. The first failure stops the
    run and is raised wrapped with the resource id and action; steps that
    already succeeded are kept.

    :return: One result dict per executed change.
    """
    results = []
    data_results: Dict[str, Any] = {}
    steps = [change for change in plan if change.action != ACTION_NOOP]
    state.save()
    for change in tqdm(steps, desc="Applying", unit="change", disable=not steps):
        logger.debug(f"{change.address}: {change.action}")
        try:
            d = _apply_change(change, configuration, state, client, data_results)
        except Exception as e:
            entry = state.get(change.address)
            resource_id = (entry or {}).get("id") or change.address
            wrapped = wrap(e, resource_id, change.action)
            logger.error(str(wrapped))
            if op_logger:
                op_logger.log_resource_status(change.address, change.action, "failed", error=str(wrapped))
            results.append({"address": change.address, "action": change.action, "status": "failed"})
            raise wrapped from e

        if change.kind == "resource":
            state.save()
            logger.info(f"{change.address}: {change.action} complete"
                         + (f" (id {d.id})" if d is not None and d.id else ""))
        if op_logger:
            op_logger.log_resource_status(change.address, change.action, "success")
        results.append({"address": change.address, "action": change.action, "status": "success"})
    return results


def destroy(state, client, op_logger=None) -> List[Dict[str, Any]]:
    """Deletes every resource recorded in state, dependents first."""
    return apply_plan(build_destroy_plan(state), Configuration(), state, client, op_logger)


def refresh_state(state, client) -> Dict[str, str]:
    """
    Re-reads every recorded resource into state. Resources that no longer exist are dropped.

    :return: Mapping of address to 'refreshed' or 'removed'.
    """
    outcome = {}
    for address in _state_order(state):
        entry = state.get(address)
        resource = get_resource(entry["type"])
        try:
            d = refresh_resource(resource, entry, client)
        except Exception as e:
            raise wrap(e, entry.get("id") or address, "refresh") from e
        if d.id:
            entry["attributes"] = d.state()
            entry["id"] = d.id
            state.put(address, entry)
            outcome[address] = "refreshed"
        else:
            state.remove(address)
            outcome[address] = "removed"
    state.save()
    return outcome


def import_resource(type_name, name, resource_id, client, state) -> Optional[Dict[str, Any]]:
    """
    Adopts an existing remote object into state.

    :param resource_id: Id, or for compute clusters the inventory path, of the object.
    :return: The stored state entry.
    """
    resource = get_resource(type_name)
    address = f"{type_name}.{name}"
    if state.get(address) is not None:
        raise ProviderError(f"{address} is already managed")

    d = ResourceData(resource.schema, None, {}, resource_id)
    try:
        if resource.importer is not None:
            resource.importer(d, client)
        else:
            resource.read(d, client)
        if not d.id:
            raise ResourceNotFoundError(f"cannot import non-existent remote object {resource_id}")
    except Exception as e:
        raise wrap(e, resource_id, "import") from e

    entry = {"type": type_name, "name": name, "id": d.id, "attributes": d.state(), "dependencies": []}
    state.put(address, entry)
    state.save()
    logger.info(f"Imported {address} (id {d.id})")
    return entry
