import json
import logging
import sys
from typing import Any, Dict, List, Optional

from tabulate import tabulate

from config_utils import Configuration, load_configuration, load_provider_settings
from errors import ProviderError
from listing import print_attributes, print_plan, print_state, print_types
from operation_logger import OperationLogger
from orchestrator import (ACTION_DELETE, apply_plan, build_destroy_plan, build_plan, import_resource,
                          read_data_source, refresh_state, validate_configuration)
from provider import get_provider_client
from state import open_state

logger = logging.getLogger('vsprov.commands')

CONFIRM_PROMPT = "\nAre you sure you want to proceed? (yes/no): "


def _confirm(args_dict: Dict[str, Any]) -> bool:
    if args_dict.get('yes'):
        return True
    return input(CONFIRM_PROMPT).lower().strip() == 'yes'


def _connect():
    return get_provider_client(load_provider_settings())


def _state(args_dict: Dict[str, Any]):
    return open_state(path=args_dict.get('state'))


def _parse_attr_pairs(pairs: Optional[List[str]]) -> Dict[str, Any]:
    """
    Turns ['name=VM Network', 'filter={"a": 1}'] into a dict.
    Values that parse as JSON keep their JSON type.
    """
    attributes = {}
    for pair in pairs or []:
        key, sep, value = pair.partition("=")
        if not sep or not key:
            raise ProviderError(f"invalid attribute '{pair}', expected key=value")
        try:
            attributes[key] = json.loads(value)
        except ValueError:
            attributes[key] = value
    return attributes


def validate_command(args_dict: Dict[str, Any], operation_logger: Optional[OperationLogger] = None) -> List[Dict[str, Any]]:
    """Validates the configuration file without connecting to vCenter."""
    configuration = load_configuration(args_dict['config'])
    messages = validate_configuration(configuration)
    if messages:
        for message in messages:
            print(f"Error: {message}", file=sys.stderr)
        return [{"status": "failed", "error": message} for message in messages]
    print(f"Configuration is valid ({len(configuration.addresses())} block(s)).")
    return [{"status": "success"}]


def plan_command(args_dict: Dict[str, Any], operation_logger: Optional[OperationLogger] = None) -> List[Dict[str, Any]]:
    configuration = load_configuration(args_dict['config'])
    state = _state(args_dict)
    client = _connect()
    plan = build_plan(configuration, state, client, refresh=not args_dict.get('no_refresh'))
    print_plan(plan)
    return [{"address": c.address, "action": c.action, "status": "success"} for c in plan]


def apply_command(args_dict: Dict[str, Any], operation_logger: Optional[OperationLogger] = None) -> List[Dict[str, Any]]:
    """Plans, asks for confirmation unless --yes is given, then applies."""
    configuration = load_configuration(args_dict['config'])
    state = _state(args_dict)
    client = _connect()
    plan = build_plan(configuration, state, client)
    print_plan(plan)
    if not plan.actionable():
        print("\nNo changes. Remote objects match the configuration.")
        state.save()
        return []
    if not _confirm(args_dict):
        print("Apply cancelled.")
        return [{"status": "skipped"}]
    results = apply_plan(plan, configuration, state, client, operation_logger)
    print(f"\nApply complete: {len(results)} change(s) applied.")
    return results


def destroy_command(args_dict: Dict[str, Any], operation_logger: Optional[OperationLogger] = None) -> List[Dict[str, Any]]:
    state = _state(args_dict)
    plan = build_destroy_plan(state)
    if not len(plan):
        print("Nothing to destroy.")
        return []
    print_plan(plan)
    if not _confirm(args_dict):
        print("Destroy cancelled.")
        return [{"status": "skipped"}]
    client = _connect()
    results = apply_plan(plan, Configuration(), state, client, operation_logger)
    print(f"\nDestroy complete: {sum(1 for r in results if r['action'] == ACTION_DELETE)} resource(s) deleted.")
    return results


def refresh_command(args_dict: Dict[str, Any], operation_logger: Optional[OperationLogger] = None) -> List[Dict[str, Any]]:
    state = _state(args_dict)
    client = _connect()
    outcome = refresh_state(state, client)
    rows = sorted(outcome.items())
    if rows:
        print(tabulate(rows, headers=["Address", "Result"], tablefmt="fancy_grid"))
    else:
        print("State is empty.")
    if operation_logger:
        for address, _ in rows:
            operation_logger.log_resource_status(address, "refresh", "success")
    return [{"address": address, "action": "refresh", "status": "success", "result": result}
            for address, result in rows]


def show_command(args_dict: Dict[str, Any], operation_logger: Optional[OperationLogger] = None) -> List[Dict[str, Any]]:
    state = _state(args_dict)
    address = args_dict.get('address')
    if address:
        entry = state.get(address)
        if entry is None:
            raise ProviderError(f"{address} is not in state")
        print_attributes(address, entry.get("attributes") or {})
    else:
        print_state(state)
    return [{"status": "success"}]


def import_command(args_dict: Dict[str, Any], operation_logger: Optional[OperationLogger] = None) -> List[Dict[str, Any]]:
    state = _state(args_dict)
    client = _connect()
    address = f"{args_dict['type']}.{args_dict['name']}"
    try:
        entry = import_resource(args_dict['type'], args_dict['name'], args_dict['id'], client, state)
    except ProviderError as e:
        if operation_logger:
            operation_logger.log_resource_status(address, "import", "failed", error=str(e))
        raise
    if operation_logger:
        operation_logger.log_resource_status(address, "import", "success")
    print(f"Imported {address} with id {entry['id']}.")
    return [{"address": address, "action": "import", "status": "success"}]


def read_command(args_dict: Dict[str, Any], operation_logger: Optional[OperationLogger] = None) -> List[Dict[str, Any]]:
    """Runs a data source ad hoc and prints its attributes."""
    attributes = _parse_attr_pairs(args_dict.get('attr'))
    client = _connect()
    result = read_data_source(args_dict['type'], attributes, client)
    if args_dict.get('json'):
        print(json.dumps(result, indent=2, sort_keys=True, default=str))
    else:
        print_attributes(f"data.{args_dict['type']}", result)
    return [{"address": f"data.{args_dict['type']}", "action": "read", "status": "success"}]


def types_command(args_dict: Dict[str, Any], operation_logger: Optional[OperationLogger] = None) -> List[Dict[str, Any]]:
    print_types()
    return [{"status": "success"}]
