# In listing.py

import json
import logging

from tabulate import tabulate

from provider import DATA_SOURCES, RESOURCES
from schema import UNKNOWN

logger = logging.getLogger('vsprov.listing')

MAX_VALUE_WIDTH = 60


def _short(value):
    """One-line rendering of an attribute value for table cells."""
    if value is UNKNOWN:
        return "(known after apply)"
    if isinstance(value, (dict, list)):
        text = json.dumps(value, sort_keys=True, default=str)
    else:
        text = str(value)
    if len(text) > MAX_VALUE_WIDTH:
        text = text[:MAX_VALUE_WIDTH - 3] + "..."
    return text


def _changed_keys(change):
    return ", ".join(sorted(change.changes)) if change.changes else ""


def print_plan(plan):
    """Prints the address, action and changed attributes of each planned change."""
    rows = [[change.address, change.action, _changed_keys(change)] for change in plan]
    if not rows:
        print("\nNo resources in configuration or state.")
        return
    print(tabulate(rows, headers=["Address", "Action", "Changed attributes"], tablefmt="fancy_grid"))
    summary = plan.summary()
    print("Plan: " + ", ".join(f"{count} to {action}" for action, count in sorted(summary.items())))


def print_state(state):
    rows = []
    for address in sorted(state.addresses()):
        entry = state.get(address)
        rows.append([address, entry.get("type"), entry.get("id"), ", ".join(entry.get("dependencies") or [])])
    if not rows:
        print("State is empty.")
        return
    print(f"State serial: {state.serial}")
    print(tabulate(rows, headers=["Address", "Type", "ID", "Depends on"], tablefmt="fancy_grid"))


def print_attributes(address, attributes):
    rows = [[key, _short(value)] for key, value in sorted(attributes.items())]
    print(f"\n{address}")
    print(tabulate(rows, headers=["Attribute", "Value"], tablefmt="fancy_grid"))


def print_types():
    """Lists registered resource and data source types with their attribute counts."""
    rows = [[name, "resource", len(resource.schema), "yes" if resource.importer else "no"]
            for name, resource in sorted(RESOURCES.items())]
    rows.extend([name, "data source", len(data_source.schema), "-"]
                for name, data_source in sorted(DATA_SOURCES.items()))
    print(tabulate(rows, headers=["Type", "Kind", "Attributes", "Custom importer"], tablefmt="fancy_grid"))
