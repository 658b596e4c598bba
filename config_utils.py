"""Configuration utility functions: the JSON configuration, references and provider settings."""

import json
import logging
import os
import re
from graphlib import CycleError, TopologicalSorter
from typing import Any, Callable, Dict, List, Optional

from dotenv import load_dotenv

from constants import DEFAULT_API_TIMEOUT_MINUTES
from errors import ProviderError
from schema import UNKNOWN

logger = logging.getLogger('vsprov.config')

REFERENCE_PATTERN = re.compile(r"\$\{([^}]+)\}")
DATA_PREFIX = "data."


class Block:
    """One resource or data source block of the configuration."""

    def __init__(self, address, kind, type_name, name, attributes):
        self.address = address
        self.kind = kind
        self.type = type_name
        self.name = name
        self.attributes = attributes

    @property
    def is_data(self):
        return self.kind == "data"

    def __repr__(self):
        return f"Block({self.address})"


class Configuration:
    """Parsed configuration: blocks keyed by address."""

    def __init__(self, blocks=None):
        self.blocks: Dict[str, Block] = dict(blocks or {})

    def __contains__(self, address):
        return address in self.blocks

    def __getitem__(self, address):
        return self.blocks[address]

    def addresses(self):
        return list(self.blocks)

    def dependencies(self, address) -> List[str]:
        """Addresses referenced from a block's attributes."""
        found = []
        for reference in find_references(self.blocks[address].attributes):
            target, _ = split_reference(reference)
            if target not in found:
                found.append(target)
        return found


def address_for(kind, type_name, name):
    if kind == "data":
        return f"{DATA_PREFIX}{type_name}.{name}"
    return f"{type_name}.{name}"


def parse_configuration(document: Dict[str, Any]) -> Configuration:
    blocks = {}
    for kind in ("resource", "data"):
        section = document.get(kind) or {}
        if not isinstance(section, dict):
            raise ProviderError(f"configuration section '{kind}' must be an object")
        for type_name, named in section.items():
            if not isinstance(named, dict):
                raise ProviderError(f"configuration '{kind}.{type_name}' must map names to attributes")
            for name, attributes in named.items():
                address = address_for(kind, type_name, name)
                blocks[address] = Block(address, kind, type_name, name, attributes or {})
    unknown = set(document) - {"resource", "data"}
    if unknown:
        raise ProviderError(f"unknown configuration sections: {sorted(unknown)}")
    return Configuration(blocks)


def load_configuration(path: str) -> Configuration:
    """Reads and parses the JSON configuration file."""
    try:
        with open(path, "r", encoding="utf-8") as f:
            document = json.load(f)
    except FileNotFoundError as e:
        raise ProviderError(f"configuration file {path} not found") from e
    except ValueError as e:
        raise ProviderError(f"configuration file {path} is not valid JSON: {e}") from e
    configuration = parse_configuration(document)
    logger.debug(f"Loaded {len(configuration.blocks)} block(s) from {path}")
    return configuration


def find_references(value) -> List[str]:
    if isinstance(value, str):
        return REFERENCE_PATTERN.findall(value)
    if isinstance(value, list):
        return [ref for item in value for ref in find_references(item)]
    if isinstance(value, dict):
        return [ref for item in value.values() for ref in find_references(item)]
    return []


def split_reference(reference: str):
    """
    Splits 'vsphere_zone.z1.id' into ('vsphere_zone.z1', 'id') and
    'data.vsphere_network.mgmt.id' into ('data.vsphere_network.mgmt', 'id').
    """
    parts = reference.strip().split(".")
    size = 3 if parts[0] == "data" else 2
    if len(parts) <= size:
        raise ProviderError(f"invalid reference ${{{reference}}}")
    return ".".join(parts[:size]), ".".join(parts[size:])


def _lookup_attribute(attributes, path, reference):
    value = attributes
    for part in path.split("."):
        if value is UNKNOWN:
            return UNKNOWN
        if isinstance(value, list):
            try:
                value = value[int(part)]
                continue
            except (ValueError, IndexError):
                raise ProviderError(f"reference ${{{reference}}}: no element {part}") from None
        if not isinstance(value, dict) or part not in value:
            raise ProviderError(f"reference ${{{reference}}}: unknown attribute {part}")
        value = value[part]
    return value


def resolve(value, lookup: Callable[[str], Optional[Dict[str, Any]]]):
    """
    Substitutes references in a value.

    A string made of a single reference is replaced by the referenced value,
    keeping its type. References embedded in longer strings are substituted as text.

    :param lookup: Returns the attribute map of an address, or None when unknown.
    """
    if isinstance(value, list):
        return [resolve(item, lookup) for item in value]
    if isinstance(value, dict):
        return {key: resolve(item, lookup) for key, item in value.items()}
    if not isinstance(value, str) or "${" not in value:
        return value

    def _value_of(reference):
        target, path = split_reference(reference)
        attributes = lookup(target)
        if attributes is None:
            raise ProviderError(f"reference to unknown address {target}")
        if attributes is UNKNOWN:
            return UNKNOWN
        return _lookup_attribute(attributes, path, reference)

    whole = REFERENCE_PATTERN.fullmatch(value)
    if whole:
        return _value_of(whole.group(1))
    parts = {ref: _value_of(ref) for ref in REFERENCE_PATTERN.findall(value)}
    if any(part is UNKNOWN for part in parts.values()):
        return UNKNOWN
    return REFERENCE_PATTERN.sub(lambda m: str(parts[m.group(1)]), value)


def ordered_addresses(configuration: Configuration) -> List[str]:
    """Addresses in dependency order, dependencies first."""
    sorter = TopologicalSorter()
    for address in configuration.addresses():
        dependencies = configuration.dependencies(address)
        for dependency in dependencies:
            if dependency not in configuration:
                raise ProviderError(f"{address} references unknown address {dependency}")
        sorter.add(address, *dependencies)
    try:
        return list(sorter.static_order())
    except CycleError as e:
        raise ProviderError(f"dependency cycle: {' -> '.join(e.args[1])}") from e


def _env_bool(name, default=False):
    value = os.getenv(name)
    if value is None:
        return default
    return value.lower() in ('true', '1', 't', 'yes')


def load_provider_settings() -> Dict[str, Any]:
    """
    Reads the vCenter connection settings from the environment (and .env).

    :raises ProviderError: When a required setting is missing or invalid.
    """
    load_dotenv()
    settings = {
        "server": os.getenv("VSPHERE_SERVER"),
        "user": os.getenv("VSPHERE_USER"),
        "password": os.getenv("VSPHERE_PASSWORD"),
        "allow_unverified_ssl": _env_bool("VSPHERE_ALLOW_UNVERIFIED_SSL"),
    }
    missing = [f"VSPHERE_{key.upper()}" for key in ("server", "user", "password") if not settings[key]]
    if missing:
        raise ProviderError(f"missing provider settings: {', '.join(missing)}")
    try:
        settings["port"] = int(os.getenv("VSPHERE_PORT", "443"))
        settings["api_timeout"] = int(os.getenv("VSPHERE_API_TIMEOUT", str(DEFAULT_API_TIMEOUT_MINUTES)))
    except ValueError as e:
        raise ProviderError(f"invalid provider setting: {e}") from e
    if settings["allow_unverified_ssl"]:
        logger.warning("vCenter SSL certificate verification is disabled via VSPHERE_ALLOW_UNVERIFIED_SSL.")
    return settings
