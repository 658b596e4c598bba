"""
Cluster configuration profiles.

A vLCM managed cluster is transitioned once to configuration profiles, either
from a reference host or from a configuration document. Later changes go
through a configuration draft that is prechecked and applied.
"""

import json
import logging

from errors import ProviderError
from schema import Attribute, Resource, TYPE_STRING, valid_json
from utils import json_equal_ignoring

logger = logging.getLogger('vsprov.resources.configuration_profile')

TRANSITION_NOT_STARTED = "NOT_STARTED"


def config_diff_suppress(old, new):
    return json_equal_ignoring(old, new)


def profile_schema(config_key="configuration"):
    return {
        "cluster_id": Attribute(TYPE_STRING, required=True,
                                description="The identifier of the cluster that will be configured."),
        "reference_host_id": Attribute(TYPE_STRING, optional=True, conflicts_with=[config_key],
                                       description="The identifier of the host to use as a source of the configuration."),
        config_key: Attribute(TYPE_STRING, optional=True, computed=True, conflicts_with=["reference_host_id"],
                              validate=valid_json, diff_suppress=config_diff_suppress,
                              description="The configuration JSON."),
        "schema": Attribute(TYPE_STRING, computed=True, description="The configuration schema."),
    }


def _as_json_text(value):
    if value is None:
        return ""
    if isinstance(value, str):
        return value
    return json.dumps(value)


def profile_id(cluster_id):
    return f"config_profile_{cluster_id}"


def read_profile(d, client, config_key="configuration"):
    cluster_id = d.get("cluster_id")
    if not cluster_id and d.id.startswith(profile_id("")):
        cluster_id = d.id[len(profile_id("")):]
        d.set("cluster_id", cluster_id)
    profiles = client.config_profiles
    configuration = profiles.get_configuration(cluster_id)
    schema = profiles.get_schema(cluster_id)
    d.set_id(profile_id(cluster_id))
    d.set(config_key, _as_json_text(configuration.get("config")))
    d.set("schema", _as_json_text(schema.get("schema")))


def transition(d, client, config_key="configuration"):
    """Runs the one-time transition of a cluster to configuration profiles."""
    cluster_id = d.get("cluster_id")
    host_id = d.get("reference_host_id")
    config = d.get(config_key)
    if host_id and config:
        raise ProviderError(f"cannot specify both `reference_host_id` and `{config_key}`")

    profiles = client.config_profiles
    profiles.check_eligibility(cluster_id)
    if host_id:
        profiles.import_from_host(cluster_id, host_id)
    else:
        profiles.import_from_file(cluster_id, config)
    profiles.validate_configuration(cluster_id)
    profiles.run_precheck(cluster_id)
    profiles.enable_configuration(cluster_id)
    logger.info(f"Cluster {cluster_id} now uses configuration profiles.")


def apply_draft(d, client, config_key="configuration"):
    """Replaces the cluster configuration through a new draft."""
    cluster_id = d.get("cluster_id")
    host_id = d.get("reference_host_id")
    profiles = client.config_profiles

    for draft_id in profiles.list_drafts(cluster_id):
        profiles.delete_draft(cluster_id, draft_id)

    config = None if host_id else d.get(config_key)
    draft_id = profiles.create_draft(cluster_id, config)
    if host_id:
        profiles.import_draft_from_host(cluster_id, draft_id, host_id)
    profiles.precheck_draft(cluster_id, draft_id)
    profiles.apply_draft(cluster_id, draft_id)


def create(d, client):
    cluster_id = d.get("cluster_id")
    status = client.config_profiles.get_transition_status(cluster_id)
    if status != TRANSITION_NOT_STARTED:
        logger.info(f"Cluster {cluster_id} transition status is {status}, applying the configuration as a draft.")
        update(d, client)
        return
    transition(d, client)
    read(d, client)


def read(d, client):
    read_profile(d, client)


def update(d, client):
    apply_draft(d, client)
    read(d, client)


def delete(d, client):
    d.set_id("")


def resource():
    return Resource(profile_schema(), create=create, read=read, update=update, delete=delete,
                    description="Configuration profile of a vLCM managed cluster.")
