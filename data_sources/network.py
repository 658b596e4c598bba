import logging

from pyVmomi import vim

from constants import NETWORK_RETRY_INTERVAL_MS
from errors import PollTimeoutError, ProviderError, ResourceNotFoundError
from managers.network_manager import NETWORK_TYPES
from schema import Attribute, DataSource, TYPE_INT, TYPE_SET, TYPE_STRING, int_at_least, string_in_slice
from utils import poll_until

logger = logging.getLogger('vsprov.data_sources.network')


def network_schema():
    return {
        "name": Attribute(TYPE_STRING, optional=True, exactly_one_of=["vlan_id"],
                          description="The name or path of the network."),
        "vlan_id": Attribute(TYPE_INT, optional=True, exactly_one_of=["name"],
                             description="VLAN id of a distributed port group."),
        "datacenter_id": Attribute(TYPE_STRING, optional=True),
        "distributed_virtual_switch_uuid": Attribute(TYPE_STRING, optional=True),
        "filter": Attribute(TYPE_SET, optional=True, max_items=1, elem={
            "network_type": Attribute(TYPE_STRING, optional=True, validate=string_in_slice(list(NETWORK_TYPES))),
        }),
        "retry_timeout": Attribute(TYPE_INT, optional=True, default=0, validate=int_at_least(0),
                                   description="Seconds to keep retrying when the network is not found."),
        "retry_interval": Attribute(TYPE_INT, optional=True, default=NETWORK_RETRY_INTERVAL_MS,
                                    validate=int_at_least(1),
                                    description="Milliseconds between retries."),
        "type": Attribute(TYPE_STRING, computed=True, description="Moref type of the network."),
    }


def _datacenter(d, client):
    datacenter_id = d.get("datacenter_id")
    if not datacenter_id:
        return None
    try:
        return client.vim_client.get_obj_by_moid(vim.Datacenter, datacenter_id)
    except ProviderError as e:
        raise ProviderError(f"cannot locate datacenter: {e}") from e


def _lookup(d, client, datacenter):
    networks = client.networks
    vlan_id = d.get("vlan_id")
    if vlan_id is not None and not d.get("name"):
        return networks.find_by_vlan(vlan_id, datacenter)
    filters = (d.get("filter") or [{}])[0] or {}
    return networks.find_by_name(
        d.get("name"),
        datacenter=datacenter,
        dvs_uuid=d.get("distributed_virtual_switch_uuid") or "",
        network_type=filters.get("network_type") or "",
    )


def read(d, client):
    datacenter = _datacenter(d, client)
    retry_timeout = d.get("retry_timeout") or 0
    retry_interval = (d.get("retry_interval") or NETWORK_RETRY_INTERVAL_MS) / 1000.0

    def fetch():
        try:
            return _lookup(d, client, datacenter)
        except ResourceNotFoundError as e:
            logger.debug(f"Network lookup pending: {e}")
            return None

    if retry_timeout:
        try:
            network = poll_until(fetch, lambda found: found is not None, retry_interval, retry_timeout,
                                 description="network lookup", sleep=client.sleep, clock=client.clock)
        except PollTimeoutError:
            network = None
    else:
        network = fetch()

    if network is None:
        if d.get("vlan_id") is not None and not d.get("name"):
            raise ResourceNotFoundError(f"network with vlan_id {d.get('vlan_id')} not found")
        raise ResourceNotFoundError(f"network {d.get('name')} not found")

    d.set_id(network._moId)
    d.set("type", client.networks.network_type(network))


def data_source():
    return DataSource(network_schema(), read=read, description="Looks up a network by name or VLAN id.")
