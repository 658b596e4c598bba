import logging

from errors import ProviderError, ResourceNotFoundError
from schema import Attribute, Resource, TYPE_SET, TYPE_STRING
from utils import set_difference

logger = logging.getLogger('vsprov.resources.zone')


def zone_schema():
    return {
        "name": Attribute(TYPE_STRING, required=True, force_new=True,
                          description="The name of the zone."),
        "description": Attribute(TYPE_STRING, optional=True, force_new=True,
                                 description="Description of the zone."),
        "cluster_ids": Attribute(TYPE_SET, optional=True, elem=Attribute(TYPE_STRING),
                                 description="Identifiers of the compute clusters associated with the zone."),
    }


def create(d, client):
    name = d.get("name")
    zones = client.zones
    zones.create_zone(name, d.get("description") or "")
    for cluster_id in d.get("cluster_ids") or []:
        try:
            zones.add_cluster_association(name, cluster_id)
        except ProviderError as association_error:
            logger.warning(f"Association of cluster {cluster_id} with zone '{name}' failed, deleting the zone.")
            zones.delete_zone(name)
            raise association_error
    d.set_id(name)
    read(d, client)


def read(d, client):
    name = d.get("name") or d.id
    try:
        zone = client.zones.get_zone(name)
        cluster_ids = client.zones.list_cluster_associations(name)
    except ResourceNotFoundError:
        logger.info(f"Zone '{name}' no longer exists.")
        d.set_id("")
        return
    d.set("name", name)
    d.set("description", zone.get("description", ""))
    d.set("cluster_ids", cluster_ids)
    d.set_id(name)


def update(d, client):
    name = d.get("name")
    if d.has_change("cluster_ids"):
        old, new = d.get_change("cluster_ids")
        for cluster_id in set_difference(old, new):
            client.zones.remove_cluster_association(name, cluster_id)
        for cluster_id in set_difference(new, old):
            client.zones.add_cluster_association(name, cluster_id)
    read(d, client)


def delete(d, client):
    client.zones.delete_zone(d.id)
    d.set_id("")


def resource():
    return Resource(zone_schema(), create=create, read=read, update=update, delete=delete,
                    importer=read, description="Consumption domain zone and its cluster associations.")
