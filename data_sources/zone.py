from schema import Attribute, DataSource, TYPE_SET, TYPE_STRING


def zone_schema():
    return {
        "name": Attribute(TYPE_STRING, required=True, description="The name of the zone."),
        "description": Attribute(TYPE_STRING, computed=True),
        "cluster_ids": Attribute(TYPE_SET, computed=True, elem=Attribute(TYPE_STRING)),
    }


def read(d, client):
    name = d.get("name")
    zone = client.zones.get_zone(name)
    d.set("description", zone.get("description", ""))
    d.set("cluster_ids", client.zones.list_cluster_associations(name))
    d.set_id(name)


def data_source():
    return DataSource(zone_schema(), read=read, description="Looks up a consumption domain zone.")
