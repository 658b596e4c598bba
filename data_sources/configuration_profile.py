from resources.configuration_profile import read_profile
from schema import Attribute, DataSource, TYPE_STRING


def profile_schema():
    return {
        "cluster_id": Attribute(TYPE_STRING, required=True),
        "configuration": Attribute(TYPE_STRING, computed=True),
        "schema": Attribute(TYPE_STRING, computed=True),
    }


def read(d, client):
    read_profile(d, client)


def data_source():
    return DataSource(profile_schema(), read=read,
                      description="Reads the configuration profile of a cluster.")
