"""Legacy form of the configuration profile resource, with the document under `config`."""

from resources.configuration_profile import apply_draft, profile_schema, read_profile, transition
from schema import Resource

CONFIG_KEY = "config"


def create(d, client):
    transition(d, client, CONFIG_KEY)
    read(d, client)


def read(d, client):
    read_profile(d, client, CONFIG_KEY)


def update(d, client):
    apply_draft(d, client, CONFIG_KEY)
    read(d, client)


def delete(d, client):
    d.set_id("")


def resource():
    return Resource(profile_schema(CONFIG_KEY), create=create, read=read, update=update, delete=delete,
                    description="Configuration profile of a vLCM managed cluster (legacy attribute names).")
