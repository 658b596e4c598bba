import logging

logger = logging.getLogger('vsprov.zones')

ZONES_PATH = "/api/vcenter/consumption-domains/zones"


class ZoneManager:
    """Consumption domain zones and their cluster associations."""

    def __init__(self, rest_client):
        self.rest = rest_client
        self.logger = logger

    def create_zone(self, name, description=""):
        self.rest.post(ZONES_PATH, json={"zone": name, "description": description})
        self.logger.info(f"Zone '{name}' created.")

    def get_zone(self, name):
        return self.rest.get(f"{ZONES_PATH}/{name}") or {}

    def delete_zone(self, name):
        self.rest.delete(f"{ZONES_PATH}/{name}")
        self.logger.info(f"Zone '{name}' deleted.")

    def list_cluster_associations(self, name):
        return list(self.rest.get(f"{ZONES_PATH}/cluster/{name}/associations") or [])

    def add_cluster_association(self, name, cluster_id):
        self.rest.post(f"{ZONES_PATH}/cluster/{name}/associations",
                       params={"action": "add"}, json=[cluster_id])
        self.logger.debug(f"Associated cluster {cluster_id} with zone '{name}'.")

    def remove_cluster_association(self, name, cluster_id):
        self.rest.post(f"{ZONES_PATH}/cluster/{name}/associations",
                       params={"action": "remove"}, json=[cluster_id])
        self.logger.debug(f"Removed cluster {cluster_id} from zone '{name}'.")
