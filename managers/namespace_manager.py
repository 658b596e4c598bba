import logging

from errors import ProviderError, ResourceNotFoundError

logger = logging.getLogger('vsprov.namespaces')

INSTANCES_PATH = "/api/vcenter/namespaces/instances"
SUPERVISORS_PATH = "/api/vcenter/namespace-management/supervisors"


class NamespaceManager:
    """vSphere namespaces on a supervisor."""

    def __init__(self, rest_client):
        self.rest = rest_client
        self.logger = logger

    def create_namespace(self, spec):
        self.rest.post(f"{INSTANCES_PATH}/v2", json=spec)
        self.logger.info(f"Namespace '{spec['namespace']}' creation requested.")

    def get_namespace(self, name):
        return self.rest.get(f"{INSTANCES_PATH}/v2/{name}") or {}

    def update_namespace(self, name, spec):
        self.rest.patch(f"{INSTANCES_PATH}/{name}", json=spec)
        self.logger.info(f"Namespace '{name}' updated.")

    def delete_namespace(self, name):
        self.rest.delete(f"{INSTANCES_PATH}/{name}")
        self.logger.info(f"Namespace '{name}' deleted.")

    def find_supervisor_for_cluster(self, cluster_id):
        """
        Finds the supervisor running on a compute cluster.

        Older namespaces only report the cluster they live on, so every
        supervisor's topology is searched for it.

        :param cluster_id: Moref value of the compute cluster.
        :return: The supervisor id.
        """
        summaries = self.rest.get(f"{SUPERVISORS_PATH}/summaries") or {}
        for item in summaries.get("items", []):
            supervisor_id = item.get("supervisor")
            try:
                topology = self.rest.get(f"{SUPERVISORS_PATH}/{supervisor_id}/topology") or []
            except ResourceNotFoundError:
                continue
            for zone in topology:
                if cluster_id in (zone.get("clusters") or []) or zone.get("cluster") == cluster_id:
                    return supervisor_id
        raise ProviderError(f"could not find supervisor for cluster {cluster_id}")
