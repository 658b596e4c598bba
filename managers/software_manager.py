import logging

logger = logging.getLogger('vsprov.software')

CLUSTERS_PATH = "/api/esx/settings/clusters"


class SoftwareManager:
    """vSphere Lifecycle Manager (vLCM) image management for a cluster."""

    def __init__(self, rest_client):
        self.rest = rest_client
        self.logger = logger

    def _software_path(self, cluster_id):
        return f"{CLUSTERS_PATH}/{cluster_id}/software"

    def is_software_management_enabled(self, cluster_id):
        info = self.rest.get(f"{CLUSTERS_PATH}/{cluster_id}/enablement/software") or {}
        return bool(info.get("enabled"))

    def enable_software_management(self, cluster_id):
        task_id = self.rest.post(f"{CLUSTERS_PATH}/{cluster_id}/enablement/software",
                                 params={"vmw-task": "true"}, json={"skip_software_check": False})
        self.logger.info(f"Enabling image based management on cluster {cluster_id}")
        return self.rest.wait_for_task(task_id)

    def create_draft(self, cluster_id):
        return self.rest.post(f"{self._software_path(cluster_id)}/drafts")

    def set_base_image(self, cluster_id, draft_id, version):
        self.rest.put(f"{self._software_path(cluster_id)}/drafts/{draft_id}/software/base-image",
                      json={"version": version})

    def set_components(self, cluster_id, draft_id, components):
        """
        :param components: Mapping of component name to version.
        """
        self.rest.patch(f"{self._software_path(cluster_id)}/drafts/{draft_id}/software/components",
                        json={"components_to_set": components})

    def remove_component(self, cluster_id, draft_id, component):
        self.rest.delete(f"{self._software_path(cluster_id)}/drafts/{draft_id}/software/components/{component}")

    def commit_draft(self, cluster_id, draft_id):
        task_id = self.rest.post(f"{self._software_path(cluster_id)}/drafts/{draft_id}",
                                 params={"action": "commit", "vmw-task": "true"}, json={})
        self.logger.info(f"Committing software draft {draft_id} on cluster {cluster_id}")
        return self.rest.wait_for_task(task_id)

    def apply_image(self, cluster_id, esx_version, components_to_set=None, components_to_remove=None):
        """
        Commits a new desired image for a cluster.

        Enables image based management first when the cluster still uses
        baselines, seeding it with the requested base image.

        :param cluster_id: Moref value of the cluster.
        :param esx_version: ESXi base image version.
        :param components_to_set: Mapping of component name to version to add or change.
        :param components_to_remove: Component names to drop from the image.
        """
        if not self.is_software_management_enabled(cluster_id):
            draft_id = self.create_draft(cluster_id)
            self.set_base_image(cluster_id, draft_id, esx_version)
            self.commit_draft(cluster_id, draft_id)
            self.enable_software_management(cluster_id)

        draft_id = self.create_draft(cluster_id)
        self.set_base_image(cluster_id, draft_id, esx_version)
        self.set_components(cluster_id, draft_id, components_to_set or {})
        for component in components_to_remove or []:
            self.remove_component(cluster_id, draft_id, component)
        self.commit_draft(cluster_id, draft_id)
