import logging

from errors import ProviderError

logger = logging.getLogger('vsprov.configprofile')

CLUSTERS_PATH = "/api/esx/settings/clusters"


class ConfigProfileManager:
    """
    Cluster configuration profiles (ESX settings) for vLCM managed clusters.

    Covers the one-time transition of a cluster to configuration profiles and
    the draft workflow used to change the configuration afterwards.
    """

    def __init__(self, rest_client):
        self.rest = rest_client
        self.logger = logger

    def _config_path(self, cluster_id):
        return f"{CLUSTERS_PATH}/{cluster_id}/configuration"

    def _transition_path(self, cluster_id):
        return f"{CLUSTERS_PATH}/{cluster_id}/enablement/configuration/transition"

    def _run_task(self, path, action, body=None, error_prefix=None):
        """Starts an action as a cis task and waits for it."""
        try:
            task_id = self.rest.post(path, params={"action": action, "vmw-task": "true"}, json=body)
        except ProviderError as e:
            raise ProviderError(f"{error_prefix or 'failed to run ' + action}: {e}") from e
        return self.rest.wait_for_task(task_id)

    # --- Read ---

    def get_configuration(self, cluster_id):
        try:
            return self.rest.get(self._config_path(cluster_id)) or {}
        except ProviderError as e:
            raise ProviderError(f"failed to retrieve cluster configuration: {e}") from e

    def get_schema(self, cluster_id):
        try:
            return self.rest.get(f"{self._config_path(cluster_id)}/schema") or {}
        except ProviderError as e:
            raise ProviderError(f"failed to retrieve configuration schema: {e}") from e

    # --- Transition ---

    def get_transition_status(self, cluster_id):
        return (self.rest.get(self._transition_path(cluster_id)) or {}).get("status")

    def check_eligibility(self, cluster_id):
        self.logger.debug(f"Running eligibility checks on cluster: {cluster_id}")
        return self._run_task(self._transition_path(cluster_id), "checkEligibility",
                              error_prefix="failed to run eligibility check")

    def import_from_host(self, cluster_id, host_id):
        self.logger.debug(f"Importing configuration from reference host: {host_id}")
        return self._run_task(self._transition_path(cluster_id), "importFromHost", {"host": host_id},
                              error_prefix="failed to import configuration from reference host")

    def import_from_file(self, cluster_id, config):
        self.logger.debug("Importing configuration JSON")
        try:
            return self.rest.post(self._transition_path(cluster_id),
                                  params={"action": "importFromFile"}, json={"config": config})
        except ProviderError as e:
            raise ProviderError(f"failed to import configuration: {e}") from e

    def validate_configuration(self, cluster_id):
        self.logger.debug("Validating imported configuration")
        return self._run_task(self._transition_path(cluster_id), "validateConfig",
                              error_prefix="failed to validate configuration")

    def run_precheck(self, cluster_id):
        self.logger.debug(f"Running pre-checks on cluster: {cluster_id}")
        return self._run_task(self._transition_path(cluster_id), "precheck",
                              error_prefix="failed to run precheck")

    def enable_configuration(self, cluster_id):
        self.logger.info(f"Transitioning cluster {cluster_id} to configuration profiles")
        return self._run_task(self._transition_path(cluster_id), "enable",
                              error_prefix="failed to enable cluster configuration")

    # --- Drafts ---

    def list_drafts(self, cluster_id):
        drafts = self.rest.get(f"{self._config_path(cluster_id)}/drafts") or {}
        if isinstance(drafts, dict):
            return list(drafts.keys())
        return [d.get("draft", d) if isinstance(d, dict) else d for d in drafts]

    def delete_draft(self, cluster_id, draft_id):
        self.logger.debug(f"Deleting pending configuration draft: {draft_id}")
        self.rest.delete(f"{self._config_path(cluster_id)}/drafts/{draft_id}")

    def create_draft(self, cluster_id, config=None):
        body = {"config": config} if config else {}
        draft_id = self.rest.post(f"{self._config_path(cluster_id)}/drafts", json=body)
        self.logger.debug(f"Created configuration draft {draft_id} on cluster {cluster_id}")
        return draft_id

    def import_draft_from_host(self, cluster_id, draft_id, host_id):
        self.logger.debug(f"Updating draft {draft_id} from reference host: {host_id}")
        return self._run_task(f"{self._config_path(cluster_id)}/drafts/{draft_id}", "importFromHost",
                              {"host": host_id}, error_prefix="failed to import configuration")

    def precheck_draft(self, cluster_id, draft_id):
        self.logger.debug(f"Running pre-checks for draft: {draft_id}")
        try:
            return self._run_task(f"{self._config_path(cluster_id)}/drafts/{draft_id}", "precheck",
                                  error_prefix="failed to trigger precheck")
        except ProviderError as e:
            raise ProviderError(f"precheck failed: {e}") from e

    def apply_draft(self, cluster_id, draft_id):
        self.logger.info(f"Applying configuration draft {draft_id} on cluster {cluster_id}")
        try:
            result = self.rest.post(f"{self._config_path(cluster_id)}/drafts/{draft_id}",
                                    params={"action": "apply"}) or {}
            return self.rest.wait_for_task(result.get("apply_task"))
        except ProviderError as e:
            raise ProviderError(f"failed to apply draft: {e}") from e
