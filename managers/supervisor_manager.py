import logging
import time

from constants import SUPERVISOR_MAX_ERROR_POLLS, SUPERVISOR_POLL_INTERVAL, SUPERVISOR_TIMEOUT
from errors import ProviderError, ResourceNotFoundError
from utils import poll_until

logger = logging.getLogger('vsprov.supervisors')

CLUSTERS_PATH = "/api/vcenter/namespace-management/clusters"
SUPERVISORS_PATH = "/api/vcenter/namespace-management/supervisors"

STATUS_RUNNING = "RUNNING"
STATUS_ERROR = "ERROR"
STATUS_CONFIGURING = "CONFIGURING"


class SupervisorManager:
    """Enables, inspects and disables vSphere supervisors."""

    def __init__(self, rest_client, poll_interval=SUPERVISOR_POLL_INTERVAL, timeout=SUPERVISOR_TIMEOUT,
                 sleep=time.sleep, clock=time.monotonic):
        self.rest = rest_client
        self.logger = logger
        self.poll_interval = poll_interval
        self.timeout = timeout
        self._sleep = sleep
        self._clock = clock

    def enable_on_compute_cluster(self, cluster_id, spec):
        """
        Enables a supervisor on a single vSphere cluster.

        :param cluster_id: Moref value of the compute cluster.
        :param spec: EnableOnComputeClusterSpec body.
        :return: The new supervisor id.
        """
        supervisor_id = self.rest.post(f"{CLUSTERS_PATH}/{cluster_id}",
                                       params={"action": "enable_on_compute_cluster"}, json=spec)
        self.logger.info(f"Supervisor '{spec.get('name')}' enablement started on cluster {cluster_id} ({supervisor_id}).")
        return supervisor_id

    def enable_on_zones(self, spec):
        supervisor_id = self.rest.post(SUPERVISORS_PATH, params={"action": "enable_on_zones"}, json=spec)
        self.logger.info(f"Supervisor '{spec.get('name')}' enablement started on zones {spec.get('zones')} ({supervisor_id}).")
        return supervisor_id

    def get_summary(self, supervisor_id):
        return self.rest.get(f"{SUPERVISORS_PATH}/{supervisor_id}/summary") or {}

    def get_topology(self, supervisor_id):
        return self.rest.get(f"{SUPERVISORS_PATH}/{supervisor_id}/topology") or []

    def list_summaries(self):
        return (self.rest.get(f"{SUPERVISORS_PATH}/summaries") or {}).get("items", [])

    def disable(self, cluster_id):
        self.rest.post(f"{CLUSTERS_PATH}/{cluster_id}", params={"action": "disable"})
        self.logger.info(f"Supervisor disable requested on cluster {cluster_id}.")

    def wait_for_enable(self, supervisor_id):
        """
        Blocks until the supervisor reports RUNNING.

        An ERROR status is tolerated for a few polls in a row since the
        supervisor often recovers on its own. CONFIGURING resets the count.
        """
        failures = {"count": 0}

        def fetch():
            try:
                return self.get_summary(supervisor_id).get("config_status")
            except ProviderError as e:
                raise ProviderError(f"could not find supervisor {supervisor_id}, {e}") from e

        def is_done(status):
            if status == STATUS_RUNNING:
                return True
            if status == STATUS_ERROR:
                if failures["count"] > SUPERVISOR_MAX_ERROR_POLLS:
                    raise ProviderError(f"could not enable supervisor {supervisor_id}")
                failures["count"] += 1
                self.logger.warning(f"Supervisor {supervisor_id} reports ERROR ({failures['count']}).")
            elif status == STATUS_CONFIGURING:
                failures["count"] = 0
            return False

        self._sleep(self.poll_interval)
        poll_until(fetch, is_done, self.poll_interval, self.timeout,
                   description=f"supervisor {supervisor_id} enablement",
                   sleep=self._sleep, clock=self._clock)
        self.logger.info(f"Supervisor {supervisor_id} is running.")

    def wait_for_disable(self, supervisor_id):
        """Blocks until the supervisor summary is gone."""

        def fetch():
            try:
                return self.get_summary(supervisor_id).get("config_status")
            except ResourceNotFoundError:
                return None

        def is_done(status):
            if status is None:
                return True
            if status == STATUS_ERROR:
                raise ProviderError(f"could not disable supervisor {supervisor_id}")
            return False

        self._sleep(self.poll_interval)
        poll_until(fetch, is_done, self.poll_interval, self.timeout,
                   description=f"supervisor {supervisor_id} removal",
                   sleep=self._sleep, clock=self._clock)
        self.logger.info(f"Supervisor {supervisor_id} is disabled.")
