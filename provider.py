"""Provider client, connection setup and the registry of resource and data source types."""

import logging
import time

from errors import ProviderError
from managers.alarm_manager import AlarmManager
from managers.cluster_manager import ClusterManager
from managers.config_profile_manager import ConfigProfileManager
from managers.namespace_manager import NamespaceManager
from managers.network_manager import NetworkManager
from managers.rest_client import RestClient
from managers.software_manager import SoftwareManager
from managers.supervisor_manager import SupervisorManager
from managers.vcenter import VCenter
from managers.vm_manager import VmManager
from managers.vsan_manager import VsanManager
from managers.zone_manager import ZoneManager
from data_sources import alarm as alarm_data_source
from data_sources import configuration_profile as configuration_profile_data_source
from data_sources import host_thumbprint as host_thumbprint_data_source
from data_sources import namespace as namespace_data_source
from data_sources import network as network_data_source
from data_sources import virtual_machine as virtual_machine_data_source
from data_sources import zone as zone_data_source
from resources import alarm, compute_cluster, config_profile, configuration_profile, namespace, supervisor, zone

logger = logging.getLogger('vsprov.provider')

RESOURCES = {
    "vsphere_compute_cluster": compute_cluster.resource(),
    "vsphere_alarm": alarm.resource(),
    "vsphere_zone": zone.resource(),
    "vsphere_namespace": namespace.resource(),
    "vsphere_supervisor_v2": supervisor.resource(),
    "vsphere_configuration_profile": configuration_profile.resource(),
    "vsphere_config_profile": config_profile.resource(),
}

DATA_SOURCES = {
    "vsphere_alarm": alarm_data_source.data_source(),
    "vsphere_zone": zone_data_source.data_source(),
    "vsphere_namespace": namespace_data_source.data_source(),
    "vsphere_configuration_profile": configuration_profile_data_source.data_source(),
    "vsphere_network": network_data_source.data_source(),
    "vsphere_virtual_machine": virtual_machine_data_source.data_source(),
    "vsphere_host_thumbprint": host_thumbprint_data_source.data_source(),
}


def get_resource(type_name):
    try:
        return RESOURCES[type_name]
    except KeyError:
        raise ProviderError(f"unknown resource type {type_name}") from None


def get_data_source(type_name):
    try:
        return DATA_SOURCES[type_name]
    except KeyError:
        raise ProviderError(f"unknown resource type {type_name}") from None


class ProviderClient:
    """
    Connected SOAP and REST clients plus the managers built on top of them.

    Managers are created on first use. `sleep` and `clock` drive every
    polling loop and can be replaced in tests.
    """

    def __init__(self, vim_client, rest_client, sleep=time.sleep, clock=time.monotonic):
        self.vim_client = vim_client
        self.rest_client = rest_client
        self.sleep = sleep
        self.clock = clock
        self._managers = {}

    def _manager(self, name, factory):
        if name not in self._managers:
            self._managers[name] = factory()
        return self._managers[name]

    @property
    def clusters(self):
        return self._manager("clusters", lambda: ClusterManager(self.vim_client))

    @property
    def hosts(self):
        return self.clusters.hosts

    @property
    def vsan(self):
        return self._manager("vsan", lambda: VsanManager(self.vim_client))

    @property
    def alarms(self):
        return self._manager("alarms", lambda: AlarmManager(self.vim_client))

    @property
    def networks(self):
        return self._manager("networks", lambda: NetworkManager(self.vim_client))

    @property
    def vms(self):
        return self._manager("vms", lambda: VmManager(self.vim_client))

    @property
    def zones(self):
        return self._manager("zones", lambda: ZoneManager(self.rest_client))

    @property
    def namespaces(self):
        return self._manager("namespaces", lambda: NamespaceManager(self.rest_client))

    @property
    def supervisors(self):
        return self._manager("supervisors", lambda: SupervisorManager(self.rest_client, sleep=self.sleep,
                                                                      clock=self.clock))

    @property
    def config_profiles(self):
        return self._manager("config_profiles", lambda: ConfigProfileManager(self.rest_client))

    @property
    def software(self):
        return self._manager("software", lambda: SoftwareManager(self.rest_client))


def get_provider_client(settings):
    """
    Connects to vCenter over SOAP and REST.

    :param settings: Dict from config_utils.load_provider_settings().
    :return: ProviderClient
    :raises ProviderError: When either connection fails.
    """
    server = settings["server"]
    vim_client = VCenter(server, settings["user"], settings["password"], port=settings["port"],
                         disable_ssl_verification=settings["allow_unverified_ssl"])
    vim_client.connect()
    if not vim_client.is_connected():
        raise ProviderError(f"failed to connect to vCenter {server}")

    rest_client = RestClient(server, settings["user"], settings["password"], port=settings["port"],
                             verify_ssl=not settings["allow_unverified_ssl"],
                             timeout=settings["api_timeout"] * 60)
    rest_client.login()
    logger.info(f"Connected to vCenter {server}")
    return ProviderClient(vim_client, rest_client)
