import ssl

from pyVmomi import vim, SoapStubAdapter, VmomiSupport
from managers.vcenter import VCenter
from errors import ProviderError

VSAN_API_PATH = "/vsanHealth"
VSAN_CONFIG_SYSTEM_MOID = "vsan-cluster-config-system"


class VsanManager(VCenter):
    """
    vSAN cluster services through the vSAN management SDK bindings shipped
    with pyVmomi.
    """

    def __init__(self, vcenter_instance):
        if not vcenter_instance.connection:
            raise ValueError("VCenter instance is not connected.")
        self.vcenter = vcenter_instance
        self.connection = vcenter_instance.connection
        self.logger = vcenter_instance.logger
        self._config_system = None

    def _vsan_stub(self):
        """SOAP stub for the vSAN endpoint that reuses the vCenter session cookie."""
        ssl_context = None
        if getattr(self.vcenter, "disable_ssl_verification", False):
            ssl_context = ssl._create_unverified_context()
        stub = SoapStubAdapter(host=self.vcenter.host,
                               port=self.vcenter.port,
                               path=VSAN_API_PATH,
                               version=VmomiSupport.newestVersions.GetName('vsan'),
                               sslContext=ssl_context)
        stub.cookie = self.connection._stub.cookie
        return stub

    def _vsan_config_system(self):
        if self._config_system is None:
            self._config_system = vim.cluster.VsanVcClusterConfigSystem(VSAN_CONFIG_SYSTEM_MOID, self._vsan_stub())
        return self._config_system

    def get_config(self, cluster):
        """
        :param cluster: vim.ClusterComputeResource
        :return: vim.vsan.ConfigInfoEx
        """
        config = self._vsan_config_system().VsanClusterGetConfig(cluster=cluster)
        if config is None:
            raise ProviderError(f"error getting vsan information for cluster {cluster.name}, response object was unexpectedly nil")
        return config

    def reconfigure(self, cluster, spec):
        vsan_task = self._vsan_config_system().VsanClusterReconfig(cluster, spec)
        task = vim.Task(vsan_task._moId, self.connection._stub)
        return self.wait_for_task(task, f"Reconfiguring vSAN on {cluster.name}")

    def build_reconfig_spec(self, settings, esa_supported=True):
        """
        Builds the reconfigure spec for the vSAN cluster services.

        :param settings: Dict with the vsan_* attributes of a cluster.
        :param esa_supported: Whether vCenter is 8.0 or newer.
        :return: vim.vsan.ReconfigSpec
        """
        cluster_config = vim.vsan.cluster.ConfigInfo(
            enabled=settings["vsan_enabled"],
            defaultConfig=vim.vsan.cluster.ConfigInfo.HostDefaultInfo(),
        )
        if esa_supported:
            cluster_config.vsanEsaEnabled = settings["vsan_esa_enabled"]

        spec = vim.vsan.ReconfigSpec(
            modify=True,
            vsanClusterConfig=cluster_config,
            unmapConfig=vim.vsan.VsanUnmapConfig(enable=settings["vsan_unmap_enabled"]),
            dataInTransitEncryptionConfig=vim.vsan.DataInTransitEncryptionConfig(
                enabled=settings["vsan_dit_encryption_enabled"],
                rekeyInterval=settings["vsan_dit_rekey_interval"] or None,
            ),
            perfsvcConfig=vim.cluster.VsanPerfsvcConfig(
                enabled=settings["vsan_performance_enabled"],
                verboseMode=settings["vsan_verbose_mode_enabled"],
                diagnosticMode=settings["vsan_network_diagnostic_mode_enabled"],
            ),
        )
        if settings["vsan_enabled"] and not settings["vsan_esa_enabled"]:
            spec.dataEfficiencyConfig = vim.vsan.DataEfficiencyConfig(
                dedupEnabled=settings["vsan_dedup_enabled"],
                compressionEnabled=settings["vsan_compression_enabled"],
            )
        return spec

    def build_datastore_spec(self, datastore_ids):
        """Reconfigure spec that sets the remote (HCI mesh) datastores of a cluster."""
        datastores = [vim.Datastore(ds_id, self.connection._stub) for ds_id in datastore_ids]
        return vim.vsan.ReconfigSpec(
            modify=True,
            datastoreConfig=vim.vsan.AdvancedDatastoreConfig(remoteDatastores=datastores),
        )
