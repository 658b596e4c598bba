from pyVmomi import vim, vmodl
from managers.vcenter import VCenter
from managers.folder_manager import FolderManager
from managers.host_manager import HostManager
from errors import ProviderError, ResourceNotFoundError


class ClusterManager(VCenter):
    """Compute cluster lifecycle through the vSphere SOAP API."""

    def __init__(self, vcenter_instance):
        if not vcenter_instance.connection:
            raise ValueError("VCenter instance is not connected.")
        self.vcenter = vcenter_instance
        self.connection = vcenter_instance.connection
        self.logger = vcenter_instance.logger
        self.folders = FolderManager(vcenter_instance)
        self.hosts = HostManager(vcenter_instance)

    def get_cluster(self, cluster_id):
        return self.get_obj_by_moid(vim.ClusterComputeResource, cluster_id)

    def get_cluster_by_path(self, path):
        """
        :param path: Inventory path, e.g. '/dc1/host/cluster1'.
        :return: vim.ClusterComputeResource
        """
        cluster = self.find_by_inventory_path(path.strip("/"))
        if not isinstance(cluster, vim.ClusterComputeResource):
            raise ResourceNotFoundError(f"cluster '{path}' not found")
        return cluster

    def get_datacenter(self, datacenter_id):
        try:
            return self.get_obj_by_moid(vim.Datacenter, datacenter_id)
        except ProviderError as e:
            raise ProviderError(f"cannot locate datacenter: {e}") from e

    def create_cluster(self, datacenter_id, folder_path, name):
        """
        Creates an empty cluster in a host folder of a datacenter.

        :param datacenter_id: Moref value of the datacenter.
        :param folder_path: Folder path relative to the datacenter host folder.
        :param name: Cluster name.
        :return: vim.ClusterComputeResource
        """
        datacenter = self.get_datacenter(datacenter_id)
        try:
            folder = self.folders.folder_from_path(datacenter, folder_path, "host")
        except ProviderError as e:
            raise ProviderError(f"cannot locate folder: {e}") from e
        try:
            cluster = folder.CreateClusterEx(name=name, spec=vim.cluster.ConfigSpecEx())
        except vmodl.MethodFault as e:
            raise ProviderError(f"error creating cluster: {self.extract_error_message(e)}") from e
        self.logger.info(f"Cluster '{name}' created ({cluster._moId}).")
        return cluster

    def reconfigure(self, cluster, spec):
        task = cluster.ReconfigureComputeResource_Task(spec=spec, modify=True)
        self.wait_for_task(task, f"Reconfiguring cluster {cluster.name}")

    def rename(self, cluster, name):
        try:
            self.wait_for_task(cluster.Rename_Task(newName=name), f"Renaming cluster to {name}")
        except ProviderError as e:
            raise ProviderError(f"error renaming cluster: {e}") from e

    def move_to_folder(self, cluster, folder_path):
        datacenter = self.datacenter_for(cluster)
        try:
            folder = self.folders.folder_from_path(datacenter, folder_path, "host")
            self.folders.move_into_folder(folder, [cluster])
        except ProviderError as e:
            raise ProviderError(f"could not move cluster to folder {folder_path!r}: {e}") from e

    def relative_folder(self, cluster):
        return self.folders.relative_path(cluster, "host")

    def move_hosts_into(self, cluster, hosts):
        """Moves standalone or other-cluster hosts into the cluster and takes them out of maintenance mode."""
        if not hosts:
            return
        try:
            self.wait_for_task(cluster.MoveInto_Task(host=hosts), f"Moving hosts into {cluster.name}")
        except ProviderError as e:
            raise ProviderError(f"error moving new hosts into cluster: {e}") from e
        for host in hosts:
            if host.runtime.inMaintenanceMode:
                try:
                    self.hosts.exit_maintenance_mode(host, timeout=0)
                except ProviderError as e:
                    raise ProviderError(
                        f"while getting host {host._moId!r} out of maintenance mode: {e}"
                    ) from e

    def move_hosts_out(self, cluster, hosts, timeout):
        """
        Evacuates hosts out of a cluster into the datacenter's root host folder.

        :param timeout: Seconds each host may take to enter maintenance mode.
        """
        if not hosts:
            return
        datacenter = self.datacenter_for(cluster)
        try:
            for host in hosts:
                self.hosts.enter_maintenance_mode(host, timeout)
                self.folders.move_into_folder(datacenter.hostFolder, [host])
                self.hosts.exit_maintenance_mode(host, timeout)
        except ProviderError as e:
            raise ProviderError(f"error moving old hosts out of cluster: {e}") from e

    def has_children(self, cluster):
        if cluster.host:
            return True
        return bool(cluster.resourcePool and cluster.resourcePool.vm)

    def destroy(self, cluster):
        name = cluster.name
        self.wait_for_task(cluster.Destroy_Task(), f"Deleting cluster {name}")
        self.logger.info(f"Cluster '{name}' deleted.")
