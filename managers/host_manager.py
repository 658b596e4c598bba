from pyVmomi import vim
from managers.vcenter import VCenter
from errors import ProviderError


class HostManager(VCenter):

    def __init__(self, vcenter_instance):
        if not vcenter_instance.connection:
            raise ValueError("VCenter instance is not connected.")
        self.vcenter = vcenter_instance
        self.connection = vcenter_instance.connection
        self.logger = vcenter_instance.logger

    def get_host_by_id(self, host_id):
        """
        :param host_id: Moref value of the host, e.g. 'host-10'.
        :return: vim.HostSystem
        """
        try:
            return self.get_obj_by_moid(vim.HostSystem, host_id)
        except ProviderError as e:
            raise ProviderError(f"error locating host system ID {host_id!r}: {e}") from e

    def get_hosts_by_id(self, host_ids):
        return [self.get_host_by_id(host_id) for host_id in host_ids]

    def enter_maintenance_mode(self, host, timeout, evacuate=True):
        """
        Puts a host into maintenance mode.

        :param host: vim.HostSystem
        :param timeout: Seconds vCenter waits for the host to evacuate.
        :param evacuate: Also evacuate powered off VMs.
        """
        if host.runtime.inMaintenanceMode:
            return
        self.logger.debug(f"Host {host.name} entering maintenance mode")
        task = host.EnterMaintenanceMode_Task(timeout=timeout, evacuatePoweredOffVms=evacuate)
        self.wait_for_task(task, f"Entering maintenance mode on {host.name}")

    def exit_maintenance_mode(self, host, timeout):
        if not host.runtime.inMaintenanceMode:
            return
        self.logger.debug(f"Host {host.name} exiting maintenance mode")
        task = host.ExitMaintenanceMode_Task(timeout=timeout)
        self.wait_for_task(task, f"Exiting maintenance mode on {host.name}")
