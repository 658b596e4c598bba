from pyVmomi import vim
from managers.vcenter import VCenter
from errors import ProviderError, ResourceNotFoundError

NETWORK_TYPES = {
    "Network": vim.Network,
    "DistributedVirtualPortgroup": vim.dvs.DistributedVirtualPortgroup,
    "OpaqueNetwork": vim.OpaqueNetwork,
}


class NetworkManager(VCenter):

    def __init__(self, vcenter_instance):
        if not vcenter_instance.connection:
            raise ValueError("VCenter instance is not connected.")
        self.vcenter = vcenter_instance
        self.connection = vcenter_instance.connection
        self.logger = vcenter_instance.logger

    def _networks(self, datacenter=None):
        networks = self.get_all_objects_by_type(vim.Network)
        if datacenter is None:
            return networks
        return [n for n in networks if self.datacenter_for(n) == datacenter]

    @staticmethod
    def network_type(network):
        """Moref type name of a network, e.g. 'DistributedVirtualPortgroup'."""
        for name in ("DistributedVirtualPortgroup", "OpaqueNetwork"):
            if isinstance(network, NETWORK_TYPES[name]):
                return name
        return "Network"

    def find_by_name(self, name, datacenter=None, dvs_uuid="", network_type=""):
        """
        Finds a network by name.

        :param name: Network or port group name.
        :param datacenter: Restrict the search to this vim.Datacenter.
        :param dvs_uuid: Only consider port groups of the distributed switch with this UUID.
        :param network_type: Only consider networks of this moref type.
        :raises ResourceNotFoundError: When nothing matches.
        """
        matches = []
        for network in self._networks(datacenter):
            if network.name != name:
                continue
            if network_type and self.network_type(network) != network_type:
                continue
            if dvs_uuid:
                if not isinstance(network, vim.dvs.DistributedVirtualPortgroup):
                    continue
                switch = network.config.distributedVirtualSwitch
                if switch is None or switch.uuid != dvs_uuid:
                    continue
            matches.append(network)

        if not matches:
            raise ResourceNotFoundError(f"network {name} not found")
        if len(matches) > 1:
            raise ProviderError(
                f"path '{name}' resolves to multiple networks, use datacenter_id, "
                "distributed_virtual_switch_uuid or filter to narrow the search"
            )
        return matches[0]

    def find_by_vlan(self, vlan_id, datacenter=None):
        """
        Finds the distributed port group whose default port config uses a VLAN id.

        :raises ResourceNotFoundError: When no port group uses the VLAN.
        :raises ProviderError: When more than one port group does.
        """
        matches = []
        for network in self._networks(datacenter):
            if not isinstance(network, vim.dvs.DistributedVirtualPortgroup):
                continue
            port_config = network.config.defaultPortConfig
            vlan = getattr(port_config, "vlan", None)
            if not isinstance(vlan, vim.dvs.VmwareDistributedVirtualSwitch.VlanIdSpec):
                continue
            if vlan.vlanId == vlan_id:
                matches.append(network)

        if not matches:
            raise ResourceNotFoundError(f"network with vlan_id {vlan_id} not found")
        if len(matches) > 1:
            raise ProviderError(f"multiple distributed port groups found with vlan_id {vlan_id}")
        return matches[0]
