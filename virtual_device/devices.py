"""Read-only helpers that flatten the device list of a virtual machine."""

from pyVmomi import vim

GIB = 1024 * 1024 * 1024
SCSI_UNITS_PER_BUS = 15

SCSI_CONTROLLER_TYPES = (
    (vim.vm.device.ParaVirtualSCSIController, "pvscsi"),
    (vim.vm.device.VirtualLsiLogicSASController, "lsilogic-sas"),
    (vim.vm.device.VirtualLsiLogicController, "lsilogic"),
    (vim.vm.device.VirtualBusLogicController, "buslogic"),
)

NIC_TYPES = (
    (vim.vm.device.VirtualE1000e, "e1000e"),
    (vim.vm.device.VirtualE1000, "e1000"),
    (vim.vm.device.VirtualVmxnet3Vrdma, "vmxnet3vrdma"),
    (vim.vm.device.VirtualVmxnet3, "vmxnet3"),
    (vim.vm.device.VirtualVmxnet2, "vmxnet2"),
    (vim.vm.device.VirtualSriovEthernetCard, "sriov"),
    (vim.vm.device.VirtualPCNet32, "pcnet32"),
)

UNKNOWN_CONTROLLER = "unknown"
MIXED_CONTROLLERS = "mixed"


def _scsi_controllers(devices, count):
    controllers = [None] * count
    for device in devices or []:
        if isinstance(device, vim.vm.device.VirtualSCSIController) and device.busNumber < count:
            controllers[device.busNumber] = device
    return controllers


def _same_or_mixed(values):
    last = ""
    for value in values:
        if last and value != last:
            return MIXED_CONTROLLERS
        last = value
    return last


def scsi_controller_type(controller):
    for cls, name in SCSI_CONTROLLER_TYPES:
        if isinstance(controller, cls):
            return name
    return UNKNOWN_CONTROLLER


def read_scsi_bus_type(devices, count):
    """
    Returns the common type of the first count SCSI controllers, 'mixed' when
    they differ and 'unknown' for an empty bus.
    """
    return _same_or_mixed(
        scsi_controller_type(c) if c is not None else UNKNOWN_CONTROLLER
        for c in _scsi_controllers(devices, count)
    )


def read_scsi_bus_sharing(devices, count):
    return _same_or_mixed(
        str(c.sharedBus) if c is not None else UNKNOWN_CONTROLLER
        for c in _scsi_controllers(devices, count)
    )


def _controller_scan_counts(scan_counts):
    return {
        vim.vm.device.VirtualSCSIController: scan_counts.get("scsi", 1),
        vim.vm.device.VirtualAHCIController: scan_counts.get("sata", 0),
        vim.vm.device.VirtualIDEController: scan_counts.get("ide", 2),
        vim.vm.device.VirtualNVMEController: scan_counts.get("nvme", 1),
    }


def read_disks(devices, scan_counts):
    """
    Flattens the disks attached to the scanned controllers, ordered by unit number.

    :param devices: config.hardware.device of the VM.
    :param scan_counts: Mapping of scsi/sata/ide/nvme to the number of buses to scan.
    """
    limits = _controller_scan_counts(scan_counts)
    controllers = {}
    for device in devices or []:
        for cls, limit in limits.items():
            if isinstance(device, cls) and device.busNumber < limit:
                controllers[device.key] = device

    disks = []
    for device in devices or []:
        if not isinstance(device, vim.vm.device.VirtualDisk):
            continue
        controller = controllers.get(device.controllerKey)
        if controller is None:
            continue
        unit_number = device.unitNumber or 0
        if isinstance(controller, vim.vm.device.VirtualSCSIController):
            unit_number += controller.busNumber * SCSI_UNITS_PER_BUS
        backing = device.backing
        disks.append({
            "size": (device.capacityInBytes or 0) // GIB,
            "eagerly_scrub": bool(getattr(backing, "eagerlyScrub", False)),
            "thin_provisioned": bool(getattr(backing, "thinProvisioned", False)),
            "label": device.deviceInfo.label if device.deviceInfo else "",
            "unit_number": unit_number,
        })
    return sorted(disks, key=lambda disk: disk["unit_number"])


def nic_type(device):
    for cls, name in NIC_TYPES:
        if isinstance(device, cls):
            return name
    return "unknown"


def _network_cards(devices):
    return [d for d in devices or [] if isinstance(d, vim.vm.device.VirtualEthernetCard)]


def read_network_interface_types(devices):
    return [nic_type(card) for card in _network_cards(devices)]


def _backing_network_id(backing):
    if isinstance(backing, vim.vm.device.VirtualEthernetCard.DistributedVirtualPortBackingInfo):
        return backing.port.portgroupKey if backing.port else ""
    if isinstance(backing, vim.vm.device.VirtualEthernetCard.OpaqueNetworkBackingInfo):
        return backing.opaqueNetworkId or ""
    network = getattr(backing, "network", None)
    return network._moId if network is not None else ""


def read_network_interfaces(devices):
    interfaces = []
    for card in _network_cards(devices):
        allocation = card.resourceAllocation
        shares = allocation.share if allocation else None
        physical_function = ""
        if isinstance(card, vim.vm.device.VirtualSriovEthernetCard):
            sriov = card.sriovBacking
            if sriov and sriov.physicalFunctionBacking:
                physical_function = sriov.physicalFunctionBacking.id or ""
        interfaces.append({
            "adapter_type": nic_type(card),
            "physical_function": physical_function,
            "bandwidth_limit": allocation.limit if allocation and allocation.limit is not None else -1,
            "bandwidth_reservation": allocation.reservation or 0 if allocation else 0,
            "bandwidth_share_level": str(shares.level) if shares else "normal",
            "bandwidth_share_count": shares.shares if shares else 0,
            "mac_address": card.macAddress or "",
            "network_id": _backing_network_id(card.backing),
        })
    return interfaces


def read_guest_ip_addresses(guest):
    """
    Collects the guest IPs reported by VMware Tools.

    :return: (all addresses, default address). The default is the guest's
             primary address, else the first IPv4 address found.
    """
    addresses = []
    for nic in (guest.net or []) if guest else []:
        for ip in nic.ipAddress or []:
            if ip not in addresses:
                addresses.append(ip)
    default = guest.ipAddress if guest and guest.ipAddress else ""
    if not default:
        default = next((ip for ip in addresses if ":" not in ip), "")
    return addresses, default


def has_vtpm(devices):
    return any(isinstance(d, vim.vm.device.VirtualTPM) for d in devices or [])
