"""
Looks up a virtual machine or template and exposes the parts of its
configuration that are useful when cloning from it.
"""

import logging

from pyVmomi import vim

from errors import ProviderError
from schema import (Attribute, DataSource, TYPE_BOOL, TYPE_INT, TYPE_LIST, TYPE_STRING,
                    int_at_least)
from utils import normalize_folder_path
from virtual_device import devices, video_card

logger = logging.getLogger('vsprov.data_sources.virtual_machine')

LOOKUP_KEYS = ["name", "uuid", "moid"]


def _computed_block(fields):
    return Attribute(TYPE_LIST, computed=True, elem={
        key: Attribute(attr_type, computed=True) for key, attr_type in fields.items()
    })


def vm_schema():
    return {
        "name": Attribute(TYPE_STRING, optional=True, at_least_one_of=LOOKUP_KEYS,
                          description="Name or path of the virtual machine."),
        "uuid": Attribute(TYPE_STRING, optional=True, at_least_one_of=LOOKUP_KEYS),
        "moid": Attribute(TYPE_STRING, optional=True, computed=True, at_least_one_of=LOOKUP_KEYS),
        "datacenter_id": Attribute(TYPE_STRING, optional=True),
        "folder": Attribute(TYPE_STRING, optional=True, conflicts_with=["uuid", "moid"],
                            state_func=normalize_folder_path),
        "scsi_controller_scan_count": Attribute(TYPE_INT, optional=True, default=1, validate=int_at_least(0)),
        "sata_controller_scan_count": Attribute(TYPE_INT, optional=True, default=0, validate=int_at_least(0)),
        "ide_controller_scan_count": Attribute(TYPE_INT, optional=True, default=2, validate=int_at_least(0)),
        "nvme_controller_scan_count": Attribute(TYPE_INT, optional=True, default=1, validate=int_at_least(0)),
        "guest_id": Attribute(TYPE_STRING, computed=True),
        "alternate_guest_name": Attribute(TYPE_STRING, computed=True),
        "num_cpus": Attribute(TYPE_INT, computed=True),
        "num_cores_per_socket": Attribute(TYPE_INT, computed=True),
        "memory": Attribute(TYPE_INT, computed=True),
        "firmware": Attribute(TYPE_STRING, computed=True),
        "instance_uuid": Attribute(TYPE_STRING, computed=True),
        "scsi_type": Attribute(TYPE_STRING, computed=True),
        "scsi_bus_sharing": Attribute(TYPE_STRING, computed=True),
        "disks": _computed_block({
            "size": TYPE_INT,
            "eagerly_scrub": TYPE_BOOL,
            "thin_provisioned": TYPE_BOOL,
            "label": TYPE_STRING,
            "unit_number": TYPE_INT,
        }),
        "network_interface_types": Attribute(TYPE_LIST, computed=True, elem=Attribute(TYPE_STRING)),
        "network_interfaces": _computed_block({
            "adapter_type": TYPE_STRING,
            "physical_function": TYPE_STRING,
            "bandwidth_limit": TYPE_INT,
            "bandwidth_reservation": TYPE_INT,
            "bandwidth_share_level": TYPE_STRING,
            "bandwidth_share_count": TYPE_INT,
            "mac_address": TYPE_STRING,
            "network_id": TYPE_STRING,
        }),
        "guest_ip_addresses": Attribute(TYPE_LIST, computed=True, elem=Attribute(TYPE_STRING)),
        "default_ip_address": Attribute(TYPE_STRING, computed=True),
        "vtpm": Attribute(TYPE_BOOL, computed=True),
        "video_card": Attribute(TYPE_LIST, computed=True, elem={
            key: Attribute(attr.type, computed=True, elem=attr.elem)
            for key, attr in video_card.video_card_schema().items()
        }),
    }


def find_vm(d, client):
    vms = client.vms
    uuid = d.get("uuid")
    moid = d.get("moid")
    if uuid:
        logger.debug(f"Looking for VM or template by UUID {uuid!r}")
        return vms.get_vm_by_uuid(uuid)
    if moid:
        logger.debug(f"Looking for VM or template by MOID {moid!r}")
        return vms.get_vm_by_moid(moid)

    datacenter = None
    datacenter_id = d.get("datacenter_id")
    if datacenter_id:
        try:
            datacenter = client.vim_client.get_obj_by_moid(vim.Datacenter, datacenter_id)
        except ProviderError as e:
            raise ProviderError(f"cannot locate datacenter: {e}") from e
    path = d.get("name")
    folder = d.get("folder")
    if folder:
        path = f"{folder}/{path}"
    logger.debug(f"Looking for VM or template by name/path {path!r}")
    return vms.get_vm_by_path(path, datacenter)


def read(d, client):
    try:
        vm = find_vm(d, client)
    except ProviderError as e:
        raise ProviderError(f"error fetching virtual machine: {e}") from e
    d.set("moid", vm._moId)

    config = vm.config
    if config is None:
        raise ProviderError(f"no configuration returned for virtual machine {vm._moId!r}")
    if not config.uuid:
        raise ProviderError(f"virtual machine {vm._moId!r} does not have a UUID")

    hardware = config.hardware
    device_list = hardware.device
    scsi_count = d.get("scsi_controller_scan_count")
    d.set("guest_id", config.guestId or "")
    d.set("alternate_guest_name", config.alternateGuestName or "")
    d.set("num_cpus", hardware.numCPU)
    d.set("num_cores_per_socket", hardware.numCoresPerSocket)
    d.set("memory", hardware.memoryMB)
    d.set("firmware", config.firmware or "")
    d.set("instance_uuid", config.instanceUuid or "")
    d.set("scsi_type", devices.read_scsi_bus_type(device_list, scsi_count))
    d.set("scsi_bus_sharing", devices.read_scsi_bus_sharing(device_list, scsi_count))
    d.set("disks", devices.read_disks(device_list, {
        "scsi": scsi_count,
        "sata": d.get("sata_controller_scan_count"),
        "ide": d.get("ide_controller_scan_count"),
        "nvme": d.get("nvme_controller_scan_count"),
    }))
    d.set("network_interface_types", devices.read_network_interface_types(device_list))
    d.set("network_interfaces", devices.read_network_interfaces(device_list))
    addresses, default_address = devices.read_guest_ip_addresses(vm.guest)
    d.set("guest_ip_addresses", addresses)
    d.set("default_ip_address", default_address)
    d.set("vtpm", devices.has_vtpm(device_list))
    try:
        d.set("video_card", video_card.read(device_list))
    except ProviderError:
        d.set("video_card", [])

    d.set_id(config.uuid)
    logger.debug(f"VM search for {d.get('name') or vm._moId!r} completed successfully (UUID {config.uuid!r})")


def data_source():
    return DataSource(vm_schema(), read=read, description="Looks up a virtual machine or template.")
