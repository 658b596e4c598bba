from types import SimpleNamespace

import pytest
from pyVmomi import vim

from data_sources import virtual_machine
from errors import ProviderError
from schema import ResourceData
from virtual_device import devices, video_card

GIB = devices.GIB


def pvscsi(key=1000, bus=0, sharing="noSharing"):
    return vim.vm.device.ParaVirtualSCSIController(key=key, busNumber=bus, sharedBus=sharing)


def lsilogic(key=1001, bus=1, sharing="noSharing"):
    return vim.vm.device.VirtualLsiLogicController(key=key, busNumber=bus, sharedBus=sharing)


def disk(controller_key, unit, size_gb, thin=True, label="Hard disk"):
    return vim.vm.device.VirtualDisk(
        key=2000 + unit,
        controllerKey=controller_key,
        unitNumber=unit,
        capacityInBytes=size_gb * GIB,
        backing=vim.vm.device.VirtualDisk.FlatVer2BackingInfo(thinProvisioned=thin, eagerlyScrub=False),
        deviceInfo=vim.Description(label=label, summary=""),
    )


def vmxnet3():
    return vim.vm.device.VirtualVmxnet3(
        key=4000,
        macAddress="00:50:56:aa:bb:cc",
        backing=vim.vm.device.VirtualEthernetCard.DistributedVirtualPortBackingInfo(
            port=vim.dvs.PortConnection(portgroupKey="dvportgroup-20", switchUuid="50 1a")),
        resourceAllocation=vim.vm.device.VirtualEthernetCard.ResourceAllocation(
            limit=1000, reservation=100, share=vim.SharesInfo(level="custom", shares=80)),
    )


def e1000():
    return vim.vm.device.VirtualE1000(
        key=4001,
        backing=vim.vm.device.VirtualEthernetCard.NetworkBackingInfo(network=vim.Network("network-7")),
    )


def video(enable_3d=False):
    card = vim.vm.device.VirtualVideoCard(key=500, numDisplays=1, videoRamSizeInKB=4096, enable3DSupport=enable_3d)
    if enable_3d:
        card.use3dRenderer = "automatic"
        card.graphicsMemorySizeInKB = 262144
    return card


class TestScsiBus:

    def test_single_type(self):
        assert devices.read_scsi_bus_type([pvscsi()], 1) == "pvscsi"
        assert devices.read_scsi_bus_sharing([pvscsi()], 1) == "noSharing"

    def test_mixed_types(self):
        assert devices.read_scsi_bus_type([pvscsi(), lsilogic()], 2) == "mixed"

    def test_controllers_past_scan_count_are_ignored(self):
        assert devices.read_scsi_bus_type([pvscsi(), lsilogic()], 1) == "pvscsi"

    def test_empty_bus(self):
        assert devices.read_scsi_bus_type([], 1) == "unknown"
        assert devices.read_scsi_bus_type([pvscsi()], 2) == "mixed"

    def test_mixed_sharing(self):
        controllers = [pvscsi(), lsilogic(sharing="physicalSharing")]
        assert devices.read_scsi_bus_sharing(controllers, 2) == "mixed"


class TestDisks:

    def test_disks_ordered_by_unit_number(self):
        device_list = [pvscsi(), lsilogic(), disk(1001, 2, 40, thin=False, label="Hard disk 2"),
                       disk(1000, 0, 20, label="Hard disk 1")]
        result = devices.read_disks(device_list, {"scsi": 2})
        assert result == [
            {"size": 20, "eagerly_scrub": False, "thin_provisioned": True, "label": "Hard disk 1", "unit_number": 0},
            {"size": 40, "eagerly_scrub": False, "thin_provisioned": False, "label": "Hard disk 2",
             "unit_number": 17},
        ]

    def test_disks_on_unscanned_controllers_are_skipped(self):
        device_list = [pvscsi(), lsilogic(), disk(1000, 0, 20), disk(1001, 1, 40)]
        result = devices.read_disks(device_list, {"scsi": 1})
        assert [d["unit_number"] for d in result] == [0]

    def test_sata_disks(self):
        sata = vim.vm.device.VirtualAHCIController(key=15000, busNumber=0)
        device_list = [sata, disk(15000, 3, 10)]
        assert devices.read_disks(device_list, {"scsi": 1, "sata": 0}) == []
        assert devices.read_disks(device_list, {"scsi": 1, "sata": 1})[0]["unit_number"] == 3


class TestNetworkInterfaces:

    def test_types(self):
        assert devices.read_network_interface_types([pvscsi(), vmxnet3(), e1000()]) == ["vmxnet3", "e1000"]

    def test_interfaces(self):
        assert devices.read_network_interfaces([vmxnet3(), e1000()]) == [
            {
                "adapter_type": "vmxnet3",
                "physical_function": "",
                "bandwidth_limit": 1000,
                "bandwidth_reservation": 100,
                "bandwidth_share_level": "custom",
                "bandwidth_share_count": 80,
                "mac_address": "00:50:56:aa:bb:cc",
                "network_id": "dvportgroup-20",
            },
            {
                "adapter_type": "e1000",
                "physical_function": "",
                "bandwidth_limit": -1,
                "bandwidth_reservation": 0,
                "bandwidth_share_level": "normal",
                "bandwidth_share_count": 0,
                "mac_address": "",
                "network_id": "network-7",
            },
        ]


class TestGuestAddresses:

    def test_primary_address_wins(self):
        guest = vim.vm.GuestInfo(ipAddress="10.0.0.5", net=[
            vim.vm.GuestInfo.NicInfo(ipAddress=["fe80::1", "10.0.0.5"]),
            vim.vm.GuestInfo.NicInfo(ipAddress=["10.0.0.5", "10.0.1.5"]),
        ])
        assert devices.read_guest_ip_addresses(guest) == (["fe80::1", "10.0.0.5", "10.0.1.5"], "10.0.0.5")

    def test_first_ipv4_address_without_primary(self):
        guest = vim.vm.GuestInfo(net=[vim.vm.GuestInfo.NicInfo(ipAddress=["fe80::1", "10.0.1.5"])])
        assert devices.read_guest_ip_addresses(guest) == (["fe80::1", "10.0.1.5"], "10.0.1.5")

    def test_no_guest(self):
        assert devices.read_guest_ip_addresses(None) == ([], "")


class TestVideoCard:

    def test_read(self):
        assert video_card.read([pvscsi(), video()]) == [{"num_displays": 1, "total_video_memory": 4}]

    def test_read_3d_settings(self):
        result = video_card.read([video(enable_3d=True)])
        assert result[0]["graphics_3d"] == [{"renderer": "automatic", "memory": 256}]

    def test_missing_card(self):
        with pytest.raises(ProviderError, match="no video card found"):
            video_card.read([pvscsi()])

    def test_create_spec(self):
        card = video()
        spec = video_card.create_spec([card], {"num_displays": 2, "total_video_memory": 8,
                                               "graphics_3d": [{"renderer": "hardware", "memory": 512}]})
        assert spec.operation == vim.vm.device.VirtualDeviceSpec.Operation.add
        assert spec.device is card
        assert card.numDisplays == 2
        assert card.videoRamSizeInKB == 8192
        assert card.enable3DSupport is True
        assert card.use3dRenderer == "hardware"
        assert card.graphicsMemorySizeInKB == 524288

    def test_update_spec(self):
        spec = video_card.update_spec([video()], {"num_displays": 4, "total_video_memory": 16})
        assert spec.operation == vim.vm.device.VirtualDeviceSpec.Operation.edit
        assert spec.device.numDisplays == 4
        assert not spec.device.enable3DSupport


def fake_vm(device_list, uuid="4201aaaa-bbbb"):
    config = vim.vm.ConfigInfo(
        uuid=uuid,
        instanceUuid="5001cccc",
        guestId="ubuntu64Guest",
        firmware="efi",
        hardware=vim.vm.VirtualHardware(numCPU=4, numCoresPerSocket=2, memoryMB=8192, device=device_list),
    )
    return SimpleNamespace(_moId="vm-42", config=config, guest=vim.vm.GuestInfo(ipAddress="10.0.0.5"))


class TestVirtualMachineDataSource:

    def data(self, **config):
        return ResourceData(virtual_machine.vm_schema(), config)

    def test_read(self, managed):
        device_list = [pvscsi(), disk(1000, 0, 20), vmxnet3(), video(), vim.vm.device.VirtualTPM(key=11000)]
        managed.vms.get_vm_by_uuid.return_value = fake_vm(device_list)
        d = self.data(uuid="4201aaaa-bbbb")
        virtual_machine.read(d, managed)

        assert d.id == "4201aaaa-bbbb"
        state = d.state()
        assert state["moid"] == "vm-42"
        assert state["guest_id"] == "ubuntu64Guest"
        assert state["num_cpus"] == 4
        assert state["memory"] == 8192
        assert state["firmware"] == "efi"
        assert state["scsi_type"] == "pvscsi"
        assert [disk_["size"] for disk_ in state["disks"]] == [20]
        assert state["network_interface_types"] == ["vmxnet3"]
        assert state["default_ip_address"] == "10.0.0.5"
        assert state["vtpm"] is True
        assert state["video_card"] == [{"num_displays": 1, "total_video_memory": 4}]

    def test_lookup_by_path(self, managed):
        datacenter = vim.Datacenter("datacenter-3")
        managed.vim_client.get_obj_by_moid.return_value = datacenter
        managed.vms.get_vm_by_path.return_value = fake_vm([pvscsi()])
        d = self.data(name="web-01", folder="/apps/", datacenter_id="datacenter-3")
        virtual_machine.read(d, managed)

        managed.vms.get_vm_by_path.assert_called_once_with("apps/web-01", datacenter)
        assert d.get("video_card") == []
        assert d.get("vtpm") is False

    def test_lookup_by_moid(self, managed):
        managed.vms.get_vm_by_moid.return_value = fake_vm([])
        virtual_machine.read(self.data(moid="vm-42"), managed)
        managed.vms.get_vm_by_moid.assert_called_once_with("vm-42")

    def test_lookup_failure(self, managed):
        managed.vms.get_vm_by_uuid.side_effect = ProviderError("no VM with UUID 42")
        with pytest.raises(ProviderError, match="error fetching virtual machine: no VM with UUID 42"):
            virtual_machine.read(self.data(uuid="42"), managed)

    def test_missing_uuid(self, managed):
        managed.vms.get_vm_by_uuid.return_value = fake_vm([], uuid="")
        with pytest.raises(ProviderError, match="does not have a UUID"):
            virtual_machine.read(self.data(uuid="42"), managed)

    def test_missing_config(self, managed):
        managed.vms.get_vm_by_uuid.return_value = SimpleNamespace(_moId="vm-42", config=None, guest=None)
        with pytest.raises(ProviderError, match="no configuration returned for virtual machine 'vm-42'"):
            virtual_machine.read(self.data(uuid="42"), managed)
