from unittest.mock import MagicMock, patch

import pytest
from pyVmomi import vim

from errors import ProviderError, ResourceNotFoundError, TaskError
from managers.alarm_manager import AlarmManager
from managers.cluster_manager import ClusterManager
from managers.folder_manager import FolderManager
from managers.host_manager import HostManager
from managers.network_manager import NetworkManager
from managers.vcenter import VCenter
from managers.vm_manager import VmManager
from managers.vsan_manager import VsanManager


def entity(vimtype, name, parent=None, **attrs):
    obj = MagicMock(spec=vimtype)
    obj.name = name
    obj.parent = parent
    for key, value in attrs.items():
        setattr(obj, key, value)
    return obj


@pytest.fixture
def vc():
    instance = VCenter("vc.example.com", "administrator@vsphere.local", "secret")
    instance.connection = MagicMock(name="service_instance")
    return instance


@pytest.fixture
def inventory():
    root = entity(vim.Folder, "Datacenters")
    datacenter = entity(vim.Datacenter, "dc1", root)
    host_folder = entity(vim.Folder, "host", datacenter)
    datacenter.hostFolder = host_folder
    prod = entity(vim.Folder, "prod", host_folder)
    edge = entity(vim.Folder, "edge", prod)
    host_folder.childEntity = [prod]
    prod.childEntity = [edge]
    edge.childEntity = []
    cluster = entity(vim.ClusterComputeResource, "cluster1", edge)
    return {"root": root, "datacenter": datacenter, "host_folder": host_folder, "edge": edge, "cluster": cluster}


class TestVCenter:

    def test_managers_require_a_connection(self):
        with pytest.raises(ValueError, match="not connected"):
            ClusterManager(VCenter("vc", "u", "p"))

    def test_api_version(self, vc):
        vc.connection.RetrieveContent.return_value.about.apiVersion = "8.0.3.0"
        assert vc.api_version() == (8, 0, 3, 0)

    def test_inventory_path(self, vc, inventory):
        assert vc.inventory_path(inventory["cluster"]) == "/dc1/host/prod/edge/cluster1"

    def test_datacenter_for(self, vc, inventory):
        assert vc.datacenter_for(inventory["cluster"]) is inventory["datacenter"]
        with pytest.raises(ProviderError, match="could not find datacenter"):
            vc.datacenter_for(inventory["root"])

    def test_extract_error_message(self, vc):
        assert vc.extract_error_message(vim.fault.InvalidName(msg="bad name")) == "bad name"
        assert vc.extract_error_message(RuntimeError("plain")) == "plain"

    def test_wait_for_task_returns_result(self, vc):
        task = MagicMock()
        task.info.result = "done"
        with patch("managers.vcenter.WaitForTask") as wait:
            assert vc.wait_for_task(task, "Renaming") == "done"
        wait.assert_called_once_with(task)

    def test_wait_for_task_failure(self, vc):
        with patch("managers.vcenter.WaitForTask", side_effect=vim.fault.DuplicateName(msg="name taken")):
            with pytest.raises(TaskError, match="name taken"):
                vc.wait_for_task(MagicMock(), "Creating")


class TestFolderManager:

    def test_folder_from_path(self, vc, inventory):
        folders = FolderManager(vc)
        assert folders.folder_from_path(inventory["datacenter"], "/prod/edge/", "host") is inventory["edge"]
        assert folders.folder_from_path(inventory["datacenter"], "", "host") is inventory["host_folder"]

    def test_missing_folder(self, vc, inventory):
        with pytest.raises(ProviderError, match="folder 'prod/core' not found under host folder of dc1"):
            FolderManager(vc).folder_from_path(inventory["datacenter"], "prod/core", "host")

    def test_relative_path(self, vc, inventory):
        assert FolderManager(vc).relative_path(inventory["cluster"], "host") == "prod/edge"


class TestHostManager:

    def test_enter_maintenance_mode(self, vc):
        hosts = HostManager(vc)
        host = entity(vim.HostSystem, "esx1")
        host.runtime.inMaintenanceMode = False
        with patch.object(hosts, "wait_for_task") as wait:
            hosts.enter_maintenance_mode(host, 600)
        host.EnterMaintenanceMode_Task.assert_called_once_with(timeout=600, evacuatePoweredOffVms=True)
        wait.assert_called_once()

    def test_maintenance_mode_transitions_are_skipped_when_not_needed(self, vc):
        hosts = HostManager(vc)
        host = entity(vim.HostSystem, "esx1")
        host.runtime.inMaintenanceMode = True
        hosts.enter_maintenance_mode(host, 600)
        host.EnterMaintenanceMode_Task.assert_not_called()
        host.runtime.inMaintenanceMode = False
        hosts.exit_maintenance_mode(host, 600)
        host.ExitMaintenanceMode_Task.assert_not_called()

    def test_get_host_by_id_error(self, vc):
        hosts = HostManager(vc)
        with patch.object(hosts, "get_obj_by_moid", side_effect=ResourceNotFoundError("HostSystem host-9 not found")):
            with pytest.raises(ProviderError, match="error locating host system ID 'host-9'"):
                hosts.get_host_by_id("host-9")


class TestClusterManager:

    def test_move_hosts_into_exits_maintenance(self, vc, inventory):
        clusters = ClusterManager(vc)
        ready = entity(vim.HostSystem, "esx1", _moId="host-1")
        ready.runtime.inMaintenanceMode = False
        parked = entity(vim.HostSystem, "esx2", _moId="host-2")
        parked.runtime.inMaintenanceMode = True
        with patch.object(clusters, "wait_for_task"), \
                patch.object(clusters.hosts, "exit_maintenance_mode") as exit_mode:
            clusters.move_hosts_into(inventory["cluster"], [ready, parked])
        inventory["cluster"].MoveInto_Task.assert_called_once_with(host=[ready, parked])
        exit_mode.assert_called_once_with(parked, timeout=0)

    def test_move_hosts_out(self, vc, inventory):
        clusters = ClusterManager(vc)
        host = entity(vim.HostSystem, "esx1")
        with patch.object(clusters.hosts, "enter_maintenance_mode") as enter, \
                patch.object(clusters.hosts, "exit_maintenance_mode") as leave, \
                patch.object(clusters.folders, "move_into_folder") as move:
            clusters.move_hosts_out(inventory["cluster"], [host], 3600)
        enter.assert_called_once_with(host, 3600)
        move.assert_called_once_with(inventory["host_folder"], [host])
        leave.assert_called_once_with(host, 3600)

    def test_move_hosts_out_error(self, vc, inventory):
        clusters = ClusterManager(vc)
        with patch.object(clusters.hosts, "enter_maintenance_mode", side_effect=TaskError("timed out")):
            with pytest.raises(ProviderError, match="error moving old hosts out of cluster: timed out"):
                clusters.move_hosts_out(inventory["cluster"], [entity(vim.HostSystem, "esx1")], 10)

    def test_has_children(self, vc, inventory):
        clusters = ClusterManager(vc)
        cluster = inventory["cluster"]
        cluster.host = []
        cluster.resourcePool.vm = []
        assert not clusters.has_children(cluster)
        cluster.resourcePool.vm = [MagicMock()]
        assert clusters.has_children(cluster)

    def test_create_cluster(self, vc, inventory):
        clusters = ClusterManager(vc)
        created = entity(vim.ClusterComputeResource, "c2", _moId="domain-c10")
        inventory["edge"].CreateClusterEx.return_value = created
        with patch.object(clusters, "get_datacenter", return_value=inventory["datacenter"]):
            assert clusters.create_cluster("datacenter-3", "prod/edge", "c2") is created
        assert inventory["edge"].CreateClusterEx.call_args[1]["name"] == "c2"


class TestNetworkManager:

    def _portgroup(self, name, vlan_id, switch_uuid="50 2a"):
        portgroup = entity(vim.dvs.DistributedVirtualPortgroup, name)
        portgroup.config.defaultPortConfig.vlan = vim.dvs.VmwareDistributedVirtualSwitch.VlanIdSpec(vlanId=vlan_id)
        portgroup.config.distributedVirtualSwitch.uuid = switch_uuid
        return portgroup

    def test_find_by_name_filters(self, vc):
        networks = NetworkManager(vc)
        plain = entity(vim.Network, "VM Network")
        portgroup = self._portgroup("VM Network", 10)
        with patch.object(networks, "get_all_objects_by_type", return_value=[plain, portgroup]):
            with pytest.raises(ProviderError, match="resolves to multiple networks"):
                networks.find_by_name("VM Network")
            assert networks.find_by_name("VM Network", dvs_uuid="50 2a") is portgroup
            assert networks.find_by_name("VM Network", network_type="Network") is plain
            with pytest.raises(ResourceNotFoundError, match="network prod not found"):
                networks.find_by_name("prod")

    def test_find_by_vlan(self, vc):
        networks = NetworkManager(vc)
        pg10, pg20, pg20b = self._portgroup("pg10", 10), self._portgroup("pg20", 20), self._portgroup("pg20b", 20)
        with patch.object(networks, "get_all_objects_by_type", return_value=[pg10, pg20, pg20b]):
            assert networks.find_by_vlan(10) is pg10
            with pytest.raises(ProviderError, match="multiple distributed port groups found with vlan_id 20"):
                networks.find_by_vlan(20)
            with pytest.raises(ResourceNotFoundError, match="network with vlan_id 30 not found"):
                networks.find_by_vlan(30)

    def test_network_type(self):
        assert NetworkManager.network_type(entity(vim.OpaqueNetwork, "nsx")) == "OpaqueNetwork"
        assert NetworkManager.network_type(entity(vim.Network, "VM Network")) == "Network"


class TestAlarmManager:

    def test_find_entity_capitalizes_the_type(self, vc):
        alarms = AlarmManager(vc)
        host = entity(vim.HostSystem, "esx1")
        with patch.object(alarms, "get_obj_by_moid", return_value=host) as lookup:
            assert alarms.find_entity("hostSystem", "host-10") is host
        lookup.assert_called_once_with(vim.HostSystem, "host-10")

    def test_find_entity_rejects_other_types(self, vc):
        with pytest.raises(ProviderError, match="unknown entity type Task"):
            AlarmManager(vc).find_entity("Task", "task-1")

    def test_get_alarm_by_id(self, vc):
        alarms = AlarmManager(vc)
        first = MagicMock(_moId="alarm-1")
        second = MagicMock(_moId="alarm-2")
        vc.connection.RetrieveContent.return_value.alarmManager.GetAlarm.return_value = [first, second]
        assert alarms.get_alarm_by_id(MagicMock(), "alarm-2") is second
        with pytest.raises(ResourceNotFoundError, match="alarm alarm-3 not found"):
            alarms.get_alarm_by_id(MagicMock(), "alarm-3")


class TestVsanManager:

    settings = {
        "vsan_enabled": True,
        "vsan_esa_enabled": False,
        "vsan_unmap_enabled": True,
        "vsan_dit_encryption_enabled": True,
        "vsan_dit_rekey_interval": 1440,
        "vsan_performance_enabled": True,
        "vsan_verbose_mode_enabled": False,
        "vsan_network_diagnostic_mode_enabled": False,
        "vsan_dedup_enabled": True,
        "vsan_compression_enabled": True,
    }

    def test_original_storage_architecture_gets_data_efficiency(self, vc):
        spec = VsanManager(vc).build_reconfig_spec(self.settings)
        assert spec.vsanClusterConfig.enabled is True
        assert spec.vsanClusterConfig.vsanEsaEnabled is False
        assert spec.unmapConfig.enable is True
        assert spec.dataInTransitEncryptionConfig.rekeyInterval == 1440
        assert spec.dataEfficiencyConfig.dedupEnabled is True

    def test_esa_skips_data_efficiency(self, vc):
        settings = dict(self.settings, vsan_esa_enabled=True)
        spec = VsanManager(vc).build_reconfig_spec(settings)
        assert spec.dataEfficiencyConfig is None
        assert spec.vsanClusterConfig.vsanEsaEnabled is True

    def test_older_vcenter_leaves_esa_unset(self, vc):
        spec = VsanManager(vc).build_reconfig_spec(self.settings, esa_supported=False)
        assert spec.vsanClusterConfig.vsanEsaEnabled is None


class TestVmManager:

    def test_reconfigure_video_card(self, vc):
        vms = VmManager(vc)
        vm = MagicMock()
        vm.name = "web01"
        vm.config.hardware.device = [vim.vm.device.VirtualVideoCard(key=500, numDisplays=1, videoRamSizeInKB=4096)]
        with patch.object(vms, "wait_for_task") as wait:
            vms.reconfigure_video_card(vm, {"num_displays": 2, "total_video_memory": 16,
                                            "graphics_3d": [{"renderer": "automatic", "memory": 256}]})
        spec = vm.ReconfigVM_Task.call_args[1]["spec"]
        change = spec.deviceChange[0]
        assert change.operation == "edit"
        assert change.device.numDisplays == 2
        assert change.device.videoRamSizeInKB == 16 * 1024
        assert change.device.enable3DSupport is True
        assert change.device.graphicsMemorySizeInKB == 256 * 1024
        wait.assert_called_once()

    def test_reconfigure_without_video_card(self, vc):
        vm = MagicMock()
        vm.config.hardware.device = []
        with pytest.raises(ProviderError, match="no video card found"):
            VmManager(vc).reconfigure_video_card(vm, {"num_displays": 1, "total_video_memory": 4})

    def test_get_vm_by_uuid_not_found(self, vc):
        vc.connection.RetrieveContent.return_value.searchIndex.FindByUuid.return_value = None
        with pytest.raises(ResourceNotFoundError, match="UUID '4215' not found"):
            VmManager(vc).get_vm_by_uuid("4215")
