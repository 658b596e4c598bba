from types import SimpleNamespace
from unittest.mock import MagicMock

import pytest
from pyVmomi import vim

from errors import ProviderError, ResourceNotFoundError
from resources import compute_cluster as cc
from schema import ResourceData, apply_defaults

CONFIG = {
    "name": "c1",
    "datacenter_id": "datacenter-3",
    "folder": "prod",
    "host_system_ids": ["host-1"],
    "drs_enabled": True,
    "drs_automation_level": "fullyAutomated",
    "drs_advanced_options": {"MinGoodness": "0"},
    "ha_enabled": True,
    "ha_datastore_apd_response": "warning",
    "ha_heartbeat_datastore_ids": ["datastore-1"],
    "ha_advanced_options": {"das.isolationaddress0": "10.0.0.1"},
    "proactive_ha_enabled": True,
    "proactive_ha_provider_ids": ["com.vendor.health"],
}


def data(config=None, state=None, resource_id=None, **overrides):
    config = dict(CONFIG if config is None else config, **overrides)
    return ResourceData(cc.cluster_schema(), config, state, resource_id)


def config_info(spec, host_configs=()):
    return vim.cluster.ConfigInfoEx(
        dasConfig=spec.dasConfig,
        drsConfig=spec.drsConfig,
        dpmConfigInfo=spec.dpmConfig,
        infraUpdateHaConfig=spec.infraUpdateHaConfig,
        orchestration=spec.orchestration,
        proactiveDrsConfig=spec.proactiveDrsConfig,
        vsanHostConfig=list(host_configs),
    )


def host_config(host_id, domain=""):
    return vim.vsan.host.ConfigInfo(hostSystem=vim.HostSystem(host_id),
                                    faultDomainInfo=vim.vsan.host.ConfigInfo.FaultDomainInfo(name=domain))


def vsan_config(enabled=False):
    return SimpleNamespace(
        enabled=enabled,
        vsanEsaEnabled=False,
        dataEfficiencyConfig=SimpleNamespace(dedupEnabled=enabled, compressionEnabled=enabled),
        perfsvcConfig=SimpleNamespace(enabled=enabled, verboseMode=False, diagnosticMode=False),
        unmapConfig=SimpleNamespace(enable=False),
        dataInTransitEncryptionConfig=None,
        datastoreConfig=SimpleNamespace(remoteDatastores=[]),
    )


def fake_cluster(d, host_ids=("host-1",), host_configs=()):
    cluster = MagicMock(name="cluster")
    cluster._moId = "domain-c8"
    cluster.name = d.get("name")
    cluster.resourcePool = vim.ResourcePool("resgroup-9")
    cluster.host = [vim.HostSystem(host_id) for host_id in host_ids]
    cluster.configurationEx = config_info(cc.expand_cluster_config_spec(d), host_configs)
    return cluster


@pytest.fixture
def cloud(managed):
    d = data()
    cluster = fake_cluster(d)
    clusters = managed.clusters
    clusters.create_cluster.return_value = cluster
    clusters.get_cluster.return_value = cluster
    clusters.get_cluster_by_path.return_value = cluster
    clusters.datacenter_for.return_value = vim.Datacenter("datacenter-3")
    clusters.relative_folder.return_value = "prod"
    clusters.has_children.return_value = False
    clusters.hosts.get_hosts_by_id.side_effect = lambda ids: list(ids)
    managed.vsan.get_config.return_value = vsan_config()
    return SimpleNamespace(client=managed, cluster=cluster)


class TestExpandClusterConfig:

    def test_spec_sections(self):
        spec = cc.expand_cluster_config_spec(data())
        assert spec.drsConfig.enabled is True
        assert spec.drsConfig.defaultVmBehavior == "fullyAutomated"
        assert [(o.key, o.value) for o in spec.drsConfig.option] == [("MinGoodness", "0")]
        assert spec.dasConfig.enabled is True
        assert [ds._moId for ds in spec.dasConfig.heartbeatDatastore] == ["datastore-1"]
        assert spec.infraUpdateHaConfig.providers == ["com.vendor.health"]
        assert spec.orchestration.defaultVmReadiness.readyCondition == "none"
        assert spec.proactiveDrsConfig.enabled is False
        assert len(spec.vsanHostConfigSpec) == 0

    def test_apd_timeout_follows_apd_response(self):
        protection = cc.expand_vm_component_protection(data())
        assert protection.enableAPDTimeoutForHosts is True

        protection = cc.expand_vm_component_protection(data(ha_datastore_apd_response="disabled"))
        assert not protection.enableAPDTimeoutForHosts

    def test_flatten_reads_back_configured_values(self):
        d = data()
        values = cc.flatten_cluster_config(config_info(cc.expand_cluster_config_spec(d)))
        for key in ("drs_enabled", "drs_automation_level", "drs_advanced_options", "ha_enabled",
                    "ha_datastore_apd_response", "ha_heartbeat_datastore_ids", "ha_advanced_options",
                    "ha_vm_restart_timeout", "ha_vm_maximum_resets", "proactive_ha_enabled",
                    "proactive_ha_provider_ids", "dpm_threshold", "drs_scale_descendants_shares",
                    "ha_admission_control_policy"):
            assert values[key] == d.get(key), key
        assert values["vsan_fault_domains"] == []


class TestAdmissionControl:

    def test_resource_percentage(self):
        d = data(ha_admission_control_resource_percentage_auto_compute=False,
                 ha_admission_control_resource_percentage_cpu=25,
                 ha_admission_control_resource_percentage_memory=30)
        policy = cc.expand_admission_control_policy(d, cc.ADMISSION_CONTROL_RESOURCE_PERCENTAGE)
        assert isinstance(policy, vim.cluster.FailoverResourcesAdmissionControlPolicy)
        assert policy.cpuFailoverResourcesPercent == 25
        assert policy.resourceReductionToToleratePercent == 100

        das = vim.cluster.DasConfigInfo(admissionControlEnabled=True, admissionControlPolicy=policy)
        values = cc.flatten_admission_control_policy(das)
        assert values["ha_admission_control_policy"] == "resourcePercentage"
        assert values["ha_admission_control_resource_percentage_cpu"] == 25
        assert values["ha_admission_control_resource_percentage_memory"] == 30
        assert values["ha_admission_control_resource_percentage_auto_compute"] is False

    def test_auto_computed_percentages_are_not_read_back(self):
        policy = cc.expand_admission_control_policy(data(), cc.ADMISSION_CONTROL_RESOURCE_PERCENTAGE)
        das = vim.cluster.DasConfigInfo(admissionControlEnabled=True, admissionControlPolicy=policy)
        values = cc.flatten_admission_control_policy(das)
        assert "ha_admission_control_resource_percentage_cpu" not in values
        assert values["ha_admission_control_resource_percentage_auto_compute"] is True

    def test_slot_policy_with_explicit_size(self):
        d = data(ha_admission_control_slot_policy_use_explicit_size=True,
                 ha_admission_control_slot_policy_explicit_cpu=64,
                 ha_admission_control_slot_policy_explicit_memory=2048)
        policy = cc.expand_admission_control_policy(d, cc.ADMISSION_CONTROL_SLOT_POLICY)
        assert isinstance(policy.slotPolicy, vim.cluster.FixedSizeSlotPolicy)

        das = vim.cluster.DasConfigInfo(admissionControlEnabled=True, admissionControlPolicy=policy)
        values = cc.flatten_admission_control_policy(das)
        assert values["ha_admission_control_policy"] == "slotPolicy"
        assert values["ha_admission_control_slot_policy_use_explicit_size"] is True
        assert values["ha_admission_control_slot_policy_explicit_cpu"] == 64
        assert values["ha_admission_control_slot_policy_explicit_memory"] == 2048

    def test_slot_policy_without_explicit_size(self):
        policy = cc.expand_admission_control_policy(data(), cc.ADMISSION_CONTROL_SLOT_POLICY)
        assert policy.slotPolicy is None

    def test_failover_hosts(self):
        d = data(ha_admission_control_failover_host_system_ids=["host-2", "host-3"])
        policy = cc.expand_admission_control_policy(d, cc.ADMISSION_CONTROL_FAILOVER_HOSTS)
        das = vim.cluster.DasConfigInfo(admissionControlEnabled=True, admissionControlPolicy=policy)
        values = cc.flatten_admission_control_policy(das)
        assert values["ha_admission_control_policy"] == "failoverHosts"
        assert values["ha_admission_control_failover_host_system_ids"] == ["host-2", "host-3"]

    def test_disabled(self):
        das = cc.expand_das_config(data(ha_admission_control_policy="disabled"))
        assert das.admissionControlEnabled is False
        assert das.admissionControlPolicy is None
        assert cc.flatten_admission_control_policy(das) == {"ha_admission_control_policy": "disabled"}


class TestFaultDomains:

    domains = [{"fault_domain": [
        {"name": "fd-a", "host_ids": ["host-1"]},
        {"name": "fd-b", "host_ids": ["host-2"]},
    ]}]

    def test_fault_domain_map(self):
        assert cc.fault_domain_map(data(vsan_fault_domains=self.domains)) == {"host-1": "fd-a", "host-2": "fd-b"}

    def test_duplicate_host(self):
        domains = [{"fault_domain": [
            {"name": "fd-a", "host_ids": ["host-1"]},
            {"name": "fd-b", "host_ids": ["host-1"]},
        ]}]
        with pytest.raises(ProviderError, match="duplicate host ids in different fault domains: host-1"):
            cc.fault_domain_map(data(vsan_fault_domains=domains))

    def test_host_configs_get_domain_names(self):
        d = data(vsan_fault_domains=self.domains)
        result = cc.expand_vsan_host_config(d, [host_config("host-1"), host_config("host-3")])
        assert [(h.hostSystem._moId, h.faultDomainInfo.name) for h in result] == [("host-1", "fd-a"), ("host-3", "")]

    def test_flatten_groups_hosts_by_domain(self):
        configs = [host_config("host-2", "fd-b"), host_config("host-1", "fd-a"),
                   host_config("host-3", "fd-a"), host_config("host-4")]
        assert cc.flatten_fault_domains(configs) == [{"fault_domain": [
            {"name": "fd-a", "host_ids": ["host-1", "host-3"]},
            {"name": "fd-b", "host_ids": ["host-2"]},
        ]}]


class TestVsanSettings:

    def test_esa_requires_vsan(self):
        d = data(vsan_esa_enabled=True, vsan_unmap_enabled=True)
        with pytest.raises(ProviderError, match="due to vSAN is disabled: c1"):
            cc.validate_vsan_settings(d, esa_supported=True)

    def test_esa_cannot_change_alone(self):
        d = data(vsan_enabled=True, vsan_esa_enabled=True, vsan_unmap_enabled=True,
                 state={"vsan_enabled": True, "vsan_esa_enabled": False})
        with pytest.raises(ProviderError, match="must be configured along with vSAN service"):
            cc.validate_vsan_settings(d, esa_supported=True)

    def test_esa_requires_unmap(self):
        d = data(vsan_enabled=True, vsan_esa_enabled=True)
        with pytest.raises(ProviderError, match="vSAN unmap service should be explicitly enabled"):
            cc.validate_vsan_settings(d, esa_supported=True)

    def test_esa_checks_skipped_before_vsphere_8(self):
        cc.validate_vsan_settings(data(vsan_esa_enabled=True), esa_supported=False)

    def test_dedup_requires_compression(self):
        d = data(vsan_enabled=True, vsan_dedup_enabled=True)
        with pytest.raises(ProviderError, match="compression must be enabled if vsan dedup is enabled"):
            cc.validate_vsan_settings(d, esa_supported=True)

    def test_verbose_mode_requires_performance_service(self):
        d = data(vsan_enabled=True, vsan_verbose_mode_enabled=True)
        with pytest.raises(ProviderError, match="cannot apply verbose mode"):
            cc.validate_vsan_settings(d, esa_supported=True)

    def test_dit_encryption_conflicts_with_remote_datastores(self):
        d = data(vsan_enabled=True, vsan_remote_datastore_ids=["datastore-9"], vsan_dit_encryption_enabled=True)
        with pytest.raises(ProviderError, match="data-in-transit encryption cannot be enabled with HCI mesh"):
            cc.validate_vsan_settings(d, esa_supported=True)

    def test_valid_settings(self):
        d = data(vsan_enabled=True, vsan_dedup_enabled=True, vsan_compression_enabled=True,
                 vsan_performance_enabled=True, vsan_verbose_mode_enabled=True)
        cc.validate_vsan_settings(d, esa_supported=True)

    def test_flatten_vsan_config(self):
        config = vsan_config(enabled=True)
        config.datastoreConfig.remoteDatastores = [vim.Datastore("datastore-9")]
        config.dataInTransitEncryptionConfig = SimpleNamespace(enabled=True, rekeyInterval=1440)
        values = cc.flatten_vsan_config(config)
        assert values["vsan_enabled"] is True
        assert values["vsan_dedup_enabled"] is True
        assert values["vsan_performance_enabled"] is True
        assert values["vsan_unmap_enabled"] is False
        assert values["vsan_dit_encryption_enabled"] is True
        assert values["vsan_dit_rekey_interval"] == 1440
        assert values["vsan_remote_datastore_ids"] == ["datastore-9"]


class TestHostImage:

    def test_component_changes(self):
        old = [{"key": "a", "version": "1"}, {"key": "b", "version": "1"}]
        new = [{"key": "a", "version": "2"}, {"key": "c", "version": "1"}]
        assert cc.component_changes(old, new) == ({"a": "2", "c": "1"}, ["b"])

    def test_unchanged_components(self):
        components = [{"key": "a", "version": "1"}]
        assert cc.component_changes(components, components) == ({}, [])

    def test_apply_image(self, managed):
        old = [{"esx_version": "8.0.1", "component": [{"key": "a", "version": "1"}]}]
        new = [{"esx_version": "8.0.2", "component": [{"key": "a", "version": "2"}]}]
        d = data(host_image=new, state={"host_image": old}, resource_id="domain-c8")
        cc.apply_host_image(d, managed)
        managed.software.apply_image.assert_called_once_with("domain-c8", "8.0.2", {"a": "2"}, [])

    def test_no_change_skips_image(self, managed):
        cc.apply_host_image(data(), managed)
        managed.software.apply_image.assert_not_called()

    def test_disabling_vlcm(self, managed):
        d = data(state={"host_image": [{"esx_version": "8.0.1", "component": []}]}, resource_id="domain-c8")
        with pytest.raises(ProviderError, match="disabling vLCM is not allowed"):
            cc.apply_host_image(d, managed)


class TestCrud:

    def test_create(self, cloud):
        client, cluster = cloud.client, cloud.cluster
        d = data()
        cc.create(d, client)

        client.clusters.create_cluster.assert_called_once_with("datacenter-3", "prod", "c1")
        client.clusters.move_hosts_into.assert_called_once_with(cluster, ["host-1"])
        client.clusters.move_hosts_out.assert_called_once_with(cluster, [], 3600)
        settings = client.vsan.build_reconfig_spec.call_args[0][0]
        assert settings["vsan_enabled"] is False
        assert client.vsan.build_reconfig_spec.call_args[0][1] is True
        spec = client.clusters.reconfigure.call_args[0][1]
        assert isinstance(spec, vim.cluster.ConfigSpecEx)
        client.software.apply_image.assert_not_called()

        state = d.state()
        assert state["id"] == "domain-c8"
        assert state["resource_pool_id"] == "resgroup-9"
        assert state["host_system_ids"] == ["host-1"]
        assert state["drs_automation_level"] == "fullyAutomated"

    def test_vsan_failure_is_wrapped(self, cloud):
        cloud.client.vsan.reconfigure.side_effect = ProviderError("task failed")
        with pytest.raises(ProviderError, match="cannot apply vsan service on cluster 'c1': task failed"):
            cc.create(data(), cloud.client)

    def test_read_missing_cluster(self, cloud):
        cloud.client.clusters.get_cluster.side_effect = ResourceNotFoundError("gone")
        d = data(resource_id="domain-c8")
        cc.read(d, cloud.client)
        assert d.id == ""

    def test_read_leaves_hosts_to_host_resource(self, cloud):
        d = ResourceData(cc.cluster_schema(), None, {"host_managed": True, "host_system_ids": []}, "domain-c8")
        cc.read(d, cloud.client)
        assert d.state()["host_system_ids"] == []

    def test_update_without_config_change(self, cloud):
        client, cluster = cloud.client, cloud.cluster
        state = dict(apply_defaults(cc.cluster_schema(), CONFIG), name="old", host_system_ids=["host-1", "host-2"])
        d = data(state=state, resource_id="domain-c8")
        cc.update(d, client)

        client.clusters.rename.assert_called_once_with(cluster, "c1")
        client.clusters.move_to_folder.assert_not_called()
        client.clusters.move_hosts_into.assert_called_once_with(cluster, [])
        client.clusters.move_hosts_out.assert_called_once_with(cluster, ["host-2"], 3600)
        client.clusters.reconfigure.assert_not_called()
        client.vsan.reconfigure.assert_not_called()

    def test_delete_turns_off_ha_before_removing_failover_hosts(self, cloud):
        client = cloud.client
        d = data(ha_admission_control_policy="failoverHosts",
                 ha_admission_control_failover_host_system_ids=["host-2"], resource_id="domain-c8")
        cc.delete(d, client)

        spec = client.clusters.reconfigure.call_args[0][1]
        assert spec.dasConfig.enabled is False
        client.clusters.move_hosts_out.assert_not_called()
        client.clusters.destroy.assert_called_once_with(cloud.cluster)
        assert d.id == ""

    def test_force_delete_clears_fault_domains_and_evacuates(self, cloud):
        client, cluster = cloud.client, cloud.cluster
        d = data(force_evacuate_on_destroy=True, resource_id="domain-c8")
        cluster.configurationEx = config_info(cc.expand_cluster_config_spec(d), [host_config("host-1", "fd-a")])
        cc.delete(d, client)

        spec = client.clusters.reconfigure.call_args[0][1]
        assert spec.vsanHostConfigSpec[0].faultDomainInfo.name == ""
        client.clusters.move_hosts_out.assert_called_once_with(cluster, ["host-1"], 3600)
        client.clusters.destroy.assert_called_once_with(cluster)

    def test_delete_refuses_non_empty_cluster(self, cloud):
        clusters = cloud.client.clusters
        clusters.has_children.return_value = True
        clusters.inventory_path.return_value = "/dc1/host/c1"
        with pytest.raises(ProviderError, match="'/dc1/host/c1' still has hosts or virtual machines"):
            cc.delete(data(resource_id="domain-c8"), cloud.client)
        clusters.destroy.assert_not_called()

    def test_import_by_inventory_path(self, cloud):
        d = ResourceData(cc.cluster_schema(), None, {}, "/dc1/host/prod/c1")
        cc.resource().importer(d, cloud.client)
        cloud.client.clusters.get_cluster_by_path.assert_called_once_with("/dc1/host/prod/c1")
        state = d.state()
        assert state["id"] == "domain-c8"
        assert state["name"] == "c1"
        assert state["host_cluster_exit_timeout"] == 3600
        assert state["ha_admission_control_slot_policy_explicit_cpu"] == 32

    def test_import_failure(self, cloud):
        cloud.client.clusters.get_cluster_by_path.side_effect = ProviderError("no cluster at /x")
        d = ResourceData(cc.cluster_schema(), None, {}, "/x")
        with pytest.raises(ProviderError, match="error loading cluster: no cluster at /x"):
            cc.importer(d, cloud.client)
