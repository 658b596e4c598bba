import pytest

from errors import ProviderError, ResourceNotFoundError
from resources import supervisor
from schema import ResourceData, validate_config


def config(**overrides):
    base = {
        "name": "sv",
        "zones": ["zone-a", "zone-b"],
        "control_plane": [{
            "count": 3,
            "size": "SMALL",
            "storage_policy": "policy-1",
            "network": [{
                "network": "mgmt",
                "backing": [{"network": "dvportgroup-20"}],
                "services": [{"dns": [{"servers": ["10.0.0.2"], "search_domains": ["corp.local"]}],
                              "ntp": [{"servers": ["pool.ntp.org"]}]}],
                "ip_management": [{"gateway_address": "10.0.0.1/24",
                                   "ip_assignment": [{"assignee": "NODE",
                                                      "range": [{"address": "10.0.0.10", "count": 5}]}]}],
                "proxy": [{"settings_source": "VC_INHERITED"}],
            }],
        }],
        "workloads": [{
            "network": [{"network": "workload", "vsphere": [{"dvpg": "dvportgroup-30"}]}],
            "edge": [{
                "lb_address_range": [{"address": "10.0.1.10", "count": 10}],
                "haproxy": [{
                    "server": [{"host": "haproxy.corp.local", "port": 5556}],
                    "username": "admin",
                    "password": "secret",
                    "ca_chain": "-----BEGIN CERTIFICATE-----",
                }],
            }],
            "kube_api_server_options": [{"security": [{"certificate_dns_names": ["sv.corp.local"]}]}],
            "storage": [{"ephemeral_storage_policy": "policy-2"}],
        }],
    }
    base.update(overrides)
    return base


def data(values=None):
    return ResourceData(supervisor.supervisor_schema(), values or config())


class TestSchema:

    def test_valid(self):
        assert validate_config(supervisor.supervisor_schema(), config()) == []

    def test_cluster_conflicts_with_zones(self):
        errors = validate_config(supervisor.supervisor_schema(), config(cluster="domain-c8"))
        assert "cluster: conflicts with zones" in errors

    def test_empty_zone_name(self):
        errors = validate_config(supervisor.supervisor_schema(), config(zones=[""]))
        assert errors == ["zones.0: must not be empty"]


class TestExpand:

    def test_enable_spec(self):
        spec = supervisor.expand_enable_spec(data())
        control_plane = spec["control_plane"]
        assert control_plane["count"] == 3
        assert control_plane["network"]["backing"] == {"backing": "NETWORK", "network": "dvportgroup-20"}
        assert control_plane["network"]["services"]["dns"] == {"servers": ["10.0.0.2"],
                                                              "search_domains": ["corp.local"]}
        assert control_plane["network"]["ip_management"] == {
            "dhcp_enabled": False,
            "gateway_address": "10.0.0.1/24",
            "ip_assignments": [{"assignee": "NODE", "ranges": [{"address": "10.0.0.10", "count": 5}]}],
        }
        assert control_plane["network"]["proxy"] == {"proxy_settings_source": "VC_INHERITED"}

        workloads = spec["workloads"]
        assert workloads["network"] == {"network": "workload", "network_type": "VSPHERE",
                                        "vsphere": {"dvpg": "dvportgroup-30"}}
        assert workloads["edge"]["provider"] == "HAPROXY"
        assert workloads["edge"]["haproxy"]["servers"] == [{"host": "haproxy.corp.local", "port": 5556}]
        assert workloads["edge"]["load_balancer_address_ranges"] == [{"address": "10.0.1.10", "count": 10}]
        assert workloads["kube_API_server_options"] == {"security": {"certificate_DNS_names": ["sv.corp.local"]}}
        assert workloads["storage"] == {"ephemeral_storage_policy": "policy-2"}
        assert "images" not in workloads

    def test_backing_with_network_and_segments(self):
        with pytest.raises(ProviderError, match="cannot specify both `network` and `segments`"):
            supervisor.expand_backing({"network": "dvportgroup-20", "segments": ["seg-1"]})

    def test_segments_backing(self):
        assert supervisor.expand_backing({"segments": ["seg-1", "seg-2"]}) == {
            "backing": "NETWORK_SEGMENT", "network_segment": {"networks": ["seg-1", "seg-2"]},
        }

    def test_cluster_configured_proxy_takes_no_settings(self):
        with pytest.raises(ProviderError, match="`http_config` cannot be specified"):
            supervisor.expand_proxy({"settings_source": "CLUSTER_CONFIGURED", "http_config": "http://proxy"})

    def test_proxy_settings(self):
        assert supervisor.expand_proxy({"settings_source": "NONE", "no_proxy_config": ["10.0.0.0/8"]}) == {
            "proxy_settings_source": "NONE", "no_proxy_config": ["10.0.0.0/8"],
        }

    def test_single_workload_network_type(self):
        with pytest.raises(ProviderError, match="one type of network"):
            supervisor.expand_workload_network({"vsphere": [{"dvpg": "dvportgroup-30"}], "nsx": [{"dvs": "dvs-1"}]})

    def test_single_load_balancer(self):
        with pytest.raises(ProviderError, match="one type of load balancer"):
            supervisor.expand_edge({"haproxy": [{"server": []}], "nsx": [{"edge_cluster": "ec-1"}]})

    def test_nsx_vpc_network(self):
        result = supervisor.expand_workload_network({"nsx_vpc": [{
            "nsx_project": "default", "default_private_cidr": [{"address": "172.16.0.0", "prefix": 16}],
        }]})
        assert result["network_type"] == "NSX_VPC"
        assert result["nsx_vpc"]["default_private_cidrs"] == [{"address": "172.16.0.0", "prefix": 16}]

    def test_foundation_edge(self):
        edge = supervisor.expand_edge({"foundation": [{
            "deployment_target": [{"availability": "SINGLE_NODE", "zones": ["zone-a"]}],
            "interface": [{
                "personas": ["FRONTEND"],
                "network": [{"network_type": "DVPG", "dvpg_network": [{
                    "name": "fe", "network": "dvportgroup-40", "ipam": "STATIC",
                    "ip_config": [{"gateway": "10.0.2.1/24", "ip_range": [{"address": "10.0.2.10", "count": 4}]}],
                }]}],
            }],
            "network_services": [{"syslog": [{"endpoint": "syslog.corp.local:514"}]}],
        }]})
        foundation = edge["foundation"]
        assert edge["provider"] == "VSPHERE_FOUNDATION"
        assert foundation["deployment_target"] == {"zones": ["zone-a"], "availability": "SINGLE_NODE"}
        assert foundation["interfaces"][0]["network"]["dvpg_network"]["ip_config"] == {
            "gateway": "10.0.2.1/24", "ip_ranges": [{"address": "10.0.2.10", "count": 4}],
        }
        assert foundation["network_services"] == {"syslog": {"endpoint": "syslog.corp.local:514"}}


class TestCrud:

    def test_create_on_zones(self, managed):
        supervisors = managed.supervisors
        supervisors.enable_on_zones.return_value = "sv-1"
        d = data()
        supervisor.create(d, managed)

        spec = supervisors.enable_on_zones.call_args[0][0]
        assert spec["name"] == "sv"
        assert spec["zones"] == ["zone-a", "zone-b"]
        supervisors.wait_for_enable.assert_called_once_with("sv-1")
        assert d.id == "sv-1"

    def test_create_on_cluster(self, managed):
        managed.supervisors.enable_on_compute_cluster.return_value = "sv-2"
        values = config(cluster="domain-c8")
        del values["zones"]
        supervisor.create(data(values), managed)
        assert managed.supervisors.enable_on_compute_cluster.call_args[0][0] == "domain-c8"

    def test_create_needs_a_target(self, managed):
        values = config()
        del values["zones"]
        with pytest.raises(ProviderError, match="either 'zones' or 'cluster' must be specified"):
            supervisor.create(data(values), managed)

    def test_read_missing(self, managed):
        managed.supervisors.get_summary.side_effect = ResourceNotFoundError("404")
        d = ResourceData(supervisor.supervisor_schema(), None, {}, "sv-1")
        supervisor.read(d, managed)
        assert d.id == ""

    def test_delete_disables_on_first_cluster(self, managed):
        supervisors = managed.supervisors
        supervisors.get_topology.return_value = [{"zone": "zone-a", "clusters": ["domain-c8", "domain-c9"]}]
        d = ResourceData(supervisor.supervisor_schema(), None, {}, "sv-1")
        supervisor.delete(d, managed)
        supervisors.disable.assert_called_once_with("domain-c8")
        supervisors.wait_for_disable.assert_called_once_with("sv-1")
        assert d.id == ""

    def test_delete_without_clusters(self, managed):
        managed.supervisors.get_topology.return_value = []
        with pytest.raises(ProviderError, match="no clusters found for supervisor sv-1"):
            supervisor.delete(ResourceData(supervisor.supervisor_schema(), None, {}, "sv-1"), managed)

    def test_supervisor_has_no_update(self):
        assert supervisor.resource().update is None
