"""
vSphere supervisors enabled through the namespace management API.

A supervisor is enabled either on a single compute cluster or across a set
of zones. The enable and disable calls return immediately and the supervisor
summary is polled until it settles.
"""

import logging

from errors import ProviderError, ResourceNotFoundError
from schema import (Attribute, Resource, TYPE_BOOL, TYPE_INT, TYPE_LIST, TYPE_STRING,
                    no_zero_values, string_in_slice)
from utils import slice_to_strings

logger = logging.getLogger('vsprov.resources.supervisor')

PROXY_CLUSTER_CONFIGURED = "CLUSTER_CONFIGURED"


def _block(elem, required=False, optional=True, max_items=1, **kwargs):
    return Attribute(TYPE_LIST, required=required, optional=not required and optional,
                     max_items=max_items, elem=elem, **kwargs)


def _strings(**kwargs):
    return Attribute(TYPE_LIST, elem=Attribute(TYPE_STRING, validate=no_zero_values), **kwargs)


def ip_range_schema():
    return {
        "address": Attribute(TYPE_STRING, required=True, validate=no_zero_values,
                             description="Starting address of the range."),
        "count": Attribute(TYPE_INT, required=True, description="Number of addresses in the range."),
    }


def dns_schema():
    return {
        "servers": _strings(required=True),
        "search_domains": _strings(optional=True),
    }


def ntp_schema():
    return {"servers": _strings(required=True)}


def services_schema():
    return {
        "dns": _block(dns_schema()),
        "ntp": _block(ntp_schema()),
    }


def ip_management_schema():
    return {
        "dhcp_enabled": Attribute(TYPE_BOOL, optional=True, default=False),
        "gateway_address": Attribute(TYPE_STRING, optional=True),
        "ip_assignment": _block({
            "assignee": Attribute(TYPE_STRING, optional=True,
                                  validate=string_in_slice(["POD", "NODE", "SERVICE"])),
            "range": _block(ip_range_schema(), required=True, max_items=0),
        }, max_items=0),
    }


def control_plane_schema():
    return {
        "count": Attribute(TYPE_INT, optional=True, description="Number of control plane VMs."),
        "size": Attribute(TYPE_STRING, optional=True,
                          validate=string_in_slice(["TINY", "SMALL", "MEDIUM", "LARGE"])),
        "storage_policy": Attribute(TYPE_STRING, optional=True),
        "network": _block({
            "network": Attribute(TYPE_STRING, optional=True),
            "floating_ip": Attribute(TYPE_STRING, optional=True),
            "backing": _block({
                "network": Attribute(TYPE_STRING, optional=True),
                "segments": _strings(optional=True),
            }, required=True),
            "services": _block(services_schema()),
            "ip_management": _block(ip_management_schema()),
            "proxy": _block({
                "settings_source": Attribute(TYPE_STRING, required=True,
                                             validate=string_in_slice(["VC_INHERITED", PROXY_CLUSTER_CONFIGURED, "NONE"])),
                "http_config": Attribute(TYPE_STRING, optional=True),
                "https_config": Attribute(TYPE_STRING, optional=True),
                "tls_root_ca_bundle": Attribute(TYPE_STRING, optional=True),
                "no_proxy_config": _strings(optional=True),
            }),
        }, required=True),
    }


def edge_server_schema():
    return {
        "host": Attribute(TYPE_STRING, required=True, validate=no_zero_values),
        "port": Attribute(TYPE_INT, required=True),
    }


def foundation_schema():
    return {
        "deployment_target": _block({
            "availability": Attribute(TYPE_STRING, optional=True,
                                      validate=string_in_slice(["ACTIVE_PASSIVE", "SINGLE_NODE"])),
            "zones": _strings(optional=True),
            "deployment_size": Attribute(TYPE_STRING, optional=True,
                                         validate=string_in_slice(["SMALL", "MEDIUM", "LARGE", "X_LARGE"])),
            "storage_policy": Attribute(TYPE_STRING, optional=True),
        }),
        "interface": _block({
            "personas": Attribute(TYPE_LIST, required=True, elem=Attribute(
                TYPE_STRING, validate=string_in_slice(["MANAGEMENT", "WORKLOAD", "FRONTEND"]))),
            "network": _block({
                "network_type": Attribute(TYPE_STRING, required=True, validate=string_in_slice(
                    ["SUPERVISOR_MANAGEMENT", "PRIMARY_WORKLOAD", "DVPG"])),
                "dvpg_network": _block({
                    "name": Attribute(TYPE_STRING, required=True, validate=no_zero_values),
                    "network": Attribute(TYPE_STRING, required=True, validate=no_zero_values),
                    "ipam": Attribute(TYPE_STRING, required=True, validate=no_zero_values),
                    "ip_config": _block({
                        "ip_range": _block(ip_range_schema(), required=True, max_items=0),
                        "gateway": Attribute(TYPE_STRING, required=True),
                    }),
                }),
            }, required=True),
        }, max_items=0),
        "network_services": _block({
            "dns": _block(dns_schema()),
            "ntp": _block(ntp_schema()),
            "syslog": _block({
                "endpoint": Attribute(TYPE_STRING, optional=True),
                "certificate_authority_pem": Attribute(TYPE_STRING, optional=True),
            }),
        }),
    }


def edge_schema():
    return {
        "id": Attribute(TYPE_STRING, optional=True),
        "lb_address_range": _block(ip_range_schema(), max_items=0),
        "foundation": _block(foundation_schema()),
        "haproxy": _block({
            "server": _block(edge_server_schema(), required=True, max_items=0),
            "username": Attribute(TYPE_STRING, required=True),
            "password": Attribute(TYPE_STRING, required=True, sensitive=True),
            "ca_chain": Attribute(TYPE_STRING, required=True),
        }),
        "nsx": _block({
            "edge_cluster": Attribute(TYPE_STRING, optional=True),
            "load_balancer_size": Attribute(TYPE_STRING, optional=True,
                                            validate=string_in_slice(["SMALL", "MEDIUM", "LARGE"])),
            "t0_gateway": Attribute(TYPE_STRING, optional=True),
            "routing_mode": Attribute(TYPE_STRING, optional=True, validate=string_in_slice(["ROUTED", "NAT"])),
            "default_ingress_tls_certificate": Attribute(TYPE_STRING, optional=True),
            "egress_ip_range": _block(ip_range_schema(), max_items=0),
        }),
        "nsx_advanced": _block({
            "server": _block(edge_server_schema(), required=True),
            "username": Attribute(TYPE_STRING, required=True, validate=no_zero_values),
            "password": Attribute(TYPE_STRING, required=True, sensitive=True, validate=no_zero_values),
            "ca_chain": Attribute(TYPE_STRING, required=True, validate=no_zero_values),
            "cloud_name": Attribute(TYPE_STRING, optional=True),
        }),
    }


def workloads_schema():
    return {
        "network": _block({
            "network": Attribute(TYPE_STRING, optional=True),
            "vsphere": _block({"dvpg": Attribute(TYPE_STRING, required=True, validate=no_zero_values)}),
            "nsx": _block({
                "dvs": Attribute(TYPE_STRING, required=True, validate=no_zero_values),
                "namespace_subnet_prefix": Attribute(TYPE_INT, optional=True),
            }),
            "nsx_vpc": _block({
                "nsx_project": Attribute(TYPE_STRING, optional=True),
                "vpc_connectivity_profile": Attribute(TYPE_STRING, optional=True),
                "default_private_cidr": _block({
                    "address": Attribute(TYPE_STRING, required=True),
                    "prefix": Attribute(TYPE_INT, required=True),
                }, max_items=0),
            }),
            "services": _block(services_schema()),
            "ip_management": _block(ip_management_schema()),
        }, required=True),
        "edge": _block(edge_schema(), required=True),
        "kube_api_server_options": _block({
            "security": _block({"certificate_dns_names": _strings(required=True)}),
        }, required=True),
        "images": _block({
            "registry": _block({
                "hostname": Attribute(TYPE_STRING, optional=True),
                "port": Attribute(TYPE_INT, optional=True),
                "username": Attribute(TYPE_STRING, optional=True),
                "password": Attribute(TYPE_STRING, optional=True, sensitive=True),
                "certificate_chain": Attribute(TYPE_STRING, optional=True),
            }, required=True),
            "repository": Attribute(TYPE_STRING, required=True, validate=no_zero_values),
            "kubernetes_content_library": Attribute(TYPE_STRING, required=True, validate=no_zero_values),
            "content_library": _block({
                "content_library": Attribute(TYPE_STRING, required=True, validate=no_zero_values),
                "supervisor_services": _strings(optional=True),
                "resource_naming_strategy": Attribute(TYPE_STRING, optional=True),
            }, max_items=0),
        }),
        "storage": _block({
            "ephemeral_storage_policy": Attribute(TYPE_STRING, optional=True),
            "image_storage_policy": Attribute(TYPE_STRING, optional=True),
            "cloud_native_file_volume": _block({"vsan_clusters": _strings(required=True)}),
        }),
    }


def supervisor_schema():
    return {
        "name": Attribute(TYPE_STRING, required=True, force_new=True, validate=no_zero_values,
                          description="The name of the supervisor."),
        "cluster": Attribute(TYPE_STRING, optional=True, force_new=True, conflicts_with=["zones"],
                             description="Compute cluster for a single zone supervisor."),
        "zones": Attribute(TYPE_LIST, optional=True, force_new=True, conflicts_with=["cluster"],
                           elem=Attribute(TYPE_STRING, validate=no_zero_values),
                           description="Zones for a multi zone supervisor."),
        "control_plane": _block(control_plane_schema(), required=True, force_new=True),
        "workloads": _block(workloads_schema(), required=True, force_new=True),
    }


# --- Expand ---

def _first(value):
    """The single element of an optional one-item block, or None."""
    if not value:
        return None
    return value[0] or {}


def _put(result, key, value):
    if value not in (None, "", 0, [], {}):
        result[key] = value


def expand_ip_ranges(ranges):
    return [{"address": r.get("address"), "count": r.get("count")} for r in ranges or []]


def expand_services(data):
    result = {}
    dns = _first(data.get("dns"))
    if dns is not None:
        result["dns"] = {
            "servers": slice_to_strings(dns.get("servers")),
            "search_domains": slice_to_strings(dns.get("search_domains")),
        }
    ntp = _first(data.get("ntp"))
    if ntp is not None:
        result["ntp"] = {"servers": slice_to_strings(ntp.get("servers"))}
    return result


def expand_ip_management(data):
    result = {"dhcp_enabled": bool(data.get("dhcp_enabled"))}
    _put(result, "gateway_address", data.get("gateway_address"))
    assignments = [
        {"assignee": item.get("assignee"), "ranges": expand_ip_ranges(item.get("range"))}
        for item in data.get("ip_assignment") or []
    ]
    _put(result, "ip_assignments", assignments)
    return result


def expand_backing(data):
    result = {}
    backings = 0
    if data.get("network"):
        result["backing"] = "NETWORK"
        result["network"] = data["network"]
        backings += 1
    if data.get("segments"):
        result["backing"] = "NETWORK_SEGMENT"
        result["network_segment"] = {"networks": slice_to_strings(data["segments"])}
        backings += 1
    if backings > 1:
        raise ProviderError("control plane configuration cannot specify both `network` and `segments`")
    return result


def expand_proxy(data):
    source = data.get("settings_source")
    result = {"proxy_settings_source": source}
    cluster_configured = source == PROXY_CLUSTER_CONFIGURED
    for key, api_key in (("http_config", "http_proxy_config"),
                         ("https_config", "https_proxy_config"),
                         ("tls_root_ca_bundle", "tls_root_ca_bundle"),
                         ("no_proxy_config", "no_proxy_config")):
        value = data.get(key)
        if not value:
            continue
        if cluster_configured:
            raise ProviderError(f"`{key}` cannot be specified if `settings_source` is `{PROXY_CLUSTER_CONFIGURED}`")
        result[api_key] = slice_to_strings(value) if key == "no_proxy_config" else value
    return result


def expand_control_plane_network(data):
    result = {"backing": expand_backing(_first(data.get("backing")) or {})}
    _put(result, "network", data.get("network"))
    _put(result, "floating_IP_address", data.get("floating_ip"))
    services = _first(data.get("services"))
    if services is not None:
        result["services"] = expand_services(services)
    ip_management = _first(data.get("ip_management"))
    if ip_management is not None:
        result["ip_management"] = expand_ip_management(ip_management)
    proxy = _first(data.get("proxy"))
    if proxy is not None:
        result["proxy"] = expand_proxy(proxy)
    return result


def expand_control_plane(d):
    data = _first(d.get("control_plane")) or {}
    result = {"network": expand_control_plane_network(_first(data.get("network")) or {})}
    _put(result, "count", data.get("count"))
    _put(result, "size", data.get("size"))
    _put(result, "storage_policy", data.get("storage_policy"))
    return result


def expand_workload_network(data):
    result = {}
    _put(result, "network", data.get("network"))
    networks = 0

    vsphere = _first(data.get("vsphere"))
    if vsphere is not None:
        result["network_type"] = "VSPHERE"
        result["vsphere"] = {"dvpg": vsphere.get("dvpg")}
        networks += 1

    nsx = _first(data.get("nsx"))
    if nsx is not None:
        result["network_type"] = "NSXT"
        result["nsx"] = {"dvs": nsx.get("dvs"), "namespace_subnet_prefix": nsx.get("namespace_subnet_prefix")}
        networks += 1

    nsx_vpc = _first(data.get("nsx_vpc"))
    if nsx_vpc is not None:
        result["network_type"] = "NSX_VPC"
        vpc = {
            "nsx_project": nsx_vpc.get("nsx_project"),
            "vpc_connectivity_profile": nsx_vpc.get("vpc_connectivity_profile"),
        }
        cidrs = [{"address": c.get("address"), "prefix": c.get("prefix")}
                 for c in nsx_vpc.get("default_private_cidr") or []]
        _put(vpc, "default_private_cidrs", cidrs)
        result["nsx_vpc"] = vpc
        networks += 1

    if networks > 1:
        raise ProviderError("workload can only have one type of network")

    services = _first(data.get("services"))
    if services is not None:
        result["services"] = expand_services(services)
    ip_management = _first(data.get("ip_management"))
    if ip_management is not None:
        result["ip_management"] = expand_ip_management(ip_management)
    return result


def expand_foundation(data):
    result = {}
    target = _first(data.get("deployment_target"))
    if target is not None:
        deployment_target = {}
        _put(deployment_target, "zones", slice_to_strings(target.get("zones")))
        _put(deployment_target, "availability", target.get("availability"))
        _put(deployment_target, "deployment_size", target.get("deployment_size"))
        _put(deployment_target, "storage_policy", target.get("storage_policy"))
        result["deployment_target"] = deployment_target

    interfaces = []
    for item in data.get("interface") or []:
        network = _first(item.get("network")) or {}
        interface_network = {"network_type": network.get("network_type")}
        dvpg = _first(network.get("dvpg_network"))
        if dvpg is not None:
            dvpg_network = {"name": dvpg.get("name"), "network": dvpg.get("network"), "ipam": dvpg.get("ipam")}
            ip_config = _first(dvpg.get("ip_config"))
            if ip_config is not None:
                dvpg_network["ip_config"] = {
                    "gateway": ip_config.get("gateway"),
                    "ip_ranges": expand_ip_ranges(ip_config.get("ip_range")),
                }
            interface_network["dvpg_network"] = dvpg_network
        interfaces.append({"personas": slice_to_strings(item.get("personas")), "network": interface_network})
    _put(result, "interfaces", interfaces)

    network_services = _first(data.get("network_services"))
    if network_services is not None:
        services = expand_services(network_services)
        syslog = _first(network_services.get("syslog"))
        if syslog is not None:
            syslog_spec = {}
            _put(syslog_spec, "endpoint", syslog.get("endpoint"))
            _put(syslog_spec, "certificate_authority_PEM", syslog.get("certificate_authority_pem"))
            services["syslog"] = syslog_spec
        result["network_services"] = services
    return result


def expand_haproxy(data):
    return {
        "username": data.get("username"),
        "password": data.get("password"),
        "certificate_authority_chain": data.get("ca_chain"),
        "servers": [{"host": s.get("host"), "port": s.get("port")} for s in data.get("server") or []],
    }


def expand_nsx_edge(data):
    result = {}
    _put(result, "edge_cluster_ID", data.get("edge_cluster"))
    _put(result, "load_balancer_size", data.get("load_balancer_size"))
    _put(result, "routing_mode", data.get("routing_mode"))
    _put(result, "t0_gateway", data.get("t0_gateway"))
    _put(result, "default_ingress_tls_certificate", data.get("default_ingress_tls_certificate"))
    _put(result, "egress_IP_ranges", expand_ip_ranges(data.get("egress_ip_range")))
    return result


def expand_nsx_advanced(data):
    server = _first(data.get("server")) or {}
    result = {
        "username": data.get("username"),
        "password": data.get("password"),
        "certificate_authority_chain": data.get("ca_chain"),
        "server": {"host": server.get("host"), "port": server.get("port")},
    }
    _put(result, "cloud_name", data.get("cloud_name"))
    return result


EDGE_PROVIDERS = (
    ("foundation", "VSPHERE_FOUNDATION", expand_foundation),
    ("haproxy", "HAPROXY", expand_haproxy),
    ("nsx", "NSX", expand_nsx_edge),
    ("nsx_advanced", "NSX_ADVANCED", expand_nsx_advanced),
)


def expand_edge(data):
    result = {}
    _put(result, "id", data.get("id"))
    _put(result, "load_balancer_address_ranges", expand_ip_ranges(data.get("lb_address_range")))
    providers = 0
    for key, provider, expand in EDGE_PROVIDERS:
        block = _first(data.get(key))
        if block is None:
            continue
        result["provider"] = provider
        result[key] = expand(block)
        providers += 1
    if providers > 1:
        raise ProviderError("edge can only have one type of load balancer")
    return result


def expand_images(data):
    registry = _first(data.get("registry")) or {}
    libraries = []
    for item in data.get("content_library") or []:
        library = {"content_library": item.get("content_library")}
        _put(library, "supervisor_services", slice_to_strings(item.get("supervisor_services")))
        _put(library, "resource_naming_strategy", item.get("resource_naming_strategy"))
        libraries.append(library)
    return {
        "registry": {
            "hostname": registry.get("hostname"),
            "port": registry.get("port"),
            "username": registry.get("username"),
            "password": registry.get("password"),
            "certificate_chain": registry.get("certificate_chain"),
        },
        "repository": data.get("repository"),
        "kubernetes_content_library": data.get("kubernetes_content_library"),
        "content_libraries": libraries,
    }


def expand_storage(data):
    result = {}
    _put(result, "ephemeral_storage_policy", data.get("ephemeral_storage_policy"))
    _put(result, "image_storage_policy", data.get("image_storage_policy"))
    volume = _first(data.get("cloud_native_file_volume"))
    if volume is not None:
        result["cloud_native_file_volume"] = {"vsan_clusters": slice_to_strings(volume.get("vsan_clusters"))}
    return result


def expand_workloads(d):
    data = _first(d.get("workloads")) or {}
    kube_api = _first(data.get("kube_api_server_options")) or {}
    kube_api_options = {}
    security = _first(kube_api.get("security"))
    if security is not None:
        kube_api_options["security"] = {
            "certificate_DNS_names": slice_to_strings(security.get("certificate_dns_names")),
        }

    result = {
        "network": expand_workload_network(_first(data.get("network")) or {}),
        "edge": expand_edge(_first(data.get("edge")) or {}),
        "kube_API_server_options": kube_api_options,
    }
    images = _first(data.get("images"))
    if images is not None:
        result["images"] = expand_images(images)
    storage = _first(data.get("storage"))
    if storage is not None:
        result["storage"] = expand_storage(storage)
    return result


def expand_enable_spec(d):
    return {
        "name": d.get("name"),
        "control_plane": expand_control_plane(d),
        "workloads": expand_workloads(d),
    }


# --- CRUD ---

def create(d, client):
    supervisors = client.supervisors
    zones = d.get("zones") or []
    cluster = d.get("cluster")
    spec = expand_enable_spec(d)

    if zones:
        spec["zones"] = slice_to_strings(zones)
        supervisor_id = supervisors.enable_on_zones(spec)
    elif cluster:
        supervisor_id = supervisors.enable_on_compute_cluster(cluster, spec)
    else:
        raise ProviderError("either 'zones' or 'cluster' must be specified")

    d.set_id(supervisor_id)
    supervisors.wait_for_enable(supervisor_id)


def read(d, client):
    try:
        client.supervisors.get_summary(d.id)
    except ResourceNotFoundError:
        logger.info(f"Supervisor {d.id} no longer exists.")
        d.set_id("")


def delete(d, client):
    supervisors = client.supervisors
    cluster_id = next(
        (cluster for entry in supervisors.get_topology(d.id) for cluster in entry.get("clusters") or []),
        None,
    )
    if not cluster_id:
        raise ProviderError(f"no clusters found for supervisor {d.id}")
    supervisors.disable(cluster_id)
    supervisors.wait_for_disable(d.id)
    d.set_id("")


def resource():
    return Resource(supervisor_schema(), create=create, read=read, delete=delete,
                    description="vSphere supervisor enabled on a cluster or a set of zones.")
