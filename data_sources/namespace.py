from resources.namespace import flatten_storage_policies, flatten_vm_service, vm_service_schema
from schema import Attribute, DataSource, TYPE_INT, TYPE_LIST, TYPE_STRING


def namespace_schema():
    return {
        "name": Attribute(TYPE_STRING, required=True),
        "config_status": Attribute(TYPE_STRING, computed=True),
        "supervisor": Attribute(TYPE_STRING, computed=True),
        "cpu_usage": Attribute(TYPE_INT, computed=True, description="CPU usage in MHz."),
        "memory_usage": Attribute(TYPE_INT, computed=True, description="Memory usage in MB."),
        "storage_usage": Attribute(TYPE_INT, computed=True, description="Storage usage in MB."),
        "vm_service": Attribute(TYPE_LIST, computed=True, elem=vm_service_schema()),
        "storage_policies": Attribute(TYPE_LIST, computed=True, elem=Attribute(TYPE_STRING)),
    }


def read(d, client):
    name = d.get("name")
    info = client.namespaces.get_namespace(name)
    d.set("config_status", info.get("config_status", ""))

    supervisor = info.get("supervisor")
    if not supervisor:
        supervisor = client.namespaces.find_supervisor_for_cluster(info.get("cluster"))
    d.set("supervisor", supervisor)

    stats = info.get("stats") or {}
    d.set("cpu_usage", stats.get("cpu_used", 0))
    d.set("memory_usage", stats.get("memory_used", 0))
    d.set("storage_usage", stats.get("storage_used", 0))
    d.set("vm_service", [flatten_vm_service(info)])
    d.set("storage_policies", flatten_storage_policies(info))
    d.set_id(name)


def data_source():
    return DataSource(namespace_schema(), read=read, description="Looks up a vSphere namespace.")
