import logging

from constants import NAMESPACE_CREATE_TIMEOUT, NAMESPACE_POLL_INTERVAL
from errors import PollTimeoutError, ResourceNotFoundError
from schema import Attribute, Resource, TYPE_LIST, TYPE_SET, TYPE_STRING
from utils import poll_until, slice_to_strings

logger = logging.getLogger('vsprov.resources.namespace')


def vm_service_schema():
    return {
        "content_libraries": Attribute(TYPE_SET, optional=True, elem=Attribute(TYPE_STRING),
                                       description="Content libraries available to the VM service."),
        "vm_classes": Attribute(TYPE_SET, optional=True, elem=Attribute(TYPE_STRING),
                                description="VM classes available to the VM service."),
    }


def namespace_schema():
    return {
        "name": Attribute(TYPE_STRING, required=True, force_new=True,
                          description="The name of the namespace."),
        "supervisor": Attribute(TYPE_STRING, required=True, force_new=True,
                                description="The identifier of the supervisor running the namespace."),
        "storage_policies": Attribute(TYPE_LIST, optional=True, elem=Attribute(TYPE_STRING),
                                      description="Storage policies usable in the namespace."),
        "vm_service": Attribute(TYPE_LIST, optional=True, max_items=1, elem=vm_service_schema()),
    }


def expand_storage_specs(d):
    return [{"policy": policy} for policy in d.get("storage_policies") or []]


def expand_vm_service_spec(d):
    vm_service = d.get("vm_service") or []
    if not vm_service:
        return None
    data = vm_service[0] or {}
    return {
        "content_libraries": slice_to_strings(data.get("content_libraries")),
        "vm_classes": slice_to_strings(data.get("vm_classes")),
    }


def flatten_storage_policies(info):
    return [spec.get("policy") for spec in info.get("storage_specs") or []]


def flatten_vm_service(info):
    spec = info.get("vm_service_spec") or {}
    return {
        "content_libraries": list(spec.get("content_libraries") or []),
        "vm_classes": list(spec.get("vm_classes") or []),
    }


def create(d, client):
    name = d.get("name")
    spec = {"namespace": name, "supervisor": d.get("supervisor")}
    storage_specs = expand_storage_specs(d)
    if storage_specs:
        spec["storage_specs"] = storage_specs
    vm_service_spec = expand_vm_service_spec(d)
    if vm_service_spec is not None:
        spec["vm_service_spec"] = vm_service_spec

    client.namespaces.create_namespace(spec)
    wait_for_namespace_creation(name, client)
    d.set_id(name)
    read(d, client)


def wait_for_namespace_creation(name, client):
    try:
        poll_until(
            lambda: client.namespaces.get_namespace(name).get("config_status"),
            lambda status: status == "RUNNING",
            interval=NAMESPACE_POLL_INTERVAL,
            timeout=NAMESPACE_CREATE_TIMEOUT,
            description=f"namespace {name}",
            sleep=client.sleep,
            clock=client.clock,
        )
    except PollTimeoutError as e:
        raise PollTimeoutError(f"failed to create namespace: {name}") from e


def read(d, client):
    name = d.get("name") or d.id
    try:
        info = client.namespaces.get_namespace(name)
    except ResourceNotFoundError:
        logger.info(f"Namespace '{name}' no longer exists.")
        d.set_id("")
        return

    vm_service = flatten_vm_service(info)
    if vm_service["content_libraries"] or vm_service["vm_classes"]:
        d.set("vm_service", [vm_service])
    else:
        d.set("vm_service", [])
    d.set("storage_policies", flatten_storage_policies(info))
    d.set("name", name)
    if info.get("supervisor"):
        d.set("supervisor", info["supervisor"])
    d.set_id(name)


def update(d, client):
    name = d.get("name")
    spec = {}
    storage_specs = expand_storage_specs(d)
    if storage_specs:
        spec["storage_specs"] = storage_specs
    vm_service_spec = expand_vm_service_spec(d)
    if vm_service_spec is not None:
        spec["vm_service_spec"] = vm_service_spec
    client.namespaces.update_namespace(name, spec)
    read(d, client)


def delete(d, client):
    client.namespaces.delete_namespace(d.id)
    d.set_id("")


def resource():
    return Resource(namespace_schema(), create=create, read=read, update=update, delete=delete,
                    importer=read, description="vSphere namespace on a supervisor.")
