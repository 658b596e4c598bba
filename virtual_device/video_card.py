"""
Video card settings of a virtual machine.

A VM always carries exactly one VirtualMachineVideoCard, so create and update
both map their settings onto the existing device.
"""

from pyVmomi import vim

from errors import ProviderError
from schema import Attribute, TYPE_INT, TYPE_LIST, TYPE_STRING, int_between, string_in_slice


def video_card_schema():
    return {
        "num_displays": Attribute(TYPE_INT, required=True, validate=int_between(1, 10),
                                  description="Number of supported displays."),
        "total_video_memory": Attribute(TYPE_INT, required=True, validate=int_between(2, 256),
                                        description="Video RAM size in megabytes."),
        "graphics_3d": Attribute(TYPE_LIST, optional=True, max_items=1, elem={
            "renderer": Attribute(TYPE_STRING, optional=True,
                                  validate=string_in_slice(["hardware", "software", "automatic"])),
            "memory": Attribute(TYPE_INT, optional=True, validate=int_between(2, 4096)),
        }),
    }


def find_video_card(devices):
    for device in devices or []:
        if isinstance(device, vim.vm.device.VirtualVideoCard):
            return device
    raise ProviderError("no video card found")


def read(devices):
    """
    Flattens the VM's video card.

    :param devices: config.hardware.device of the VM.
    :return: A single-item list suitable for the video_card attribute.
    """
    card = find_video_card(devices)
    result = {
        "num_displays": card.numDisplays,
        "total_video_memory": (card.videoRamSizeInKB or 0) // 1024,
    }
    if card.enable3DSupport:
        result["graphics_3d"] = [{
            "renderer": card.use3dRenderer or "",
            "memory": (card.graphicsMemorySizeInKB or 0) // 1024,
        }]
    return [result]


def _map_properties(card, data):
    card.numDisplays = data["num_displays"]
    card.videoRamSizeInKB = data["total_video_memory"] * 1024
    graphics = data.get("graphics_3d") or []
    if graphics:
        card.enable3DSupport = True
        settings = graphics[0] or {}
        if settings.get("memory"):
            card.graphicsMemorySizeInKB = settings["memory"] * 1024
        if settings.get("renderer"):
            card.use3dRenderer = settings["renderer"]
    return card


def _device_spec(card, operation):
    spec = vim.vm.device.VirtualDeviceSpec()
    spec.operation = operation
    spec.device = card
    return spec


def create_spec(devices, data):
    card = _map_properties(find_video_card(devices), data)
    return _device_spec(card, vim.vm.device.VirtualDeviceSpec.Operation.add)


def update_spec(devices, data):
    card = _map_properties(find_video_card(devices), data)
    return _device_spec(card, vim.vm.device.VirtualDeviceSpec.Operation.edit)
