from pyVmomi import vim, vmodl
from managers.vcenter import VCenter
from errors import ProviderError, ResourceNotFoundError
from virtual_device import video_card


class VmManager(VCenter):

    def __init__(self, vcenter_instance):
        if not vcenter_instance.connection:
            raise ValueError("VCenter instance is not connected.")
        self.vcenter = vcenter_instance
        self.connection = vcenter_instance.connection
        self.logger = vcenter_instance.logger

    def get_vm_by_uuid(self, uuid):
        """
        Looks a VM or template up by its BIOS UUID.

        :param uuid: config.uuid of the VM.
        :return: vim.VirtualMachine
        """
        vm = self.get_content().searchIndex.FindByUuid(None, uuid, True, False)
        if vm is None:
            raise ResourceNotFoundError(f"virtual machine with UUID {uuid!r} not found")
        return vm

    def get_vm_by_moid(self, moid):
        return self.get_obj_by_moid(vim.VirtualMachine, moid)

    def get_vm_by_path(self, path, datacenter=None):
        """
        Resolves a VM by its path relative to a datacenter's VM folder.

        Without a datacenter every datacenter is searched and the path must
        match exactly one VM.

        :param path: Name of the VM, optionally prefixed with folders, e.g. 'prod/web01'.
        :param datacenter: vim.Datacenter or None.
        """
        path = path.strip("/")
        datacenters = [datacenter] if datacenter is not None else self.get_all_objects_by_type(vim.Datacenter)
        matches = []
        for dc in datacenters:
            dc_path = self.inventory_path(dc).strip("/")
            vm = self.find_by_inventory_path(f"{dc_path}/vm/{path}")
            if isinstance(vm, vim.VirtualMachine):
                matches.append(vm)
        if not matches:
            raise ResourceNotFoundError(f"virtual machine {path!r} not found")
        if len(matches) > 1:
            raise ProviderError(f"path {path!r} resolves to multiple virtual machines, specify datacenter_id")
        return matches[0]

    def reconfigure_video_card(self, vm, data):
        """
        Applies video card settings to an existing VM.

        :param vm: vim.VirtualMachine
        :param data: Mapping with num_displays, total_video_memory and optional graphics_3d.
        """
        spec = vim.vm.ConfigSpec()
        spec.deviceChange = [video_card.update_spec(vm.config.hardware.device, data)]
        try:
            task = vm.ReconfigVM_Task(spec=spec)
        except vmodl.MethodFault as e:
            raise ProviderError(f"error reconfiguring video card: {self.extract_error_message(e)}") from e
        self.wait_for_task(task, f"Reconfiguring video card of {vm.name}")
        self.logger.info(f"VM '{vm.name}' video card reconfigured.")
