from pyVmomi import vim
from managers.vcenter import VCenter
from errors import ProviderError
from utils import normalize_folder_path

# Root folder of each inventory tree under a datacenter.
ROOT_FOLDERS = {
    "host": "hostFolder",
    "vm": "vmFolder",
    "datastore": "datastoreFolder",
    "network": "networkFolder",
}


class FolderManager(VCenter):

    def __init__(self, vcenter_instance):
        if not vcenter_instance.connection:
            raise ValueError("VCenter instance is not connected.")
        self.vcenter = vcenter_instance
        self.connection = vcenter_instance.connection
        self.logger = vcenter_instance.logger

    def root_folder(self, datacenter, folder_type="host"):
        return getattr(datacenter, ROOT_FOLDERS[folder_type])

    def folder_from_path(self, datacenter, relative_path, folder_type="host"):
        """
        Resolves a folder path relative to one of a datacenter's root folders.

        :param datacenter: vim.Datacenter
        :param relative_path: Path such as 'prod/edge'. Empty means the root folder.
        :param folder_type: One of host, vm, datastore, network.
        :return: vim.Folder
        """
        folder = self.root_folder(datacenter, folder_type)
        for name in normalize_folder_path(relative_path).split("/"):
            if not name:
                continue
            child = next(
                (c for c in folder.childEntity if isinstance(c, vim.Folder) and c.name == name),
                None,
            )
            if child is None:
                raise ProviderError(f"folder '{relative_path}' not found under {folder_type} folder of {datacenter.name}")
            folder = child
        return folder

    def relative_path(self, entity, folder_type="host"):
        """
        Returns the folder path of an entity relative to its datacenter's root folder.

        A cluster at /dc1/host/prod/edge/cluster1 gives 'prod/edge'.
        """
        names = []
        current = entity.parent
        root_attr = ROOT_FOLDERS[folder_type]
        while current is not None and not isinstance(current, vim.Datacenter):
            if isinstance(current.parent, vim.Datacenter) and getattr(current.parent, root_attr) == current:
                break
            names.append(current.name)
            current = current.parent
        return normalize_folder_path("/".join(reversed(names)))

    def move_into_folder(self, folder, entities):
        task = folder.MoveIntoFolder_Task(list(entities))
        return self.wait_for_task(task, f"Moving {len(entities)} object(s) into folder {folder.name}")
