from pyVim.connect import SmartConnect, Disconnect
from pyVmomi import vim, vmodl
from pyVim.task import WaitForTask
import ssl
import atexit
import logging

from errors import ProviderError, ResourceNotFoundError, TaskError

logger = logging.getLogger('vsprov.vcenter')


class VCenter:
    def __init__(self, host, user, password, port=443, disable_ssl_verification=False):
        self.host = host
        self.user = user
        self.password = password
        self.port = port
        self.connection = None
        self.logger = logger
        self.disable_ssl_verification = disable_ssl_verification

    def connect(self):
        """Establishes a connection to the vCenter server."""
        ssl_context = None
        if self.disable_ssl_verification:
            self.logger.warning(
                f"Connecting to vCenter {self.host} with SSL certificate verification DISABLED."
            )
            ssl_context = ssl.SSLContext(ssl.PROTOCOL_TLS_CLIENT)
            ssl_context.check_hostname = False
            ssl_context.verify_mode = ssl.CERT_NONE

        try:
            self.connection = SmartConnect(host=self.host,
                                           user=self.user,
                                           pwd=self.password,
                                           port=self.port,
                                           sslContext=ssl_context)
        except ssl.SSLCertVerificationError as ssl_verify_error:
            raise ProviderError(
                f"SSL certificate verification failed for vCenter {self.host}: {ssl_verify_error}. "
                "Set VSPHERE_ALLOW_UNVERIFIED_SSL for self-signed certificates."
            ) from ssl_verify_error
        except vim.fault.InvalidLogin as e:
            raise ProviderError(f"Invalid login credentials for vCenter {self.host}: {e.msg}") from e
        except ConnectionRefusedError as e:
            raise ProviderError(f"Connection refused by vCenter {self.host}:{self.port}: {e}") from e

        if not self.connection:
            raise ProviderError(f"SmartConnect returned no session for vCenter {self.host}")
        atexit.register(Disconnect, self.connection)
        self.logger.info(f"Successfully connected to vCenter server: {self.host}")
        return self.connection

    def is_connected(self):
        """Checks if the service instance is connected."""
        return self.connection is not None and self.connection.content.sessionManager.currentSession is not None

    def get_content(self):
        """Retrieves the service content from vCenter."""
        return self.connection.RetrieveContent()

    def get_obj_by_moid(self, vimtype, moid):
        """
        Builds a managed object for a moref value and checks that it still exists.

        :param vimtype: The vim type of the object (e.g., vim.ClusterComputeResource).
        :param moid: The managed object id (e.g., 'domain-c8').
        :return: The managed object.
        :raises ResourceNotFoundError: If vCenter no longer knows the object.
        """
        obj = vimtype(moid, self.connection._stub)
        try:
            obj.name
        except vmodl.fault.ManagedObjectNotFound as e:
            raise ResourceNotFoundError(f"{vimtype.__name__} {moid} not found") from e
        return obj

    def get_all_objects_by_type(self, vimtype):
        """
        Retrieves all objects of a given type from vCenter using Property Collector for efficiency.

        :param vimtype: The vim type to search for (e.g., vim.Network).
        :return: A list of all objects of the specified type.
        """
        content = self.get_content()
        container_view = content.viewManager.CreateContainerView(content.rootFolder, [vimtype], True)
        try:
            traversal_spec = vmodl.query.PropertyCollector.TraversalSpec(
                name='traverseView',
                path='view',
                skip=False,
                type=vim.view.ContainerView
            )
            property_spec = vmodl.query.PropertyCollector.PropertySpec(
                type=vimtype,
                pathSet=['name'],
                all=False
            )
            object_spec = vmodl.query.PropertyCollector.ObjectSpec(
                obj=container_view,
                skip=True,
                selectSet=[traversal_spec]
            )
            filter_spec = vmodl.query.PropertyCollector.FilterSpec(
                objectSet=[object_spec],
                propSet=[property_spec]
            )
            retrieved_objects = content.propertyCollector.RetrieveContents([filter_spec])
        finally:
            container_view.Destroy()
        return [obj.obj for obj in retrieved_objects]

    def find_by_inventory_path(self, path):
        """Looks an entity up by its inventory path, e.g. 'dc1/host/cluster1'."""
        return self.get_content().searchIndex.FindByInventoryPath(path)

    def inventory_path(self, entity):
        """Builds the slash separated inventory path of an entity from its parents."""
        names = []
        current = entity
        while current is not None and not (isinstance(current, vim.Folder) and current.parent is None):
            names.append(current.name)
            current = current.parent
        return "/" + "/".join(reversed(names))

    def datacenter_for(self, entity):
        """Returns the nearest datacenter ancestor of an entity."""
        current = entity
        while current is not None:
            if isinstance(current, vim.Datacenter):
                return current
            current = current.parent
        raise ProviderError(f"could not find datacenter for {entity}")

    def extract_error_message(self, exception):
        """
        Extracts a detailed error message from a vSphere API exception or falls back to the default string
        representation of the exception.

        :param exception: The exception object to extract the message from.
        :return: A detailed error message if available, or the string representation of the exception.
        """
        if getattr(exception, 'localizedMessage', None):
            return exception.localizedMessage
        if getattr(exception, 'msg', None):
            return exception.msg
        if getattr(exception, 'reason', None):
            return str(exception.reason)
        if getattr(exception, 'faultCause', None):
            return f"Fault cause: {exception.faultCause}"
        return str(exception)

    def wait_for_task(self, task, action="operation"):
        """
        Waits for a vCenter task to finish using the WaitForTask method from pyVim.task.

        :param task: The vCenter task to wait on.
        :param action: Short description used in log and error messages.
        :return: The task result.
        :raises TaskError: If the task finishes with an error.
        """
        try:
            WaitForTask(task)
        except vmodl.MethodFault as e:
            error_message = self.extract_error_message(e)
            self.logger.error(f"{action} failed: {error_message}")
            raise TaskError(error_message) from e
        self.logger.debug(f"{action} completed successfully.")
        return task.info.result

    def api_version(self):
        """Returns the vCenter API version as a tuple of ints."""
        version = self.get_content().about.apiVersion
        return tuple(int(part) for part in version.split(".") if part.isdigit())
