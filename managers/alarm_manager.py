from pyVmomi import vim, vmodl
from managers.vcenter import VCenter
from errors import ProviderError, ResourceNotFoundError
from utils import ucfirst


class AlarmManager(VCenter):
    """Alarm definitions through the vCenter AlarmManager."""

    def __init__(self, vcenter_instance):
        if not vcenter_instance.connection:
            raise ValueError("VCenter instance is not connected.")
        self.vcenter = vcenter_instance
        self.connection = vcenter_instance.connection
        self.logger = vcenter_instance.logger

    @property
    def alarm_manager(self):
        return self.get_content().alarmManager

    def find_entity(self, entity_type, entity_id):
        """
        Builds a managed entity for a type name and moref value.

        :param entity_type: vim type name, e.g. 'HostSystem'.
        :param entity_id: Moref value, e.g. 'host-10'.
        """
        vimtype = getattr(vim, ucfirst(entity_type or ""), None)
        if vimtype is None or not isinstance(vimtype, type) or not issubclass(vimtype, vim.ManagedEntity):
            raise ProviderError(f"alarm entity error: unknown entity type {entity_type}")
        try:
            return self.get_obj_by_moid(vimtype, entity_id)
        except ProviderError as e:
            raise ProviderError(f"alarm entity error: {e}") from e

    def get_alarms(self, entity):
        return list(self.alarm_manager.GetAlarm(entity=entity) or [])

    def get_alarm_by_id(self, entity, alarm_id):
        for alarm in self.get_alarms(entity):
            if alarm._moId == alarm_id:
                return alarm
        raise ResourceNotFoundError(f"alarm {alarm_id} not found")

    def get_alarm_by_name(self, entity, name):
        for alarm in self.get_alarms(entity):
            if alarm.info.name == name:
                return alarm
        raise ResourceNotFoundError(f"alarm {name} not found")

    def create_alarm(self, entity, spec):
        try:
            alarm = self.alarm_manager.CreateAlarm(entity=entity, spec=spec)
        except vmodl.MethodFault as e:
            raise ProviderError(f"failed to create new alarm: {self.extract_error_message(e)}") from e
        self.logger.info(f"Alarm '{spec.name}' created ({alarm._moId}).")
        return alarm

    def reconfigure_alarm(self, alarm, spec):
        try:
            alarm.ReconfigureAlarm(spec=spec)
        except vmodl.MethodFault as e:
            raise ProviderError(f"failed to reconfigure alarm: {self.extract_error_message(e)}") from e
        self.logger.info(f"Alarm '{spec.name}' reconfigured.")

    def remove_alarm(self, alarm_id):
        alarm = vim.alarm.Alarm(alarm_id, self.connection._stub)
        try:
            alarm.RemoveAlarm()
        except vmodl.MethodFault as e:
            raise ProviderError(f"cannot delete alarm: {self.extract_error_message(e)}") from e
        self.logger.info(f"Alarm {alarm_id} removed.")
