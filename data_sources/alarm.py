from resources.alarm import alarm_schema, flatten_alarm
from schema import Attribute, DataSource, TYPE_STRING

LOOKUP_KEYS = ("name", "entity_type", "entity_id")


def _as_computed(attr):
    elem = attr.elem
    if isinstance(elem, dict):
        elem = {key: _as_computed(sub) for key, sub in elem.items()}
    return Attribute(attr.type, computed=True, elem=elem, description=attr.description)


def data_source_schema():
    schema = {key: _as_computed(attr) for key, attr in alarm_schema().items() if key not in LOOKUP_KEYS}
    schema["name"] = Attribute(TYPE_STRING, required=True, description="Alarm name.")
    schema["entity_type"] = Attribute(TYPE_STRING, required=True, description="Type of the entity, e.g. HostSystem.")
    schema["entity_id"] = Attribute(TYPE_STRING, required=True, description="Moref value of the entity.")
    return schema


def read(d, client):
    alarms = client.alarms
    entity = alarms.find_entity(d.get("entity_type"), d.get("entity_id"))
    alarm = alarms.get_alarm_by_name(entity, d.get("name"))
    d.set_id(alarm._moId)
    flatten_alarm(d, alarm)


def data_source():
    return DataSource(data_source_schema(), read=read, description="Looks up an alarm by name on an entity.")
