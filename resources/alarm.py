"""
Alarm definitions on a managed entity.

Expressions and actions are kept as separate lists per kind in the attribute
tree and mapped onto a single Or/And expression and a GroupAlarmAction.
"""

import logging

from pyVmomi import vim

from constants import ALARM_REPORTING_FREQUENCY, ALARM_TOLERANCE_RANGE
from errors import ProviderError, ResourceNotFoundError
from schema import (Attribute, Resource, TYPE_BOOL, TYPE_INT, TYPE_LIST, TYPE_STRING,
                    int_between, no_zero_values, string_in_slice)
from utils import ucfirst

logger = logging.getLogger('vsprov.resources.alarm')

ALARM_STATUSES = ["red", "yellow", "green", "gray"]
EVENT_COMPARISON_OPERATORS = ["equals", "notEqualTo", "startsWith", "doesNotStartWith", "endsWith", "doesNotEndWith"]
STATE_OPERATORS = ["isEqual", "isUnequal"]
METRIC_OPERATORS = ["isAbove", "isBelow"]

# Arguments passed to each host task an advanced action can run.
ADVANCED_ACTION_ARGUMENTS = {
    "EnterMaintenanceMode_Task": [0, False],
    "ExitMaintenanceMode_Task": [0],
    "PowerDownHostToStandBy_Task": [0, False],
    "PowerUpHostFromStandBy_Task": [0],
    "RebootHost_Task": [False],
    "ShutdownHost_Task": [False],
}


def _transition_schema():
    return {
        "start_state": Attribute(TYPE_STRING, required=True, validate=string_in_slice(ALARM_STATUSES)),
        "final_state": Attribute(TYPE_STRING, required=True, validate=string_in_slice(ALARM_STATUSES)),
        "repeat": Attribute(TYPE_BOOL, optional=True, default=False),
    }


def alarm_schema():
    email = _transition_schema()
    email.update({
        "to": Attribute(TYPE_STRING, required=True),
        "cc": Attribute(TYPE_STRING, optional=True),
        "subject": Attribute(TYPE_STRING, optional=True),
        "body": Attribute(TYPE_STRING, optional=True),
    })
    advanced = _transition_schema()
    advanced["name"] = Attribute(TYPE_STRING, required=True,
                                 validate=string_in_slice(list(ADVANCED_ACTION_ARGUMENTS)))
    return {
        "name": Attribute(TYPE_STRING, required=True, description="Alarm name."),
        "description": Attribute(TYPE_STRING, required=True, description="Alarm description."),
        "enabled": Attribute(TYPE_BOOL, optional=True, default=True),
        "entity_id": Attribute(TYPE_STRING, required=True, force_new=True, validate=no_zero_values,
                               description="Moref value of the entity the alarm is defined on."),
        "entity_type": Attribute(TYPE_STRING, required=True, force_new=True, validate=no_zero_values,
                                 state_func=ucfirst, description="Type of the entity, e.g. HostSystem."),
        "expression_operator": Attribute(TYPE_STRING, optional=True, default="or",
                                         validate=string_in_slice(["or", "and"])),
        "event_expression": Attribute(TYPE_LIST, optional=True, elem={
            "event_type": Attribute(TYPE_STRING, optional=True, default="Event", state_func=ucfirst),
            "event_type_id": Attribute(TYPE_STRING, required=True),
            "object_type": Attribute(TYPE_STRING, required=True, state_func=ucfirst),
            "status": Attribute(TYPE_STRING, required=True, validate=string_in_slice(ALARM_STATUSES)),
            "comparison": Attribute(TYPE_LIST, optional=True, elem={
                "attribute_name": Attribute(TYPE_STRING, required=True),
                "operator": Attribute(TYPE_STRING, required=True,
                                      validate=string_in_slice(EVENT_COMPARISON_OPERATORS)),
                "value": Attribute(TYPE_STRING, required=True),
            }),
        }),
        "state_expression": Attribute(TYPE_LIST, optional=True, elem={
            "operator": Attribute(TYPE_STRING, required=True, validate=string_in_slice(STATE_OPERATORS)),
            "object_type": Attribute(TYPE_STRING, required=True, state_func=ucfirst),
            "state_path": Attribute(TYPE_STRING, required=True),
            "yellow": Attribute(TYPE_STRING, optional=True),
            "red": Attribute(TYPE_STRING, optional=True),
        }),
        "metric_expression": Attribute(TYPE_LIST, optional=True, elem={
            "operator": Attribute(TYPE_STRING, required=True, validate=string_in_slice(METRIC_OPERATORS)),
            "object_type": Attribute(TYPE_STRING, required=True, state_func=ucfirst),
            "metric_counter_id": Attribute(TYPE_INT, required=True),
            "metric_instance": Attribute(TYPE_STRING, optional=True),
            "yellow": Attribute(TYPE_INT, optional=True, validate=int_between(0, 10000)),
            "red": Attribute(TYPE_INT, optional=True, validate=int_between(0, 10000)),
            "yellow_interval": Attribute(TYPE_INT, optional=True, validate=int_between(0, 3600)),
            "red_interval": Attribute(TYPE_INT, optional=True, validate=int_between(0, 3600)),
        }),
        "snmp_action": Attribute(TYPE_LIST, optional=True, elem=_transition_schema()),
        "email_action": Attribute(TYPE_LIST, optional=True, elem=email),
        "advanced_action": Attribute(TYPE_LIST, optional=True, elem=advanced),
    }


# --- Expand ---

def vim_type(name, namespace=vim):
    """Resolves a type name such as 'hostSystem' or 'Event' to its vim class."""
    vimtype = getattr(namespace, ucfirst(name or ""), None)
    if not isinstance(vimtype, type):
        raise ProviderError(f"unknown type {name}")
    return vimtype


def type_name(value):
    if value is None:
        return ""
    if isinstance(value, type):
        return value.__name__.split(".")[-1]
    return str(value)


def expand_expressions(d):
    """Builds the list of sub expressions from the event, state and metric blocks."""
    expressions = []
    for item in d.get("event_expression") or []:
        expressions.append(vim.alarm.EventAlarmExpression(
            eventType=vim_type(item.get("event_type") or "Event", vim.event),
            eventTypeId=item.get("event_type_id"),
            objectType=vim_type(item.get("object_type")),
            status=item.get("status"),
            comparisons=[
                vim.alarm.EventAlarmExpression.Comparison(
                    attributeName=c.get("attribute_name"),
                    operator=c.get("operator"),
                    value=c.get("value"),
                )
                for c in item.get("comparison") or []
            ],
        ))

    for item in d.get("state_expression") or []:
        expressions.append(vim.alarm.StateAlarmExpression(
            operator=item.get("operator"),
            type=vim_type(item.get("object_type")),
            statePath=item.get("state_path"),
            yellow=item.get("yellow") or None,
            red=item.get("red") or None,
        ))

    for item in d.get("metric_expression") or []:
        expressions.append(vim.alarm.MetricAlarmExpression(
            operator=item.get("operator"),
            type=vim_type(item.get("object_type")),
            metric=vim.PerformanceManager.MetricId(
                counterId=item.get("metric_counter_id"),
                instance=item.get("metric_instance") or "",
            ),
            yellow=item.get("yellow") or 0,
            yellowInterval=item.get("yellow_interval") or 0,
            red=item.get("red") or 0,
            redInterval=item.get("red_interval") or 0,
        ))
    return expressions


def _transition_spec(item):
    return vim.alarm.AlarmTriggeringAction.TransitionSpec(
        startState=item.get("start_state"),
        finalState=item.get("final_state"),
        repeats=bool(item.get("repeat")),
    )


def _triggering_action(action, item):
    return vim.alarm.AlarmTriggeringAction(action=action, transitionSpecs=[_transition_spec(item)])


def expand_actions(d):
    """Builds the GroupAlarmAction for all action blocks, or None when there are none."""
    actions = []
    for item in d.get("email_action") or []:
        actions.append(_triggering_action(vim.action.SendEmailAction(
            toList=item.get("to") or "",
            ccList=item.get("cc") or "",
            subject=item.get("subject") or "",
            body=item.get("body") or "",
        ), item))

    for item in d.get("snmp_action") or []:
        actions.append(_triggering_action(vim.action.SendSNMPAction(), item))

    for item in d.get("advanced_action") or []:
        name = item.get("name")
        arguments = [vim.action.MethodActionArgument(value=value)
                     for value in ADVANCED_ACTION_ARGUMENTS.get(name, [])]
        actions.append(_triggering_action(vim.action.MethodAction(name=name, argument=arguments), item))

    if not actions:
        return None
    return vim.alarm.GroupAlarmAction(action=actions)


def expand_alarm_spec(d):
    expressions = expand_expressions(d)
    if not expressions:
        raise ProviderError("an alarm must be contain at least one expression")
    if d.get("expression_operator") == "and":
        expression = vim.alarm.AndAlarmExpression(expression=expressions)
    else:
        expression = vim.alarm.OrAlarmExpression(expression=expressions)

    return vim.alarm.AlarmSpec(
        name=d.get("name"),
        description=d.get("description") or "",
        enabled=bool(d.get("enabled")),
        systemName="",
        expression=expression,
        action=expand_actions(d),
        actionFrequency=0,
        setting=vim.alarm.AlarmSetting(
            toleranceRange=ALARM_TOLERANCE_RANGE,
            reportingFrequency=ALARM_REPORTING_FREQUENCY,
        ),
    )


# --- Flatten ---

def flatten_expressions(expressions):
    """
    :param expressions: Sub expressions of the alarm's Or/And expression.
    :return: Dict with event_expression, state_expression and metric_expression lists.
    """
    result = {"event_expression": [], "state_expression": [], "metric_expression": []}
    for expression in expressions or []:
        if isinstance(expression, vim.alarm.EventAlarmExpression):
            result["event_expression"].append({
                "event_type": type_name(expression.eventType),
                "event_type_id": expression.eventTypeId or "",
                "object_type": type_name(expression.objectType),
                "status": expression.status or "",
                "comparison": [
                    {"attribute_name": c.attributeName, "operator": c.operator, "value": c.value}
                    for c in expression.comparisons or []
                ],
            })
        elif isinstance(expression, vim.alarm.StateAlarmExpression):
            result["state_expression"].append({
                "operator": expression.operator,
                "object_type": type_name(expression.type),
                "state_path": expression.statePath,
                "yellow": expression.yellow or "",
                "red": expression.red or "",
            })
        elif isinstance(expression, vim.alarm.MetricAlarmExpression):
            result["metric_expression"].append({
                "operator": expression.operator,
                "object_type": type_name(expression.type),
                "metric_counter_id": expression.metric.counterId,
                "metric_instance": expression.metric.instance or "",
                "yellow": expression.yellow or 0,
                "red": expression.red or 0,
                "yellow_interval": expression.yellowInterval or 0,
                "red_interval": expression.redInterval or 0,
            })
        else:
            raise ProviderError(f"unknown expression type: {type(expression).__name__}")
    return result


def _flatten_transition(action):
    spec = action.transitionSpecs[0]
    return {
        "start_state": spec.startState,
        "final_state": spec.finalState,
        "repeat": bool(spec.repeats),
    }


def flatten_actions(actions):
    """
    :param actions: AlarmTriggeringAction list of the alarm.
    :return: Dict with email_action, snmp_action and advanced_action lists.
    """
    result = {"email_action": [], "snmp_action": [], "advanced_action": []}
    for action in actions or []:
        if not isinstance(action, vim.alarm.AlarmTriggeringAction):
            raise ProviderError(f"unknown action type: {type(action).__name__}")
        inner = action.action
        entry = _flatten_transition(action)
        if isinstance(inner, vim.action.SendEmailAction):
            entry.update({
                "to": inner.toList or "",
                "cc": inner.ccList or "",
                "subject": inner.subject or "",
                "body": inner.body or "",
            })
            result["email_action"].append(entry)
        elif isinstance(inner, vim.action.SendSNMPAction):
            result["snmp_action"].append(entry)
        elif isinstance(inner, vim.action.MethodAction):
            entry["name"] = inner.name
            result["advanced_action"].append(entry)
    return result


def flatten_alarm(d, alarm):
    """Sets every attribute of d from an alarm's info."""
    info = alarm.info
    d.set("name", info.name)
    d.set("description", info.description or "")
    d.set("enabled", bool(info.enabled))
    d.set("entity_type", info.entity.__class__.__name__.split(".")[-1])
    d.set("entity_id", info.entity._moId)

    expression = info.expression
    if isinstance(expression, vim.alarm.AndAlarmExpression):
        d.set("expression_operator", "and")
    else:
        d.set("expression_operator", "or")
    for key, value in flatten_expressions(getattr(expression, "expression", None)).items():
        if value:
            d.set(key, value)

    action = info.action
    if action is None:
        return
    if isinstance(action, vim.alarm.GroupAlarmAction):
        actions = action.action
    elif isinstance(action, vim.alarm.AlarmAction):
        actions = [action]
    else:
        raise ProviderError(f"unmanaged alarm action type: {type(action).__name__}")
    for key, value in flatten_actions(actions).items():
        if value:
            d.set(key, value)


# --- CRUD ---

def create(d, client):
    alarms = client.alarms
    entity = alarms.find_entity(d.get("entity_type"), d.get("entity_id"))
    try:
        spec = expand_alarm_spec(d)
    except ProviderError as e:
        raise ProviderError(f"failed to generate alarm spec: {e}") from e
    alarm = alarms.create_alarm(entity, spec)
    d.set_id(alarm._moId)
    read(d, client)


def read(d, client):
    alarms = client.alarms
    entity = alarms.find_entity(d.get("entity_type"), d.get("entity_id"))
    try:
        alarm = alarms.get_alarm_by_id(entity, d.id)
    except ResourceNotFoundError:
        logger.info(f"Alarm {d.id} no longer exists on {d.get('entity_id')}.")
        d.set_id("")
        return
    flatten_alarm(d, alarm)


def update(d, client):
    alarms = client.alarms
    entity = alarms.find_entity(d.get("entity_type"), d.get("entity_id"))
    try:
        alarm = alarms.get_alarm_by_id(entity, d.id)
    except ResourceNotFoundError as e:
        raise ProviderError(f"cannot locate alarm: {e}") from e
    try:
        spec = expand_alarm_spec(d)
    except ProviderError as e:
        raise ProviderError(f"failed to generate alarm spec: {e}") from e
    alarms.reconfigure_alarm(alarm, spec)
    read(d, client)


def delete(d, client):
    client.alarms.remove_alarm(d.id)
    d.set_id("")


def resource():
    return Resource(alarm_schema(), create=create, read=read, update=update, delete=delete,
                    description="Alarm definition on a vSphere managed entity.")
