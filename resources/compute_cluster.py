"""
Compute clusters: placement, host membership, HA/DRS/DPM settings, vSAN
services and the vLCM desired image.

The cluster settings are mapped onto a single vim.cluster.ConfigSpecEx that is
applied with ReconfigureComputeResource_Task. vSAN services go through the
vSAN cluster config system before that, and the host image through the
esx settings REST API afterwards.
"""

import logging

from pyVmomi import vim

from constants import (CLUSTER_NON_CONFIG_KEYS, DEFAULT_HOST_CLUSTER_EXIT_TIMEOUT,
                       DEFAULT_PERFORMANCE_TOLERANCE, DEFAULT_RESOURCE_PERCENTAGE,
                       DEFAULT_SLOT_EXPLICIT_CPU, DEFAULT_SLOT_EXPLICIT_MEMORY)
from errors import ProviderError, ResourceNotFoundError
from schema import (Attribute, Resource, TYPE_BOOL, TYPE_INT, TYPE_LIST, TYPE_MAP, TYPE_SET,
                    TYPE_STRING, int_between, no_zero_values, string_in_slice)
from utils import moref, moref_value, normalize_folder_path, slice_to_strings

logger = logging.getLogger('vsprov.resources.compute_cluster')

ADMISSION_CONTROL_RESOURCE_PERCENTAGE = "resourcePercentage"
ADMISSION_CONTROL_SLOT_POLICY = "slotPolicy"
ADMISSION_CONTROL_FAILOVER_HOSTS = "failoverHosts"
ADMISSION_CONTROL_DISABLED = "disabled"

DRS_BEHAVIORS = ["manual", "partiallyAutomated", "fullyAutomated"]
DRS_SCALE_SHARES = ["disabled", "scaleCpuAndMemoryShares"]
DPM_BEHAVIORS = ["manual", "automated"]
SERVICE_STATES = ["enabled", "disabled"]
RESTART_PRIORITIES = ["lowest", "low", "medium", "high", "highest"]
READY_CONDITIONS = ["none", "poweredOn", "guestHbStatusGreen", "appHbStatusGreen", "useClusterDefault"]
ISOLATION_RESPONSES = ["none", "powerOff", "shutdown", "clusterIsolationResponse"]
PDL_RESPONSES = ["disabled", "warning", "restartAggressive", "clusterDefault"]
APD_RESPONSES = ["disabled", "warning", "restartConservative", "restartAggressive", "clusterDefault"]
APD_RECOVERY_ACTIONS = ["none", "reset", "useClusterDefault"]
VM_MONITORING_STATES = ["vmMonitoringDisabled", "vmMonitoringOnly", "vmAndAppMonitoring"]
ADMISSION_CONTROL_POLICIES = [ADMISSION_CONTROL_RESOURCE_PERCENTAGE, ADMISSION_CONTROL_SLOT_POLICY,
                              ADMISSION_CONTROL_FAILOVER_HOSTS, ADMISSION_CONTROL_DISABLED]
HEARTBEAT_POLICIES = ["allFeasibleDs", "userSelectedDs", "allFeasibleDsWithUserPreference"]
PROACTIVE_HA_BEHAVIORS = ["Manual", "Automated"]
PROACTIVE_HA_REMEDIATIONS = ["MaintenanceMode", "QuarantineMode"]

# vSAN attributes read back from the cluster vSAN config; all default to off.
VSAN_FLAGS = (
    "vsan_enabled",
    "vsan_esa_enabled",
    "vsan_dedup_enabled",
    "vsan_compression_enabled",
    "vsan_performance_enabled",
    "vsan_verbose_mode_enabled",
    "vsan_network_diagnostic_mode_enabled",
    "vsan_unmap_enabled",
    "vsan_dit_encryption_enabled",
)

IMPORT_DEFAULTS = {
    "ha_admission_control_performance_tolerance": DEFAULT_PERFORMANCE_TOLERANCE,
    "ha_admission_control_resource_percentage_cpu": DEFAULT_RESOURCE_PERCENTAGE,
    "ha_admission_control_resource_percentage_memory": DEFAULT_RESOURCE_PERCENTAGE,
    "ha_admission_control_slot_policy_explicit_cpu": DEFAULT_SLOT_EXPLICIT_CPU,
    "ha_admission_control_slot_policy_explicit_memory": DEFAULT_SLOT_EXPLICIT_MEMORY,
    "host_cluster_exit_timeout": DEFAULT_HOST_CLUSTER_EXIT_TIMEOUT,
}


def _bool(default=False, **kwargs):
    return Attribute(TYPE_BOOL, optional=True, default=default, **kwargs)


def _int(default, validate=None, **kwargs):
    return Attribute(TYPE_INT, optional=True, default=default, validate=validate, **kwargs)


def _choice(default, values, **kwargs):
    return Attribute(TYPE_STRING, optional=True, default=default, validate=string_in_slice(values), **kwargs)


def _id_set(**kwargs):
    return Attribute(TYPE_SET, optional=True, elem=Attribute(TYPE_STRING), **kwargs)


def host_image_schema():
    return {
        "esx_version": Attribute(TYPE_STRING, optional=True, validate=no_zero_values,
                                 description="The ESXi version the image is based on."),
        "component": Attribute(TYPE_LIST, optional=True, elem={
            "key": Attribute(TYPE_STRING, optional=True, validate=no_zero_values,
                             description="The identifier of the component."),
            "version": Attribute(TYPE_STRING, optional=True, validate=no_zero_values,
                                 description="The version of the component."),
        }),
    }


def fault_domains_schema():
    return {
        "fault_domain": Attribute(TYPE_SET, optional=True, elem={
            "name": Attribute(TYPE_STRING, required=True, description="The name of the fault domain."),
            "host_ids": Attribute(TYPE_SET, required=True, elem=Attribute(TYPE_STRING),
                                  description="Hosts that belong to the fault domain."),
        }),
    }


def cluster_schema():
    return {
        # Placement and membership
        "name": Attribute(TYPE_STRING, required=True, description="Name for the new cluster."),
        "datacenter_id": Attribute(TYPE_STRING, required=True, force_new=True,
                                   description="The managed object ID of the datacenter to put the cluster in."),
        "folder": Attribute(TYPE_STRING, optional=True, state_func=normalize_folder_path,
                            description="Folder path relative to the datacenter host folder."),
        "host_system_ids": _id_set(max_items=64, conflicts_with=["host_managed"],
                                   description="Managed object IDs of the hosts to put in the cluster."),
        "host_managed": _bool(conflicts_with=["host_system_ids"],
                              description="Host membership is managed by the host resource."),
        "host_cluster_exit_timeout": _int(DEFAULT_HOST_CLUSTER_EXIT_TIMEOUT, int_between(0, 604800)),
        "force_evacuate_on_destroy": _bool(),
        "resource_pool_id": Attribute(TYPE_STRING, computed=True,
                                      description="The managed object ID of the cluster's root resource pool."),

        # DRS
        "drs_enabled": _bool(),
        "drs_automation_level": _choice("manual", DRS_BEHAVIORS),
        "drs_migration_threshold": _int(3, int_between(1, 5)),
        "drs_enable_vm_overrides": _bool(True),
        "drs_enable_predictive_drs": _bool(),
        "drs_scale_descendants_shares": _choice("disabled", DRS_SCALE_SHARES),
        "drs_advanced_options": Attribute(TYPE_MAP, optional=True, elem=Attribute(TYPE_STRING)),

        # DPM
        "dpm_enabled": _bool(),
        "dpm_automation_level": _choice("manual", DPM_BEHAVIORS),
        "dpm_threshold": _int(3, int_between(1, 5)),

        # HA
        "ha_enabled": _bool(),
        "ha_host_monitoring": _choice("enabled", SERVICE_STATES),
        "ha_vm_restart_priority": _choice("medium", RESTART_PRIORITIES),
        "ha_vm_dependency_restart_condition": _choice("none", READY_CONDITIONS),
        "ha_vm_restart_additional_delay": _int(0),
        "ha_vm_restart_timeout": _int(600),
        "ha_host_isolation_response": _choice("none", ISOLATION_RESPONSES),
        "ha_vm_component_protection": _choice("enabled", SERVICE_STATES),
        "ha_datastore_pdl_response": _choice("disabled", PDL_RESPONSES),
        "ha_datastore_apd_response": _choice("disabled", APD_RESPONSES),
        "ha_datastore_apd_recovery_action": _choice("none", APD_RECOVERY_ACTIONS),
        "ha_datastore_apd_response_delay": _int(180),
        "ha_vm_monitoring": _choice("vmMonitoringDisabled", VM_MONITORING_STATES),
        "ha_vm_failure_interval": _int(30),
        "ha_vm_minimum_uptime": _int(120),
        "ha_vm_maximum_resets": _int(3),
        "ha_vm_maximum_failure_window": _int(-1),
        "ha_advanced_options": Attribute(TYPE_MAP, optional=True, elem=Attribute(TYPE_STRING)),

        # HA admission control
        "ha_admission_control_policy": _choice(ADMISSION_CONTROL_RESOURCE_PERCENTAGE, ADMISSION_CONTROL_POLICIES),
        "ha_admission_control_host_failure_tolerance": _int(1),
        "ha_admission_control_performance_tolerance": _int(DEFAULT_PERFORMANCE_TOLERANCE, int_between(0, 100)),
        "ha_admission_control_resource_percentage_auto_compute": _bool(True),
        "ha_admission_control_resource_percentage_cpu": _int(DEFAULT_RESOURCE_PERCENTAGE, int_between(1, 100)),
        "ha_admission_control_resource_percentage_memory": _int(DEFAULT_RESOURCE_PERCENTAGE, int_between(1, 100)),
        "ha_admission_control_slot_policy_use_explicit_size": _bool(),
        "ha_admission_control_slot_policy_explicit_cpu": _int(DEFAULT_SLOT_EXPLICIT_CPU),
        "ha_admission_control_slot_policy_explicit_memory": _int(DEFAULT_SLOT_EXPLICIT_MEMORY),
        "ha_admission_control_failover_host_system_ids": _id_set(),

        # HA heartbeat datastores
        "ha_heartbeat_datastore_policy": _choice("allFeasibleDsWithUserPreference", HEARTBEAT_POLICIES),
        "ha_heartbeat_datastore_ids": _id_set(),

        # Proactive HA
        "proactive_ha_enabled": _bool(),
        "proactive_ha_automation_level": _choice("Manual", PROACTIVE_HA_BEHAVIORS),
        "proactive_ha_moderate_remediation": _choice("QuarantineMode", PROACTIVE_HA_REMEDIATIONS),
        "proactive_ha_severe_remediation": _choice("QuarantineMode", PROACTIVE_HA_REMEDIATIONS),
        "proactive_ha_provider_ids": _id_set(),

        # vLCM
        "host_image": Attribute(TYPE_LIST, optional=True, max_items=1, elem=host_image_schema(),
                                description="Desired image of the cluster hosts."),

        # vSAN
        "vsan_enabled": _bool(),
        "vsan_esa_enabled": _bool(conflicts_with=["vsan_dedup_enabled", "vsan_compression_enabled"]),
        "vsan_dedup_enabled": _bool(conflicts_with=["vsan_esa_enabled"]),
        "vsan_compression_enabled": _bool(conflicts_with=["vsan_esa_enabled"]),
        "vsan_performance_enabled": _bool(),
        "vsan_verbose_mode_enabled": _bool(),
        "vsan_network_diagnostic_mode_enabled": _bool(),
        "vsan_unmap_enabled": _bool(),
        "vsan_remote_datastore_ids": _id_set(max_items=5),
        "vsan_dit_encryption_enabled": _bool(),
        "vsan_dit_rekey_interval": Attribute(TYPE_INT, optional=True, computed=True,
                                             validate=int_between(30, 10080)),
        "vsan_fault_domains": Attribute(TYPE_SET, optional=True, elem=fault_domains_schema()),
    }


# --- Cluster configuration spec ---

def _option_values(options):
    return [vim.option.OptionValue(key=key, value=value) for key, value in (options or {}).items()]


def _flatten_option_values(options):
    return {opt.key: str(opt.value) for opt in options or []}


def expand_das_vm_settings(d):
    return vim.cluster.DasVmSettings(
        isolationResponse=d.get("ha_host_isolation_response"),
        restartPriority=d.get("ha_vm_restart_priority"),
        restartPriorityTimeout=d.get("ha_vm_restart_timeout"),
        vmToolsMonitoringSettings=vim.cluster.VmToolsMonitoringSettings(
            failureInterval=d.get("ha_vm_failure_interval"),
            maxFailures=d.get("ha_vm_maximum_resets"),
            maxFailureWindow=d.get("ha_vm_maximum_failure_window"),
            minUpTime=d.get("ha_vm_minimum_uptime"),
            vmMonitoring=d.get("ha_vm_monitoring"),
        ),
        vmComponentProtectionSettings=expand_vm_component_protection(d),
    )


def expand_vm_component_protection(d):
    settings = vim.cluster.VmComponentProtectionSettings(
        vmReactionOnAPDCleared=d.get("ha_datastore_apd_recovery_action"),
        vmStorageProtectionForAPD=d.get("ha_datastore_apd_response"),
        vmStorageProtectionForPDL=d.get("ha_datastore_pdl_response"),
        vmTerminateDelayForAPDSec=d.get("ha_datastore_apd_response_delay"),
    )
    if d.get("ha_datastore_apd_response") != "disabled":
        settings.enableAPDTimeoutForHosts = True
    return settings


def expand_admission_control_policy(d, policy):
    """
    Builds the admission control policy object for a policy name.

    :return: A vim.cluster.DasAdmissionControlPolicy subclass, or None when disabled.
    """
    failover_level = d.get("ha_admission_control_host_failure_tolerance")
    if policy == ADMISSION_CONTROL_RESOURCE_PERCENTAGE:
        obj = vim.cluster.FailoverResourcesAdmissionControlPolicy(
            cpuFailoverResourcesPercent=d.get("ha_admission_control_resource_percentage_cpu"),
            memoryFailoverResourcesPercent=d.get("ha_admission_control_resource_percentage_memory"),
            autoComputePercentages=d.get("ha_admission_control_resource_percentage_auto_compute"),
            failoverLevel=failover_level,
        )
    elif policy == ADMISSION_CONTROL_SLOT_POLICY:
        obj = vim.cluster.FailoverLevelAdmissionControlPolicy(failoverLevel=failover_level)
        if d.get("ha_admission_control_slot_policy_use_explicit_size"):
            obj.slotPolicy = vim.cluster.FixedSizeSlotPolicy(
                cpu=d.get("ha_admission_control_slot_policy_explicit_cpu"),
                memory=d.get("ha_admission_control_slot_policy_explicit_memory"),
            )
    elif policy == ADMISSION_CONTROL_FAILOVER_HOSTS:
        obj = vim.cluster.FailoverHostAdmissionControlPolicy(
            failoverHosts=[moref(vim.HostSystem, host_id)
                           for host_id in d.get("ha_admission_control_failover_host_system_ids") or []],
            failoverLevel=failover_level,
        )
    else:
        return None
    obj.resourceReductionToToleratePercent = d.get("ha_admission_control_performance_tolerance")
    return obj


def expand_das_config(d):
    policy = d.get("ha_admission_control_policy")
    return vim.cluster.DasConfigInfo(
        enabled=d.get("ha_enabled"),
        defaultVmSettings=expand_das_vm_settings(d),
        hBDatastoreCandidatePolicy=d.get("ha_heartbeat_datastore_policy"),
        hostMonitoring=d.get("ha_host_monitoring"),
        vmMonitoring=d.get("ha_vm_monitoring"),
        vmComponentProtecting=d.get("ha_vm_component_protection"),
        option=_option_values(d.get("ha_advanced_options")),
        heartbeatDatastore=[moref(vim.Datastore, ds_id) for ds_id in d.get("ha_heartbeat_datastore_ids") or []],
        admissionControlEnabled=policy != ADMISSION_CONTROL_DISABLED,
        admissionControlPolicy=expand_admission_control_policy(d, policy),
    )


def expand_dpm_config(d):
    return vim.cluster.DpmConfigInfo(
        enabled=d.get("dpm_enabled"),
        defaultDpmBehavior=d.get("dpm_automation_level"),
        hostPowerActionRate=d.get("dpm_threshold"),
    )


def expand_drs_config(d):
    return vim.cluster.DrsConfigInfo(
        enabled=d.get("drs_enabled"),
        defaultVmBehavior=d.get("drs_automation_level"),
        enableVmBehaviorOverrides=d.get("drs_enable_vm_overrides"),
        vmotionRate=d.get("drs_migration_threshold"),
        scaleDescendantsShares=d.get("drs_scale_descendants_shares"),
        option=_option_values(d.get("drs_advanced_options")),
    )


def expand_infra_update_ha_config(d):
    return vim.cluster.InfraUpdateHaConfigInfo(
        enabled=d.get("proactive_ha_enabled"),
        behavior=d.get("proactive_ha_automation_level"),
        moderateRemediation=d.get("proactive_ha_moderate_remediation"),
        severeRemediation=d.get("proactive_ha_severe_remediation"),
        providers=slice_to_strings(d.get("proactive_ha_provider_ids")),
    )


def expand_orchestration(d):
    return vim.cluster.OrchestrationInfo(
        defaultVmReadiness=vim.cluster.VmReadiness(
            postReadyDelay=d.get("ha_vm_restart_additional_delay"),
            readyCondition=d.get("ha_vm_dependency_restart_condition"),
        ),
    )


def fault_domain_map(d):
    """
    Maps each host id to the name of its vSAN fault domain.

    :raises ProviderError: When a host appears in more than one fault domain.
    """
    domains = []
    for group in d.get("vsan_fault_domains") or []:
        domains.extend((group or {}).get("fault_domain") or [])
    if len(domains) < 3:
        logger.warning(f"Fewer than 3 fault domains to be configured in vSAN cluster: {len(domains)}")

    host_to_domain = {}
    host_count = None
    for domain in domains:
        host_ids = domain.get("host_ids") or []
        if host_count is None:
            host_count = len(host_ids)
        elif host_count != len(host_ids):
            logger.warning("Inconsistent sizes of fault domains.")
        for host_id in host_ids:
            if host_id in host_to_domain:
                raise ProviderError(f"duplicate host ids in different fault domains: {host_id}")
            host_to_domain[host_id] = domain["name"]
    return host_to_domain


def expand_vsan_host_config(d, host_configs):
    """Assigns fault domain names to the cluster's current vSAN host configs."""
    host_to_domain = fault_domain_map(d)
    result = []
    for host_config in host_configs or []:
        host_id = moref_value(host_config.hostSystem)
        result.append(vim.vsan.host.ConfigInfo(
            hostSystem=host_config.hostSystem,
            faultDomainInfo=vim.vsan.host.ConfigInfo.FaultDomainInfo(name=host_to_domain.get(host_id, "")),
        ))
    return result


def expand_cluster_config_spec(d, current_config=None):
    """
    Builds the full cluster reconfigure spec.

    :param d: ResourceData of the cluster.
    :param current_config: The cluster's vim.cluster.ConfigInfoEx, used for the vSAN host configs.
    :return: vim.cluster.ConfigSpecEx
    """
    spec = vim.cluster.ConfigSpecEx(
        dasConfig=expand_das_config(d),
        dpmConfig=expand_dpm_config(d),
        drsConfig=expand_drs_config(d),
        infraUpdateHaConfig=expand_infra_update_ha_config(d),
        orchestration=expand_orchestration(d),
        proactiveDrsConfig=vim.cluster.ProactiveDrsConfigInfo(enabled=d.get("drs_enable_predictive_drs")),
    )
    host_configs = getattr(current_config, "vsanHostConfig", None) if current_config is not None else None
    spec.vsanHostConfigSpec = expand_vsan_host_config(d, host_configs)
    return spec


def flatten_admission_control_policy(das):
    """Returns the admission control attributes for a vim.cluster.DasConfigInfo."""
    policy = das.admissionControlPolicy
    if not das.admissionControlEnabled or policy is None:
        return {"ha_admission_control_policy": ADMISSION_CONTROL_DISABLED}

    values = {}
    if isinstance(policy, vim.cluster.FailoverResourcesAdmissionControlPolicy):
        values["ha_admission_control_policy"] = ADMISSION_CONTROL_RESOURCE_PERCENTAGE
        if not policy.autoComputePercentages:
            values["ha_admission_control_resource_percentage_cpu"] = policy.cpuFailoverResourcesPercent
            values["ha_admission_control_resource_percentage_memory"] = policy.memoryFailoverResourcesPercent
        values["ha_admission_control_resource_percentage_auto_compute"] = bool(policy.autoComputePercentages)
        values["ha_admission_control_host_failure_tolerance"] = policy.failoverLevel
    elif isinstance(policy, vim.cluster.FailoverLevelAdmissionControlPolicy):
        values["ha_admission_control_policy"] = ADMISSION_CONTROL_SLOT_POLICY
        values["ha_admission_control_host_failure_tolerance"] = policy.failoverLevel
        slot = policy.slotPolicy
        values["ha_admission_control_slot_policy_use_explicit_size"] = slot is not None
        if isinstance(slot, vim.cluster.FixedSizeSlotPolicy):
            values["ha_admission_control_slot_policy_explicit_cpu"] = slot.cpu
            values["ha_admission_control_slot_policy_explicit_memory"] = slot.memory
    elif isinstance(policy, vim.cluster.FailoverHostAdmissionControlPolicy):
        values["ha_admission_control_policy"] = ADMISSION_CONTROL_FAILOVER_HOSTS
        values["ha_admission_control_failover_host_system_ids"] = [moref_value(h) for h in policy.failoverHosts or []]
        values["ha_admission_control_host_failure_tolerance"] = policy.failoverLevel
    else:
        return {"ha_admission_control_policy": ADMISSION_CONTROL_DISABLED}

    if policy.resourceReductionToToleratePercent is not None:
        values["ha_admission_control_performance_tolerance"] = policy.resourceReductionToToleratePercent
    return values


def flatten_das_config(das):
    values = {
        "ha_enabled": bool(das.enabled),
        "ha_heartbeat_datastore_policy": das.hBDatastoreCandidatePolicy,
        "ha_host_monitoring": das.hostMonitoring,
        "ha_vm_monitoring": das.vmMonitoring,
        "ha_vm_component_protection": das.vmComponentProtecting,
        "ha_heartbeat_datastore_ids": [moref_value(ds) for ds in das.heartbeatDatastore or []],
        "ha_advanced_options": _flatten_option_values(das.option),
    }
    vm_settings = das.defaultVmSettings
    if vm_settings is not None:
        values["ha_host_isolation_response"] = vm_settings.isolationResponse
        values["ha_vm_restart_priority"] = vm_settings.restartPriority
        values["ha_vm_restart_timeout"] = vm_settings.restartPriorityTimeout
        tools = vm_settings.vmToolsMonitoringSettings
        if tools is not None:
            values.update({
                "ha_vm_failure_interval": tools.failureInterval,
                "ha_vm_maximum_resets": tools.maxFailures,
                "ha_vm_maximum_failure_window": tools.maxFailureWindow,
                "ha_vm_minimum_uptime": tools.minUpTime,
                "ha_vm_monitoring": tools.vmMonitoring,
            })
        protection = vm_settings.vmComponentProtectionSettings
        if protection is not None:
            values.update({
                "ha_datastore_apd_recovery_action": protection.vmReactionOnAPDCleared,
                "ha_datastore_apd_response": protection.vmStorageProtectionForAPD,
                "ha_datastore_pdl_response": protection.vmStorageProtectionForPDL,
                "ha_datastore_apd_response_delay": protection.vmTerminateDelayForAPDSec,
            })
    values.update(flatten_admission_control_policy(das))
    return values


def flatten_fault_domains(host_configs):
    domains = {}
    for host_config in host_configs or []:
        info = host_config.faultDomainInfo
        if info is None or not info.name:
            continue
        domains.setdefault(info.name, []).append(moref_value(host_config.hostSystem))
    if not domains:
        return []
    return [{"fault_domain": [{"name": name, "host_ids": host_ids} for name, host_ids in sorted(domains.items())]}]


def flatten_cluster_config(config):
    """
    Maps a vim.cluster.ConfigInfoEx onto cluster attributes.

    :return: Dict of attribute name to value.
    """
    values = flatten_das_config(config.dasConfig)

    dpm = config.dpmConfigInfo
    if dpm is not None:
        values.update({
            "dpm_enabled": bool(dpm.enabled),
            "dpm_automation_level": dpm.defaultDpmBehavior,
            "dpm_threshold": dpm.hostPowerActionRate,
        })

    drs = config.drsConfig
    values.update({
        "drs_enabled": bool(drs.enabled),
        "drs_automation_level": drs.defaultVmBehavior,
        "drs_enable_vm_overrides": bool(drs.enableVmBehaviorOverrides),
        "drs_migration_threshold": drs.vmotionRate,
        "drs_scale_descendants_shares": drs.scaleDescendantsShares or "disabled",
        "drs_advanced_options": _flatten_option_values(drs.option),
    })

    values["vsan_fault_domains"] = flatten_fault_domains(config.vsanHostConfig)

    infra = config.infraUpdateHaConfig
    if infra is not None:
        values.update({
            "proactive_ha_enabled": bool(infra.enabled),
            "proactive_ha_automation_level": infra.behavior,
            "proactive_ha_moderate_remediation": infra.moderateRemediation,
            "proactive_ha_severe_remediation": infra.severeRemediation,
            "proactive_ha_provider_ids": list(infra.providers or []),
        })

    orchestration = config.orchestration
    if orchestration is not None and orchestration.defaultVmReadiness is not None:
        readiness = orchestration.defaultVmReadiness
        values["ha_vm_restart_additional_delay"] = readiness.postReadyDelay
        values["ha_vm_dependency_restart_condition"] = readiness.readyCondition

    proactive_drs = config.proactiveDrsConfig
    values["drs_enable_predictive_drs"] = bool(proactive_drs.enabled) if proactive_drs is not None else False
    return values


# --- vSAN ---

def validate_vsan_settings(d, esa_supported):
    """
    Checks the vSAN service combinations vCenter refuses.

    :param esa_supported: Whether vCenter is 8.0 or newer.
    :raises ProviderError: On the first invalid combination.
    """
    name = d.get("name")
    vsan_enabled = d.get("vsan_enabled")
    esa_enabled = d.get("vsan_esa_enabled")
    if esa_supported:
        if not vsan_enabled and esa_enabled:
            raise ProviderError(f"vSAN ESA service cannot be enabled on cluster due to vSAN is disabled: {name}")
        if not d.has_change("vsan_enabled") and d.has_change("vsan_esa_enabled"):
            raise ProviderError(f"vSAN ESA service must be configured along with vSAN service: {name}")
        if esa_enabled and not d.get("vsan_unmap_enabled"):
            raise ProviderError(f"vSAN unmap service should be explicitly enabled when vSAN ESA is enabled: {name}")

    if vsan_enabled and not esa_enabled:
        if d.get("vsan_dedup_enabled") and not d.get("vsan_compression_enabled"):
            raise ProviderError("vsan compression must be enabled if vsan dedup is enabled")

    perf_enabled = d.get("vsan_performance_enabled")
    if (not vsan_enabled or not perf_enabled) and (
            d.get("vsan_verbose_mode_enabled") or d.get("vsan_network_diagnostic_mode_enabled")):
        raise ProviderError("cannot apply verbose mode and network diagnostic mode when performance "
                            f"service or vsan disabled on cluster: {name}")

    if d.get("vsan_remote_datastore_ids") and d.get("vsan_dit_encryption_enabled"):
        raise ProviderError("vsan data-in-transit encryption cannot be enabled with HCI mesh")


def vsan_settings(d):
    settings = {key: bool(d.get(key)) for key in VSAN_FLAGS}
    settings["vsan_dit_rekey_interval"] = d.get("vsan_dit_rekey_interval") or 0
    return settings


def apply_vsan_config(d, client, cluster):
    name = d.get("name")
    esa_supported = client.vim_client.api_version() >= (8,)
    validate_vsan_settings(d, esa_supported)

    spec = client.vsan.build_reconfig_spec(vsan_settings(d), esa_supported)
    try:
        client.vsan.reconfigure(cluster, spec)
    except ProviderError as e:
        raise ProviderError(f"cannot apply vsan service on cluster '{name}': {e}") from e

    datastore_spec = client.vsan.build_datastore_spec(d.get("vsan_remote_datastore_ids") or [])
    try:
        client.vsan.reconfigure(cluster, datastore_spec)
    except ProviderError as e:
        raise ProviderError(f"cannot apply vsan remote datastores on cluster '{name}': {e}") from e


def flatten_vsan_config(config):
    """Maps a vim.vsan.ConfigInfoEx onto the vsan_* attributes."""
    values = {
        "vsan_enabled": bool(config.enabled),
        "vsan_esa_enabled": bool(getattr(config, "vsanEsaEnabled", False)),
        "vsan_dedup_enabled": False,
        "vsan_compression_enabled": False,
        "vsan_performance_enabled": False,
        "vsan_verbose_mode_enabled": False,
        "vsan_network_diagnostic_mode_enabled": False,
        "vsan_unmap_enabled": False,
        "vsan_dit_encryption_enabled": False,
        "vsan_dit_rekey_interval": 0,
        "vsan_remote_datastore_ids": [],
    }
    efficiency = config.dataEfficiencyConfig
    if efficiency is not None:
        values["vsan_dedup_enabled"] = bool(efficiency.dedupEnabled)
        values["vsan_compression_enabled"] = bool(efficiency.compressionEnabled)
    perf = config.perfsvcConfig
    if perf is not None:
        values["vsan_performance_enabled"] = bool(perf.enabled)
        values["vsan_verbose_mode_enabled"] = bool(perf.verboseMode)
        values["vsan_network_diagnostic_mode_enabled"] = bool(perf.diagnosticMode)
    if config.unmapConfig is not None:
        values["vsan_unmap_enabled"] = bool(config.unmapConfig.enable)
    dit = config.dataInTransitEncryptionConfig
    if dit is not None:
        values["vsan_dit_encryption_enabled"] = bool(dit.enabled)
        values["vsan_dit_rekey_interval"] = dit.rekeyInterval or 0
    datastore_config = getattr(config, "datastoreConfig", None)
    if datastore_config is not None:
        values["vsan_remote_datastore_ids"] = [
            moref_value(ds) for ds in getattr(datastore_config, "remoteDatastores", None) or []
        ]
    return values


# --- Host image ---

def component_changes(old_components, new_components):
    """
    Splits a component list change into components to set and components to remove.

    :return: (dict of key to version, list of keys)
    """
    old = {c["key"]: c.get("version") for c in old_components or []}
    new = {c["key"]: c.get("version") for c in new_components or []}
    to_set = {key: version for key, version in new.items() if old.get(key) != version}
    to_remove = [key for key in old if key not in new]
    return to_set, to_remove


def apply_host_image(d, client):
    if not d.has_change("host_image"):
        return
    old, new = d.get_change("host_image")
    if not new:
        raise ProviderError("disabling vLCM is not allowed")

    image = new[0]
    old_components = old[0].get("component") if old else []
    to_set, to_remove = component_changes(old_components, image.get("component"))
    logger.info(f"Applying host image {image.get('esx_version')} to cluster {d.id}")
    client.software.apply_image(d.id, image.get("esx_version"), to_set, to_remove)


# --- CRUD ---

def has_cluster_config_change(d):
    for key, attr in d.schema.items():
        if key in CLUSTER_NON_CONFIG_KEYS or attr.computed_only:
            continue
        if d.has_change(key):
            return True
    return False


def apply_cluster_configuration(d, client, cluster):
    if not has_cluster_config_change(d):
        logger.debug(f"No cluster configuration attributes changed on {d.id}")
        return
    apply_vsan_config(d, client, cluster)
    spec = expand_cluster_config_spec(d, cluster.configurationEx)
    client.clusters.reconfigure(cluster, spec)


def process_host_update(d, client, cluster):
    old, new = d.get_change("host_system_ids")
    old, new = old or [], new or []
    hosts = client.clusters.hosts
    added = hosts.get_hosts_by_id([host_id for host_id in new if host_id not in old])
    removed = hosts.get_hosts_by_id([host_id for host_id in old if host_id not in new])
    client.clusters.move_hosts_into(cluster, added)
    client.clusters.move_hosts_out(cluster, removed, d.get("host_cluster_exit_timeout"))


def get_cluster(d, client):
    return client.clusters.get_cluster(d.id)


def create(d, client):
    cluster = client.clusters.create_cluster(d.get("datacenter_id"), d.get("folder") or "", d.get("name"))
    d.set_id(cluster._moId)
    process_host_update(d, client, cluster)
    apply_cluster_configuration(d, client, cluster)
    apply_host_image(d, client)
    read(d, client)


def read(d, client):
    clusters = client.clusters
    try:
        cluster = get_cluster(d, client)
    except ResourceNotFoundError:
        logger.info(f"Cluster {d.id} no longer exists.")
        d.set_id("")
        return

    d.set("datacenter_id", moref_value(clusters.datacenter_for(cluster)))
    d.set("name", cluster.name)
    d.set("folder", clusters.relative_folder(cluster))
    d.set("resource_pool_id", moref_value(cluster.resourcePool))
    if not d.get("host_managed"):
        d.set("host_system_ids", [moref_value(host) for host in cluster.host or []])

    for key, value in flatten_vsan_config(client.vsan.get_config(cluster)).items():
        d.set(key, value)
    for key, value in flatten_cluster_config(cluster.configurationEx).items():
        d.set(key, value)


def update(d, client):
    clusters = client.clusters
    cluster = get_cluster(d, client)
    if d.has_change("name"):
        clusters.rename(cluster, d.get("name"))
    if d.has_change("folder"):
        clusters.move_to_folder(cluster, d.get("folder") or "")
    process_host_update(d, client, cluster)
    apply_cluster_configuration(d, client, cluster)
    apply_host_image(d, client)
    read(d, client)


def delete(d, client):
    clusters = client.clusters
    cluster = get_cluster(d, client)
    spec = expand_cluster_config_spec(d, cluster.configurationEx)
    force = d.get("force_evacuate_on_destroy")

    if force and spec.vsanHostConfigSpec:
        logger.debug(f"Clearing vSAN fault domains of cluster {d.id} before removal")
        for host_config in spec.vsanHostConfigSpec:
            host_config.faultDomainInfo.name = ""
        clusters.reconfigure(cluster, spec)

    das = spec.dasConfig
    if das.enabled and das.admissionControlEnabled and isinstance(
            das.admissionControlPolicy, vim.cluster.FailoverHostAdmissionControlPolicy):
        logger.debug(f"Turning HA off on cluster {d.id} before removing failover hosts")
        das.enabled = False
        clusters.reconfigure(cluster, spec)

    if force:
        hosts = clusters.hosts.get_hosts_by_id(d.get("host_system_ids") or [])
        try:
            clusters.move_hosts_out(cluster, hosts, d.get("host_cluster_exit_timeout"))
        except ProviderError as e:
            raise ProviderError(f"error force-removing old hosts out of cluster: {e}") from e
        if d.get("vsan_remote_datastore_ids"):
            try:
                client.vsan.reconfigure(cluster, client.vsan.build_datastore_spec([]))
            except ProviderError as e:
                raise ProviderError(
                    f"cannot force-evacuate remote datastores on cluster: {d.get('name')}, err: {e}"
                ) from e

    if clusters.has_children(cluster):
        raise ProviderError(f"cluster {clusters.inventory_path(cluster)!r} still has hosts or virtual machines. "
                            "Please move or remove all items before deleting")
    clusters.destroy(cluster)
    d.set_id("")


def importer(d, client):
    """Imports a cluster by inventory path, e.g. /dc1/host/cluster1."""
    try:
        cluster = client.clusters.get_cluster_by_path(d.id)
    except ProviderError as e:
        raise ProviderError(f"error loading cluster: {e}") from e
    d.set_id(cluster._moId)
    for key, value in IMPORT_DEFAULTS.items():
        d.set(key, value)
    read(d, client)


def resource():
    return Resource(cluster_schema(), create=create, read=read, update=update, delete=delete,
                    importer=importer, description="Compute cluster with HA, DRS, vSAN and vLCM settings.")
