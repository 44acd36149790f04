# // Copyright Amazon.com, Inc. or its affiliates. All Rights Reserved.
# // SPDX-License-Identifier: Apache-2.0
import copy
import functools
import botocore
import botocore.exceptions
from .ecs_output import (get_cluster_def, get_target_group_def, get_load_balancer_def,
                         get_listener_def, get_rule_def, get_task_def, get_svc_def,
                         get_scaling_defs, read_additional_input)
from ..utils import get_client
import logging

logger = logging.getLogger(__name__)

# Executes the same create/register sequence the rendered deploy.sh runs,
# looking existing resources up first so that apply can be repeated.

NOT_FOUND_CODES = (
    "TargetGroupNotFound",
    "LoadBalancerNotFound",
    "ListenerNotFound",
    "RuleNotFound",
    "ServiceNotFoundException",
    "ServiceNotActiveException",
    "ClusterNotFoundException",
    "ObjectNotFoundException"
)

# attributes create_service accepts but update_service does not
SERVICE_CREATE_ONLY = ("cluster", "serviceName", "tags", "launchType", "schedulingStrategy", "propagateTags", "enableECSManagedTags")

def error_code(error):
    return error.response.get("Error", {}).get("Code", "")

def provisioning_step(description):
    def decorator(func):
        @functools.wraps(func)
        def wrapper(*args, **kwargs):
            try:
                return func(*args, **kwargs)
            except botocore.exceptions.ClientError as error:
                logger.error("Failed to %s: %s"%(description, error))
                raise
        return wrapper
    return decorator

def get_clients(region_name):
    return {
        "ecs": get_client("ecs", region_name),
        "elbv2": get_client("elbv2", region_name),
        "application-autoscaling": get_client("application-autoscaling", region_name)
    }

def plan_region(plan, options):
    region_name = options.get("region_name", "") or ""
    if len(region_name) > 0:
        return region_name
    return plan["cluster"]["region"]

@provisioning_step("create cluster")
def ensure_cluster(ecs, plan):
    cluster_def = get_cluster_def(plan)
    name = cluster_def["clusterName"]
    response = ecs.describe_clusters(clusters=[name])
    for cluster in response.get("clusters", []):
        if cluster.get("status") == "ACTIVE":
            logger.info("%s cluster exists, updating capacity providers"%(name))
            ecs.put_cluster_capacity_providers(
                cluster=name,
                capacityProviders=cluster_def["capacityProviders"],
                defaultCapacityProviderStrategy=cluster_def["defaultCapacityProviderStrategy"])
            return cluster.get("clusterArn")
    logger.info("Creating %s cluster"%(name))
    response = ecs.create_cluster(**cluster_def)
    return response["cluster"]["clusterArn"]

def find_target_group(elbv2, name):
    try:
        response = elbv2.describe_target_groups(Names=[name])
    except botocore.exceptions.ClientError as error:
        if error_code(error) == "TargetGroupNotFound":
            return None
        raise
    tgs = response.get("TargetGroups", [])
    if len(tgs) == 0:
        return None
    return tgs[0]

@provisioning_step("create target group")
def ensure_target_group(elbv2, plan, tg_key):
    tg_def = get_target_group_def(plan, tg_key)
    existing = find_target_group(elbv2, tg_def["Name"])
    if existing is None:
        logger.info("Creating %s target group"%(tg_def["Name"]))
        response = elbv2.create_target_group(**tg_def)
        return response["TargetGroups"][0]["TargetGroupArn"]
    if existing.get("Port") != tg_def["Port"] or existing.get("VpcId") != tg_def["VpcId"]:
        logger.warning("%s target group exists with a different port or VPC, it has to be deleted to change them"%(tg_def["Name"]))
    logger.info("%s target group exists, updating health check"%(tg_def["Name"]))
    elbv2.modify_target_group(
        TargetGroupArn=existing["TargetGroupArn"],
        HealthCheckProtocol=tg_def["HealthCheckProtocol"],
        HealthCheckPath=tg_def["HealthCheckPath"],
        HealthCheckIntervalSeconds=tg_def["HealthCheckIntervalSeconds"],
        HealthCheckTimeoutSeconds=tg_def["HealthCheckTimeoutSeconds"],
        HealthyThresholdCount=tg_def["HealthyThresholdCount"],
        UnhealthyThresholdCount=tg_def["UnhealthyThresholdCount"],
        Matcher=tg_def["Matcher"])
    return existing["TargetGroupArn"]

def find_load_balancer(elbv2, name):
    try:
        response = elbv2.describe_load_balancers(Names=[name])
    except botocore.exceptions.ClientError as error:
        if error_code(error) == "LoadBalancerNotFound":
            return None
        raise
    lbs = response.get("LoadBalancers", [])
    if len(lbs) == 0:
        return None
    return lbs[0]

@provisioning_step("create load balancer")
def ensure_load_balancer(elbv2, plan):
    lb_def = get_load_balancer_def(plan)
    existing = find_load_balancer(elbv2, lb_def["Name"])
    if existing is not None:
        logger.info("%s load balancer exists"%(lb_def["Name"]))
        lb = existing
    else:
        logger.info("Creating %s load balancer"%(lb_def["Name"]))
        response = elbv2.create_load_balancer(**lb_def)
        lb = response["LoadBalancers"][0]
    elbv2.modify_load_balancer_attributes(
        LoadBalancerArn=lb["LoadBalancerArn"],
        Attributes=[{"Key": "idle_timeout.timeout_seconds", "Value": str(plan["load_balancer"]["idle_timeout"])}])
    logger.info("Waiting for %s load balancer to become available"%(lb_def["Name"]))
    elbv2.get_waiter("load_balancer_available").wait(LoadBalancerArns=[lb["LoadBalancerArn"]])
    return lb["LoadBalancerArn"], lb.get("DNSName", "")

def existing_listeners(elbv2, lb_arn):
    listeners = []
    paginator = elbv2.get_paginator("describe_listeners")
    for i in paginator.paginate(LoadBalancerArn=lb_arn):
        listeners += i.get("Listeners", [])
    return listeners

@provisioning_step("create listener")
def ensure_listener(elbv2, plan, listener_name, arns, current):
    listener_def = get_listener_def(plan, listener_name, arns)
    for l in current:
        if l.get("Port") != listener_def["Port"]: continue
        logger.info("Updating listener on port %d"%(listener_def["Port"]))
        modify_def = copy.deepcopy(listener_def)
        modify_def.pop("LoadBalancerArn")
        modify_def["ListenerArn"] = l["ListenerArn"]
        elbv2.modify_listener(**modify_def)
        return l["ListenerArn"]
    logger.info("Creating %s listener on port %d"%(listener_def["Protocol"], listener_def["Port"]))
    response = elbv2.create_listener(**listener_def)
    return response["Listeners"][0]["ListenerArn"]

def existing_rules(elbv2, listener_arn):
    rules = {}
    paginator = elbv2.get_paginator("describe_rules")
    for i in paginator.paginate(ListenerArn=listener_arn):
        for r in i.get("Rules", []):
            if r.get("IsDefault"): continue
            rules[int(r["Priority"])] = r
    return rules

# the listener's rules are owned by the deployment file:
# rules at priorities the plan does not use are removed
@provisioning_step("create listener rules")
def ensure_rules(elbv2, plan, listener_name, arns):
    listener_arn = arns[listener_name]
    current = existing_rules(elbv2, listener_arn)
    wanted = {}
    for rule_name, rule in plan["listener_rules"].items():
        if rule["listener_name"] == listener_name:
            wanted[rule["priority"]] = rule_name
    for priority, r in current.items():
        if priority in wanted: continue
        logger.warning("Deleting rule with priority %d on %s, it is not in the deployment file"%(priority, listener_name))
        elbv2.delete_rule(RuleArn=r["RuleArn"])
    for priority, rule_name in sorted(wanted.items()):
        rule_def = get_rule_def(plan, rule_name, arns)
        if priority in current:
            logger.info("Updating %s rule with priority %d"%(rule_name, priority))
            elbv2.modify_rule(RuleArn=current[priority]["RuleArn"], Conditions=rule_def["Conditions"], Actions=rule_def["Actions"])
        else:
            logger.info("Creating %s rule with priority %d"%(rule_name, priority))
            elbv2.create_rule(**rule_def)

@provisioning_step("register task definition")
def register_task_definition(ecs, plan, svc, additional_input, region_name):
    task_def = get_task_def(plan, svc, additional_input)
    for c in task_def["containerDefinitions"]:
        options = c.get("logConfiguration", {}).get("options")
        if options is not None and "awslogs-region" not in options:
            options["awslogs-region"] = region_name or ecs.meta.region_name
    response = ecs.register_task_definition(**task_def)
    task_def_arn = response["taskDefinition"]["taskDefinitionArn"]
    logger.info("Registered %s"%(task_def_arn))
    return task_def_arn

def find_service(ecs, cluster_name, svc_name):
    response = ecs.describe_services(cluster=cluster_name, services=[svc_name])
    for s in response.get("services", []):
        if s.get("status") == "ACTIVE":
            return s
    return None

@provisioning_step("create service")
def ensure_service(ecs, plan, svc, additional_input, arns):
    svc_def = get_svc_def(plan, svc, additional_input, arns)
    existing = find_service(ecs, svc_def["cluster"], svc_def["serviceName"])
    if existing is None:
        logger.info("Creating %s service"%(svc_def["serviceName"]))
        response = ecs.create_service(**svc_def)
        return response["service"]["serviceArn"]
    update_def = {k: v for k, v in svc_def.items() if k not in SERVICE_CREATE_ONLY}
    update_def["cluster"] = svc_def["cluster"]
    update_def["service"] = svc_def["serviceName"]
    # autoscaling owns the desired count of a running service
    if svc.get("autoscaling"):
        update_def.pop("desiredCount")
    logger.info("Updating %s service"%(svc_def["serviceName"]))
    ecs.update_service(**update_def)
    return existing["serviceArn"]

@provisioning_step("configure service autoscaling")
def ensure_scaling(autoscaling, plan, svc):
    target_def, policy_defs = get_scaling_defs(plan, svc)
    if target_def is None: return []
    logger.info("Registering scalable target %s (%d-%d tasks)"%(target_def["ResourceId"], target_def["MinCapacity"], target_def["MaxCapacity"]))
    autoscaling.register_scalable_target(**target_def)
    policy_arns = []
    for policy_def in policy_defs:
        logger.info("Putting %s scaling policy"%(policy_def["PolicyName"]))
        response = autoscaling.put_scaling_policy(**policy_def)
        policy_arns.append(response.get("PolicyARN"))
    return policy_arns

def apply_deployment(plan, options, clients=None):
    region_name = plan_region(plan, options)
    if clients is None:
        clients = get_clients(region_name)
    ecs = clients["ecs"]
    elbv2 = clients["elbv2"]
    additional_input = read_additional_input(options.get("input_file"))
    arns = {}

    arns["cluster"] = ensure_cluster(ecs, plan)
    for tg_key in plan["target_groups"].keys():
        arns[tg_key] = ensure_target_group(elbv2, plan, tg_key)
    arns["load_balancer"], dns_name = ensure_load_balancer(elbv2, plan)
    current = existing_listeners(elbv2, arns["load_balancer"])
    for listener_name in plan["listeners"].keys():
        arns[listener_name] = ensure_listener(elbv2, plan, listener_name, arns, current)
    for listener_name in plan["listeners"].keys():
        ensure_rules(elbv2, plan, listener_name, arns)

    for svc in plan["services"]:
        arns[svc["family"]] = register_task_definition(ecs, plan, svc, additional_input, region_name)
        arns[svc["name"]] = ensure_service(ecs, plan, svc, additional_input, arns)
        ensure_scaling(clients["application-autoscaling"], plan, svc)

    if options.get("wait"):
        svc_names = [svc["name"] for svc in plan["services"]]
        logger.info("Waiting for services %s to become stable"%(", ".join(svc_names)))
        ecs.get_waiter("services_stable").wait(cluster=plan["cluster"]["name"], services=svc_names)

    logger.log(100, "Deployment %s is served at http://%s"%(plan["cluster"]["name"], dns_name))
    return {"arns": arns, "dns_name": dns_name}

def ignore_not_found(description, func, **kwargs):
    try:
        return func(**kwargs)
    except botocore.exceptions.ClientError as error:
        if error_code(error) in NOT_FOUND_CODES:
            logger.warning("%s not found, skipping"%(description))
            return None
        logger.error("Failed to delete %s: %s"%(description, error))
        raise

def remove_scaling(autoscaling, plan, svc):
    target_def, policy_defs = get_scaling_defs(plan, svc)
    if target_def is None: return
    for policy_def in policy_defs:
        ignore_not_found("scaling policy "+policy_def["PolicyName"], autoscaling.delete_scaling_policy,
                         PolicyName=policy_def["PolicyName"], ServiceNamespace=policy_def["ServiceNamespace"],
                         ResourceId=policy_def["ResourceId"], ScalableDimension=policy_def["ScalableDimension"])
    ignore_not_found("scalable target "+target_def["ResourceId"], autoscaling.deregister_scalable_target,
                     ServiceNamespace=target_def["ServiceNamespace"], ResourceId=target_def["ResourceId"],
                     ScalableDimension=target_def["ScalableDimension"])

def remove_service(ecs, plan, svc):
    cluster_name = plan["cluster"]["name"]
    if find_service(ecs, cluster_name, svc["name"]) is None:
        logger.warning("%s service not found, skipping"%(svc["name"]))
        return False
    logger.info("Deleting %s service"%(svc["name"]))
    ignore_not_found("service "+svc["name"], ecs.delete_service, cluster=cluster_name, service=svc["name"], force=True)
    return True

def deregister_task_definitions(ecs, family):
    paginator = ecs.get_paginator("list_task_definitions")
    for i in paginator.paginate(familyPrefix=family, status="ACTIVE"):
        for task_def_arn in i.get("taskDefinitionArns", []):
            # familyPrefix also matches longer family names
            if task_def_arn.split("/")[-1].rsplit(":", 1)[0] != family: continue
            logger.info("Deregistering %s"%(task_def_arn))
            ecs.deregister_task_definition(taskDefinition=task_def_arn)

def destroy_deployment(plan, options, clients=None):
    region_name = plan_region(plan, options)
    if clients is None:
        clients = get_clients(region_name)
    ecs = clients["ecs"]
    elbv2 = clients["elbv2"]
    cluster_name = plan["cluster"]["name"]

    deleted = []
    for svc in plan["services"]:
        remove_scaling(clients["application-autoscaling"], plan, svc)
        if remove_service(ecs, plan, svc):
            deleted.append(svc["name"])
    if len(deleted) > 0:
        logger.info("Waiting for services %s to drain"%(", ".join(deleted)))
        ecs.get_waiter("services_inactive").wait(cluster=cluster_name, services=deleted)

    # deleting the load balancer removes its listeners and rules
    lb = find_load_balancer(elbv2, plan["load_balancer"]["name"])
    if lb is None:
        logger.warning("%s load balancer not found, skipping"%(plan["load_balancer"]["name"]))
    else:
        logger.info("Deleting %s load balancer"%(plan["load_balancer"]["name"]))
        elbv2.delete_load_balancer(LoadBalancerArn=lb["LoadBalancerArn"])
        elbv2.get_waiter("load_balancers_deleted").wait(LoadBalancerArns=[lb["LoadBalancerArn"]])

    for tg in plan["target_groups"].values():
        existing = find_target_group(elbv2, tg["name"])
        if existing is None:
            logger.warning("%s target group not found, skipping"%(tg["name"]))
            continue
        logger.info("Deleting %s target group"%(tg["name"]))
        ignore_not_found("target group "+tg["name"], elbv2.delete_target_group, TargetGroupArn=existing["TargetGroupArn"])

    for svc in plan["services"]:
        deregister_task_definitions(ecs, svc["family"])

    logger.info("Deleting %s cluster"%(cluster_name))
    ignore_not_found("cluster "+cluster_name, ecs.delete_cluster, cluster=cluster_name)
    logger.log(100, "Deployment %s removed"%(cluster_name))
    return deleted
