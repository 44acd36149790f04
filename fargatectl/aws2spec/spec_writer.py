# // Copyright Amazon.com, Inc. or its affiliates. All Rights Reserved.
# // SPDX-License-Identifier: Apache-2.0
import os
from ..utils import dict_check, write_yaml
import logging

logger = logging.getLogger(__name__)

SCALING_METRIC_TARGETS = {
    "ECSServiceAverageCPUUtilization": "target_cpu",
    "ECSServiceAverageMemoryUtilization": "target_memory"
}

def condition_values(condition, config_key):
    config = condition.get(config_key)
    if dict_check(config):
        return config.get("Values", [])
    return condition.get("Values", [])

# Reverses the Prefix expansion: /p and /p/* become one Prefix route,
# a lone /* is Prefix /, other wildcards stay as they are and
# anything else is an Exact route
def patterns_to_routes(patterns, host=""):
    routes = []
    for p in patterns:
        if p.endswith("/*") and p[:-2] in patterns:
            route = {"path": p[:-2], "path_type": "Prefix"}
        elif p+"/*" in patterns:
            continue
        elif p == "/*":
            route = {"path": "/", "path_type": "Prefix"}
        elif "*" in p or "?" in p:
            route = {"path": p, "path_type": "Prefix"}
        else:
            route = {"path": p, "path_type": "Exact"}
        if len(host) > 0:
            route["host"] = host
        if route["path_type"] == "Prefix" and len(host) == 0:
            routes.append(route["path"])
        else:
            routes.append(route)
    return routes

def rule_to_routes(rule):
    host = ""
    patterns = []
    for c in rule.get("Conditions", []):
        field = c.get("Field")
        if field == "host-header":
            hosts = condition_values(c, "HostHeaderConfig")
            if len(hosts) > 1:
                logger.warning("Rule %s matches several hosts, keeping %s"%(rule.get("RuleArn", ""), hosts[0]))
            if len(hosts) > 0:
                host = hosts[0]
        elif field == "path-pattern":
            patterns += condition_values(c, "PathPatternConfig")
        else:
            logger.warning("Ignoring %s condition of rule %s"%(field, rule.get("RuleArn", "")))
    return patterns_to_routes(patterns, host)

def health_check_spec(tg):
    return {
        "path": tg.get("HealthCheckPath", "/"),
        "protocol": tg.get("HealthCheckProtocol", "HTTP"),
        "interval": tg.get("HealthCheckIntervalSeconds", 30),
        "timeout": tg.get("HealthCheckTimeoutSeconds", 5),
        "healthy_threshold": tg.get("HealthyThresholdCount", 5),
        "unhealthy_threshold": tg.get("UnhealthyThresholdCount", 2),
        "matcher": tg.get("Matcher", {}).get("HttpCode", "200")
    }

def autoscaling_spec(scaling):
    if not dict_check(scaling): return {}
    target = scaling.get("target", {})
    output_dict = {"min_capacity": target.get("MinCapacity", 1), "max_capacity": target.get("MaxCapacity", 1)}
    for policy in scaling.get("policies", []):
        config = policy.get("TargetTrackingScalingPolicyConfiguration")
        if not dict_check(config): continue
        metric = config.get("PredefinedMetricSpecification", {}).get("PredefinedMetricType")
        key = SCALING_METRIC_TARGETS.get(metric)
        if key is None:
            logger.warning("Ignoring scaling policy %s with metric %s"%(policy.get("PolicyName"), metric))
            continue
        output_dict[key] = config.get("TargetValue")
        output_dict["scale_in_cooldown"] = config.get("ScaleInCooldown", 60)
        output_dict["scale_out_cooldown"] = config.get("ScaleOutCooldown", 60)
    if "target_cpu" not in output_dict and "target_memory" not in output_dict:
        return {}
    return output_dict

def find_container(task_def, container_name):
    containers = task_def.get("containerDefinitions", [])
    for c in containers:
        if c.get("name") == container_name:
            return c
    if len(containers) > 0:
        return containers[0]
    return {}

def service_spec(record):
    svc_def = record["service"]
    task_def = record.get("task_definition") or {}
    tgs = record.get("target_groups", [])
    container_name = tgs[0].get("container_name") if len(tgs) > 0 else None
    container = find_container(task_def, container_name)
    output_dict = {"name": svc_def["serviceName"], "image": container.get("image", "")}
    port = tgs[0].get("container_port") if len(tgs) > 0 else None
    if port is None:
        mappings = container.get("portMappings", [])
        port = mappings[0].get("containerPort") if len(mappings) > 0 else 80
    output_dict["container_port"] = port
    output_dict["cpu"] = int(task_def.get("cpu", 256))
    output_dict["memory"] = int(task_def.get("memory", 512))
    output_dict["desired_count"] = svc_def.get("desiredCount", 1)
    output_dict["family"] = task_def.get("family", "")
    if len(task_def.get("executionRoleArn", "")) > 0:
        output_dict["execution_role_arn"] = task_def["executionRoleArn"]
    if len(task_def.get("taskRoleArn", "")) > 0:
        output_dict["task_role_arn"] = task_def["taskRoleArn"]
    env = container.get("environment", [])
    if len(env) > 0:
        output_dict["environment"] = {e["name"]: e["value"] for e in env}
    secrets = container.get("secrets", [])
    if len(secrets) > 0:
        output_dict["secrets"] = {s["name"]: s["valueFrom"] for s in secrets}
    log_options = container.get("logConfiguration", {}).get("options", {})
    if len(log_options.get("awslogs-group", "")) > 0:
        output_dict["log_group"] = log_options["awslogs-group"]
    if len(container.get("command", [])) > 0:
        output_dict["command"] = container["command"]

    routes = []
    for tg in tgs:
        output_dict["health_check"] = health_check_spec(tg)
        for listener in tg.get("listeners", []):
            for rule in sorted(listener.get("rules", []), key=lambda r: int(r.get("Priority", "0"))):
                for route in rule_to_routes(rule):
                    if route not in routes:
                        routes.append(route)
    if len(routes) > 0:
        output_dict["routes"] = routes
    autoscaling = autoscaling_spec(record.get("scaling"))
    if dict_check(autoscaling):
        output_dict["autoscaling"] = autoscaling
    tags = {t["key"]: t["value"] for t in svc_def.get("tags", []) if not t["key"].startswith("aws:")}
    if dict_check(tags):
        output_dict["tags"] = tags
    return output_dict

def load_balancer_spec(records):
    lb_spec = {}
    for record in records:
        for tg in record.get("target_groups", []):
            lb = tg.get("load_balancer", {})
            if not dict_check(lb): continue
            if len(lb_spec) == 0:
                lb_spec = {
                    "name": lb.get("LoadBalancerName"),
                    "scheme": lb.get("Scheme", "internet-facing"),
                    "subnets": [az["SubnetId"] for az in lb.get("AvailabilityZones", []) if "SubnetId" in az],
                    "security_groups": lb.get("SecurityGroups", []),
                    "listeners": []
                }
            elif lb.get("LoadBalancerName") != lb_spec["name"]:
                logger.warning("%s service is behind %s, only %s is exported"%(record["service"]["serviceName"], lb.get("LoadBalancerName"), lb_spec["name"]))
                continue
            for listener in tg.get("listeners", []):
                listener_spec = {"protocol": listener.get("Protocol"), "port": listener.get("Port")}
                certificates = listener.get("Certificates", [])
                if len(certificates) > 0:
                    listener_spec["certificate_arn"] = certificates[0]["CertificateArn"]
                if len(listener.get("SslPolicy", "")) > 0:
                    listener_spec["ssl_policy"] = listener["SslPolicy"]
                if listener_spec not in lb_spec["listeners"]:
                    lb_spec["listeners"].append(listener_spec)
                for action in listener.get("DefaultActions", []):
                    if action.get("Type") == "redirect":
                        lb_spec["redirect_http"] = True
                if listener.get("is_default_target"):
                    lb_spec["default_service"] = record["service"]["serviceName"]
    return lb_spec

def network_spec(records):
    for record in records:
        vpc_config = record["service"].get("networkConfiguration", {}).get("awsvpcConfiguration")
        if not dict_check(vpc_config): continue
        vpc_id = ""
        for tg in record.get("target_groups", []):
            vpc_id = tg.get("VpcId", vpc_id)
        return {
            "vpc_id": vpc_id,
            "subnets": vpc_config.get("subnets", []),
            "security_groups": vpc_config.get("securityGroups", []),
            "assign_public_ip": vpc_config.get("assignPublicIp", "DISABLED")
        }
    return {}

def services_to_spec(cluster_name, region_name, records):
    spec = {"cluster": {"name": cluster_name}}
    if region_name is not None and len(region_name) > 0:
        spec["cluster"]["region"] = region_name
    spec["network"] = network_spec(records)
    spec["load_balancer"] = load_balancer_spec(records)
    spec["services"] = []
    for record in records:
        svc = service_spec(record)
        spec["services"].append(svc)
    return spec

def spec_writer(cluster_name, records, options):
    spec = services_to_spec(cluster_name, options.get("region_name", ""), records)
    output_dir = os.path.join(options.get("output_directory"), cluster_name)
    try:
        os.makedirs(output_dir)
    except FileExistsError:
        pass
    spec_file = os.path.join(output_dir, options.get("spec_file", "deployment.yaml"))
    write_yaml(spec_file, spec)
    logger.log(100, "Please see %s for the exported deployment file"%(spec_file))
    return spec_file
