# // Copyright Amazon.com, Inc. or its affiliates. All Rights Reserved.
# // SPDX-License-Identifier: Apache-2.0
from . import SpecError
from .routing import normalize_route, build_listener_rules, listener_default_action
from ..utils import dict_check, get_fargate_sku, parse_cpu, parse_memory, aws_name, yaml_reader
import logging

logger = logging.getLogger(__name__)

LISTENER_PROTOCOLS = ("HTTP", "HTTPS")
LB_SCHEMES = ("internet-facing", "internal")
CAPACITY_PROVIDERS = ("FARGATE", "FARGATE_SPOT")
DEFAULT_SSL_POLICY = "ELBSecurityPolicy-TLS13-1-2-2021-06"

# same defaults the ALB console uses
DEFAULT_HEALTH_CHECK = {
    "path": "/",
    "protocol": "HTTP",
    "interval": 30,
    "timeout": 5,
    "healthy_threshold": 5,
    "unhealthy_threshold": 2,
    "matcher": "200"
}

DEFAULT_AUTOSCALING = {
    "min_capacity": 1,
    "max_capacity": 1,
    "target_cpu": None,
    "target_memory": None,
    "scale_in_cooldown": 60,
    "scale_out_cooldown": 60
}

def require(section, key, where):
    value = section.get(key)
    if value is None or (isinstance(value, (str, list, dict)) and len(value) == 0):
        raise SpecError("%s.%s is required"%(where, key))
    return value

def as_list(value, where):
    if value is None:
        return []
    if isinstance(value, str):
        return [value]
    if not isinstance(value, list):
        raise SpecError("%s must be a list"%(where))
    return value

def check_number(value, where, integer=True):
    number_types = int if integer else (int, float)
    if isinstance(value, bool) or not isinstance(value, number_types):
        raise SpecError("%s must be a number, got %s"%(where, value))
    return value

def cluster_handler(cluster_dict):
    if not dict_check(cluster_dict):
        raise SpecError("cluster section is required")
    output_dict = {}
    output_dict["name"] = aws_name(require(cluster_dict, "name", "cluster"), 255)
    output_dict["region"] = cluster_dict.get("region", "") or ""
    providers = as_list(cluster_dict.get("capacity_providers", ["FARGATE"]), "cluster.capacity_providers")
    for p in providers:
        if p not in CAPACITY_PROVIDERS:
            raise SpecError("cluster.capacity_providers: %s is not one of %s"%(p, ", ".join(CAPACITY_PROVIDERS)))
    output_dict["capacity_providers"] = providers
    output_dict["container_insights"] = bool(cluster_dict.get("container_insights", False))
    return output_dict

def network_handler(network_dict):
    if not dict_check(network_dict):
        raise SpecError("network section is required")
    output_dict = {}
    output_dict["vpc_id"] = require(network_dict, "vpc_id", "network")
    output_dict["subnets"] = as_list(require(network_dict, "subnets", "network"), "network.subnets")
    output_dict["security_groups"] = as_list(network_dict.get("security_groups"), "network.security_groups")
    assign_public_ip = network_dict.get("assign_public_ip", "DISABLED")
    if isinstance(assign_public_ip, bool):
        assign_public_ip = "ENABLED" if assign_public_ip else "DISABLED"
    if assign_public_ip not in ("ENABLED", "DISABLED"):
        raise SpecError("network.assign_public_ip must be ENABLED or DISABLED")
    output_dict["assign_public_ip"] = assign_public_ip
    return output_dict

def listeners_handler(listener_list, lb_name):
    listeners = {}
    ports = set()
    if len(listener_list) == 0:
        listener_list = [{"protocol": "HTTP", "port": 80}]
    for l in listener_list:
        if not isinstance(l, dict):
            raise SpecError("load_balancer.listeners: each listener must be a mapping with protocol and port")
        protocol = str(l.get("protocol", "HTTP")).upper()
        if protocol not in LISTENER_PROTOCOLS:
            raise SpecError("load_balancer.listeners: protocol %s is not one of %s"%(protocol, ", ".join(LISTENER_PROTOCOLS)))
        port = l.get("port", 443 if protocol == "HTTPS" else 80)
        if not isinstance(port, int) or port < 1 or port > 65535:
            raise SpecError("load_balancer.listeners: invalid port %s"%(port))
        # an application load balancer has one listener per port
        if port in ports:
            raise SpecError("load_balancer.listeners: port %d is defined twice"%(port))
        ports.add(port)
        listener_name = lb_name+"-"+protocol+"-"+str(port)
        listeners[listener_name] = {"alb_name": lb_name, "port": port, "protocol": protocol}
        if protocol == "HTTPS":
            listeners[listener_name]["certificate_arn"] = require(l, "certificate_arn", "load_balancer.listeners[%d]"%(port))
            listeners[listener_name]["ssl_policy"] = l.get("ssl_policy", DEFAULT_SSL_POLICY)
    return listeners

def load_balancer_handler(lb_dict, network):
    if not dict_check(lb_dict):
        raise SpecError("load_balancer section is required")
    output_dict = {}
    output_dict["name"] = aws_name(require(lb_dict, "name", "load_balancer"))
    scheme = lb_dict.get("scheme", "internet-facing")
    if scheme not in LB_SCHEMES:
        raise SpecError("load_balancer.scheme must be one of %s"%(", ".join(LB_SCHEMES)))
    output_dict["scheme"] = scheme
    output_dict["subnets"] = as_list(lb_dict.get("subnets"), "load_balancer.subnets") or network["subnets"]
    if len(output_dict["subnets"]) < 2:
        raise SpecError("load_balancer.subnets: an application load balancer needs at least two subnets")
    output_dict["security_groups"] = as_list(lb_dict.get("security_groups"), "load_balancer.security_groups")
    output_dict["redirect_http"] = bool(lb_dict.get("redirect_http", False))
    # service names are cleaned the same way in service_handler
    output_dict["default_service"] = aws_name(lb_dict.get("default_service", "") or "", 255)
    output_dict["idle_timeout"] = lb_dict.get("idle_timeout", 60)
    listeners = listeners_handler(as_list(lb_dict.get("listeners"), "load_balancer.listeners"), output_dict["name"])
    return output_dict, listeners

def health_check_handler(hc_dict, svc_name):
    output_dict = dict(DEFAULT_HEALTH_CHECK)
    if not dict_check(hc_dict): return output_dict
    for k, v in hc_dict.items():
        if k not in DEFAULT_HEALTH_CHECK:
            raise SpecError("services.%s.health_check: unknown field %s"%(svc_name, k))
        output_dict[k] = v
    for k in ("interval", "timeout", "healthy_threshold", "unhealthy_threshold"):
        check_number(output_dict[k], "services.%s.health_check.%s"%(svc_name, k))
    output_dict["matcher"] = str(output_dict["matcher"])
    if output_dict["timeout"] >= output_dict["interval"]:
        raise SpecError("services.%s.health_check: timeout must be smaller than interval"%(svc_name))
    return output_dict

def autoscaling_handler(as_dict, svc_name, desired_count):
    if not dict_check(as_dict): return {}
    output_dict = dict(DEFAULT_AUTOSCALING)
    output_dict["min_capacity"] = desired_count
    output_dict["max_capacity"] = desired_count
    for k, v in as_dict.items():
        if k not in DEFAULT_AUTOSCALING:
            raise SpecError("services.%s.autoscaling: unknown field %s"%(svc_name, k))
        output_dict[k] = v
    for k in ("min_capacity", "max_capacity", "scale_in_cooldown", "scale_out_cooldown"):
        check_number(output_dict[k], "services.%s.autoscaling.%s"%(svc_name, k))
    for k in ("target_cpu", "target_memory"):
        if output_dict[k] is not None:
            check_number(output_dict[k], "services.%s.autoscaling.%s"%(svc_name, k), integer=False)
    if output_dict["min_capacity"] > output_dict["max_capacity"]:
        raise SpecError("services.%s.autoscaling: min_capacity is greater than max_capacity"%(svc_name))
    if output_dict["target_cpu"] is None and output_dict["target_memory"] is None:
        raise SpecError("services.%s.autoscaling: set target_cpu and/or target_memory"%(svc_name))
    for target in ("target_cpu", "target_memory"):
        value = output_dict[target]
        if value is not None and (value <= 0 or value > 100):
            raise SpecError("services.%s.autoscaling: %s must be between 1 and 100"%(svc_name, target))
    return output_dict

# pick the nearest fitting Fargate SKU for the requested cpu and memory
def task_size_handler(svc_dict, svc_name):
    try:
        cpu = parse_cpu(svc_dict.get("cpu", 256))
        memory = parse_memory(svc_dict.get("memory", 512))
    except ValueError as error:
        raise SpecError("services.%s: %s"%(svc_name, error))
    sku = get_fargate_sku(cpu, memory)
    if not dict_check(sku):
        raise SpecError("services.%s: no Fargate task size fits cpu=%d memory=%d"%(svc_name, cpu, memory))
    if sku["cpu"] != cpu or sku["memory"] != memory:
        logger.info("%s task size rounded up to cpu=%d memory=%d"%(svc_name, sku["cpu"], sku["memory"]))
    return sku

def env_handler(env, where):
    if env is None: return []
    if not isinstance(env, dict):
        raise SpecError("%s must be a mapping"%(where))
    return [{"name": str(k), "value": str(v)} for k, v in env.items()]

def service_handler(svc_dict, cluster, lb_name):
    output_dict = {}
    name = require(svc_dict, "name", "services[]")
    output_dict["name"] = aws_name(name, 255)
    output_dict["image"] = require(svc_dict, "image", "services.%s"%(name))
    port = require(svc_dict, "container_port", "services.%s"%(name))
    if not isinstance(port, int) or port < 1 or port > 65535:
        raise SpecError("services.%s.container_port: invalid port %s"%(name, port))
    output_dict["container_port"] = port
    output_dict.update(task_size_handler(svc_dict, name))
    desired_count = svc_dict.get("desired_count", 1)
    if not isinstance(desired_count, int) or desired_count < 0:
        raise SpecError("services.%s.desired_count must be a non-negative integer"%(name))
    output_dict["desired_count"] = desired_count
    output_dict["family"] = aws_name(svc_dict.get("family", cluster["name"]+"-"+output_dict["name"]), 255)
    output_dict["execution_role_arn"] = svc_dict.get("execution_role_arn", "") or ""
    output_dict["task_role_arn"] = svc_dict.get("task_role_arn", "") or ""
    output_dict["environment"] = env_handler(svc_dict.get("environment"), "services.%s.environment"%(name))
    output_dict["secrets"] = [{"name": e["name"], "valueFrom": e["value"]} for e in env_handler(svc_dict.get("secrets"), "services.%s.secrets"%(name))]
    if len(output_dict["secrets"]) > 0 and len(output_dict["execution_role_arn"]) == 0:
        raise SpecError("services.%s: secrets need an execution_role_arn"%(name))
    output_dict["log_group"] = svc_dict.get("log_group", "") or ""
    if len(output_dict["log_group"]) > 0 and len(output_dict["execution_role_arn"]) == 0:
        raise SpecError("services.%s: log_group needs an execution_role_arn"%(name))
    output_dict["command"] = as_list(svc_dict.get("command"), "services.%s.command"%(name))
    priority = svc_dict.get("priority")
    if priority is not None and (not isinstance(priority, int) or priority < 1):
        raise SpecError("services.%s.priority must be a positive integer"%(name))
    output_dict["priority"] = priority
    output_dict["routes"] = [normalize_route(r, name) for r in as_list(svc_dict.get("routes"), "services.%s.routes"%(name))]
    output_dict["health_check"] = health_check_handler(svc_dict.get("health_check"), name)
    output_dict["autoscaling"] = autoscaling_handler(svc_dict.get("autoscaling"), name, desired_count)
    output_dict["tags"] = svc_dict.get("tags", {}) or {}
    output_dict["target_group_key"] = lb_name+"-"+output_dict["name"]+"-"+str(port)
    return output_dict

# target group names are limited to 32 characters
def target_groups_handler(services):
    target_groups = {}
    names = set()
    for svc in services:
        tg_name = aws_name(svc["name"]+"-"+str(svc["container_port"]), 32)
        suffix = 1
        while tg_name in names:
            tag = "-"+str(suffix)
            tg_name = aws_name(svc["name"], 32-len(tag))+tag
            suffix += 1
        names.add(tg_name)
        target_groups[svc["target_group_key"]] = {
            "name": tg_name,
            "service": svc["name"],
            "port": svc["container_port"],
            "protocol": "HTTP",
            "target_type": "ip",
            "health_check": svc["health_check"],
            "tags": {"key": svc["target_group_key"]}
        }
    return target_groups

def parse_deployment(spec):
    if not dict_check(spec):
        raise SpecError("deployment file is empty")
    output_dict = {}
    output_dict["cluster"] = cluster_handler(spec.get("cluster"))
    output_dict["network"] = network_handler(spec.get("network"))
    lb, listeners = load_balancer_handler(spec.get("load_balancer"), output_dict["network"])
    output_dict["load_balancer"] = lb
    output_dict["listeners"] = listeners

    svc_list = as_list(spec.get("services"), "services")
    if len(svc_list) == 0:
        raise SpecError("services: at least one service is required")
    services = []
    seen = set()
    for svc_dict in svc_list:
        if not dict_check(svc_dict):
            raise SpecError("services: empty service entry")
        svc = service_handler(svc_dict, output_dict["cluster"], lb["name"])
        if svc["name"] in seen:
            raise SpecError("services.%s is defined twice"%(svc["name"]))
        seen.add(svc["name"])
        services.append(svc)
    if len(lb["default_service"]) > 0 and lb["default_service"] not in seen:
        raise SpecError("load_balancer.default_service %s is not a service"%(lb["default_service"]))
    for svc in services:
        # every service is registered with its target group, which has to receive traffic
        if len(svc["routes"]) == 0 and svc["name"] != lb["default_service"]:
            raise SpecError("services.%s: set routes or make it the load_balancer.default_service, its target group would receive no traffic"%(svc["name"]))

    output_dict["services"] = services
    output_dict["target_groups"] = target_groups_handler(services)
    output_dict["listener_rules"] = build_listener_rules(services, listeners, lb)
    for listener in listeners.values():
        listener["default_action"] = listener_default_action(listener, listeners, lb, output_dict["target_groups"])
    output_dict["tags"] = spec.get("tags", {}) or {}
    return output_dict

def read_deployment(source):
    spec_list = yaml_reader(source)
    if len(spec_list) == 0:
        raise SpecError("no deployment found in %s"%(source))
    if len(spec_list) > 1:
        logger.warning("%s holds %d documents, using the first one"%(source, len(spec_list)))
    return parse_deployment(spec_list[0])
