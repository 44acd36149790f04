# // Copyright Amazon.com, Inc. or its affiliates. All Rights Reserved.
# // SPDX-License-Identifier: Apache-2.0
from . import SpecError
from ..utils import dict_check
import logging

logger = logging.getLogger(__name__)

# ALB allows 5 condition values per rule across all conditions
MAX_CONDITION_VALUES = 5
MAX_RULE_PRIORITY = 50000
PATH_TYPES = ("Prefix", "Exact")

# A route is either "/path" (Prefix) or
# {"path": "/path", "path_type": "Exact", "host": "api.example.com"}
def normalize_route(route, service_name):
    if isinstance(route, str):
        route = {"path": route}
    if not dict_check(route):
        raise SpecError("services.%s.routes: empty route"%(service_name))
    path = route.get("path", "/")
    if not isinstance(path, str) or not path.startswith("/"):
        raise SpecError("services.%s.routes: path %r must start with /"%(service_name, path))
    path_type = route.get("path_type", "Prefix")
    if path_type not in PATH_TYPES:
        raise SpecError("services.%s.routes: path_type %r must be one of %s"%(service_name, path_type, ", ".join(PATH_TYPES)))
    return {"path": path, "path_type": path_type, "host": route.get("host", "") or ""}

# Prefix "/" matches everything, Prefix "/api" matches /api and anything below it
def route_patterns(route):
    path = route.get("path", "/")
    if route.get("path_type", "Prefix") == "Exact":
        return [path]
    if "*" in path or "?" in path:
        return [path]
    path = path.rstrip("/")
    if len(path) == 0:
        return ["/*"]
    return [path, path+"/*"]

def chunk_patterns(patterns, host):
    size = MAX_CONDITION_VALUES
    if len(host) > 0:
        size -= 1
    return [patterns[i:i+size] for i in range(0, len(patterns), size)]

def rule_conditions(host, patterns):
    conditions = []
    if len(host) > 0:
        conditions.append({"field": "host-header", "values": [host]})
    conditions.append({"field": "path-pattern", "values": patterns})
    return conditions

# host rules before plain path rules, exact before prefix,
# longer paths before shorter ones
def route_specificity(route):
    return (0 if len(route["host"]) > 0 else 1,
            0 if route["path_type"] == "Exact" else 1,
            -len(route["path"].rstrip("/*")))

def routing_listeners(listeners, load_balancer):
    return_listeners = []
    for listener_name, listener in listeners.items():
        action = listener_default_action(listener, listeners, load_balancer, {})
        if action.get("type") == "redirect":
            logger.info("%s listener redirects to HTTPS, skipping path rules"%(listener_name))
            continue
        return_listeners.append(listener_name)
    return return_listeners

def build_listener_rules(services, listeners, load_balancer):
    output_dict = {}
    for listener_name in routing_listeners(listeners, load_balancer):
        candidates = []
        seen = {}
        for order, svc in enumerate(services):
            routes = sorted(svc.get("routes", []), key=route_specificity)
            for route in routes:
                patterns = route_patterns(route)
                for pattern in patterns:
                    key = (route["host"], pattern)
                    if key in seen and seen[key] != svc["name"]:
                        raise SpecError("listener %s routes %s%s to both %s and %s"%(listener_name, route["host"], pattern, seen[key], svc["name"]))
                    seen[key] = svc["name"]
                for chunk in chunk_patterns(patterns, route["host"]):
                    candidates.append({
                        "listener_name": listener_name,
                        "service": svc["name"],
                        "target_group_key": svc["target_group_key"],
                        "conditions": rule_conditions(route["host"], chunk),
                        "base_priority": svc.get("priority"),
                        "sort_key": route_specificity(route)+(order,)
                    })
        assign_priorities(candidates, listener_name)
        candidates.sort(key=lambda r: r["priority"])
        for rule_count, rule in enumerate(candidates):
            rule.pop("sort_key")
            rule.pop("base_priority")
            output_dict[listener_name+"-rule-"+str(rule_count)] = rule
    return output_dict

def assign_priorities(candidates, listener_name):
    used = set()
    pinned = {}
    for rule in candidates:
        base = rule.get("base_priority")
        if base is None: continue
        pinned.setdefault(rule["service"], []).append(rule)
    for svc_name, rules in pinned.items():
        priority = rules[0]["base_priority"]
        for rule in rules:
            if priority in used:
                raise SpecError("listener %s priority %d of service %s is already in use"%(listener_name, priority, svc_name))
            rule["priority"] = priority
            used.add(priority)
            priority += 1
    free = 1
    remaining = [r for r in candidates if r.get("base_priority") is None]
    for rule in sorted(remaining, key=lambda r: r["sort_key"]):
        while free in used:
            free += 1
        rule["priority"] = free
        used.add(free)
    for rule in candidates:
        if rule["priority"] < 1 or rule["priority"] > MAX_RULE_PRIORITY:
            raise SpecError("listener %s priority %d out of range 1-%d"%(listener_name, rule["priority"], MAX_RULE_PRIORITY))

def https_listener(listeners):
    for listener in listeners.values():
        if listener.get("protocol") == "HTTPS":
            return listener
    return None

# forward to the default service, redirect HTTP to HTTPS, or answer 404
def listener_default_action(listener, listeners, load_balancer, target_groups):
    secure = https_listener(listeners)
    if load_balancer.get("redirect_http") and listener.get("protocol") == "HTTP" and secure is not None:
        return {"type": "redirect", "protocol": "HTTPS", "port": secure.get("port"), "status_code": "HTTP_301"}
    default_service = load_balancer.get("default_service", "")
    if len(default_service) > 0:
        for tg_key, tg in target_groups.items():
            if tg.get("service") == default_service:
                return {"type": "forward", "target_group_key": tg_key}
    return {"type": "fixed-response", "status_code": "404", "content_type": "text/plain", "message_body": "Not Found"}
